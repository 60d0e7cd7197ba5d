"""
Hashing utilities for company_identity.

Content-addressed keys for the result cache: the same four input fields
always map to the same key, regardless of case or surrounding whitespace.
"""

import hashlib


def compute_fields_hash(*fields: str | None) -> str:
    """
    Hash a tuple of fields after lower-casing and stripping each one.

    ``None`` and "" are equivalent. Fields are joined with ``|`` so that
    ``("a", "b|c")`` and ``("a|b", "c")`` differ only if a field contains the
    separator, which URLs and titles in practice do not.
    """
    joined = "|".join((field or "").strip().lower() for field in fields)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()
