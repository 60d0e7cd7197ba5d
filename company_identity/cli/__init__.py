"""
CLI utilities for company_identity scripts.
"""

from company_identity.cli.logging import (
    print_execute_header,
    setup_logging,
)

__all__ = [
    "print_execute_header",
    "setup_logging",
]
