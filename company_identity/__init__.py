"""
Company Identity - parent-aware company identification for bulk datasets.

This package provides utilities for:
- Normalizing and decomposing URLs into comparable domain signals
- Learning reusable domain patterns from successful identifications
- Resolving rows deterministically before falling back to LLM inference
- Batching, retrying and cost-limiting calls to the inference provider
"""

import logging

# Set up NullHandler to prevent "No handler found" warnings
# when used as a library. Applications should configure their own handlers.
logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

# Re-export commonly used items
from company_identity.config import Settings, get_settings
from company_identity.models import (
    EntityQuery,
    ResolutionMethod,
    ResolutionResult,
)
from company_identity.pipeline.orchestrator import ResolutionOrchestrator

__all__ = [
    "__version__",
    # Config
    "Settings",
    "get_settings",
    # Models
    "EntityQuery",
    "ResolutionMethod",
    "ResolutionResult",
    # Pipeline
    "ResolutionOrchestrator",
]
