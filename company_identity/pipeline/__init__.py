"""
Resolution pipeline: shared context and the three-phase orchestrator.
"""

from company_identity.pipeline.context import ResolutionContext
from company_identity.pipeline.orchestrator import ResolutionOrchestrator, RowState

__all__ = [
    "ResolutionContext",
    "ResolutionOrchestrator",
    "RowState",
]
