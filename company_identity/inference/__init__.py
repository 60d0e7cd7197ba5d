"""
Batched inference: providers, error taxonomy, pricing and the batching client.
"""

from company_identity.inference.client import BatchedInferenceClient, BatchStatus, RowOutcome
from company_identity.inference.errors import (
    FatalInferenceError,
    InferenceError,
    RetryableInferenceError,
    classify_exception,
)
from company_identity.inference.providers import (
    InferenceProvider,
    InferenceRequest,
    InferenceResponse,
    MockInferenceProvider,
    OpenAIInferenceProvider,
    ProviderResult,
)

__all__ = [
    "BatchStatus",
    "BatchedInferenceClient",
    "FatalInferenceError",
    "InferenceError",
    "InferenceProvider",
    "InferenceRequest",
    "InferenceResponse",
    "MockInferenceProvider",
    "OpenAIInferenceProvider",
    "ProviderResult",
    "RetryableInferenceError",
    "RowOutcome",
    "classify_exception",
]
