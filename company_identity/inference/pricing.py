"""
Model pricing and token counting for cost estimation.

All prices are estimated USD per 1M tokens and may change over time.
Unknown models are priced at 0.0 (logged once) but still report token usage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import tiktoken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LLMPrice:
    """Input/output pricing for chat models (USD per 1M tokens)."""

    input_per_million: float
    output_per_million: float


LLM_PRICING: dict[str, LLMPrice] = {
    "gpt-4o": LLMPrice(input_per_million=2.5, output_per_million=10.0),
    "gpt-4o-mini": LLMPrice(input_per_million=0.15, output_per_million=0.6),
    "gpt-4.1": LLMPrice(input_per_million=2.0, output_per_million=8.0),
    "gpt-4.1-mini": LLMPrice(input_per_million=0.4, output_per_million=1.6),
    "gpt-4.1-nano": LLMPrice(input_per_million=0.1, output_per_million=0.4),
    "gpt-3.5-turbo": LLMPrice(input_per_million=0.5, output_per_million=1.5),
}

_unpriced_models: set[str] = set()


def estimate_llm_cost_usd(
    model: str,
    *,
    input_tokens: int,
    output_tokens: int,
) -> tuple[float, bool]:
    """
    Estimate LLM cost in USD.

    Returns:
        (cost_usd, priced) where priced=False means model was unknown.
    """
    price = LLM_PRICING.get(model)
    if price is None:
        if model not in _unpriced_models:
            _unpriced_models.add(model)
            logger.warning(f"No pricing for model {model!r}; cost will be reported as 0.0")
        return 0.0, False
    cost = (
        (input_tokens / 1_000_000.0) * price.input_per_million
        + (output_tokens / 1_000_000.0) * price.output_per_million
    )
    return cost, True


def count_tokens(text: str, model: str) -> int:
    """
    Count tokens in text using tiktoken.

    Falls back to a rough estimate (1 token ~ 4 characters) when the model's
    encoding cannot be loaded.
    """
    if not text:
        return 0
    try:
        try:
            encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            encoding = tiktoken.get_encoding("o200k_base")
        return len(encoding.encode(text))
    except Exception as e:
        logger.warning(f"Error counting tokens with tiktoken: {e}, using fallback")
        return len(text) // 4
