"""
Pricing calculations and rate management.

Handles cost computations for chat, image and video models.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Union

from omnidev_usage.storage.models import UsageType


@dataclass(frozen=True)
class ModelPricing:
    """Unit prices for a specific model (USD)."""
    input_per_1k_tokens: Decimal
    output_per_1k_tokens: Decimal
    image_per_generation: Optional[Decimal] = None
    video_per_second: Optional[Decimal] = None


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model_id: str) -> Optional[ModelPricing]:
        """Get pricing for a specific model.

        Args:
            model_id: Model identifier

        Returns:
            ModelPricing for the model, or None if the model is not priced
        """
        return self.prices.get(model_id)

    def __contains__(self, model_id: str) -> bool:
        return model_id in self.prices

    def merged(self, overrides: Dict[str, ModelPricing]) -> "PricingTable":
        """Return a new table with ``overrides`` layered over these prices."""
        prices = dict(self.prices)
        prices.update(overrides)
        return PricingTable(prices)


def _tokens(input_per_1k: str, output_per_1k: str) -> ModelPricing:
    return ModelPricing(
        input_per_1k_tokens=Decimal(input_per_1k),
        output_per_1k_tokens=Decimal(output_per_1k),
    )


PRICING_TABLE = PricingTable({
    # GPT-5.2
    "gpt-5.2": _tokens("0.012", "0.036"),
    "gpt-5.2-chat-latest": _tokens("0.006", "0.018"),
    "gpt-5.2-pro": _tokens("0.02", "0.06"),
    # GPT-5.1
    "gpt-5.1": _tokens("0.01", "0.03"),
    "gpt-5.1-chat": _tokens("0.005", "0.015"),
    "gpt-5.1-pro": _tokens("0.015", "0.045"),
    "gpt-5.1-nano": _tokens("0.001", "0.003"),
    "gpt-5.1-mini": _tokens("0.003", "0.009"),
    "gpt-5.1-codex": _tokens("0.008", "0.024"),
    "gpt-5.1-codex-mini": _tokens("0.004", "0.012"),
    "gpt-5.1-codex-max": _tokens("0.02", "0.06"),
    # Claude 4.5
    "claude-4.5-opus": _tokens("0.015", "0.075"),
    "claude-4.5-sonnet": _tokens("0.003", "0.015"),
    "claude-4.5-haiku": _tokens("0.00025", "0.00125"),
    # Gemini
    "gemini-3-pro": _tokens("0.00125", "0.005"),
    "gemini-2.5-pro": _tokens("0.00125", "0.005"),
    "gemini-2.5-flash": _tokens("0.000075", "0.0003"),
    # Other providers
    "grok-4.1": _tokens("0.003", "0.015"),
    "grok-4": _tokens("0.002", "0.01"),
    "mistral-large": _tokens("0.002", "0.006"),
    "sonar-large": _tokens("0.001", "0.001"),
    "llama-3.1-70b": _tokens("0.0009", "0.0009"),
    # Image and video generation
    "dall-e-3": ModelPricing(Decimal("0"), Decimal("0"), image_per_generation=Decimal("0.04")),
    "image-1": ModelPricing(Decimal("0"), Decimal("0"), image_per_generation=Decimal("0.02")),
    "sora-2": ModelPricing(Decimal("0"), Decimal("0"), video_per_second=Decimal("0.05")),
    "sora-2-pro": ModelPricing(Decimal("0"), Decimal("0"), video_per_second=Decimal("0.10")),
})


def compute_cost(
    model_id: str,
    usage_type: Union[UsageType, str],
    tokens_input: int = 0,
    tokens_output: int = 0,
    duration_seconds: Optional[float] = None,
    pricing_table: PricingTable = PRICING_TABLE,
) -> float:
    """Calculate the cost of a single call.

    Unpriced models cost nothing rather than failing the call; token counts
    are ignored for image and video generations.

    Args:
        model_id: Model identifier
        usage_type: Kind of call (chat, image, video, embedding)
        tokens_input: Prompt tokens
        tokens_output: Completion tokens
        duration_seconds: Video length, defaults to 1 second
        pricing_table: Table to price against

    Returns:
        Non-negative cost in USD, unrounded
    """
    pricing = pricing_table.get_pricing(model_id)
    if pricing is None:
        return 0.0

    usage_type = UsageType(usage_type)

    if usage_type == UsageType.IMAGE:
        if pricing.image_per_generation is None:
            return 0.0
        return float(pricing.image_per_generation)

    if usage_type == UsageType.VIDEO:
        if pricing.video_per_second is None:
            return 0.0
        seconds = Decimal(str(duration_seconds)) if duration_seconds is not None else Decimal("1")
        return float(pricing.video_per_second * seconds)

    input_cost = (Decimal(tokens_input) / Decimal("1000")) * pricing.input_per_1k_tokens
    output_cost = (Decimal(tokens_output) / Decimal("1000")) * pricing.output_per_1k_tokens
    return float(input_cost + output_cost)
