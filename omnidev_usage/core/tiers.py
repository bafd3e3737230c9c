"""
Subscription tiers and their quota limits.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple, Union

ALL_MODELS = "*"
_BYTES_PER_MB = 1024 * 1024


class SubscriptionTier(Enum):
    """Named subscription levels."""
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


@dataclass(frozen=True)
class TierLimits:
    """Quotas and limits attached to a subscription tier."""
    tokens_per_month: int
    tokens_per_day: int
    images_per_month: int
    videos_per_month: int
    max_file_size_mb: int
    max_context_window: int
    models_allowed: Tuple[str, ...] = (ALL_MODELS,)

    def __post_init__(self):
        """Validate limits are non-negative."""
        for name in (
            "tokens_per_month",
            "tokens_per_day",
            "images_per_month",
            "videos_per_month",
            "max_file_size_mb",
            "max_context_window",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * _BYTES_PER_MB

    def allows_model(self, model_id: str) -> bool:
        """Whether ``model_id`` may be used on this tier."""
        return ALL_MODELS in self.models_allowed or model_id in self.models_allowed

    def allows_file_size(self, size_bytes: int) -> bool:
        return size_bytes <= self.max_file_size_bytes


TIER_LIMITS: Dict[SubscriptionTier, TierLimits] = {
    SubscriptionTier.FREE: TierLimits(
        tokens_per_month=100_000,
        tokens_per_day=10_000,
        images_per_month=10,
        videos_per_month=0,
        max_file_size_mb=5,
        max_context_window=32_000,
        models_allowed=("gpt-5.1-chat", "claude-4.5-haiku", "gemini-2.5-flash", "llama-3.1-70b"),
    ),
    SubscriptionTier.PRO: TierLimits(
        tokens_per_month=2_000_000,
        tokens_per_day=100_000,
        images_per_month=100,
        videos_per_month=20,
        max_file_size_mb=25,
        max_context_window=200_000,
    ),
    SubscriptionTier.ENTERPRISE: TierLimits(
        tokens_per_month=10_000_000,
        tokens_per_day=500_000,
        images_per_month=500,
        videos_per_month=100,
        max_file_size_mb=100,
        max_context_window=2_000_000,
    ),
}


def parse_tier(tier: Union[SubscriptionTier, str]) -> SubscriptionTier:
    """Coerce a tier name to a SubscriptionTier.

    Raises:
        ValueError: If the name is not a known tier
    """
    if isinstance(tier, SubscriptionTier):
        return tier
    try:
        return SubscriptionTier(str(tier).lower())
    except ValueError:
        valid = [t.value for t in SubscriptionTier]
        raise ValueError(f"Unknown tier: {tier!r} (expected one of {valid})")


def get_tier_limits(
    tier: Union[SubscriptionTier, str],
    tiers: Dict[SubscriptionTier, TierLimits] = TIER_LIMITS,
) -> TierLimits:
    """Look up the limits for a tier."""
    return tiers[parse_tier(tier)]
