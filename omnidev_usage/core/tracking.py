"""
Usage tracking helpers for chat and generation callers.

Turns raw request/response text and generation metadata into usage logs
and gives a compact view of where a user stands against their quotas.
"""

from typing import Any, Dict, Optional, Union

from .ledger import UsageLedger
from .quota import QuotaCheck, QuotaResource
from .token_counter import estimate_tokens
from omnidev_usage.storage.models import ContextMode, UsageLog, UsageType


def _percent(used: int, limit: int) -> float:
    return used / limit * 100 if limit > 0 else 0.0


class UsageTracker:
    """Records estimated usage for calls made on behalf of users."""

    def __init__(self, ledger: UsageLedger):
        self.ledger = ledger

    def track_usage(
        self,
        user_id: str,
        model_id: str,
        provider: str,
        input_text: str,
        output_text: str,
        latency_ms: int,
        usage_type: Union[UsageType, str] = UsageType.CHAT,
        context_mode: Optional[Union[ContextMode, str]] = None,
    ) -> UsageLog:
        """Record a chat or embedding call, estimating tokens from its text."""
        log = self.ledger.create_log(
            user_id=user_id,
            model_id=model_id,
            provider=provider,
            usage_type=usage_type,
            tokens_input=estimate_tokens(input_text),
            tokens_output=estimate_tokens(output_text),
            latency_ms=latency_ms,
            context_mode=context_mode,
        )
        return self.ledger.record_usage(log)

    def track_image_generation(
        self,
        user_id: str,
        model_id: str,
        provider: str,
        latency_ms: int,
    ) -> UsageLog:
        log = self.ledger.create_log(
            user_id=user_id,
            model_id=model_id,
            provider=provider,
            usage_type=UsageType.IMAGE,
            latency_ms=latency_ms,
        )
        return self.ledger.record_usage(log)

    def track_video_generation(
        self,
        user_id: str,
        model_id: str,
        provider: str,
        duration_seconds: float,
        latency_ms: int,
    ) -> UsageLog:
        log = self.ledger.create_log(
            user_id=user_id,
            model_id=model_id,
            provider=provider,
            usage_type=UsageType.VIDEO,
            latency_ms=latency_ms,
            duration_seconds=duration_seconds,
        )
        return self.ledger.record_usage(log)

    def can_use_feature(
        self,
        user_id: str,
        resource: Union[QuotaResource, str],
        amount: int = 1,
    ) -> QuotaCheck:
        return self.ledger.check_quota(user_id, resource, amount)

    def usage_overview(self, user_id: str) -> Dict[str, Any]:
        """Used, limit and percent per resource, plus cost and request totals."""
        summary = self.ledger.get_summary(user_id)
        limits = self.ledger.get_tier_limits(user_id)
        return {
            "tokens": {
                "used": summary.tokens_used,
                "limit": limits.tokens_per_month,
                "percent": _percent(summary.tokens_used, limits.tokens_per_month),
            },
            "images": {
                "used": summary.images_generated,
                "limit": limits.images_per_month,
                "percent": _percent(summary.images_generated, limits.images_per_month),
            },
            "videos": {
                "used": summary.videos_generated,
                "limit": limits.videos_per_month,
                "percent": _percent(summary.videos_generated, limits.videos_per_month),
            },
            "totalCost": summary.total_cost,
            "requestCount": summary.request_count,
        }
