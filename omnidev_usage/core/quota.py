"""
Quota gate.

Admission control performed before a billable call. The gate reads the
current summary and the tier limits and never changes either; a denied
check is a value, not an exception, so callers can show a limit message
instead of attempting the call.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Union

from .summary import UsageSummary
from .tiers import TierLimits
from omnidev_usage.storage.models import UsageType


class QuotaResource(Enum):
    """Resources with a monthly quota."""
    TOKENS = "tokens"
    IMAGES = "images"
    VIDEOS = "videos"


@dataclass(frozen=True)
class QuotaCheck:
    """Result of an admission check.

    ``remaining`` is the raw ``limit - used`` and goes negative once a user
    is over quota; use ``display_remaining`` when showing it.
    """
    allowed: bool
    remaining: int
    limit: int
    resource: QuotaResource
    requested: int

    @property
    def display_remaining(self) -> int:
        return max(0, self.remaining)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "limit": self.limit,
            "resource": self.resource.value,
            "requested": self.requested,
        }


class QuotaExceeded(Exception):
    """Raised by client wrappers when a call is refused by the quota gate."""
    def __init__(self, check: QuotaCheck):
        super().__init__(
            f"{check.resource.value} limit reached: requested {check.requested}, "
            f"{check.display_remaining} of {check.limit} remaining"
        )
        self.check = check


def parse_resource(resource: Union[QuotaResource, str]) -> QuotaResource:
    if isinstance(resource, QuotaResource):
        return resource
    try:
        return QuotaResource(str(resource).lower())
    except ValueError:
        valid = [r.value for r in QuotaResource]
        raise ValueError(f"Unknown quota resource: {resource!r} (expected one of {valid})")


def resource_for_usage_type(usage_type: Union[UsageType, str]) -> QuotaResource:
    """Quota resource consumed by a kind of call."""
    usage_type = UsageType(usage_type)
    if usage_type == UsageType.IMAGE:
        return QuotaResource.IMAGES
    if usage_type == UsageType.VIDEO:
        return QuotaResource.VIDEOS
    return QuotaResource.TOKENS


def check_quota(
    summary: UsageSummary,
    limits: TierLimits,
    resource: Union[QuotaResource, str],
    requested_amount: int = 1,
) -> QuotaCheck:
    """Decide whether ``requested_amount`` more of ``resource`` fits the quota.

    Args:
        summary: Current summary of the user's usage
        limits: Active tier limits
        resource: Resource being requested
        requested_amount: Units about to be consumed

    Returns:
        QuotaCheck with ``allowed = used + requested <= limit``

    Raises:
        ValueError: If the amount is negative or the resource is unknown
    """
    resource = parse_resource(resource)
    if requested_amount < 0:
        raise ValueError("requested_amount cannot be negative")

    if resource == QuotaResource.TOKENS:
        used, limit = summary.tokens_used, limits.tokens_per_month
    elif resource == QuotaResource.IMAGES:
        used, limit = summary.images_generated, limits.images_per_month
    else:
        used, limit = summary.videos_generated, limits.videos_per_month

    return QuotaCheck(
        allowed=used + requested_amount <= limit,
        remaining=limit - used,
        limit=limit,
        resource=resource,
        requested=requested_amount,
    )
