"""
Unit tests for the quota gate.
"""

from dataclasses import replace

import pytest

from omnidev_usage.core.quota import (
    QuotaCheck,
    QuotaExceeded,
    QuotaResource,
    check_quota,
    parse_resource,
    resource_for_usage_type,
)
from omnidev_usage.core.summary import Period, empty_summary
from omnidev_usage.core.tiers import TIER_LIMITS, SubscriptionTier, TierLimits
from omnidev_usage.storage.models import UsageType

FREE = TIER_LIMITS[SubscriptionTier.FREE]


def summary_with(**usage):
    return replace(empty_summary(Period.MONTH, FREE), **usage)


class TestCheckQuota:
    """Test admission decisions."""

    def test_allows_within_limit(self):
        result = check_quota(summary_with(tokens_used=2000), FREE, QuotaResource.TOKENS, 1000)
        assert result.allowed is True
        assert result.remaining == 98_000
        assert result.limit == 100_000
        assert result.requested == 1000

    def test_boundary_is_inclusive(self):
        """A request that lands exactly on the limit is allowed."""
        summary = summary_with(tokens_used=99_000)
        assert check_quota(summary, FREE, "tokens", 1000).allowed is True
        assert check_quota(summary, FREE, "tokens", 1001).allowed is False

    def test_images_exhausted(self):
        """10 images generated on free tier."""
        result = check_quota(summary_with(images_generated=10), FREE, QuotaResource.IMAGES)
        assert result.allowed is False
        assert result.remaining == 0
        assert result.limit == 10

    def test_free_tier_has_no_videos(self):
        result = check_quota(summary_with(), FREE, QuotaResource.VIDEOS)
        assert result.allowed is False
        assert result.limit == 0

    def test_zero_request_always_fits_non_negative_remaining(self):
        assert check_quota(summary_with(images_generated=10), FREE, "images", 0).allowed is True

    def test_remaining_goes_negative_when_over(self):
        result = check_quota(summary_with(tokens_used=120_000), FREE, "tokens", 1)
        assert result.allowed is False
        assert result.remaining == -20_000
        assert result.display_remaining == 0

    def test_zero_limit_denies_positive_requests(self):
        limits = TierLimits(0, 0, 0, 0, 0, 0)
        assert check_quota(summary_with(), limits, "tokens", 1).allowed is False
        assert check_quota(summary_with(), limits, "tokens", 0).allowed is True

    def test_limit_comes_from_tier_not_summary(self):
        """Limits are read from the tier passed in."""
        pro = TIER_LIMITS[SubscriptionTier.PRO]
        result = check_quota(summary_with(images_generated=10), pro, "images")
        assert result.allowed is True
        assert result.limit == 100

    def test_negative_amount_raises(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            check_quota(summary_with(), FREE, "tokens", -1)

    def test_unknown_resource_raises(self):
        with pytest.raises(ValueError, match="Unknown quota resource"):
            check_quota(summary_with(), FREE, "minutes")

    def test_check_does_not_change_summary(self):
        summary = summary_with(tokens_used=10)
        check_quota(summary, FREE, "tokens", 50)
        assert summary.tokens_used == 10


class TestQuotaHelpers:
    """Test resource parsing and mapping."""

    def test_parse_resource(self):
        assert parse_resource("IMAGES") == QuotaResource.IMAGES
        assert parse_resource(QuotaResource.VIDEOS) == QuotaResource.VIDEOS

    def test_resource_for_usage_type(self):
        assert resource_for_usage_type(UsageType.IMAGE) == QuotaResource.IMAGES
        assert resource_for_usage_type("video") == QuotaResource.VIDEOS
        assert resource_for_usage_type(UsageType.CHAT) == QuotaResource.TOKENS
        assert resource_for_usage_type(UsageType.EMBEDDING) == QuotaResource.TOKENS

    def test_to_dict(self):
        check = QuotaCheck(True, 5, 10, QuotaResource.IMAGES, 1)
        assert check.to_dict() == {
            "allowed": True,
            "remaining": 5,
            "limit": 10,
            "resource": "images",
            "requested": 1,
        }

    def test_quota_exceeded_message(self):
        check = QuotaCheck(False, -3, 10, QuotaResource.IMAGES, 1)
        error = QuotaExceeded(check)
        assert error.check is check
        assert "images limit reached" in str(error)
        assert "0 of 10 remaining" in str(error)
