"""
Unit tests for usage tracking helpers.
"""

import pytest

from omnidev_usage.core.ledger import UsageLedger
from omnidev_usage.core.quota import QuotaResource
from omnidev_usage.core.tracking import UsageTracker
from omnidev_usage.storage.models import ContextMode, UsageType
from omnidev_usage.storage.repository import InMemoryUsageRepository


class TestUsageTracker:
    """Test UsageTracker recording and overview."""

    def setup_method(self):
        """Set up a tracker over an in-memory ledger."""
        self.ledger = UsageLedger(InMemoryUsageRepository())
        self.tracker = UsageTracker(self.ledger)

    def test_track_usage_estimates_tokens(self):
        log = self.tracker.track_usage(
            "alice", "gpt-5.1-chat", "openai", "x" * 400, "y" * 41, latency_ms=900,
            context_mode="thinking",
        )
        assert log.tokens_input == 100
        assert log.tokens_output == 11
        assert log.usage_type == UsageType.CHAT
        assert log.context_mode == ContextMode.THINKING
        assert self.ledger.get_summary("alice").tokens_used == 111

    def test_track_usage_empty_text(self):
        log = self.tracker.track_usage("alice", "gpt-5.1-chat", "openai", "", "", 10)
        assert log.total_tokens == 0
        assert log.cost == 0.0

    def test_track_image_generation(self):
        log = self.tracker.track_image_generation("alice", "dall-e-3", "openai", 4000)
        assert log.usage_type == UsageType.IMAGE
        assert log.cost == pytest.approx(0.04)
        assert self.ledger.get_summary("alice").images_generated == 1

    def test_track_video_generation(self):
        self.ledger.set_tier("alice", "pro")
        log = self.tracker.track_video_generation("alice", "sora-2-pro", "openai", 6, 30_000)
        assert log.usage_type == UsageType.VIDEO
        assert log.cost == pytest.approx(0.6)
        assert self.ledger.get_summary("alice").videos_generated == 1

    def test_can_use_feature(self):
        assert self.tracker.can_use_feature("alice", QuotaResource.IMAGES).allowed is True
        assert self.tracker.can_use_feature("alice", "videos").allowed is False
        assert self.tracker.can_use_feature("alice", "tokens", 100_001).allowed is False

    def test_usage_overview(self):
        self.tracker.track_usage("alice", "gpt-5.1-chat", "openai", "x" * 4000, "y" * 4000, 100)
        self.tracker.track_image_generation("alice", "dall-e-3", "openai", 100)

        overview = self.tracker.usage_overview("alice")
        assert overview["tokens"] == {"used": 2000, "limit": 100_000, "percent": pytest.approx(2.0)}
        assert overview["images"]["used"] == 1
        assert overview["images"]["percent"] == pytest.approx(10.0)
        assert overview["requestCount"] == 2
        assert overview["totalCost"] > 0

    def test_overview_zero_limit_percent(self):
        """Free tier has no video quota; percent is reported as 0."""
        overview = self.tracker.usage_overview("alice")
        assert overview["videos"] == {"used": 0, "limit": 0, "percent": 0.0}
