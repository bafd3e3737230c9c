"""
Usage summaries derived from the ledger.

A summary is always a function of a set of usage logs, a period filter and
the active tier limits. ``fold_log`` is the single aggregation rule; the
incremental ledger path and the full recomputation both go through it, so
folding logs one at a time and recomputing over the same logs agree.
"""

import calendar
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .tiers import TierLimits
from omnidev_usage.storage.models import UsageLog, UsageType

TOP_MODELS_LIMIT = 5
DAILY_USAGE_DAYS = 30


class Period(Enum):
    """Filter window a summary reflects."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"


@dataclass(frozen=True)
class ModelUsage:
    """Requests and tokens attributed to one model."""
    model_id: str
    count: int
    tokens: int


@dataclass(frozen=True)
class DailyUsage:
    """Tokens and cost for one UTC calendar day."""
    date: str
    tokens: int
    cost: float


@dataclass(frozen=True)
class UsageSummary:
    """Aggregate view over the logs of one period.

    ``model_totals`` and ``day_totals`` keep every model and day seen, in
    first-seen order; ``top_models`` and ``daily_usage`` are the truncated
    views that get reported.
    """
    period: Period
    tokens_used: int
    tokens_limit: int
    images_generated: int
    images_limit: int
    videos_generated: int
    videos_limit: int
    total_cost: float
    request_count: int
    average_latency: float
    model_totals: Tuple[ModelUsage, ...] = ()
    day_totals: Tuple[DailyUsage, ...] = ()

    @property
    def tokens_remaining(self) -> int:
        return max(0, self.tokens_limit - self.tokens_used)

    @property
    def percent_used(self) -> float:
        # Not clamped: over-quota usage reports more than 100
        if self.tokens_limit > 0:
            return self.tokens_used / self.tokens_limit * 100
        return 0.0

    @property
    def top_models(self) -> List[ModelUsage]:
        ranked = sorted(self.model_totals, key=lambda m: m.tokens, reverse=True)
        return ranked[:TOP_MODELS_LIMIT]

    @property
    def daily_usage(self) -> List[DailyUsage]:
        ordered = sorted(self.day_totals, key=lambda d: d.date)
        return ordered[-DAILY_USAGE_DAYS:]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the camelCase JSON shape used by the HTTP surface."""
        return {
            "period": self.period.value,
            "tokensUsed": self.tokens_used,
            "tokensLimit": self.tokens_limit,
            "tokensRemaining": self.tokens_remaining,
            "percentUsed": self.percent_used,
            "imagesGenerated": self.images_generated,
            "imagesLimit": self.images_limit,
            "videosGenerated": self.videos_generated,
            "videosLimit": self.videos_limit,
            "totalCost": self.total_cost,
            "requestCount": self.request_count,
            "averageLatency": self.average_latency,
            "topModels": [
                {"modelId": m.model_id, "count": m.count, "tokens": m.tokens}
                for m in self.top_models
            ],
            "dailyUsage": [
                {"date": d.date, "tokens": d.tokens, "cost": d.cost}
                for d in self.daily_usage
            ],
        }


def parse_period(period: Union[Period, str]) -> Period:
    """Coerce a period name to a Period.

    Raises:
        ValueError: If the name is not a known period
    """
    if isinstance(period, Period):
        return period
    try:
        return Period(str(period).lower())
    except ValueError:
        valid = [p.value for p in Period]
        raise ValueError(f"Unknown period: {period!r} (expected one of {valid})")


def empty_summary(period: Union[Period, str], limits: TierLimits) -> UsageSummary:
    """Zeroed summary seeded with the tier's monthly limits."""
    return UsageSummary(
        period=parse_period(period),
        tokens_used=0,
        tokens_limit=limits.tokens_per_month,
        images_generated=0,
        images_limit=limits.images_per_month,
        videos_generated=0,
        videos_limit=limits.videos_per_month,
        total_cost=0.0,
        request_count=0,
        average_latency=0.0,
    )


def apply_tier_limits(summary: UsageSummary, limits: TierLimits) -> UsageSummary:
    """Swap in new tier limits, keeping the usage already consumed."""
    return replace(
        summary,
        tokens_limit=limits.tokens_per_month,
        images_limit=limits.images_per_month,
        videos_limit=limits.videos_per_month,
    )


def fold_log(summary: UsageSummary, log: UsageLog) -> UsageSummary:
    """Fold one usage log into a summary, returning the updated summary."""
    tokens = log.total_tokens
    request_count = summary.request_count + 1
    average_latency = (
        summary.average_latency * summary.request_count + log.latency_ms
    ) / request_count

    return replace(
        summary,
        tokens_used=summary.tokens_used + tokens,
        images_generated=summary.images_generated + (1 if log.usage_type == UsageType.IMAGE else 0),
        videos_generated=summary.videos_generated + (1 if log.usage_type == UsageType.VIDEO else 0),
        total_cost=summary.total_cost + log.cost,
        request_count=request_count,
        average_latency=average_latency,
        model_totals=_add_model(summary.model_totals, log.model_id, tokens),
        day_totals=_add_day(summary.day_totals, log_date(log), tokens, log.cost),
    )


def _add_model(totals: Tuple[ModelUsage, ...], model_id: str, tokens: int) -> Tuple[ModelUsage, ...]:
    for i, entry in enumerate(totals):
        if entry.model_id == model_id:
            updated = ModelUsage(model_id, entry.count + 1, entry.tokens + tokens)
            return totals[:i] + (updated,) + totals[i + 1:]
    return totals + (ModelUsage(model_id, 1, tokens),)


def _add_day(totals: Tuple[DailyUsage, ...], day: str, tokens: int, cost: float) -> Tuple[DailyUsage, ...]:
    for i, entry in enumerate(totals):
        if entry.date == day:
            updated = DailyUsage(day, entry.tokens + tokens, entry.cost + cost)
            return totals[:i] + (updated,) + totals[i + 1:]
    return totals + (DailyUsage(day, tokens, cost),)


def as_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def log_date(log: UsageLog) -> str:
    """UTC calendar date of a log as ``YYYY-MM-DD``."""
    return as_utc(log.created_at).date().isoformat()


def period_start(period: Union[Period, str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Start of the period window ending at ``now``.

    day   -- midnight (UTC) of the current date
    week  -- exactly 7 x 24 hours before now
    month -- midnight of the same day-of-month one calendar month back,
             clamped to the last day of a shorter month
    all   -- None (no lower bound)
    """
    period = parse_period(period)
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)

    if period == Period.DAY:
        return _midnight(now.date())
    if period == Period.WEEK:
        return now - timedelta(days=7)
    if period == Period.MONTH:
        year, month = now.year, now.month - 1
        if month == 0:
            year, month = year - 1, 12
        day = min(now.day, calendar.monthrange(year, month)[1])
        return _midnight(date(year, month, day))
    return None


def _midnight(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def filter_logs_for_period(
    logs: Iterable[UsageLog],
    period: Union[Period, str],
    now: Optional[datetime] = None,
) -> List[UsageLog]:
    """Keep the logs whose ``created_at`` falls inside the period window."""
    period = parse_period(period)
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    start = period_start(period, now)

    if start is None:
        return list(logs)
    if period == Period.DAY:
        today = now.date()
        return [log for log in logs if as_utc(log.created_at).date() == today]
    return [log for log in logs if as_utc(log.created_at) >= start]


def compute_summary_for_period(
    logs: Iterable[UsageLog],
    period: Union[Period, str],
    limits: TierLimits,
    now: Optional[datetime] = None,
) -> UsageSummary:
    """Recompute a summary from scratch.

    This is the authoritative view of a ledger. Logs may be given in any
    order; they are folded oldest first, the same order the incremental
    path sees them.

    Args:
        logs: Usage logs of a single user
        period: Filter window
        limits: Active tier limits
        now: Reference time for the window, defaults to the current time

    Returns:
        Summary over the logs inside the window
    """
    period = parse_period(period)
    included = filter_logs_for_period(logs, period, now)
    included.sort(key=lambda log: as_utc(log.created_at))

    summary = empty_summary(period, limits)
    for log in included:
        summary = fold_log(summary, log)
    return summary
