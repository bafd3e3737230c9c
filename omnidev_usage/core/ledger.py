"""
Usage ledger and summary maintenance.

The ledger owns each user's usage logs (through a repository) and keeps a
cached summary for the active period. The cached summary is updated
incrementally as logs are recorded and is treated as a fast path only:
``compute_summary_for_period`` over the stored logs is the source of truth.

Reconciliation rule: the cache is dropped and rebuilt from the stored logs
when a log was evicted by the retention cap, when the UTC date has changed
since it was built, when its oldest folded log has slid out of the window
(the week window moves continuously), or after ``reconcile_interval``
incremental folds.

State is only registered for users that have been written to or have
stored logs; reads for anyone else run against a throwaway default state.

Concurrency: every operation on a user runs under that user's lock, so a
quota check followed by a record (``record_if_allowed``) is atomic per user
and different users never contend.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, FrozenSet, List, Optional, Union

from .errors import AuthorizationError, ConfirmationRequired, ValidationError
from .pricing import PRICING_TABLE, PricingTable, compute_cost
from .quota import QuotaCheck, QuotaResource, check_quota, parse_resource, resource_for_usage_type
from .summary import (
    Period,
    UsageSummary,
    apply_tier_limits,
    as_utc,
    compute_summary_for_period,
    filter_logs_for_period,
    fold_log,
    parse_period,
    period_start,
)
from .tiers import TIER_LIMITS, SubscriptionTier, TierLimits, parse_tier
from omnidev_usage.storage.models import (
    KNOWN_PROVIDERS,
    UNKNOWN_PROVIDER,
    ContextMode,
    UsageLog,
    UsageType,
    new_log_id,
)
from omnidev_usage.storage.repository import UsageRepository, create_repository

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
DEFAULT_RECONCILE_INTERVAL = 50
DEFAULT_RECENT_LOGS_LIMIT = 20


@dataclass(frozen=True)
class Caller:
    """Identity and roles presented by whoever invokes the ledger.

    Roles come from an upstream authenticator; the ledger trusts them and
    never looks them up itself.
    """
    user_id: str
    roles: FrozenSet[str] = frozenset()

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


@dataclass(frozen=True)
class Admission:
    """Outcome of an atomic check-and-record. ``log`` is None when denied."""
    check: QuotaCheck
    log: Optional[UsageLog] = None

    @property
    def allowed(self) -> bool:
        return self.check.allowed


@dataclass
class _UserState:
    tier: SubscriptionTier
    summary: Optional[UsageSummary] = None
    built_on: Optional[date] = None
    oldest: Optional[datetime] = None
    folds_since_reconcile: int = 0
    lock: threading.RLock = field(default_factory=threading.RLock)


class UsageLedger:
    """Per-user usage ledgers with cached summaries and a quota gate."""

    def __init__(
        self,
        repository: UsageRepository,
        default_tier: Union[SubscriptionTier, str] = SubscriptionTier.FREE,
        active_period: Union[Period, str] = Period.MONTH,
        reconcile_interval: int = DEFAULT_RECONCILE_INTERVAL,
        recent_logs_limit: int = DEFAULT_RECENT_LOGS_LIMIT,
        tiers: Optional[Dict[SubscriptionTier, TierLimits]] = None,
        pricing_table: PricingTable = PRICING_TABLE,
    ):
        """Initialize the ledger.

        Args:
            repository: Storage for the users' logs
            default_tier: Tier assigned to users seen for the first time
            active_period: Period the cached summary and quota gate use
            reconcile_interval: Incremental folds allowed between full recomputes
            recent_logs_limit: Default number of logs returned by ``recent_logs``
            tiers: Tier limit table, defaults to the built-in tiers
            pricing_table: Prices used to cost new logs
        """
        if reconcile_interval <= 0:
            raise ValueError("reconcile_interval must be > 0")
        if recent_logs_limit <= 0:
            raise ValueError("recent_logs_limit must be > 0")
        self.repository = repository
        self.default_tier = parse_tier(default_tier)
        self.active_period = parse_period(active_period)
        self.reconcile_interval = reconcile_interval
        self.recent_logs_limit = recent_logs_limit
        self.tiers = tiers if tiers is not None else TIER_LIMITS
        self.pricing_table = pricing_table
        self._states: Dict[str, _UserState] = {}
        self._states_lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "UsageLedger":
        """Build a ledger and its repository from a UsageConfig."""
        repository = create_repository(
            backend=config.storage.backend,
            db_path=config.storage.db_path,
            cap=config.storage.retention_cap,
        )
        return cls(
            repository,
            default_tier=config.ledger.default_tier,
            active_period=config.ledger.active_period,
            reconcile_interval=config.ledger.reconcile_interval,
            recent_logs_limit=config.ledger.recent_logs_limit,
            tiers=config.tier_table(),
            pricing_table=config.pricing_table(),
        )

    # -- per-user state ---------------------------------------------------

    def _state(self, user_id: str, create: bool = True) -> _UserState:
        """Registered state of a user.

        With ``create=False`` an unknown user without stored logs gets a
        default state that is not registered.
        """
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        with self._states_lock:
            state = self._states.get(user_id)
            if state is not None:
                return state
        if not create and not self.repository.get(user_id):
            return _UserState(tier=self.default_tier)
        with self._states_lock:
            return self._states.setdefault(user_id, _UserState(tier=self.default_tier))

    def _limits(self, state: _UserState) -> TierLimits:
        return self.tiers[state.tier]

    def _invalidate(self, state: _UserState) -> None:
        state.summary = None
        state.built_on = None
        state.oldest = None
        state.folds_since_reconcile = 0

    def _chronological_logs(self, user_id: str) -> List[UsageLog]:
        return list(reversed(self.repository.get(user_id)))

    def _active_summary(self, user_id: str, state: _UserState, now: datetime) -> UsageSummary:
        """Cached summary for the active period, rebuilt when stale."""
        start = period_start(self.active_period, now)
        if state.summary is not None:
            if state.built_on != now.date():
                logger.debug("Summary for %s built on %s is stale, reconciling", user_id, state.built_on)
                self._invalidate(state)
            elif start is not None and state.oldest is not None and state.oldest < start:
                logger.debug("Summary for %s holds logs older than %s, reconciling", user_id, start)
                self._invalidate(state)
        if state.summary is None:
            included = filter_logs_for_period(
                self._chronological_logs(user_id), self.active_period, now
            )
            state.summary = compute_summary_for_period(
                included,
                self.active_period,
                self._limits(state),
                now,
            )
            state.built_on = now.date()
            state.oldest = min((as_utc(log.created_at) for log in included), default=None)
            state.folds_since_reconcile = 0
        return state.summary

    # -- tiers ------------------------------------------------------------

    def get_tier(self, user_id: str) -> SubscriptionTier:
        return self._state(user_id, create=False).tier

    def get_tier_limits(self, user_id: str) -> TierLimits:
        return self._limits(self._state(user_id, create=False))

    def set_tier(self, user_id: str, tier: Union[SubscriptionTier, str]) -> UsageSummary:
        """Change a user's tier.

        Limits on the cached summary change immediately; usage already
        consumed carries over.

        Returns:
            The active-period summary under the new tier
        """
        tier = parse_tier(tier)
        state = self._state(user_id)
        with state.lock:
            previous = state.tier
            state.tier = tier
            now = datetime.now(timezone.utc)
            summary = self._active_summary(user_id, state, now)
            state.summary = apply_tier_limits(summary, self._limits(state))
            logger.info("User %s moved from %s to %s tier", user_id, previous.value, tier.value)
            return state.summary

    # -- recording --------------------------------------------------------

    def create_log(
        self,
        user_id: str,
        model_id: Optional[str],
        provider: Optional[str] = None,
        usage_type: Union[UsageType, str] = UsageType.CHAT,
        tokens_input: int = 0,
        tokens_output: int = 0,
        latency_ms: int = 0,
        context_mode: Optional[Union[ContextMode, str]] = None,
        duration_seconds: Optional[float] = None,
        created_at: Optional[datetime] = None,
    ) -> UsageLog:
        """Build a usage log, costing it against the pricing table.

        Raises:
            ValidationError: If a required field is missing or a value is invalid
        """
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        if not model_id:
            raise ValidationError("modelId is required", field="modelId")

        try:
            usage_type = UsageType(usage_type)
        except ValueError:
            raise ValidationError(f"Unknown usage type: {usage_type!r}", field="type")
        try:
            context_mode = ContextMode(context_mode) if context_mode else None
        except ValueError:
            raise ValidationError(f"Unknown context mode: {context_mode!r}", field="contextMode")

        for name, value in (
            ("tokensInput", tokens_input),
            ("tokensOutput", tokens_output),
            ("latencyMs", latency_ms),
        ):
            if value < 0:
                raise ValidationError(f"{name} cannot be negative", field=name)
        if duration_seconds is not None and duration_seconds < 0:
            raise ValidationError("durationSeconds cannot be negative", field="durationSeconds")
        if provider and provider not in KNOWN_PROVIDERS:
            logger.warning("Unrecognized provider %r for model %s", provider, model_id)

        # Generations are billed per unit, not per token
        if usage_type in (UsageType.IMAGE, UsageType.VIDEO):
            tokens_input = tokens_output = 0

        cost = compute_cost(
            model_id,
            usage_type,
            tokens_input,
            tokens_output,
            duration_seconds,
            pricing_table=self.pricing_table,
        )

        return UsageLog(
            id=new_log_id(),
            user_id=user_id,
            model_id=model_id,
            provider=provider or UNKNOWN_PROVIDER,
            usage_type=usage_type,
            tokens_input=int(tokens_input),
            tokens_output=int(tokens_output),
            cost=cost,
            latency_ms=int(latency_ms),
            created_at=created_at or datetime.now(timezone.utc),
            context_mode=context_mode,
        )

    def record_usage(self, log: UsageLog) -> UsageLog:
        """Append a log to its user's ledger and fold it into the cached summary."""
        state = self._state(log.user_id)
        with state.lock:
            self._append(log, state, datetime.now(timezone.utc))
            return log

    def _append(self, log: UsageLog, state: _UserState, now: datetime) -> None:
        evicted = self.repository.append(log.user_id, log)
        logger.info(
            "Recorded %s usage for %s on %s: %d tokens, $%.6f",
            log.usage_type.value, log.user_id, log.model_id, log.total_tokens, log.cost,
        )

        if state.summary is None:
            return
        if evicted or state.built_on != now.date():
            self._invalidate(state)
            return

        if not filter_logs_for_period([log], self.active_period, now):
            # Dated outside the window: the cache stays valid as is
            return

        state.summary = fold_log(state.summary, log)
        created_at = as_utc(log.created_at)
        if state.oldest is None or created_at < state.oldest:
            state.oldest = created_at
        state.folds_since_reconcile += 1
        if state.folds_since_reconcile >= self.reconcile_interval:
            self._invalidate(state)

    def record_if_allowed(
        self,
        log: UsageLog,
        resource: Optional[Union[QuotaResource, str]] = None,
        requested_amount: Optional[int] = None,
    ) -> Admission:
        """Check the quota and record the log as one atomic step.

        Args:
            log: Log to record if admitted
            resource: Resource to check, derived from the log type by default
            requested_amount: Units to check, by default the log's tokens
                for token checks and 1 otherwise

        Returns:
            Admission carrying the check and, when allowed, the recorded log
        """
        resource = parse_resource(resource) if resource else resource_for_usage_type(log.usage_type)
        if requested_amount is None:
            requested_amount = log.total_tokens if resource == QuotaResource.TOKENS else 1

        state = self._state(log.user_id)
        with state.lock:
            now = datetime.now(timezone.utc)
            summary = self._active_summary(log.user_id, state, now)
            check = check_quota(summary, self._limits(state), resource, requested_amount)
            if not check.allowed:
                logger.info(
                    "Denied %s for %s: requested %d, %d of %d remaining",
                    resource.value, log.user_id, requested_amount, check.remaining, check.limit,
                )
                return Admission(check=check)
            self._append(log, state, now)
            return Admission(check=check, log=log)

    # -- reading ----------------------------------------------------------

    def get_summary(
        self,
        user_id: str,
        period: Optional[Union[Period, str]] = None,
        now: Optional[datetime] = None,
    ) -> UsageSummary:
        """Summary of a user's usage for a period (the active period by default).

        The cached summary is returned when it is valid for the requested
        period; any other period is recomputed from the stored logs.
        """
        period = parse_period(period) if period is not None else self.active_period
        state = self._state(user_id, create=False)
        with state.lock:
            if now is None and period == self.active_period:
                return self._active_summary(user_id, state, datetime.now(timezone.utc))
            return compute_summary_for_period(
                self._chronological_logs(user_id),
                period,
                self._limits(state),
                now,
            )

    def reconcile(self, user_id: str) -> UsageSummary:
        """Drop the cached summary and rebuild it from the stored logs."""
        state = self._state(user_id, create=False)
        with state.lock:
            self._invalidate(state)
            return self._active_summary(user_id, state, datetime.now(timezone.utc))

    def recent_logs(self, user_id: str, limit: Optional[int] = None) -> List[UsageLog]:
        """Most recent logs of a user, newest first (``recent_logs_limit`` by default)."""
        limit = limit or self.recent_logs_limit
        state = self._state(user_id, create=False)
        with state.lock:
            return self.repository.get(user_id)[:limit]

    def check_quota(
        self,
        user_id: str,
        resource: Union[QuotaResource, str],
        requested_amount: int = 1,
    ) -> QuotaCheck:
        """Quota gate against the user's active-period summary and tier."""
        state = self._state(user_id, create=False)
        with state.lock:
            summary = self._active_summary(user_id, state, datetime.now(timezone.utc))
            return check_quota(summary, self._limits(state), resource, requested_amount)

    # -- reset ------------------------------------------------------------

    def reset(self, caller: Caller, user_id: Optional[str] = None, confirm: bool = False) -> List[str]:
        """Clear usage logs for one user or, for admins, all users.

        Authorization is checked before confirmation, and nothing changes
        when either check fails. Tiers are kept.

        Args:
            caller: Identity and roles of the requester
            user_id: User to clear; None clears every user
            confirm: Required to clear every user

        Returns:
            Ids of the users whose logs were cleared

        Raises:
            AuthorizationError: If the caller may not clear the target
            ConfirmationRequired: If a bulk reset is not confirmed
        """
        if not caller.user_id:
            raise ValidationError("caller user_id is required", field="user_id")

        if user_id is not None:
            if user_id != caller.user_id and not caller.is_admin:
                raise AuthorizationError("Cannot clear another user's usage data")
            state = self._state(user_id, create=False)
            with state.lock:
                self.repository.clear(user_id)
                self._invalidate(state)
            logger.info("Usage data cleared for %s by %s", user_id, caller.user_id)
            return [user_id]

        if not caller.is_admin:
            raise AuthorizationError("Admin role required to clear all usage data")
        if not confirm:
            raise ConfirmationRequired("Clearing all usage data requires confirmation")

        with self._states_lock:
            states = list(self._states.values())
        cleared = self.repository.user_ids()
        self.repository.clear_all()
        for state in states:
            with state.lock:
                self._invalidate(state)
        logger.warning("All usage data cleared by %s (%d users)", caller.user_id, len(cleared))
        return cleared

