"""Usage API: summaries, recording, quota checks and resets."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from omnidev_usage.core.errors import AuthorizationError, UnauthenticatedError, ValidationError
from omnidev_usage.core.ledger import Caller, UsageLedger
from omnidev_usage.core.quota import parse_resource
from omnidev_usage.core.summary import parse_period
from omnidev_usage.core.tiers import parse_tier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/usage", tags=["usage"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_ledger(request: Request) -> UsageLedger:
    return request.app.state.ledger


def get_caller(
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
    x_user_roles: Optional[str] = Header(None, alias="X-User-Roles"),
) -> Caller:
    """Identity forwarded by the authenticating proxy.

    Raises 401 when no user id was forwarded.
    """
    if not x_user_id or not x_user_id.strip():
        raise UnauthenticatedError("Authentication required")
    roles = frozenset(
        role.strip().lower() for role in (x_user_roles or "").split(",") if role.strip()
    )
    return Caller(user_id=x_user_id.strip(), roles=roles)


def _target_user(caller: Caller, user_id: Optional[str]) -> str:
    if user_id is None or user_id == caller.user_id:
        return caller.user_id
    if not caller.is_admin:
        raise AuthorizationError("Cannot access another user's usage data")
    return user_id


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class RecordUsageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_id: Optional[str] = Field(None, alias="modelId")
    provider: Optional[str] = None
    type: str = "chat"
    tokens_input: int = Field(0, alias="tokensInput")
    tokens_output: int = Field(0, alias="tokensOutput")
    latency_ms: int = Field(0, alias="latencyMs")
    context_mode: Optional[str] = Field(None, alias="contextMode")
    duration_seconds: Optional[float] = Field(None, alias="durationSeconds")


class SetTierRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tier: str
    user_id: Optional[str] = Field(None, alias="userId")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("")
def read_usage(
    period: str = Query("month"),
    user_id: Optional[str] = Query(None, alias="userId"),
    caller: Caller = Depends(get_caller),
    ledger: UsageLedger = Depends(get_ledger),
):
    """Summary for a period plus the most recent logs."""
    try:
        period = parse_period(period)
    except ValueError as e:
        raise ValidationError(str(e), field="period")

    target = _target_user(caller, user_id)
    summary = ledger.get_summary(target, period)
    recent = ledger.recent_logs(target)
    return {
        "success": True,
        "data": {
            "summary": summary.to_dict(),
            "recentLogs": [log.to_dict() for log in recent],
            "userId": target,
            "tier": ledger.get_tier(target).value,
        },
    }


@router.post("")
def record_usage(
    body: RecordUsageRequest,
    caller: Caller = Depends(get_caller),
    ledger: UsageLedger = Depends(get_ledger),
):
    """Record a completed call for the caller."""
    log = ledger.create_log(
        user_id=caller.user_id,
        model_id=body.model_id,
        provider=body.provider,
        usage_type=body.type,
        tokens_input=body.tokens_input,
        tokens_output=body.tokens_output,
        latency_ms=body.latency_ms,
        context_mode=body.context_mode,
        duration_seconds=body.duration_seconds,
    )
    ledger.record_usage(log)
    return {"success": True, "data": {"log": log.to_dict()}}


@router.delete("")
def clear_usage(
    user_id: Optional[str] = Query(None, alias="userId"),
    confirm: bool = Query(False),
    caller: Caller = Depends(get_caller),
    ledger: UsageLedger = Depends(get_ledger),
):
    """Clear one user's logs, or every user's logs for a confirmed admin."""
    ledger.reset(caller, user_id=user_id, confirm=confirm)
    message = f"Usage data cleared for {user_id}" if user_id else "All usage data cleared"
    return {"success": True, "message": message}


@router.get("/quota")
def read_quota(
    resource: str = Query("tokens"),
    amount: int = Query(1, ge=0),
    user_id: Optional[str] = Query(None, alias="userId"),
    caller: Caller = Depends(get_caller),
    ledger: UsageLedger = Depends(get_ledger),
):
    """Whether ``amount`` more of ``resource`` fits the user's quota."""
    try:
        resource = parse_resource(resource)
    except ValueError as e:
        raise ValidationError(str(e), field="resource")

    target = _target_user(caller, user_id)
    check = ledger.check_quota(target, resource, amount)
    data = check.to_dict()
    data["displayRemaining"] = check.display_remaining
    return {"success": True, "data": data}


@router.put("/tier")
def update_tier(
    body: SetTierRequest,
    caller: Caller = Depends(get_caller),
    ledger: UsageLedger = Depends(get_ledger),
):
    """Change a user's tier. Tiers follow billing, so only admins may set them."""
    if not caller.is_admin:
        raise AuthorizationError("Admin role required to change tiers")
    try:
        tier = parse_tier(body.tier)
    except ValueError as e:
        raise ValidationError(str(e), field="tier")

    target = body.user_id or caller.user_id
    summary = ledger.set_tier(target, tier)
    return {
        "success": True,
        "data": {"userId": target, "tier": tier.value, "summary": summary.to_dict()},
    }
