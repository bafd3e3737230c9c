"""
Data models for storage layer.

Defines the usage log entity and its enumerations.
"""

import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class UsageType(Enum):
    """Kind of call that produced a usage log."""
    CHAT = "chat"
    IMAGE = "image"
    VIDEO = "video"
    EMBEDDING = "embedding"


class ContextMode(Enum):
    """Request mode a chat was sent in. Carried for analytics only."""
    THINKING = "thinking"
    SEARCH = "search"
    RESEARCH = "research"
    IMAGE = "image"
    VIDEO = "video"


KNOWN_PROVIDERS = (
    "openai",
    "anthropic",
    "google",
    "xai",
    "mistral",
    "perplexity",
    "meta",
    "local",
)

UNKNOWN_PROVIDER = "unknown"

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_log_id() -> str:
    """Generate an opaque log id of the form ``log_<epoch ms>_<9 chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"log_{int(time.time() * 1000)}_{suffix}"


@dataclass(frozen=True)
class UsageLog:
    """Immutable record of one inference or generation call.

    Logs are only ever appended to a ledger and evicted by capacity
    trimming. The cost is fixed at creation time and never recomputed.
    """
    id: str
    user_id: str
    model_id: str
    provider: str
    usage_type: UsageType
    tokens_input: int
    tokens_output: int
    cost: float
    latency_ms: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    context_mode: Optional[ContextMode] = None

    def __post_init__(self):
        """Validate counts and amounts are non-negative."""
        if self.tokens_input < 0:
            raise ValueError("tokens_input cannot be negative")
        if self.tokens_output < 0:
            raise ValueError("tokens_output cannot be negative")
        if self.cost < 0:
            raise ValueError("cost cannot be negative")
        if self.latency_ms < 0:
            raise ValueError("latency_ms cannot be negative")

    @property
    def total_tokens(self) -> int:
        return self.tokens_input + self.tokens_output

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the JSON shape used by the HTTP surface."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "model_id": self.model_id,
            "provider": self.provider,
            "type": self.usage_type.value,
            "tokens_input": self.tokens_input,
            "tokens_output": self.tokens_output,
            "cost": self.cost,
            "latency_ms": self.latency_ms,
            "context_mode": self.context_mode.value if self.context_mode else None,
            "created_at": _isoformat(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageLog":
        context_mode = data.get("context_mode")
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            model_id=data["model_id"],
            provider=data.get("provider") or UNKNOWN_PROVIDER,
            usage_type=UsageType(data.get("type", "chat")),
            tokens_input=int(data.get("tokens_input", 0)),
            tokens_output=int(data.get("tokens_output", 0)),
            cost=float(data.get("cost", 0.0)),
            latency_ms=int(data.get("latency_ms", 0)),
            created_at=parse_timestamp(data["created_at"]),
            context_mode=ContextMode(context_mode) if context_mode else None,
        )


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _isoformat(value: datetime) -> str:
    # Millisecond precision with a Z suffix, like JavaScript's toISOString()
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"
