"""
Quota-guarded OpenAI client wrapper.

Checks the user's token quota before each call and records a usage log
after it returns.
"""

import time
from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..core.ledger import UsageLedger
from ..core.quota import QuotaExceeded, QuotaResource
from ..core.token_counter import TokenUsage, estimate_message_tokens
from ..storage.models import ContextMode, UsageType


class GuardedOpenAI:
    """OpenAI client wrapper that enforces quotas and records usage.

    The prompt size is estimated up front for the admission check; the
    recorded log uses the token counts reported by the API.
    """

    def __init__(
        self,
        model: str,
        user_id: str,
        ledger: UsageLedger,
        provider: str = "openai",
        client: Optional[OpenAI] = None,
    ):
        """Initialize guarded OpenAI client.

        Args:
            model: OpenAI model name (required)
            user_id: User the calls are billed to (required)
            ledger: Ledger used for quota checks and recording
            provider: Provider name stored on the logs
            client: Preconfigured OpenAI client, created from the environment if omitted

        Raises:
            ValueError: If model or user_id is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required and cannot be empty")

        self.model = model
        self.user_id = user_id
        self.ledger = ledger
        self.provider = provider
        self.client = client or OpenAI()

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        context_mode: Optional[ContextMode] = None,
        **kwargs: Any
    ) -> Any:
        """Create a chat completion if the user's quota allows it.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            context_mode: Request mode stored on the usage log (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty or the response has no usage
            QuotaExceeded: If the estimated prompt does not fit the quota
            OpenAI API errors: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        predicted = estimate_message_tokens(messages) + (max_tokens or 0)
        check = self.ledger.check_quota(self.user_id, QuotaResource.TOKENS, predicted)
        if not check.allowed:
            raise QuotaExceeded(check)

        started = time.monotonic()
        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs
        )
        latency_ms = int((time.monotonic() - started) * 1000)

        usage = response.usage
        if not usage:
            raise ValueError("OpenAI response missing usage information")
        tokens = TokenUsage(prompt_tokens=usage.prompt_tokens, completion_tokens=usage.completion_tokens)

        log = self.ledger.create_log(
            user_id=self.user_id,
            model_id=self.model,
            provider=self.provider,
            usage_type=UsageType.CHAT,
            tokens_input=tokens.prompt_tokens,
            tokens_output=tokens.completion_tokens,
            latency_ms=latency_ms,
            context_mode=context_mode,
        )
        self.ledger.record_usage(log)

        return response
