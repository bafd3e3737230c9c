"""
SDK for OmniDev usage accounting.

Provides provider clients that enforce quotas and record usage.
"""

from .openai_client import GuardedOpenAI

__all__ = ["GuardedOpenAI"]
