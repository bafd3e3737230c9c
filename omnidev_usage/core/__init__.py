"""
Core modules for OmniDev usage accounting.

This package contains pricing, token estimation, tier limits, summary
derivation, the quota gate and the per-user usage ledger.
"""
