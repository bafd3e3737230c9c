"""
Configuration management and loading.

Handles application settings and environment variables.
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from omnidev_usage.core.pricing import PRICING_TABLE, ModelPricing, PricingTable
from omnidev_usage.core.summary import Period, parse_period
from omnidev_usage.core.tiers import TIER_LIMITS, SubscriptionTier, TierLimits, parse_tier
from omnidev_usage.storage.db import DEFAULT_DB_PATH
from omnidev_usage.storage.repository import DEFAULT_RETENTION_CAP

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "OMNIDEV_USAGE_CONFIG"
LOG_LEVEL_ENV = "OMNIDEV_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

STORAGE_BACKENDS = ("memory", "sqlite")


@dataclass(frozen=True)
class StorageConfig:
    """Where usage logs are kept."""
    backend: str = "memory"
    db_path: str = DEFAULT_DB_PATH
    retention_cap: int = DEFAULT_RETENTION_CAP

    def __post_init__(self):
        """Validate storage values."""
        if self.backend not in STORAGE_BACKENDS:
            raise ValueError(f"storage.backend must be one of: {list(STORAGE_BACKENDS)}")
        if self.retention_cap <= 0:
            raise ValueError("storage.retention_cap must be > 0")


@dataclass(frozen=True)
class LedgerConfig:
    """Ledger behavior."""
    default_tier: SubscriptionTier = SubscriptionTier.FREE
    active_period: Period = Period.MONTH
    reconcile_interval: int = 50
    recent_logs_limit: int = 20

    def __post_init__(self):
        """Validate ledger values."""
        if self.reconcile_interval <= 0:
            raise ValueError("ledger.reconcile_interval must be > 0")
        if self.recent_logs_limit <= 0:
            raise ValueError("ledger.recent_logs_limit must be > 0")


@dataclass(frozen=True)
class UsageConfig:
    """Complete usage accounting configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    tiers: Dict[SubscriptionTier, TierLimits] = field(default_factory=lambda: dict(TIER_LIMITS))
    pricing_overrides: Dict[str, ModelPricing] = field(default_factory=dict)

    @classmethod
    def default(cls) -> "UsageConfig":
        return cls()

    def tier_table(self) -> Dict[SubscriptionTier, TierLimits]:
        return dict(self.tiers)

    def pricing_table(self) -> PricingTable:
        """Built-in prices with configured overrides layered on top."""
        return PRICING_TABLE.merged(self.pricing_overrides)


def load_usage_config(path: str) -> UsageConfig:
    """Load and validate usage configuration from a YAML file.

    Strict validation rejects unknown keys and bad values so a typo never
    silently falls back to a default limit or price.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated UsageConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Usage config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'storage', 'ledger', 'tiers', 'pricing'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    storage = _parse_storage(_section(raw_config, 'storage'))
    ledger = _parse_ledger(_section(raw_config, 'ledger'))

    tiers = dict(TIER_LIMITS)
    for tier_name, tier_data in _section(raw_config, 'tiers').items():
        try:
            tier = parse_tier(tier_name)
        except ValueError as e:
            raise ValueError(f"tiers.{tier_name}: {e}")
        if not isinstance(tier_data, dict):
            raise ValueError(f"Tier '{tier_name}' must be a dictionary")
        tiers[tier] = _parse_tier_overrides(tiers[tier], tier_data, f"tiers.{tier_name}")

    pricing = {}
    for model_id, pricing_data in _section(raw_config, 'pricing').items():
        if not isinstance(pricing_data, dict):
            raise ValueError(f"Pricing for '{model_id}' must be a dictionary")
        pricing[str(model_id)] = _parse_model_pricing(pricing_data, f"pricing.{model_id}")

    return UsageConfig(
        storage=storage,
        ledger=ledger,
        tiers=tiers,
        pricing_overrides=pricing,
    )


def _section(raw_config: Dict, name: str) -> Dict:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict, allowed_keys: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _positive_int(value: Any, path: str, allow_zero: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{path}' must be an integer")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"'{path}' must be {'>= 0' if allow_zero else '> 0'}")
    return value


def _parse_storage(data: Dict) -> StorageConfig:
    _check_keys(data, {'backend', 'db_path', 'retention_cap'}, "storage")

    backend = data.get('backend', 'memory')
    if not isinstance(backend, str) or backend.lower() not in STORAGE_BACKENDS:
        raise ValueError(f"'storage.backend' must be one of: {list(STORAGE_BACKENDS)}")

    db_path = data.get('db_path', DEFAULT_DB_PATH)
    if not isinstance(db_path, str) or not db_path.strip():
        raise ValueError("'storage.db_path' must be a non-empty string")

    cap = _positive_int(data.get('retention_cap', DEFAULT_RETENTION_CAP), "storage.retention_cap")

    return StorageConfig(backend=backend.lower(), db_path=db_path, retention_cap=cap)


def _parse_ledger(data: Dict) -> LedgerConfig:
    _check_keys(
        data,
        {'default_tier', 'active_period', 'reconcile_interval', 'recent_logs_limit'},
        "ledger",
    )
    defaults = LedgerConfig()

    try:
        default_tier = parse_tier(data.get('default_tier', defaults.default_tier))
        active_period = parse_period(data.get('active_period', defaults.active_period))
    except ValueError as e:
        raise ValueError(f"ledger: {e}")

    return LedgerConfig(
        default_tier=default_tier,
        active_period=active_period,
        reconcile_interval=_positive_int(
            data.get('reconcile_interval', defaults.reconcile_interval), "ledger.reconcile_interval"
        ),
        recent_logs_limit=_positive_int(
            data.get('recent_logs_limit', defaults.recent_logs_limit), "ledger.recent_logs_limit"
        ),
    )


def _parse_tier_overrides(base: TierLimits, data: Dict, path: str) -> TierLimits:
    """Apply partial overrides to a built-in tier."""
    allowed_keys = {f.name for f in fields(TierLimits)}
    _check_keys(data, allowed_keys, path)

    overrides: Dict[str, Any] = {}
    for key, value in data.items():
        if key == 'models_allowed':
            if not isinstance(value, list) or not all(isinstance(m, str) for m in value):
                raise ValueError(f"'{path}.models_allowed' must be a list of model ids")
            overrides[key] = tuple(value)
        else:
            overrides[key] = _positive_int(value, f"{path}.{key}", allow_zero=True)

    return replace(base, **overrides)


def _parse_model_pricing(data: Dict, path: str) -> ModelPricing:
    """Parse and validate pricing for one model."""
    allowed_keys = {
        'input_per_1k_tokens',
        'output_per_1k_tokens',
        'image_per_generation',
        'video_per_second',
    }
    _check_keys(data, allowed_keys, path)

    for key in ('input_per_1k_tokens', 'output_per_1k_tokens'):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")

    amounts = {key: _amount(data[key], f"{path}.{key}") for key in data}
    return ModelPricing(
        input_per_1k_tokens=amounts['input_per_1k_tokens'],
        output_per_1k_tokens=amounts['output_per_1k_tokens'],
        image_per_generation=amounts.get('image_per_generation'),
        video_per_second=amounts.get('video_per_second'),
    )


def _amount(value: Any, path: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"'{path}' must be a number")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"'{path}' must be a number")
    if amount < 0:
        raise ValueError(f"'{path}' must be >= 0")
    return amount


def load_settings(environ: Optional[Dict[str, str]] = None) -> UsageConfig:
    """Load configuration from the file named by ``OMNIDEV_USAGE_CONFIG``.

    Falls back to the built-in defaults when the variable is unset.
    """
    environ = os.environ if environ is None else environ
    path = environ.get(CONFIG_PATH_ENV)
    if not path:
        logger.debug("%s not set, using default configuration", CONFIG_PATH_ENV)
        return UsageConfig.default()
    logger.info("Loading usage configuration from %s", path)
    return load_usage_config(path)


def configure_logging(level: Optional[str] = None, default: str = "INFO") -> None:
    """Configure root logging once for an entry point.

    Args:
        level: Level name; falls back to ``OMNIDEV_LOG_LEVEL``, then ``default``
        default: Level used when neither is set
    """
    level_name = (level or os.environ.get(LOG_LEVEL_ENV) or default).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)
