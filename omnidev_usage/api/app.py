"""OmniDev usage FastAPI application."""

import logging
from typing import Optional

from fastapi import FastAPI

from omnidev_usage.api import routes
from omnidev_usage.api.errors import setup_error_handlers
from omnidev_usage.config.loader import UsageConfig, configure_logging, load_settings
from omnidev_usage.core.ledger import UsageLedger

logger = logging.getLogger(__name__)


def create_app(
    ledger: Optional[UsageLedger] = None,
    settings: Optional[UsageConfig] = None,
) -> FastAPI:
    """Application factory.

    Args:
        ledger: Ledger to serve; built from ``settings`` when omitted
        settings: Configuration; read from the environment when omitted
    """
    if ledger is None:
        settings = settings or load_settings()
        ledger = UsageLedger.from_config(settings)

    app = FastAPI(title="OmniDev Usage API", version="1.0.0")
    app.state.ledger = ledger

    setup_error_handlers(app)
    app.include_router(routes.router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    logger.info(
        "Usage API ready (storage: %s, cap: %d, default tier: %s)",
        type(ledger.repository).__name__, ledger.repository.cap, ledger.default_tier.value,
    )
    return app


def build_app() -> FastAPI:
    """Entry point for ``uvicorn --factory``: configure logging, then build."""
    configure_logging()
    return create_app()
