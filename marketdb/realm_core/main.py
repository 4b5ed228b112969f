"""
MarketDB server - main entry point.

Starts the HTTP API over one local replica:
- Loads CoreConfig and ApiSettings from the environment
- Opens and initializes the SQLite replica
- Serves the FastAPI app with uvicorn

Usage:
    python -m marketdb.realm_core.main

Configuration is entirely via environment variables.
See config.py and api/settings.py for all available settings.

Invariants:
    - The schema is initialized before the first request is served
    - uvicorn's own logging goes through the root handler configured here

How to change safely:
    - Keep setup_logging() the only place that touches root logger handlers
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api import ApiSettings, create_app
from .config import CoreConfig, ObservabilityConfig
from .service import RealmService

logger = logging.getLogger(__name__)


def setup_logging(config: ObservabilityConfig) -> None:
    """Configure the root logger.

    Args:
        config: Observability configuration
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        config = CoreConfig.from_env()
        settings = ApiSettings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.observability)
    config.log_config()

    service = RealmService.from_config(config)
    app = create_app(service, settings)

    logger.info(f"Starting MarketDB API on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
