#!/usr/bin/env python3
"""FastAPI server runner."""

import argparse

import structlog
import uvicorn

from flip_core.api.app import create_app
from flip_core.config.loader import load_config
from flip_core.logging.setup import setup_logging

logger = structlog.get_logger("api")


def main():
    """Run the FastAPI server with the price poller in the background."""
    parser = argparse.ArgumentParser(description="Flip price & settlement API")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    args = parser.parse_args()

    cfg = load_config(args.config)
    setup_logging(
        level=cfg.logging.level,
        log_format=cfg.logging.format,
        component_levels=cfg.logging.components,
    )

    logger.info("api_starting", host=cfg.api.host, port=cfg.api.port)

    try:
        uvicorn.run(
            create_app(cfg),
            host=cfg.api.host,
            port=cfg.api.port,
            log_config=None,  # use our structlog setup
        )
    except Exception as e:
        logger.error("api_start_failed", error=str(e))
        raise


if __name__ == "__main__":
    main()
