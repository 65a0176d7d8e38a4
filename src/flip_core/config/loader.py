"""Config loader — reads YAML, applies FLIP_* env var overrides."""

from __future__ import annotations

import os
from pathlib import Path

import yaml

from flip_core.config.schema import AppConfig


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load config from a YAML file, then apply env var overrides.

    If *path* is None or the file doesn't exist, returns defaults.

    Environment variable overrides:
        FLIP_DATABASE_URL            -> database.url
        FLIP_LOG_LEVEL               -> logging.level
        FLIP_LOG_FORMAT              -> logging.format
        FLIP_PRICE_POLL_INTERVAL_MS  -> orchestrator.poll_interval_s (converted)
        FLIP_VIRTUAL_TOKEN_ID        -> orchestrator.virtual_token_id
    """
    data: dict = {}
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p) as f:
                data = yaml.safe_load(f) or {}

    db_url = os.environ.get("FLIP_DATABASE_URL")
    if db_url:
        data.setdefault("database", {})["url"] = db_url

    log_level = os.environ.get("FLIP_LOG_LEVEL")
    if log_level:
        data.setdefault("logging", {})["level"] = log_level

    log_format = os.environ.get("FLIP_LOG_FORMAT")
    if log_format:
        data.setdefault("logging", {})["format"] = log_format

    poll_ms = os.environ.get("FLIP_PRICE_POLL_INTERVAL_MS")
    if poll_ms:
        try:
            data.setdefault("orchestrator", {})["poll_interval_s"] = float(poll_ms) / 1000
        except ValueError:
            pass

    virtual_id = os.environ.get("FLIP_VIRTUAL_TOKEN_ID")
    if virtual_id:
        data.setdefault("orchestrator", {})["virtual_token_id"] = virtual_id.strip().lower()

    return AppConfig.model_validate(data)
