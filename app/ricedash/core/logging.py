from __future__ import annotations

import json
import logging

_REDACTED_KEYS = {"password", "secret", "token", "authorization"}


def configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def redact(payload: dict) -> dict:
    return {
        key: ("***" if any(marker in key.lower() for marker in _REDACTED_KEYS) else value)
        for key, value in payload.items()
    }


def log_json(logger: logging.Logger, payload: dict, level: int = logging.INFO) -> None:
    logger.log(level, json.dumps(redact(payload), ensure_ascii=False, default=str))
