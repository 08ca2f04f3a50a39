"""
Logging setup shared by both tools.

Diagnostics go to stderr; received messages are program output and are
written to stdout directly. Level comes from MQTT_TOOLS_LOG_LEVEL, else INFO.
"""

from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL_ENV = "MQTT_TOOLS_LOG_LEVEL"


def _parse_level(raw: str) -> int:
    if not raw or not str(raw).strip():
        return logging.INFO
    raw = str(raw).strip().upper()
    if raw.isdigit():
        return int(raw)
    level = getattr(logging, raw, logging.INFO)
    return level if isinstance(level, int) else logging.INFO


def level_from_env() -> int:
    return _parse_level(os.environ.get(LOG_LEVEL_ENV, ""))


def configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, stream=sys.stderr)
    logging.getLogger().setLevel(level_from_env())
