"""Telemetry adapter that writes pipeline events as structured log lines."""

from __future__ import annotations

import json
import logging
from typing import Any

LOGGER = logging.getLogger("chattriage.events")


class LogTelemetry:
    """TelemetryPort implementation backed by the logging module."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        LOGGER.log(self._level, "%s %s", event, json.dumps(payload, ensure_ascii=False, default=str, sort_keys=True))
