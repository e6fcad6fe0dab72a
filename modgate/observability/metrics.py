"""Metrics helpers placeholder."""

from __future__ import annotations

from modgate.util.logger import logger


def emit_counter(name: str, value: int = 1, labels: dict | None = None) -> None:
    logger.debug("metric counter name=%s value=%s labels=%s", name, value, labels or {})
