"""Simple logging setup for the application."""

from __future__ import annotations

import logging
import os


def setup_logging(level: str | None = None) -> None:
    if logging.getLogger().handlers:
        return

    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=level_name,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


class ImportLogAdapter(logging.LoggerAdapter):
    """Prefixes every record with the import it belongs to."""

    def process(self, msg, kwargs):  # noqa: ANN001
        extra = self.extra or {}
        return f"[import {extra.get('project_key', '-')} actor={extra.get('actor_id', '-')}] {msg}", kwargs


def import_logger(name: str, *, project_key: str, actor_id: str) -> ImportLogAdapter:
    return ImportLogAdapter(logging.getLogger(name), {"project_key": project_key, "actor_id": actor_id})
