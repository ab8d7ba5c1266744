"""Object storage boundary for attachment and avatar blobs."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Protocol
from uuid import UUID

from jira_migrator.core.config import settings

logger = logging.getLogger(__name__)


class FileStorage(Protocol):
    def save(self, data: bytes, size: int, asset_id: UUID, content_type: str, metadata: dict[str, str] | None = None) -> None:
        ...

    def delete(self, asset_id: UUID) -> None:
        ...


class LocalFileStorage:
    """Stores blobs as files named by asset id, with a JSON sidecar for metadata."""

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root or settings.STORAGE_DIR)
        self._lock = threading.Lock()

    def _path(self, asset_id: UUID) -> Path:
        name = str(asset_id)
        return self.root / name[:2] / name

    def save(self, data: bytes, size: int, asset_id: UUID, content_type: str, metadata: dict[str, str] | None = None) -> None:
        if size >= 0 and len(data) != size:
            raise ValueError(f"size mismatch for {asset_id}: expected {size}, got {len(data)}")
        path = self._path(asset_id)
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        sidecar = {"content_type": content_type, "size": len(data), "metadata": metadata or {}}
        path.with_suffix(".json").write_text(json.dumps(sidecar), encoding="utf-8")
        logger.debug("Stored asset %s (%s bytes)", asset_id, len(data))

    def delete(self, asset_id: UUID) -> None:
        path = self._path(asset_id)
        path.unlink(missing_ok=True)
        path.with_suffix(".json").unlink(missing_ok=True)
