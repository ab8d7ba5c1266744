from __future__ import annotations

import json
from uuid import uuid4

import pytest

from jira_migrator.services.storage import LocalFileStorage


def test_local_storage_saves_blob_with_sidecar(tmp_path) -> None:  # noqa: ANN001
    storage = LocalFileStorage(tmp_path)
    asset_id = uuid4()

    storage.save(b"hello", 5, asset_id, "text/plain", {"project_id": "p1"})

    blob = tmp_path / str(asset_id)[:2] / str(asset_id)
    assert blob.read_bytes() == b"hello"
    sidecar = json.loads(blob.with_suffix(".json").read_text(encoding="utf-8"))
    assert sidecar == {"content_type": "text/plain", "size": 5, "metadata": {"project_id": "p1"}}

    storage.delete(asset_id)
    storage.delete(asset_id)
    assert not blob.exists()
    assert not blob.with_suffix(".json").exists()


def test_local_storage_rejects_size_mismatch(tmp_path) -> None:  # noqa: ANN001
    with pytest.raises(ValueError):
        LocalFileStorage(tmp_path).save(b"abc", 5, uuid4(), "text/plain")
