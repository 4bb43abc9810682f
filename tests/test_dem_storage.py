import json
import os
from datetime import datetime, timezone

import pytest

from dem_storage import DemFileStore


@pytest.fixture
def store(tmp_path):
    return DemFileStore(tmp_path / "dem")


def test_generate_filename(store, square):
    now = datetime(2024, 5, 1, 12, 30, 15, 123000, tzinfo=timezone.utc)
    assert store.generate_filename("GTiff", square, now=now) == (
        "dem_2024_05_01T12_30_15_123000Z_bbox_7.100_50.700_7.110_50.710.tiff"
    )
    assert store.generate_filename("NetCDF", square, now=now).endswith(".bin")


def test_save_binary(store, square):
    saved = store.save(b"II*\x00", "GTiff", square, "GLO-90")
    path = store.root / saved["filename"]
    assert path.read_bytes() == b"II*\x00"
    assert saved["downloadUrl"] == f"/dem/files/{saved['filename']}"

    meta = json.loads((store.root / f"{saved['filename']}.meta.json").read_text())
    assert meta["product"] == "GLO-90"
    assert meta["format"] == "GTiff"
    assert meta["fileSize"] == 4
    assert meta["bbox"] == {"west": 7.10, "south": 50.70, "east": 7.11, "north": 50.71}


def test_save_json(store, square):
    saved = store.save({"data": [[1.0]]}, "JSON", square)
    assert saved["filename"].endswith(".json")
    assert json.loads((store.root / saved["filename"]).read_text()) == {"data": [[1.0]]}


def test_list_get_delete(store, square):
    first = store.save(b"a", "PNG", square)
    second = store.save(b"bb", "GTiff", square)
    os.utime(store.root / first["filename"], (1_000_000, 1_000_000))

    files = store.list_files()
    assert [f["filename"] for f in files] == [second["filename"], first["filename"]]
    assert files[0]["actualFileSize"] == 2
    assert files[0]["product"] == "GLO-30"

    info = store.get(first["filename"])
    assert info["filePath"] == store.root / first["filename"]
    assert info["metadata"]["format"] == "PNG"

    assert store.delete(first["filename"]) is True
    assert store.get(first["filename"]) is None
    assert not (store.root / f"{first['filename']}.meta.json").exists()
    assert store.delete(first["filename"]) is False
    assert len(store.list_files()) == 1


def test_metadata_sidecar_not_served(store, square):
    saved = store.save(b"a", "PNG", square)
    assert store.get(f"{saved['filename']}.meta.json") is None


@pytest.mark.parametrize("name", ["../secret", "a/b.tiff", "..", ""])
def test_rejects_path_names(store, name):
    with pytest.raises(ValueError):
        store.get(name)
    with pytest.raises(ValueError):
        store.delete(name)


def test_delete_refuses_metadata_sidecar(store, square):
    saved = store.save(b"a", "PNG", square)
    sidecar = store.root / f"{saved['filename']}.meta.json"
    assert store.delete(sidecar.name) is False
    assert sidecar.exists()
    assert store.get(saved["filename"])["metadata"]["format"] == "PNG"
