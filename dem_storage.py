#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from geo_ops import polygon_bounding_box

_log = logging.getLogger(__name__)

FILE_EXTENSIONS = {"GTiff": ".tiff", "PNG": ".png", "JSON": ".json"}
META_SUFFIX = ".meta.json"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DemFileStore:
    """DEM cutouts on local disk, each with a <name>.meta.json sidecar."""

    def __init__(self, root: Path, download_prefix: str = "/dem/files"):
        self.root = Path(root)
        self.download_prefix = download_prefix.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, filename: str) -> Path:
        if not filename or "/" in filename or "\\" in filename or filename in (".", ".."):
            raise ValueError(f"Invalid file name: {filename!r}")
        return self.root / filename

    def download_url(self, filename: str) -> str:
        return f"{self.download_prefix}/{filename}"

    def generate_filename(self, fmt: str, coordinates: List[Any], now: Optional[datetime] = None) -> str:
        ts = (now or _utcnow()).strftime("%Y_%m_%dT%H_%M_%S_%fZ")
        bb = polygon_bounding_box(coordinates)
        ext = FILE_EXTENSIONS.get(fmt, ".bin")
        return f"dem_{ts}_bbox_{bb.west:.3f}_{bb.south:.3f}_{bb.east:.3f}_{bb.north:.3f}{ext}"

    def save(self, data: Union[bytes, str, Any], fmt: str, coordinates: List[Any],
             product: str = "GLO-30") -> Dict[str, Any]:
        filename = self.generate_filename(fmt, coordinates)
        path = self._path(filename)
        if path.exists():
            filename = f"{path.stem}_{uuid.uuid4().hex[:6]}{path.suffix}"
            path = self._path(filename)

        if isinstance(data, (bytes, bytearray)):
            payload = bytes(data)
        elif isinstance(data, str):
            payload = data.encode("utf-8")
        else:
            payload = json.dumps(data, indent=2).encode("utf-8")
        path.write_bytes(payload)

        metadata = {
            "filename": filename,
            "format": fmt,
            "product": product,
            "coordinates": coordinates,
            "bbox": polygon_bounding_box(coordinates).to_dict(),
            "timestamp": _utcnow().isoformat(),
            "fileSize": len(payload),
        }
        (self.root / f"{filename}{META_SUFFIX}").write_text(json.dumps(metadata, indent=2), encoding="utf-8")

        _log.info("Saved DEM file: %s (%d bytes)", filename, len(payload))
        return {
            "filename": filename,
            "filePath": str(path),
            "metadata": metadata,
            "downloadUrl": self.download_url(filename),
        }

    def _read_metadata(self, filename: str) -> Dict[str, Any]:
        meta = self.root / f"{filename}{META_SUFFIX}"
        if not meta.exists():
            return {}
        try:
            return json.loads(meta.read_text(encoding="utf-8"))
        except ValueError:
            _log.warning("Unreadable metadata for %s", filename)
            return {}

    def list_files(self) -> List[Dict[str, Any]]:
        """Newest first."""
        items = []
        for p in self.root.glob("*"):
            if not p.is_file() or p.name.endswith(META_SUFFIX):
                continue
            st = p.stat()
            entry = {"filename": p.name}
            entry.update(self._read_metadata(p.name))
            entry.update({
                "actualFileSize": st.st_size,
                "modified": datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).isoformat(),
                "downloadUrl": self.download_url(p.name),
            })
            items.append((st.st_mtime, entry))
        items.sort(key=lambda t: t[0], reverse=True)
        return [e for _, e in items]

    def get(self, filename: str) -> Optional[Dict[str, Any]]:
        path = self._path(filename)
        if filename.endswith(META_SUFFIX) or not path.is_file():
            return None
        return {"filePath": path, "metadata": self._read_metadata(filename)}

    def delete(self, filename: str) -> bool:
        path = self._path(filename)
        if filename.endswith(META_SUFFIX):
            return False
        deleted = False
        if path.is_file():
            path.unlink()
            deleted = True
        (self.root / f"{filename}{META_SUFFIX}").unlink(missing_ok=True)
        return deleted
