#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
openEO NDVI / DEM API – polygon in, openEO process graph out, friendly JSON back.

API:
- GET  /                   -> Service info + endpoint list
- GET  /healthz            -> Liveness probe (plain "ok")
- GET  /ndvi/health        -> {"status": "OK", "timestamp": ...}
- POST /ndvi/timeseries    -> NDVI mean over the polygon (Sentinel-2 L2A) for a date range
- POST /dem/clip, /dem     -> DEM cutout (JSON with points + statistics, or GTiff/PNG bytes)
- GET  /dem/files          -> Locally saved cutouts, newest first
- GET  /dem/files/<name>   -> Download a saved cutout
- DELETE /dem/files/<name> -> Delete a saved cutout

Configuration: see api_config.py (OPENEO_API_URL, OPENEO_CLIENT_ID and
OPENEO_CLIENT_SECRET are required; the process exits without them).
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import Flask, Response, jsonify, request, send_file
from werkzeug.exceptions import HTTPException

import dem_stats
from dem_storage import DemFileStore
from api_errors import ApiError, ConfigError, ValidationError
from geo_ops import aoi_area_km2
from openeo_backend import OpenEOService
from process_graphs import JSON_FORMAT
from api_config import Config
from request_validation import validate_dem_request, validate_ndvi_request

_log = logging.getLogger(__name__)

APP_TITLE = "Geospatial API Server"
APP_VERSION = "1.0.0"

BINARY_RESPONSES = {
    "GTiff": ("image/tiff", "attachment; filename=dem_cutout.tiff"),
    "PNG": ("image/png", "inline; filename=dem_cutout.png"),
}

FILE_MIMETYPES = {
    ".tiff": ("image/tiff", True),
    ".png": ("image/png", False),
    ".json": ("application/json", True),
}


# -------------------------------
# Helpers
# -------------------------------

def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _check_aoi(config: Config, coordinates: Any) -> float:
    area = aoi_area_km2(coordinates)
    if config.max_aoi_area_km2 > 0 and area > config.max_aoi_area_km2:
        raise ValidationError(
            "Validation error",
            details=[f"AOI is too large: {area:.3f} km² (limit: {config.max_aoi_area_km2:.3f} km²)"],
        )
    return area


def _save_cutout(store: DemFileStore, data: Any, fmt: str, coordinates: Any, product: str) -> Optional[Dict[str, Any]]:
    try:
        return store.save(data, fmt, coordinates, product)
    except OSError as e:
        _log.warning("Failed to save file locally: %s", e)
        return None


def _dem_json_payload(raw: Any, area_km2: float, product: str, collection_id: str,
                      saved: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    summary = dem_stats.transform_response(raw)
    request_meta = {"product": product, "collection": collection_id, "aoiAreaKm2": round(area_km2, 6)}

    out: Dict[str, Any] = {"success": True}
    if summary is not None:
        out["elevationPoints"] = [p.to_dict() for p in summary.points]
        out["statistics"] = summary.statistics()
        out["metadata"] = {**summary.metadata, **request_meta}
    else:
        out["elevationPoints"] = []
        out["statistics"] = None
        out["metadata"] = request_meta
        out["message"] = "No valid elevation data in the requested area."
    out["rawData"] = raw

    if saved:
        out["savedFile"] = {
            "filename": saved["filename"],
            "downloadUrl": saved["downloadUrl"],
            "metadata": saved["metadata"],
        }
    return out


# -------------------------------
# Flask
# -------------------------------

def create_app(config: Config, service: Optional[OpenEOService] = None,
               store: Optional[DemFileStore] = None) -> Flask:
    app = Flask(__name__)
    app.json.sort_keys = False

    service = service or OpenEOService(config)
    store = store or DemFileStore(config.storage_dir)
    app.extensions["openeo_service"] = service
    app.extensions["dem_store"] = store

    # ---- errors ----

    @app.errorhandler(ValidationError)
    def handle_validation(e: ValidationError):
        return jsonify({"error": "Validation error", "details": e.details or [e.message]}), 400

    @app.errorhandler(ApiError)
    def handle_api_error(e: ApiError):
        _log.error("%s: %s", type(e).__name__, e.message)
        message = e.message if config.is_development else "Something went wrong"
        return jsonify({"error": "Internal server error", "message": message}), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http(e: HTTPException):
        if e.code == 404:
            return jsonify({"error": "Not Found", "message": f"Route {request.path} not found"}), 404
        return jsonify({"error": e.name, "message": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        _log.exception("Unhandled error")
        message = str(e) if config.is_development else "Something went wrong"
        return jsonify({"error": "Internal Server Error", "message": message}), 500

    @app.after_request
    def log_request(resp: Response):
        _log.info("%s %s -> %s", request.method, request.path, resp.status_code)
        return resp

    # ---- routes ----

    @app.get("/")
    def index():
        return jsonify({
            "message": APP_TITLE,
            "version": APP_VERSION,
            "endpoints": {
                "POST /ndvi/timeseries": "Get NDVI timeseries data",
                "GET /ndvi/health": "Health check endpoint",
                "POST /dem/clip": "Get DEM cutout via openEO (JSON, GTiff or PNG)",
                "GET /dem/files": "List locally saved DEM cutouts",
                "GET /dem/files/<filename>": "Download a saved DEM cutout",
                "DELETE /dem/files/<filename>": "Delete a saved DEM cutout",
            },
        })

    @app.get("/healthz")
    def healthz():
        return Response("ok", mimetype="text/plain")

    @app.get("/ndvi/health")
    def ndvi_health():
        return jsonify({"status": "OK", "timestamp": _iso_now()})

    @app.post("/ndvi/timeseries")
    def ndvi_timeseries():
        """
        Body: { "start_date": "2024-05-01", "end_date": "2024-06-01", "coordinates": [[[lon, lat], ...]] }
        """
        body = validate_ndvi_request(request.get_json(silent=True))
        _check_aoi(config, body["coordinates"])
        result = service.ndvi_timeseries(body["coordinates"], body["start_date"], body["end_date"])
        return jsonify(result)

    @app.post("/dem/clip")
    @app.post("/dem")
    def dem_clip():
        """
        Body: { "coordinates": [[[lon, lat], ...]], "product": "GLO-30|GLO-90|EEA-10",
                "format": "JSON|GTiff|PNG", "save_locally": true }
        """
        body = validate_dem_request(request.get_json(silent=True))
        coordinates, product, fmt = body["coordinates"], body["product"], body["format"]
        area = _check_aoi(config, coordinates)

        cutout = service.dem_cutout(coordinates, product, fmt)

        saved = None
        if body["save_locally"]:
            saved = _save_cutout(store, cutout.data, fmt, coordinates, product)

        if fmt != JSON_FORMAT:
            mimetype, disposition = BINARY_RESPONSES[fmt]
            resp = Response(cutout.data, mimetype=mimetype)
            resp.headers["Content-Disposition"] = disposition
            if saved:
                resp.headers["X-Saved-File"] = saved["filename"]
                resp.headers["X-Download-Url"] = saved["downloadUrl"]
            return resp

        return jsonify(_dem_json_payload(cutout.data, area, product, cutout.collection_id, saved))

    @app.get("/dem/files")
    def dem_files():
        files = store.list_files()
        return jsonify({"total": len(files), "files": files})

    @app.get("/dem/files/<filename>")
    def dem_file(filename: str):
        try:
            info = store.get(filename)
        except ValueError:
            info = None
        if not info:
            return jsonify({"error": "File not found"}), 404

        path = info["filePath"]
        mimetype, as_attachment = FILE_MIMETYPES.get(path.suffix.lower(), ("application/octet-stream", True))
        resp = send_file(path, mimetype=mimetype, as_attachment=as_attachment,
                         download_name=filename, conditional=True)
        meta = info["metadata"]
        if meta:
            resp.headers["X-DEM-Product"] = meta.get("product") or "unknown"
            resp.headers["X-DEM-Format"] = meta.get("format") or "unknown"
            resp.headers["X-DEM-Timestamp"] = meta.get("timestamp") or "unknown"
        return resp

    @app.delete("/dem/files/<filename>")
    def dem_file_delete(filename: str):
        try:
            deleted = store.delete(filename)
        except ValueError:
            deleted = False
        if not deleted:
            return jsonify({"error": "File not found or could not be deleted"}), 404
        return jsonify({"message": f"File {filename} deleted successfully"})

    return app


def main() -> None:
    try:
        config = Config.from_env()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        _log.error("%s", e)
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(config)
    _log.info("Geospatial API server running on port %s (%s, openEO at %s)", config.port, config.env, config.api_url)
    app.run(host="0.0.0.0", port=config.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
