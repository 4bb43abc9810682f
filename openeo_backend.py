#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Client side of the remote openEO API: bearer token handling, DEM
collection discovery and process graph execution.
"""

import json
import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import requests

from api_errors import AuthenticationFailed, RemoteProcessingError
from geo_ops import BoundingBox, polygon_bounding_box, to_feature_collection
from process_graphs import JSON_FORMAT, build_dem_graph, build_ndvi_graph, wrap_process
from api_config import Config

_log = logging.getLogger(__name__)

TOKEN_LIFETIME_SECONDS = 55 * 60  # real lifetime is 60 min
TOKEN_SCOPE = "openid email profile user-context"


# -------------------------------
# Remote JSON
# -------------------------------

_NON_STANDARD_TOKEN = re.compile(r"(?<![\w\"])(-?Infinity|NaN)(?![\w\"])")


def sanitize_json_text(text: str) -> str:
    """Map bare NaN / Infinity / -Infinity tokens to null."""
    out: List[str] = []
    pos = 0
    # string literals are copied untouched
    for m in re.finditer(r'"(?:\\.|[^"\\])*"', text):
        out.append(_NON_STANDARD_TOKEN.sub("null", text[pos:m.start()]))
        out.append(m.group(0))
        pos = m.end()
    out.append(_NON_STANDARD_TOKEN.sub("null", text[pos:]))
    return "".join(out)


def parse_remote_json(text: str) -> Any:
    """Sanitize and parse; returns the raw text if it still is not JSON."""
    try:
        return json.loads(sanitize_json_text(text))
    except ValueError as e:
        _log.warning("Failed to parse JSON data: %s", e)
        return text


# -------------------------------
# Token cache
# -------------------------------

@dataclass(frozen=True)
class Credential:
    token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenCache:
    """
    Empty -> Valid(token, expires_at). Refreshes are serialized: callers
    arriving while a refresh is in flight wait and reuse its result.
    """

    def __init__(self, fetch_token: Callable[[], str], clock: Callable[[], float] = time.time,
                 lifetime: float = TOKEN_LIFETIME_SECONDS):
        self._fetch_token = fetch_token
        self._clock = clock
        self._lifetime = lifetime
        self._credential: Optional[Credential] = None
        self._lock = threading.Lock()

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def get_token(self) -> str:
        cred = self._credential
        if cred is not None and cred.is_valid(self._clock()):
            return cred.token

        with self._lock:
            cred = self._credential
            if cred is not None and cred.is_valid(self._clock()):
                return cred.token
            token = self._fetch_token()
            self._credential = Credential(token=token, expires_at=self._clock() + self._lifetime)
            return token

    def invalidate(self) -> None:
        with self._lock:
            self._credential = None


class ClientCredentialsAuth:
    """OAuth2 client-credentials grant against the identity endpoint."""

    def __init__(self, session: requests.Session, token_url: str, client_id: str, client_secret: str,
                 provider_id: str = "CDSE", timeout: float = 60.0):
        self.session = session
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.provider_id = provider_id
        self.timeout = timeout

    def __call__(self) -> str:
        data = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scope": TOKEN_SCOPE,
        }
        try:
            r = self.session.post(self.token_url, data=data, timeout=self.timeout)
        except requests.RequestException as e:
            _log.error("Error getting access token: %s", e)
            raise AuthenticationFailed("Failed to authenticate with OpenEO") from e

        if not r.ok:
            _log.error("Token request failed (%s): %s", r.status_code, r.text[:800])
            raise AuthenticationFailed("Failed to authenticate with OpenEO")
        try:
            access_token = r.json().get("access_token")
        except (ValueError, AttributeError):
            access_token = None
        if not access_token or not isinstance(access_token, str):
            _log.error("Token response without 'access_token': %s", r.text[:800])
            raise AuthenticationFailed("Failed to authenticate with OpenEO")

        _log.info("OpenEO authentication successful")
        # openEO bearer convention: oidc/<provider>/<access token>
        return f"oidc/{self.provider_id}/{access_token}"


# -------------------------------
# DEM collection discovery
# -------------------------------

DEM_PRODUCTS = ("GLO-30", "GLO-90", "EEA-10")
DEFAULT_DEM_PRODUCT = "GLO-30"
FALLBACK_DEM_COLLECTION = "USGS/SRTMGL1_003"

_CDSE_NAMES = {"GLO-30": "COPERNICUS_30", "GLO-90": "COPERNICUS_90"}
_COMMON_DEM_IDS = (
    "COPERNICUS_30",
    "COPERNICUS/DEM/GLO-30",
    "USGS/SRTMGL1_003",
    "NASA/NASADEM_HGT/001",
    "JAXA/ALOS/AW3D30/V3_2",
    "MERIT/DEM/v1_0_3",
)

ELEVATION_TERMS = frozenset({"dem", "dsm", "dtm", "elevation", "srtm", "terrain", "topography"})
VEGETATION_TERMS = frozenset({"ndvi", "vegetation", "phenology", "vpp", "lai", "fapar", "fcover", "leaf"})


def _tokens(*texts: Any) -> set:
    out = set()
    for t in texts:
        out.update(w for w in re.split(r"[^a-z0-9]+", str(t or "").lower()) if w)
    return out


class KnownCollectionStrategy:
    """First well-known id (product-specific first) present in the catalog."""

    def candidates(self, product: str) -> List[str]:
        out = [f"COPERNICUS/DEM/{product}"]
        if product in _CDSE_NAMES:
            out.append(_CDSE_NAMES[product])
        for cid in _COMMON_DEM_IDS:
            if cid not in out:
                out.append(cid)
        return out

    def resolve(self, product: str, catalog: Sequence[Dict[str, Any]]) -> Optional[str]:
        ids = {c.get("id") for c in catalog if isinstance(c, dict)}
        for cid in self.candidates(product):
            if cid in ids:
                return cid
        return None


class KeywordCollectionStrategy:
    """First catalog entry that looks like elevation data and not like vegetation data."""

    def matches(self, entry: Dict[str, Any]) -> bool:
        words = _tokens(entry.get("id"), entry.get("title"), entry.get("description"))
        return bool(words & ELEVATION_TERMS) and not (words & VEGETATION_TERMS)

    def resolve(self, product: str, catalog: Sequence[Dict[str, Any]]) -> Optional[str]:
        for entry in catalog:
            if isinstance(entry, dict) and entry.get("id") and self.matches(entry):
                return entry["id"]
        return None


class CollectionResolver:
    """
    Best effort: the resolved collection is not guaranteed to have the
    resolution of the requested product tier.
    """

    def __init__(self, list_collections: Callable[[str], List[Dict[str, Any]]],
                 fallback: str = FALLBACK_DEM_COLLECTION):
        self._list_collections = list_collections
        self.strategies = [KnownCollectionStrategy(), KeywordCollectionStrategy()]
        self.fallback = fallback

    def resolve(self, product: str, token: str) -> str:
        try:
            catalog = self._list_collections(token)
        except (RemoteProcessingError, requests.RequestException) as e:
            _log.warning("Failed to list collections (%s). Using fallback %s.", e, self.fallback)
            return self.fallback

        _log.debug("Catalog lists %d collections", len(catalog))
        for strategy in self.strategies:
            cid = strategy.resolve(product, catalog)
            if cid:
                _log.info("Resolved DEM collection for %s via %s: %s", product, type(strategy).__name__, cid)
                return cid

        _log.info("No DEM collection found in catalog; using fallback %s", self.fallback)
        return self.fallback


# -------------------------------
# Service
# -------------------------------

@dataclass
class DemCutout:
    product: str
    collection_id: str
    bbox: BoundingBox
    fmt: str
    data: Any  # parsed JSON (or raw text) for JSON, bytes otherwise


class OpenEOService:
    def __init__(self, config: Config, session: Optional[requests.Session] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.base_url = config.api_url.rstrip("/")
        self.timeout = config.http_timeout
        self.session = session or requests.Session()
        auth = ClientCredentialsAuth(
            session=self.session,
            token_url=config.token_url,
            client_id=config.client_id,
            client_secret=config.client_secret,
            provider_id=config.auth_provider,
            timeout=self.timeout,
        )
        self.tokens = TokenCache(auth, clock=clock)
        self.resolver = CollectionResolver(self.list_collections)

    def _headers(self, token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def list_collections(self, token: str) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/collections"
        r = self.session.get(url, headers=self._headers(token), timeout=self.timeout)
        if not r.ok:
            raise RemoteProcessingError(
                f"Collection listing failed: Upstream HTTP {r.status_code}",
                upstream_status=r.status_code,
                upstream_body=r.text[:800],
            )
        try:
            data = r.json()
        except ValueError as e:
            raise RemoteProcessingError("Collection listing returned invalid JSON") from e
        collections = data.get("collections") if isinstance(data, dict) else None
        if not isinstance(collections, list):
            raise RemoteProcessingError(
                "Collection listing has no \"collections\" array",
                upstream_status=r.status_code,
                upstream_body=r.text[:800],
            )
        return [c for c in collections if isinstance(c, dict)]

    def execute(self, process_graph: Dict[str, Any], binary: bool = False) -> Union[bytes, Any]:
        """POST /result; JSON responses are sanitized and parsed, binary ones returned as bytes."""
        token = self.tokens.get_token()
        url = f"{self.base_url}/result"
        try:
            r = self.session.post(
                url,
                json=wrap_process(process_graph),
                headers=self._headers(token),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RemoteProcessingError(f"OpenEO request failed: {e}") from e

        if r.status_code == 401:
            # token revoked or expired early; next call fetches a fresh one
            self.tokens.invalidate()
        if not r.ok:
            _log.error("OpenEO /result failed (%s): %s", r.status_code, r.text[:1200])
            raise RemoteProcessingError(
                f"OpenEO processing failed: Upstream HTTP {r.status_code}",
                upstream_status=r.status_code,
                upstream_body=r.text[:1200],
            )

        if binary:
            return r.content
        return parse_remote_json(r.text)

    def ndvi_timeseries(self, coordinates: List[Any], start_date: Any, end_date: Any) -> Any:
        graph = build_ndvi_graph([start_date, end_date], to_feature_collection(coordinates))
        try:
            return self.execute(graph)
        except RemoteProcessingError as e:
            raise RemoteProcessingError(
                f"Failed to get NDVI timeseries from OpenEO: {e}",
                upstream_status=e.upstream_status,
                upstream_body=e.upstream_body,
            ) from e

    def dem_cutout(self, coordinates: List[Any], product: str = DEFAULT_DEM_PRODUCT,
                   fmt: str = JSON_FORMAT) -> DemCutout:
        bbox = polygon_bounding_box(coordinates)
        token = self.tokens.get_token()
        collection_id = self.resolver.resolve(product, token)
        graph = build_dem_graph(collection_id, bbox, fmt)
        try:
            data = self.execute(graph, binary=fmt != JSON_FORMAT)
        except RemoteProcessingError as e:
            raise RemoteProcessingError(
                f"Failed to get DEM cutout from OpenEO: {e}",
                upstream_status=e.upstream_status,
                upstream_body=e.upstream_body,
            ) from e
        return DemCutout(product=product, collection_id=collection_id, bbox=bbox, fmt=fmt, data=data)
