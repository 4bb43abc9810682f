#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Process configuration, read once at startup.

ENV variables:
  OPENEO_API_URL            (required; "https://" and "/openeo/1.0" added when missing)
  OPENEO_CLIENT_ID          (required)
  OPENEO_CLIENT_SECRET      (required)
  OPENEO_TOKEN_URL          (default: CDSE identity endpoint)
  OPENEO_AUTH_PROVIDER      (default: CDSE)
  PORT                      (default: 3000)
  APP_ENV                   (default: development)
  HTTP_TIMEOUT              (default: 60)
  STORAGE_DIR               (default: ./storage/dem)
  MAX_AOI_AREA_KM2          (default: 0 = no limit)
  LOG_LEVEL                 (default: INFO)
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from api_errors import ConfigError

DEFAULT_TOKEN_URL = "https://identity.dataspace.copernicus.eu/auth/realms/CDSE/protocol/openid-connect/token"

REQUIRED_VARS = ("OPENEO_API_URL", "OPENEO_CLIENT_ID", "OPENEO_CLIENT_SECRET")


def normalize_api_url(url: str) -> str:
    url = (url or "").strip().rstrip("/")
    if not url:
        return url
    if not url.startswith("http"):
        url = f"https://{url}"
    if "/openeo/" not in url:
        url = f"{url}/openeo/1.0"
    return url


@dataclass(frozen=True)
class Config:
    api_url: str
    client_id: str
    client_secret: str
    token_url: str = DEFAULT_TOKEN_URL
    auth_provider: str = "CDSE"
    port: int = 3000
    env: str = "development"
    http_timeout: float = 60.0
    storage_dir: Path = Path("storage") / "dem"
    max_aoi_area_km2: float = 0.0
    log_level: str = "INFO"

    @property
    def is_development(self) -> bool:
        return self.env.lower() == "development"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        env = os.environ if environ is None else environ

        missing = [k for k in REQUIRED_VARS if not (env.get(k) or "").strip()]
        if missing:
            raise ConfigError(missing)

        return cls(
            api_url=normalize_api_url(env["OPENEO_API_URL"]),
            client_id=env["OPENEO_CLIENT_ID"].strip(),
            client_secret=env["OPENEO_CLIENT_SECRET"].strip(),
            token_url=env.get("OPENEO_TOKEN_URL", DEFAULT_TOKEN_URL),
            auth_provider=env.get("OPENEO_AUTH_PROVIDER", "CDSE"),
            port=int(env.get("PORT", "3000")),
            env=env.get("APP_ENV", "development"),
            http_timeout=float(env.get("HTTP_TIMEOUT", "60")),
            storage_dir=Path(env.get("STORAGE_DIR", str(Path("storage") / "dem"))),
            max_aoi_area_km2=float(env.get("MAX_AOI_AREA_KM2", "0")),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
