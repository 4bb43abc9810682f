from pathlib import Path

import pytest

from api_errors import ConfigError
from api_config import DEFAULT_TOKEN_URL, Config, normalize_api_url

ENV = {
    "OPENEO_API_URL": "openeo.dataspace.copernicus.eu",
    "OPENEO_CLIENT_ID": "cid",
    "OPENEO_CLIENT_SECRET": "secret",
}


@pytest.mark.parametrize(
    ["url", "expected"],
    [
        ("openeo.dataspace.copernicus.eu", "https://openeo.dataspace.copernicus.eu/openeo/1.0"),
        ("https://openeo.dataspace.copernicus.eu/", "https://openeo.dataspace.copernicus.eu/openeo/1.0"),
        ("http://localhost:8080/openeo/1.2", "http://localhost:8080/openeo/1.2"),
        ("", ""),
    ],
)
def test_normalize_api_url(url, expected):
    assert normalize_api_url(url) == expected


def test_from_env_defaults():
    config = Config.from_env(ENV)
    assert config.api_url == "https://openeo.dataspace.copernicus.eu/openeo/1.0"
    assert config.client_id == "cid"
    assert config.client_secret == "secret"
    assert config.token_url == DEFAULT_TOKEN_URL
    assert config.auth_provider == "CDSE"
    assert config.port == 3000
    assert config.is_development
    assert config.http_timeout == 60.0
    assert config.storage_dir == Path("storage") / "dem"
    assert config.max_aoi_area_km2 == 0.0


def test_from_env_overrides():
    env = dict(ENV, PORT="8080", APP_ENV="production", HTTP_TIMEOUT="5", MAX_AOI_AREA_KM2="25", LOG_LEVEL="debug")
    config = Config.from_env(env)
    assert config.port == 8080
    assert not config.is_development
    assert config.http_timeout == 5.0
    assert config.max_aoi_area_km2 == 25.0
    assert config.log_level == "DEBUG"


def test_missing_required():
    with pytest.raises(ConfigError) as exc_info:
        Config.from_env({"OPENEO_API_URL": "x", "OPENEO_CLIENT_SECRET": "  "})
    assert exc_info.value.missing == ["OPENEO_CLIENT_ID", "OPENEO_CLIENT_SECRET"]


def test_main_exits_without_config(monkeypatch):
    import ndvi_dem_api

    for key in ENV:
        monkeypatch.delenv(key, raising=False)
    with pytest.raises(SystemExit) as exc_info:
        ndvi_dem_api.main()
    assert exc_info.value.code == 1
