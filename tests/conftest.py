import pytest

from ndvi_dem_api import create_app
from openeo_backend import OpenEOService
from api_config import Config

API_URL = "https://openeo.test/openeo/1.0"
TOKEN_URL = "https://identity.test/auth/realms/CDSE/protocol/openid-connect/token"


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        api_url=API_URL,
        client_id="client-123",
        client_secret="s3cr3t",
        token_url=TOKEN_URL,
        storage_dir=tmp_path / "dem",
    )


@pytest.fixture
def token_mock(requests_mock):
    return requests_mock.post(TOKEN_URL, json={"access_token": "acc123", "expires_in": 3600})


@pytest.fixture
def service(config) -> OpenEOService:
    return OpenEOService(config)


@pytest.fixture
def app(config, service):
    return create_app(config, service=service)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def square():
    """Roughly 1.1 x 1.1 km square near Bonn, as a Polygon coordinate array."""
    return [[[7.10, 50.70], [7.11, 50.70], [7.11, 50.71], [7.10, 50.71], [7.10, 50.70]]]
