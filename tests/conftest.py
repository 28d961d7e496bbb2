from pathlib import Path

import pytest

from auth.models import AuthorizationSession
from autoauth.env import Settings
from tests.oauth_helpers import API_BASE_URL, free_port


@pytest.fixture
def session() -> AuthorizationSession:
    return AuthorizationSession()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        client_id="client-123",
        client_secret="secret-456",
        redirect_uri="https://127.0.0.1:8182",
        login_id="trader",
        password="hunter2",
        tls_key_file=Path(tmp_path / "server-key.pem"),
        tls_cert_file=Path(tmp_path / "server-cert.pem"),
        api_base_url=API_BASE_URL,
        callback_host="127.0.0.1",
        callback_port=free_port(),
        callback_timeout=10.0,
        screenshot_dir=tmp_path / "screenshots",
        take_screenshots=False,
        debug=False,
    )
