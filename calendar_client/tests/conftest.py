"""
Pytest configuration for calendar_client. Shared config objects and a fake token endpoint response.
"""
import json

import pytest

from calendar_client.config import CalendarConfig, CredentialsConfig, OAuthConfig, Settings
from calendar_client.manager import CredentialManager


class FakeResponse:
    """Stands in for httpx.Response: status_code, headers, json(), text."""

    def __init__(self, status_code=200, body=None, content_type="application/json", text=None):
        self.status_code = status_code
        self.headers = {"content-type": content_type} if content_type else {}
        self._body = body
        self.text = text if text is not None else json.dumps(body)

    def json(self):
        if self._body is None:
            return json.loads(self.text)
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise AssertionError(f"unexpected raise_for_status on {self.status_code}")


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def token_body():
    def _build(access_token="tok1", refresh_token="rt-new", expires_in=3600):
        return {
            "token_type": "Bearer",
            "scope": "https://graph.microsoft.com/Calendars.Read",
            "expires_in": expires_in,
            "access_token": access_token,
            "refresh_token": refresh_token,
        }

    return _build


@pytest.fixture
def oauth_config():
    return OAuthConfig(client_id="client-1", client_secret="secret-1", tenant_id="tenant-1")


@pytest.fixture
def credentials_config(tmp_path):
    return CredentialsConfig(open_browser=False, persist=True, storage_path=str(tmp_path))


@pytest.fixture
def settings(oauth_config, credentials_config, tmp_path):
    return Settings(
        oauth=oauth_config,
        credentials=credentials_config,
        calendar=CalendarConfig(status_file=str(tmp_path / "status.txt")),
    )


@pytest.fixture
def manager(oauth_config, credentials_config):
    return CredentialManager(oauth_config, credentials_config)
