"""Tests for TokenExchanger: request shape, error mapping, store commit/clear policy."""
import threading
from unittest.mock import patch

import httpx
import pytest

from calendar_client.errors import DecodeFailure, NetworkFailure, ProviderRejected, TokenExchangeError
from calendar_client.token_exchange import TokenExchanger
from calendar_client.token_store import Credential, CredentialStore


@pytest.fixture
def store():
    return CredentialStore()


@pytest.fixture
def exchanger(oauth_config, store):
    return TokenExchanger(oauth_config, store)


def _authenticated(store, refresh_token="rt-old"):
    store.write(
        Credential(token_type="Bearer", expires_in=600, access_token="old-at", refresh_token=refresh_token),
        authenticated=True,
    )


def test_authorization_code_request_shape(exchanger, fake_response, token_body):
    with patch("calendar_client.token_exchange.httpx.post", return_value=fake_response(200, token_body())) as post:
        exchanger.exchange_authorization_code("abc")
    url = post.call_args.args[0]
    data = post.call_args.kwargs["data"]
    assert url == "https://login.microsoftonline.com/tenant-1/oauth2/v2.0/token"
    assert data["grant_type"] == "authorization_code"
    assert data["code"] == "abc"
    assert data["client_id"] == "client-1"
    assert data["client_secret"] == "secret-1"
    assert data["redirect_uri"] == "http://localhost:8000/callback"
    assert "offline_access" in data["scope"]
    assert "refresh_token" not in data


def test_authorization_code_success_commits_to_store(exchanger, store, fake_response, token_body):
    with patch("calendar_client.token_exchange.httpx.post", return_value=fake_response(200, token_body("tok1"))):
        credential = exchanger.exchange_authorization_code("abc")
    assert credential.access_token == "tok1"
    assert store.read() == ("tok1", True)
    assert store.snapshot().refresh_token == "rt-new"


def test_authorization_code_rejected_leaves_store_untouched(exchanger, store, fake_response):
    body = {"error": "invalid_grant", "error_description": "AADSTS70000: code is invalid"}
    with patch("calendar_client.token_exchange.httpx.post", return_value=fake_response(400, body)):
        with pytest.raises(ProviderRejected) as exc_info:
            exchanger.exchange_authorization_code("bad")
    assert exc_info.value.status_code == 400
    assert exc_info.value.error == "invalid_grant"
    assert store.read() == ("", False)


def test_refresh_request_uses_stored_refresh_token(exchanger, store, fake_response, token_body):
    _authenticated(store, "rt-123")
    with patch("calendar_client.token_exchange.httpx.post", return_value=fake_response(200, token_body())) as post:
        exchanger.exchange_refresh_token()
    data = post.call_args.kwargs["data"]
    assert data["grant_type"] == "refresh_token"
    assert data["refresh_token"] == "rt-123"
    assert "code" not in data


def test_refresh_success_replaces_credential_with_rotated_token(exchanger, store, fake_response, token_body):
    _authenticated(store)
    with patch(
        "calendar_client.token_exchange.httpx.post",
        return_value=fake_response(200, token_body("new-at", refresh_token="rt-rotated")),
    ):
        exchanger.exchange_refresh_token()
    assert store.read() == ("new-at", True)
    assert store.snapshot().refresh_token == "rt-rotated"


def test_refresh_without_rotation_keeps_previous_refresh_token(exchanger, store, fake_response, token_body):
    _authenticated(store, "rt-keep")
    body = token_body("new-at")
    del body["refresh_token"]
    with patch("calendar_client.token_exchange.httpx.post", return_value=fake_response(200, body)):
        exchanger.exchange_refresh_token()
    assert store.snapshot().refresh_token == "rt-keep"


def test_read_is_not_blocked_while_refresh_waits_on_network(exchanger, store, fake_response, token_body):
    _authenticated(store)
    in_flight = threading.Event()
    release = threading.Event()
    reads = []

    def slow_post(*args, **kwargs):
        in_flight.set()
        release.wait(timeout=5)
        return fake_response(200, token_body("new-at"))

    with patch("calendar_client.token_exchange.httpx.post", side_effect=slow_post):
        worker = threading.Thread(target=exchanger.exchange_refresh_token)
        worker.start()
        try:
            assert in_flight.wait(timeout=5)
            reader = threading.Thread(target=lambda: reads.append(store.read()))
            reader.start()
            reader.join(timeout=1)
            assert not reader.is_alive()
            assert reads == [("old-at", True)]
        finally:
            release.set()
            worker.join(timeout=5)
    assert store.read() == ("new-at", True)


def test_refresh_rejected_clears_store(exchanger, store, fake_response):
    _authenticated(store)
    with patch("calendar_client.token_exchange.httpx.post", return_value=fake_response(400, {"error": "invalid_grant"})):
        with pytest.raises(ProviderRejected):
            exchanger.exchange_refresh_token()
    assert store.read() == ("", False)
    assert store.snapshot() == Credential.empty()


def test_refresh_network_failure_clears_store(exchanger, store):
    _authenticated(store)
    with patch("calendar_client.token_exchange.httpx.post", side_effect=httpx.ConnectError("connection refused")):
        with pytest.raises(NetworkFailure):
            exchanger.exchange_refresh_token()
    assert store.read() == ("", False)


def test_refresh_timeout_is_network_failure(exchanger, store):
    _authenticated(store)
    with patch("calendar_client.token_exchange.httpx.post", side_effect=httpx.ReadTimeout("timed out")):
        with pytest.raises(NetworkFailure):
            exchanger.exchange_refresh_token()
    assert store.read() == ("", False)


def test_refresh_malformed_body_is_decode_failure(exchanger, store, fake_response):
    _authenticated(store)
    with patch(
        "calendar_client.token_exchange.httpx.post",
        return_value=fake_response(200, None, content_type="text/html", text="<html>oops</html>"),
    ):
        with pytest.raises(DecodeFailure):
            exchanger.exchange_refresh_token()
    assert store.read() == ("", False)


def test_refresh_without_refresh_token_fails_and_clears(exchanger, store):
    with patch("calendar_client.token_exchange.httpx.post") as post:
        with pytest.raises(TokenExchangeError):
            exchanger.exchange_refresh_token()
    post.assert_not_called()
    assert store.read() == ("", False)


def test_non_json_error_body_still_rejected(exchanger, fake_response):
    with patch(
        "calendar_client.token_exchange.httpx.post",
        return_value=fake_response(503, None, content_type="text/plain", text="Service Unavailable"),
    ):
        with pytest.raises(ProviderRejected) as exc_info:
            exchanger.exchange_authorization_code("abc")
    assert exc_info.value.status_code == 503
    assert exc_info.value.error is None
