"""
OAuth2 token endpoint client: authorization_code and refresh_token grants.
The HTTP call runs without holding the store lock; only the commit of the result is locked.
"""
import logging
from dataclasses import replace

import httpx

from calendar_client.config import OAuthConfig
from calendar_client.errors import DecodeFailure, NetworkFailure, ProviderRejected, TokenExchangeError
from calendar_client.token_store import Credential, CredentialStore

logger = logging.getLogger(__name__)

TOKEN_REQUEST_TIMEOUT = 10.0


class TokenExchanger:
    def __init__(self, oauth: OAuthConfig, store: CredentialStore):
        self.oauth = oauth
        self.store = store

    def _post(self, grant_data: dict[str, str]) -> Credential:
        data = {
            "client_id": self.oauth.client_id,
            "client_secret": self.oauth.client_secret,
            "scope": self.oauth.scope,
            "redirect_uri": self.oauth.redirect_uri,
            **grant_data,
        }
        try:
            r = httpx.post(
                self.oauth.token_url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=TOKEN_REQUEST_TIMEOUT,
            )
        except httpx.HTTPError as e:
            raise NetworkFailure(f"Token endpoint unreachable: {e}") from e

        if r.status_code != 200:
            err: dict = {}
            if r.headers.get("content-type", "").startswith("application/json"):
                try:
                    body = r.json()
                except ValueError:
                    body = None
                if isinstance(body, dict):
                    err = body
            raise ProviderRejected(r.status_code, err.get("error"), err.get("error_description"))

        try:
            body = r.json()
        except ValueError as e:
            raise DecodeFailure(f"Token response is not valid JSON: {e}") from e
        return Credential.from_token_response(body)

    def exchange_authorization_code(self, code: str) -> Credential:
        """
        Exchange an authorization code for tokens and commit them to the store.
        On failure the store is left as it was.
        """
        try:
            credential = self._post({"grant_type": "authorization_code", "code": code})
        except ProviderRejected as e:
            logger.warning("authorization_code grant rejected: %s", e)
            raise
        except (NetworkFailure, DecodeFailure) as e:
            logger.error("authorization_code grant failed: %s", e)
            raise
        self.store.write(credential, authenticated=True)
        logger.info("Token received (expires_in=%ss)", credential.expires_in)
        return credential

    def exchange_refresh_token(self, refresh_token: str | None = None) -> Credential:
        """
        Exchange a refresh token (the stored one by default) for a new token set.
        Any failure clears the store: a failed refresh invalidates the session.
        """
        if refresh_token is None:
            refresh_token = self.store.snapshot().refresh_token
        if not refresh_token:
            self.store.clear()
            raise TokenExchangeError("No refresh token available")
        try:
            credential = self._post({"grant_type": "refresh_token", "refresh_token": refresh_token})
        except ProviderRejected as e:
            logger.warning("refresh_token grant rejected: %s", e)
            self.store.clear()
            raise
        except (NetworkFailure, DecodeFailure) as e:
            logger.error("refresh_token grant failed: %s", e)
            self.store.clear()
            raise
        if not credential.refresh_token:
            # Provider did not rotate; keep using the old refresh token
            credential = replace(credential, refresh_token=refresh_token)
        self.store.write(credential, authenticated=True)
        logger.info("Token refresh succeeded (expires_in=%ss)", credential.expires_in)
        return credential
