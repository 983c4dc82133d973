"""
Thread-safe store for the current OAuth2 credential.
Holds the token set, its computed expiry and the authenticated flag; all three change together under one lock.
Single stored set (no per-user/session).
"""
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable

from calendar_client.errors import DecodeFailure


@dataclass(frozen=True)
class Credential:
    token_type: str = ""
    scope: str = ""
    expires_in: int = 0
    access_token: str = ""
    refresh_token: str = ""

    @classmethod
    def empty(cls) -> "Credential":
        return cls()

    @classmethod
    def from_token_response(cls, data: Any) -> "Credential":
        """
        Map a token endpoint JSON body onto a Credential.
        Raises DecodeFailure when access_token is missing or expires_in is not a non-negative integer.
        """
        if not isinstance(data, dict):
            raise DecodeFailure("Token response is not a JSON object")
        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise DecodeFailure("Token response has no access_token")
        expires_in = data.get("expires_in", 0)
        # Some providers send expires_in as a string
        if isinstance(expires_in, str) and expires_in.isdigit():
            expires_in = int(expires_in)
        if isinstance(expires_in, bool) or not isinstance(expires_in, int) or expires_in < 0:
            raise DecodeFailure(f"Token response has invalid expires_in: {expires_in!r}")
        return cls(
            token_type=str(data.get("token_type") or ""),
            scope=str(data.get("scope") or ""),
            expires_in=expires_in,
            access_token=access_token,
            refresh_token=str(data.get("refresh_token") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credential":
        return cls(
            token_type=str(data.get("token_type", "")),
            scope=str(data.get("scope", "")),
            expires_in=int(data.get("expires_in", 0)),
            access_token=str(data.get("access_token", "")),
            refresh_token=str(data.get("refresh_token", "")),
        )


class CredentialStore:
    """Current credential, expiry timestamp and authenticated flag, guarded by a single lock."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._lock = threading.Lock()
        self._clock = clock
        self._credential = Credential.empty()
        self._expires_at = 0.0
        self._authenticated = False

    def read(self) -> tuple[str, bool]:
        """Return (access_token, authenticated) from the same committed write."""
        with self._lock:
            return self._credential.access_token, self._authenticated

    def write(self, credential: Credential, authenticated: bool = True) -> None:
        """Replace the credential and flag; expiry is recomputed from now + expires_in."""
        if authenticated and not credential.access_token:
            raise ValueError("An authenticated credential needs an access token")
        with self._lock:
            self._credential = credential
            self._authenticated = authenticated
            self._expires_at = self._clock() + credential.expires_in

    def clear(self) -> None:
        with self._lock:
            self._credential = Credential.empty()
            self._authenticated = False
            self._expires_at = 0.0

    def snapshot(self) -> Credential:
        """Copy of the current credential (Credential is immutable, so the reference is safe to share)."""
        with self._lock:
            return self._credential

    @property
    def authenticated(self) -> bool:
        with self._lock:
            return self._authenticated

    @property
    def expires_at(self) -> float:
        with self._lock:
            return self._expires_at
