"""
Calendar client configuration. Values come from the environment.
No secrets in this file; the client secret is read from OAUTH_CLIENT_SECRET.
"""
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from calendar_client.errors import ConfigError

# Microsoft identity platform; tenant is appended per request
DEFAULT_AUTHORITY = "https://login.microsoftonline.com"

# .default picks up the app registration's Graph permissions (Calendars.Read); offline_access yields a refresh token
DEFAULT_SCOPE = "https://graph.microsoft.com/.default offline_access"

DEFAULT_GRAPH_URL = "https://graph.microsoft.com/v1.0"

DEFAULT_PROTOCOL = "http"
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8000

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class OAuthConfig:
    client_id: str
    client_secret: str
    tenant_id: str
    protocol: str = DEFAULT_PROTOCOL
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    authority: str = DEFAULT_AUTHORITY
    scope: str = DEFAULT_SCOPE

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"

    @property
    def redirect_uri(self) -> str:
        return f"{self.base_url}/callback"

    @property
    def token_url(self) -> str:
        return f"{self.authority}/{self.tenant_id}/oauth2/v2.0/token"

    @property
    def authorize_url(self) -> str:
        return f"{self.authority}/{self.tenant_id}/oauth2/v2.0/authorize"


@dataclass(frozen=True)
class CredentialsConfig:
    open_browser: bool = False
    persist: bool = False
    storage_path: str = ""


@dataclass(frozen=True)
class CalendarConfig:
    graph_url: str = DEFAULT_GRAPH_URL
    poll_interval_seconds: int = 60
    # How far ahead calendarview looks for the next event
    lookahead_hours: int = 24
    # Plain-text status file rewritten after every poll; empty disables it
    status_file: str = ""
    # IANA name; sent as Prefer: outlook.timezone so Graph returns wall times in this zone
    timezone: str = "UTC"


@dataclass(frozen=True)
class Settings:
    oauth: OAuthConfig
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    log_level: str = "INFO"


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _get_int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_str(env: Mapping[str, str], name: str, default: str = "") -> str:
    value = env.get(name, "").strip()
    return value or default


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """
    Build Settings from environment variables (os.environ by default).
    Raises ConfigError when the OAuth client identity is incomplete or a value does not parse.
    """
    env = os.environ if environ is None else environ

    missing = [
        name
        for name in ("OAUTH_CLIENT_ID", "OAUTH_CLIENT_SECRET", "OAUTH_TENANT_ID")
        if not _get_str(env, name)
    ]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    oauth = OAuthConfig(
        client_id=_get_str(env, "OAUTH_CLIENT_ID"),
        client_secret=_get_str(env, "OAUTH_CLIENT_SECRET"),
        tenant_id=_get_str(env, "OAUTH_TENANT_ID"),
        protocol=_get_str(env, "SERVER_PROTOCOL", DEFAULT_PROTOCOL),
        host=_get_str(env, "SERVER_HOST", DEFAULT_HOST),
        port=_get_int(env, "SERVER_PORT", DEFAULT_PORT, minimum=1),
        authority=_get_str(env, "OAUTH_AUTHORITY", DEFAULT_AUTHORITY).rstrip("/"),
        scope=_get_str(env, "OAUTH_SCOPE", DEFAULT_SCOPE),
    )

    credentials = CredentialsConfig(
        open_browser=_get_bool(env, "CREDENTIALS_OPEN_BROWSER", False),
        persist=_get_bool(env, "CREDENTIALS_PERSIST", False),
        storage_path=_get_str(env, "CREDENTIALS_STORAGE_PATH"),
    )
    if credentials.persist and not credentials.storage_path:
        raise ConfigError("CREDENTIALS_PERSIST is enabled but CREDENTIALS_STORAGE_PATH is empty")

    calendar = CalendarConfig(
        graph_url=_get_str(env, "CALENDAR_GRAPH_URL", DEFAULT_GRAPH_URL).rstrip("/"),
        poll_interval_seconds=_get_int(env, "CALENDAR_POLL_INTERVAL", 60, minimum=1),
        lookahead_hours=_get_int(env, "CALENDAR_LOOKAHEAD_HOURS", 24, minimum=1),
        status_file=_get_str(env, "CALENDAR_STATUS_FILE"),
        timezone=_get_str(env, "CALENDAR_TIMEZONE", "UTC"),
    )

    try:
        ZoneInfo(calendar.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigError(f"CALENDAR_TIMEZONE must be an IANA time zone name, got {calendar.timezone!r}") from None

    log_level = _get_str(env, "LOG_LEVEL", "INFO").upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

    return Settings(oauth=oauth, credentials=credentials, calendar=calendar, log_level=log_level)
