"""
Login flow: decides at startup between a silent refresh from persisted credentials and an interactive login,
and turns the provider's /callback into a token exchange. Owns the current refresh supervisor.
"""
import logging
import threading
import webbrowser
from typing import Callable
from urllib.parse import urlencode

from calendar_client.errors import TokenExchangeError
from calendar_client.manager import CredentialManager
from calendar_client.refresher import RefreshSupervisor, SupervisorState

logger = logging.getLogger(__name__)


def build_authorize_url(
    *,
    authorize_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
) -> str:
    """Build the provider /authorize URL for the authorization-code flow."""
    params = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "response_mode": "query",
        "scope": scope,
    }
    return f"{authorize_endpoint}?{urlencode(params)}"


class LoginFlow:
    def __init__(
        self,
        manager: CredentialManager,
        supervisor_factory: Callable[..., RefreshSupervisor] = RefreshSupervisor,
        open_browser: Callable[[str], bool] = webbrowser.open,
    ):
        self.manager = manager
        self._supervisor_factory = supervisor_factory
        self._open_browser = open_browser
        self._lock = threading.Lock()
        self._supervisor: RefreshSupervisor | None = None

    @property
    def supervisor(self) -> RefreshSupervisor | None:
        return self._supervisor

    def authorization_url(self) -> str:
        oauth = self.manager.oauth
        return build_authorize_url(
            authorize_endpoint=oauth.authorize_url,
            client_id=oauth.client_id,
            redirect_uri=oauth.redirect_uri,
            scope=oauth.scope,
        )

    def home_url(self) -> str:
        return f"{self.manager.oauth.base_url}/home"

    def open_login_page(self) -> None:
        """Point the user at /home: open a browser when enabled, otherwise log the URL."""
        url = self.home_url()
        if self.manager.credentials_config.open_browser:
            try:
                opened = self._open_browser(url)
            except webbrowser.Error as e:
                logger.error("Error opening browser to login: %s", e)
                opened = False
            if opened:
                return
        logger.info("Login required: open %s", url)

    def ensure_supervisor(self) -> bool:
        """Start a refresh supervisor unless one is already running. A STOPPED one is replaced."""
        with self._lock:
            current = self._supervisor
            if current is not None and current.state is not SupervisorState.STOPPED:
                return current.start()
            self._supervisor = self._supervisor_factory(self.manager, on_stopped=self.open_login_page)
            return self._supervisor.start()

    def startup(self) -> bool:
        """
        Resume from a persisted refresh token if possible; otherwise prompt for an interactive login.
        Returns True when the session was resumed silently.
        """
        credential = self.manager.load_persisted()
        if credential.refresh_token:
            try:
                self.manager.refresh()
            except TokenExchangeError as e:
                logger.warning("Could not resume session from persisted credentials: %s", e)
            else:
                self.ensure_supervisor()
                return True
        self.open_login_page()
        return False

    def handle_callback(self, code: str | None) -> bool:
        """Exchange the authorization code; on success start the refresh supervisor."""
        if not code:
            logger.warning("Callback received without an authorization code")
            return False
        try:
            self.manager.authenticate(code)
        except TokenExchangeError as e:
            logger.error("Error acquiring token: %s", e)
            return False
        self.ensure_supervisor()
        return True

    def shutdown(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            supervisor = self._supervisor
        if supervisor is not None:
            supervisor.stop(timeout)
