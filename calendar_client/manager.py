"""
CredentialManager: the one object owning the credential store, the token exchanger and the persistence settings.
Built once at startup and handed to the login flow, the refresh supervisor and the calendar poller.
"""
import logging

from calendar_client.config import CredentialsConfig, OAuthConfig
from calendar_client.persistence import load_credential, save_credential
from calendar_client.token_exchange import TokenExchanger
from calendar_client.token_store import Credential, CredentialStore

logger = logging.getLogger(__name__)


class CredentialManager:
    def __init__(
        self,
        oauth: OAuthConfig,
        credentials: CredentialsConfig,
        store: CredentialStore | None = None,
        exchanger: TokenExchanger | None = None,
    ):
        self.oauth = oauth
        self.credentials_config = credentials
        self.store = store or CredentialStore()
        self.exchanger = exchanger or TokenExchanger(oauth, self.store)

    def get_access_token(self) -> tuple[str, bool]:
        """(access_token, authenticated) for API callers."""
        return self.store.read()

    @property
    def persist_enabled(self) -> bool:
        return self.credentials_config.persist and bool(self.credentials_config.storage_path)

    def load_persisted(self) -> Credential:
        """
        Load the persisted credential into the store (unauthenticated until a refresh succeeds).
        Returns an empty Credential when persistence is disabled or nothing usable is on disk.
        """
        if not self.persist_enabled:
            return Credential.empty()
        credential = load_credential(self.credentials_config.storage_path)
        if credential.refresh_token:
            self.store.write(credential, authenticated=False)
            logger.info("Loaded persisted credentials from %s", self.credentials_config.storage_path)
        return credential

    def persist(self, credential: Credential | None = None) -> bool:
        """Save `credential`, or the current store contents when none is given."""
        if not self.persist_enabled:
            return False
        if credential is None:
            credential = self.store.snapshot()
        return save_credential(credential, self.credentials_config.storage_path)

    def refresh(self) -> Credential:
        return self.exchanger.exchange_refresh_token()

    def authenticate(self, code: str) -> Credential:
        return self.exchanger.exchange_authorization_code(code)
