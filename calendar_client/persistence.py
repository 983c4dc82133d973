"""
Persist the current credential to a JSON file under the configured storage path.
Best effort: failures are logged, never raised to callers.
"""
import json
import logging
import os
import tempfile
from pathlib import Path

from calendar_client.errors import PersistenceError
from calendar_client.token_store import Credential

logger = logging.getLogger(__name__)

CREDENTIALS_FILENAME = "credentials.json"


def credentials_file(path: str | os.PathLike) -> Path:
    return Path(path) / CREDENTIALS_FILENAME


def _write(credential: Credential, target: Path) -> None:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        # Write to a sibling temp file and rename so a crash never leaves a half-written file
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".credentials-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(credential.to_dict(), f, indent=2)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise PersistenceError(f"Could not write {target}: {e}") from e


def _read(target: Path) -> Credential:
    try:
        raw = target.read_text(encoding="utf-8")
    except OSError as e:
        raise PersistenceError(f"Could not read {target}: {e}") from e
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("top-level value is not an object")
        return Credential.from_dict(data)
    except (TypeError, ValueError) as e:
        raise PersistenceError(f"Could not decode {target}: {e}") from e


def save_credential(credential: Credential, path: str | os.PathLike) -> bool:
    """Write credential to {path}/credentials.json. No-op when path is empty. Returns True on success."""
    if not path:
        return False
    target = credentials_file(path)
    try:
        _write(credential, target)
    except PersistenceError as e:
        logger.error("Error saving credentials: %s", e)
        return False
    logger.debug("Credentials saved to %s", target)
    return True


def load_credential(path: str | os.PathLike) -> Credential:
    """Read {path}/credentials.json. Returns an empty Credential when the file is absent or malformed."""
    if not path:
        return Credential.empty()
    target = credentials_file(path)
    if not target.exists():
        logger.warning("No persisted credentials at %s", target)
        return Credential.empty()
    try:
        return _read(target)
    except PersistenceError as e:
        logger.warning("Error loading existing credentials: %s", e)
        return Credential.empty()
