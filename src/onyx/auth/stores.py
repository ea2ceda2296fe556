"""Credential stores: keyed, opaque blob storage in the system keyring or a local file."""

import fcntl
import json
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

import keyring
from keyring.errors import KeyringError, KeyringLocked, NoKeyringError

from onyx.errors import SerializationError, StoreBackendError, StoreUnavailableError

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Base class for credential store backends.

    Blobs are JSON-serializable dicts owned by whoever wrote them; the store
    never looks inside.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[dict[str, Any]]:
        """Return the blob stored under key, or None if there is none."""

    @abstractmethod
    def set(self, key: str, blob: dict[str, Any]) -> None:
        """Store blob under key, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. Removing a key that does not exist succeeds."""


def _dumps(key: str, blob: dict[str, Any]) -> str:
    try:
        return json.dumps(blob, sort_keys=True)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Credential for {key} is not serializable: {e}") from e


class KeyringCredentialStore(CredentialStore):
    """One system keyring entry per key, addressed by (service, key)."""

    def __init__(self, service: str):
        self.service = service

    def get(self, key: str) -> Optional[dict[str, Any]]:
        try:
            value = keyring.get_password(self.service, key)
        except (NoKeyringError, KeyringLocked) as e:
            raise StoreUnavailableError(f"System keyring is not available: {e}") from e
        except KeyringError as e:
            raise StoreBackendError(f"Failed to read {key} from keyring: {e}") from e

        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise SerializationError(f"Keyring entry {key} is not valid JSON") from e

    def set(self, key: str, blob: dict[str, Any]) -> None:
        value = _dumps(key, blob)
        try:
            keyring.set_password(self.service, key, value)
        except (NoKeyringError, KeyringLocked) as e:
            raise StoreUnavailableError(f"System keyring is not available: {e}") from e
        except KeyringError as e:
            raise StoreBackendError(f"Failed to write {key} to keyring: {e}") from e
        logger.debug("Stored %s in keyring service %s", key, self.service)

    def delete(self, key: str) -> None:
        try:
            if keyring.get_password(self.service, key) is None:
                logger.debug("Keyring entry %s already absent", key)
                return
            keyring.delete_password(self.service, key)
        except (NoKeyringError, KeyringLocked) as e:
            raise StoreUnavailableError(f"System keyring is not available: {e}") from e
        except KeyringError as e:
            raise StoreBackendError(f"Failed to delete {key} from keyring: {e}") from e
        logger.debug("Deleted %s from keyring service %s", key, self.service)


class FileCredentialStore(CredentialStore):
    """All blobs in a single JSON file, as {key: blob}."""

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()
        self._lock_file = self.path.with_suffix(".lock")

    @contextmanager
    def _file_lock(self):
        """Acquire exclusive file lock for writes."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._lock_file.touch(exist_ok=True)
            lock_handle = open(self._lock_file, "r")
        except OSError as e:
            raise StoreUnavailableError(f"Cannot lock credential file {self.path}: {e}") from e
        with lock_handle:
            try:
                fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
                yield
            finally:
                fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)

    def _load_all(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            content = self.path.read_text()
        except OSError as e:
            raise StoreUnavailableError(f"Cannot read credential file {self.path}: {e}") from e
        if not content.strip():
            return {}
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise SerializationError(f"Credential file {self.path} is not valid JSON") from e
        if not isinstance(data, dict):
            raise SerializationError(f"Credential file {self.path} must hold a JSON object")
        return data

    def _save_all(self, data: dict[str, Any]) -> None:
        try:
            with open(self.path, "w") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            self.path.chmod(0o600)
        except OSError as e:
            raise StoreBackendError(f"Cannot write credential file {self.path}: {e}") from e

    def get(self, key: str) -> Optional[dict[str, Any]]:
        return self._load_all().get(key)

    def set(self, key: str, blob: dict[str, Any]) -> None:
        # round trip through JSON so only serializable blobs reach the file
        blob = json.loads(_dumps(key, blob))
        with self._file_lock():
            data = self._load_all()
            data[key] = blob
            self._save_all(data)
        logger.debug("Stored %s in %s", key, self.path)

    def delete(self, key: str) -> None:
        with self._file_lock():
            data = self._load_all()
            if key not in data:
                logger.debug("%s already absent from %s", key, self.path)
                return
            del data[key]
            self._save_all(data)
        logger.debug("Deleted %s from %s", key, self.path)
