"""The local session pointer file."""

import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from onyx.auth.models import AuthSession
from onyx.config import SESSION_FILE_NAME
from onyx.errors import LocalIOError, SerializationError

logger = logging.getLogger(__name__)


class AuthSessionStore:
    """Reads and writes session.json in the config directory.

    At most one pointer exists; writing replaces it.
    """

    def __init__(self, config_dir: Path):
        self.config_dir = Path(config_dir)
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalIOError(f"Cannot create config directory {self.config_dir}: {e}") from e

    @property
    def session_path(self) -> Path:
        return self.config_dir / SESSION_FILE_NAME

    def get_session(self) -> Optional[AuthSession]:
        if not self.session_path.exists():
            return None
        try:
            return AuthSession.load(self.session_path)
        except OSError as e:
            raise LocalIOError(f"Cannot read {self.session_path}: {e}") from e
        except ValidationError as e:
            raise SerializationError(f"Session file {self.session_path} is malformed: {e}") from e

    def set_session(self, session: AuthSession) -> None:
        try:
            session.save(self.session_path)
        except OSError as e:
            raise LocalIOError(f"Cannot write {self.session_path}: {e}") from e
        logger.debug("Session pointer set to %s (%s)", session.identity, session.session_id)

    def delete_session(self) -> None:
        if not self.session_path.exists():
            return
        try:
            self.session_path.unlink()
        except OSError as e:
            raise LocalIOError(f"Cannot remove {self.session_path}: {e}") from e
        logger.debug("Session pointer removed")
