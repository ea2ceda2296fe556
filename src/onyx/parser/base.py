"""Base class for listening log parsers."""

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path

from onyx.records import Play


class LogFormat(str, Enum):
    AUDIO_SCROBBLER = "audio-scrobbler"


class LogParser(ABC):
    """Turns a listening log into plays ready for submission."""

    format: LogFormat

    @abstractmethod
    def parse(self, path: Path) -> list[Play]:
        """Parse the log at path into a list of plays, in log order."""
