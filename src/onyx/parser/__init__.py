"""Listening log parsers."""

from onyx.parser.audio_scrobbler import AudioScrobblerParser
from onyx.parser.base import LogFormat, LogParser

PARSERS: dict[LogFormat, type[LogParser]] = {
    LogFormat.AUDIO_SCROBBLER: AudioScrobblerParser,
}


def get_parser(log_format: LogFormat) -> LogParser:
    return PARSERS[LogFormat(log_format)]()


__all__ = [
    "PARSERS",
    "AudioScrobblerParser",
    "LogFormat",
    "LogParser",
    "get_parser",
]
