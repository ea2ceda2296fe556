"""
Parser for the AudioScrobbler `.scrobbler.log` format written by portable players.

A log starts with `#` header lines (`#AUDIOSCROBBLER/<version>`,
`#TZ/<UTC|UNKNOWN>`, `#CLIENT/<id>`), followed by one tab-separated entry per
play: artist, album, title, track number, duration, rating (`L` listened,
`S` skipped), unix timestamp and, from version 1.1 on, a MusicBrainz track id.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from onyx.errors import LocalIOError, ParseError
from onyx.parser.base import LogFormat, LogParser
from onyx.records import Artist, Play

logger = logging.getLogger(__name__)

VERSION_HEADER = "#AUDIOSCROBBLER/"
TIMEZONE_HEADER = "#TZ/"
CLIENT_HEADER = "#CLIENT/"

UNKNOWN_TIMEZONE = "UNKNOWN"
MBID_VERSION = "1.1"


class Rating(str, Enum):
    LISTENED = "L"
    SKIPPED = "S"


@dataclass
class ScrobbleEntry:
    artist_name: str
    album_name: Optional[str]
    track_name: str
    track_number: Optional[int]
    duration: int
    rating: Rating
    timestamp: int
    mb_track_id: Optional[str] = None
    line_number: Optional[int] = None


@dataclass
class ScrobbleLog:
    version: str
    timezone: Optional[str] = None
    client_id: Optional[str] = None
    entries: list[ScrobbleEntry] = field(default_factory=list)


def _optional(value: str) -> Optional[str]:
    return value or None


def _integer(value: str, name: str, line_number: int) -> int:
    try:
        return int(value)
    except ValueError:
        raise ParseError(f"{name} must be an integer, got {value!r}", line_number) from None


def parse_entry(line: str, version: str, line_number: int) -> ScrobbleEntry:
    fields = line.split("\t")
    expected = 8 if version == MBID_VERSION else 7
    if len(fields) < expected:
        raise ParseError(
            f"expected {expected} tab-separated fields, got {len(fields)}", line_number
        )

    try:
        rating = Rating(fields[5])
    except ValueError:
        raise ParseError("entry rating must be 'L' or 'S'", line_number) from None

    duration = _integer(fields[4], "duration", line_number)
    if duration < 0:
        raise ParseError(f"duration must not be negative, got {duration}", line_number)

    return ScrobbleEntry(
        artist_name=fields[0],
        album_name=_optional(fields[1]),
        track_name=fields[2],
        track_number=_integer(fields[3], "track number", line_number) if fields[3] else None,
        duration=duration,
        rating=rating,
        timestamp=_integer(fields[6], "timestamp", line_number),
        mb_track_id=_optional(fields[7]) if version == MBID_VERSION else None,
        line_number=line_number,
    )


def parse_log(lines: Iterable[str]) -> ScrobbleLog:
    """Parse the lines of a log. Headers must come before any entry."""
    version = None
    tz = None
    client_id = None
    entry_lines: list[tuple[int, str]] = []

    for line_number, line in enumerate(lines, start=1):
        line = line.rstrip("\r\n")
        if entry_lines or not line.startswith("#"):
            if line:
                entry_lines.append((line_number, line))
            continue

        if line.startswith(VERSION_HEADER):
            version = line.removeprefix(VERSION_HEADER)
        elif line.startswith(TIMEZONE_HEADER):
            value = line.removeprefix(TIMEZONE_HEADER)
            tz = None if value == UNKNOWN_TIMEZONE else value
        elif line.startswith(CLIENT_HEADER):
            client_id = line.removeprefix(CLIENT_HEADER)

    if version is None:
        raise ParseError("log version not specified")

    log = ScrobbleLog(version=version, timezone=tz, client_id=client_id)
    for line_number, line in entry_lines:
        log.entries.append(parse_entry(line, version, line_number))
    return log


def played_time(timestamp: int, tz: Optional[str], line_number: Optional[int] = None) -> datetime:
    """Timestamps are UTC when the log says so, local time otherwise."""
    try:
        if tz == "UTC":
            return datetime.fromtimestamp(timestamp, tz=timezone.utc)
        return datetime.fromtimestamp(timestamp).astimezone()
    except (OverflowError, OSError, ValueError):
        raise ParseError(f"timestamp {timestamp} is out of range", line_number) from None


class AudioScrobblerParser(LogParser):
    format = LogFormat.AUDIO_SCROBBLER

    def parse(self, path: Path) -> list[Play]:
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                log = parse_log(f)
        except OSError as e:
            raise LocalIOError(f"Cannot read {path}: {e}") from e
        except UnicodeDecodeError as e:
            raise ParseError(f"{path} is not valid UTF-8") from e

        plays = [
            Play(
                track_name=entry.track_name,
                duration=entry.duration,
                played_time=played_time(entry.timestamp, log.timezone, entry.line_number),
                artists=[Artist(artist_name=entry.artist_name)],
                release_name=entry.album_name,
                track_mb_id=entry.mb_track_id,
                client_id=log.client_id,
            )
            for entry in log.entries
            if entry.rating is Rating.LISTENED
        ]
        logger.debug(
            "Parsed %d plays from %s (%d skipped)",
            len(plays),
            path,
            len(log.entries) - len(plays),
        )
        return plays
