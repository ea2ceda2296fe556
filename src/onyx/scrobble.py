"""Submission of plays to the user's repo, one record at a time."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from rich.console import Console
from rich.markup import escape

from onyx.auth.sessions import SessionHandle
from onyx.errors import (
    AuthError,
    BatchSubmissionError,
    LocalIOError,
    OnyxError,
    ScrobbleError,
)
from onyx.parser import LogFormat, get_parser
from onyx.records import PLAY_NSID, Play
from onyx.xrpc import Agent

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_DOMAIN = "local"


@dataclass
class ScrobbleFailure:
    track_name: str
    error: ScrobbleError


@dataclass
class BatchResult:
    total: int = 0
    submitted: int = 0
    failures: list[ScrobbleFailure] = field(default_factory=list)
    # set once the session is rejected, later plays are not sent
    auth_error: Optional[AuthError] = None

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures


class Scrobbler:
    """Stamps provenance onto plays and writes them as records.

    Submission is sequential and in input order. A failing play is reported
    and recorded, and the batch carries on with the next one.
    """

    def __init__(
        self,
        service: str,
        version: str,
        session: SessionHandle,
        console: Optional[Console] = None,
    ):
        self.service = service
        self.version = version
        self.agent = Agent(session)
        self.console = console or Console()

    def generate_client_agent(self, client_id: Optional[str] = None) -> str:
        if client_id:
            return f"{self.service}/{self.version} ({client_id})"
        return f"{self.service}/{self.version}"

    def generate_play(self, play: Play) -> Play:
        return play.model_copy(
            update={
                "music_service_base_domain": play.music_service_base_domain
                or DEFAULT_SERVICE_DOMAIN,
                "submission_client_agent": self.generate_client_agent(play.client_id),
            }
        )

    def scrobble_track(self, play: Play) -> None:
        """Submit a single play. Raises ScrobbleError naming the track on failure."""
        name = play.track_name
        try:
            record = self.generate_play(play).to_record(PLAY_NSID)
            response = self.agent.create_record(PLAY_NSID, record)
        except OnyxError as e:
            self.console.print(f"[bold red][✗][/bold red] {escape(name)}")
            raise ScrobbleError(name, e) from e

        logger.debug("Created %s", response.get("uri"))
        self.console.print(f"[bold green][✓][/bold green] {escape(name)}")

    def scrobble_tracks(self, plays: Iterable[Play]) -> BatchResult:
        """Submit plays in order, recording an outcome for each one.

        After an auth failure the remaining plays are not sent, they are
        marked failed with the same error.
        """
        result = BatchResult()
        for play in plays:
            result.total += 1
            if result.auth_error is not None:
                self.console.print(f"[bold red][✗][/bold red] {escape(play.track_name)}")
                error = ScrobbleError(play.track_name, result.auth_error)
                result.failures.append(ScrobbleFailure(track_name=play.track_name, error=error))
                continue
            try:
                self.scrobble_track(play)
            except ScrobbleError as e:
                result.failures.append(ScrobbleFailure(track_name=play.track_name, error=e))
                if isinstance(e.cause, AuthError):
                    result.auth_error = e.cause
            else:
                result.submitted += 1
        return result

    def scrobble_logfile(
        self, path: Path, log_format: LogFormat, delete: bool = False
    ) -> BatchResult:
        """Parse a listening log and submit every play in it.

        Raises BatchSubmissionError after the whole log was attempted if any
        play failed. With delete, the log is removed only when all succeeded.
        """
        path = Path(path)
        self.console.print(f"[dim]scrobbling log: {escape(str(path))}[/dim]")
        plays = get_parser(log_format).parse(path)

        result = self.scrobble_tracks(plays)

        if not result.ok:
            self.console.print("\n[bold red]errors[/bold red]:")
            for failure in result.failures:
                self.console.print(f"  - {escape(str(failure.error))}")
            self.console.print(
                f"\n[bold yellow]summary[/bold yellow]: {result.submitted} tracks submitted, "
                f"{result.failed} failed"
            )
            raise BatchSubmissionError(
                f"log file {path}", result.failed, result.total, auth_error=result.auth_error
            )

        self.console.print(f"\n[bold green]success[/bold green]: {result.total} tracks submitted")

        if delete:
            try:
                path.unlink()
            except OSError as e:
                raise LocalIOError(f"Cannot remove {path}: {e}") from e
            logger.info("Removed %s", path)
        return result
