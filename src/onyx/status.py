"""The actor status record: what a user is listening to right now."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import click
import requests
from pydantic import ValidationError

from onyx.auth.identity import IdentityResolver
from onyx.auth.sessions import SessionHandle
from onyx.errors import TransportError
from onyx.records import STATUS_NSID, STATUS_RKEY, PlayView, Status
from onyx.xrpc import Agent, XrpcClient

logger = logging.getLogger(__name__)

# A cleared status expired this long before it was written
CLEAR_EXPIRY = timedelta(minutes=1)


def status_uri(did: str) -> str:
    return f"at://{did}/{STATUS_NSID}/{STATUS_RKEY}"


def format_duration(seconds: int) -> str:
    """HH:MM:SS, or MM:SS under an hour."""
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours:02}:{minutes:02}:{seconds:02}"
    return f"{minutes:02}:{seconds:02}"


class StatusManager:
    def __init__(
        self,
        ident: str,
        resolver: Optional[IdentityResolver] = None,
        http: Optional[requests.Session] = None,
    ):
        self.ident = ident
        self.http = http or requests.Session()
        self.resolver = resolver or IdentityResolver(http=self.http)

    def get_status(self) -> Optional[Status]:
        """Read the public status record. None when the user never set one."""
        identity = self.resolver.resolve(self.ident)
        client = XrpcClient(identity.pds, http=self.http, timeout=self.resolver.timeout)
        value = client.get_record(identity.did, STATUS_NSID, STATUS_RKEY)
        if value is None:
            return None
        try:
            return Status.model_validate(value)
        except ValidationError as e:
            raise TransportError(f"Status record {status_uri(identity.did)} is malformed: {e}") from e

    def set_status(self, session: SessionHandle, status: Status) -> None:
        agent = Agent(session)
        agent.put_record(STATUS_NSID, STATUS_RKEY, status.to_record(STATUS_NSID))
        logger.info("Updated %s", status_uri(agent.did))

    def clear_status(self, session: SessionHandle) -> None:
        """Overwrite the status with an empty one that has already expired."""
        now = datetime.now(timezone.utc)
        self.set_status(
            session,
            Status(time=now, expiry=now - CLEAR_EXPIRY, item=PlayView(track_name="", artists=[])),
        )

    def display_status(self, status: Optional[Status], raw: bool = False, full: bool = False) -> None:
        if not raw and (status is None or status.is_empty or status.is_expired()):
            click.echo("nothing playing right now")
            return
        if status is None:
            click.echo("no status record")
            return

        item = status.item
        click.echo(f"track: {item.track_name}")
        if full and item.track_mb_id:
            click.echo(f"track id: {item.track_mb_id}")
        if full and item.recording_mb_id:
            click.echo(f"recording id: {item.recording_mb_id}")

        if item.artists or raw:
            names = []
            for artist in item.artists:
                if full and artist.artist_mb_id:
                    names.append(f"{artist.artist_name} [{artist.artist_mb_id}]")
                else:
                    names.append(artist.artist_name)
            click.echo(f"artists: {', '.join(names)}")

        if item.release_name:
            click.echo(f"release: {item.release_name}")
        if full and item.release_mb_id:
            click.echo(f"release id: {item.release_mb_id}")
        if full and item.isrc:
            click.echo(f"isrc: {item.isrc}")

        if item.played_time is not None:
            if raw:
                played = item.played_time.isoformat(sep=" ", timespec="seconds")
            else:
                played = item.played_time.astimezone().strftime("%Y-%m-%d %H:%M:%S")
            click.echo(f"played: {played}")

        if item.duration is not None:
            duration = str(item.duration) if raw else format_duration(item.duration)
            click.echo(f"duration: {duration}")

        if full and item.music_service_base_domain:
            click.echo(f"service: {item.music_service_base_domain}")
        if full and item.submission_client_agent:
            click.echo(f"client: {item.submission_client_agent}")

        if raw:
            click.echo(f"time: {status.time.isoformat(sep=' ', timespec='seconds')}")
            if status.expiry is not None:
                click.echo(f"expiry: {status.expiry.isoformat(sep=' ', timespec='seconds')}")
