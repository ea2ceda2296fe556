"""CLI commands for onyx."""

import functools
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import click
import pydantic
import requests

from onyx.auth import Authenticator, IdentityResolver, StoreMethod
from onyx.auth.oauth import OAuthClient
from onyx.config import OnyxSettings, set_config_value
from onyx.errors import OnyxError
from onyx.logs import setup_logging
from onyx.parser import LogFormat
from onyx.records import Artist, Play, PlayView, Status
from onyx.scrobble import Scrobbler
from onyx.status import StatusManager
from onyx.version import ONYX_VERSION


def reports_errors(f):
    """Print onyx errors as `error: ...` on stderr and exit with status 1."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except OnyxError as e:
            click.echo(f"error: {e}", err=True)
            if e.hint:
                click.echo(f"hint: {e.hint}", err=True)
            raise SystemExit(1)

    return wrapper


def get_http(settings: OnyxSettings) -> requests.Session:
    http = requests.Session()
    http.headers["User-Agent"] = f"{settings.service_name}/{ONYX_VERSION}"
    return http


def get_resolver(settings: OnyxSettings, http: requests.Session) -> IdentityResolver:
    return IdentityResolver(
        plc_directory=settings.plc_directory,
        appview_url=settings.appview_url,
        http=http,
        timeout=settings.request_timeout,
    )


def get_authenticator(settings: OnyxSettings) -> Authenticator:
    http = get_http(settings)
    return Authenticator(
        settings.service_name,
        settings.config_dir,
        resolver=get_resolver(settings, http),
        oauth_client=OAuthClient(
            scope=settings.oauth_scope,
            http=http,
            timeout=settings.request_timeout,
            callback_timeout=settings.callback_timeout,
        ),
        http=http,
        timeout=settings.request_timeout,
    )


def get_status_manager(settings: OnyxSettings, ident: str) -> StatusManager:
    http = get_http(settings)
    return StatusManager(ident, resolver=get_resolver(settings, http), http=http)


def parse_played_at(value: Optional[str]) -> datetime:
    """ISO 8601 timestamp; naive values are taken as local time."""
    if value is None:
        return datetime.now(timezone.utc)
    try:
        played_at = datetime.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"'{value}' is not an ISO 8601 timestamp") from None
    if played_at.tzinfo is None:
        played_at = played_at.astimezone()
    return played_at


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="ONYX_CONFIG_DIR",
    help="Configuration directory (default: the per-user app directory)",
)
@click.version_option(ONYX_VERSION, prog_name="onyx")
@click.pass_context
@reports_errors
def main(ctx, verbose: bool, config_dir: Optional[Path]):
    """Scrobble plays to teal.fm over the AT Protocol."""
    settings = OnyxSettings.load(config_dir)
    if verbose:
        settings.log_level = "DEBUG"
    setup_logging(settings.log_level)
    ctx.obj = settings


# --- auth ---


@main.group()
def auth():
    """Log in, log out and show the current account."""


@auth.command()
@click.argument("ident")
@click.option(
    "--store",
    "-s",
    type=click.Choice([m.value for m in StoreMethod]),
    default=StoreMethod.KEYRING.value,
    show_default=True,
    help="Where to keep credentials",
)
@click.option("--password", "-p", help="App password to use; OAuth in the browser if left out")
@click.pass_obj
@reports_errors
def login(settings: OnyxSettings, ident: str, store: str, password: Optional[str]):
    """Log in with a handle or DID."""
    authenticator = get_authenticator(settings)
    session = authenticator.login(ident, StoreMethod(store), password=password)
    click.echo(f"✅ Logged in as {session.identity}")


@auth.command()
@click.pass_obj
@reports_errors
def logout(settings: OnyxSettings):
    """Log out and remove stored credentials."""
    session = get_authenticator(settings).logout()
    click.echo(f"✅ Logged out {session.identity}")


@auth.command()
@click.pass_obj
@reports_errors
def whoami(settings: OnyxSettings):
    """Show the account that is logged in."""
    session = get_authenticator(settings).whoami()
    click.echo(f"identity: {session.identity}")
    click.echo(f"session:  {session.session_id}")
    click.echo(f"method:   {session.auth_method.value}")
    click.echo(f"store:    {session.store_method.value}")


# --- scrobble ---


@main.group()
def scrobble():
    """Submit plays."""


@scrobble.command()
@click.argument("name")
@click.option("--artist", "-a", "artists", multiple=True, help="Artist name (repeatable)")
@click.option("--release", "-r", help="Release (album) name")
@click.option("--duration", "-d", type=click.IntRange(min=0), help="Duration in seconds")
@click.option("--played-at", help="When the track was played (ISO 8601), default now")
@click.option("--track-mbid", help="MusicBrainz track id")
@click.option("--origin-url", help="Where the track can be found")
@click.pass_obj
@reports_errors
def track(
    settings: OnyxSettings,
    name: str,
    artists: tuple[str, ...],
    release: Optional[str],
    duration: Optional[int],
    played_at: Optional[str],
    track_mbid: Optional[str],
    origin_url: Optional[str],
):
    """Scrobble a single track."""
    play = Play(
        track_name=name,
        artists=[Artist(artist_name=artist) for artist in artists] or None,
        release_name=release,
        duration=duration,
        played_time=parse_played_at(played_at),
        track_mb_id=track_mbid,
        origin_url=origin_url,
    )
    session = get_authenticator(settings).restore()
    Scrobbler(settings.service_name, ONYX_VERSION, session).scrobble_track(play)


@scrobble.command()
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.argument("log_format", type=click.Choice([f.value for f in LogFormat]))
@click.option("--delete", is_flag=True, help="Delete the log file after a fully successful run")
@click.pass_obj
@reports_errors
def logfile(settings: OnyxSettings, path: Path, log_format: str, delete: bool):
    """Scrobble every play in a listening log."""
    session = get_authenticator(settings).restore()
    scrobbler = Scrobbler(settings.service_name, ONYX_VERSION, session)
    scrobbler.scrobble_logfile(path, LogFormat(log_format), delete=delete)


# --- status ---


@main.group()
def status():
    """Show or change what you are listening to."""


@status.command()
@click.option("--handle", "-h", "ident", help="Handle or DID to look up (default: you)")
@click.option("--raw", is_flag=True, help="Print the record as stored")
@click.option("--full", is_flag=True, help="Include ids, service and client")
@click.pass_obj
@reports_errors
def show(settings: OnyxSettings, ident: Optional[str], raw: bool, full: bool):
    """Show the current status."""
    if ident is None:
        ident = get_authenticator(settings).whoami().identity
    manager = get_status_manager(settings, ident)
    manager.display_status(manager.get_status(), raw=raw, full=full)


@status.command(name="set")
@click.argument("name")
@click.option("--artist", "-a", "artists", multiple=True, help="Artist name (repeatable)")
@click.option("--release", "-r", help="Release (album) name")
@click.option("--duration", "-d", type=click.IntRange(min=0), help="Duration in seconds")
@click.option(
    "--expires-in",
    type=click.IntRange(min=1),
    help="Minutes until the status expires",
)
@click.pass_obj
@reports_errors
def set_status(
    settings: OnyxSettings,
    name: str,
    artists: tuple[str, ...],
    release: Optional[str],
    duration: Optional[int],
    expires_in: Optional[int],
):
    """Set what you are listening to."""
    session = get_authenticator(settings).restore()
    did, _ = session.session_info()
    now = datetime.now(timezone.utc)
    item = PlayView(
        track_name=name,
        artists=[Artist(artist_name=artist) for artist in artists],
        release_name=release,
        duration=duration,
        played_time=now,
        music_service_base_domain="local",
        submission_client_agent=f"{settings.service_name}/{ONYX_VERSION}",
    )
    expiry = now + timedelta(minutes=expires_in) if expires_in else None
    get_status_manager(settings, did).set_status(
        session, Status(time=now, expiry=expiry, item=item)
    )
    click.echo(f"✅ Status set to {name}")


@status.command()
@click.pass_obj
@reports_errors
def clear(settings: OnyxSettings):
    """Clear the current status."""
    session = get_authenticator(settings).restore()
    did, _ = session.session_info()
    get_status_manager(settings, did).clear_status(session)
    click.echo("✅ Status cleared")


# --- config ---


@main.group()
def config():
    """Show or change settings kept in config.yaml."""


@config.command(name="show")
@click.pass_obj
def show_config(settings: OnyxSettings):
    """Show the settings in effect, environment included."""
    click.echo(f"config_dir: {settings.config_dir}")
    for key in settings.file_keys():
        click.echo(f"{key}: {getattr(settings, key)}")


@config.command(name="set")
@click.argument("key", type=click.Choice(OnyxSettings.file_keys()))
@click.argument("value")
@click.pass_obj
@reports_errors
def set_config(settings: OnyxSettings, key: str, value: str):
    """Store a setting in config.yaml."""
    try:
        stored = set_config_value(settings.config_dir, key, value)
    except pydantic.ValidationError:
        raise click.BadParameter(f"'{value}' is not a valid {key}", param_hint="VALUE") from None
    click.echo(f"✅ {key} set to {stored}")
