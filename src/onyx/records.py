"""teal.fm record schemas: plays and the actor status."""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, NonNegativeInt
from pydantic.alias_generators import to_camel

PLAY_NSID = "fm.teal.alpha.feed.play"
STATUS_NSID = "fm.teal.alpha.actor.status"
STATUS_RKEY = "self"


class LexiconModel(BaseModel):
    """Fields are written with the lexicon's camelCase names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self, nsid: str) -> dict[str, Any]:
        record = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        return {"$type": nsid, **record}


class Artist(LexiconModel):
    artist_name: str
    artist_mb_id: Optional[str] = None


class Play(LexiconModel):
    """One play of a track, as submitted to the repo."""

    model_config = ConfigDict(frozen=True)

    track_name: str
    track_mb_id: Optional[str] = None
    recording_mb_id: Optional[str] = None
    duration: Optional[NonNegativeInt] = None
    artist_names: Optional[list[str]] = None
    artist_mb_ids: Optional[list[str]] = None
    artists: Optional[list[Artist]] = None
    release_name: Optional[str] = None
    release_mb_id: Optional[str] = None
    isrc: Optional[str] = None
    origin_url: Optional[str] = None
    music_service_base_domain: Optional[str] = None
    submission_client_agent: Optional[str] = None
    played_time: Optional[AwareDatetime] = None
    track_discriminant: Optional[str] = None
    release_discriminant: Optional[str] = None

    # Source of the record (e.g. the player that wrote a log); never serialized
    client_id: Optional[str] = Field(default=None, exclude=True)

    def to_record(self, nsid: str = PLAY_NSID) -> dict[str, Any]:
        return super().to_record(nsid)


class PlayView(LexiconModel):
    track_name: str
    track_mb_id: Optional[str] = None
    recording_mb_id: Optional[str] = None
    duration: Optional[NonNegativeInt] = None
    artists: list[Artist] = []
    release_name: Optional[str] = None
    release_mb_id: Optional[str] = None
    isrc: Optional[str] = None
    origin_url: Optional[str] = None
    music_service_base_domain: Optional[str] = None
    submission_client_agent: Optional[str] = None
    played_time: Optional[AwareDatetime] = None


class Status(LexiconModel):
    """What the user is listening to right now."""

    time: AwareDatetime
    expiry: Optional[AwareDatetime] = None
    item: PlayView

    @property
    def is_empty(self) -> bool:
        return not self.item.track_name and not self.item.artists

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expiry is None:
            return False
        return self.expiry <= (now or datetime.now(timezone.utc))

    def to_record(self, nsid: str = STATUS_NSID) -> dict[str, Any]:
        return super().to_record(nsid)
