# smartlists/services/smart_lists/lookups.py

"""Host-side lookups for expensive fields.

The engine never owns the catalog. Every side-channel lookup goes through a
``CatalogLookups`` object injected by the host. The base class returns empty
results for everything, so hosts override only what their catalog supports.
Results are memoized per run by the evaluation cache; implementations need
no caching of their own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from smartlists.integrations.external_lists import ExternalListResult

if TYPE_CHECKING:
    from smartlists.core.media_item import MediaItem
    from smartlists.integrations.external_lists import ExternalListService

__all__ = ["CatalogLookups", "MediaStreamInfo", "Person", "SeriesInfo"]


@dataclass(frozen=True)
class Person:
    """One credited person.

    Attributes:
        name: Person name.
        person_type: Role type ("Actor", "Director", "Composer", ...).
        role: Character name for actors.
    """

    name: str
    person_type: str
    role: str | None = None


@dataclass(frozen=True)
class MediaStreamInfo:
    """Stream facts of an item's primary video and audio streams.

    Attributes:
        audio_languages: Languages of all audio streams.
        default_audio_language: Language of the default audio stream.
        subtitle_languages: Languages of all subtitle streams.
        video_height: Height of the primary video stream in pixels.
        video_width: Width of the primary video stream in pixels.
        framerate: Frames per second of the primary video stream.
        video_codec: Video codec name.
        video_profile: Video codec profile.
        video_range: Dynamic range ("SDR", "HDR").
        video_range_type: Range type ("HDR10", "DOVI", ...).
        audio_bitrate_kbps: Bitrate of the primary audio stream.
        audio_sample_rate: Sample rate of the primary audio stream in Hz.
        audio_bit_depth: Bit depth of the primary audio stream.
        audio_channels: Channel count of the primary audio stream.
        audio_codec: Audio codec name.
        audio_profile: Audio codec profile.
    """

    audio_languages: tuple[str, ...] = ()
    default_audio_language: str | None = None
    subtitle_languages: tuple[str, ...] = ()
    video_height: int | None = None
    video_width: int | None = None
    framerate: float | None = None
    video_codec: str | None = None
    video_profile: str | None = None
    video_range: str | None = None
    video_range_type: str | None = None
    audio_bitrate_kbps: float | None = None
    audio_sample_rate: float | None = None
    audio_bit_depth: float | None = None
    audio_channels: float | None = None
    audio_codec: str | None = None
    audio_profile: str | None = None


@dataclass(frozen=True)
class SeriesInfo:
    """Aggregate facts about a series, shared by all its episodes."""

    series_id: str
    name: str
    tags: tuple[str, ...] = ()
    studios: tuple[str, ...] = ()
    genres: tuple[str, ...] = ()
    provider_ids: dict[str, str] = field(default_factory=dict)
    last_episode_air_date: datetime | None = None


class CatalogLookups:
    """Default lookups: every side channel is empty.

    Subclass and override the methods the host catalog supports. Any
    exception raised by an override excludes only the affected item.
    """

    def __init__(self, external_lists: ExternalListService | None = None) -> None:
        """Initializes the lookups.

        Args:
            external_lists: Service used to fetch external lists, if any.
        """
        self._external_lists = external_lists

    def people(self, item: MediaItem) -> list[Person]:
        """People credited on the item."""
        return []

    def collections(self, item: MediaItem) -> list[str]:
        """Names of the collections containing the item."""
        return []

    def playlists(self, item: MediaItem, user_id: str | None) -> list[str]:
        """Names of the user's playlists containing the item."""
        return []

    def media_streams(self, item: MediaItem) -> MediaStreamInfo | None:
        """Stream facts for the item, None when it has no streams."""
        return None

    def series(self, series_id: str) -> SeriesInfo | None:
        """Series aggregate facts, None when the series is unknown."""
        return None

    def next_unwatched(self, series_id: str, user_id: str | None, include_unwatched_series: bool) -> str | None:
        """Id of the user's next unwatched episode in a series.

        Args:
            series_id: The series.
            user_id: The viewing user.
            include_unwatched_series: Whether a never-started series yields
                its first episode.
        """
        return None

    def library_name(self, item: MediaItem) -> str | None:
        """Name of the library holding the item."""
        return None

    def child_items(self, item: MediaItem) -> list[MediaItem]:
        """Direct children of a container item."""
        return []

    def external_list(self, url: str) -> ExternalListResult:
        """Provider id positions of an external list."""
        if self._external_lists is None:
            return ExternalListResult(warning=f"External lists are not configured; ignoring {url}")
        return self._external_lists.fetch_list(url)
