# smartlists/core/media_item.py

"""MediaItem dataclass: the candidate record supplied by the host catalog.

Holds every directly available attribute of a library item. Values that
need a side-channel lookup (people, collection membership, media streams,
series aggregates) are not stored here; they are resolved on demand through
``CatalogLookups``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePath

__all__ = ["CONTAINER_ITEM_TYPES", "MediaItem", "UserItemData"]

# Item types that contain other items
CONTAINER_ITEM_TYPES: frozenset[str] = frozenset({"BoxSet", "Playlist"})


@dataclass(frozen=True)
class UserItemData:
    """Per-user playback state for one item.

    Attributes:
        played: Whether the user has fully played the item.
        play_count: Number of completed plays.
        is_favorite: Whether the user marked the item as favorite.
        last_played_date: Time of the last playback, if any.
        playback_position_ticks: Resume position; non-zero means in progress.
    """

    played: bool = False
    play_count: int = 0
    is_favorite: bool = False
    last_played_date: datetime | None = None
    playback_position_ticks: int = 0


@dataclass
class MediaItem:
    """Represents a single catalog item with its direct metadata.

    Episodes reference their series through ``series_id``; tracks and
    episodes carry ``index_number`` and ``parent_index_number`` for
    track/episode and disc/season numbering.
    """

    item_id: str
    name: str
    item_type: str = "Movie"
    extra_type: str | None = None
    sort_name: str = ""

    # Ratings
    official_rating: str | None = None
    custom_rating: str | None = None
    community_rating: float | None = None
    critic_rating: float | None = None

    # Text content
    overview: str | None = None
    production_locations: list[str] = field(default_factory=list)
    runtime_minutes: float | None = None

    # Dates
    production_year: int | None = None
    premiere_date: datetime | None = None
    date_created: datetime | None = None
    date_modified: datetime | None = None
    date_last_refreshed: datetime | None = None
    date_last_saved: datetime | None = None

    # File
    path: str | None = None

    # Item lists
    genres: list[str] = field(default_factory=list)
    studios: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    # Audio metadata
    album: str | None = None
    artists: list[str] = field(default_factory=list)
    album_artists: list[str] = field(default_factory=list)

    # Hierarchy
    series_id: str | None = None
    series_name: str | None = None
    parent_index_number: int | None = None
    index_number: int | None = None

    # Provider ids keyed by lowercase provider name ("imdb", "tmdb", "tvdb")
    provider_ids: dict[str, str] = field(default_factory=dict)

    # Per-user data keyed by user id
    user_data: dict[str, UserItemData] = field(default_factory=dict)

    @property
    def is_container(self) -> bool:
        """True for items that hold child items (box sets, playlists)."""
        return self.item_type in CONTAINER_ITEM_TYPES

    @property
    def is_extra(self) -> bool:
        """True for extras such as trailers and featurettes."""
        return bool(self.extra_type)

    @property
    def file_name(self) -> str | None:
        """File name component of the item's path."""
        if not self.path:
            return None
        return PurePath(self.path.replace("\\", "/")).name

    @property
    def folder_path(self) -> str | None:
        """Directory component of the item's path."""
        if not self.path:
            return None
        return str(PurePath(self.path.replace("\\", "/")).parent)

    def user_state(self, user_id: str | None) -> UserItemData:
        """Returns the user's playback state, or an empty state."""
        if user_id is None:
            return UserItemData()
        return self.user_data.get(user_id, UserItemData())

    def provider_id(self, provider: str) -> str | None:
        """Returns a provider id by case-insensitive provider name."""
        wanted = provider.lower()
        for key, value in self.provider_ids.items():
            if key.lower() == wanted and value:
                return value
        return None
