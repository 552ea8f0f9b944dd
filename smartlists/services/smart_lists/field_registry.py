# smartlists/services/smart_lists/field_registry.py

"""Static catalog of every filterable field.

Each field declares its value type, UI category, extraction group and
allowed operators in one place. The registry is built once at import time
and is read-only afterwards, so concurrent reads need no locking.

A field is *expensive* when its extraction group has any tag outside
``CHEAP_EXTRACTION_GROUPS``; referencing such a field switches the pipeline
into two-phase filtering.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, IntFlag

from smartlists.services.smart_lists.models import Operator

__all__ = [
    "CHEAP_EXTRACTION_GROUPS",
    "FIELD_REGISTRY",
    "ExtractionGroup",
    "FieldCategory",
    "FieldMetadata",
    "FieldRegistry",
    "FieldValueType",
    "PARENT_SERIES_OPTION_GROUPS",
]

logger = logging.getLogger("smartlists.smart_lists.field_registry")


class ExtractionGroup(IntFlag):
    """Side-channel lookups a field needs, as a bitset."""

    NONE = 0
    AUDIO_LANGUAGES = 1 << 0
    AUDIO_QUALITY = 1 << 1
    VIDEO_QUALITY = 1 << 2
    PEOPLE = 1 << 3
    COLLECTIONS = 1 << 4
    PLAYLISTS = 1 << 5
    NEXT_UNWATCHED = 1 << 6
    SERIES_NAME = 1 << 7
    PARENT_SERIES_TAGS = 1 << 8
    PARENT_SERIES_STUDIOS = 1 << 9
    PARENT_SERIES_GENRES = 1 << 10
    SIMILAR_TO = 1 << 11
    LAST_EPISODE_AIR_DATE = 1 << 12
    FILE_INFO = 1 << 13
    LIBRARY_INFO = 1 << 14
    AUDIO_METADATA = 1 << 15
    TEXT_CONTENT = 1 << 16
    ITEM_LISTS = 1 << 17
    USER_DATA = 1 << 18
    DATES = 1 << 19
    EXTERNAL_LISTS = 1 << 20


# Direct property access or trivial computation
CHEAP_EXTRACTION_GROUPS: ExtractionGroup = (
    ExtractionGroup.FILE_INFO
    | ExtractionGroup.LIBRARY_INFO
    | ExtractionGroup.AUDIO_METADATA
    | ExtractionGroup.TEXT_CONTENT
    | ExtractionGroup.ITEM_LISTS
    | ExtractionGroup.USER_DATA
    | ExtractionGroup.DATES
)

# Expression options that pull in parent series values, keyed by field name
PARENT_SERIES_OPTION_GROUPS: dict[str, tuple[str, ExtractionGroup]] = {
    "tags": ("include_parent_series_tags", ExtractionGroup.PARENT_SERIES_TAGS),
    "studios": ("include_parent_series_studios", ExtractionGroup.PARENT_SERIES_STUDIOS),
    "genres": ("include_parent_series_genres", ExtractionGroup.PARENT_SERIES_GENRES),
}


class FieldValueType(Enum):
    """Value shape of a field; selects the comparison semantics."""

    TEXT = "text"
    NUMERIC = "numeric"
    DATE = "date"
    BOOLEAN = "boolean"
    LIST = "list"
    RESOLUTION = "resolution"
    FRAMERATE = "framerate"
    USER_DATA = "user_data"
    SIMILARITY = "similarity"
    SIMPLE = "simple"


class FieldCategory(Enum):
    """UI grouping of fields. Irrelevant to evaluation."""

    CONTENT = "Content"
    VIDEO = "Video"
    AUDIO = "Audio"
    RATINGS_PLAYBACK = "Ratings & Playback"
    FILE = "File"
    LIBRARY = "Library"
    PEOPLE = "People"
    PEOPLE_SUB_FIELDS = "People (by role)"
    COLLECTION = "Collections"
    SIMILARITY = "Similarity"


# ---------------------------------------------------------------------------
# Operator sets
# ---------------------------------------------------------------------------

STRING_OPERATORS: tuple[Operator, ...] = (
    Operator.EQUAL,
    Operator.NOT_EQUAL,
    Operator.CONTAINS,
    Operator.NOT_CONTAINS,
    Operator.IS_IN,
    Operator.IS_NOT_IN,
    Operator.MATCH_REGEX,
)

MULTI_VALUE_FIELD_OPERATORS: tuple[Operator, ...] = (
    Operator.CONTAINS,
    Operator.NOT_CONTAINS,
    Operator.IS_IN,
    Operator.IS_NOT_IN,
    Operator.MATCH_REGEX,
)

NUMERIC_OPERATORS: tuple[Operator, ...] = (
    Operator.EQUAL,
    Operator.NOT_EQUAL,
    Operator.GREATER_THAN,
    Operator.LESS_THAN,
    Operator.GREATER_THAN_OR_EQUAL,
    Operator.LESS_THAN_OR_EQUAL,
)

DATE_OPERATORS: tuple[Operator, ...] = (
    Operator.EQUAL,
    Operator.NOT_EQUAL,
    Operator.AFTER,
    Operator.BEFORE,
    Operator.NEWER_THAN,
    Operator.OLDER_THAN,
    Operator.WEEKDAY,
)

BOOLEAN_OPERATORS: tuple[Operator, ...] = (Operator.EQUAL, Operator.NOT_EQUAL)

SIMPLE_OPERATORS: tuple[Operator, ...] = (Operator.EQUAL, Operator.NOT_EQUAL)

SIMILARITY_OPERATORS: tuple[Operator, ...] = (
    Operator.EQUAL,
    Operator.CONTAINS,
    Operator.IS_IN,
    Operator.MATCH_REGEX,
)

_DEFAULT_OPERATORS: dict[FieldValueType, tuple[Operator, ...]] = {
    FieldValueType.TEXT: STRING_OPERATORS,
    FieldValueType.NUMERIC: NUMERIC_OPERATORS,
    FieldValueType.DATE: DATE_OPERATORS,
    FieldValueType.BOOLEAN: BOOLEAN_OPERATORS,
    FieldValueType.LIST: MULTI_VALUE_FIELD_OPERATORS,
    FieldValueType.RESOLUTION: NUMERIC_OPERATORS,
    FieldValueType.FRAMERATE: NUMERIC_OPERATORS,
    FieldValueType.USER_DATA: SIMPLE_OPERATORS,
    FieldValueType.SIMILARITY: SIMILARITY_OPERATORS,
    FieldValueType.SIMPLE: SIMPLE_OPERATORS,
}


@dataclass(frozen=True)
class FieldMetadata:
    """Immutable description of one filterable field.

    Attributes:
        name: Stable identifier, unique case-insensitively.
        display_label: Human-readable label.
        value_type: Value shape selecting the operator semantics.
        category: UI grouping.
        extraction_group: Side-channel lookups needed to extract the value.
        allowed_operators: Ordered operators valid for this field.
        is_user_specific: Value depends on the viewing user.
        is_person_field: Value comes from a role-based person lookup.
        person_role: Person type filtered on for role fields; None means all people.
    """

    name: str
    display_label: str
    value_type: FieldValueType
    category: FieldCategory
    extraction_group: ExtractionGroup
    allowed_operators: tuple[Operator, ...]
    is_user_specific: bool = False
    is_person_field: bool = False
    person_role: str | None = None

    @property
    def is_expensive(self) -> bool:
        """True if any extraction tag falls outside the cheap subset."""
        return bool(self.extraction_group & ~CHEAP_EXTRACTION_GROUPS)


def _field(
    name: str,
    label: str,
    value_type: FieldValueType,
    category: FieldCategory,
    group: ExtractionGroup = ExtractionGroup.NONE,
    operators: tuple[Operator, ...] | None = None,
    *,
    user_specific: bool = False,
) -> FieldMetadata:
    return FieldMetadata(
        name=name,
        display_label=label,
        value_type=value_type,
        category=category,
        extraction_group=group,
        allowed_operators=operators if operators is not None else _DEFAULT_OPERATORS[value_type],
        is_user_specific=user_specific,
    )


def _person_field(name: str, label: str, role: str | None) -> FieldMetadata:
    return FieldMetadata(
        name=name,
        display_label=label,
        value_type=FieldValueType.LIST,
        category=FieldCategory.PEOPLE if role is None else FieldCategory.PEOPLE_SUB_FIELDS,
        extraction_group=ExtractionGroup.PEOPLE,
        allowed_operators=MULTI_VALUE_FIELD_OPERATORS,
        is_person_field=True,
        person_role=role,
    )


_T = FieldValueType
_C = FieldCategory
_G = ExtractionGroup

_FIELD_TABLE: tuple[FieldMetadata, ...] = (
    # Content
    _field("Name", "Name", _T.TEXT, _C.CONTENT),
    _field("SeriesName", "Series Name", _T.TEXT, _C.CONTENT, _G.SERIES_NAME),
    _field("SimilarTo", "Similar To", _T.SIMILARITY, _C.SIMILARITY, _G.SIMILAR_TO),
    _field("OfficialRating", "Parental Rating", _T.TEXT, _C.CONTENT),
    _field("CustomRating", "Custom Rating", _T.TEXT, _C.CONTENT),
    _field("Overview", "Overview", _T.TEXT, _C.CONTENT, _G.TEXT_CONTENT),
    _field("ProductionYear", "Production Year", _T.NUMERIC, _C.CONTENT, _G.DATES),
    _field("ReleaseDate", "Release Date", _T.DATE, _C.CONTENT, _G.DATES),
    _field("LastEpisodeAirDate", "Last Episode Air Date", _T.DATE, _C.CONTENT, _G.LAST_EPISODE_AIR_DATE),
    _field("ProductionLocations", "Production Locations", _T.LIST, _C.CONTENT, _G.TEXT_CONTENT),
    _field("Genres", "Genres", _T.LIST, _C.CONTENT, _G.ITEM_LISTS),
    _field("Studios", "Studios", _T.LIST, _C.CONTENT, _G.ITEM_LISTS),
    _field("Tags", "Tags", _T.LIST, _C.CONTENT, _G.ITEM_LISTS),
    _field("ItemType", "Item Type", _T.SIMPLE, _C.CONTENT),
    _field("ExtraType", "Extra Type", _T.SIMPLE, _C.CONTENT),
    # Video
    _field("Resolution", "Resolution", _T.RESOLUTION, _C.VIDEO, _G.VIDEO_QUALITY),
    _field("Framerate", "Framerate", _T.FRAMERATE, _C.VIDEO, _G.VIDEO_QUALITY),
    _field("VideoCodec", "Video Codec", _T.TEXT, _C.VIDEO, _G.VIDEO_QUALITY),
    _field("VideoProfile", "Video Profile", _T.TEXT, _C.VIDEO, _G.VIDEO_QUALITY),
    _field("VideoRange", "Video Range", _T.TEXT, _C.VIDEO, _G.VIDEO_QUALITY),
    _field("VideoRangeType", "Video Range Type", _T.TEXT, _C.VIDEO, _G.VIDEO_QUALITY),
    # Audio
    _field("AudioLanguages", "Audio Languages", _T.LIST, _C.AUDIO, _G.AUDIO_LANGUAGES),
    _field("SubtitleLanguages", "Subtitle Languages", _T.LIST, _C.AUDIO, _G.AUDIO_LANGUAGES),
    _field("AudioBitrate", "Audio Bitrate (kbps)", _T.NUMERIC, _C.AUDIO, _G.AUDIO_QUALITY),
    _field("AudioSampleRate", "Audio Sample Rate (Hz)", _T.NUMERIC, _C.AUDIO, _G.AUDIO_QUALITY),
    _field("AudioBitDepth", "Audio Bit Depth", _T.NUMERIC, _C.AUDIO, _G.AUDIO_QUALITY),
    _field("AudioChannels", "Audio Channels", _T.NUMERIC, _C.AUDIO, _G.AUDIO_QUALITY),
    _field("AudioCodec", "Audio Codec", _T.TEXT, _C.AUDIO, _G.AUDIO_QUALITY),
    _field("AudioProfile", "Audio Profile", _T.TEXT, _C.AUDIO, _G.AUDIO_QUALITY),
    _field("Album", "Album", _T.TEXT, _C.AUDIO, _G.AUDIO_METADATA),
    _field("Artists", "Artists", _T.LIST, _C.AUDIO, _G.AUDIO_METADATA),
    _field("AlbumArtists", "Album Artists", _T.LIST, _C.AUDIO, _G.AUDIO_METADATA),
    # Ratings & playback
    _field("CommunityRating", "Community Rating", _T.NUMERIC, _C.RATINGS_PLAYBACK),
    _field("CriticRating", "Critic Rating", _T.NUMERIC, _C.RATINGS_PLAYBACK),
    _field("IsFavorite", "Is Favorite", _T.BOOLEAN, _C.RATINGS_PLAYBACK, _G.USER_DATA, user_specific=True),
    _field(
        "PlaybackStatus", "Playback Status", _T.USER_DATA, _C.RATINGS_PLAYBACK, _G.USER_DATA, user_specific=True
    ),
    _field("LastPlayedDate", "Last Played", _T.DATE, _C.RATINGS_PLAYBACK, _G.USER_DATA, user_specific=True),
    _field(
        "NextUnwatched", "Next Unwatched", _T.BOOLEAN, _C.RATINGS_PLAYBACK, _G.NEXT_UNWATCHED, user_specific=True
    ),
    _field("PlayCount", "Play Count", _T.NUMERIC, _C.RATINGS_PLAYBACK, _G.USER_DATA, user_specific=True),
    _field("RuntimeMinutes", "Runtime (Minutes)", _T.NUMERIC, _C.RATINGS_PLAYBACK, _G.TEXT_CONTENT),
    # File
    _field("FileName", "File Name", _T.TEXT, _C.FILE, _G.FILE_INFO),
    _field("FolderPath", "Folder Path", _T.TEXT, _C.FILE, _G.FILE_INFO),
    _field("DateModified", "Date Modified", _T.DATE, _C.FILE, _G.FILE_INFO),
    # Library
    _field("LibraryName", "Library Name", _T.TEXT, _C.LIBRARY, _G.LIBRARY_INFO),
    _field("DateCreated", "Date Added to Library", _T.DATE, _C.LIBRARY, _G.DATES),
    _field("DateLastRefreshed", "Last Metadata Refresh", _T.DATE, _C.LIBRARY, _G.DATES),
    _field("DateLastSaved", "Last Database Save", _T.DATE, _C.LIBRARY, _G.DATES),
    # Collections
    _field("Collections", "Collections", _T.LIST, _C.COLLECTION, _G.COLLECTIONS),
    _field("Playlists", "Playlists", _T.LIST, _C.COLLECTION, _G.PLAYLISTS),
    _field("ExternalList", "External List", _T.LIST, _C.COLLECTION, _G.EXTERNAL_LISTS, SIMPLE_OPERATORS),
    # People
    _person_field("People", "People (All)", None),
    _person_field("Actors", "Actors", "Actor"),
    _person_field("ActorRoles", "Character Names", "ActorRole"),
    _person_field("Directors", "Directors", "Director"),
    _person_field("Composers", "Composers", "Composer"),
    _person_field("Writers", "Writers", "Writer"),
    _person_field("GuestStars", "Guest Stars", "GuestStar"),
    _person_field("Producers", "Producers", "Producer"),
    _person_field("Conductors", "Conductors", "Conductor"),
    _person_field("Lyricists", "Lyricists", "Lyricist"),
    _person_field("Arrangers", "Arrangers", "Arranger"),
    _person_field("SoundEngineers", "Sound Engineers", "Engineer"),
    _person_field("Mixers", "Mixers", "Mixer"),
    _person_field("Remixers", "Remixers", "Remixer"),
    _person_field("Creators", "Creators", "Creator"),
    _person_field("PersonArtists", "Artists (Person)", "Artist"),
    _person_field("PersonAlbumArtists", "Album Artists (Person)", "AlbumArtist"),
    _person_field("Authors", "Authors", "Author"),
    _person_field("Illustrators", "Illustrators", "Illustrator"),
    _person_field("Pencilers", "Pencilers", "Penciller"),
    _person_field("Inkers", "Inkers", "Inker"),
    _person_field("Colorists", "Colorists", "Colorist"),
    _person_field("Letterers", "Letterers", "Letterer"),
    _person_field("CoverArtists", "Cover Artists", "CoverArtist"),
    _person_field("Editors", "Editors", "Editor"),
    _person_field("Translators", "Translators", "Translator"),
)


class FieldRegistry:
    """Case-insensitive, read-only lookup over a fixed field table."""

    def __init__(self, fields: tuple[FieldMetadata, ...]) -> None:
        """Builds the registry.

        Args:
            fields: The field table.

        Raises:
            ValueError: On duplicate names or a field with no operators.
        """
        by_name: dict[str, FieldMetadata] = {}
        for meta in fields:
            key = meta.name.lower()
            if key in by_name:
                raise ValueError(f"Duplicate field name: {meta.name}")
            if not meta.allowed_operators:
                raise ValueError(f"Field {meta.name} has no allowed operators")
            by_name[key] = meta
        self._fields = fields
        self._by_name = by_name

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._by_name

    def lookup(self, name: str) -> FieldMetadata | None:
        """Returns the field's metadata, or None if the name is unknown."""
        if not name:
            return None
        return self._by_name.get(name.strip().lower())

    def operators_for(self, name: str) -> tuple[Operator, ...]:
        """Returns the allowed operators for a field, empty if unknown."""
        meta = self.lookup(name)
        return meta.allowed_operators if meta else ()

    def extraction_group_of(self, name: str) -> ExtractionGroup:
        """Returns the field's extraction group, NONE if unknown."""
        meta = self.lookup(name)
        return meta.extraction_group if meta else ExtractionGroup.NONE

    def is_expensive(self, name: str) -> bool:
        """True iff the field needs a lookup outside the cheap subset."""
        meta = self.lookup(name)
        return meta.is_expensive if meta else False

    def fields(self) -> tuple[FieldMetadata, ...]:
        """All fields in declaration order."""
        return self._fields

    def fields_by_category(self) -> dict[FieldCategory, list[FieldMetadata]]:
        """Fields grouped by UI category, in declaration order."""
        grouped: dict[FieldCategory, list[FieldMetadata]] = {}
        for meta in self._fields:
            grouped.setdefault(meta.category, []).append(meta)
        return grouped

    def fields_in_group(self, group: ExtractionGroup) -> list[FieldMetadata]:
        """Fields whose extraction group shares any tag with ``group``."""
        return [meta for meta in self._fields if meta.extraction_group & group]


FIELD_REGISTRY = FieldRegistry(_FIELD_TABLE)
