# smartlists/services/smart_lists/extraction.py

"""Field value extraction.

Cheap fields read the candidate record directly. Expensive fields resolve
through the run's ``EvaluationCache``, which calls the injected
``CatalogLookups`` at most once per key. A failing lookup surfaces as an
``ExtractionError`` and excludes only the item being evaluated.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from smartlists.services.smart_lists.cache import CacheTable, EvaluationCache
from smartlists.services.smart_lists.errors import ExtractionError
from smartlists.services.smart_lists.lookups import CatalogLookups, MediaStreamInfo, Person, SeriesInfo
from smartlists.services.smart_lists.similarity import SimilarityIndex, SimilarityMatch

if TYPE_CHECKING:
    from datetime import datetime

    from smartlists.core.media_item import MediaItem
    from smartlists.integrations.external_lists import ExternalListResult
    from smartlists.services.smart_lists.models import EvaluationContext, Expression
    from smartlists.services.smart_lists.validation import CompiledExpression

__all__ = ["FieldExtractor", "playback_status", "similarity_key"]

logger = logging.getLogger("smartlists.smart_lists.extraction")


def playback_status(item: MediaItem, user_id: str | None) -> str:
    """Returns "played", "in_progress" or "unplayed" for the user."""
    state = item.user_state(user_id)
    if state.played:
        return "played"
    if state.playback_position_ticks > 0:
        return "in_progress"
    return "unplayed"


def similarity_key(expression: Expression) -> tuple[str, str]:
    """Identifies the reference selection of a SimilarTo expression."""
    return (expression.operator.value, expression.target_text)


def _user(item: MediaItem, expression: Expression, context: EvaluationContext) -> str | None:
    return expression.user_id or context.user_id


# ---------------------------------------------------------------------------
# Cheap extractors: (item, expression, context) -> value
# ---------------------------------------------------------------------------

_CheapFn = Callable[["MediaItem", "Expression", "EvaluationContext"], Any]

_CHEAP_EXTRACTORS: dict[str, _CheapFn] = {
    "name": lambda item, e, c: item.name,
    "officialrating": lambda item, e, c: item.official_rating,
    "customrating": lambda item, e, c: item.custom_rating,
    "overview": lambda item, e, c: item.overview,
    "productionyear": lambda item, e, c: item.production_year,
    "releasedate": lambda item, e, c: item.premiere_date,
    "productionlocations": lambda item, e, c: item.production_locations,
    "genres": lambda item, e, c: item.genres,
    "studios": lambda item, e, c: item.studios,
    "tags": lambda item, e, c: item.tags,
    "itemtype": lambda item, e, c: item.item_type,
    "extratype": lambda item, e, c: item.extra_type,
    "communityrating": lambda item, e, c: item.community_rating,
    "criticrating": lambda item, e, c: item.critic_rating,
    "isfavorite": lambda item, e, c: item.user_state(_user(item, e, c)).is_favorite,
    "playbackstatus": lambda item, e, c: playback_status(item, _user(item, e, c)),
    "lastplayeddate": lambda item, e, c: item.user_state(_user(item, e, c)).last_played_date,
    "playcount": lambda item, e, c: item.user_state(_user(item, e, c)).play_count,
    "runtimeminutes": lambda item, e, c: item.runtime_minutes,
    "filename": lambda item, e, c: item.file_name,
    "folderpath": lambda item, e, c: item.folder_path,
    "datemodified": lambda item, e, c: item.date_modified,
    "datecreated": lambda item, e, c: item.date_created,
    "datelastrefreshed": lambda item, e, c: item.date_last_refreshed,
    "datelastsaved": lambda item, e, c: item.date_last_saved,
    "album": lambda item, e, c: item.album,
    "artists": lambda item, e, c: item.artists,
    "albumartists": lambda item, e, c: item.album_artists,
}

# MediaStreamInfo attribute per stream field
_STREAM_ATTRIBUTES: dict[str, str] = {
    "resolution": "video_height",
    "framerate": "framerate",
    "videocodec": "video_codec",
    "videoprofile": "video_profile",
    "videorange": "video_range",
    "videorangetype": "video_range_type",
    "subtitlelanguages": "subtitle_languages",
    "audiobitrate": "audio_bitrate_kbps",
    "audiosamplerate": "audio_sample_rate",
    "audiobitdepth": "audio_bit_depth",
    "audiochannels": "audio_channels",
    "audiocodec": "audio_codec",
    "audioprofile": "audio_profile",
}

# Similarity comparison field -> person type, for people-based comparisons
_SIMILARITY_PERSON_TYPES: dict[str, str] = {
    "actors": "Actor",
    "directors": "Director",
    "writers": "Writer",
    "producers": "Producer",
}


class FieldExtractor:
    """Extracts field values for one evaluation run.

    Args:
        lookups: Host catalog lookups.
        cache: The run's evaluation cache.
        context: The run's evaluation context.
    """

    def __init__(self, lookups: CatalogLookups, cache: EvaluationCache, context: EvaluationContext) -> None:
        self._lookups = lookups
        self._cache = cache
        self._context = context
        self._similarity: dict[tuple[str, str], SimilarityIndex] = {}
        self._warnings: list[str] = []
        self._warnings_lock = threading.Lock()

    @property
    def cache(self) -> EvaluationCache:
        return self._cache

    @property
    def warnings(self) -> list[str]:
        """Warnings collected during extraction, in first-seen order."""
        with self._warnings_lock:
            return list(self._warnings)

    def _warn(self, message: str) -> None:
        with self._warnings_lock:
            if message not in self._warnings:
                self._warnings.append(message)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def extract(self, compiled: CompiledExpression, item: MediaItem) -> Any:
        """Returns the value a compiled expression tests for an item.

        Raises:
            ExtractionError: If a lookup needed for the value failed.
        """
        meta = compiled.meta
        expression = compiled.expression
        key = meta.name.lower()

        if meta.is_person_field:
            return self._person_values(item, meta.person_role)

        if key in ("genres", "studios", "tags") and compiled.is_expensive:
            return self._with_parent_series(item, key)

        cheap = _CHEAP_EXTRACTORS.get(key)
        if cheap is not None:
            return cheap(item, expression, self._context)

        if key in _STREAM_ATTRIBUTES:
            streams = self.media_streams(item)
            if streams is None:
                return [] if key == "subtitlelanguages" else None
            return getattr(streams, _STREAM_ATTRIBUTES[key])
        if key == "audiolanguages":
            return self._audio_languages(item, expression.only_default_language)
        if key == "libraryname":
            return self._cache.get_or_compute(
                CacheTable.LIBRARY_NAMES, item.item_id, lambda: self._lookups.library_name(item)
            )
        if key == "seriesname":
            return self.series_name(item)
        if key == "lastepisodeairdate":
            return self.last_episode_air_date(item)
        if key == "collections":
            return self._cache.get_or_compute(
                CacheTable.COLLECTIONS, item.item_id, lambda: self._lookups.collections(item)
            )
        if key == "playlists":
            user_id = _user(item, expression, self._context)
            return self._cache.get_or_compute(
                CacheTable.PLAYLISTS, (item.item_id, user_id), lambda: self._lookups.playlists(item, user_id)
            )
        if key == "nextunwatched":
            return self._is_next_unwatched(item, expression)
        if key == "similarto":
            return self.similarity(item, expression)
        if key == "externallist":
            return self.external_list_position(item, compiled.target)

        raise ExtractionError(f"No extractor for field {meta.name}", item_id=item.item_id)

    # ------------------------------------------------------------------
    # Expensive lookups
    # ------------------------------------------------------------------

    def media_streams(self, item: MediaItem) -> MediaStreamInfo | None:
        return self._cache.get_or_compute(
            CacheTable.MEDIA_STREAMS, item.item_id, lambda: self._lookups.media_streams(item)
        )

    def people(self, item: MediaItem) -> list[Person]:
        return self._cache.get_or_compute(CacheTable.PEOPLE, item.item_id, lambda: self._lookups.people(item))

    def _series(self, series_id: str | None) -> SeriesInfo | None:
        if not series_id:
            return None
        return self._cache.get_or_compute(CacheTable.SERIES, series_id, lambda: self._lookups.series(series_id))

    def series_name(self, item: MediaItem) -> str | None:
        """Name of the item's series, from the series lookup when available."""
        series = self._series(item.series_id)
        if series is not None and series.name:
            return series.name
        return item.series_name

    def last_episode_air_date(self, item: MediaItem) -> datetime | None:
        """Air date of the newest episode of a series, or of an episode's series."""
        series = self._series(item.item_id if item.item_type == "Series" else item.series_id)
        return series.last_episode_air_date if series else None

    def _person_values(self, item: MediaItem, role: str | None) -> list[str]:
        people = self.people(item)
        if role is None:
            return [p.name for p in people]
        if role == "ActorRole":
            return [p.role for p in people if p.role and p.person_type.lower() == "actor"]
        wanted = role.lower()
        return [p.name for p in people if p.person_type.lower() == wanted]

    def _with_parent_series(self, item: MediaItem, key: str) -> list[str]:
        own = list(getattr(item, key))
        series = self._series(item.series_id)
        if series is None:
            return own
        return own + [value for value in getattr(series, key) if value not in own]

    def _audio_languages(self, item: MediaItem, only_default: bool) -> list[str]:
        streams = self.media_streams(item)
        if streams is None:
            return []
        if only_default:
            return [streams.default_audio_language] if streams.default_audio_language else []
        return list(streams.audio_languages)

    def _is_next_unwatched(self, item: MediaItem, expression: Expression) -> bool:
        if item.item_type != "Episode" or not item.series_id:
            return False
        user_id = _user(item, expression, self._context)
        include = expression.include_unwatched_series
        series_id = item.series_id
        next_id = self._cache.get_or_compute(
            CacheTable.NEXT_UNWATCHED,
            (series_id, user_id, include),
            lambda: self._lookups.next_unwatched(series_id, user_id, include),
        )
        return next_id == item.item_id

    # ------------------------------------------------------------------
    # External lists
    # ------------------------------------------------------------------

    def external_list(self, url: str) -> ExternalListResult:
        """Fetches (once per run) the list behind a URL."""
        result = self._cache.get_or_compute(
            CacheTable.EXTERNAL_LISTS, url.strip().lower(), lambda: self._lookups.external_list(url)
        )
        if result.warning:
            self._warn(result.warning)
        return result

    def external_list_position(self, item: MediaItem, url: str) -> int | None:
        """Position of the item on an external list, None if absent.

        Episodes fall back to their parent series' provider ids.
        """

        def compute() -> int | None:
            listing = self.external_list(url)
            position = listing.position_of(item.provider_ids)
            if position is None and item.item_type == "Episode":
                series = self._series(item.series_id)
                if series is not None:
                    position = listing.position_of(series.provider_ids)
            return position

        return self._cache.get_or_compute(
            CacheTable.EXTERNAL_LIST_POSITIONS, (item.item_id, url.strip().lower()), compute
        )

    # ------------------------------------------------------------------
    # Similarity
    # ------------------------------------------------------------------

    def comparison_values(self, item: MediaItem, field_name: str) -> list[str]:
        """Values of a similarity comparison field for an item.

        A failed people or stream lookup contributes no values.
        """
        key = field_name.replace(" ", "").lower()
        if key == "genre":
            return list(item.genres)
        if key in ("tags", "studios"):
            return list(getattr(item, key))
        try:
            if key in _SIMILARITY_PERSON_TYPES:
                return self._person_values(item, _SIMILARITY_PERSON_TYPES[key])
            if key == "audiolanguages":
                return self._audio_languages(item, only_default=False)
        except ExtractionError as exc:
            logger.debug("No %s values for %s: %s", field_name, item.item_id, exc)
            return []
        if key == "name":
            return [item.name]
        if key == "productionyear":
            return [str(item.production_year)] if item.production_year is not None else []
        if key == "officialrating":
            return [item.official_rating] if item.official_rating else []
        return []

    def register_similarity(self, expression: Expression, references: list[MediaItem]) -> SimilarityIndex:
        """Builds the similarity index for a SimilarTo expression."""
        index = SimilarityIndex(references, tuple(self._context.similarity_fields), self.comparison_values)
        self._similarity[similarity_key(expression)] = index
        if not references:
            self._warn(f"SimilarTo '{expression.target_text}' matched no reference items")
        return index

    def similarity(self, item: MediaItem, expression: Expression) -> SimilarityMatch | None:
        key = similarity_key(expression)
        index = self._similarity.get(key)
        if index is None:
            return None
        return self._cache.get_or_compute(
            CacheTable.SIMILARITY_SCORES, (item.item_id, key), lambda: index.score(item)
        )

    def similarity_score(self, item: MediaItem) -> float | None:
        """Highest similarity score of an item across registered indexes."""
        scores: list[float] = []
        for key, index in self._similarity.items():
            match = self._cache.get_or_compute(
                CacheTable.SIMILARITY_SCORES, (item.item_id, key), lambda: index.score(item)
            )
            scores.append(match.score)
        return max(scores) if scores else None

    # ------------------------------------------------------------------
    # Child items
    # ------------------------------------------------------------------

    def child_items(self, item: MediaItem) -> list[MediaItem]:
        return self._cache.get_or_compute(
            CacheTable.CHILD_ITEMS, item.item_id, lambda: self._lookups.child_items(item)
        )
