# smartlists/services/smart_lists/ordering.py

"""Ordering and limit stage.

Turns the matched items of each expression set into the final ordered,
bounded list:

    1. Per-group limits: each set's items are sorted and truncated to the
       set's limit. An item taken by an earlier set is not available to
       later sets and counts as contributed by the set that took it.
    2. Merge and sort: the merged items are sorted by up to three keys with
       a stable comparator. Missing values sort last in either direction.
    3. Global limit and playtime cap: items are taken in order until the
       item limit is reached or the next item would exceed the cap.

Rule block order keeps the set grouping (optionally interleaved round
robin); Random shuffles deterministically once per run.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from datetime import datetime
from functools import cmp_to_key
from typing import TYPE_CHECKING, Any

from smartlists.services.smart_lists.errors import ExtractionError
from smartlists.services.smart_lists.models import ResultItem, SortField, SortOption, SortSpec
from smartlists.utils.date_utils import to_utc
from smartlists.utils.name_utils import natural_sort_key, strip_leading_article

if TYPE_CHECKING:
    from smartlists.core.media_item import MediaItem
    from smartlists.services.smart_lists.extraction import FieldExtractor
    from smartlists.services.smart_lists.models import EvaluationContext

__all__ = ["SortValueResolver", "apply_limits", "limit_per_group", "order_and_limit", "sort_items"]

logger = logging.getLogger("smartlists.smart_lists.ordering")


def _timestamp(value: datetime | None) -> float | None:
    return to_utc(value).timestamp() if value is not None else None


def _name_key(value: str | None) -> tuple[int, float, str] | None:
    return natural_sort_key(value) if value else None


class SortValueResolver:
    """Resolves sort values for items of one run.

    Args:
        context: The run's evaluation context.
        extractor: Field extractor for looked-up values; plain attributes only when None.
        external_list_url: List whose positions drive External List Order.
    """

    def __init__(
        self,
        context: EvaluationContext,
        extractor: FieldExtractor | None = None,
        external_list_url: str | None = None,
    ) -> None:
        self._context = context
        self._extractor = extractor
        self._external_list_url = external_list_url
        self._rng = random.Random(context.random_seed)
        self._random_keys: dict[str, float] = {}
        self._group_of: dict[str, int] = {}

        self._resolvers: dict[SortField, Callable[[MediaItem], Any]] = {
            SortField.NO_ORDER: lambda item: 0,
            SortField.RANDOM: self._random_key,
            SortField.NAME: lambda item: _name_key(item.sort_name or item.name),
            SortField.NAME_IGNORE_ARTICLES: lambda item: _name_key(strip_leading_article(item.name)),
            SortField.SERIES_NAME: lambda item: _name_key(self._series_name(item)),
            SortField.SERIES_NAME_IGNORE_ARTICLES: lambda item: _name_key(
                strip_leading_article(self._series_name(item) or "")
            ),
            SortField.PRODUCTION_YEAR: lambda item: item.production_year,
            SortField.DATE_CREATED: lambda item: _timestamp(item.date_created),
            SortField.RELEASE_DATE: lambda item: _timestamp(item.premiere_date),
            SortField.LAST_EPISODE_AIR_DATE: self._last_episode_air_date,
            SortField.COMMUNITY_RATING: lambda item: item.community_rating,
            SortField.PLAY_COUNT: lambda item: item.user_state(context.user_id).play_count,
            SortField.LAST_PLAYED: lambda item: _timestamp(item.user_state(context.user_id).last_played_date),
            SortField.RUNTIME: lambda item: item.runtime_minutes,
            SortField.CHANNEL_RESOLUTION: self._resolution,
            SortField.ALBUM_NAME: lambda item: _name_key(item.album),
            SortField.ARTIST: lambda item: _name_key(next(iter(item.artists or item.album_artists), None)),
            SortField.SEASON_NUMBER: lambda item: item.parent_index_number,
            SortField.EPISODE_NUMBER: lambda item: item.index_number,
            SortField.TRACK_NUMBER: lambda item: item.index_number,
            SortField.SIMILARITY: self._similarity,
            SortField.EXTERNAL_LIST_ORDER: self._external_position,
            SortField.RULE_BLOCK_ORDER: self.group_of,
            SortField.RULE_BLOCK_ORDER_INTERLEAVED: self.group_of,
        }

    # ------------------------------------------------------------------
    # Group bookkeeping
    # ------------------------------------------------------------------

    def assign_group(self, item: MediaItem, group_index: int) -> None:
        """Records the expression set an item is placed under."""
        self._group_of[item.item_id] = group_index

    def group_of(self, item: MediaItem) -> int:
        return self._group_of.get(item.item_id, 0)

    # ------------------------------------------------------------------
    # Value resolution
    # ------------------------------------------------------------------

    def _random_key(self, item: MediaItem) -> float:
        key = self._random_keys.get(item.item_id)
        if key is None:
            key = self._rng.random()
            self._random_keys[item.item_id] = key
        return key

    def _series_name(self, item: MediaItem) -> str | None:
        if self._extractor is None:
            return item.series_name
        try:
            return self._extractor.series_name(item)
        except ExtractionError as exc:
            logger.debug("No series name for %s: %s", item.item_id, exc)
            return None

    def _last_episode_air_date(self, item: MediaItem) -> float | None:
        if self._extractor is None:
            return None
        try:
            return _timestamp(self._extractor.last_episode_air_date(item))
        except ExtractionError as exc:
            logger.debug("No last episode air date for %s: %s", item.item_id, exc)
            return None

    def _resolution(self, item: MediaItem) -> int | None:
        if self._extractor is None:
            return None
        try:
            streams = self._extractor.media_streams(item)
        except ExtractionError as exc:
            logger.debug("No media streams for %s: %s", item.item_id, exc)
            return None
        return streams.video_height if streams is not None else None

    def _similarity(self, item: MediaItem) -> float | None:
        if self._extractor is None:
            return None
        try:
            return self._extractor.similarity_score(item)
        except ExtractionError as exc:
            logger.debug("No similarity score for %s: %s", item.item_id, exc)
            return None

    def _external_position(self, item: MediaItem) -> int | None:
        if self._extractor is None or not self._external_list_url:
            return None
        try:
            return self._extractor.external_list_position(item, self._external_list_url)
        except ExtractionError as exc:
            logger.debug("No external list position for %s: %s", item.item_id, exc)
            return None

    def _children(self, item: MediaItem) -> list[MediaItem]:
        if self._extractor is None:
            return []
        try:
            return self._extractor.child_items(item)
        except ExtractionError as exc:
            logger.debug("No child items for %s: %s", item.item_id, exc)
            return []

    def _child_values(self, item: MediaItem, resolve: Callable[[MediaItem], Any]) -> list[Any]:
        values: list[Any] = []
        visited: set[str] = {item.item_id}
        frontier: list[tuple[MediaItem, int]] = [(item, 0)]
        while frontier:
            parent, depth = frontier.pop()
            for child in self._children(parent):
                if child.item_id in visited:
                    continue
                visited.add(child.item_id)
                if child.is_container:
                    if depth < self._context.collection_search_depth:
                        frontier.append((child, depth + 1))
                    continue
                value = resolve(child)
                if value is not None:
                    values.append(value)
        return values

    def value(self, option: SortOption, item: MediaItem) -> Any:
        """Resolves one sort value; None means missing."""
        resolve = self._resolvers[option.sort_field]
        if option.use_child_values and item.is_container:
            children = self._child_values(item, resolve)
            if children:
                return max(children) if option.descending else min(children)
        return resolve(item)

    def key(self, sort_spec: SortSpec, item: MediaItem) -> tuple[Any, ...]:
        """Resolves the full sort key tuple of an item."""
        return tuple(self.value(option, item) for option in sort_spec.options)


# ============================================================================
# SORTING
# ============================================================================


def _compare_values(a: Any, b: Any, descending: bool) -> int:
    # Missing values sort last in both directions
    if a is None and b is None:
        return 0
    if a is None:
        return 1
    if b is None:
        return -1
    if a == b:
        return 0
    result = -1 if a < b else 1
    return -result if descending else result


def sort_items(
    items: list[MediaItem],
    sort_spec: SortSpec,
    resolver: SortValueResolver,
    skip_fields: frozenset[SortField] = frozenset(),
) -> list[MediaItem]:
    """Stable multi-key sort.

    Args:
        items: Items in input order.
        sort_spec: Sort options applied left to right.
        resolver: Sort value resolver of the run.
        skip_fields: Sort fields to ignore.

    Returns:
        A new, sorted list.
    """
    options = [o for o in sort_spec.options if o.sort_field not in skip_fields]
    if not options:
        return list(items)

    keys = {item.item_id: tuple(resolver.value(o, item) for o in options) for item in items}

    def compare(a: MediaItem, b: MediaItem) -> int:
        for option, va, vb in zip(options, keys[a.item_id], keys[b.item_id]):
            result = _compare_values(va, vb, option.descending)
            if result:
                return result
        return 0

    return sorted(items, key=cmp_to_key(compare))


_RULE_BLOCK_FIELDS: frozenset[SortField] = frozenset(
    {SortField.RULE_BLOCK_ORDER, SortField.RULE_BLOCK_ORDER_INTERLEAVED}
)


def _interleave(items: list[MediaItem], sort_spec: SortSpec, resolver: SortValueResolver) -> list[MediaItem]:
    descending = sort_spec.options[0].descending
    buckets: dict[int, list[MediaItem]] = {}
    for item in items:
        buckets.setdefault(resolver.group_of(item), []).append(item)
    ordered = [
        sort_items(buckets[index], sort_spec, resolver, skip_fields=_RULE_BLOCK_FIELDS)
        for index in sorted(buckets, reverse=descending)
    ]
    result: list[MediaItem] = []
    for position in range(max((len(b) for b in ordered), default=0)):
        result.extend(bucket[position] for bucket in ordered if position < len(bucket))
    return result


# ============================================================================
# LIMITS
# ============================================================================


def limit_per_group(
    groups: list[list[MediaItem]],
    limits: list[int | None],
    sort_spec: SortSpec,
    resolver: SortValueResolver,
) -> list[MediaItem]:
    """Sorts and truncates each group, skipping items already taken.

    Args:
        groups: Matched items per expression set, in set order.
        limits: Item limit per set; None means unlimited.
        sort_spec: Sort options used within each group.
        resolver: Sort value resolver; records the contributing group.

    Returns:
        The contributed items, group after group.
    """
    taken: set[str] = set()
    merged: list[MediaItem] = []
    for index, (group, limit) in enumerate(zip(groups, limits)):
        available = [item for item in group if item.item_id not in taken]
        ordered = sort_items(available, sort_spec, resolver, skip_fields=_RULE_BLOCK_FIELDS)
        selected = ordered if limit is None else ordered[:limit]
        for item in selected:
            taken.add(item.item_id)
            resolver.assign_group(item, index)
        merged.extend(selected)
    return merged


def apply_limits(
    items: list[MediaItem],
    global_max: int | None = None,
    playtime_cap_minutes: float | None = None,
) -> list[MediaItem]:
    """Applies the global item limit and the playtime cap in sorted order.

    The item that would push accumulated runtime past the cap is excluded
    together with everything after it. Missing runtimes count as zero.
    """
    limited: list[MediaItem] = []
    total_minutes = 0.0
    for item in items:
        if global_max is not None and len(limited) >= global_max:
            break
        if playtime_cap_minutes is not None:
            minutes = item.runtime_minutes or 0.0
            if total_minutes + minutes > playtime_cap_minutes:
                break
            total_minutes += minutes
        limited.append(item)
    return limited


def order_and_limit(
    matched_groups: list[list[MediaItem]],
    sort_spec: SortSpec | None,
    resolver: SortValueResolver,
    per_group_max: int | None = None,
    global_max: int | None = None,
    playtime_cap_minutes: float | None = None,
    group_limits: list[int | None] | None = None,
) -> list[ResultItem]:
    """Sorts, merges and bounds the matched items of every expression set.

    Args:
        matched_groups: Matched items per expression set, in set order.
        sort_spec: Sort options; no reordering when None or empty.
        resolver: Sort value resolver of the run.
        per_group_max: Default item limit for sets without their own.
        global_max: Limit on the total number of items.
        playtime_cap_minutes: Limit on the accumulated runtime.
        group_limits: Per-set limits overriding ``per_group_max``.

    Returns:
        Ordered result items with their resolved sort keys.
    """
    sort_spec = sort_spec or SortSpec()
    limits: list[int | None] = [
        (group_limits[i] if group_limits and i < len(group_limits) and group_limits[i] else None) or per_group_max
        for i in range(len(matched_groups))
    ]

    if any(limit is not None for limit in limits):
        merged = limit_per_group(matched_groups, limits, sort_spec, resolver)
    else:
        merged = []
        seen: set[str] = set()
        for index, group in enumerate(matched_groups):
            for item in group:
                if item.item_id in seen:
                    continue
                seen.add(item.item_id)
                resolver.assign_group(item, index)
                merged.append(item)

    if sort_spec.options and sort_spec.options[0].sort_field is SortField.RULE_BLOCK_ORDER_INTERLEAVED:
        ordered = _interleave(merged, sort_spec, resolver)
    else:
        ordered = sort_items(merged, sort_spec, resolver)

    final = apply_limits(ordered, global_max, playtime_cap_minutes)
    logger.debug("Ordered %d merged items, %d after limits", len(merged), len(final))
    return [
        ResultItem(item_id=item.item_id, sort_key=resolver.key(sort_spec, item), group_index=resolver.group_of(item))
        for item in final
    ]
