# smartlists/services/smart_lists/models.py

"""Data models for smart lists: enums, dataclasses, and serialization helpers.

Defines the rule language (operators, expressions, expression sets), the
per-run evaluation context, the sort options, and the result types.
Also provides serialization helpers so hosts can hand stored JSON
definitions to the engine.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from smartlists.services.smart_lists.errors import DefinitionError

__all__ = [
    "CHILD_AGGREGATION_SORT_FIELDS",
    "DEFAULT_SIMILARITY_FIELDS",
    "MULTI_VALUE_OPERATORS",
    "MAX_SORT_OPTIONS",
    "EvaluationContext",
    "EvaluationResult",
    "Expression",
    "ExpressionSet",
    "Operator",
    "ResultItem",
    "RuleGroups",
    "SortField",
    "SortOption",
    "SortSpec",
    "expression_from_dict",
    "expression_set_from_dict",
    "expression_set_to_dict",
    "expression_to_dict",
    "parse_operator",
    "parse_sort_field",
    "rule_groups_from_json",
    "rule_groups_to_json",
    "sort_spec_from_dict",
    "sort_spec_to_dict",
    "split_multi_value",
]

logger = logging.getLogger("smartlists.smart_lists.models")


class Operator(Enum):
    """Comparison operators for smart list expressions."""

    EQUAL = "equal"
    NOT_EQUAL = "not_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IS_IN = "is_in"
    IS_NOT_IN = "is_not_in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    MATCH_REGEX = "match_regex"
    AFTER = "after"
    BEFORE = "before"
    NEWER_THAN = "newer_than"
    OLDER_THAN = "older_than"
    WEEKDAY = "weekday"


# Operators whose target is a semicolon-delimited set
MULTI_VALUE_OPERATORS: frozenset[Operator] = frozenset({Operator.IS_IN, Operator.IS_NOT_IN})


def parse_operator(value: str | Operator) -> Operator:
    """Resolves an operator from its value, enum name, or CamelCase name.

    Accepts ``"greater_than"``, ``"GREATER_THAN"`` and ``"GreaterThan"``.

    Args:
        value: Operator identifier or an Operator instance.

    Returns:
        The matching Operator.

    Raises:
        DefinitionError: If no operator matches.
    """
    if isinstance(value, Operator):
        return value
    if not isinstance(value, str) or not value.strip():
        raise DefinitionError(f"Invalid operator: {value!r}")

    raw = value.strip()
    normalized = raw.replace("_", "").replace(" ", "").lower()
    for op in Operator:
        if op.value.replace("_", "") == normalized:
            return op
    raise DefinitionError(f"Unknown operator: {raw!r}")


def split_multi_value(target: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
    """Splits a multi-value target into its trimmed, non-empty parts.

    Args:
        target: A semicolon-delimited string or an explicit sequence.

    Returns:
        Tuple of non-empty, whitespace-trimmed values.
    """
    parts = target.split(";") if isinstance(target, str) else list(target)
    return tuple(p.strip() for p in parts if p and p.strip())


# ============================================================================
# RULE DEFINITION
# ============================================================================


@dataclass(frozen=True)
class Expression:
    """A single rule: field + operator + target value + field options.

    Attributes:
        field_name: Registry name of the field to test.
        operator: The comparison operator.
        target_value: Target string, or a sequence for multi-value operators.
        user_id: Overrides the context user for user-specific fields.
        include_parent_series_tags: Tags also match the parent series' tags.
        include_parent_series_studios: Studios also match the parent series' studios.
        include_parent_series_genres: Genres also match the parent series' genres.
        only_default_language: Audio languages consider the default track only.
        include_unwatched_series: NextUnwatched treats never-started series as eligible.
    """

    field_name: str
    operator: Operator
    target_value: str | tuple[str, ...] = ""
    user_id: str | None = None
    include_parent_series_tags: bool = False
    include_parent_series_studios: bool = False
    include_parent_series_genres: bool = False
    only_default_language: bool = False
    include_unwatched_series: bool = True

    @property
    def target_values(self) -> tuple[str, ...]:
        """The target as a tuple of values (semicolon-split when a string)."""
        return split_multi_value(self.target_value)

    @property
    def target_text(self) -> str:
        """The target as a single string."""
        if isinstance(self.target_value, str):
            return self.target_value
        return ";".join(self.target_value)


@dataclass(frozen=True)
class ExpressionSet:
    """Expressions combined with AND, plus an optional per-set item limit.

    An empty set matches every item.
    """

    expressions: tuple[Expression, ...] = ()
    max_items: int | None = None


@dataclass(frozen=True)
class RuleGroups:
    """Expression sets combined with OR. Set order is significant.

    Zero sets match no item.
    """

    sets: tuple[ExpressionSet, ...] = ()

    def __len__(self) -> int:
        return len(self.sets)

    def __iter__(self):
        return iter(self.sets)


# ============================================================================
# CONTEXT
# ============================================================================

DEFAULT_SIMILARITY_FIELDS: tuple[str, ...] = ("Genre", "Tags")


@dataclass(frozen=True)
class EvaluationContext:
    """Immutable per-run options.

    Attributes:
        user_id: Reference user for user-specific fields.
        media_types: Item types to consider; empty means all types.
        include_extras: Whether extras (trailers, featurettes) are candidates.
        similarity_fields: Fields compared for the SimilarTo field.
        collection_search_depth: Nesting depth searched for child-value sorting.
        now: Fixed evaluation clock; the run start time when None.
        random_seed: Seed for the Random sort; unseeded when None.
    """

    user_id: str | None = None
    media_types: frozenset[str] = frozenset()
    include_extras: bool = False
    similarity_fields: tuple[str, ...] = DEFAULT_SIMILARITY_FIELDS
    collection_search_depth: int = 0
    now: datetime | None = None
    random_seed: int | None = None


# ============================================================================
# SORTING
# ============================================================================


class SortField(Enum):
    """Sort keys available for ordering results."""

    NO_ORDER = "NoOrder"
    RANDOM = "Random"
    NAME = "Name"
    NAME_IGNORE_ARTICLES = "NameIgnoreArticles"
    SERIES_NAME = "SeriesName"
    SERIES_NAME_IGNORE_ARTICLES = "SeriesNameIgnoreArticles"
    PRODUCTION_YEAR = "ProductionYear"
    DATE_CREATED = "DateCreated"
    RELEASE_DATE = "ReleaseDate"
    LAST_EPISODE_AIR_DATE = "LastEpisodeAirDate"
    COMMUNITY_RATING = "CommunityRating"
    PLAY_COUNT = "PlayCount"
    LAST_PLAYED = "LastPlayed"
    RUNTIME = "Runtime"
    CHANNEL_RESOLUTION = "ChannelResolution"
    ALBUM_NAME = "AlbumName"
    ARTIST = "Artist"
    SEASON_NUMBER = "SeasonNumber"
    EPISODE_NUMBER = "EpisodeNumber"
    TRACK_NUMBER = "TrackNumber"
    SIMILARITY = "Similarity"
    EXTERNAL_LIST_ORDER = "ExternalListOrder"
    RULE_BLOCK_ORDER = "RuleBlockOrder"
    RULE_BLOCK_ORDER_INTERLEAVED = "RuleBlockOrderInterleaved"


# Sort fields that may aggregate child values on container items
CHILD_AGGREGATION_SORT_FIELDS: frozenset[SortField] = frozenset(
    {
        SortField.PRODUCTION_YEAR,
        SortField.COMMUNITY_RATING,
        SortField.DATE_CREATED,
        SortField.RELEASE_DATE,
    }
)

MAX_SORT_OPTIONS = 3


def parse_sort_field(value: str | SortField) -> SortField:
    """Resolves a sort field from its value, enum name, or display label.

    Display labels such as ``"Name (Ignore Articles)"`` and
    ``"External List Order"`` are accepted.

    Raises:
        DefinitionError: If no sort field matches.
    """
    if isinstance(value, SortField):
        return value
    normalized = "".join(ch for ch in str(value).lower() if ch.isalnum())
    for sort_field in SortField:
        if normalized in (sort_field.value.lower(), sort_field.name.replace("_", "").lower()):
            return sort_field
    raise DefinitionError(f"Unknown sort field: {value!r}")


@dataclass(frozen=True)
class SortOption:
    """One sort key: field, direction and child-value aggregation flag."""

    sort_field: SortField
    descending: bool = False
    use_child_values: bool = False


@dataclass(frozen=True)
class SortSpec:
    """Up to three sort options applied left to right.

    Raises:
        DefinitionError: On too many options or child aggregation on a
            field that does not support it.
    """

    options: tuple[SortOption, ...] = ()

    def __post_init__(self) -> None:
        if len(self.options) > MAX_SORT_OPTIONS:
            raise DefinitionError(
                f"At most {MAX_SORT_OPTIONS} sort options are allowed, got {len(self.options)}"
            )
        for option in self.options:
            if option.use_child_values and option.sort_field not in CHILD_AGGREGATION_SORT_FIELDS:
                raise DefinitionError(f"Child value sorting is not supported for {option.sort_field.value}")

    @classmethod
    def of(cls, *options: SortOption) -> SortSpec:
        """Builds a SortSpec from positional options."""
        return cls(options=tuple(options))

    @property
    def is_rule_block_order(self) -> bool:
        """True when the primary key keeps rule block grouping."""
        return bool(self.options) and self.options[0].sort_field in (
            SortField.RULE_BLOCK_ORDER,
            SortField.RULE_BLOCK_ORDER_INTERLEAVED,
        )


# ============================================================================
# RESULTS
# ============================================================================


@dataclass(frozen=True)
class ResultItem:
    """One output item with the sort key tuple used to place it.

    Attributes:
        item_id: Identifier of the matched item.
        sort_key: Resolved sort values, one per sort option.
        group_index: Index of the expression set that contributed the item.
    """

    item_id: str
    sort_key: tuple[Any, ...] = ()
    group_index: int = 0


@dataclass
class EvaluationResult:
    """Outcome of a successful evaluation run.

    Attributes:
        items: Ordered, bounded result items.
        failed_items: Number of items excluded due to per-item failures.
        warnings: Non-fatal diagnostics (for example unreachable external lists).
        candidate_count: Number of candidates considered.
        matched_count: Number of items that matched before limits.
    """

    items: list[ResultItem] = field(default_factory=list)
    failed_items: int = 0
    warnings: list[str] = field(default_factory=list)
    candidate_count: int = 0
    matched_count: int = 0

    @property
    def item_ids(self) -> list[str]:
        """Identifiers of the result items, in order."""
        return [item.item_id for item in self.items]


# ============================================================================
# SERIALIZATION
# ============================================================================

_OPTION_KEYS: tuple[str, ...] = (
    "include_parent_series_tags",
    "include_parent_series_studios",
    "include_parent_series_genres",
    "only_default_language",
)


def expression_to_dict(expression: Expression) -> dict[str, Any]:
    """Serializes an Expression to a JSON-compatible dict."""
    data: dict[str, Any] = {
        "field": expression.field_name,
        "operator": expression.operator.value,
        "value": (
            expression.target_value if isinstance(expression.target_value, str) else list(expression.target_value)
        ),
    }
    if expression.user_id:
        data["user_id"] = expression.user_id
    for key in _OPTION_KEYS:
        if getattr(expression, key):
            data[key] = True
    if not expression.include_unwatched_series:
        data["include_unwatched_series"] = False
    return data


def expression_from_dict(data: dict[str, Any]) -> Expression:
    """Deserializes an Expression from a dict.

    Raises:
        DefinitionError: If required keys are missing or malformed.
    """
    if not isinstance(data, dict):
        raise DefinitionError(f"Expression must be an object, got {type(data).__name__}")
    field_name = data.get("field")
    if not isinstance(field_name, str) or not field_name.strip():
        raise DefinitionError("Expression is missing a field name")

    raw_value = data.get("value", "")
    if isinstance(raw_value, list):
        target: str | tuple[str, ...] = tuple(str(v) for v in raw_value)
    elif raw_value is None:
        target = ""
    else:
        target = str(raw_value)

    options = {key: bool(data.get(key, False)) for key in _OPTION_KEYS}
    return Expression(
        field_name=field_name.strip(),
        operator=parse_operator(data.get("operator", "")),
        target_value=target,
        user_id=data.get("user_id") or None,
        include_unwatched_series=bool(data.get("include_unwatched_series", True)),
        **options,
    )


def expression_set_to_dict(expression_set: ExpressionSet) -> dict[str, Any]:
    """Serializes an ExpressionSet to a JSON-compatible dict."""
    data: dict[str, Any] = {"expressions": [expression_to_dict(e) for e in expression_set.expressions]}
    if expression_set.max_items is not None:
        data["max_items"] = expression_set.max_items
    return data


def expression_set_from_dict(data: dict[str, Any]) -> ExpressionSet:
    """Deserializes an ExpressionSet from a dict.

    Raises:
        DefinitionError: If the expressions or limit are malformed.
    """
    if not isinstance(data, dict):
        raise DefinitionError(f"Expression set must be an object, got {type(data).__name__}")
    raw_expressions = data.get("expressions", [])
    if not isinstance(raw_expressions, list):
        raise DefinitionError("Expression set 'expressions' must be a list")

    max_items = data.get("max_items")
    if max_items is not None and (isinstance(max_items, bool) or not isinstance(max_items, int)):
        raise DefinitionError(f"Invalid max_items: {max_items!r}")

    return ExpressionSet(
        expressions=tuple(expression_from_dict(e) for e in raw_expressions),
        max_items=max_items,
    )


def rule_groups_to_json(rule_groups: RuleGroups) -> str:
    """Serializes RuleGroups to a JSON string."""
    return json.dumps({"sets": [expression_set_to_dict(s) for s in rule_groups.sets]}, ensure_ascii=False)


def rule_groups_from_json(json_str: str) -> RuleGroups:
    """Deserializes RuleGroups from a JSON string.

    Raises:
        DefinitionError: If the JSON is invalid or malformed.
    """
    try:
        data = json.loads(json_str)
    except (TypeError, ValueError) as exc:
        raise DefinitionError(f"Invalid rule JSON: {exc}") from exc

    raw_sets = data.get("sets") if isinstance(data, dict) else data
    if not isinstance(raw_sets, list):
        raise DefinitionError("Rule definition must contain a list of expression sets")
    return RuleGroups(sets=tuple(expression_set_from_dict(s) for s in raw_sets))


def sort_spec_to_dict(sort_spec: SortSpec) -> list[dict[str, Any]]:
    """Serializes a SortSpec to a list of option dicts."""
    return [
        {
            "field": option.sort_field.value,
            "descending": option.descending,
            "use_child_values": option.use_child_values,
        }
        for option in sort_spec.options
    ]


def sort_spec_from_dict(data: list[dict[str, Any]]) -> SortSpec:
    """Deserializes a SortSpec from a list of option dicts.

    Raises:
        DefinitionError: If a field is unknown or the options are invalid.
    """
    if not isinstance(data, list):
        raise DefinitionError("Sort options must be a list")
    options: list[SortOption] = []
    for entry in data:
        if not isinstance(entry, dict):
            raise DefinitionError(f"Sort option must be an object, got {type(entry).__name__}")
        direction = str(entry.get("order", "")).lower()
        options.append(
            SortOption(
                sort_field=parse_sort_field(entry.get("field", "")),
                descending=bool(entry.get("descending", direction == "descending")),
                use_child_values=bool(entry.get("use_child_values", False)),
            )
        )
    return SortSpec(options=tuple(options))
