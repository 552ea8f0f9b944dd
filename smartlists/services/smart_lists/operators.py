# smartlists/services/smart_lists/operators.py

"""Operator semantics per field value type.

Targets are parsed once, at compile time, by ``compile_target``; a target
that cannot be parsed for its operator raises ``DefinitionError`` before
any item is processed. At evaluation time ``evaluate`` dispatches on the
field's ``FieldValueType`` through a fixed table of matcher functions.

Missing values never satisfy a positive test. Negated operators
(not_equal, not_contains, is_not_in) are the exact negation of their
positive counterpart, so a missing value satisfies them.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import regex

from smartlists.services.smart_lists.errors import DefinitionError, RegexTimeoutError
from smartlists.services.smart_lists.field_registry import FieldMetadata, FieldValueType
from smartlists.services.smart_lists.models import MULTI_VALUE_OPERATORS, Expression, Operator
from smartlists.utils.date_utils import (
    MAX_RELATIVE_DURATION,
    parse_date,
    parse_relative_duration,
    parse_weekday,
    to_utc,
)

if TYPE_CHECKING:
    from smartlists.services.smart_lists.similarity import SimilarityMatch

__all__ = [
    "MatchContext",
    "NEGATED_OPERATORS",
    "PLAYBACK_STATUSES",
    "RESOLUTION_HEIGHTS",
    "RegexMatcher",
    "compile_target",
    "evaluate",
    "match_text",
    "matcher_for",
    "resolve_resolution",
]

logger = logging.getLogger("smartlists.smart_lists.operators")

NEGATED_OPERATORS: frozenset[Operator] = frozenset({Operator.NOT_EQUAL, Operator.NOT_CONTAINS, Operator.IS_NOT_IN})

_POSITIVE_OF: dict[Operator, Operator] = {
    Operator.NOT_EQUAL: Operator.EQUAL,
    Operator.NOT_CONTAINS: Operator.CONTAINS,
    Operator.IS_NOT_IN: Operator.IS_IN,
}

# Resolution labels -> video height in pixels
RESOLUTION_HEIGHTS: dict[str, int] = {
    "480p": 480,
    "sd": 480,
    "576p": 576,
    "720p": 720,
    "hd": 720,
    "1080p": 1080,
    "full hd": 1080,
    "fhd": 1080,
    "1440p": 1440,
    "qhd": 1440,
    "2160p": 2160,
    "4k": 2160,
    "uhd": 2160,
    "4320p": 4320,
    "8k": 4320,
}

# Accepted PlaybackStatus targets -> canonical status
PLAYBACK_STATUSES: dict[str, str] = {
    "played": "played",
    "watched": "played",
    "unplayed": "unplayed",
    "unwatched": "unplayed",
    "inprogress": "in_progress",
    "in_progress": "in_progress",
    "in progress": "in_progress",
}

_TRUE_VALUES: frozenset[str] = frozenset({"true", "yes", "1"})
_FALSE_VALUES: frozenset[str] = frozenset({"false", "no", "0"})

_NUMERIC_TOLERANCE = 1e-9
_FRAMERATE_TOLERANCE = 0.01


def resolve_resolution(value: str) -> int | None:
    """Maps a resolution label or pixel height to a height."""
    text = value.strip().lower()
    if text in RESOLUTION_HEIGHTS:
        return RESOLUTION_HEIGHTS[text]
    digits = text[:-1] if text.endswith("p") else text
    try:
        return int(float(digits))
    except (ValueError, OverflowError):
        return None


# ============================================================================
# REGEX
# ============================================================================


class RegexMatcher:
    """Runs regex searches with a per-match deadline.

    Patterns are compiled with the ``regex`` package, whose matcher checks
    the deadline while backtracking and releases the GIL during a search,
    so an overrunning match stops instead of occupying a worker.
    """

    def __init__(self, timeout_ms: int = 100) -> None:
        self._timeout = max(timeout_ms, 1) / 1000.0

    @property
    def timeout(self) -> float:
        """Per-match deadline in seconds."""
        return self._timeout

    def search(self, pattern: regex.Pattern, text: str) -> bool:
        """Returns True if ``pattern`` matches anywhere in ``text``.

        Raises:
            RegexTimeoutError: If the search exceeds the deadline.
        """
        try:
            return pattern.search(text, concurrent=True, timeout=self._timeout) is not None
        except TimeoutError as exc:
            raise RegexTimeoutError(
                f"Regex {pattern.pattern!r} exceeded {self._timeout * 1000:.0f} ms"
            ) from exc


@dataclass(frozen=True)
class MatchContext:
    """Per-run state the matchers need.

    Attributes:
        now: Fixed evaluation clock (UTC).
        regex: Time-bounded regex runner.
    """

    now: datetime
    regex: RegexMatcher


# ============================================================================
# TARGET COMPILATION
# ============================================================================


def _compile_regex(pattern: str, max_length: int) -> regex.Pattern:
    if not pattern:
        raise DefinitionError("Regex pattern is empty")
    if len(pattern) > max_length:
        raise DefinitionError(f"Regex pattern exceeds {max_length} characters")
    try:
        return regex.compile(pattern)
    except regex.error as exc:
        raise DefinitionError(f"Invalid regex pattern {pattern!r}: {exc}") from exc


def _compile_text_target(operator: Operator, expression: Expression, max_regex_length: int) -> Any:
    if operator in MULTI_VALUE_OPERATORS:
        values = expression.target_values
        if not values:
            raise DefinitionError(f"Operator {operator.value} needs at least one value")
        return frozenset(v.casefold() for v in values)
    if operator is Operator.MATCH_REGEX:
        return _compile_regex(expression.target_text, max_regex_length)
    return expression.target_text.strip().casefold()


def _parse_number(text: str) -> float:
    try:
        number = float(text.strip())
    except ValueError as exc:
        raise DefinitionError(f"Expected a number, got {text!r}") from exc
    if not math.isfinite(number):
        raise DefinitionError(f"Expected a finite number, got {text!r}")
    return number


def _compile_date_target(operator: Operator, text: str) -> datetime | timedelta | int:
    if operator in (Operator.NEWER_THAN, Operator.OLDER_THAN):
        duration = parse_relative_duration(text)
        if duration is None:
            raise DefinitionError(
                f"Expected a relative duration like '30:days' of at most "
                f"{MAX_RELATIVE_DURATION.days} days, got {text!r}"
            )
        return duration
    if operator is Operator.WEEKDAY:
        weekday = parse_weekday(text)
        if weekday is None:
            raise DefinitionError(f"Expected a weekday name or 0-6, got {text!r}")
        return weekday
    parsed = parse_date(text)
    if parsed is None:
        raise DefinitionError(f"Expected a date within the supported range, got {text!r}")
    return parsed


def _compile_boolean_target(text: str) -> bool:
    value = text.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise DefinitionError(f"Expected true or false, got {text!r}")


def compile_target(meta: FieldMetadata, expression: Expression, max_regex_length: int = 1000) -> Any:
    """Parses an expression's target for its field and operator.

    Args:
        meta: Field metadata.
        expression: The expression whose target to parse.
        max_regex_length: Longest accepted regex pattern.

    Returns:
        The parsed target in the shape the matcher expects.

    Raises:
        DefinitionError: If the target is malformed for the operator.
    """
    operator = expression.operator
    value_type = meta.value_type
    text = expression.target_text

    if meta.name == "ExternalList":
        if not text.strip():
            raise DefinitionError("External list URL is empty")
        return text.strip()

    if value_type in (FieldValueType.TEXT, FieldValueType.LIST, FieldValueType.SIMPLE, FieldValueType.SIMILARITY):
        return _compile_text_target(operator, expression, max_regex_length)

    if value_type is FieldValueType.NUMERIC or value_type is FieldValueType.FRAMERATE:
        return _parse_number(text)

    if value_type is FieldValueType.RESOLUTION:
        height = resolve_resolution(text)
        if height is None:
            raise DefinitionError(f"Unknown resolution {text!r}")
        return float(height)

    if value_type is FieldValueType.DATE:
        return _compile_date_target(operator, text)

    if value_type is FieldValueType.BOOLEAN:
        return _compile_boolean_target(text)

    if value_type is FieldValueType.USER_DATA:
        status = PLAYBACK_STATUSES.get(text.strip().lower())
        if status is None:
            raise DefinitionError(f"Unknown playback status {text!r}")
        return status

    raise DefinitionError(f"Unsupported value type {value_type.value}")


# ============================================================================
# MATCHERS
# ============================================================================


def match_text(operator: Operator, value: Any, target: Any, ctx: MatchContext) -> bool:
    if operator in NEGATED_OPERATORS:
        return not match_text(_POSITIVE_OF[operator], value, target, ctx)
    if value is None:
        return False
    text = str(value)
    if operator is Operator.MATCH_REGEX:
        return ctx.regex.search(target, text)
    folded = text.strip().casefold()
    if operator is Operator.EQUAL:
        return folded == target
    if operator is Operator.CONTAINS:
        return target in folded
    if operator is Operator.IS_IN:
        return folded in target
    logger.warning("Operator %s not supported for text values", operator.value)
    return False


def _match_list(operator: Operator, value: Any, target: Any, ctx: MatchContext) -> bool:
    if operator in NEGATED_OPERATORS:
        return not _match_list(_POSITIVE_OF[operator], value, target, ctx)
    if not value:
        return False
    return any(match_text(operator, element, target, ctx) for element in value if element is not None)


def _compare_numbers(operator: Operator, value: float, target: float, tolerance: float) -> bool:
    close = math.isclose(value, target, rel_tol=_NUMERIC_TOLERANCE, abs_tol=tolerance)
    if operator is Operator.EQUAL:
        return close
    if operator is Operator.NOT_EQUAL:
        return not close
    if operator is Operator.GREATER_THAN:
        return value > target and not close
    if operator is Operator.LESS_THAN:
        return value < target and not close
    if operator is Operator.GREATER_THAN_OR_EQUAL:
        return value > target or close
    if operator is Operator.LESS_THAN_OR_EQUAL:
        return value < target or close
    logger.warning("Operator %s not supported for numeric values", operator.value)
    return False


def _match_numeric(operator: Operator, value: Any, target: Any, ctx: MatchContext) -> bool:
    if value is None:
        return operator is Operator.NOT_EQUAL
    return _compare_numbers(operator, float(value), target, _NUMERIC_TOLERANCE)


def _match_framerate(operator: Operator, value: Any, target: Any, ctx: MatchContext) -> bool:
    if value is None:
        return operator is Operator.NOT_EQUAL
    return _compare_numbers(operator, float(value), target, _FRAMERATE_TOLERANCE)


def _cutoff(now: datetime, duration: timedelta) -> datetime:
    try:
        return now - duration
    except OverflowError:
        return datetime.min.replace(tzinfo=now.tzinfo)


def _match_date(operator: Operator, value: Any, target: Any, ctx: MatchContext) -> bool:
    if value is None:
        return operator is Operator.NOT_EQUAL
    moment = to_utc(value)

    if operator is Operator.NEWER_THAN:
        return moment >= _cutoff(ctx.now, target)
    if operator is Operator.OLDER_THAN:
        return moment < _cutoff(ctx.now, target)
    if operator is Operator.WEEKDAY:
        return moment.weekday() == target

    day = moment.date()
    target_day = to_utc(target).date()
    if operator is Operator.EQUAL:
        return day == target_day
    if operator is Operator.NOT_EQUAL:
        return day != target_day
    if operator is Operator.AFTER:
        return day > target_day
    if operator is Operator.BEFORE:
        return day < target_day
    logger.warning("Operator %s not supported for dates", operator.value)
    return False


def _match_boolean(operator: Operator, value: Any, target: Any, ctx: MatchContext) -> bool:
    actual = bool(value)
    if operator is Operator.EQUAL:
        return actual is target
    if operator is Operator.NOT_EQUAL:
        return actual is not target
    return False


def _match_playback_status(operator: Operator, value: Any, target: Any, ctx: MatchContext) -> bool:
    if operator is Operator.EQUAL:
        return value == target
    if operator is Operator.NOT_EQUAL:
        return value != target
    return False


def _match_similarity(operator: Operator, value: SimilarityMatch | None, target: Any, ctx: MatchContext) -> bool:
    # Reference selection already applied the operator; only the score matters here
    return value is not None and value.score > 0 and not value.is_reference


def _match_external_list(operator: Operator, value: Any, target: Any, ctx: MatchContext) -> bool:
    on_list = value is not None
    return on_list if operator is Operator.EQUAL else not on_list


Matcher = Callable[[Operator, Any, Any, MatchContext], bool]

_MATCHERS: dict[FieldValueType, Matcher] = {
    FieldValueType.TEXT: match_text,
    FieldValueType.SIMPLE: match_text,
    FieldValueType.LIST: _match_list,
    FieldValueType.NUMERIC: _match_numeric,
    FieldValueType.RESOLUTION: _match_numeric,
    FieldValueType.FRAMERATE: _match_framerate,
    FieldValueType.DATE: _match_date,
    FieldValueType.BOOLEAN: _match_boolean,
    FieldValueType.USER_DATA: _match_playback_status,
    FieldValueType.SIMILARITY: _match_similarity,
}

# Fields whose extracted value differs from their declared value type
_FIELD_MATCHERS: dict[str, Matcher] = {
    "ExternalList": _match_external_list,
}


def matcher_for(meta: FieldMetadata) -> Matcher:
    """Returns the matcher function for a field."""
    return _FIELD_MATCHERS.get(meta.name) or _MATCHERS[meta.value_type]


def evaluate(meta: FieldMetadata, operator: Operator, value: Any, target: Any, ctx: MatchContext) -> bool:
    """Evaluates one comparison.

    Args:
        meta: Field metadata.
        operator: The operator.
        value: The extracted field value.
        target: The compiled target from ``compile_target``.
        ctx: Per-run match context.

    Returns:
        Whether the value satisfies the comparison.

    Raises:
        RegexTimeoutError: If a regex match exceeds its deadline.
    """
    return matcher_for(meta)(operator, value, target, ctx)
