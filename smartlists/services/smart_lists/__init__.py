"""Smart lists service: rule-based dynamic playlists and collections.

Provides the field registry, rule models, two-phase filtering pipeline,
evaluation cache and ordering stage behind ``SmartListEvaluator``.
"""

from __future__ import annotations

from smartlists.services.smart_lists.errors import (
    DefinitionError,
    EvaluationCancelledError,
    ExtractionError,
    RegexTimeoutError,
    RunAbortedError,
    SmartListError,
)
from smartlists.services.smart_lists.evaluator import SmartListEvaluator
from smartlists.services.smart_lists.field_registry import FIELD_REGISTRY, ExtractionGroup, FieldValueType
from smartlists.services.smart_lists.lookups import CatalogLookups, MediaStreamInfo, Person, SeriesInfo
from smartlists.services.smart_lists.models import (
    EvaluationContext,
    EvaluationResult,
    Expression,
    ExpressionSet,
    Operator,
    ResultItem,
    RuleGroups,
    SortField,
    SortOption,
    SortSpec,
)
from smartlists.services.smart_lists.pipeline import CandidateSource, SequenceCandidateSource

__all__: list[str] = [
    "CandidateSource",
    "CatalogLookups",
    "DefinitionError",
    "EvaluationCancelledError",
    "EvaluationContext",
    "EvaluationResult",
    "Expression",
    "ExpressionSet",
    "ExtractionError",
    "ExtractionGroup",
    "FIELD_REGISTRY",
    "FieldValueType",
    "MediaStreamInfo",
    "Operator",
    "Person",
    "RegexTimeoutError",
    "ResultItem",
    "RuleGroups",
    "RunAbortedError",
    "SequenceCandidateSource",
    "SeriesInfo",
    "SmartListError",
    "SmartListEvaluator",
    "SortField",
    "SortOption",
    "SortSpec",
]
