# smartlists/services/smart_lists/validation.py

"""Rule definition validation and compilation.

Turns ``RuleGroups`` into compiled expression sets: each expression gets its
field metadata, its parsed target, its matcher and its effective extraction
group. Every definition error (unknown field, operator not allowed, bad
target, invalid regex, option out of range) is raised here as a
``DefinitionError`` naming the offending rule, before any item is touched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from smartlists.services.smart_lists.errors import DefinitionError
from smartlists.services.smart_lists.field_registry import (
    CHEAP_EXTRACTION_GROUPS,
    FIELD_REGISTRY,
    PARENT_SERIES_OPTION_GROUPS,
    ExtractionGroup,
    FieldMetadata,
    FieldRegistry,
)
from smartlists.services.smart_lists.models import EvaluationContext, Expression, RuleGroups
from smartlists.services.smart_lists.operators import Matcher, MatchContext, compile_target, matcher_for

__all__ = [
    "MAX_COLLECTION_SEARCH_DEPTH",
    "SIMILARITY_COMPARISON_FIELDS",
    "CompiledExpression",
    "CompiledExpressionSet",
    "ValidationLimits",
    "compile_rule_groups",
    "validate_context",
]

logger = logging.getLogger("smartlists.smart_lists.validation")

MAX_COLLECTION_SEARCH_DEPTH = 10

# Fields a SimilarTo rule may compare on
SIMILARITY_COMPARISON_FIELDS: frozenset[str] = frozenset(
    {
        "genre",
        "tags",
        "studios",
        "actors",
        "directors",
        "writers",
        "producers",
        "audiolanguages",
        "name",
        "productionyear",
        "officialrating",
    }
)


@dataclass(frozen=True)
class ValidationLimits:
    """Upper bounds applied to rule definitions."""

    max_expression_sets: int = 100
    max_expressions_per_set: int = 100
    max_regex_pattern_length: int = 1000

    @classmethod
    def from_settings(cls, settings: Any) -> ValidationLimits:
        """Builds limits from a Config object."""
        return cls(
            max_expression_sets=settings.MAX_EXPRESSION_SETS,
            max_expressions_per_set=settings.MAX_EXPRESSIONS_PER_SET,
            max_regex_pattern_length=settings.MAX_REGEX_PATTERN_LENGTH,
        )


@dataclass(frozen=True)
class CompiledExpression:
    """An expression bound to its field metadata and parsed target.

    Attributes:
        expression: The source expression.
        meta: Metadata of the referenced field.
        target: Parsed target value.
        groups: Effective extraction group, including parent series options.
        matcher: Matcher function for the field's value type.
    """

    expression: Expression
    meta: FieldMetadata
    target: Any
    groups: ExtractionGroup
    matcher: Matcher

    @property
    def is_expensive(self) -> bool:
        return bool(self.groups & ~CHEAP_EXTRACTION_GROUPS)

    def matches(self, value: Any, ctx: MatchContext) -> bool:
        """Applies the operator to an extracted value."""
        return self.matcher(self.expression.operator, value, self.target, ctx)


@dataclass(frozen=True)
class CompiledExpressionSet:
    """A compiled AND-group with its position among the OR-ed sets."""

    index: int
    expressions: tuple[CompiledExpression, ...]
    max_items: int | None = None

    @property
    def cheap_expressions(self) -> tuple[CompiledExpression, ...]:
        return tuple(e for e in self.expressions if not e.is_expensive)

    @property
    def expensive_expressions(self) -> tuple[CompiledExpression, ...]:
        return tuple(e for e in self.expressions if e.is_expensive)

    @property
    def is_expensive(self) -> bool:
        """True if any expression needs an expensive lookup."""
        return any(e.is_expensive for e in self.expressions)


def _expression_groups(meta: FieldMetadata, expression: Expression) -> ExtractionGroup:
    groups = meta.extraction_group
    option = PARENT_SERIES_OPTION_GROUPS.get(meta.name.lower())
    if option is not None and getattr(expression, option[0]):
        groups |= option[1]
    return groups


def _check_options(meta: FieldMetadata, expression: Expression) -> None:
    for field_key, (option_name, _) in PARENT_SERIES_OPTION_GROUPS.items():
        if getattr(expression, option_name) and meta.name.lower() != field_key:
            raise DefinitionError(f"Option {option_name} is not supported for this field")
    if expression.only_default_language and meta.name != "AudioLanguages":
        raise DefinitionError("Option only_default_language is not supported for this field")


def _compile_expression(
    expression: Expression,
    registry: FieldRegistry,
    limits: ValidationLimits,
) -> CompiledExpression:
    meta = registry.lookup(expression.field_name)
    if meta is None:
        raise DefinitionError(f"Unknown field {expression.field_name!r}")
    if expression.operator not in meta.allowed_operators:
        raise DefinitionError(f"Operator {expression.operator.value} is not allowed for {meta.name}")
    _check_options(meta, expression)
    target = compile_target(meta, expression, limits.max_regex_pattern_length)
    return CompiledExpression(
        expression=expression,
        meta=meta,
        target=target,
        groups=_expression_groups(meta, expression),
        matcher=matcher_for(meta),
    )


def compile_rule_groups(
    rule_groups: RuleGroups,
    registry: FieldRegistry = FIELD_REGISTRY,
    limits: ValidationLimits | None = None,
) -> list[CompiledExpressionSet]:
    """Validates and compiles a rule definition.

    Args:
        rule_groups: The OR-ed expression sets.
        registry: Field registry to resolve names against.
        limits: Definition size limits.

    Returns:
        Compiled expression sets in definition order.

    Raises:
        DefinitionError: On the first invalid rule, with its location.
    """
    limits = limits or ValidationLimits()
    if len(rule_groups.sets) > limits.max_expression_sets:
        raise DefinitionError(
            f"Too many expression sets: {len(rule_groups.sets)} (max {limits.max_expression_sets})"
        )

    compiled: list[CompiledExpressionSet] = []
    for set_index, expression_set in enumerate(rule_groups.sets):
        if len(expression_set.expressions) > limits.max_expressions_per_set:
            raise DefinitionError(
                f"Too many expressions: {len(expression_set.expressions)} (max {limits.max_expressions_per_set})",
                set_index=set_index,
            )
        if expression_set.max_items is not None and expression_set.max_items < 0:
            raise DefinitionError(f"max_items must not be negative, got {expression_set.max_items}", set_index=set_index)

        expressions: list[CompiledExpression] = []
        for expression_index, expression in enumerate(expression_set.expressions):
            try:
                expressions.append(_compile_expression(expression, registry, limits))
            except DefinitionError as exc:
                raise DefinitionError(
                    str(exc.args[0]) if exc.args else "Invalid expression",
                    set_index=set_index,
                    expression_index=expression_index,
                    field_name=expression.field_name,
                ) from exc

        compiled.append(
            CompiledExpressionSet(
                index=set_index,
                expressions=tuple(expressions),
                # 0 means no limit
                max_items=expression_set.max_items or None,
            )
        )

    logger.debug(
        "Compiled %d expression set(s), %d expensive",
        len(compiled),
        sum(1 for s in compiled if s.is_expensive),
    )
    return compiled


def validate_context(context: EvaluationContext) -> None:
    """Checks run-level options.

    Raises:
        DefinitionError: If an option is out of range.
    """
    if not 0 <= context.collection_search_depth <= MAX_COLLECTION_SEARCH_DEPTH:
        raise DefinitionError(
            f"collection_search_depth must be between 0 and {MAX_COLLECTION_SEARCH_DEPTH}, "
            f"got {context.collection_search_depth}"
        )
    for name in context.similarity_fields:
        if name.replace(" ", "").lower() not in SIMILARITY_COMPARISON_FIELDS:
            raise DefinitionError(f"Unknown similarity comparison field {name!r}")
