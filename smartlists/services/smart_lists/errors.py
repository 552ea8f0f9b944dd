# smartlists/services/smart_lists/errors.py

"""Exception hierarchy for smart list evaluation.

Three failure classes exist:

    - ``DefinitionError``: the rule definition itself is invalid. Raised
      before any candidate is processed.
    - ``ExtractionError``: a single item could not be evaluated. Never
      escapes the filtering pipeline; the item is excluded and counted.
    - ``RunAbortedError``: the whole run failed (source exhausted early,
      cancellation). No partial result is returned.
"""

from __future__ import annotations

__all__ = [
    "DefinitionError",
    "EvaluationCancelledError",
    "ExtractionError",
    "RegexTimeoutError",
    "RunAbortedError",
    "SmartListError",
]


class SmartListError(Exception):
    """Base class for all smart list errors."""


class DefinitionError(SmartListError):
    """A rule definition failed validation.

    Attributes:
        set_index: Index of the offending expression set, if known.
        expression_index: Index of the offending expression within its set.
        field_name: Field referenced by the offending expression.
    """

    def __init__(
        self,
        message: str,
        *,
        set_index: int | None = None,
        expression_index: int | None = None,
        field_name: str | None = None,
    ) -> None:
        self.set_index = set_index
        self.expression_index = expression_index
        self.field_name = field_name
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        location: list[str] = []
        if self.set_index is not None:
            location.append(f"set {self.set_index}")
        if self.expression_index is not None:
            location.append(f"expression {self.expression_index}")
        if self.field_name:
            location.append(f"field '{self.field_name}'")
        if not location:
            return base
        return f"{base} ({', '.join(location)})"


class ExtractionError(SmartListError):
    """Evaluation of a single item failed.

    Attributes:
        item_id: Identifier of the item that failed, if known.
    """

    def __init__(self, message: str, item_id: str | None = None) -> None:
        self.item_id = item_id
        super().__init__(message)


class RegexTimeoutError(ExtractionError):
    """A regular expression match exceeded its time bound."""


class RunAbortedError(SmartListError):
    """The evaluation run failed as a whole."""


class EvaluationCancelledError(RunAbortedError):
    """The evaluation run was cancelled between batches."""
