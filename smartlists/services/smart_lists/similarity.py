# smartlists/services/smart_lists/similarity.py

"""Similarity scoring for the SimilarTo field.

A SimilarTo rule selects *reference items* among the candidates by name
(using the rule's operator and target). Each candidate is then scored by how
many values it shares with the references across the comparison fields
(Genre and Tags by default). A candidate matches when its score is positive
and it is not itself a reference item; the score also feeds the Similarity
sort key.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from smartlists.core.media_item import MediaItem

__all__ = ["SimilarityIndex", "SimilarityMatch"]

logger = logging.getLogger("smartlists.smart_lists.similarity")

ValuesFn = Callable[["MediaItem", str], Iterable[str]]


@dataclass(frozen=True)
class SimilarityMatch:
    """Similarity of one candidate to the reference items.

    Attributes:
        score: Number of shared comparison values.
        is_reference: True if the candidate is one of the references.
    """

    score: float
    is_reference: bool = False


class SimilarityIndex:
    """Value surface of a set of reference items.

    Args:
        references: The reference items.
        fields: Comparison field names.
        values_for: Returns an item's values for a comparison field.
    """

    def __init__(self, references: list[MediaItem], fields: tuple[str, ...], values_for: ValuesFn) -> None:
        self._reference_ids: frozenset[str] = frozenset(r.item_id for r in references)
        self._fields = fields
        self._values_for = values_for
        self._surface: dict[str, frozenset[str]] = {
            name: frozenset(
                value.casefold() for ref in references for value in values_for(ref, name) if value
            )
            for name in fields
        }
        logger.debug(
            "Similarity index over %d reference item(s), fields: %s",
            len(self._reference_ids),
            ", ".join(fields),
        )

    @property
    def reference_ids(self) -> frozenset[str]:
        return self._reference_ids

    def score(self, item: MediaItem) -> SimilarityMatch:
        """Scores a candidate against the reference surface."""
        if item.item_id in self._reference_ids:
            return SimilarityMatch(score=0.0, is_reference=True)
        if not self._reference_ids:
            return SimilarityMatch(score=0.0)

        total = 0
        for name in self._fields:
            surface = self._surface[name]
            if not surface:
                continue
            values = {value.casefold() for value in self._values_for(item, name) if value}
            total += len(values & surface)
        return SimilarityMatch(score=float(total))
