# smartlists/services/smart_lists/pipeline.py

"""Two-phase filtering pipeline.

Candidates are pulled from a ``CandidateSource`` in batches. For each batch:

    1. Phase 1 evaluates every cheap-only expression set fully and, for
       sets that need expensive fields, only their cheap expressions. An
       item whose cheap expressions pass such a set survives provisionally.
    2. Phase 2 evaluates the remaining expensive expressions of the
       provisional sets, for survivors only, through the evaluation cache.

Phase 1 may over-admit but never excludes an item that full evaluation
would match. When no set references an expensive field, Phase 2 never runs.

Per-item failures exclude the item and are counted. Cancellation is checked
between batches and aborts the run without a partial result.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from smartlists.services.smart_lists.errors import EvaluationCancelledError, RunAbortedError

if TYPE_CHECKING:
    from smartlists.core.media_item import MediaItem
    from smartlists.services.smart_lists.extraction import FieldExtractor
    from smartlists.services.smart_lists.models import EvaluationContext
    from smartlists.services.smart_lists.operators import MatchContext
    from smartlists.services.smart_lists.validation import CompiledExpression, CompiledExpressionSet

__all__ = [
    "CandidateSource",
    "FilterPipeline",
    "MatchedItem",
    "PipelineOutcome",
    "ProgressCallback",
    "SequenceCandidateSource",
    "in_scope",
]

logger = logging.getLogger("smartlists.smart_lists.pipeline")

ProgressCallback = Callable[[int, int], None]


# ============================================================================
# CANDIDATE SOURCES
# ============================================================================


class CandidateSource:
    """Pull-based supplier of candidate items.

    Hosts backed by a database subclass this to page through their catalog
    without loading it at once.
    """

    def total_count(self) -> int:
        """Number of candidates the source will yield."""
        raise NotImplementedError

    def iter_batches(self, batch_size: int) -> Iterator[list[MediaItem]]:
        """Yields candidates in batches of at most ``batch_size``."""
        raise NotImplementedError


class SequenceCandidateSource(CandidateSource):
    """Candidate source over an in-memory sequence."""

    def __init__(self, items: Sequence[MediaItem]) -> None:
        self._items = items

    def total_count(self) -> int:
        return len(self._items)

    def iter_batches(self, batch_size: int) -> Iterator[list[MediaItem]]:
        for start in range(0, len(self._items), batch_size):
            yield list(self._items[start : start + batch_size])


# ============================================================================
# RESULTS
# ============================================================================


@dataclass(frozen=True)
class MatchedItem:
    """An item that matched, with every expression set it satisfied."""

    item: MediaItem
    set_indices: tuple[int, ...]


@dataclass
class PipelineOutcome:
    """Filtered items in input order plus run statistics."""

    matched: list[MatchedItem] = field(default_factory=list)
    failed_items: int = 0
    candidate_count: int = 0
    phase2_candidates: int = 0


@dataclass
class _Phase1Result:
    item: MediaItem
    matched: list[int] = field(default_factory=list)
    provisional: list[CompiledExpressionSet] = field(default_factory=list)
    failed: bool = False


def in_scope(item: MediaItem, context: EvaluationContext) -> bool:
    """Applies the media type and extras scoping of the context."""
    if context.media_types and item.item_type not in context.media_types:
        return False
    if item.is_extra and not context.include_extras:
        return False
    return True


# ============================================================================
# PIPELINE
# ============================================================================


class FilterPipeline:
    """Runs compiled expression sets over a candidate source.

    Args:
        compiled_sets: Compiled expression sets, OR-ed in order.
        extractor: The run's field extractor.
        match_ctx: The run's match context.
        context: The run's evaluation context.
        worker_count: Parallel workers per batch; 1 evaluates inline.
        batch_size: Candidates pulled per batch.
    """

    def __init__(
        self,
        compiled_sets: list[CompiledExpressionSet],
        extractor: FieldExtractor,
        match_ctx: MatchContext,
        context: EvaluationContext,
        worker_count: int = 4,
        batch_size: int = 300,
    ) -> None:
        self._sets = compiled_sets
        self._extractor = extractor
        self._match_ctx = match_ctx
        self._context = context
        self._worker_count = max(1, worker_count)
        self._batch_size = max(1, batch_size)
        self._two_phase = any(s.is_expensive for s in compiled_sets)

    @property
    def is_two_phase(self) -> bool:
        """True when any expression set references an expensive field."""
        return self._two_phase

    def run(
        self,
        source: CandidateSource,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PipelineOutcome:
        """Filters every candidate of the source.

        Raises:
            EvaluationCancelledError: If ``cancel_event`` is set between batches.
            RunAbortedError: If the source fails or yields fewer items than announced.
        """
        try:
            total = source.total_count()
        except Exception as exc:
            raise RunAbortedError(f"Candidate source failed: {exc}") from exc

        outcome = PipelineOutcome(candidate_count=total)
        processed = 0
        logger.debug(
            "Filtering %d candidates in %s mode with %d worker(s)",
            total,
            "two-phase" if self._two_phase else "single-phase",
            self._worker_count,
        )

        with ThreadPoolExecutor(max_workers=self._worker_count, thread_name_prefix="smartlists-eval") as pool:
            batches = source.iter_batches(self._batch_size)
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    raise EvaluationCancelledError(f"Evaluation cancelled after {processed} of {total} items")
                try:
                    batch = next(batches)
                except StopIteration:
                    break
                except Exception as exc:
                    raise RunAbortedError(f"Candidate source failed after {processed} items: {exc}") from exc

                self._process_batch(batch, pool, outcome)
                processed += len(batch)
                if progress is not None:
                    progress(processed, total)

        if processed < total:
            raise RunAbortedError(f"Candidate source exhausted after {processed} of {total} items")
        outcome.candidate_count = processed

        logger.info(
            "Filtered %d candidates: %d matched, %d failed, %d reached phase 2",
            processed,
            len(outcome.matched),
            outcome.failed_items,
            outcome.phase2_candidates,
        )
        return outcome

    def _map(self, pool: ThreadPoolExecutor, fn: Callable, items: list) -> list:
        if self._worker_count == 1 or len(items) <= 1:
            return [fn(item) for item in items]
        return list(pool.map(fn, items))

    def _process_batch(self, batch: list[MediaItem], pool: ThreadPoolExecutor, outcome: PipelineOutcome) -> None:
        phase1 = self._map(pool, self._phase1, batch)

        survivors = [r for r in phase1 if r.provisional and not r.failed]
        outcome.phase2_candidates += len(survivors)
        if survivors:
            # Phase 2 completes the phase 1 results in place
            self._map(pool, self._phase2, survivors)

        for result in phase1:
            if result.failed:
                outcome.failed_items += 1
            elif result.matched:
                outcome.matched.append(MatchedItem(item=result.item, set_indices=tuple(sorted(result.matched))))

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _all_pass(self, expressions: tuple[CompiledExpression, ...], item: MediaItem) -> bool:
        for compiled in expressions:
            value = self._extractor.extract(compiled, item)
            if not compiled.matches(value, self._match_ctx):
                return False
        return True

    def _phase1(self, item: MediaItem) -> _Phase1Result:
        result = _Phase1Result(item=item)
        if not in_scope(item, self._context):
            return result
        try:
            for compiled_set in self._sets:
                if not compiled_set.is_expensive:
                    if self._all_pass(compiled_set.expressions, item):
                        result.matched.append(compiled_set.index)
                elif self._all_pass(compiled_set.cheap_expressions, item):
                    result.provisional.append(compiled_set)
        except RunAbortedError:
            raise
        except Exception as exc:
            self._record_failure(item, exc)
            result.failed = True
        return result

    def _phase2(self, result: _Phase1Result) -> _Phase1Result:
        try:
            for compiled_set in result.provisional:
                if self._all_pass(compiled_set.expensive_expressions, result.item):
                    result.matched.append(compiled_set.index)
        except RunAbortedError:
            raise
        except Exception as exc:
            self._record_failure(result.item, exc)
            result.failed = True
        return result

    @staticmethod
    def _record_failure(item: MediaItem, exc: Exception) -> None:
        logger.warning("Excluding item %s (%s): %s", item.item_id, item.name, exc)
