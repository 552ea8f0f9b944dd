# smartlists/services/smart_lists/evaluator.py

"""Smart list evaluation engine.

``SmartListEvaluator.evaluate`` is the single entry point: it validates the
rule definition, runs the two-phase filtering pipeline over the candidates,
then orders and bounds the matches. Each call is one independent run with
its own evaluation cache, regex deadline and clock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from smartlists.services.smart_lists.cache import EvaluationCache
from smartlists.services.smart_lists.errors import EvaluationCancelledError, ExtractionError, RunAbortedError
from smartlists.services.smart_lists.extraction import FieldExtractor, similarity_key
from smartlists.services.smart_lists.field_registry import FIELD_REGISTRY, FieldRegistry
from smartlists.services.smart_lists.lookups import CatalogLookups
from smartlists.services.smart_lists.models import EvaluationContext, EvaluationResult, RuleGroups, SortSpec
from smartlists.services.smart_lists.operators import MatchContext, RegexMatcher, match_text
from smartlists.services.smart_lists.ordering import SortValueResolver, order_and_limit
from smartlists.services.smart_lists.pipeline import (
    CandidateSource,
    FilterPipeline,
    ProgressCallback,
    SequenceCandidateSource,
    in_scope,
)
from smartlists.services.smart_lists.validation import (
    CompiledExpressionSet,
    ValidationLimits,
    compile_rule_groups,
    validate_context,
)
from smartlists.utils.date_utils import to_utc

if TYPE_CHECKING:
    from smartlists.core.media_item import MediaItem

__all__ = ["SmartListEvaluator"]

logger = logging.getLogger("smartlists.smart_lists.evaluator")


class SmartListEvaluator:
    """Evaluates smart list definitions against candidate items.

    Args:
        registry: Field registry to resolve rule fields against.
        lookups: Host lookups for expensive fields.
        settings: Config object; the global ``config`` when None.
    """

    def __init__(
        self,
        registry: FieldRegistry = FIELD_REGISTRY,
        lookups: CatalogLookups | None = None,
        settings: Any = None,
    ) -> None:
        if settings is None:
            from smartlists.config import config as settings
        self._registry = registry
        self._lookups = lookups or CatalogLookups()
        self._settings = settings
        self._limits = ValidationLimits.from_settings(settings)

    def validate(self, rule_groups: RuleGroups) -> list[CompiledExpressionSet]:
        """Validates a rule definition without running it.

        Raises:
            DefinitionError: On the first invalid rule.
        """
        return compile_rule_groups(rule_groups, self._registry, self._limits)

    def evaluate(
        self,
        rule_groups: RuleGroups,
        candidates: Sequence[MediaItem] | CandidateSource,
        context: EvaluationContext | None = None,
        sort_spec: SortSpec | None = None,
        per_group_max: int | None = None,
        global_max: int | None = None,
        playtime_cap_minutes: float | None = None,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> EvaluationResult:
        """Runs one evaluation.

        Args:
            rule_groups: The OR-ed expression sets.
            candidates: Candidate items or a batched candidate source.
            context: Run options; defaults when None.
            sort_spec: Up to three sort options.
            per_group_max: Default item limit for sets without their own.
            global_max: Limit on the total number of items.
            playtime_cap_minutes: Limit on the accumulated runtime.
            progress: Called with (processed, total) after each batch.
            cancel_event: Checked between batches; aborts the run when set.

        Returns:
            The ordered, bounded result with failure count and warnings.

        Raises:
            DefinitionError: If the definition or context is invalid.
            RunAbortedError: If the run fails or is cancelled.
        """
        context = context or EvaluationContext()
        validate_context(context)
        compiled = self.validate(rule_groups)
        if per_group_max is not None and per_group_max <= 0:
            per_group_max = None
        if global_max is not None and global_max <= 0:
            global_max = None

        started = time.monotonic()
        now = to_utc(context.now) if context.now is not None else datetime.now(timezone.utc)
        source = candidates if isinstance(candidates, CandidateSource) else SequenceCandidateSource(candidates)

        cache = EvaluationCache()
        extractor = FieldExtractor(self._lookups, cache, context)

        match_ctx = MatchContext(now=now, regex=RegexMatcher(self._settings.REGEX_TIMEOUT_MS))

        if self._uses_similarity(compiled):
            source = self._prepare_similarity(compiled, source, extractor, match_ctx, context, cancel_event)

        external_urls = self._external_list_urls(compiled)
        for url in external_urls:
            try:
                extractor.external_list(url)
            except ExtractionError as exc:
                logger.warning("External list %s could not be loaded: %s", url, exc)

        pipeline = FilterPipeline(
            compiled,
            extractor,
            match_ctx,
            context,
            worker_count=self._settings.WORKER_COUNT,
            batch_size=self._settings.PROCESSING_BATCH_SIZE,
        )
        outcome = pipeline.run(source, progress=progress, cancel_event=cancel_event)

        matched_groups: list[list[MediaItem]] = [[] for _ in compiled]
        for matched in outcome.matched:
            for index in matched.set_indices:
                matched_groups[index].append(matched.item)

        resolver = SortValueResolver(
            context,
            extractor,
            external_list_url=external_urls[0] if external_urls else None,
        )
        items = order_and_limit(
            matched_groups,
            sort_spec,
            resolver,
            per_group_max=per_group_max,
            global_max=global_max,
            playtime_cap_minutes=playtime_cap_minutes,
            group_limits=[s.max_items for s in compiled],
        )

        result = EvaluationResult(
            items=items,
            failed_items=outcome.failed_items,
            warnings=extractor.warnings,
            candidate_count=outcome.candidate_count,
            matched_count=len(outcome.matched),
        )
        logger.info(
            "Evaluated %d candidates in %.2fs: %d matched, %d returned, %d failed",
            result.candidate_count,
            time.monotonic() - started,
            result.matched_count,
            len(result.items),
            result.failed_items,
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _uses_similarity(compiled: list[CompiledExpressionSet]) -> bool:
        return any(e.meta.name == "SimilarTo" for s in compiled for e in s.expressions)

    @staticmethod
    def _external_list_urls(compiled: list[CompiledExpressionSet]) -> list[str]:
        urls: list[str] = []
        seen: set[str] = set()
        for compiled_set in compiled:
            for expression in compiled_set.expressions:
                if expression.meta.name != "ExternalList":
                    continue
                key = expression.target.lower()
                if key not in seen:
                    seen.add(key)
                    urls.append(expression.target)
        return urls

    @staticmethod
    def _prepare_similarity(
        compiled: list[CompiledExpressionSet],
        source: CandidateSource,
        extractor: FieldExtractor,
        match_ctx: MatchContext,
        context: EvaluationContext,
        cancel_event: threading.Event | None,
    ) -> CandidateSource:
        """Materializes the candidates and builds the reference index of each SimilarTo rule."""
        items: list[MediaItem] = []
        try:
            total = source.total_count()
            for batch in source.iter_batches(max(1, total)):
                if cancel_event is not None and cancel_event.is_set():
                    raise EvaluationCancelledError("Evaluation cancelled while loading candidates")
                items.extend(batch)
        except RunAbortedError:
            raise
        except Exception as exc:
            raise RunAbortedError(f"Candidate source failed: {exc}") from exc
        if len(items) < total:
            raise RunAbortedError(f"Candidate source exhausted after {len(items)} of {total} items")

        scoped = [item for item in items if in_scope(item, context)]
        registered: set[tuple[str, str]] = set()
        for compiled_set in compiled:
            for expression in compiled_set.expressions:
                if expression.meta.name != "SimilarTo":
                    continue
                key = similarity_key(expression.expression)
                if key in registered:
                    continue
                registered.add(key)
                operator = expression.expression.operator
                references = [item for item in scoped if match_text(operator, item.name, expression.target, match_ctx)]
                extractor.register_similarity(expression.expression, references)
        return SequenceCandidateSource(items)
