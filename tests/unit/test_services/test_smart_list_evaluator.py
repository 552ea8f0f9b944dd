# tests/unit/test_services/test_smart_list_evaluator.py

"""Tests for SmartListEvaluator end to end."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from smartlists.core.media_item import MediaItem, UserItemData
from smartlists.integrations.external_lists import ExternalListResult
from smartlists.services.smart_lists import (
    DefinitionError,
    EvaluationCancelledError,
    EvaluationContext,
    Expression,
    ExpressionSet,
    MediaStreamInfo,
    Operator,
    Person,
    RuleGroups,
    SeriesInfo,
    SmartListEvaluator,
    SortField,
    SortOption,
    SortSpec,
)

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)

MakeItem = Callable[..., MediaItem]


def rules(*sets: tuple[Expression, ...] | ExpressionSet) -> RuleGroups:
    return RuleGroups(sets=tuple(s if isinstance(s, ExpressionSet) else ExpressionSet(expressions=s) for s in sets))


# ========================================================================
# FIXTURES
# ========================================================================


@pytest.fixture
def evaluator(lookups, settings) -> SmartListEvaluator:
    """Evaluator over in-memory lookups with small batches."""
    return SmartListEvaluator(lookups=lookups, settings=settings)


@pytest.fixture
def context() -> EvaluationContext:
    return EvaluationContext(user_id="u1", now=NOW)


# ========================================================================
# REFERENCE SCENARIOS
# ========================================================================


class TestReferenceScenarios:
    """End-to-end behaviour on small, fully known catalogs."""

    def test_and_of_genre_and_playback_status(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem
    ) -> None:
        played = {"u1": UserItemData(played=True, play_count=1)}
        items = [make_item(f"au{i}", genres=["Action"]) for i in range(5)]
        items += [make_item(f"ap{i}", genres=["Action"], user_data=played) for i in range(3)]
        items += [make_item(f"cu{i}", genres=["Comedy"]) for i in range(2)]

        result = evaluator.evaluate(
            rules(
                (
                    Expression("Genres", Operator.CONTAINS, "Action"),
                    Expression("PlaybackStatus", Operator.EQUAL, "Unplayed"),
                )
            ),
            items,
            context,
        )

        assert result.matched_count == 5
        assert sorted(result.item_ids) == [f"au{i}" for i in range(5)]
        assert result.candidate_count == 10
        assert result.failed_items == 0

    def test_two_groups_limited_in_rule_block_order(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem
    ) -> None:
        letters = "JAHCEGBIDF"
        items = [make_item(f"a-{c}", f"Action {c}", genres=["Action"]) for c in letters]
        items += [make_item(f"c-{c}", f"Comedy {c}", genres=["Comedy"]) for c in letters]

        result = evaluator.evaluate(
            rules(
                ExpressionSet((Expression("Genres", Operator.CONTAINS, "Action"),), max_items=2),
                ExpressionSet((Expression("Genres", Operator.CONTAINS, "Comedy"),), max_items=2),
            ),
            items,
            context,
            sort_spec=SortSpec.of(SortOption(SortField.RULE_BLOCK_ORDER), SortOption(SortField.NAME)),
        )

        assert result.item_ids == ["a-A", "a-B", "c-A", "c-B"]
        assert result.matched_count == 20

    def test_regex_with_inline_flag(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem
    ) -> None:
        items = [make_item("1", "The Matrix"), make_item("2", "Matrix Reloaded"), make_item("3", "the Hobbit")]
        result = evaluator.evaluate(
            rules((Expression("Name", Operator.MATCH_REGEX, "(?i)^the"),)),
            items,
            context,
        )
        assert result.item_ids == ["1", "3"]

    def test_playtime_cap(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem
    ) -> None:
        items = [make_item(f"m{i}", runtime_minutes=m) for i, m in enumerate((40, 30, 25, 50))]
        result = evaluator.evaluate(rules(()), items, context, playtime_cap_minutes=90)
        assert result.item_ids == ["m0", "m1"]

    def test_is_in_multi_value(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem
    ) -> None:
        items = [make_item("yes", genres=["Drama", "Comedy"]), make_item("no", genres=["Drama", "Horror"])]
        result = evaluator.evaluate(
            rules((Expression("Genres", Operator.IS_IN, "Action;Comedy"),)),
            items,
            context,
        )
        assert result.item_ids == ["yes"]


# ========================================================================
# DEFINITION HANDLING
# ========================================================================


class TestDefinitions:
    """Tests for validation and limits at the evaluator boundary."""

    def test_invalid_definition_fails_before_processing(
        self, evaluator: SmartListEvaluator, make_item: MakeItem, lookups
    ) -> None:
        with pytest.raises(DefinitionError) as exc_info:
            evaluator.evaluate(
                rules((Expression("Actors", Operator.CONTAINS, "x"), Expression("Genres", Operator.BEFORE, "x"))),
                [make_item("m")],
            )
        assert exc_info.value.expression_index == 1
        assert sum(lookups.calls.values()) == 0

    def test_invalid_context(self, evaluator: SmartListEvaluator, make_item: MakeItem) -> None:
        with pytest.raises(DefinitionError, match="collection_search_depth"):
            evaluator.evaluate(rules(()), [make_item("m")], EvaluationContext(collection_search_depth=11))

    def test_validate_only(self, evaluator: SmartListEvaluator) -> None:
        compiled = evaluator.validate(rules((Expression("Name", Operator.EQUAL, "x"),)))
        assert len(compiled) == 1

    def test_no_sets_match_nothing(self, evaluator: SmartListEvaluator, make_item: MakeItem) -> None:
        result = evaluator.evaluate(RuleGroups(), [make_item("m")])
        assert result.item_ids == []
        assert result.candidate_count == 1

    @pytest.mark.parametrize("global_max", [0, -3, None])
    def test_non_positive_global_max_is_unlimited(
        self, evaluator: SmartListEvaluator, make_item: MakeItem, global_max: int | None
    ) -> None:
        items = [make_item(str(i)) for i in range(4)]
        assert len(evaluator.evaluate(rules(()), items, global_max=global_max).items) == 4

    def test_per_group_default_limit(self, evaluator: SmartListEvaluator, make_item: MakeItem) -> None:
        items = [make_item(str(i), genres=["Action"]) for i in range(6)]
        result = evaluator.evaluate(
            rules((Expression("Genres", Operator.CONTAINS, "Action"),)), items, per_group_max=2
        )
        assert result.item_ids == ["0", "1"]

    @pytest.mark.parametrize(
        "operator,target",
        [
            (Operator.AFTER, "99999999999999999"),
            (Operator.NEWER_THAN, "100000000 years"),
            (Operator.OLDER_THAN, "1000000 years"),
        ],
    )
    def test_out_of_range_date_target_is_a_definition_error(
        self, evaluator: SmartListEvaluator, make_item: MakeItem, lookups, operator: Operator, target: str
    ) -> None:
        with pytest.raises(DefinitionError, match="DateCreated|date|duration"):
            evaluator.evaluate(
                rules((Expression("DateCreated", operator, target),)),
                [make_item("m", date_created=NOW)],
            )
        assert sum(lookups.calls.values()) == 0

    def test_longest_relative_duration_runs(self, evaluator: SmartListEvaluator, make_item: MakeItem) -> None:
        items = [make_item("new", date_created=NOW - timedelta(days=1)), make_item("undated")]
        result = evaluator.evaluate(
            rules((Expression("DateCreated", Operator.NEWER_THAN, "1000 years"),)),
            items,
            EvaluationContext(now=NOW),
        )
        assert result.item_ids == ["new"]
        assert result.failed_items == 0


# ========================================================================
# EXPENSIVE FIELDS
# ========================================================================


class TestExpensiveFields:
    """Tests for fields resolved through host lookups."""

    def test_failed_lookups_are_counted(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem, lookups
    ) -> None:
        lookups.people_by_item["m1"] = [Person("Sigourney Weaver", "Actor", "Ripley")]
        lookups.failing_items.add("m2")
        items = [make_item("m1"), make_item("m2"), make_item("m3")]
        result = evaluator.evaluate(rules((Expression("Actors", Operator.CONTAINS, "weaver"),)), items, context)
        assert result.item_ids == ["m1"]
        assert result.failed_items == 1

    def test_people_roles(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem, lookups
    ) -> None:
        lookups.people_by_item["m1"] = [
            Person("Ridley Scott", "Director"),
            Person("Sigourney Weaver", "Actor", "Ripley"),
        ]
        items = [make_item("m1")]
        directors = evaluator.evaluate(rules((Expression("Directors", Operator.IS_IN, "ridley scott"),)), items)
        actors = evaluator.evaluate(rules((Expression("Actors", Operator.CONTAINS, "ridley"),)), items)
        roles = evaluator.evaluate(rules((Expression("ActorRoles", Operator.IS_IN, "Ripley"),)), items, context)
        assert directors.item_ids == ["m1"]
        assert actors.item_ids == []
        assert roles.item_ids == ["m1"]

    def test_parent_series_tags(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem, lookups
    ) -> None:
        lookups.series_by_id["s1"] = SeriesInfo("s1", "Cowboy Bebop", tags=("Anime",))
        episode = make_item("e1", item_type="Episode", series_id="s1", tags=["Space"])

        with_parent = evaluator.evaluate(
            rules((Expression("Tags", Operator.CONTAINS, "anime", include_parent_series_tags=True),)),
            [episode],
            context,
        )
        without_parent = evaluator.evaluate(
            rules((Expression("Tags", Operator.CONTAINS, "anime"),)),
            [episode],
            context,
        )
        assert with_parent.item_ids == ["e1"]
        assert without_parent.item_ids == []

    def test_audio_languages_default_track(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem, lookups
    ) -> None:
        lookups.streams_by_item["m1"] = MediaStreamInfo(audio_languages=("eng", "jpn"), default_audio_language="eng")
        items = [make_item("m1")]
        any_track = evaluator.evaluate(rules((Expression("AudioLanguages", Operator.CONTAINS, "jpn"),)), items)
        default_only = evaluator.evaluate(
            rules((Expression("AudioLanguages", Operator.CONTAINS, "jpn", only_default_language=True),)),
            items,
            context,
        )
        assert any_track.item_ids == ["m1"]
        assert default_only.item_ids == []

    def test_resolution_from_streams(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem, lookups
    ) -> None:
        lookups.streams_by_item["uhd"] = MediaStreamInfo(video_height=2160)
        lookups.streams_by_item["hd"] = MediaStreamInfo(video_height=720)
        items = [make_item("uhd"), make_item("hd"), make_item("none")]
        result = evaluator.evaluate(
            rules((Expression("Resolution", Operator.GREATER_THAN_OR_EQUAL, "1080p"),)), items, context
        )
        assert result.item_ids == ["uhd"]

    def test_next_unwatched(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem, lookups
    ) -> None:
        lookups.next_unwatched_by_series["s1"] = "e2"
        items = [
            make_item("e1", item_type="Episode", series_id="s1"),
            make_item("e2", item_type="Episode", series_id="s1"),
            make_item("m1"),
        ]
        result = evaluator.evaluate(rules((Expression("NextUnwatched", Operator.EQUAL, "true"),)), items, context)
        assert result.item_ids == ["e2"]
        assert lookups.calls["next_unwatched"] == 1

    def test_last_episode_air_date(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem, lookups
    ) -> None:
        lookups.series_by_id["fresh"] = SeriesInfo("fresh", "Fresh", last_episode_air_date=NOW - timedelta(days=3))
        lookups.series_by_id["stale"] = SeriesInfo("stale", "Stale", last_episode_air_date=NOW - timedelta(days=90))
        items = [make_item("fresh", item_type="Series"), make_item("stale", item_type="Series")]
        result = evaluator.evaluate(
            rules((Expression("LastEpisodeAirDate", Operator.NEWER_THAN, "14:days"),)), items, context
        )
        assert result.item_ids == ["fresh"]

    def test_collections(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem, lookups
    ) -> None:
        lookups.collections_by_item["m1"] = ["Alien Collection"]
        items = [make_item("m1"), make_item("m2")]
        result = evaluator.evaluate(
            rules((Expression("Collections", Operator.CONTAINS, "alien"),)), items, context
        )
        assert result.item_ids == ["m1"]


# ========================================================================
# SIMILARITY
# ========================================================================


class TestSimilarTo:
    """Tests for the SimilarTo field and the Similarity sort."""

    @pytest.fixture
    def catalog(self, make_item: MakeItem) -> list[MediaItem]:
        return [
            make_item("ref", "The Matrix", genres=["Action", "Sci-Fi"], tags=["cyberpunk"]),
            make_item("br", "Blade Runner", genres=["Sci-Fi"], tags=["cyberpunk"]),
            make_item("dh", "Die Hard", genres=["Action"]),
            make_item("nh", "Notting Hill", genres=["Romance"]),
        ]

    def test_similar_items_exclude_reference(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, catalog: list[MediaItem]
    ) -> None:
        result = evaluator.evaluate(
            rules((Expression("SimilarTo", Operator.EQUAL, "The Matrix"),)),
            catalog,
            context,
            sort_spec=SortSpec.of(SortOption(SortField.SIMILARITY, descending=True)),
        )
        assert result.item_ids == ["br", "dh"]
        assert [r.sort_key for r in result.items] == [(2.0,), (1.0,)]

    def test_no_reference_warns(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, catalog: list[MediaItem]
    ) -> None:
        result = evaluator.evaluate(
            rules((Expression("SimilarTo", Operator.EQUAL, "Solaris"),)),
            catalog,
            context,
        )
        assert result.item_ids == []
        assert any("Solaris" in warning for warning in result.warnings)


# ========================================================================
# EXTERNAL LISTS
# ========================================================================


class TestExternalLists:
    """Tests for ExternalList rules and External List Order."""

    URL = "https://mdblist.com/lists/someone/top"

    def test_membership_and_order(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem, lookups
    ) -> None:
        listing = ExternalListResult()
        listing.add("imdb", "tt0000002", 0)
        listing.add("tmdb", "101", 1)
        lookups.lists[self.URL] = listing
        items = [
            make_item("tmdb", provider_ids={"tmdb": "101"}),
            make_item("absent", provider_ids={"imdb": "tt9999999"}),
            make_item("imdb", provider_ids={"imdb": "tt0000002"}),
        ]

        result = evaluator.evaluate(
            rules((Expression("ExternalList", Operator.EQUAL, self.URL),)),
            items,
            context,
            sort_spec=SortSpec.of(SortOption(SortField.EXTERNAL_LIST_ORDER)),
        )
        assert result.item_ids == ["imdb", "tmdb"]
        assert lookups.calls["external_list"] == 1

    def test_unreachable_list_matches_nothing_and_warns(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem
    ) -> None:
        result = evaluator.evaluate(
            rules((Expression("ExternalList", Operator.EQUAL, self.URL),)),
            [make_item("m1")],
            context,
        )
        assert result.item_ids == []
        assert result.warnings == [f"Unreachable list {self.URL}"]


# ========================================================================
# CANCELLATION AND PROGRESS
# ========================================================================


class TestRunControl:
    """Tests for progress callbacks and cancellation."""

    def test_progress(self, evaluator: SmartListEvaluator, make_item: MakeItem) -> None:
        progress: list[tuple[int, int]] = []
        items = [make_item(str(i)) for i in range(5)]
        evaluator.evaluate(rules(()), items, progress=lambda done, total: progress.append((done, total)))
        assert progress == [(3, 5), (5, 5)]

    def test_cancelled_run_returns_no_result(self, evaluator: SmartListEvaluator, make_item: MakeItem) -> None:
        cancel = threading.Event()
        items = [make_item(str(i)) for i in range(9)]
        with pytest.raises(EvaluationCancelledError):
            evaluator.evaluate(rules(()), items, progress=lambda done, total: cancel.set(), cancel_event=cancel)

    def test_catastrophic_regex_does_not_stall_the_run(
        self, evaluator: SmartListEvaluator, context: EvaluationContext, make_item: MakeItem
    ) -> None:
        items = [make_item("1", "aaa"), make_item("2", "a" * 5000 + "!"), make_item("3", "aaaaaa")]
        started = time.monotonic()
        result = evaluator.evaluate(rules((Expression("Name", Operator.MATCH_REGEX, "^(a+)+$"),)), items, context)
        assert result.item_ids == ["1", "3"]
        assert time.monotonic() - started < 5.0
