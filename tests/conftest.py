# tests/conftest.py
import threading
from collections import Counter
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from smartlists.config import Config
from smartlists.core.media_item import MediaItem
from smartlists.integrations.external_lists import ExternalListResult
from smartlists.services.smart_lists.lookups import CatalogLookups, MediaStreamInfo, Person, SeriesInfo


class FakeLookups(CatalogLookups):
    """In-memory catalog lookups that count every call.

    Items listed in ``failing_items`` make every lookup for them raise.
    """

    def __init__(self) -> None:
        super().__init__()
        self.people_by_item: dict[str, list[Person]] = {}
        self.streams_by_item: dict[str, MediaStreamInfo] = {}
        self.series_by_id: dict[str, SeriesInfo] = {}
        self.collections_by_item: dict[str, list[str]] = {}
        self.playlists_by_item: dict[str, list[str]] = {}
        self.next_unwatched_by_series: dict[str, str] = {}
        self.libraries: dict[str, str] = {}
        self.children: dict[str, list[MediaItem]] = {}
        self.lists: dict[str, ExternalListResult] = {}
        self.failing_items: set[str] = set()
        self.calls: Counter[str] = Counter()
        self._lock = threading.Lock()

    def _record(self, name: str, key: str | None = None) -> None:
        with self._lock:
            self.calls[name] += 1
        if key is not None and key in self.failing_items:
            raise RuntimeError(f"{name} lookup failed for {key}")

    def people(self, item: MediaItem) -> list[Person]:
        self._record("people", item.item_id)
        return list(self.people_by_item.get(item.item_id, []))

    def collections(self, item: MediaItem) -> list[str]:
        self._record("collections", item.item_id)
        return list(self.collections_by_item.get(item.item_id, []))

    def playlists(self, item: MediaItem, user_id: str | None) -> list[str]:
        self._record("playlists", item.item_id)
        return list(self.playlists_by_item.get(item.item_id, []))

    def media_streams(self, item: MediaItem) -> MediaStreamInfo | None:
        self._record("media_streams", item.item_id)
        return self.streams_by_item.get(item.item_id)

    def series(self, series_id: str) -> SeriesInfo | None:
        self._record("series", series_id)
        return self.series_by_id.get(series_id)

    def next_unwatched(self, series_id: str, user_id: str | None, include_unwatched_series: bool) -> str | None:
        self._record("next_unwatched", series_id)
        return self.next_unwatched_by_series.get(series_id)

    def library_name(self, item: MediaItem) -> str | None:
        self._record("library_name", item.item_id)
        return self.libraries.get(item.item_id)

    def child_items(self, item: MediaItem) -> list[MediaItem]:
        self._record("child_items", item.item_id)
        return list(self.children.get(item.item_id, []))

    def external_list(self, url: str) -> ExternalListResult:
        self._record("external_list")
        result = self.lists.get(url)
        if result is None:
            return ExternalListResult(warning=f"Unreachable list {url}")
        return result


@pytest.fixture
def make_item() -> Callable[..., MediaItem]:
    """Factory for MediaItem records; the name defaults to the id."""

    def _make(item_id: str, name: str | None = None, **kwargs: Any) -> MediaItem:
        return MediaItem(item_id=item_id, name=name if name is not None else item_id, **kwargs)

    return _make


@pytest.fixture
def lookups() -> FakeLookups:
    """Empty in-memory lookups."""
    return FakeLookups()


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Config:
    """Config isolated from the user's settings file and environment."""
    for name in ("SMARTLISTS_BATCH_SIZE", "SMARTLISTS_WORKERS", "SMARTLISTS_REGEX_TIMEOUT_MS"):
        monkeypatch.delenv(name, raising=False)
    return Config(
        SETTINGS_FILE=tmp_path / "settings.json",
        PROCESSING_BATCH_SIZE=3,
        WORKER_COUNT=2,
        REGEX_TIMEOUT_MS=500,
    )
