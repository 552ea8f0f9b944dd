# tests/unit/test_integrations/test_external_lists.py

"""Tests for the external list providers and service."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from smartlists.integrations.external_lists import (
    ExternalListFetchError,
    ExternalListProvider,
    ExternalListResult,
    ExternalListService,
    ImdbListProvider,
    MdbListProvider,
    TmdbListProvider,
    TraktListProvider,
)


def _response(status_code: int = 200, json_data=None, text: str = "", headers: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data
    response.text = text
    response.headers = headers or {}
    return response


class TestExternalListResult:
    """Tests for the ExternalListResult id tables."""

    def test_first_position_wins(self) -> None:
        result = ExternalListResult()
        result.add("imdb", "tt0133093", 0)
        result.add("IMDB", "tt0133093", 5)
        assert result.imdb_ids == {"tt0133093": 0}

    def test_ignores_empty_and_zero_ids(self) -> None:
        result = ExternalListResult()
        result.add("tmdb", None, 0)
        result.add("tmdb", 0, 1)
        result.add("tmdb", "  ", 2)
        assert result.is_empty

    def test_ignores_unknown_provider(self) -> None:
        result = ExternalListResult()
        result.add("trakt", "123", 0)
        assert result.is_empty

    def test_position_of_takes_lowest_matching_id(self) -> None:
        result = ExternalListResult()
        result.add("imdb", "tt0000001", 3)
        result.add("tmdb", 603, 1)
        assert result.position_of({"Imdb": "tt0000001", "Tmdb": "603"}) == 1
        assert result.position_of({"tvdb": "1"}) is None
        assert result.position_of({}) is None


class TestMdbListProvider:
    """Tests for MdbListProvider.fetch()."""

    URL = "https://mdblist.com/lists/someone/top-movies"

    def test_can_handle(self) -> None:
        provider = MdbListProvider("key")
        assert provider.can_handle(self.URL)
        assert not provider.can_handle("https://www.imdb.com/list/ls000000001/")

    @patch("smartlists.integrations.external_lists.requests.Session")
    def test_fetch_flat_array(self, mock_session_cls: MagicMock) -> None:
        mock_session = MagicMock()
        mock_session.get.return_value = _response(
            json_data=[
                {"imdb_id": "tt0133093", "ids": {"tmdb": 603}},
                {"ids": {"imdb": "tt0083658", "tmdb": 78, "tvdb": None}},
            ]
        )
        mock_session_cls.return_value = mock_session

        result = MdbListProvider("secret").fetch(self.URL)

        assert result.imdb_ids == {"tt0133093": 0, "tt0083658": 1}
        assert result.tmdb_ids == {"603": 0, "78": 1}
        assert result.total_items == 2
        args, kwargs = mock_session.get.call_args
        assert args[0] == "https://api.mdblist.com/lists/someone/top-movies/items"
        assert kwargs["params"] == {"apikey": "secret", "limit": 1000, "offset": 0}

    @patch("smartlists.integrations.external_lists.requests.Session")
    def test_fetch_movies_and_shows_wrapper(self, mock_session_cls: MagicMock) -> None:
        mock_session = MagicMock()
        mock_session.get.return_value = _response(
            json_data={"movies": [{"imdb_id": "tt0133093"}], "shows": [{"tvdb_id": 81189}]}
        )
        mock_session_cls.return_value = mock_session

        result = MdbListProvider("secret").fetch(self.URL)
        assert result.imdb_ids == {"tt0133093": 0}
        assert result.tvdb_ids == {"81189": 1}

    def test_missing_api_key(self) -> None:
        with pytest.raises(ExternalListFetchError, match="API key"):
            MdbListProvider(None).fetch(self.URL)

    @patch("smartlists.integrations.external_lists.requests.Session")
    def test_error_status_on_first_page(self, mock_session_cls: MagicMock) -> None:
        mock_session = MagicMock()
        mock_session.get.return_value = _response(status_code=404)
        mock_session_cls.return_value = mock_session

        with pytest.raises(ExternalListFetchError, match="404"):
            MdbListProvider("secret").fetch(self.URL)


class TestTmdbListProvider:
    """Tests for TmdbListProvider URL resolution and paging."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://www.themoviedb.org/list/8136", ("/list/8136", True)),
            ("https://www.themoviedb.org/trending/movie/week", ("/trending/movie/week", False)),
            ("https://www.themoviedb.org/movie/top-rated", ("/movie/top_rated", False)),
            ("https://www.themoviedb.org/tv/airing-today", ("/tv/airing_today", False)),
            ("https://www.themoviedb.org/tv", ("/tv/popular", False)),
            ("https://www.themoviedb.org/person/287", None),
        ],
    )
    def test_resolve_api_path(self, url: str, expected) -> None:
        assert TmdbListProvider.resolve_api_path(url) == expected

    @patch("smartlists.integrations.external_lists.requests.Session")
    def test_follows_pages_until_total(self, mock_session_cls: MagicMock) -> None:
        mock_session = MagicMock()
        mock_session.get.side_effect = [
            _response(json_data={"results": [{"id": 1}, {"id": 2}], "total_pages": 2}),
            _response(json_data={"results": [{"id": 3}, {"id": 0}], "total_pages": 2}),
        ]
        mock_session_cls.return_value = mock_session

        result = TmdbListProvider("key").fetch("https://www.themoviedb.org/movie/popular")

        assert result.tmdb_ids == {"1": 0, "2": 1, "3": 2}
        assert mock_session.get.call_count == 2
        assert mock_session.get.call_args.kwargs["params"] == {"api_key": "key", "page": 2}

    @patch("smartlists.integrations.external_lists.requests.Session")
    def test_user_list_reads_items(self, mock_session_cls: MagicMock) -> None:
        mock_session = MagicMock()
        mock_session.get.return_value = _response(json_data={"items": [{"id": 603}], "total_pages": 1})
        mock_session_cls.return_value = mock_session

        result = TmdbListProvider("key").fetch("https://www.themoviedb.org/list/8136")
        assert result.tmdb_ids == {"603": 0}


class TestTraktListProvider:
    """Tests for Trakt URL resolution and paging."""

    URL = "https://trakt.tv/users/someone/lists/favourites"

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://trakt.tv/users/someone/lists/favourites?sort=rank", "/users/someone/lists/favourites/items"),
            ("https://trakt.tv/users/some one/lists/best", "/users/some%20one/lists/best/items"),
            ("https://trakt.tv/users/someone/watchlist", "/users/someone/watchlist"),
            ("https://trakt.tv/movies/trending", "/movies/trending"),
            ("https://trakt.tv/shows/Popular", "/shows/popular"),
            ("https://trakt.tv/shows/watched", "/shows/watched/weekly"),
            ("https://trakt.tv/movies/boxoffice", "/movies/boxoffice"),
            ("https://trakt.tv/shows/boxoffice", None),
            ("https://trakt.tv/movies/the-matrix-1999", None),
        ],
    )
    def test_resolve_api_path(self, url: str, expected: str | None) -> None:
        assert TraktListProvider.resolve_api_path(url) == expected

    def test_can_handle(self) -> None:
        provider = TraktListProvider("client")
        assert provider.can_handle(self.URL)
        assert provider.can_handle("https://TRAKT.tv/movies/trending")
        assert not provider.can_handle("https://mdblist.com/lists/a/b")

    def test_missing_client_id(self) -> None:
        with pytest.raises(ExternalListFetchError, match="client ID"):
            TraktListProvider(None).fetch(self.URL)

    def test_unsupported_url(self) -> None:
        with pytest.raises(ExternalListFetchError, match="Unsupported Trakt URL"):
            TraktListProvider("client").fetch("https://trakt.tv/search?q=matrix")

    @patch("smartlists.integrations.external_lists.requests.Session")
    def test_list_items_and_chart_items(self, mock_session_cls: MagicMock) -> None:
        mock_session = MagicMock()
        mock_session.headers = {}
        mock_session.get.return_value = _response(
            json_data=[
                {"rank": 1, "movie": {"title": "The Matrix", "ids": {"imdb": "tt0133093", "tmdb": 603}}},
                {"rank": 2, "show": {"title": "Lost", "ids": {"tvdb": 73739, "tmdb": 4607}}},
                {"title": "Blade Runner", "ids": {"imdb": "tt0083658", "tmdb": 0}},
                {"rank": 4, "person": {"name": "Keanu Reeves"}},
            ],
            headers={"X-Pagination-Page-Count": "1"},
        )
        mock_session_cls.return_value = mock_session

        result = TraktListProvider("client").fetch(self.URL)

        assert result.imdb_ids == {"tt0133093": 0, "tt0083658": 2}
        assert result.tmdb_ids == {"603": 0, "4607": 1}
        assert result.tvdb_ids == {"73739": 1}
        assert result.total_items == 4
        args, kwargs = mock_session.get.call_args
        assert args[0] == "https://api.trakt.tv/users/someone/lists/favourites/items"
        assert kwargs["params"] == {"page": 1, "limit": 100, "extended": "full"}
        assert kwargs["headers"] == {"trakt-api-key": "client"}
        assert mock_session.headers["trakt-api-version"] == "2"

    @patch("smartlists.integrations.external_lists.requests.Session")
    def test_follows_page_count_header(self, mock_session_cls: MagicMock) -> None:
        mock_session = MagicMock()
        mock_session.get.side_effect = [
            _response(json_data=[{"movie": {"ids": {"tmdb": 1}}}], headers={"X-Pagination-Page-Count": "2"}),
            _response(json_data=[{"movie": {"ids": {"tmdb": 2}}}], headers={"X-Pagination-Page-Count": "2"}),
        ]
        mock_session_cls.return_value = mock_session

        result = TraktListProvider("client").fetch("https://trakt.tv/movies/popular")

        assert result.tmdb_ids == {"1": 0, "2": 1}
        assert mock_session.get.call_count == 2
        assert mock_session.get.call_args.kwargs["params"]["page"] == 2

    @patch("smartlists.integrations.external_lists.requests.Session")
    def test_short_page_without_header_ends_paging(self, mock_session_cls: MagicMock) -> None:
        mock_session = MagicMock()
        mock_session.get.return_value = _response(json_data=[{"show": {"ids": {"tvdb": 81189}}}])
        mock_session_cls.return_value = mock_session

        result = TraktListProvider("client").fetch("https://trakt.tv/users/someone/watchlist")
        assert result.tvdb_ids == {"81189": 0}
        assert mock_session.get.call_count == 1

    @patch("smartlists.integrations.external_lists.requests.Session")
    def test_error_on_later_page_keeps_fetched_items(self, mock_session_cls: MagicMock) -> None:
        full_page = [{"movie": {"ids": {"tmdb": n}}} for n in range(1, 101)]
        mock_session = MagicMock()
        mock_session.get.side_effect = [_response(json_data=full_page), _response(status_code=502)]
        mock_session_cls.return_value = mock_session

        result = TraktListProvider("client").fetch("https://trakt.tv/movies/trending")
        assert result.total_items == 100
        assert result.tmdb_ids["100"] == 99

    @patch("smartlists.integrations.external_lists.requests.Session")
    def test_error_status_on_first_page(self, mock_session_cls: MagicMock) -> None:
        mock_session = MagicMock()
        mock_session.get.return_value = _response(status_code=401)
        mock_session_cls.return_value = mock_session

        with pytest.raises(ExternalListFetchError, match="401"):
            TraktListProvider("client").fetch(self.URL)


class TestImdbListProvider:
    """Tests for scraping IMDb list pages."""

    PAGE = """
    <html><body>
      <a href="/title/tt0133093/?ref_=ttls_li_tt">The Matrix</a>
      <a href="/title/tt0133093/">The Matrix (poster)</a>
      <a href="/title/tt0083658/">Blade Runner</a>
      <a href="/name/nm0000206/">Keanu Reeves</a>
    </body></html>
    """

    @patch("smartlists.integrations.external_lists.requests.Session")
    def test_scrapes_titles_in_page_order(self, mock_session_cls: MagicMock) -> None:
        mock_session = MagicMock()
        mock_session.headers = {}
        mock_session.get.return_value = _response(text=self.PAGE)
        mock_session_cls.return_value = mock_session

        result = ImdbListProvider().fetch("https://www.imdb.com/list/ls000000001")

        assert result.imdb_ids == {"tt0133093": 0, "tt0083658": 1}
        assert result.total_items == 2
        assert mock_session.get.call_args.args[0] == "https://www.imdb.com/list/ls000000001/"

    def test_rejects_other_pages(self) -> None:
        with pytest.raises(ExternalListFetchError):
            ImdbListProvider().fetch("https://www.imdb.com/title/tt0133093/")


class TestExternalListService:
    """Tests for provider selection and error handling."""

    URL = "https://example.com/list/1"

    def _provider(self, result=None, error: Exception | None = None) -> MagicMock:
        provider = MagicMock(spec=ExternalListProvider)
        provider.can_handle.return_value = True
        if error is not None:
            provider.fetch.side_effect = error
        else:
            provider.fetch.return_value = result
        return provider

    def test_no_provider_warns(self) -> None:
        result = ExternalListService(providers=[]).fetch_list(self.URL)
        assert result.is_empty
        assert "No external list provider" in result.warning

    def test_returns_provider_result(self) -> None:
        listing = ExternalListResult(total_items=1)
        assert ExternalListService(providers=[self._provider(listing)]).fetch_list(self.URL) is listing

    @pytest.mark.parametrize(
        "error,fragment",
        [
            (requests.ConnectionError("refused"), "Network error"),
            (ExternalListFetchError("bad page"), "Failed to fetch"),
            (ValueError("bad json"), "Failed to fetch"),
        ],
    )
    def test_failures_become_warnings(self, error: Exception, fragment: str) -> None:
        result = ExternalListService(providers=[self._provider(error=error)]).fetch_list(self.URL)
        assert result.is_empty
        assert fragment in result.warning

    def test_fetch_lists_once_per_url(self) -> None:
        provider = self._provider(ExternalListResult())
        results = ExternalListService(providers=[provider]).fetch_lists([self.URL, self.URL.upper(), " "])
        assert list(results) == [self.URL]
        assert provider.fetch.call_count == 1

    def test_builds_providers_from_settings(self, settings) -> None:
        service = ExternalListService(settings=settings)
        assert isinstance(service.provider_for("https://mdblist.com/lists/a/b"), MdbListProvider)
        assert isinstance(service.provider_for("https://www.themoviedb.org/list/1"), TmdbListProvider)
        assert isinstance(service.provider_for("https://www.imdb.com/chart/top"), ImdbListProvider)
        assert isinstance(service.provider_for("https://trakt.tv/movies/trending"), TraktListProvider)
        assert service.provider_for(self.URL) is None
