# smartlists/integrations/external_lists.py

"""External list providers: MDBList, TMDB, Trakt and IMDb.

Each provider turns a public list URL into an ``ExternalListResult``
mapping provider ids (IMDb, TMDB, TVDB) to their position in the list.
``ExternalListService`` picks the provider for a URL and never raises:
unhandled URLs and failed fetches yield an empty result carrying a
warning, so a broken list only makes its rules match nothing.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import requests
from bs4 import BeautifulSoup

__all__ = [
    "ExternalListFetchError",
    "ExternalListProvider",
    "ExternalListResult",
    "ExternalListService",
    "ImdbListProvider",
    "MdbListProvider",
    "TmdbListProvider",
    "TraktListProvider",
]

logger = logging.getLogger("smartlists.external_lists")

_USER_AGENT = "SmartLists/1.0"
_BROWSER_HEADERS: dict[str, str] = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept-Language": "en-US,en;q=0.9",
}


class ExternalListFetchError(Exception):
    """A provider could not fetch or parse a list."""


@dataclass
class ExternalListResult:
    """Provider ids of one external list with their list positions.

    The first (lowest) position wins when an id appears more than once.

    Attributes:
        imdb_ids: IMDb id -> position.
        tmdb_ids: TMDB id -> position.
        tvdb_ids: TVDB id -> position.
        total_items: Number of list entries fetched.
        warning: Set when the list could not be fetched.
    """

    imdb_ids: dict[str, int] = field(default_factory=dict)
    tmdb_ids: dict[str, int] = field(default_factory=dict)
    tvdb_ids: dict[str, int] = field(default_factory=dict)
    total_items: int = 0
    warning: str | None = None

    def add(self, provider: str, provider_id: Any, position: int) -> None:
        """Records an id at a position unless it was seen earlier."""
        if provider_id is None:
            return
        value = str(provider_id).strip()
        if not value or value == "0":
            return
        table = self._table(provider)
        if table is not None:
            table.setdefault(value, position)

    def position_of(self, provider_ids: dict[str, str]) -> int | None:
        """Returns the lowest list position matching any of the given ids.

        Args:
            provider_ids: Provider name -> id, names matched case-insensitively.

        Returns:
            The position, or None if no id is on the list.
        """
        positions: list[int] = []
        for provider, provider_id in provider_ids.items():
            table = self._table(provider)
            if table is None or not provider_id:
                continue
            position = table.get(str(provider_id).strip())
            if position is not None:
                positions.append(position)
        return min(positions) if positions else None

    def _table(self, provider: str) -> dict[str, int] | None:
        return {
            "imdb": self.imdb_ids,
            "tmdb": self.tmdb_ids,
            "tvdb": self.tvdb_ids,
        }.get(provider.lower())

    @property
    def is_empty(self) -> bool:
        return not (self.imdb_ids or self.tmdb_ids or self.tvdb_ids)


class ExternalListProvider:
    """Base class for list providers."""

    name = "base"

    def __init__(self, timeout: int = 10) -> None:
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"User-Agent": _USER_AGENT})

    def can_handle(self, url: str) -> bool:
        """True if this provider understands the URL."""
        raise NotImplementedError

    def fetch(self, url: str) -> ExternalListResult:
        """Fetches the list behind ``url``.

        Raises:
            ExternalListFetchError: If the list cannot be fetched.
            requests.RequestException: On network failures.
        """
        raise NotImplementedError


# ============================================================================
# MDBLIST
# ============================================================================


class MdbListProvider(ExternalListProvider):
    """Fetches lists like ``https://mdblist.com/lists/{user}/{list}``."""

    name = "mdblist"
    API_BASE_URL = "https://api.mdblist.com"
    PAGE_SIZE = 1000

    _URL_RE = re.compile(r"mdblist\.com/lists/([^/]+)/([^/?#]+)", re.IGNORECASE)

    def __init__(self, api_key: str | None, timeout: int = 10) -> None:
        super().__init__(timeout)
        self._api_key = api_key

    def can_handle(self, url: str) -> bool:
        return bool(self._URL_RE.search(url))

    def fetch(self, url: str) -> ExternalListResult:
        if not self._api_key:
            raise ExternalListFetchError("MDBList API key is not configured")
        match = self._URL_RE.search(url)
        if match is None:
            raise ExternalListFetchError(f"Could not parse MDBList URL: {url}")
        username, listname = match.group(1), match.group(2)

        result = ExternalListResult()
        offset = 0
        position = 0
        while True:
            api_url = (
                f"{self.API_BASE_URL}/lists/{quote(username, safe='')}/{quote(listname, safe='')}/items"
            )
            response = self._session.get(
                api_url,
                params={"apikey": self._api_key, "limit": self.PAGE_SIZE, "offset": offset},
                timeout=self._timeout,
            )
            if response.status_code != 200:
                if result.total_items == 0:
                    raise ExternalListFetchError(
                        f"MDBList returned {response.status_code} for {username}/{listname}"
                    )
                logger.warning(
                    "MDBList: status %d for %s/%s at offset %d", response.status_code, username, listname, offset
                )
                break

            items = self._page_items(response.json())
            for item in items:
                self._add_item(result, item, position)
                position += 1
            result.total_items += len(items)

            if len(items) < self.PAGE_SIZE:
                break
            offset += self.PAGE_SIZE

        logger.info(
            "Fetched %d items from MDBList %s/%s (IMDb: %d, TMDB: %d, TVDB: %d)",
            result.total_items,
            username,
            listname,
            len(result.imdb_ids),
            len(result.tmdb_ids),
            len(result.tvdb_ids),
        )
        return result

    @staticmethod
    def _page_items(data: Any) -> list[dict[str, Any]]:
        # Either a flat array or a wrapper with movies/shows arrays
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)]
        if isinstance(data, dict):
            items: list[dict[str, Any]] = []
            for key in ("movies", "shows"):
                items.extend(item for item in data.get(key) or [] if isinstance(item, dict))
            return items
        raise ExternalListFetchError(f"Unexpected MDBList response type: {type(data).__name__}")

    @staticmethod
    def _add_item(result: ExternalListResult, item: dict[str, Any], position: int) -> None:
        ids = item.get("ids") or {}
        result.add("imdb", item.get("imdb_id") or ids.get("imdb"), position)
        result.add("tmdb", ids.get("tmdb"), position)
        result.add("tvdb", item.get("tvdb_id") or ids.get("tvdb"), position)


# ============================================================================
# TMDB
# ============================================================================


class TmdbListProvider(ExternalListProvider):
    """Fetches TMDB user lists, charts and trending pages."""

    name = "tmdb"
    API_BASE_URL = "https://api.themoviedb.org/3"
    MAX_CHART_PAGES = 500

    _USER_LIST_RE = re.compile(r"themoviedb\.org/list/(\d+)", re.IGNORECASE)
    _TRENDING_RE = re.compile(r"themoviedb\.org/trending/(movie|tv|all)/(day|week)", re.IGNORECASE)
    _MOVIE_CHART_RE = re.compile(r"themoviedb\.org/movie/(popular|top-rated|now-playing|upcoming)", re.IGNORECASE)
    _TV_CHART_RE = re.compile(r"themoviedb\.org/tv/(popular|top-rated|airing-today|on-the-air)", re.IGNORECASE)
    _BARE_MEDIA_RE = re.compile(r"themoviedb\.org/(movie|tv)/?(?:[?#].*)?$", re.IGNORECASE)

    def __init__(self, api_key: str | None, timeout: int = 10) -> None:
        super().__init__(timeout)
        self._api_key = api_key

    def can_handle(self, url: str) -> bool:
        return self.resolve_api_path(url) is not None

    @classmethod
    def resolve_api_path(cls, url: str) -> tuple[str, bool] | None:
        """Maps a themoviedb.org URL to ``(api_path, is_user_list)``."""
        match = cls._USER_LIST_RE.search(url)
        if match:
            return f"/list/{match.group(1)}", True

        match = cls._TRENDING_RE.search(url)
        if match:
            return f"/trending/{match.group(1).lower()}/{match.group(2).lower()}", False

        match = cls._MOVIE_CHART_RE.search(url)
        if match:
            return f"/movie/{match.group(1).lower().replace('-', '_')}", False

        match = cls._TV_CHART_RE.search(url)
        if match:
            return f"/tv/{match.group(1).lower().replace('-', '_')}", False

        match = cls._BARE_MEDIA_RE.search(url)
        if match:
            return f"/{match.group(1).lower()}/popular", False
        return None

    def fetch(self, url: str) -> ExternalListResult:
        if not self._api_key:
            raise ExternalListFetchError("TMDB API key is not configured")
        resolved = self.resolve_api_path(url)
        if resolved is None:
            raise ExternalListFetchError(f"Unsupported TMDB URL: {url}")
        api_path, is_user_list = resolved
        items_key = "items" if is_user_list else "results"
        max_pages = None if is_user_list else self.MAX_CHART_PAGES

        logger.info("Fetching TMDB list: %s -> %s", url, api_path)
        result = ExternalListResult()
        page = 1
        while max_pages is None or page <= max_pages:
            response = self._session.get(
                f"{self.API_BASE_URL}{api_path}",
                params={"api_key": self._api_key, "page": page},
                timeout=self._timeout,
            )
            if response.status_code != 200:
                if result.total_items == 0:
                    raise ExternalListFetchError(f"TMDB returned {response.status_code} for {api_path}")
                break

            data = response.json()
            items = data.get(items_key) or []
            if not items:
                break
            for item in items:
                tmdb_id = item.get("id") if isinstance(item, dict) else None
                if isinstance(tmdb_id, int) and tmdb_id > 0:
                    result.add("tmdb", tmdb_id, result.total_items)
                    result.total_items += 1

            total_pages = data.get("total_pages")
            if total_pages is None or page >= total_pages:
                break
            page += 1

        logger.info("Fetched %d items from TMDB %s", result.total_items, url)
        return result


# ============================================================================
# IMDB
# ============================================================================


class ImdbListProvider(ExternalListProvider):
    """Scrapes public IMDb list and chart pages."""

    name = "imdb"

    _URL_RE = re.compile(r"imdb\.com/(list/ls\d+|chart/\w+)", re.IGNORECASE)
    _TITLE_RE = re.compile(r"/title/(tt\d{7,})/")

    def __init__(self, timeout: int = 10) -> None:
        super().__init__(timeout)
        # IMDb serves full HTML only to browser-like clients
        self._session.headers.update(_BROWSER_HEADERS)

    def can_handle(self, url: str) -> bool:
        return bool(self._URL_RE.search(url))

    def fetch(self, url: str) -> ExternalListResult:
        if not self.can_handle(url):
            raise ExternalListFetchError(f"Unsupported IMDb URL: {url}")
        list_url = url.rstrip("/") + "/"
        logger.info("Fetching IMDb list: %s", list_url)

        response = self._session.get(list_url, timeout=self._timeout)
        if response.status_code != 200:
            raise ExternalListFetchError(f"IMDb returned {response.status_code} for {list_url}")

        result = ExternalListResult()
        soup = BeautifulSoup(response.text, "html.parser")
        for anchor in soup.find_all("a", href=True):
            match = self._TITLE_RE.search(anchor["href"])
            if match and match.group(1) not in result.imdb_ids:
                result.add("imdb", match.group(1), len(result.imdb_ids))

        result.total_items = len(result.imdb_ids)
        logger.info("Fetched %d items from IMDb list %s", result.total_items, list_url)
        return result


# ============================================================================
# TRAKT
# ============================================================================


class TraktListProvider(ExternalListProvider):
    """Fetches Trakt user lists, watchlists and movie/show charts."""

    name = "trakt"
    API_BASE_URL = "https://api.trakt.tv"
    PAGE_SIZE = 100

    _USER_LIST_RE = re.compile(r"trakt\.tv/users/([^/]+)/lists/([^/?#]+)", re.IGNORECASE)
    _WATCHLIST_RE = re.compile(r"trakt\.tv/users/([^/]+)/watchlist", re.IGNORECASE)
    _CHART_RE = re.compile(
        r"trakt\.tv/(movies|shows)/(trending|popular|watched|played|collected|anticipated|boxoffice)",
        re.IGNORECASE,
    )

    # Chart name in the site URL -> API path suffix
    _CHART_PATHS: dict[str, str] = {
        "trending": "trending",
        "popular": "popular",
        "watched": "watched/weekly",
        "played": "played/weekly",
        "collected": "collected/weekly",
        "anticipated": "anticipated",
        "boxoffice": "boxoffice",
    }

    def __init__(self, client_id: str | None, timeout: int = 10) -> None:
        super().__init__(timeout)
        self._client_id = client_id
        self._session.headers.update({"Accept": "application/json", "trakt-api-version": "2"})

    def can_handle(self, url: str) -> bool:
        return bool(url) and "trakt.tv" in url.lower()

    @classmethod
    def resolve_api_path(cls, url: str) -> str | None:
        """Maps a trakt.tv URL to its API path, or None if unsupported."""
        match = cls._USER_LIST_RE.search(url)
        if match:
            user, listname = quote(match.group(1), safe=""), quote(match.group(2), safe="")
            return f"/users/{user}/lists/{listname}/items"

        match = cls._WATCHLIST_RE.search(url)
        if match:
            return f"/users/{quote(match.group(1), safe='')}/watchlist"

        match = cls._CHART_RE.search(url)
        if match:
            media_type, chart = match.group(1).lower(), match.group(2).lower()
            if chart == "boxoffice" and media_type != "movies":
                return None
            return f"/{media_type}/{cls._CHART_PATHS[chart]}"
        return None

    def fetch(self, url: str) -> ExternalListResult:
        if not self._client_id:
            raise ExternalListFetchError("Trakt client ID is not configured")
        api_path = self.resolve_api_path(url)
        if api_path is None:
            raise ExternalListFetchError(
                f"Unsupported Trakt URL: {url}. Use users/{{user}}/lists/{{list}}, "
                "users/{user}/watchlist, or a chart such as movies/trending"
            )

        logger.info("Fetching Trakt list: %s -> %s", url, api_path)
        result = ExternalListResult()
        page = 1
        while True:
            response = self._session.get(
                f"{self.API_BASE_URL}{api_path}",
                params={"page": page, "limit": self.PAGE_SIZE, "extended": "full"},
                headers={"trakt-api-key": self._client_id},
                timeout=self._timeout,
            )
            if response.status_code != 200:
                if result.total_items == 0:
                    raise ExternalListFetchError(f"Trakt returned {response.status_code} for {api_path}")
                logger.warning("Trakt: status %d on page %d, stopping", response.status_code, page)
                break

            items = response.json()
            if not isinstance(items, list):
                raise ExternalListFetchError(f"Unexpected Trakt response type: {type(items).__name__}")
            if not items:
                break
            for item in items:
                if isinstance(item, dict):
                    self._add_item(result, item, result.total_items)
                result.total_items += 1

            page_count = response.headers.get("X-Pagination-Page-Count")
            if page_count is not None:
                try:
                    if page >= int(page_count):
                        break
                except ValueError:
                    logger.debug("Trakt: ignoring page count header %r", page_count)
                    if len(items) < self.PAGE_SIZE:
                        break
            elif len(items) < self.PAGE_SIZE:
                break
            page += 1

        logger.info(
            "Fetched %d items from Trakt %s (IMDb: %d, TMDB: %d, TVDB: %d)",
            result.total_items,
            url,
            len(result.imdb_ids),
            len(result.tmdb_ids),
            len(result.tvdb_ids),
        )
        return result

    @staticmethod
    def _add_item(result: ExternalListResult, item: dict[str, Any], position: int) -> None:
        # List entries wrap the media under "movie" or "show"; some charts carry ids directly
        media = item.get("movie") or item.get("show") or item
        ids = media.get("ids") if isinstance(media, dict) else None
        if not isinstance(ids, dict):
            return
        result.add("imdb", ids.get("imdb"), position)
        result.add("tmdb", ids.get("tmdb"), position)
        result.add("tvdb", ids.get("tvdb"), position)


# ============================================================================
# SERVICE
# ============================================================================


class ExternalListService:
    """Resolves list URLs to providers and fetches them without raising."""

    def __init__(self, providers: list[ExternalListProvider] | None = None, settings: Any = None) -> None:
        """Initializes the service.

        Args:
            providers: Providers to try in order. Built from ``settings`` when None.
            settings: Config object supplying API keys, the Trakt client ID and the HTTP timeout.
        """
        if providers is None:
            if settings is None:
                from smartlists.config import config as settings
            providers = [
                MdbListProvider(settings.MDBLIST_API_KEY, settings.HTTP_TIMEOUT),
                TmdbListProvider(settings.TMDB_API_KEY, settings.HTTP_TIMEOUT),
                TraktListProvider(settings.TRAKT_CLIENT_ID, settings.HTTP_TIMEOUT),
                ImdbListProvider(settings.HTTP_TIMEOUT),
            ]
        self._providers = providers

    def provider_for(self, url: str) -> ExternalListProvider | None:
        """Returns the first provider that handles the URL."""
        return next((p for p in self._providers if p.can_handle(url)), None)

    def fetch_list(self, url: str) -> ExternalListResult:
        """Fetches one list.

        Args:
            url: The public list URL.

        Returns:
            The fetched list, or an empty result with ``warning`` set.
        """
        provider = self.provider_for(url)
        if provider is None:
            message = f"No external list provider found for URL: {url}"
            logger.warning(message)
            return ExternalListResult(warning=message)

        try:
            result = provider.fetch(url)
        except requests.RequestException as exc:
            message = f"Network error fetching external list {url}: {exc}"
        except (ExternalListFetchError, ValueError, KeyError) as exc:
            message = f"Failed to fetch external list {url}: {exc}"
        else:
            logger.debug("Fetched external list %s: %d items", url, result.total_items)
            return result

        logger.warning(message)
        return ExternalListResult(warning=message)

    def fetch_lists(self, urls: list[str]) -> dict[str, ExternalListResult]:
        """Fetches several lists, once per URL (case-insensitive)."""
        results: dict[str, ExternalListResult] = {}
        seen: set[str] = set()
        for url in urls:
            key = url.strip().lower()
            if not key or key in seen:
                continue
            seen.add(key)
            results[url] = self.fetch_list(url)
        return results
