import asyncio
import logging
import time
from dataclasses import dataclass, field

import httpx

from .config import (
    TMDB_API_KEY,
    TMDB_BASE_URL,
    TMDB_LANGUAGE,
    HTTP_TIMEOUT,
    DEFAULT_MAX_CONCURRENT,
    GENRE_TAXONOMY_TTL_SECONDS,
    MAX_HTTP_RETRIES,
    DEFAULT_RETRY_AFTER,
    MAX_RETRY_AFTER,
    GENRE_ALIASES,
)

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """Raised when the catalog provider cannot answer a request (after retries)."""


@dataclass
class Genre:
    id: int
    name: str


@dataclass
class CastMember:
    id: int
    name: str
    character: str = ""
    order: int = 0


@dataclass
class CrewMember:
    id: int
    name: str
    job: str


@dataclass
class Person:
    id: int
    name: str
    popularity: float = 0.0
    known_for_department: str = ""


@dataclass
class MovieSummary:
    """A movie as returned by list endpoints (discover, similar, popular)."""
    id: int
    title: str
    overview: str = ""
    poster_path: str = ""
    release_date: str = ""
    vote_average: float = 0.0
    popularity: float = 0.0
    genre_ids: list[int] = field(default_factory=list)


@dataclass
class MovieDetails:
    """Full movie record with credits and keywords attached."""
    id: int
    title: str
    overview: str = ""
    poster_path: str = ""
    release_date: str = ""
    vote_average: float = 0.0
    vote_count: int = 0
    popularity: float = 0.0
    runtime: int = 0
    genres: list[Genre] = field(default_factory=list)
    cast: list[CastMember] = field(default_factory=list)
    crew: list[CrewMember] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)

    @property
    def genre_names(self) -> list[str]:
        return [g.name for g in self.genres]

    @property
    def directors(self) -> list[str]:
        return [c.name for c in self.crew if c.job.lower() == "director"]

    def top_cast(self, limit: int) -> list[str]:
        """Names of the top-billed cast members, in billing order."""
        return [c.name for c in self.cast[:limit]]


def _as_float(value) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _as_int(value) -> int:
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0


def parse_movie_summary(data: dict) -> MovieSummary:
    """
    Build a MovieSummary from a list-endpoint payload.

    All defaults are applied here, once, so downstream code never has to
    null-check catalog fields.
    """
    return MovieSummary(
        id=_as_int(data.get("id")),
        title=data.get("title") or "Unknown Movie",
        overview=data.get("overview") or "No overview available",
        poster_path=data.get("poster_path") or "",
        release_date=data.get("release_date") or "",
        vote_average=_as_float(data.get("vote_average")),
        popularity=_as_float(data.get("popularity")),
        genre_ids=[_as_int(g) for g in data.get("genre_ids") or []],
    )


def parse_movie_details(data: dict) -> MovieDetails:
    """
    Build a MovieDetails from a `/movie/{id}?append_to_response=credits,keywords` payload.

    Cast keeps billing order; crew members without a job are dropped; keywords
    come from the appended `keywords.keywords` list.
    """
    credits = data.get("credits") or {}
    cast_raw = sorted(
        (c for c in credits.get("cast") or [] if c.get("name")),
        key=lambda c: _as_int(c.get("order")),
    )
    crew_raw = [c for c in credits.get("crew") or [] if c.get("name") and c.get("job")]
    keywords_raw = (data.get("keywords") or {}).get("keywords") or []

    return MovieDetails(
        id=_as_int(data.get("id")),
        title=data.get("title") or "Unknown Movie",
        overview=data.get("overview") or "No overview available",
        poster_path=data.get("poster_path") or "",
        release_date=data.get("release_date") or "",
        vote_average=_as_float(data.get("vote_average")),
        vote_count=_as_int(data.get("vote_count")),
        popularity=_as_float(data.get("popularity")),
        runtime=_as_int(data.get("runtime")),
        genres=[
            Genre(id=_as_int(g.get("id")), name=g["name"])
            for g in data.get("genres") or []
            if g.get("name")
        ],
        cast=[
            CastMember(
                id=_as_int(c.get("id")),
                name=c["name"],
                character=c.get("character") or "",
                order=_as_int(c.get("order")),
            )
            for c in cast_raw
        ],
        crew=[CrewMember(id=_as_int(c.get("id")), name=c["name"], job=c["job"]) for c in crew_raw],
        keywords=[k["name"] for k in keywords_raw if k.get("name")],
    )


def parse_person(data: dict) -> Person:
    return Person(
        id=_as_int(data.get("id")),
        name=data.get("name") or "",
        popularity=_as_float(data.get("popularity")),
        known_for_department=data.get("known_for_department") or "",
    )


class TMDbClient:
    """
    Async TMDb client with coordinated rate limiting.

    Every request goes through one shared semaphore, so fan-out from any
    caller is bounded by `max_concurrent`. Use as an async context manager,
    or pass an existing `httpx.AsyncClient`.
    """

    def __init__(
        self,
        api_key: str = TMDB_API_KEY,
        base_url: str = TMDB_BASE_URL,
        language: str = TMDB_LANGUAGE,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        timeout: float = HTTP_TIMEOUT,
        retry_delay: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.language = language
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.client = client
        self._owns_client = client is None
        self._genres: list[Genre] | None = None
        self._genres_fetched_at = 0.0
        # Coordinated rate limiting: when one task hits 429, all tasks pause
        self._rate_limit_event = asyncio.Event()
        self._rate_limit_event.set()

    async def __aenter__(self):
        if self.client is None:
            self.client = httpx.AsyncClient(
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    async def aclose(self) -> None:
        if self.client and self._owns_client:
            await self.client.aclose()
            self.client = None

    async def _get(self, path: str, params: dict | None = None) -> dict | None:
        """
        GET a catalog endpoint and return the decoded JSON body.

        Returns None on 404. Raises CatalogError on any other failure once
        retries are exhausted.
        """
        if not self.client:
            raise RuntimeError("TMDbClient must be used as an async context manager")

        url = f"{self.base_url}{path}"
        query = {"api_key": self.api_key, **(params or {})}

        async with self.semaphore:
            for attempt in range(MAX_HTTP_RETRIES):
                await self._rate_limit_event.wait()

                try:
                    resp = await self.client.get(url, params=query)

                    if resp.status_code == 404:
                        logger.debug(f"Not found: {path}")
                        return None

                    if resp.status_code == 429:
                        retry_after = min(
                            int(resp.headers.get("Retry-After", DEFAULT_RETRY_AFTER)),
                            MAX_RETRY_AFTER,
                        )
                        logger.warning(
                            f"Rate limited on {path}, pausing ALL tasks for {retry_after}s "
                            f"(attempt {attempt + 1}/{MAX_HTTP_RETRIES})"
                        )
                        self._rate_limit_event.clear()
                        await asyncio.sleep(retry_after)
                        self._rate_limit_event.set()
                        continue

                    resp.raise_for_status()
                    return resp.json()

                except httpx.TimeoutException:
                    wait_time = self.retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Timeout on {path}, retrying in {wait_time}s (attempt {attempt + 1}/{MAX_HTTP_RETRIES})"
                    )
                    await asyncio.sleep(wait_time)

                except httpx.HTTPStatusError as exc:
                    logger.error(f"HTTP {exc.response.status_code} on {path}")
                    raise CatalogError(f"HTTP {exc.response.status_code} on {path}") from exc

                except httpx.HTTPError as exc:
                    logger.error(f"Request error on {path}: {type(exc).__name__}: {exc}")
                    raise CatalogError(f"Request error on {path}: {exc}") from exc

                except ValueError as exc:
                    logger.error(f"Invalid JSON from {path}: {exc}")
                    raise CatalogError(f"Invalid JSON from {path}") from exc

            logger.error(f"Max retries exceeded for {path}")
            raise CatalogError(f"Max retries exceeded for {path}")

    async def _get_results(self, path: str, params: dict | None = None) -> list[MovieSummary]:
        data = await self._get(path, params)
        if not data:
            return []
        return [parse_movie_summary(m) for m in data.get("results") or [] if m.get("id")]

    async def get_details_with_credits(self, movie_id: int) -> MovieDetails | None:
        data = await self._get(
            f"/movie/{movie_id}",
            {"language": self.language, "append_to_response": "credits,keywords"},
        )
        if data is None:
            return None
        return parse_movie_details(data)

    async def get_similar(self, movie_id: int) -> list[MovieSummary]:
        return await self._get_results(f"/movie/{movie_id}/similar", {"language": self.language})

    async def discover_by_genres(
        self,
        genre_ids: list[int],
        sort_by: str = "popularity.desc",
        min_vote_average: float | None = None,
        min_release_year: int | None = None,
        keyword_ids: list[int] | None = None,
        page: int = 1,
    ) -> list[MovieSummary]:
        params = {"language": self.language, "sort_by": sort_by, "page": page}
        if genre_ids:
            params["with_genres"] = ",".join(str(g) for g in genre_ids)
        if keyword_ids:
            params["with_keywords"] = ",".join(str(k) for k in keyword_ids)
        if min_vote_average is not None:
            params["vote_average.gte"] = min_vote_average
        if min_release_year is not None:
            params["primary_release_date.gte"] = f"{min_release_year}-01-01"
        return await self._get_results("/discover/movie", params)

    async def discover_by_person(self, person_id: int, role: str = "cast") -> list[MovieSummary]:
        if role not in ("cast", "crew"):
            raise ValueError(f"Unknown person role: {role}")
        params = {
            "language": self.language,
            "sort_by": "popularity.desc",
            f"with_{role}": person_id,
        }
        return await self._get_results("/discover/movie", params)

    async def search_person(self, name: str) -> list[Person]:
        data = await self._get("/search/person", {"query": name})
        if not data:
            return []
        return [parse_person(p) for p in data.get("results") or [] if p.get("id")]

    async def get_genre_taxonomy(self) -> list[Genre]:
        """Genre id/name list, memoized on the client for a day."""
        now = time.monotonic()
        if self._genres is not None and now - self._genres_fetched_at < GENRE_TAXONOMY_TTL_SECONDS:
            return self._genres

        data = await self._get("/genre/movie/list", {"language": self.language})
        genres = [
            Genre(id=_as_int(g.get("id")), name=g["name"])
            for g in (data or {}).get("genres") or []
            if g.get("name")
        ]
        if genres:
            self._genres = genres
            self._genres_fetched_at = now
        return genres

    async def get_popular(self) -> list[MovieSummary]:
        return await self._get_results("/movie/popular", {"language": self.language})


def resolve_genre_ids(names: list[str], taxonomy: list[Genre]) -> list[int]:
    """
    Map genre names to catalog genre IDs, case-insensitively, in the order given.

    Survey labels such as "Sci-Fi" are translated through GENRE_ALIASES first.
    Unknown names are dropped; duplicates are collapsed.
    """
    by_name = {g.name.lower(): g.id for g in taxonomy}
    ids: list[int] = []
    for name in names:
        if not name:
            continue
        key = name.strip().lower()
        key = GENRE_ALIASES.get(key, key).lower()
        genre_id = by_name.get(key)
        if genre_id is None:
            logger.debug(f"Unknown genre name: {name}")
            continue
        if genre_id not in ids:
            ids.append(genre_id)
    return ids


async def fetch_details_batch(catalog, movie_ids: list[int]) -> dict[int, MovieDetails]:
    """
    Fetch details for many movies concurrently.

    Concurrency is bounded by the catalog client's own semaphore. Failures and
    not-found movies are logged and skipped. The returned dict preserves the
    order of `movie_ids`.
    """
    unique_ids = list(dict.fromkeys(movie_ids))
    if not unique_ids:
        return {}

    tasks = [catalog.get_details_with_credits(mid) for mid in unique_ids]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    details: dict[int, MovieDetails] = {}
    failed = 0
    for movie_id, result in zip(unique_ids, results):
        if isinstance(result, BaseException):
            logger.warning(f"Failed to fetch details for movie {movie_id}: {type(result).__name__}: {result}")
            failed += 1
        elif result is None:
            logger.debug(f"No details for movie {movie_id} (likely 404)")
            failed += 1
        else:
            details[movie_id] = result

    if failed:
        logger.info(f"Detail batch complete: {len(details)}/{len(unique_ids)} successful, {failed} skipped")
    return details
