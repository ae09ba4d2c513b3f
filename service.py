import asyncio
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

import httpx

import database
import omdb
from config import Settings
from errors import ConfigurationError, NotFoundError
from models import (
    BatchFailure,
    CacheStats,
    GenreCount,
    MovieLookup,
    MoviePage,
    MovieQuery,
    MovieRecord,
    SearchResult,
)
from query import apply_query, count_by_genre, count_by_year

logger = logging.getLogger(__name__)

CACHE_SEARCH_LIMIT = 10
TOP_GENRES_LIMIT = 10
YEARS_LIMIT = 10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MovieService:
    """Cache-aside access to OMDb movie records.

    Built once at startup and handed to the HTTP layer and the cleanup
    scheduler.
    """

    def __init__(
        self,
        api_key: Optional[str],
        db_path: Path = database.DB_PATH,
        base_url: str = omdb.OMDB_BASE,
        ttl: timedelta = timedelta(hours=24),
        timeout: float = 10.0,
        max_concurrency: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.api_key = api_key
        self.db_path = db_path
        self.base_url = base_url
        self.ttl = ttl
        self.timeout = timeout
        self.clock = clock
        self._semaphore = asyncio.Semaphore(max_concurrency)

    @classmethod
    def from_settings(cls, settings: Settings) -> "MovieService":
        return cls(
            api_key=settings.omdb_api_key,
            db_path=settings.database_path,
            base_url=settings.omdb_base_url,
            ttl=timedelta(hours=settings.cache_ttl_hours),
            timeout=settings.request_timeout,
            max_concurrency=settings.max_concurrent_requests,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout)

    def _require_api_key(self) -> None:
        if not self.api_key:
            raise ConfigurationError("OMDb API key not configured")

    async def _fetch_and_store(self, client: httpx.AsyncClient, imdb_id: str) -> MovieRecord:
        async with self._semaphore:
            raw = await omdb.get_movie_details(client, self.api_key, imdb_id, self.base_url)
        movie = omdb.normalize_movie(raw, self.clock(), self.ttl)
        return await database.upsert_movie(movie, self.db_path)

    async def search_by_term(self, term: str, page: int = 1, use_cache: bool = True) -> SearchResult:
        if use_cache:
            cached = await database.search_active_movies(
                term, self.clock(), self.db_path, limit=CACHE_SEARCH_LIMIT
            )
            if cached:
                logger.info("Cache hit for %r: %d movies", term, len(cached))
                return SearchResult(movies=cached, total_results=len(cached), source="cache", page=page)

        self._require_api_key()
        async with self._client() as client:
            found = await omdb.search_movies(client, self.api_key, term, page, self.base_url)
            if not found.imdb_ids:
                logger.info("OMDb has no results for %r: %s", term, found.error)
                return SearchResult(total_results=found.total_results, source="api", page=page, error=found.error)

            results = await asyncio.gather(
                *(self._fetch_and_store(client, imdb_id) for imdb_id in found.imdb_ids),
                return_exceptions=True,
            )

        movies: list[MovieRecord] = []
        failures: list[BatchFailure] = []
        for imdb_id, result in zip(found.imdb_ids, results):
            if isinstance(result, Exception):
                logger.warning("Failed to cache movie %s: %s", imdb_id, result)
                failures.append(BatchFailure(imdb_id=imdb_id, error=str(result) or type(result).__name__))
            elif isinstance(result, BaseException):
                raise result
            else:
                movies.append(result)

        logger.info(
            "Cached %d/%d movies from OMDb for %r", len(movies), len(found.imdb_ids), term
        )
        return SearchResult(
            movies=movies,
            total_results=found.total_results,
            source="api",
            page=page,
            failures=failures,
        )

    async def get_by_id(self, imdb_id: str) -> MovieLookup:
        movie = await database.get_movie(imdb_id, self.db_path, active_at=self.clock())
        if movie is not None:
            return MovieLookup(movie=movie, source="cache")

        self._require_api_key()
        async with self._client() as client:
            movie = await self._fetch_and_store(client, imdb_id)
        return MovieLookup(movie=movie, source="api")

    async def refresh_movie(self, imdb_id: str) -> MovieRecord:
        """Refetch a cached record from OMDb, pushing its expiry forward."""
        if await database.get_movie(imdb_id, self.db_path) is None:
            raise NotFoundError(f"Movie {imdb_id} not found in cache")
        self._require_api_key()
        async with self._client() as client:
            return await self._fetch_and_store(client, imdb_id)

    async def active_movies(self) -> list[MovieRecord]:
        return await database.get_active_movies(self.clock(), self.db_path)

    async def all_movies(self) -> list[MovieRecord]:
        return await database.get_all_movies(self.db_path)

    async def count(self) -> int:
        return await database.count_movies(self.db_path)

    async def list_cached(self, query: Optional[MovieQuery] = None) -> MoviePage:
        return apply_query(await self.active_movies(), query or MovieQuery())

    async def delete_movie(self, imdb_id: str) -> MovieRecord:
        movie = await database.delete_movie(imdb_id, self.db_path)
        if movie is None:
            raise NotFoundError(f"Movie {imdb_id} not found in cache")
        return movie

    async def clear_cache(self) -> int:
        deleted = await database.delete_all_movies(self.db_path)
        logger.info("Cleared all %d cache entries", deleted)
        return deleted

    async def purge_expired(self) -> int:
        deleted = await database.delete_expired(self.clock(), self.db_path)
        logger.info("Cleaned %d expired cache entries", deleted)
        return deleted

    async def purge_matching(self, predicate: Callable[[MovieRecord], bool]) -> int:
        return await database.delete_where(predicate, self.db_path)

    async def expiring_within(self, window: timedelta) -> int:
        now = self.clock()
        return await database.count_expiring(now, now + window, self.db_path)

    async def recent_movies(self, limit: int, newest_first: bool = True) -> list[MovieRecord]:
        return await database.get_movies_by_creation(limit, newest_first, self.db_path)

    async def cache_stats(self) -> CacheStats:
        now = self.clock()
        movies = await database.get_all_movies(self.db_path)
        active = sum(1 for movie in movies if movie.is_active(now))
        return CacheStats(
            total=len(movies),
            active=active,
            expired=len(movies) - active,
            top_genres=count_by_genre(movies, TOP_GENRES_LIMIT),
            movies_by_year=count_by_year(movies, YEARS_LIMIT),
        )

    async def genre_counts(self) -> list[GenreCount]:
        return count_by_genre(await database.get_all_movies(self.db_path))

    async def year_range(self) -> dict:
        years = sorted(
            {movie.year for movie in await database.get_all_movies(self.db_path) if movie.year is not None},
            reverse=True,
        )
        return {
            "min": years[-1] if years else None,
            "max": years[0] if years else None,
            "available": years,
        }
