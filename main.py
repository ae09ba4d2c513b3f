import logging
import math
import re
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import Depends, FastAPI, Query
from fastapi.exceptions import RequestValidationError
from fastapi.requests import Request
from fastapi.responses import JSONResponse

import database
import scheduler
import stats
from config import settings
from errors import ConfigurationError, NotFoundError, QueryValidationError, TransportError
from models import MovieQuery, MovieRecord, Pagination, PurgeCriteria, SortKey, SortOrder
from query import filter_movies, parse_genres, parse_rating_filter, parse_year_filter, sort_movies
from service import MovieService

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

IMDB_ID_PATTERN = re.compile(r"^tt\d{7,8}$")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await database.init_db(settings.database_path)
    service = MovieService.from_settings(settings)
    app.state.movie_service = service
    scheduler.start_scheduler(
        service,
        cron_expr=settings.cleanup_schedule,
        dev_cron_expr=settings.dev_cleanup_schedule if settings.is_development else None,
    )
    yield
    scheduler.stop_scheduler()


app = FastAPI(lifespan=lifespan)


def get_movie_service(request: Request) -> MovieService:
    return request.app.state.movie_service


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


def _dump(movies: list[MovieRecord]) -> list[dict]:
    return [movie.model_dump(mode="json") for movie in movies]


def _validate_imdb_id(imdb_id: str) -> None:
    if not IMDB_ID_PATTERN.match(imdb_id):
        raise QueryValidationError("Invalid IMDB ID format")


@app.exception_handler(QueryValidationError)
async def query_validation_handler(request: Request, exc: QueryValidationError):
    return _error(400, str(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return _error(400, "Invalid query parameters", details=details)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error(404, str(exc) or "Movie not found")


@app.exception_handler(TransportError)
async def transport_error_handler(request: Request, exc: TransportError):
    logger.error("OMDb call failed on %s: %s", request.url.path, exc)
    return _error(502, "Failed to reach the movie provider")


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    return _error(500, str(exc))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return _error(500, "Internal server error")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/movies")
async def list_movies(
    search: Optional[str] = Query(None, min_length=1, max_length=100),
    genre: Optional[list[str]] = Query(None),
    year: Optional[str] = None,
    rating: Optional[str] = None,
    sort: SortKey = "created_at",
    order: SortOrder = "desc",
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
    service: MovieService = Depends(get_movie_service),
):
    query = MovieQuery(
        genres=parse_genres(genre),
        year=parse_year_filter(year),
        rating=parse_rating_filter(rating),
        sort_by=sort,
        sort_order=order,
        page=page,
        limit=limit,
    )

    if not search:
        result = await service.list_cached(query)
        return {
            "success": True,
            "data": _dump(result.movies),
            "pagination": result.pagination.model_dump(),
            "source": "cache",
        }

    # A search returns one provider page; filters and sort apply to that batch.
    found = await service.search_by_term(search, page=page)
    movies = sort_movies(filter_movies(found.movies, query), sort, order)
    pagination = Pagination(
        page=page,
        limit=limit,
        total=found.total_results,
        pages=math.ceil(found.total_results / limit),
    )
    return {
        "success": True,
        "data": _dump(movies),
        "pagination": pagination.model_dump(),
        "source": found.source,
        "failures": [failure.model_dump() for failure in found.failures],
    }


@app.get("/movies/meta/genres")
async def movie_genres(service: MovieService = Depends(get_movie_service)):
    return {"success": True, "data": [item.model_dump() for item in await service.genre_counts()]}


@app.get("/movies/meta/years")
async def movie_years(service: MovieService = Depends(get_movie_service)):
    return {"success": True, "data": await service.year_range()}


@app.delete("/movies/cache/expired")
async def clear_expired_cache(service: MovieService = Depends(get_movie_service)):
    deleted = await service.purge_expired()
    return {
        "success": True,
        "message": f"Cleared {deleted} expired cache entries",
        "data": {"deleted_count": deleted},
    }


@app.delete("/movies/cache/all")
async def clear_all_cache(service: MovieService = Depends(get_movie_service)):
    deleted = await service.clear_cache()
    return {
        "success": True,
        "message": f"Cleared all {deleted} cache entries",
        "data": {"deleted_count": deleted},
    }


@app.post("/movies/cache/cleanup")
async def manual_cleanup(service: MovieService = Depends(get_movie_service)):
    report = await scheduler.run_manual_cleanup(service)
    return {"success": True, "data": report.model_dump()}


@app.post("/movies/cache/purge")
async def purge_by_criteria(criteria: PurgeCriteria, service: MovieService = Depends(get_movie_service)):
    deleted = await scheduler.cleanup_by_criteria(service, criteria)
    return {
        "success": True,
        "message": f"Removed {deleted} cache entries",
        "data": {"deleted_count": deleted},
    }


@app.get("/movies/cache/cleanup-stats")
async def cleanup_stats(service: MovieService = Depends(get_movie_service)):
    report = await scheduler.get_cleanup_stats(service)
    return {"success": True, "data": report.model_dump()}


@app.get("/movies/{imdb_id}")
async def get_movie(imdb_id: str, service: MovieService = Depends(get_movie_service)):
    _validate_imdb_id(imdb_id)
    lookup = await service.get_by_id(imdb_id)
    return {"success": True, "data": lookup.movie.model_dump(mode="json"), "source": lookup.source}


@app.put("/movies/{imdb_id}")
async def refresh_movie(imdb_id: str, service: MovieService = Depends(get_movie_service)):
    _validate_imdb_id(imdb_id)
    movie = await service.refresh_movie(imdb_id)
    return {"success": True, "message": "Movie updated in cache", "data": movie.model_dump(mode="json")}


@app.delete("/movies/{imdb_id}")
async def delete_movie(imdb_id: str, service: MovieService = Depends(get_movie_service)):
    _validate_imdb_id(imdb_id)
    movie = await service.delete_movie(imdb_id)
    return {
        "success": True,
        "message": "Movie removed from cache",
        "data": {"imdb_id": movie.imdb_id, "title": movie.title},
    }


@app.get("/stats/cache")
async def cache_stats(service: MovieService = Depends(get_movie_service)):
    summary = await service.cache_stats()
    recent = await service.recent_movies(10)
    oldest = await service.recent_movies(5, newest_first=False)
    return {
        "success": True,
        "data": {
            **summary.model_dump(),
            "recent_activity": [
                movie.model_dump(mode="json", include={"imdb_id", "title", "created_at", "last_updated", "cache_expiry"})
                for movie in recent
            ],
            "expiring_today": await service.expiring_within(timedelta(hours=24)),
            "oldest_entries": [
                movie.model_dump(mode="json", include={"imdb_id", "title", "created_at", "last_updated"})
                for movie in oldest
            ],
        },
    }


@app.get("/stats/dashboard")
async def dashboard_stats(service: MovieService = Depends(get_movie_service)):
    data = stats.dashboard(await service.active_movies())
    data["cache"] = (await service.cache_stats()).model_dump()
    return {"success": True, "data": data}


@app.get("/stats/genres")
async def genre_stats(service: MovieService = Depends(get_movie_service)):
    return {"success": True, "data": stats.genre_stats(await service.active_movies())}


@app.get("/stats/years")
async def year_stats(
    start_year: Optional[int] = None,
    end_year: Optional[int] = None,
    service: MovieService = Depends(get_movie_service),
):
    return {"success": True, "data": stats.year_stats(await service.active_movies(), start_year, end_year)}


@app.get("/stats/ratings")
async def rating_stats(service: MovieService = Depends(get_movie_service)):
    return {"success": True, "data": stats.rating_distribution(await service.active_movies())}


@app.get("/stats/directors")
async def director_stats(
    limit: int = Query(20, ge=1, le=100), service: MovieService = Depends(get_movie_service)
):
    return {"success": True, "data": stats.people_stats(await service.active_movies(), "director", limit)}


@app.get("/stats/actors")
async def actor_stats(
    limit: int = Query(20, ge=1, le=100), service: MovieService = Depends(get_movie_service)
):
    return {"success": True, "data": stats.people_stats(await service.active_movies(), "actors", limit)}
