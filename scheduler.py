import logging
from datetime import timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from errors import QueryValidationError
from models import CleanupReport, CleanupStats, MovieRecord, PurgeCriteria
from service import MovieService

logger = logging.getLogger(__name__)

OLD_ENTRY_AGE = timedelta(days=7)
LOW_RATING = 5.0

_scheduler: Optional[AsyncIOScheduler] = None


async def run_scheduled_cleanup(service: MovieService, label: str = "scheduled") -> Optional[int]:
    """
    Purge expired records and log the counts around it.
    Errors are logged, never raised, so the next trigger still runs.
    """
    logger.info("Starting %s cache cleanup...", label)
    try:
        before = await service.count()
        deleted = await service.purge_expired()
        stats = await service.cache_stats()
        logger.info(
            "Cache cleanup completed: %d expired entries removed (before=%d, total=%d, active=%d, expired=%d)",
            deleted,
            before,
            stats.total,
            stats.active,
            stats.expired,
        )
        return deleted
    except Exception:
        logger.exception("%s cache cleanup failed", label.capitalize())
        return None


async def run_manual_cleanup(service: MovieService) -> CleanupReport:
    logger.info("Running manual cache cleanup...")
    before = await service.count()
    deleted = await service.purge_expired()
    after = await service.count()
    logger.info("Manual cleanup completed: before=%d deleted=%d after=%d", before, deleted, after)
    return CleanupReport(before=before, deleted=deleted, after=after)


def matches_criteria(movie: MovieRecord, criteria: PurgeCriteria) -> bool:
    """True when every criterion given selects the record for deletion."""
    if criteria.older_than is not None:
        if movie.created_at is None or movie.created_at >= criteria.older_than:
            return False

    if criteria.rating_min is not None or criteria.rating_max is not None:
        score = movie.imdb_score
        if score is None:
            return False
        below = criteria.rating_min is not None and score < criteria.rating_min
        above = criteria.rating_max is not None and score > criteria.rating_max
        if not (below or above):
            return False

    # Genre list is a keep-set: records sharing none of these genres go.
    if criteria.genres and set(movie.genre).intersection(criteria.genres):
        return False

    if criteria.year_min is not None or criteria.year_max is not None:
        if movie.year is None:
            return False
        before = criteria.year_min is not None and movie.year < criteria.year_min
        after = criteria.year_max is not None and movie.year > criteria.year_max
        if not (before or after):
            return False

    return True


async def cleanup_by_criteria(service: MovieService, criteria: PurgeCriteria) -> int:
    if criteria.is_empty():
        raise QueryValidationError("At least one cleanup criterion is required")
    deleted = await service.purge_matching(lambda movie: matches_criteria(movie, criteria))
    logger.info(
        "Criteria-based cleanup completed: %d entries removed (criteria=%s)",
        deleted,
        criteria.model_dump(exclude_defaults=True),
    )
    return deleted


async def get_cleanup_stats(service: MovieService) -> CleanupStats:
    now = service.clock()
    movies = await service.all_movies()
    expired = sum(1 for movie in movies if not movie.is_active(now))
    return CleanupStats(
        total=len(movies),
        expired=expired,
        active=len(movies) - expired,
        old_entries=sum(
            1 for movie in movies if movie.created_at and movie.created_at < now - OLD_ENTRY_AGE
        ),
        low_rated=sum(
            1 for movie in movies if movie.imdb_score is not None and movie.imdb_score < LOW_RATING
        ),
    )


def _add_cron_job(scheduler: AsyncIOScheduler, job_id: str, cron_expr: str, args: list) -> None:
    minute, hour, day, month, day_of_week = cron_expr.split()
    scheduler.add_job(
        run_scheduled_cleanup,
        "cron",
        id=job_id,
        args=args,
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=day_of_week,
    )


def start_scheduler(
    service: MovieService, cron_expr: str, dev_cron_expr: Optional[str] = None
) -> AsyncIOScheduler:
    """Create and start the APScheduler with the cleanup job(s)."""
    global _scheduler

    _scheduler = AsyncIOScheduler(timezone="UTC")
    _add_cron_job(_scheduler, "cache-cleanup", cron_expr, [service])
    if dev_cron_expr:
        _add_cron_job(_scheduler, "dev-cache-cleanup", dev_cron_expr, [service, "development"])
    _scheduler.start()
    logger.info("Scheduler started. Cron: %s (dev: %s)", cron_expr, dev_cron_expr or "off")
    return _scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown()
        _scheduler = None
