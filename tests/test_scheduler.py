import logging
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

import database
import scheduler
from conftest import NOW, make_movie
from errors import QueryValidationError
from models import PurgeCriteria


async def test_scheduled_cleanup_purges_expired(service, clock):
    await database.upsert_movie(make_movie("tt0000001", expires_in=timedelta(hours=1)), service.db_path)
    await database.upsert_movie(make_movie("tt0000002"), service.db_path)
    clock.advance(timedelta(hours=2))

    assert await scheduler.run_scheduled_cleanup(service) == 1
    assert await service.count() == 1


async def test_scheduled_cleanup_swallows_errors(service, caplog):
    with patch.object(service, "purge_expired", new=AsyncMock(side_effect=RuntimeError("db locked"))):
        with caplog.at_level(logging.ERROR, logger="scheduler"):
            result = await scheduler.run_scheduled_cleanup(service)

    assert result is None
    assert "cache cleanup failed" in caplog.text


async def test_manual_cleanup_reports_counts(service, clock):
    for i in range(3):
        await database.upsert_movie(
            make_movie(f"tt000000{i}", expires_in=timedelta(hours=1 + i * 24)), service.db_path
        )
    clock.advance(timedelta(hours=2))

    report = await scheduler.run_manual_cleanup(service)
    assert report.model_dump() == {"before": 3, "deleted": 1, "after": 2}


async def test_manual_cleanup_propagates_errors(service):
    with patch.object(service, "purge_expired", new=AsyncMock(side_effect=RuntimeError("boom"))):
        with pytest.raises(RuntimeError):
            await scheduler.run_manual_cleanup(service)


async def test_cleanup_by_rating_range(service):
    for i, score in enumerate([3.0, 6.5, 9.5, None]):
        await database.upsert_movie(make_movie(f"tt000000{i}", score=score), service.db_path)

    deleted = await scheduler.cleanup_by_criteria(service, PurgeCriteria(rating_min=5.0, rating_max=9.0))
    assert deleted == 2
    remaining = {m.imdb_id for m in await service.all_movies()}
    assert remaining == {"tt0000001", "tt0000003"}


async def test_cleanup_by_genre_keep_set_and_age(service):
    await database.upsert_movie(
        make_movie("tt0000001", genre=["Horror"], created_at=NOW - timedelta(days=10)), service.db_path
    )
    await database.upsert_movie(
        make_movie("tt0000002", genre=["Drama"], created_at=NOW - timedelta(days=10)), service.db_path
    )
    await database.upsert_movie(make_movie("tt0000003", genre=["Horror"]), service.db_path)

    criteria = PurgeCriteria(older_than=NOW - timedelta(days=7), genres=["Drama"])
    assert await scheduler.cleanup_by_criteria(service, criteria) == 1
    remaining = {m.imdb_id for m in await service.all_movies()}
    assert remaining == {"tt0000002", "tt0000003"}


async def test_cleanup_by_year_range(service):
    for i, year in enumerate([1950, 1995, 2030]):
        await database.upsert_movie(make_movie(f"tt000000{i}", year=year), service.db_path)

    deleted = await scheduler.cleanup_by_criteria(service, PurgeCriteria(year_min=1960, year_max=2025))
    assert deleted == 2


async def test_cleanup_by_criteria_rejects_empty(service):
    with pytest.raises(QueryValidationError):
        await scheduler.cleanup_by_criteria(service, PurgeCriteria())


async def test_cleanup_stats(service, clock):
    await database.upsert_movie(
        make_movie("tt0000001", score=4.0, created_at=NOW - timedelta(days=8)), service.db_path
    )
    await database.upsert_movie(make_movie("tt0000002", score=8.0), service.db_path)
    clock.advance(timedelta(hours=1))

    stats = await scheduler.get_cleanup_stats(service)
    assert stats.total == 2
    assert stats.expired == 1
    assert stats.active == 1
    assert stats.old_entries == 1
    assert stats.low_rated == 1


async def test_start_scheduler_registers_jobs(service):
    with patch("scheduler.AsyncIOScheduler") as scheduler_cls:
        instance = scheduler_cls.return_value
        scheduler.start_scheduler(service, "0 2 * * *", dev_cron_expr="0 */6 * * *")

    assert instance.add_job.call_count == 2
    first = instance.add_job.call_args_list[0]
    assert first.kwargs["id"] == "cache-cleanup"
    assert first.kwargs["hour"] == "2"
    assert first.kwargs["minute"] == "0"
    second = instance.add_job.call_args_list[1]
    assert second.kwargs["hour"] == "*/6"
    instance.start.assert_called_once()

    instance.running = True
    scheduler.stop_scheduler()
    instance.shutdown.assert_called_once()


async def test_start_scheduler_without_dev_job(service):
    with patch("scheduler.AsyncIOScheduler") as scheduler_cls:
        scheduler.start_scheduler(service, "30 3 * * *")
    assert scheduler_cls.return_value.add_job.call_count == 1
    scheduler.stop_scheduler()
