import json
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Optional

import aiosqlite

from models import ImdbRating, MovieLinks, MovieRecord, Ratings, Score
from query import rank_by_relevance, tokenize

DB_PATH = Path("data/movies.db")

_LIST_COLUMNS = ("genre", "director", "writer", "actors", "language", "country", "images")


def _ts(value: datetime) -> str:
    # Fixed-width UTC strings so SQL comparisons order correctly.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


async def init_db(db_path: Path = DB_PATH) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS movies (
                id                    INTEGER PRIMARY KEY AUTOINCREMENT,
                imdb_id               TEXT UNIQUE NOT NULL,
                tmdb_id               TEXT,
                title                 TEXT NOT NULL,
                year                  INTEGER,
                released              TEXT,
                runtime               INTEGER,
                genre                 TEXT,
                director              TEXT,
                writer                TEXT,
                actors                TEXT,
                plot                  TEXT,
                language              TEXT,
                country               TEXT,
                rated                 TEXT,
                type                  TEXT DEFAULT 'movie',
                imdb_score            REAL,
                imdb_votes            INTEGER,
                rotten_tomatoes_score INTEGER,
                metacritic_score      INTEGER,
                poster                TEXT,
                images                TEXT,
                links                 TEXT,
                cache_expiry          TEXT NOT NULL,
                last_updated          TEXT NOT NULL,
                created_at            TEXT NOT NULL,
                source                TEXT DEFAULT 'omdb'
            )
            """
        )
        await db.execute("CREATE INDEX IF NOT EXISTS idx_movies_cache_expiry ON movies (cache_expiry)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_movies_year ON movies (year)")
        await db.commit()


async def upsert_movie(movie: MovieRecord, db_path: Path = DB_PATH) -> MovieRecord:
    """Insert or overwrite by imdb_id. created_at survives overwrites."""
    created_at = movie.created_at or movie.last_updated
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        await db.execute(
            """
            INSERT INTO movies
                (imdb_id, tmdb_id, title, year, released, runtime,
                 genre, director, writer, actors, plot, language, country,
                 rated, type, imdb_score, imdb_votes, rotten_tomatoes_score,
                 metacritic_score, poster, images, links,
                 cache_expiry, last_updated, created_at, source)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(imdb_id) DO UPDATE SET
                tmdb_id               = excluded.tmdb_id,
                title                 = excluded.title,
                year                  = excluded.year,
                released              = excluded.released,
                runtime               = excluded.runtime,
                genre                 = excluded.genre,
                director              = excluded.director,
                writer                = excluded.writer,
                actors                = excluded.actors,
                plot                  = excluded.plot,
                language              = excluded.language,
                country               = excluded.country,
                rated                 = excluded.rated,
                type                  = excluded.type,
                imdb_score            = excluded.imdb_score,
                imdb_votes            = excluded.imdb_votes,
                rotten_tomatoes_score = excluded.rotten_tomatoes_score,
                metacritic_score      = excluded.metacritic_score,
                poster                = excluded.poster,
                images                = excluded.images,
                links                 = excluded.links,
                cache_expiry          = excluded.cache_expiry,
                last_updated          = excluded.last_updated,
                source                = excluded.source
            """,
            (
                movie.imdb_id,
                movie.tmdb_id,
                movie.title,
                movie.year,
                movie.released.isoformat() if movie.released else None,
                movie.runtime,
                json.dumps(movie.genre),
                json.dumps(movie.director),
                json.dumps(movie.writer),
                json.dumps(movie.actors),
                movie.plot,
                json.dumps(movie.language),
                json.dumps(movie.country),
                movie.rated,
                movie.type,
                movie.rating.imdb.score,
                movie.rating.imdb.votes,
                movie.rating.rotten_tomatoes.score,
                movie.rating.metacritic.score,
                movie.poster,
                json.dumps(movie.images),
                movie.links.model_dump_json(),
                _ts(movie.cache_expiry),
                _ts(movie.last_updated),
                _ts(created_at),
                movie.source,
            ),
        )
        await db.commit()
        async with db.execute("SELECT * FROM movies WHERE imdb_id = ?", (movie.imdb_id,)) as cursor:
            row = await cursor.fetchone()
    return _row_to_movie(row)


async def get_movie(
    imdb_id: str, db_path: Path = DB_PATH, active_at: Optional[datetime] = None
) -> Optional[MovieRecord]:
    """Look up one record. With active_at, expired records are ignored."""
    sql = "SELECT * FROM movies WHERE imdb_id = ?"
    params: tuple = (imdb_id,)
    if active_at is not None:
        sql += " AND cache_expiry > ?"
        params += (_ts(active_at),)
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(sql, params) as cursor:
            row = await cursor.fetchone()
    return _row_to_movie(row) if row else None


async def search_active_movies(
    term: str, now: datetime, db_path: Path = DB_PATH, limit: int = 10
) -> list[MovieRecord]:
    """Active records whose title or plot mention a word of term, best match first."""
    tokens = tokenize(term)
    if not tokens:
        return []

    clauses = []
    params: list = [_ts(now)]
    for token in tokens:
        pattern = "%" + token.replace("\\", "\\\\").replace("_", "\\_").replace("%", "\\%") + "%"
        clauses.append("title LIKE ? ESCAPE '\\' OR plot LIKE ? ESCAPE '\\'")
        params.extend([pattern, pattern])

    sql = f"SELECT * FROM movies WHERE cache_expiry > ? AND ({' OR '.join(clauses)}) ORDER BY id"
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
    return rank_by_relevance((_row_to_movie(row) for row in rows), term, limit)


async def get_active_movies(now: datetime, db_path: Path = DB_PATH) -> list[MovieRecord]:
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(
            "SELECT * FROM movies WHERE cache_expiry > ? ORDER BY id", (_ts(now),)
        ) as cursor:
            rows = await cursor.fetchall()
    return [_row_to_movie(row) for row in rows]


async def get_all_movies(db_path: Path = DB_PATH) -> list[MovieRecord]:
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        async with db.execute("SELECT * FROM movies ORDER BY id") as cursor:
            rows = await cursor.fetchall()
    return [_row_to_movie(row) for row in rows]


async def get_movies_by_creation(
    limit: int, newest_first: bool = True, db_path: Path = DB_PATH
) -> list[MovieRecord]:
    direction = "DESC" if newest_first else "ASC"
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(
            f"SELECT * FROM movies ORDER BY created_at {direction}, id {direction} LIMIT ?", (limit,)
        ) as cursor:
            rows = await cursor.fetchall()
    return [_row_to_movie(row) for row in rows]


async def count_movies(db_path: Path = DB_PATH) -> int:
    async with aiosqlite.connect(db_path) as db:
        async with db.execute("SELECT COUNT(*) FROM movies") as cursor:
            row = await cursor.fetchone()
    return row[0]


async def count_active(now: datetime, db_path: Path = DB_PATH) -> int:
    async with aiosqlite.connect(db_path) as db:
        async with db.execute(
            "SELECT COUNT(*) FROM movies WHERE cache_expiry > ?", (_ts(now),)
        ) as cursor:
            row = await cursor.fetchone()
    return row[0]


async def count_expiring(start: datetime, end: datetime, db_path: Path = DB_PATH) -> int:
    """Records still active at start that expire before end."""
    async with aiosqlite.connect(db_path) as db:
        async with db.execute(
            "SELECT COUNT(*) FROM movies WHERE cache_expiry > ? AND cache_expiry < ?",
            (_ts(start), _ts(end)),
        ) as cursor:
            row = await cursor.fetchone()
    return row[0]


async def delete_expired(now: datetime, db_path: Path = DB_PATH) -> int:
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute("DELETE FROM movies WHERE cache_expiry <= ?", (_ts(now),))
        deleted = cursor.rowcount
        await db.commit()
    return deleted


async def delete_movie(imdb_id: str, db_path: Path = DB_PATH) -> Optional[MovieRecord]:
    """Remove one record. Returns what was deleted, or None."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        async with db.execute("SELECT * FROM movies WHERE imdb_id = ?", (imdb_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        await db.execute("DELETE FROM movies WHERE imdb_id = ?", (imdb_id,))
        await db.commit()
    return _row_to_movie(row)


async def delete_all_movies(db_path: Path = DB_PATH) -> int:
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute("DELETE FROM movies")
        deleted = cursor.rowcount
        await db.commit()
    return deleted


async def delete_where(predicate: Callable[[MovieRecord], bool], db_path: Path = DB_PATH) -> int:
    """Bulk delete every record the predicate selects."""
    movies = await get_all_movies(db_path)
    ids = [(movie.id,) for movie in movies if predicate(movie)]
    if not ids:
        return 0
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.executemany("DELETE FROM movies WHERE id = ?", ids)
        deleted = cursor.rowcount
        await db.commit()
    return deleted


def _row_to_movie(row: aiosqlite.Row) -> MovieRecord:
    lists = {column: json.loads(row[column]) if row[column] else [] for column in _LIST_COLUMNS}
    links_raw = row["links"]
    return MovieRecord(
        id=row["id"],
        imdb_id=row["imdb_id"],
        tmdb_id=row["tmdb_id"],
        title=row["title"],
        year=row["year"],
        released=date.fromisoformat(row["released"]) if row["released"] else None,
        runtime=row["runtime"],
        plot=row["plot"] or "",
        rated=row["rated"],
        type=row["type"] or "movie",
        rating=Ratings(
            imdb=ImdbRating(score=row["imdb_score"], votes=row["imdb_votes"]),
            rotten_tomatoes=Score(score=row["rotten_tomatoes_score"]),
            metacritic=Score(score=row["metacritic_score"]),
        ),
        poster=row["poster"],
        links=MovieLinks.model_validate_json(links_raw) if links_raw else MovieLinks(),
        cache_expiry=_parse_ts(row["cache_expiry"]),
        last_updated=_parse_ts(row["last_updated"]),
        created_at=_parse_ts(row["created_at"]),
        source=row["source"] or "omdb",
        **lists,
    )
