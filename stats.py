"""Analytics over active cache records, for the dashboard charts."""
from collections import defaultdict
from typing import Any, Iterable, Optional, Sequence

from models import MovieRecord
from query import count_by_genre

RATING_BUCKETS = [(0, 2), (2, 4), (4, 6), (6, 7), (7, 8), (8, 9), (9, 10)]


def _mean(values: Sequence[float], digits: int = 2) -> Optional[float]:
    if not values:
        return None
    return round(sum(values) / len(values), digits)


def _mean_int(values: Sequence[int]) -> Optional[int]:
    if not values:
        return None
    return round(sum(values) / len(values))


def _summary(movie: MovieRecord) -> dict[str, Any]:
    return {
        "imdb_id": movie.imdb_id,
        "title": movie.title,
        "year": movie.year,
        "rating": movie.imdb_score,
        "genre": movie.genre,
    }


def _by_rating(movies: Iterable[MovieRecord]) -> list[MovieRecord]:
    return sorted(movies, key=lambda m: m.imdb_score or 0.0, reverse=True)


def genre_distribution(movies: Sequence[MovieRecord], limit: int = 10) -> list[dict[str, Any]]:
    return [item.model_dump() for item in count_by_genre(movies, limit)]


def ratings_by_genre(
    movies: Sequence[MovieRecord], min_count: int = 3, limit: int = 10
) -> list[dict[str, Any]]:
    scores: dict[str, list[float]] = defaultdict(list)
    for movie in movies:
        if movie.imdb_score is None:
            continue
        for genre in movie.genre:
            scores[genre].append(movie.imdb_score)
    rows = [
        {"genre": genre, "average_rating": _mean(values), "count": len(values)}
        for genre, values in scores.items()
        if len(values) >= min_count
    ]
    rows.sort(key=lambda row: row["average_rating"], reverse=True)
    return rows[:limit]


def runtime_by_year(
    movies: Sequence[MovieRecord], min_year: int = 1990, min_count: int = 2
) -> list[dict[str, Any]]:
    runtimes: dict[int, list[int]] = defaultdict(list)
    for movie in movies:
        if movie.runtime is not None and movie.year is not None and movie.year >= min_year:
            runtimes[movie.year].append(movie.runtime)
    return [
        {"year": year, "average_runtime": _mean_int(values), "count": len(values)}
        for year, values in sorted(runtimes.items())
        if len(values) >= min_count
    ]


def top_rated(movies: Sequence[MovieRecord], min_score: float = 8.0, limit: int = 10) -> list[dict[str, Any]]:
    rated = [m for m in movies if m.imdb_score is not None and m.imdb_score >= min_score]
    return [_summary(m) for m in _by_rating(rated)[:limit]]


def recently_added(movies: Sequence[MovieRecord], limit: int = 5) -> list[dict[str, Any]]:
    newest = sorted(
        movies, key=lambda m: m.created_at.timestamp() if m.created_at else 0.0, reverse=True
    )
    return [{**_summary(m), "created_at": m.created_at} for m in newest[:limit]]


def genre_stats(movies: Sequence[MovieRecord]) -> list[dict[str, Any]]:
    grouped: dict[str, list[MovieRecord]] = defaultdict(list)
    for movie in movies:
        for genre in movie.genre:
            grouped[genre].append(movie)
    rows = []
    for genre, members in grouped.items():
        rows.append(
            {
                "genre": genre,
                "count": len(members),
                "average_rating": _mean([m.imdb_score for m in members if m.imdb_score is not None]),
                "average_runtime": _mean_int([m.runtime for m in members if m.runtime is not None]),
                "total_votes": sum(m.rating.imdb.votes or 0 for m in members),
            }
        )
    rows.sort(key=lambda row: row["count"], reverse=True)
    return rows


def year_stats(
    movies: Sequence[MovieRecord], start_year: Optional[int] = None, end_year: Optional[int] = None
) -> list[dict[str, Any]]:
    grouped: dict[int, list[MovieRecord]] = defaultdict(list)
    for movie in movies:
        if movie.year is None:
            continue
        if start_year is not None and movie.year < start_year:
            continue
        if end_year is not None and movie.year > end_year:
            continue
        grouped[movie.year].append(movie)

    rows = []
    for year, members in sorted(grouped.items()):
        scores = [m.imdb_score for m in members if m.imdb_score is not None]
        rows.append(
            {
                "year": year,
                "count": len(members),
                "average_rating": _mean(scores),
                "average_runtime": _mean_int([m.runtime for m in members if m.runtime is not None]),
                "highest_rated": round(max(scores), 1) if scores else None,
                "lowest_rated": round(min(scores), 1) if scores else None,
            }
        )
    return rows


def rating_distribution(movies: Sequence[MovieRecord]) -> list[dict[str, Any]]:
    rows = []
    for index, (low, high) in enumerate(RATING_BUCKETS):
        last = index == len(RATING_BUCKETS) - 1
        members = [
            m
            for m in movies
            if m.imdb_score is not None and low <= m.imdb_score and (m.imdb_score < high or (last and m.imdb_score <= high))
        ]
        if not members:
            continue
        votes = [m.rating.imdb.votes for m in members if m.rating.imdb.votes is not None]
        rows.append(
            {
                "range": f"{low}-{high}",
                "count": len(members),
                "average_votes": _mean_int(votes),
                "top_movies": [_summary(m) for m in _by_rating(members)[:3]],
            }
        )
    return rows


def people_stats(
    movies: Sequence[MovieRecord], field: str = "director", limit: int = 20, min_movies: int = 2
) -> list[dict[str, Any]]:
    """Leaderboard of directors or actors with at least min_movies cached films."""
    grouped: dict[str, list[MovieRecord]] = defaultdict(list)
    for movie in movies:
        for name in getattr(movie, field):
            grouped[name].append(movie)

    rows = []
    for name, members in grouped.items():
        if len(members) < min_movies:
            continue
        row = {
            "name": name,
            "movie_count": len(members),
            "average_rating": _mean([m.imdb_score for m in members if m.imdb_score is not None]),
            "total_votes": sum(m.rating.imdb.votes or 0 for m in members),
            "top_movies": [_summary(m) for m in _by_rating(members)[:3]],
        }
        if field == "actors":
            row["genres"] = sorted({m.genre[0] for m in members if m.genre})
        rows.append(row)

    rows.sort(key=lambda row: (row["average_rating"] or 0.0, row["movie_count"]), reverse=True)
    return rows[:limit]


def dashboard(movies: Sequence[MovieRecord]) -> dict[str, Any]:
    return {
        "charts": {
            "genre_distribution": genre_distribution(movies),
            "ratings_by_genre": ratings_by_genre(movies),
            "runtime_by_year": runtime_by_year(movies),
        },
        "highlights": {
            "top_rated_movies": top_rated(movies),
            "recently_added": recently_added(movies),
        },
    }
