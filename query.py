"""Filtering, sorting, pagination and grouping over movie records.

The same functions serve the stored set and freshly fetched OMDb batches,
so both paths share match rules and ordering.
"""
import math
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence, Union

from errors import QueryValidationError
from models import (
    GenreCount,
    MoviePage,
    MovieQuery,
    MovieRecord,
    Pagination,
    RatingFilter,
    SortKey,
    SortOrder,
    YearCount,
    YearFilter,
)

MIN_YEAR = 1888
MAX_LIMIT = 50
_WORD = re.compile(r"\w+")
# English stop words, dropped before text matching.
STOP_WORDS = frozenset(
    """
    a about above after again against all am an and any are as at be because been
    before being below between both but by can did do does doing down during each
    few for from further had has have having he her here hers herself him himself
    his how i if in into is it its itself just me more most my myself no nor not
    now of off on once only or other our ours ourselves out over own same she
    should so some such than that the their theirs them themselves then there these
    they this those through to too under until up very was we were what when where
    which while who whom why will with you your yours yourself yourselves
    """.split()
)


def max_year() -> int:
    return datetime.now(timezone.utc).year + 5


def _split_range(value: str) -> tuple[Optional[str], Optional[str], bool]:
    if "-" not in value:
        return value.strip(), None, False
    low, _, high = value.partition("-")
    return low.strip() or None, high.strip() or None, True


def parse_genres(value: Union[None, str, Sequence[str]]) -> list[str]:
    """Accept repeated and comma separated genre params."""
    if value is None:
        return []
    raw = [value] if isinstance(value, str) else list(value)
    genres: list[str] = []
    for item in raw:
        for part in item.split(","):
            part = part.strip()
            if part and part not in genres:
                genres.append(part)
    return genres


def parse_year_filter(value: Optional[str]) -> Optional[YearFilter]:
    """'1999' matches one year, '1990-2000', '1990-' and '-2000' match ranges."""
    if value is None or not value.strip():
        return None
    low, high, is_range = _split_range(value)

    def to_year(text: str) -> int:
        try:
            year = int(text)
        except ValueError:
            raise QueryValidationError(f"Invalid year: {text!r}") from None
        if not MIN_YEAR <= year <= max_year():
            raise QueryValidationError(f"Year must be between {MIN_YEAR} and {max_year()}")
        return year

    if not is_range:
        return YearFilter(exact=to_year(low))
    if low is None and high is None:
        raise QueryValidationError(f"Invalid year range: {value!r}")
    return YearFilter(
        min=to_year(low) if low is not None else None,
        max=to_year(high) if high is not None else None,
    )


def parse_rating_filter(value: Optional[str]) -> Optional[RatingFilter]:
    """'7.5' and '7.5-' are lower bounds, '7-9' an inclusive range."""
    if value is None or not value.strip():
        return None
    if value.strip().startswith("-"):
        raise QueryValidationError("Rating must be between 0 and 10")
    low, high, is_range = _split_range(value)

    def to_score(text: str) -> float:
        try:
            score = float(text)
        except ValueError:
            raise QueryValidationError(f"Invalid rating: {text!r}") from None
        if math.isnan(score) or not 0.0 <= score <= 10.0:
            raise QueryValidationError("Rating must be between 0 and 10")
        return score

    if not is_range:
        return RatingFilter(min=to_score(low))
    return RatingFilter(min=to_score(low), max=to_score(high) if high is not None else None)


def matches(movie: MovieRecord, query: MovieQuery) -> bool:
    if query.genres and not set(movie.genre).intersection(query.genres):
        return False

    if query.year is not None:
        if movie.year is None:
            return False
        if query.year.exact is not None and movie.year != query.year.exact:
            return False
        if query.year.min is not None and movie.year < query.year.min:
            return False
        if query.year.max is not None and movie.year > query.year.max:
            return False

    if query.rating is not None:
        score = movie.imdb_score
        if score is None:
            return False
        if query.rating.min is not None and score < query.rating.min:
            return False
        if query.rating.max is not None and score > query.rating.max:
            return False

    return True


def filter_movies(movies: Iterable[MovieRecord], query: MovieQuery) -> list[MovieRecord]:
    return [movie for movie in movies if matches(movie, query)]


def _sort_value(movie: MovieRecord, sort_by: SortKey):
    if sort_by == "title":
        return (movie.title or "").lower()
    if sort_by == "year":
        return movie.year or 0
    if sort_by == "rating":
        return movie.imdb_score or 0.0
    if sort_by == "runtime":
        return movie.runtime or 0
    return movie.created_at.timestamp() if movie.created_at else 0.0


def sort_movies(
    movies: Iterable[MovieRecord], sort_by: SortKey = "created_at", sort_order: SortOrder = "desc"
) -> list[MovieRecord]:
    # sorted() stays stable with reverse=True, so ties keep their incoming order.
    return sorted(
        movies,
        key=lambda movie: _sort_value(movie, sort_by),
        reverse=sort_order == "desc",
    )


def paginate(
    movies: Sequence[MovieRecord], page: int = 1, limit: int = 20
) -> tuple[list[MovieRecord], Pagination]:
    page = max(page, 1)
    limit = max(1, min(limit, MAX_LIMIT))
    total = len(movies)
    start = (page - 1) * limit
    return list(movies[start : start + limit]), Pagination(
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit),
    )


def apply_query(movies: Iterable[MovieRecord], query: MovieQuery) -> MoviePage:
    ordered = sort_movies(filter_movies(movies, query), query.sort_by, query.sort_order)
    page_movies, pagination = paginate(ordered, query.page, query.limit)
    return MoviePage(movies=page_movies, pagination=pagination)


def tokenize(text: str) -> list[str]:
    """Distinct lowercase content words of text, in order."""
    tokens: list[str] = []
    for word in _WORD.findall(text.lower()):
        if word not in STOP_WORDS and word not in tokens:
            tokens.append(word)
    return tokens


def text_relevance(movie: MovieRecord, tokens: Sequence[str]) -> float:
    """Word-match score; title hits count double."""
    if not tokens:
        return 0.0
    title_words = Counter(_WORD.findall(movie.title.lower()))
    plot_words = Counter(_WORD.findall(movie.plot.lower()))
    score = 0.0
    for token in tokens:
        score += 2.0 * title_words[token] + plot_words[token]
    return score


def rank_by_relevance(
    movies: Iterable[MovieRecord], term: str, limit: Optional[int] = None
) -> list[MovieRecord]:
    tokens = tokenize(term)
    scored = [(text_relevance(movie, tokens), movie) for movie in movies]
    ranked = [movie for score, movie in sorted(scored, key=lambda pair: pair[0], reverse=True) if score > 0]
    return ranked[:limit] if limit is not None else ranked


def count_by_genre(movies: Iterable[MovieRecord], limit: Optional[int] = None) -> list[GenreCount]:
    counts = Counter(genre for movie in movies for genre in movie.genre)
    return [GenreCount(genre=genre, count=count) for genre, count in counts.most_common(limit)]


def count_by_year(movies: Iterable[MovieRecord], limit: Optional[int] = None) -> list[YearCount]:
    """Counts per release year, most recent first; unknown years last."""
    counts = Counter(movie.year for movie in movies)
    years = sorted(counts, key=lambda year: (year is None, -(year or 0)))
    if limit is not None:
        years = years[:limit]
    return [YearCount(year=year, count=counts[year]) for year in years]
