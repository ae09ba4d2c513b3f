from datetime import date, datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, computed_field, field_validator

MovieType = Literal["movie", "series", "episode"]
SortKey = Literal["title", "year", "rating", "runtime", "created_at"]
SortOrder = Literal["asc", "desc"]
Source = Literal["cache", "api"]


class ImdbRating(BaseModel):
    score: Optional[float] = Field(default=None, ge=0, le=10)
    votes: Optional[int] = Field(default=None, ge=0)


class Score(BaseModel):
    score: Optional[int] = Field(default=None, ge=0, le=100)


class Ratings(BaseModel):
    imdb: ImdbRating = Field(default_factory=ImdbRating)
    rotten_tomatoes: Score = Field(default_factory=Score)
    metacritic: Score = Field(default_factory=Score)


class MovieLinks(BaseModel):
    imdb: Optional[str] = None
    tmdb: Optional[str] = None
    trailer: Optional[str] = None


class MovieRecord(BaseModel):
    id: Optional[int] = None
    imdb_id: str
    tmdb_id: Optional[str] = None
    title: str
    year: Optional[int] = None
    released: Optional[date] = None
    runtime: Optional[int] = None  # minutes
    genre: list[str] = Field(default_factory=list)
    director: list[str] = Field(default_factory=list)
    writer: list[str] = Field(default_factory=list)
    actors: list[str] = Field(default_factory=list)
    plot: str = ""
    language: list[str] = Field(default_factory=list)
    country: list[str] = Field(default_factory=list)
    rated: Optional[str] = None
    type: MovieType = "movie"
    rating: Ratings = Field(default_factory=Ratings)
    poster: Optional[str] = None
    images: list[str] = Field(default_factory=list)
    links: MovieLinks = Field(default_factory=MovieLinks)
    cache_expiry: datetime
    last_updated: datetime
    created_at: Optional[datetime] = None
    source: str = "omdb"

    def is_active(self, now: datetime) -> bool:
        return now < self.cache_expiry

    @property
    def imdb_score(self) -> Optional[float]:
        return self.rating.imdb.score

    @computed_field
    @property
    def average_rating(self) -> Optional[float]:
        """Mean of the available scores on a 0-10 scale."""
        scores = []
        if self.rating.imdb.score is not None:
            scores.append(self.rating.imdb.score)
        if self.rating.rotten_tomatoes.score is not None:
            scores.append(self.rating.rotten_tomatoes.score / 10)
        if self.rating.metacritic.score is not None:
            scores.append(self.rating.metacritic.score / 10)
        return sum(scores) / len(scores) if scores else None


class BatchFailure(BaseModel):
    imdb_id: str
    error: str


class SearchResult(BaseModel):
    movies: list[MovieRecord] = Field(default_factory=list)
    total_results: int = 0
    source: Source
    page: int = 1
    error: Optional[str] = None  # provider's "no results" message
    failures: list[BatchFailure] = Field(default_factory=list)


class MovieLookup(BaseModel):
    movie: MovieRecord
    source: Source


class YearFilter(BaseModel):
    exact: Optional[int] = None
    min: Optional[int] = None
    max: Optional[int] = None


class RatingFilter(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class MovieQuery(BaseModel):
    genres: list[str] = Field(default_factory=list)
    year: Optional[YearFilter] = None
    rating: Optional[RatingFilter] = None
    sort_by: SortKey = "created_at"
    sort_order: SortOrder = "desc"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=50)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class MoviePage(BaseModel):
    movies: list[MovieRecord]
    pagination: Pagination


class GenreCount(BaseModel):
    genre: str
    count: int


class YearCount(BaseModel):
    year: Optional[int]
    count: int


class CacheStats(BaseModel):
    total: int
    active: int
    expired: int
    top_genres: list[GenreCount] = Field(default_factory=list)
    movies_by_year: list[YearCount] = Field(default_factory=list)


class CleanupReport(BaseModel):
    before: int
    deleted: int
    after: int


class CleanupStats(BaseModel):
    total: int
    expired: int
    active: int
    old_entries: int
    low_rated: int


class PurgeCriteria(BaseModel):
    older_than: Optional[datetime] = None
    rating_min: Optional[float] = Field(default=None, ge=0, le=10)
    rating_max: Optional[float] = Field(default=None, ge=0, le=10)
    genres: list[str] = Field(default_factory=list)
    year_min: Optional[int] = None
    year_max: Optional[int] = None

    @field_validator("older_than")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_empty(self) -> bool:
        return (
            self.older_than is None
            and self.rating_min is None
            and self.rating_max is None
            and not self.genres
            and self.year_min is None
            and self.year_max is None
        )
