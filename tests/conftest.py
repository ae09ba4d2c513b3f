from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

import database
from models import ImdbRating, MovieRecord, Ratings
from service import MovieService

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
OMDB_URL = "http://www.omdbapi.com/"


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def omdb_payload(imdb_id: str = "tt1375666", title: str = "Inception", **overrides) -> dict:
    payload = {
        "Title": title,
        "Year": "2010",
        "Rated": "PG-13",
        "Released": "16 Jul 2010",
        "Runtime": "148 min",
        "Genre": "Action, Adventure, Sci-Fi",
        "Director": "Christopher Nolan",
        "Writer": "Christopher Nolan",
        "Actors": "Leonardo DiCaprio, Joseph Gordon-Levitt, Elliot Page",
        "Plot": "A thief who steals corporate secrets through dream-sharing technology.",
        "Language": "English, Japanese, French",
        "Country": "United States, United Kingdom",
        "Poster": "https://m.media-amazon.com/images/inception.jpg",
        "Ratings": [
            {"Source": "Internet Movie Database", "Value": "8.8/10"},
            {"Source": "Rotten Tomatoes", "Value": "87%"},
            {"Source": "Metacritic", "Value": "74/100"},
        ],
        "imdbRating": "8.8",
        "imdbVotes": "2,612,345",
        "imdbID": imdb_id,
        "Type": "movie",
        "Response": "True",
    }
    payload.update(overrides)
    return payload


def make_movie(
    imdb_id: str,
    title: str = "Movie",
    year=2000,
    score=7.0,
    genre=None,
    runtime=120,
    created_at: datetime = NOW,
    expires_in: timedelta = timedelta(hours=24),
    **fields,
) -> MovieRecord:
    return MovieRecord(
        imdb_id=imdb_id,
        title=title,
        year=year,
        runtime=runtime,
        genre=genre if genre is not None else ["Drama"],
        rating=Ratings(imdb=ImdbRating(score=score)),
        cache_expiry=created_at + expires_in,
        last_updated=created_at,
        created_at=created_at,
        **fields,
    )


@pytest.fixture
def tmp_db(tmp_path) -> Path:
    """Returns path to a temporary SQLite database file."""
    return tmp_path / "test.db"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def service(tmp_db, clock) -> MovieService:
    await database.init_db(tmp_db)
    return MovieService(api_key="fake_key", db_path=tmp_db, clock=clock)
