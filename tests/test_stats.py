from datetime import timedelta

from conftest import NOW, make_movie
from models import ImdbRating, Ratings
import stats


def _voted(imdb_id, score, votes, **fields):
    movie = make_movie(imdb_id, score=score, **fields)
    movie.rating = Ratings(imdb=ImdbRating(score=score, votes=votes))
    return movie


def test_ratings_by_genre_requires_three_rated_movies():
    movies = [
        make_movie("tt0000001", genre=["Drama"], score=8.0),
        make_movie("tt0000002", genre=["Drama"], score=7.0),
        make_movie("tt0000003", genre=["Drama", "War"], score=9.0),
        make_movie("tt0000004", genre=["War"], score=6.0),
        make_movie("tt0000005", genre=["Drama"], score=None),
    ]
    assert stats.ratings_by_genre(movies) == [{"genre": "Drama", "average_rating": 8.0, "count": 3}]


def test_runtime_by_year():
    movies = [
        make_movie("tt0000001", year=1985, runtime=100),
        make_movie("tt0000002", year=1985, runtime=110),
        make_movie("tt0000003", year=2001, runtime=100),
        make_movie("tt0000004", year=2001, runtime=121),
        make_movie("tt0000005", year=2002, runtime=90),
    ]
    assert stats.runtime_by_year(movies) == [{"year": 2001, "average_runtime": 110, "count": 2}]


def test_top_rated_and_recently_added():
    movies = [
        make_movie("tt0000001", score=8.1, created_at=NOW),
        make_movie("tt0000002", score=9.0, created_at=NOW + timedelta(hours=1)),
        make_movie("tt0000003", score=7.9, created_at=NOW + timedelta(hours=2)),
    ]
    assert [m["imdb_id"] for m in stats.top_rated(movies)] == ["tt0000002", "tt0000001"]
    assert [m["imdb_id"] for m in stats.recently_added(movies, limit=2)] == ["tt0000003", "tt0000002"]


def test_rating_distribution_buckets():
    movies = [
        _voted("tt0000001", 1.5, 100),
        _voted("tt0000002", 7.2, 1000),
        _voted("tt0000003", 7.8, 3000),
        _voted("tt0000004", 10.0, 10),
    ]
    rows = stats.rating_distribution(movies)
    assert [row["range"] for row in rows] == ["0-2", "7-8", "9-10"]
    seven = rows[1]
    assert seven["count"] == 2
    assert seven["average_votes"] == 2000
    assert [m["imdb_id"] for m in seven["top_movies"]] == ["tt0000003", "tt0000002"]


def test_people_stats_for_directors_and_actors():
    movies = [
        make_movie("tt0000001", score=8.5, director=["Nolan"], actors=["Bale"], genre=["Action"]),
        make_movie("tt0000002", score=8.7, director=["Nolan"], actors=["Bale"], genre=["Drama"]),
        make_movie("tt0000003", score=6.0, director=["Other"], actors=["Bale"], genre=["Action"]),
        make_movie("tt0000004", score=7.0, director=["Other"]),
        make_movie("tt0000005", score=9.9, director=["Solo"]),
    ]
    directors = stats.people_stats(movies, "director")
    assert [row["name"] for row in directors] == ["Nolan", "Other"]
    assert directors[0]["average_rating"] == 8.6
    assert directors[0]["movie_count"] == 2

    actors = stats.people_stats(movies, "actors")
    assert actors[0]["name"] == "Bale"
    assert actors[0]["movie_count"] == 3
    assert actors[0]["genres"] == ["Action", "Drama"]


def test_year_stats_respects_bounds():
    movies = [
        make_movie("tt0000001", year=1999, score=7.0),
        make_movie("tt0000002", year=1999, score=9.0),
        make_movie("tt0000003", year=2005, score=6.0),
        make_movie("tt0000004", year=None),
    ]
    rows = stats.year_stats(movies, start_year=1990, end_year=2000)
    assert rows == [
        {
            "year": 1999,
            "count": 2,
            "average_rating": 8.0,
            "average_runtime": 120,
            "highest_rated": 9.0,
            "lowest_rated": 7.0,
        }
    ]


def test_genre_stats_and_dashboard():
    movies = [
        make_movie("tt0000001", genre=["Drama"], score=8.0),
        make_movie("tt0000002", genre=["Drama", "Crime"], score=None),
    ]
    rows = stats.genre_stats(movies)
    assert rows[0]["genre"] == "Drama"
    assert rows[0]["count"] == 2
    assert rows[0]["average_rating"] == 8.0

    data = stats.dashboard(movies)
    assert data["charts"]["genre_distribution"][0] == {"genre": "Drama", "count": 2}
    assert set(data["highlights"]) == {"top_rated_movies", "recently_added"}
