import re
from datetime import date, datetime, timedelta
from typing import Any, NamedTuple, Optional

import httpx

from errors import ConfigurationError, NotFoundError, TransportError
from models import ImdbRating, MovieLinks, MovieRecord, Ratings, Score

OMDB_BASE = "http://www.omdbapi.com/"
IMDB_TITLE_URL = "https://www.imdb.com/title/{imdb_id}/"
NOT_AVAILABLE = "N/A"
MOVIE_TYPES = ("movie", "series", "episode")

ROTTEN_TOMATOES = "Rotten Tomatoes"
METACRITIC = "Metacritic"


class SearchPage(NamedTuple):
    imdb_ids: list[str]
    total_results: int
    error: Optional[str] = None


async def _request(
    client: httpx.AsyncClient, api_key: Optional[str], params: dict[str, Any], base_url: str
) -> dict[str, Any]:
    if not api_key:
        raise ConfigurationError("OMDb API key not configured")
    try:
        response = await client.get(base_url, params={"apikey": api_key, **params})
        if response.status_code == 401:
            raise ConfigurationError("OMDb rejected the API key")
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPError as exc:
        raise TransportError(f"OMDb request failed: {exc!r}") from exc
    except ValueError as exc:
        raise TransportError("OMDb returned a malformed response") from exc
    if not isinstance(data, dict):
        raise TransportError("OMDb returned a malformed response")
    return data


async def search_movies(
    client: httpx.AsyncClient,
    api_key: Optional[str],
    term: str,
    page: int = 1,
    base_url: str = OMDB_BASE,
) -> SearchPage:
    """Search OMDb by free text. Returns the imdb ids of one result page."""
    data = await _request(client, api_key, {"s": term, "page": page, "type": "movie"}, base_url)
    if data.get("Response") == "False":
        return SearchPage(imdb_ids=[], total_results=0, error=data.get("Error"))

    imdb_ids = [item["imdbID"] for item in data.get("Search") or [] if item.get("imdbID")]
    try:
        total = int(data.get("totalResults") or 0)
    except ValueError:
        total = 0
    return SearchPage(imdb_ids=imdb_ids, total_results=total)


async def get_movie_details(
    client: httpx.AsyncClient, api_key: Optional[str], imdb_id: str, base_url: str = OMDB_BASE
) -> dict[str, Any]:
    """Fetch the full raw OMDb record for one imdb id."""
    data = await _request(client, api_key, {"i": imdb_id, "plot": "full"}, base_url)
    if data.get("Response") == "False":
        raise NotFoundError(data.get("Error") or f"Movie {imdb_id} not found")
    return data


def _value(raw: dict[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    value = str(value).strip()
    if not value or value == NOT_AVAILABLE:
        return None
    return value


def split_list(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def parse_runtime(value: Optional[str]) -> Optional[int]:
    """'148 min' -> 148."""
    if not value or value == NOT_AVAILABLE:
        return None
    match = re.search(r"(\d+)", value)
    return int(match.group(1)) if match else None


def parse_year(value: Optional[str]) -> Optional[int]:
    # Series report ranges such as '2008–2013'.
    if not value:
        return None
    match = re.match(r"\s*(\d{4})", value)
    return int(match.group(1)) if match else None


def parse_released(value: Optional[str]) -> Optional[date]:
    if not value or value == NOT_AVAILABLE:
        return None
    try:
        return datetime.strptime(value, "%d %b %Y").date()
    except ValueError:
        return None


def parse_imdb_score(value: Optional[str]) -> Optional[float]:
    if not value or value == NOT_AVAILABLE:
        return None
    try:
        score = float(value)
    except ValueError:
        return None
    return score if 0.0 <= score <= 10.0 else None


def parse_votes(value: Optional[str]) -> Optional[int]:
    if not value or value == NOT_AVAILABLE:
        return None
    try:
        return int(value.replace(",", ""))
    except ValueError:
        return None


def extract_rating(ratings: Any, source: str) -> Optional[int]:
    """Pick one secondary score out of OMDb's Ratings list."""
    if not isinstance(ratings, list):
        return None
    entry = next((r for r in ratings if isinstance(r, dict) and r.get("Source") == source), None)
    if entry is None:
        return None

    value = str(entry.get("Value") or "")
    if source == ROTTEN_TOMATOES:
        match = re.search(r"(\d+)%", value)
    elif source == METACRITIC:
        match = re.search(r"(\d+)", value)
    else:
        return None
    if not match:
        return None
    score = int(match.group(1))
    return score if 0 <= score <= 100 else None


def normalize_movie(raw: dict[str, Any], fetched_at: datetime, ttl: timedelta) -> MovieRecord:
    """Map a raw OMDb detail payload onto a MovieRecord expiring at fetched_at + ttl."""
    imdb_id = _value(raw, "imdbID")
    if imdb_id is None:
        raise ValueError("OMDb payload has no imdbID")

    movie_type = (_value(raw, "Type") or "movie").lower()
    return MovieRecord(
        imdb_id=imdb_id,
        title=_value(raw, "Title") or "",
        year=parse_year(_value(raw, "Year")),
        released=parse_released(_value(raw, "Released")),
        runtime=parse_runtime(_value(raw, "Runtime")),
        genre=split_list(_value(raw, "Genre")),
        director=split_list(_value(raw, "Director")),
        writer=split_list(_value(raw, "Writer")),
        actors=split_list(_value(raw, "Actors")),
        plot=_value(raw, "Plot") or "",
        language=split_list(_value(raw, "Language")),
        country=split_list(_value(raw, "Country")),
        rated=_value(raw, "Rated"),
        type=movie_type if movie_type in MOVIE_TYPES else "movie",
        rating=Ratings(
            imdb=ImdbRating(
                score=parse_imdb_score(_value(raw, "imdbRating")),
                votes=parse_votes(_value(raw, "imdbVotes")),
            ),
            rotten_tomatoes=Score(score=extract_rating(raw.get("Ratings"), ROTTEN_TOMATOES)),
            metacritic=Score(score=extract_rating(raw.get("Ratings"), METACRITIC)),
        ),
        poster=_value(raw, "Poster"),
        links=MovieLinks(imdb=IMDB_TITLE_URL.format(imdb_id=imdb_id)),
        cache_expiry=fetched_at + ttl,
        last_updated=fetched_at,
        created_at=fetched_at,
        source="omdb",
    )
