import importlib
import sys
from collections import Counter
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from movie_rec.catalog import (  # noqa: E402
    CatalogError,
    CastMember,
    CrewMember,
    Genre,
    MovieDetails,
    MovieSummary,
    Person,
)

TMDB_GENRES = [
    Genre(28, "Action"), Genre(12, "Adventure"), Genre(16, "Animation"),
    Genre(35, "Comedy"), Genre(80, "Crime"), Genre(99, "Documentary"),
    Genre(18, "Drama"), Genre(10751, "Family"), Genre(14, "Fantasy"),
    Genre(36, "History"), Genre(27, "Horror"), Genre(10402, "Music"),
    Genre(9648, "Mystery"), Genre(10749, "Romance"), Genre(878, "Science Fiction"),
    Genre(53, "Thriller"), Genre(10752, "War"), Genre(37, "Western"),
]
GENRE_IDS = {g.name: g.id for g in TMDB_GENRES}


def build_movie(movie_id, title=None, genres=(), cast=(), directors=(), vote_average=7.0,
                keywords=(), crew=(), release_date="2020-01-01"):
    return MovieDetails(
        id=movie_id,
        title=title or f"Movie {movie_id}",
        release_date=release_date,
        vote_average=vote_average,
        genres=[Genre(GENRE_IDS.get(name, 0), name) for name in genres],
        cast=[CastMember(id=i + 1, name=name, order=i) for i, name in enumerate(cast)],
        crew=[CrewMember(id=100 + i, name=name, job="Director") for i, name in enumerate(directors)]
        + [CrewMember(id=200 + i, name=name, job=job) for i, (name, job) in enumerate(crew)],
        keywords=list(keywords),
    )


def summary(movie: MovieDetails) -> MovieSummary:
    return MovieSummary(
        id=movie.id,
        title=movie.title,
        release_date=movie.release_date,
        vote_average=movie.vote_average,
        genre_ids=[g.id for g in movie.genres],
    )


class FakeCatalog:
    """In-memory stand-in for TMDbClient with the same async surface."""

    def __init__(self):
        self.details: dict[int, MovieDetails] = {}
        self.similar: dict[int, list[MovieSummary]] = {}
        self.genre_results: list[MovieSummary] = []
        self.person_results: dict[tuple[int, str], list[MovieSummary]] = {}
        self.people: dict[str, list[Person]] = {}
        self.popular: list[MovieSummary] = []
        self.popular_error = False
        self.failing_details: set[int] = set()
        self.discover_handler = None
        self.discover_calls: list[dict] = []
        self.calls = Counter()

    def add(self, movie: MovieDetails) -> MovieDetails:
        self.details[movie.id] = movie
        return movie

    async def get_details_with_credits(self, movie_id):
        self.calls['details'] += 1
        if movie_id in self.failing_details:
            raise CatalogError(f"details for {movie_id} unavailable")
        return self.details.get(movie_id)

    async def get_similar(self, movie_id):
        self.calls['similar'] += 1
        return list(self.similar.get(movie_id, []))

    async def discover_by_genres(self, genre_ids, sort_by="popularity.desc", min_vote_average=None,
                                 min_release_year=None, keyword_ids=None, page=1):
        self.calls['discover'] += 1
        call = {
            'genre_ids': list(genre_ids),
            'sort_by': sort_by,
            'min_vote_average': min_vote_average,
            'min_release_year': min_release_year,
            'keyword_ids': list(keyword_ids or []),
        }
        self.discover_calls.append(call)
        if self.discover_handler is not None:
            return self.discover_handler(call)
        return list(self.genre_results)

    async def discover_by_person(self, person_id, role="cast"):
        self.calls['person'] += 1
        return list(self.person_results.get((person_id, role), []))

    async def search_person(self, name):
        self.calls['search'] += 1
        return list(self.people.get(name, []))

    async def get_genre_taxonomy(self):
        self.calls['taxonomy'] += 1
        return list(TMDB_GENRES)

    async def get_popular(self):
        self.calls['popular'] += 1
        if self.popular_error:
            raise CatalogError("popular unavailable")
        return list(self.popular)


@pytest.fixture
def fake_catalog():
    return FakeCatalog()


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("MOVIE_REC_DB", str(db_path))
    import movie_rec.config as config

    importlib.reload(config)
    return config


@pytest.fixture
def fresh_db(monkeypatch, tmp_path):
    """
    Reload config/database modules with a temp DB and cleanly close the pool after use.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("MOVIE_REC_DB", str(db_path))

    import movie_rec.config as config
    import movie_rec.database as database

    importlib.reload(config)
    importlib.reload(database)

    yield database
    database.close_pool()
