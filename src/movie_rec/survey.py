"""
Survey-driven discovery.

Turns questionnaire answers (mood, occasion, genres, age, rating importance,
themes) into a single catalog discovery query, relaxing filters in a fixed
order when nothing matches, and explains every pick in plain language.
"""
import copy
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Callable

from .cache import SurveyKey, TTLCache
from .catalog import (
    CastMember,
    CrewMember,
    MovieSummary,
    fetch_details_batch,
    resolve_genre_ids,
)
from .utils import request_digest
from .config import (
    SURVEY_CACHE_TTL,
    SURVEY_MAX_RESULTS,
    SURVEY_MIN_VOTE_AVERAGE,
    SURVEY_CAST_LIMIT,
    SURVEY_CREW_LIMIT,
    SURVEY_CREW_JOBS,
    OCCASION_GENRE_IDS,
    GROUP_OCCASIONS,
    THEME_KEYWORD_IDS,
    CLASSIC_CINEMA_THEME,
    AGE_ANY,
    AGE_PREFERENCE_YEARS,
)

logger = logging.getLogger(__name__)


class SurveyValidationError(ValueError):
    """Raised when survey answers are missing or have the wrong type."""


@dataclass(frozen=True)
class SurveyQuestion:
    id: int
    text: str
    options: tuple[str, ...]
    filter_property: str
    is_multiple_choice: bool = False

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'text': self.text,
            'options': list(self.options),
            'filter_property': self.filter_property,
            'is_multiple_choice': self.is_multiple_choice,
        }


SURVEY_QUESTIONS = (
    SurveyQuestion(1, "How are you feeling today?",
                   ("Happy", "Sad", "Neutral", "Excited", "Relaxed"), 'mood'),
    SurveyQuestion(2, "What's your occasion?",
                   ("Solo", "Date Night", "Family Time", "Watching with Friends", "Party"), 'occasion'),
    SurveyQuestion(3, "Choose genres you like",
                   ("Action", "Adventure", "Animation", "Comedy", "Crime",
                    "Documentary", "Drama", "Family", "Fantasy", "History",
                    "Horror", "Music", "Mystery", "Romance", "Sci-Fi",
                    "Thriller", "War", "Western"),
                   'genres', is_multiple_choice=True),
    SurveyQuestion(4, "How old should movies be?",
                   ("Last 5 years", "Last 10 years", "Last 25 years", AGE_ANY), 'age_preference'),
    SurveyQuestion(5, "Is rating important?", ("Yes", "No"), 'is_rating_important'),
    SurveyQuestion(6, "Select any special categories you're interested in",
                   ("Based on Book", "Classic Cinema", "True Story", "Biographical", "Superhero Movies"),
                   'themes', is_multiple_choice=True),
)

# camelCase keys accepted from JSON clients
_FIELD_ALIASES = {
    'agePreference': 'age_preference',
    'isRatingImportant': 'is_rating_important',
}


@dataclass
class SurveyRequest:
    mood: str
    occasion: str | None
    age_preference: str
    genres: list[str] = field(default_factory=list)
    themes: list[str] = field(default_factory=list)
    is_rating_important: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> 'SurveyRequest':
        """Build and validate a request from snake_case or camelCase answers."""
        if not isinstance(data, dict):
            raise SurveyValidationError("Survey answers must be an object")

        values = {_FIELD_ALIASES.get(key, key): value for key, value in data.items()}
        missing = [name for name in ('mood', 'occasion', 'age_preference') if name not in values]
        if missing:
            raise SurveyValidationError(f"Missing survey answers: {', '.join(missing)}")

        request = cls(
            mood=values['mood'],
            occasion=values['occasion'],
            age_preference=values['age_preference'],
            genres=values.get('genres', []),
            themes=values.get('themes', []),
            is_rating_important=values.get('is_rating_important', False),
        )
        request.validate()
        return request

    def validate(self) -> None:
        for name in ('mood', 'occasion', 'age_preference'):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise SurveyValidationError(f"'{name}' must be a non-empty string")
        for name in ('genres', 'themes'):
            value = getattr(self, name)
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise SurveyValidationError(f"'{name}' must be a list of strings")
        if not isinstance(self.is_rating_important, bool):
            raise SurveyValidationError("'is_rating_important' must be true or false")

    def to_dict(self) -> dict:
        return {
            'mood': self.mood,
            'occasion': self.occasion,
            'age_preference': self.age_preference,
            'genres': list(self.genres),
            'themes': list(self.themes),
            'is_rating_important': self.is_rating_important,
        }

    def cache_key(self) -> SurveyKey:
        return SurveyKey(request_digest(self.to_dict()))

    @property
    def age_applies(self) -> bool:
        return self.age_preference != AGE_ANY and CLASSIC_CINEMA_THEME not in self.themes


@dataclass
class DiscoverFilters:
    genre_ids: list[int] = field(default_factory=list)
    keyword_ids: list[int] = field(default_factory=list)
    sort_by: str = "primary_release_date.desc"
    min_vote_average: float | None = None
    min_release_year: int | None = None


@dataclass
class SurveyMovie:
    """A discovered movie with its main cast and crew attached."""
    movie: MovieSummary
    genres: list[str] = field(default_factory=list)
    cast: list[CastMember] = field(default_factory=list)
    crew: list[CrewMember] = field(default_factory=list)

    @property
    def id(self) -> int:
        return self.movie.id

    def to_dict(self) -> dict:
        return {
            'id': self.movie.id,
            'title': self.movie.title,
            'overview': self.movie.overview,
            'release_date': self.movie.release_date,
            'vote_average': self.movie.vote_average,
            'poster_path': self.movie.poster_path,
            'genres': list(self.genres),
            'cast': [{'id': c.id, 'name': c.name, 'character': c.character} for c in self.cast],
            'crew': [{'id': c.id, 'name': c.name, 'job': c.job} for c in self.crew],
        }


@dataclass
class SurveyResponse:
    movies: list[SurveyMovie] = field(default_factory=list)
    explanations: dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'movies': [m.to_dict() for m in self.movies],
            'explanations': {str(movie_id): text for movie_id, text in self.explanations.items()},
        }


def sort_order(request: SurveyRequest) -> str:
    if request.is_rating_important:
        return "vote_average.desc"
    if request.occasion in GROUP_OCCASIONS:
        return "popularity.desc"
    return "primary_release_date.desc"


def theme_keyword_ids(themes: list[str]) -> list[int]:
    """Known themes mapped to catalog keyword IDs; unknown themes are ignored."""
    ids = []
    for theme in themes:
        keyword_id = THEME_KEYWORD_IDS.get(theme)
        if keyword_id is not None and keyword_id not in ids:
            ids.append(keyword_id)
    return ids


def generate_explanations(movies: list[SurveyMovie], request: SurveyRequest) -> dict[int, str]:
    explanations = {}
    for item in movies:
        reasons = []
        if request.mood:
            reasons.append(f"matches your {request.mood.lower()} mood")
        if request.occasion:
            reasons.append(f"perfect for {request.occasion.lower()}")
        if request.genres:
            reasons.append(f"includes your preferred genres: {', '.join(request.genres)}")
        if request.age_preference and request.age_applies:
            reasons.append(f"released in {request.age_preference.lower()}")
        if request.is_rating_important:
            reasons.append(f"high rating ({item.movie.vote_average:.1f}/10)")
        if request.themes:
            reasons.append(f"matches themes: {', '.join(request.themes)}")
        explanations[item.id] = f"Recommended because {'; '.join(reasons)}"
    return explanations


def _main_crew(crew: list[CrewMember]) -> list[CrewMember]:
    wanted = [c for c in crew if c.job in SURVEY_CREW_JOBS]
    # Stable sort: directors first, everyone else keeps credit order
    wanted.sort(key=lambda c: c.job != "Director")
    return wanted[:SURVEY_CREW_LIMIT]


class SurveyDiscovery:
    """
    Answers a survey with at most 10 movies.

    Relaxation order when the strict query finds nothing:
    1. drop rating importance (min vote and vote-ordered sort)
    2. if an occasion was given, drop it as well
    An empty result after that is returned as-is.
    """

    def __init__(
        self,
        catalog,
        cache: TTLCache | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.catalog = catalog
        self.cache = cache if cache is not None else TTLCache(SURVEY_CACHE_TTL)
        self.today = today

    async def build_filters(self, request: SurveyRequest) -> DiscoverFilters:
        genre_ids: list[int] = []
        if request.genres:
            taxonomy = await self.catalog.get_genre_taxonomy()
            genre_ids = resolve_genre_ids(request.genres, taxonomy)

        occasion_genre = OCCASION_GENRE_IDS.get(request.occasion or "")
        if occasion_genre is not None and occasion_genre not in genre_ids:
            genre_ids.append(occasion_genre)

        min_release_year = None
        years = AGE_PREFERENCE_YEARS.get(request.age_preference)
        if years is not None and request.age_applies:
            min_release_year = self.today().year - years

        return DiscoverFilters(
            genre_ids=genre_ids,
            keyword_ids=theme_keyword_ids(request.themes),
            sort_by=sort_order(request),
            min_vote_average=SURVEY_MIN_VOTE_AVERAGE if request.is_rating_important else None,
            min_release_year=min_release_year,
        )

    async def _query(self, request: SurveyRequest) -> list[MovieSummary]:
        filters = await self.build_filters(request)
        logger.debug(f"Survey discover query: {filters}")
        return await self.catalog.discover_by_genres(
            filters.genre_ids,
            sort_by=filters.sort_by,
            min_vote_average=filters.min_vote_average,
            min_release_year=filters.min_release_year,
            keyword_ids=filters.keyword_ids,
        )

    async def _find_movies(self, request: SurveyRequest) -> list[MovieSummary]:
        movies = await self._query(request)
        if movies:
            return movies

        relaxed = replace(request, is_rating_important=False)
        movies = await self._query(relaxed)
        if movies:
            logger.warning(f"Survey matched {len(movies)} movies after dropping rating importance")
            return movies

        if request.occasion:
            movies = await self._query(replace(relaxed, occasion=None))
            logger.warning(f"Survey matched {len(movies)} movies after also dropping occasion")
        return movies

    async def _enrich(self, movies: list[MovieSummary]) -> list[SurveyMovie]:
        details = await fetch_details_batch(self.catalog, [m.id for m in movies])
        enriched = []
        for movie in movies:
            info = details.get(movie.id)
            if info is None:
                enriched.append(SurveyMovie(movie=movie))
                continue
            enriched.append(SurveyMovie(
                movie=movie,
                genres=info.genre_names,
                cast=info.cast[:SURVEY_CAST_LIMIT],
                crew=_main_crew(info.crew),
            ))
        return enriched

    def _cache_get(self, key: SurveyKey) -> SurveyResponse | None:
        try:
            cached = self.cache.get(key)
        except Exception as exc:
            logger.warning(f"Survey cache read failed: {type(exc).__name__}: {exc}")
            return None
        # Callers get their own copy so mutating a response never alters the cache
        return copy.deepcopy(cached) if cached is not None else None

    def _cache_set(self, key: SurveyKey, response: SurveyResponse) -> None:
        try:
            self.cache.set(key, copy.deepcopy(response))
        except Exception as exc:
            logger.warning(f"Survey cache write failed: {type(exc).__name__}: {exc}")

    async def recommend(self, request: SurveyRequest) -> SurveyResponse:
        """
        Answer a survey. Raises SurveyValidationError for invalid answers;
        any discovery failure gives an empty (uncached) response.
        """
        request.validate()
        key = request.cache_key()
        cached = self._cache_get(key)
        if cached is not None:
            logger.debug("Survey cache hit")
            return cached

        logger.info(f"Processing survey request: {request.to_dict()}")
        try:
            movies = await self._find_movies(request)
            picked = await self._enrich(movies[:SURVEY_MAX_RESULTS])
        except Exception as exc:
            logger.error(f"Survey discovery failed: {type(exc).__name__}: {exc}", exc_info=True)
            return SurveyResponse()

        response = SurveyResponse(movies=picked, explanations=generate_explanations(picked, request))
        self._cache_set(key, response)
        logger.info(f"Survey returned {len(picked)} movies")
        return response
