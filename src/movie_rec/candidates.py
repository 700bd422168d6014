import asyncio
import logging
from dataclasses import dataclass, field

from .catalog import MovieDetails, fetch_details_batch, resolve_genre_ids
from .profile import PreferenceProfile
from .scoring import score, match_reasons
from .config import (
    SEED_MOVIES_CONSIDERED,
    SIMILAR_PER_SEED,
    GENRES_PER_DISCOVERY,
    GENRE_DISCOVERY_LIMIT,
    PERSON_DISCOVERY_LIMIT,
    STRATEGY_MULTIPLIERS,
)

logger = logging.getLogger(__name__)


@dataclass
class CandidateMovie:
    """A catalog movie plus the relevance it earned for one request."""
    movie: MovieDetails
    relevance_score: float
    strategy: str
    multiplier: float = 1.0
    reasons: list[str] = field(default_factory=list)

    @property
    def id(self) -> int:
        return self.movie.id

    @property
    def title(self) -> str:
        return self.movie.title

    def to_dict(self) -> dict:
        return {
            'id': self.movie.id,
            'title': self.movie.title,
            'release_date': self.movie.release_date,
            'vote_average': self.movie.vote_average,
            'genres': self.movie.genre_names,
            'cast': self.movie.top_cast(3),
            'directors': self.movie.directors,
            'poster_path': self.movie.poster_path,
            'relevance_score': round(self.relevance_score, 4),
            'strategy': self.strategy,
            'reasons': list(self.reasons),
        }


class CandidateGenerator:
    """
    Fan out to four discovery strategies and merge their results.

    Strategies, in priority order:
    - similar:  movies similar to the top 3 seed movies (x1.0)
    - genre:    discovery by the top 3 genres combined (x0.8)
    - actor:    discovery by the top actor (x0.9)
    - director: discovery by the top director (x0.85)

    When two strategies return the same movie the earlier strategy keeps it,
    along with its multiplier.
    """

    def __init__(self, catalog):
        self.catalog = catalog

    async def generate(
        self,
        profile: PreferenceProfile,
        exclude_ids: set[int] | frozenset[int] = frozenset(),
    ) -> dict[int, CandidateMovie]:
        strategies = [
            ('similar', self._similar_ids(profile)),
            ('genre', self._genre_ids(profile)),
            ('actor', self._person_ids(profile.top_actors, 'cast')),
            ('director', self._person_ids(profile.top_directors, 'crew')),
        ]
        results = await asyncio.gather(*(coro for _, coro in strategies), return_exceptions=True)

        sources: dict[int, str] = {}
        for (strategy, _), result in zip(strategies, results):
            if isinstance(result, BaseException):
                logger.warning(f"Candidate strategy '{strategy}' failed: {type(result).__name__}: {result}")
                continue
            added = 0
            for movie_id in result:
                if movie_id in sources or movie_id in exclude_ids:
                    continue
                sources[movie_id] = strategy
                added += 1
            logger.debug(f"Strategy '{strategy}' contributed {added} new candidates")

        details = await fetch_details_batch(self.catalog, list(sources))

        candidates: dict[int, CandidateMovie] = {}
        for movie_id, strategy in sources.items():
            movie = details.get(movie_id)
            if movie is None:
                continue
            multiplier = STRATEGY_MULTIPLIERS[strategy]
            candidates[movie_id] = CandidateMovie(
                movie=movie,
                relevance_score=score(movie, profile) * multiplier,
                strategy=strategy,
                multiplier=multiplier,
                reasons=match_reasons(movie, profile),
            )

        logger.info(f"Generated {len(candidates)} candidates from {len(sources)} discovered movies")
        return candidates

    async def _similar_ids(self, profile: PreferenceProfile) -> list[int]:
        seeds = profile.seed_movie_ids[:SEED_MOVIES_CONSIDERED]
        if not seeds:
            return []

        results = await asyncio.gather(
            *(self.catalog.get_similar(seed) for seed in seeds),
            return_exceptions=True,
        )
        ids: list[int] = []
        for seed, result in zip(seeds, results):
            if isinstance(result, BaseException):
                logger.warning(f"Similar lookup failed for seed {seed}: {type(result).__name__}: {result}")
                continue
            ids.extend(m.id for m in result[:SIMILAR_PER_SEED])
        return ids

    async def _genre_ids(self, profile: PreferenceProfile) -> list[int]:
        top_genres = profile.top_genres
        if not top_genres:
            return []

        taxonomy = await self.catalog.get_genre_taxonomy()
        genre_ids = resolve_genre_ids(top_genres, taxonomy)
        if not genre_ids:
            logger.debug(f"None of {top_genres} matched the genre taxonomy")
            return []

        movies = await self.catalog.discover_by_genres(genre_ids[:GENRES_PER_DISCOVERY])
        return [m.id for m in movies[:GENRE_DISCOVERY_LIMIT]]

    async def _person_ids(self, names: list[str], role: str) -> list[int]:
        if not names:
            return []

        # First search hit wins; ambiguous names are not disambiguated
        people = await self.catalog.search_person(names[0])
        if not people:
            logger.debug(f"No person match for '{names[0]}'")
            return []

        movies = await self.catalog.discover_by_person(people[0].id, role=role)
        return [m.id for m in movies[:PERSON_DISCOVERY_LIMIT]]
