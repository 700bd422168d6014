import logging
from collections import defaultdict
from dataclasses import dataclass, field

from .catalog import fetch_details_batch
from .database import RatingSignal
from .config import (
    HIGH_RATING_THRESHOLD,
    MAX_RATING,
    WEIGHT_LOVED,
    WEIGHT_LIKED,
    MAX_CAST_CONSIDERED,
    NORMALIZED_MAX_WEIGHT,
    TOP_GENRES,
    TOP_ACTORS,
    TOP_DIRECTORS,
    TOP_KEYWORDS,
)

logger = logging.getLogger(__name__)


@dataclass
class PreferenceProfile:
    """
    Weighted multi-facet preferences derived from a user's high ratings.

    Each facet maps a name to an integer weight; insertion order is the order
    in which names were first seen and breaks ties in the top-N accessors.
    """
    genres: dict[str, int] = field(default_factory=dict)
    actors: dict[str, int] = field(default_factory=dict)
    directors: dict[str, int] = field(default_factory=dict)
    keywords: dict[str, int] = field(default_factory=dict)

    # Top-rated movies in rating order, used as anchors for similarity lookups
    seed_movie_ids: list[int] = field(default_factory=list)

    @property
    def top_genres(self) -> list[str]:
        return _top_items(self.genres, TOP_GENRES)

    @property
    def top_actors(self) -> list[str]:
        return _top_items(self.actors, TOP_ACTORS)

    @property
    def top_directors(self) -> list[str]:
        return _top_items(self.directors, TOP_DIRECTORS)

    @property
    def top_keywords(self) -> list[str]:
        return _top_items(self.keywords, TOP_KEYWORDS)

    def is_empty(self) -> bool:
        return not (self.genres or self.actors or self.directors or self.keywords)


def _top_items(weights: dict[str, int], count: int) -> list[str]:
    # sorted() is stable, so equal weights keep first-seen order
    ranked = sorted(weights.items(), key=lambda item: -item[1])
    return [name for name, _ in ranked[:count]]


def normalize_weights(weights: dict[str, int]) -> dict[str, int]:
    """
    Rescale a weight map so its largest entry is exactly 100.

    Empty maps (and maps whose max is 0) are returned unchanged.
    """
    if not weights:
        return dict(weights)
    max_weight = max(weights.values())
    if max_weight <= 0:
        return dict(weights)
    return {
        name: int(weight / max_weight * NORMALIZED_MAX_WEIGHT)
        for name, weight in weights.items()
    }


def select_high_rated(signals: list[RatingSignal]) -> list[RatingSignal]:
    """Ratings >= 4 stars, highest first (stable for equal ratings)."""
    high = [s for s in signals if s.rating >= HIGH_RATING_THRESHOLD]
    return sorted(high, key=lambda s: -s.rating)


def _signal_weight(rating: float) -> int:
    return WEIGHT_LOVED if rating == MAX_RATING else WEIGHT_LIKED


def _accumulate(names: list[str], weight: int, scores: dict[str, int]) -> None:
    for name in names:
        if name and name.strip():
            scores[name] += weight


async def build_profile(signals: list[RatingSignal], catalog) -> PreferenceProfile:
    """
    Build a preference profile from a user's ratings.

    Only ratings of 4 stars and up contribute. A 5-star rating adds 2 to every
    genre, top-billed actor, director, and keyword of that movie; a 4-star
    rating adds 1. Each facet is then normalized to a 0-100 scale.

    Details are fetched concurrently, but the profile is assembled in rating
    order so the result only depends on the data. Movies whose details cannot
    be fetched are skipped.
    """
    high_rated = select_high_rated(signals)
    details = await fetch_details_batch(catalog, [s.movie_id for s in high_rated])

    scores = {
        'genre': defaultdict(int),
        'actor': defaultdict(int),
        'director': defaultdict(int),
        'keyword': defaultdict(int),
    }
    seeds: list[int] = []

    for signal in high_rated:
        movie = details.get(signal.movie_id)
        if movie is None:
            logger.warning(f"Skipping movie {signal.movie_id} in profile: details unavailable")
            continue

        weight = _signal_weight(signal.rating)
        _accumulate(movie.genre_names, weight, scores['genre'])
        _accumulate(movie.top_cast(MAX_CAST_CONSIDERED), weight, scores['actor'])
        _accumulate(movie.directors, weight, scores['director'])
        _accumulate(movie.keywords, weight, scores['keyword'])

        if signal.movie_id not in seeds:
            seeds.append(signal.movie_id)

    profile = PreferenceProfile(
        genres=normalize_weights(scores['genre']),
        actors=normalize_weights(scores['actor']),
        directors=normalize_weights(scores['director']),
        keywords=normalize_weights(scores['keyword']),
        seed_movie_ids=seeds,
    )

    logger.info(
        f"Built preference profile from {len(seeds)}/{len(high_rated)} high rated movies "
        f"(top genres: {', '.join(profile.top_genres) or 'none'})"
    )
    return profile
