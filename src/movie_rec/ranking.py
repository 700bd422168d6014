import logging
from typing import Iterable

from .candidates import CandidateMovie
from .catalog import MovieDetails, fetch_details_batch
from .config import (
    MIN_RECOMMENDATION_COUNT,
    MAX_RECOMMENDATION_COUNT,
    FALLBACK_RELEVANCE,
    HARDCODED_FALLBACK_MOVIES,
)

logger = logging.getLogger(__name__)


def validate_count(count: int) -> int:
    """Reject recommendation counts outside [1, 100]."""
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValueError(f"count must be an integer, got {count!r}")
    if not MIN_RECOMMENDATION_COUNT <= count <= MAX_RECOMMENDATION_COUNT:
        raise ValueError(
            f"count must be between {MIN_RECOMMENDATION_COUNT} and {MAX_RECOMMENDATION_COUNT}, got {count}"
        )
    return count


def clamp_count(count: int) -> int:
    """Clamp a recommendation count into [1, 100]."""
    try:
        value = int(count)
    except (TypeError, ValueError):
        logger.warning(f"Invalid count {count!r}, using {MIN_RECOMMENDATION_COUNT}")
        return MIN_RECOMMENDATION_COUNT
    clamped = min(max(value, MIN_RECOMMENDATION_COUNT), MAX_RECOMMENDATION_COUNT)
    if clamped != value:
        logger.warning(f"count={value} out of range, clamped to {clamped}")
    return clamped


def rank(
    candidates: Iterable[CandidateMovie],
    exclude_ids: set[int] | frozenset[int],
    count: int,
) -> list[CandidateMovie]:
    """
    Drop already-rated movies, sort by relevance (highest first), keep `count`.

    The sort is stable: equal scores keep discovery order, so the same inputs
    always produce the same list.
    """
    count = validate_count(count)
    remaining = [c for c in candidates if c.id not in exclude_ids]
    remaining.sort(key=lambda c: -c.relevance_score)
    return remaining[:count]


def hardcoded_fallback(count: int, exclude_ids: set[int] | frozenset[int] = frozenset()) -> list[CandidateMovie]:
    """Well-known, highly rated movies used when the catalog is unreachable."""
    recs = [
        CandidateMovie(
            movie=MovieDetails(id=movie_id, title=title, vote_average=vote_average),
            relevance_score=FALLBACK_RELEVANCE,
            strategy='hardcoded',
        )
        for movie_id, title, vote_average in HARDCODED_FALLBACK_MOVIES
        if movie_id not in exclude_ids
    ]
    return recs[:count]


class FallbackController:
    """
    Generic recommendations for users we cannot personalize for.

    Tier 1: currently popular movies, enriched with details, flat score 0.5.
    Tier 2: a hardcoded list of classics, used if tier 1 fails or is empty.
    `recommend` never raises.
    """

    def __init__(self, catalog):
        self.catalog = catalog

    async def recommend(
        self,
        count: int,
        exclude_ids: set[int] | frozenset[int] = frozenset(),
    ) -> list[CandidateMovie]:
        count = clamp_count(count)
        recs: list[CandidateMovie] = []
        try:
            popular = await self.catalog.get_popular()
            ids = list(dict.fromkeys(m.id for m in popular if m.id not in exclude_ids))
            # Movies whose details fail are replaced by the next popular ones
            while ids and len(recs) < count:
                batch, ids = ids[:count - len(recs)], ids[count - len(recs):]
                details = await fetch_details_batch(self.catalog, batch)
                recs.extend(
                    CandidateMovie(movie=details[movie_id], relevance_score=FALLBACK_RELEVANCE, strategy='popular')
                    for movie_id in batch
                    if movie_id in details
                )
        except Exception as exc:
            logger.error(f"Failed to get popular movies for fallback: {type(exc).__name__}: {exc}")
            return hardcoded_fallback(count, exclude_ids)

        if not recs:
            logger.warning("Popular movies unavailable, using hardcoded fallback")
            return hardcoded_fallback(count, exclude_ids)

        return recs
