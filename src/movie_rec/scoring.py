"""
Relevance scoring of a movie against a preference profile.

Pure functions only: no I/O, no randomness, so a fixed (movie, profile) pair
always scores the same.
"""
from .catalog import MovieDetails
from .profile import PreferenceProfile
from .config import SCORE_WEIGHTS, MAX_CAST_CONSIDERED


def _facet_ratio(names: list[str], weights: dict[str, int]) -> float | None:
    """
    Matched weight for a facet relative to the facet's strongest preference.

    Returns None when the profile has no data for the facet, so the caller can
    leave it out of both the numerator and the denominator. Not capped:
    several strong matches can exceed 1, only the final score is clamped.
    """
    if not weights:
        return None
    max_weight = max(weights.values())
    if max_weight <= 0:
        return None
    raw = sum(weights.get(name, 0) for name in names)
    return raw / max_weight


def score(movie: MovieDetails, profile: PreferenceProfile) -> float:
    """
    Weighted match between a movie and a profile, in [0, 1].

    Genre 40%, actor 25% (top 5 billed), director 20%, catalog rating 10%.
    Facets the profile knows nothing about are dropped from the denominator,
    so a sparse profile is not penalized for missing data.
    """
    facets = (
        ('genre', movie.genre_names, profile.genres),
        ('actor', movie.top_cast(MAX_CAST_CONSIDERED), profile.actors),
        ('director', movie.directors, profile.directors),
    )

    numerator = 0.0
    denominator = 0.0
    for facet, names, weights in facets:
        ratio = _facet_ratio(names, weights)
        if ratio is None:
            continue
        numerator += ratio * SCORE_WEIGHTS[facet]
        denominator += SCORE_WEIGHTS[facet]

    vote = min(max(movie.vote_average, 0.0), 10.0)
    numerator += (vote / 10) * SCORE_WEIGHTS['vote_average']
    denominator += SCORE_WEIGHTS['vote_average']

    return min(max(numerator / denominator, 0.0), 1.0)


def match_reasons(movie: MovieDetails, profile: PreferenceProfile, limit: int = 3) -> list[str]:
    """Human-readable reasons a movie matched, strongest facets first."""
    reasons = []
    for director in movie.directors:
        if director in profile.directors:
            reasons.append(f"Director: {director}")
    for actor in movie.top_cast(MAX_CAST_CONSIDERED):
        if actor in profile.actors:
            reasons.append(f"Starring: {actor}")
    matched_genres = [g for g in movie.genre_names if g in profile.genres]
    if matched_genres:
        reasons.append(f"Genres: {', '.join(matched_genres)}")
    if movie.vote_average >= 8.0:
        reasons.append(f"Highly rated ({movie.vote_average:.1f}/10)")
    return reasons[:limit]
