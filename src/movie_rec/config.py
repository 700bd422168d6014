"""
Configuration constants for the movie recommendation engine.

This module centralizes all magic numbers and configurable parameters.
Values can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_bool_env(key: str, default: bool) -> bool:
    """Parse a boolean flag such as 1/0, true/false, yes/no."""
    raw = os.environ.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    logger.warning(f"Invalid {key}='{raw}', using default {default}")
    return default


# Database Configuration
DB_PATH = Path(os.environ.get("MOVIE_REC_DB", "data/movie_rec.db"))

# Catalog (TMDb) Configuration
TMDB_API_KEY = os.environ.get("TMDB_API_KEY", "")
TMDB_BASE_URL = os.environ.get("TMDB_BASE_URL", "https://api.themoviedb.org/3")
TMDB_LANGUAGE = "en-US"
HTTP_TIMEOUT = _get_float_env("MOVIE_REC_HTTP_TIMEOUT", 10.0, min_val=0.5)
DEFAULT_MAX_CONCURRENT = _get_int_env("MOVIE_REC_MAX_CONCURRENT", 8, min_val=1)
GENRE_TAXONOMY_TTL_SECONDS = 24 * 60 * 60

# Retry and Rate Limiting
MAX_HTTP_RETRIES = 3
DEFAULT_RETRY_AFTER = 5  # Default wait time if Retry-After header missing
MAX_RETRY_AFTER = 30  # Never honor a Retry-After longer than this inside a request

# Rating Source
RATINGS_FETCH_TIMEOUT = _get_float_env("MOVIE_REC_RATINGS_TIMEOUT", 5.0, min_val=0.1)
HIGH_RATING_THRESHOLD = 4.0
MAX_RATING = 5.0
MIN_RATING = 1.0

# Cache TTLs (seconds)
PREFERENCE_CACHE_TTL = _get_float_env("MOVIE_REC_PREFERENCE_TTL", 30.0, min_val=0.0)
ADMIN_RECOMMENDATION_CACHE_TTL = _get_float_env("MOVIE_REC_ADMIN_TTL", 30 * 60.0, min_val=0.0)
SURVEY_CACHE_TTL = _get_float_env("MOVIE_REC_SURVEY_TTL", 60 * 60.0, min_val=0.0)
PREFERENCE_SINGLE_FLIGHT = _get_bool_env("MOVIE_REC_SINGLE_FLIGHT", True)

# Profile Weights
WEIGHT_LOVED = 2  # Rating 5
WEIGHT_LIKED = 1  # Rating 4-4.5
MAX_CAST_CONSIDERED = 5
NORMALIZED_MAX_WEIGHT = 100

# Top-N accessors per facet
TOP_GENRES = 3
TOP_ACTORS = 3
TOP_DIRECTORS = 2
TOP_KEYWORDS = 5

# Relevance scoring factor weights
SCORE_WEIGHTS = {
    'genre': 0.40,
    'actor': 0.25,
    'director': 0.20,
    'vote_average': 0.10,
}

# Candidate generation
SEED_MOVIES_CONSIDERED = 3
SIMILAR_PER_SEED = 20
GENRES_PER_DISCOVERY = 3
GENRE_DISCOVERY_LIMIT = 30
PERSON_DISCOVERY_LIMIT = 15

# Strategy multipliers (discount for less direct discovery strategies)
STRATEGY_MULTIPLIERS = {
    'similar': 1.0,
    'genre': 0.8,
    'actor': 0.9,
    'director': 0.85,
}

# Ranking
DEFAULT_RECOMMENDATION_COUNT = 10
MIN_RECOMMENDATION_COUNT = 1
MAX_RECOMMENDATION_COUNT = 100
FALLBACK_RELEVANCE = 0.5

# Last-resort titles when the catalog is unreachable: (id, title, vote_average)
HARDCODED_FALLBACK_MOVIES = [
    (278, "The Shawshank Redemption", 8.7),
    (238, "The Godfather", 8.7),
    (157336, "Interstellar", 8.4),
]

# Survey Configuration
SURVEY_MAX_RESULTS = 10
SURVEY_MIN_VOTE_AVERAGE = 7.0
SURVEY_CAST_LIMIT = 5
SURVEY_CREW_LIMIT = 3
SURVEY_CREW_JOBS = ("Director", "Screenplay", "Producer")

FAMILY_GENRE_ID = 10751
ROMANCE_GENRE_ID = 10749
OCCASION_GENRE_IDS = {
    'Family Time': FAMILY_GENRE_ID,
    'Date Night': ROMANCE_GENRE_ID,
}
GROUP_OCCASIONS = ("Party", "Watching with Friends")

THEME_KEYWORD_IDS = {
    'Based on Book': 818,
    'Oscar Winners': 1928,
    'Classic Cinema': 2796,
    'Spy Movies': 9800,
    'Superhero Movies': 1803,
    'Time Travel': 2224,
    'Zombie Apocalypse': 12249,
}
CLASSIC_CINEMA_THEME = "Classic Cinema"

AGE_ANY = "Doesn't matter"
AGE_PREFERENCE_YEARS = {
    'Last 5 years': 5,
    'Last 10 years': 10,
    'Last 25 years': 25,
}

# Survey genre labels that differ from the catalog taxonomy names
GENRE_ALIASES = {
    'sci-fi': 'Science Fiction',
    'scifi': 'Science Fiction',
}
