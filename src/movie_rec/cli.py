import argparse
import asyncio
import atexit
import json
import logging
import re

from tqdm import tqdm

from .catalog import TMDbClient
from .database import RatingStore, close_pool
from .engine import RecommendationEngine
from .candidates import CandidateMovie
from .survey import SURVEY_QUESTIONS, SurveyRequest, SurveyResponse, SurveyValidationError
from .config import (
    TMDB_API_KEY,
    DEFAULT_RECOMMENDATION_COUNT,
    AGE_ANY,
)

logger = logging.getLogger(__name__)

# Register cleanup on exit
atexit.register(close_pool)


def _validate_user_id(user_id: str) -> str:
    """
    Sanitize a user id.
    Returns lowercased alphanumeric + underscores/hyphens/dots only.
    """
    sanitized = re.sub(r'[^a-z0-9_.-]', '', user_id.strip().lower())
    if not sanitized:
        raise ValueError(f"Invalid user id: {user_id!r}")
    if sanitized != user_id.lower():
        logger.warning(f"User id '{user_id}' sanitized to '{sanitized}'")
    return sanitized


async def _run_with_engine(handler):
    """Open a catalog client, wire the engine to the rating store, run `handler(engine)`."""
    if not TMDB_API_KEY:
        logger.warning("TMDB_API_KEY is not set; catalog requests will fail and fallbacks will be used")

    async with TMDbClient() as catalog:
        store = RatingStore()
        engine = RecommendationEngine(catalog, store)
        store.on_change = engine.invalidate_preference_cache
        return await handler(engine)


def _output_recommendations(recs: list[CandidateMovie], args: argparse.Namespace, user_id: str) -> None:
    if getattr(args, 'format', 'text') == 'json':
        print(json.dumps([r.to_dict() for r in recs], indent=2))
        return

    logger.info(f"\nTop {len(recs)} recommendations for {user_id}:")
    for i, r in enumerate(recs, 1):
        year = r.movie.release_date[:4] or "????"
        logger.info(f"{i}. {r.title} ({year}) - Score: {r.relevance_score:.2f} [{r.strategy}]")
        if r.reasons:
            logger.info(f"   Why: {', '.join(r.reasons)}")


def _output_survey(response: SurveyResponse, args: argparse.Namespace) -> None:
    if getattr(args, 'format', 'text') == 'json':
        print(json.dumps(response.to_dict(), indent=2))
        return

    if not response.movies:
        logger.info("No movies matched your answers")
        return

    logger.info(f"\n{len(response.movies)} movies for you:")
    for i, item in enumerate(response.movies, 1):
        year = item.movie.release_date[:4] or "????"
        logger.info(f"{i}. {item.movie.title} ({year}) - {item.movie.vote_average:.1f}/10")
        if item.crew:
            logger.info(f"   Crew: {', '.join(f'{c.name} ({c.job})' for c in item.crew)}")
        if item.cast:
            logger.info(f"   Cast: {', '.join(c.name for c in item.cast)}")
        logger.info(f"   {response.explanations.get(item.id, '')}")


def cmd_recommend(args: argparse.Namespace) -> None:
    """Personalized recommendations for one user."""
    user_id = _validate_user_id(args.user_id)

    async def handler(engine: RecommendationEngine):
        return await engine.get_personalized_recommendations(user_id, args.count)

    recs = asyncio.run(_run_with_engine(handler))
    _output_recommendations(recs, args, user_id)


def cmd_admin_recommend(args: argparse.Namespace) -> None:
    """Look up recommendations for one or more users."""
    user_ids = [_validate_user_id(u) for u in args.user_ids]

    async def handler(engine: RecommendationEngine):
        results = {}
        iterator = tqdm(user_ids, desc="Users") if len(user_ids) > 1 else user_ids
        for user_id in iterator:
            results[user_id] = await engine.get_recommendations_for_user(user_id, args.count)
        return results

    results = asyncio.run(_run_with_engine(handler))

    if args.format == 'json':
        print(json.dumps({u: [r.to_dict() for r in recs] for u, recs in results.items()}, indent=2))
        return
    for user_id, recs in results.items():
        _output_recommendations(recs, args, user_id)


def cmd_survey(args: argparse.Namespace) -> None:
    """Discover movies from survey answers."""
    if args.answers:
        try:
            payload = json.loads(args.answers)
        except json.JSONDecodeError as e:
            logger.error(f"--answers is not valid JSON: {e}")
            return
    else:
        payload = {
            'mood': args.mood,
            'occasion': args.occasion,
            'age_preference': args.age,
            'genres': args.genres or [],
            'themes': args.themes or [],
            'is_rating_important': args.rating_important,
        }

    try:
        request = SurveyRequest.from_dict(payload)
    except SurveyValidationError as e:
        logger.error(f"Invalid survey answers: {e}")
        return

    async def handler(engine: RecommendationEngine):
        return await engine.get_survey_recommendations(request)

    response = asyncio.run(_run_with_engine(handler))
    _output_survey(response, args)


def cmd_survey_questions(args: argparse.Namespace) -> None:
    """List the survey questionnaire."""
    if args.format == 'json':
        print(json.dumps([q.to_dict() for q in SURVEY_QUESTIONS], indent=2))
        return

    for q in SURVEY_QUESTIONS:
        kind = "choose any" if q.is_multiple_choice else "choose one"
        logger.info(f"{q.id}. {q.text} [{q.filter_property}, {kind}]")
        logger.info(f"   {' | '.join(q.options)}")


def cmd_rate(args: argparse.Namespace) -> None:
    """Create or update a rating."""
    user_id = _validate_user_id(args.user_id)
    store = RatingStore()
    try:
        signal = store.save_rating(user_id, args.movie_id, args.rating)
    except ValueError as e:
        logger.error(str(e))
        return
    logger.info(f"Rated movie {signal.movie_id}: {signal.rating:g}/5 for {user_id}")


def cmd_unrate(args: argparse.Namespace) -> None:
    """Remove a rating."""
    user_id = _validate_user_id(args.user_id)
    if RatingStore().delete_rating(user_id, args.movie_id):
        logger.info(f"Removed rating for movie {args.movie_id} by {user_id}")
    else:
        logger.warning(f"No rating for movie {args.movie_id} by {user_id}")


def cmd_ratings(args: argparse.Namespace) -> None:
    """List a user's ratings, most recent first."""
    user_id = _validate_user_id(args.user_id)
    signals = RatingStore().get_ratings_for_user(user_id)

    if args.format == 'json':
        print(json.dumps([
            {
                'movie_id': s.movie_id,
                'rating': s.rating,
                'rated_at': s.rated_at.isoformat() if s.rated_at else None,
            }
            for s in signals
        ], indent=2))
        return

    if not signals:
        logger.info(f"No ratings for '{user_id}'. Run: movie-rec rate {user_id} MOVIE_ID RATING")
        return
    logger.info(f"\n{len(signals)} ratings for {user_id}:")
    for s in signals:
        when = s.rated_at.strftime('%Y-%m-%d') if s.rated_at else "unknown"
        logger.info(f"  {s.movie_id}: {s.rating:g}/5 ({when})")


def cmd_profile(args: argparse.Namespace) -> None:
    """Show a user's preference profile."""
    user_id = _validate_user_id(args.user_id)

    async def handler(engine: RecommendationEngine):
        return await engine.get_profile(user_id)

    profile = asyncio.run(_run_with_engine(handler))
    if profile is None:
        logger.error(f"No ratings of 4 stars or more for '{user_id}'")
        return

    facets = {
        'genres': profile.genres,
        'actors': profile.actors,
        'directors': profile.directors,
        'keywords': profile.keywords,
    }
    if args.format == 'json':
        print(json.dumps({**facets, 'seed_movie_ids': profile.seed_movie_ids}, indent=2))
        return

    logger.info(f"\nProfile for {user_id} ({len(profile.seed_movie_ids)} high rated movies)")
    for facet, weights in facets.items():
        if not weights:
            continue
        logger.info(f"\nTop {facet}:")
        for name, weight in sorted(weights.items(), key=lambda x: -x[1])[:10]:
            logger.info(f"  {name}: {weight}")


def main():
    parser = argparse.ArgumentParser(description="Movie recommendation and discovery engine")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Output format is shared by every command
    fmt = argparse.ArgumentParser(add_help=False)
    fmt.add_argument("--format", choices=["text", "json"], default="text", help="Output format")

    rec_parser = subparsers.add_parser("recommend", parents=[fmt], help="Personalized recommendations")
    rec_parser.add_argument("user_id", help="User id")
    rec_parser.add_argument("-n", "--count", type=int, default=DEFAULT_RECOMMENDATION_COUNT,
                            help="Number of recommendations (1-100)")
    rec_parser.set_defaults(func=cmd_recommend)

    admin_parser = subparsers.add_parser("admin-recommend", parents=[fmt],
                                         help="Recommendations for other users (cached)")
    admin_parser.add_argument("user_ids", nargs="+", help="Target user ids")
    admin_parser.add_argument("-n", "--count", type=int, default=DEFAULT_RECOMMENDATION_COUNT,
                              help="Number of recommendations per user (1-100)")
    admin_parser.set_defaults(func=cmd_admin_recommend)

    survey_parser = subparsers.add_parser("survey", parents=[fmt], help="Recommendations from survey answers")
    survey_parser.add_argument("--answers", help="Answers as a JSON object (overrides the flags below)")
    survey_parser.add_argument("--mood", help="e.g. Happy, Sad, Neutral, Excited, Relaxed")
    survey_parser.add_argument("--occasion", help="e.g. Solo, Date Night, Family Time, Party")
    survey_parser.add_argument("--genres", nargs="*", help="Preferred genres")
    survey_parser.add_argument("--age", default=AGE_ANY, help="Last 5 years, Last 10 years, Last 25 years")
    survey_parser.add_argument("--themes", nargs="*", help="Themes such as 'Based on Book'")
    survey_parser.add_argument("--rating-important", action="store_true",
                               help="Only highly rated movies, best first")
    survey_parser.set_defaults(func=cmd_survey)

    questions_parser = subparsers.add_parser("survey-questions", parents=[fmt], help="Show the survey questions")
    questions_parser.set_defaults(func=cmd_survey_questions)

    rate_parser = subparsers.add_parser("rate", help="Rate a movie (1-5 stars)")
    rate_parser.add_argument("user_id", help="User id")
    rate_parser.add_argument("movie_id", type=int, help="Catalog movie id")
    rate_parser.add_argument("rating", type=float, help="Rating from 1 to 5")
    rate_parser.set_defaults(func=cmd_rate)

    unrate_parser = subparsers.add_parser("unrate", help="Remove a rating")
    unrate_parser.add_argument("user_id", help="User id")
    unrate_parser.add_argument("movie_id", type=int, help="Catalog movie id")
    unrate_parser.set_defaults(func=cmd_unrate)

    ratings_parser = subparsers.add_parser("ratings", parents=[fmt], help="List a user's ratings")
    ratings_parser.add_argument("user_id", help="User id")
    ratings_parser.set_defaults(func=cmd_ratings)

    profile_parser = subparsers.add_parser("profile", parents=[fmt], help="Show a user's preference profile")
    profile_parser.add_argument("user_id", help="User id")
    profile_parser.set_defaults(func=cmd_profile)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)


if __name__ == "__main__":
    main()
