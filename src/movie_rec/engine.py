import asyncio
import logging

from .cache import PreferenceCache
from .candidates import CandidateGenerator, CandidateMovie
from .profile import PreferenceProfile, build_profile, select_high_rated
from .ranking import FallbackController, clamp_count, rank
from .survey import SurveyDiscovery, SurveyRequest, SurveyResponse
from .config import DEFAULT_RECOMMENDATION_COUNT, RATINGS_FETCH_TIMEOUT

logger = logging.getLogger(__name__)


class RecommendationEngine:
    """
    Entry point for personalized, administrative and survey recommendations.

    `rating_source` is anything with a blocking
    `get_ratings_for_user(user_id) -> list[RatingSignal]` (e.g. RatingStore);
    it runs in a worker thread under a timeout.
    """

    def __init__(
        self,
        catalog,
        rating_source,
        preference_cache: PreferenceCache | None = None,
        survey: SurveyDiscovery | None = None,
        ratings_timeout: float = RATINGS_FETCH_TIMEOUT,
    ):
        self.catalog = catalog
        self.rating_source = rating_source
        self.preference_cache = preference_cache if preference_cache is not None else PreferenceCache()
        self.survey = survey if survey is not None else SurveyDiscovery(catalog)
        self.ratings_timeout = ratings_timeout
        self.candidates = CandidateGenerator(catalog)
        self.fallback = FallbackController(catalog)

    async def _load_ratings(self, user_id: str):
        return await asyncio.wait_for(
            asyncio.to_thread(self.rating_source.get_ratings_for_user, user_id),
            timeout=self.ratings_timeout,
        )

    async def _profile_for(self, user_id: str, signals) -> PreferenceProfile:
        return await self.preference_cache.get_or_build(
            user_id, lambda: build_profile(signals, self.catalog)
        )

    async def get_personalized_recommendations(
        self,
        user_id: str,
        count: int = DEFAULT_RECOMMENDATION_COUNT,
    ) -> list[CandidateMovie]:
        """
        Ranked recommendations for a user, never raising.

        Users without any 4+ star rating, and any failure along the way, get
        the generic fallback list instead.
        """
        count = clamp_count(count)
        rated_ids: set[int] = set()
        try:
            signals = await self._load_ratings(user_id)
            rated_ids = {s.movie_id for s in signals}

            if not select_high_rated(signals):
                logger.info(f"No high rated movies for {user_id}, using fallback")
                return await self.fallback.recommend(count, exclude_ids=rated_ids)

            profile = await self._profile_for(user_id, signals)
            candidates = await self.candidates.generate(profile, exclude_ids=rated_ids)
            ranked = rank(candidates.values(), rated_ids, count)
            if not ranked:
                logger.info(f"No candidates survived ranking for {user_id}, using fallback")
                return await self.fallback.recommend(count, exclude_ids=rated_ids)

            logger.info(f"Returning {len(ranked)} recommendations for {user_id}")
            return ranked

        except asyncio.TimeoutError:
            logger.error(f"Timed out loading ratings for {user_id} after {self.ratings_timeout}s")
        except Exception as exc:
            logger.error(f"Recommendation failed for {user_id}: {type(exc).__name__}: {exc}", exc_info=True)

        return await self.fallback.recommend(count, exclude_ids=rated_ids)

    async def get_recommendations_for_user(
        self,
        target_user_id: str,
        count: int = DEFAULT_RECOMMENDATION_COUNT,
    ) -> list[CandidateMovie]:
        """Administrative lookup of another user's recommendations, cached per (user, count)."""
        count = clamp_count(count)
        cached = self.preference_cache.get_admin_recommendations(target_user_id, count)
        if cached is not None:
            logger.debug(f"Admin recommendation cache hit for {target_user_id} (count={count})")
            return cached

        recs = await self.get_personalized_recommendations(target_user_id, count)
        self.preference_cache.set_admin_recommendations(target_user_id, count, recs)
        return recs

    async def get_survey_recommendations(self, request: SurveyRequest | dict) -> SurveyResponse:
        if isinstance(request, dict):
            request = SurveyRequest.from_dict(request)
        return await self.survey.recommend(request)

    def invalidate_preference_cache(self, user_id: str) -> None:
        self.preference_cache.invalidate_user(user_id)

    async def get_profile(self, user_id: str) -> PreferenceProfile | None:
        """The user's (cached) preference profile, or None without high ratings."""
        signals = await self._load_ratings(user_id)
        if not select_high_rated(signals):
            return None
        return await self._profile_for(user_id, signals)
