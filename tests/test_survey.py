from datetime import date

import pytest

from movie_rec import survey
from movie_rec.catalog import CatalogError
from movie_rec.survey import SurveyDiscovery, SurveyRequest, SurveyValidationError

from conftest import build_movie, summary


def _request(**overrides):
    answers = {
        'mood': "Happy",
        'occasion': "Solo",
        'age_preference': "Doesn't matter",
        'genres': [],
        'themes': [],
        'is_rating_important': False,
    }
    answers.update(overrides)
    return SurveyRequest.from_dict(answers)


@pytest.fixture
def discovery(fake_catalog):
    return SurveyDiscovery(fake_catalog, today=lambda: date(2025, 6, 1))


def test_from_dict_accepts_camel_case():
    request = SurveyRequest.from_dict({
        'mood': "Excited",
        'occasion': "Party",
        'agePreference': "Last 5 years",
        'isRatingImportant': True,
        'genres': ["Action"],
    })

    assert request.age_preference == "Last 5 years"
    assert request.is_rating_important is True
    assert request.themes == []


@pytest.mark.parametrize("answers", [
    {'occasion': "Solo", 'age_preference': "Doesn't matter"},
    {'mood': "Happy", 'age_preference': "Doesn't matter"},
    {'mood': "Happy", 'occasion': "Solo"},
    {'mood': "", 'occasion': "Solo", 'age_preference': "Doesn't matter"},
    {'mood': "Happy", 'occasion': "Solo", 'age_preference': "Doesn't matter", 'genres': "Comedy"},
    {'mood': "Happy", 'occasion': "Solo", 'age_preference': "Doesn't matter", 'is_rating_important': "yes"},
])
def test_invalid_answers_raise(answers):
    with pytest.raises(SurveyValidationError):
        SurveyRequest.from_dict(answers)


def test_cache_key_is_stable_across_field_order():
    a = SurveyRequest.from_dict({'mood': "Sad", 'occasion': "Solo", 'age_preference': "Last 5 years"})
    b = SurveyRequest.from_dict({'age_preference': "Last 5 years", 'occasion': "Solo", 'mood': "Sad"})

    assert a.cache_key() == b.cache_key()
    assert a.cache_key() != _request(mood="Happy").cache_key()


@pytest.mark.asyncio
async def test_family_time_adds_family_genre(discovery):
    filters = await discovery.build_filters(_request(occasion="Family Time", genres=["Comedy"]))

    assert filters.genre_ids == [35, 10751]


@pytest.mark.asyncio
async def test_date_night_does_not_duplicate_romance(discovery):
    filters = await discovery.build_filters(_request(occasion="Date Night", genres=["Romance", "Sci-Fi"]))

    assert filters.genre_ids == [10749, 878]


@pytest.mark.asyncio
async def test_filters_for_rating_themes_and_age(discovery):
    filters = await discovery.build_filters(_request(
        age_preference="Last 10 years",
        themes=["Based on Book", "True Story", "Superhero Movies"],
        is_rating_important=True,
    ))

    assert filters.keyword_ids == [818, 1803]
    assert filters.min_vote_average == 7.0
    assert filters.sort_by == "vote_average.desc"
    assert filters.min_release_year == 2015


@pytest.mark.asyncio
async def test_classic_cinema_disables_age_filter(discovery):
    filters = await discovery.build_filters(_request(age_preference="Last 5 years", themes=["Classic Cinema"]))

    assert filters.min_release_year is None
    assert filters.keyword_ids == [2796]


@pytest.mark.parametrize("occasion, expected", [
    ("Party", "popularity.desc"),
    ("Watching with Friends", "popularity.desc"),
    ("Solo", "primary_release_date.desc"),
])
def test_sort_order_by_occasion(occasion, expected):
    assert survey.sort_order(_request(occasion=occasion)) == expected


@pytest.mark.asyncio
async def test_relaxation_drops_rating_before_occasion(fake_catalog, discovery):
    movie = fake_catalog.add(build_movie(1, genres=["Family"]))

    def handler(call):
        # Only the rating-relaxed query (occasion genre still present) matches
        if call['min_vote_average'] is None and 10751 in call['genre_ids']:
            return [summary(movie)]
        return []

    fake_catalog.discover_handler = handler
    response = await discovery.recommend(_request(occasion="Family Time", is_rating_important=True))

    assert [m.id for m in response.movies] == [1]
    assert len(fake_catalog.discover_calls) == 2
    assert fake_catalog.discover_calls[0]['min_vote_average'] == 7.0
    assert fake_catalog.discover_calls[1]['sort_by'] == "primary_release_date.desc"


@pytest.mark.asyncio
async def test_relaxation_finally_drops_occasion(fake_catalog, discovery):
    movie = fake_catalog.add(build_movie(1))

    def handler(call):
        return [summary(movie)] if 10751 not in call['genre_ids'] else []

    fake_catalog.discover_handler = handler
    response = await discovery.recommend(_request(occasion="Family Time", is_rating_important=True))

    assert [m.id for m in response.movies] == [1]
    assert [c['genre_ids'] for c in fake_catalog.discover_calls] == [[10751], [10751], []]


@pytest.mark.asyncio
async def test_no_matches_returns_empty_response(fake_catalog, discovery):
    response = await discovery.recommend(_request())

    assert response.movies == []
    assert response.explanations == {}
    assert len(fake_catalog.discover_calls) == 3


@pytest.mark.asyncio
async def test_response_is_capped_enriched_and_explained(fake_catalog, discovery):
    for mid in range(1, 13):
        fake_catalog.add(build_movie(
            mid,
            genres=["Comedy"],
            cast=["A", "B", "C", "D", "E", "F"],
            directors=["Dir"],
            crew=[("Writer", "Screenplay"), ("Prod", "Producer"), ("Editor", "Editor")],
            vote_average=7.4,
        ))
    fake_catalog.genre_results = [summary(fake_catalog.details[mid]) for mid in range(1, 13)]
    fake_catalog.failing_details.add(2)

    response = await discovery.recommend(_request(
        mood="Happy",
        occasion="Date Night",
        genres=["Comedy"],
        age_preference="Last 5 years",
        is_rating_important=True,
        themes=["Based on Book"],
    ))

    assert len(response.movies) == 10
    first = response.movies[0]
    assert [c.name for c in first.cast] == ["A", "B", "C", "D", "E"]
    assert [c.job for c in first.crew] == ["Director", "Screenplay", "Producer"]
    assert response.movies[1].cast == [] and response.movies[1].crew == []
    assert response.explanations[1] == (
        "Recommended because matches your happy mood; perfect for date night; "
        "includes your preferred genres: Comedy; released in last 5 years; "
        "high rating (7.4/10); matches themes: Based on Book"
    )


@pytest.mark.asyncio
async def test_responses_are_cached_by_request(fake_catalog, discovery):
    fake_catalog.genre_results = [summary(fake_catalog.add(build_movie(1)))]

    first = await discovery.recommend(_request(genres=["Drama"]))
    second = await discovery.recommend(_request(genres=["Drama"]))

    assert second == first
    assert second is not first
    assert len(fake_catalog.discover_calls) == 1


@pytest.mark.asyncio
async def test_mutating_a_response_does_not_alter_the_cache(fake_catalog, discovery):
    fake_catalog.genre_results = [summary(fake_catalog.add(build_movie(1)))]

    first = await discovery.recommend(_request(genres=["Drama"]))
    first.movies.clear()
    first.explanations.clear()
    second = await discovery.recommend(_request(genres=["Drama"]))
    second.movies.append(second.movies[0])
    third = await discovery.recommend(_request(genres=["Drama"]))

    assert [m.id for m in third.movies] == [1]
    assert third.explanations
    assert len(fake_catalog.discover_calls) == 1


@pytest.mark.asyncio
async def test_catalog_failure_gives_uncached_empty_response(fake_catalog, discovery):
    def handler(call):
        raise CatalogError("down")

    fake_catalog.discover_handler = handler
    response = await discovery.recommend(_request())

    assert response.movies == []
    assert len(discovery.cache) == 0


@pytest.mark.asyncio
async def test_unexpected_discovery_error_gives_uncached_empty_response(fake_catalog, discovery):
    def handler(call):
        raise RuntimeError("unexpected payload")

    fake_catalog.discover_handler = handler
    response = await discovery.recommend(_request())

    assert response.movies == []
    assert response.explanations == {}
    assert len(discovery.cache) == 0


def test_survey_questions_cover_every_answer():
    properties = [q.filter_property for q in survey.SURVEY_QUESTIONS]

    assert properties == ['mood', 'occasion', 'genres', 'age_preference', 'is_rating_important', 'themes']
    assert "Sci-Fi" in survey.SURVEY_QUESTIONS[2].options
