import importlib

import pytest

from movie_rec import config


def test_env_overrides_and_validation(monkeypatch):
    monkeypatch.setenv("MOVIE_REC_HTTP_TIMEOUT", "2.5")
    monkeypatch.setenv("MOVIE_REC_PREFERENCE_TTL", "-1")  # should clamp to min
    monkeypatch.setenv("MOVIE_REC_MAX_CONCURRENT", "0")  # min clamp
    monkeypatch.setenv("MOVIE_REC_SINGLE_FLIGHT", "off")

    cfg = importlib.reload(config)

    assert cfg.HTTP_TIMEOUT == 2.5
    assert cfg.PREFERENCE_CACHE_TTL == 0.0
    assert cfg.DEFAULT_MAX_CONCURRENT == 1
    assert cfg.PREFERENCE_SINGLE_FLIGHT is False


def test_db_path_respects_env(monkeypatch, tmp_path):
    db_path = tmp_path / "custom.db"
    monkeypatch.setenv("MOVIE_REC_DB", str(db_path))

    cfg = importlib.reload(config)

    assert cfg.DB_PATH == db_path


def test_invalid_env_values_fall_back_to_defaults(monkeypatch):
    # Use clearly invalid strings to exercise the ValueError branches
    monkeypatch.setenv("MOVIE_REC_HTTP_TIMEOUT", "not-a-float")
    monkeypatch.setenv("MOVIE_REC_ADMIN_TTL", "oops")
    monkeypatch.setenv("MOVIE_REC_MAX_CONCURRENT", "bad-int")
    monkeypatch.setenv("MOVIE_REC_SINGLE_FLIGHT", "maybe")

    cfg = importlib.reload(config)

    assert cfg.HTTP_TIMEOUT == 10.0
    assert cfg.ADMIN_RECOMMENDATION_CACHE_TTL == 1800.0
    assert cfg.DEFAULT_MAX_CONCURRENT == 8
    assert cfg.PREFERENCE_SINGLE_FLIGHT is True


def test_defaults_match_documented_values(monkeypatch):
    for key in ("MOVIE_REC_PREFERENCE_TTL", "MOVIE_REC_ADMIN_TTL", "MOVIE_REC_SURVEY_TTL"):
        monkeypatch.delenv(key, raising=False)

    cfg = importlib.reload(config)

    assert cfg.PREFERENCE_CACHE_TTL == 30.0
    assert cfg.ADMIN_RECOMMENDATION_CACHE_TTL == 30 * 60
    assert cfg.SURVEY_CACHE_TTL == 60 * 60
    assert sum(cfg.SCORE_WEIGHTS.values()) == pytest.approx(0.95)
    assert [m[0] for m in cfg.HARDCODED_FALLBACK_MOVIES] == [278, 238, 157336]
