"""Unit tests for Settings validation."""

import pydantic
import pytest

from boltstore.core.config import Settings


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_defaults_are_valid() -> None:
    """The local defaults load without any environment."""
    s = _settings()
    assert s.DB_POOL_MIN <= s.DB_POOL_MAX
    assert s.SIMILARITY_THRESHOLD == 0.8
    assert s.AUTH_COOKIE_NAME == "auth_token"


def test_pool_min_above_max_is_rejected() -> None:
    with pytest.raises(pydantic.ValidationError):
        _settings(DB_POOL_MIN=5, DB_POOL_MAX=2)


@pytest.mark.parametrize("threshold", [-1.5, 1.01])
def test_similarity_threshold_out_of_range_is_rejected(threshold: float) -> None:
    with pytest.raises(pydantic.ValidationError):
        _settings(SIMILARITY_THRESHOLD=threshold)


def test_jwt_duration_format_is_enforced() -> None:
    with pytest.raises(pydantic.ValidationError):
        _settings(JWT_EXPIRES_IN="7 days")


def test_bcrypt_rounds_bounds() -> None:
    with pytest.raises(pydantic.ValidationError):
        _settings(BCRYPT_ROUNDS=3)


def test_production_requires_long_secret() -> None:
    """A short signing secret is refused outside local development."""
    with pytest.raises(pydantic.ValidationError):
        _settings(ENVIRONMENT="production", AUTH_SECRET="short")
    assert _settings(ENVIRONMENT="production", AUTH_SECRET="s" * 32).ENVIRONMENT == "production"
