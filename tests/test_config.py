"""Tests for utils/config.py: AppConfig loading and environment validation."""
import pytest

from utils.config import AppConfig, EnvironmentConfigError, validate_environment

STRONG = "k" * 40
OTHER_STRONG = "z" * 40

_ENV_VARS = (
    "APP_ENV", "CSRF_SECRET", "APP_JWT_SECRET", "APP_CORS_ORIGINS", "TRUSTED_PROXIES",
    "CSRF_SECRET_DEVELOPMENT", "CSRF_SECRET_STAGING", "CSRF_SECRET_PRODUCTION",
)


@pytest.fixture()
def env(monkeypatch):
    """A clean environment; returns a setter for the variables under test."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    def _set(**values):
        for name, value in values.items():
            monkeypatch.setenv(name, value)
        return AppConfig()
    return _set


class TestAppConfig:
    def test_defaults(self, env):
        cfg = env()
        assert cfg.environment == "development"
        assert cfg.cors_origins == ["*"]
        assert cfg.rate_limit_search == 60
        assert cfg.rate_limit_download == 10
        assert cfg.trusted_proxies == set()

    def test_lists_are_split(self, env):
        cfg = env(APP_CORS_ORIGINS="https://a.ph, https://b.ph,",
                  TRUSTED_PROXIES="10.0.0.1,10.0.0.2")
        assert cfg.cors_origins == ["https://a.ph", "https://b.ph"]
        assert cfg.trusted_proxies == {"10.0.0.1", "10.0.0.2"}

    def test_secrets_generated_outside_strict_envs(self, env):
        cfg = env(APP_ENV="development")
        secret = cfg.csrf_secret
        assert len(secret) == 64
        assert cfg.csrf_secret == secret

    def test_secrets_not_generated_in_production(self, env):
        assert env(APP_ENV="production").jwt_secret == ""

    def test_to_dict_hides_secrets(self, env):
        cfg = env(CSRF_SECRET=STRONG, APP_JWT_SECRET=OTHER_STRONG)
        data = cfg.to_dict()
        assert data["environment"] == "development"
        assert not any(k.startswith("_") for k in data)
        assert STRONG not in map(str, data.values())


class TestValidateEnvironment:
    def test_test_env_only_warns(self, env):
        result = validate_environment(env(APP_ENV="test"))
        assert result.is_valid()
        assert any("CSRF_SECRET is not set" in w for w in result.warnings)

    def test_generated_secret_still_reported_missing(self, env):
        cfg = env(APP_ENV="development")
        cfg.csrf_secret
        result = validate_environment(cfg)
        assert any("CSRF_SECRET is not set" in w for w in result.warnings)

    def test_production_requires_secrets(self, env):
        result = validate_environment(env(APP_ENV="production"))
        assert not result.is_valid()
        assert "CSRF_SECRET is required in production" in result.errors
        assert "APP_JWT_SECRET is required in production" in result.errors

    def test_production_with_strong_secrets(self, env):
        result = validate_environment(env(
            APP_ENV="production", CSRF_SECRET=STRONG, APP_JWT_SECRET=OTHER_STRONG,
            APP_CORS_ORIGINS="https://rbi.example.gov.ph"))
        assert result.is_valid()
        assert result.warnings == []

    def test_placeholder_rejected_in_staging(self, env):
        result = validate_environment(env(
            APP_ENV="staging", CSRF_SECRET="changeme-" + "x" * 40, APP_JWT_SECRET=STRONG))
        assert any("placeholder" in e for e in result.errors)

    def test_placeholder_warns_in_development(self, env):
        result = validate_environment(env(CSRF_SECRET="your-secret-here"))
        assert result.is_valid()
        assert any("placeholder" in w for w in result.warnings)

    def test_short_secret_rejected_in_production(self, env):
        result = validate_environment(env(
            APP_ENV="production", CSRF_SECRET="short", APP_JWT_SECRET=STRONG))
        assert any("at least 32 characters" in e for e in result.errors)

    def test_secret_reused_across_environments(self, env):
        result = validate_environment(env(
            APP_ENV="production", CSRF_SECRET=STRONG, APP_JWT_SECRET=OTHER_STRONG,
            CSRF_SECRET_STAGING=STRONG, CSRF_SECRET_PRODUCTION=STRONG))
        assert "csrf_secret_distinct" in result.failed_checks
        assert any("staging" in e for e in result.errors)

    def test_unknown_environment(self, env):
        result = validate_environment(env(APP_ENV="qa"))
        assert "environment" in result.failed_checks

    def test_cors_wildcard_warns_in_production(self, env):
        result = validate_environment(env(
            APP_ENV="production", CSRF_SECRET=STRONG, APP_JWT_SECRET=OTHER_STRONG))
        assert result.is_valid()
        assert any("APP_CORS_ORIGINS" in w for w in result.warnings)


def test_environment_config_error_lists_errors():
    exc = EnvironmentConfigError(["a is missing", "b is short"])
    assert exc.errors == ["a is missing", "b is short"]
    assert "a is missing; b is short" in str(exc)
