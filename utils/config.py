"""Configuration management for the RBI registry.

Provides:
- The Config base class (public settings as a dict, secrets excluded)
- AppConfig, loaded from environment variables with working defaults
- validate_environment(), the build/runtime check of secrets per environment
"""

import os
import secrets
from pathlib import Path
from typing import Any, Dict, List

from utils.validation import ValidationIssue, ValidationRegistry, ValidationResult

ENVIRONMENTS = ("development", "staging", "production", "test")
STRICT_ENVIRONMENTS = ("staging", "production")
MIN_SECRET_LENGTH = 32
PLACEHOLDER_MARKERS = ("placeholder", "changeme", "your-secret", "example")


class EnvironmentConfigError(RuntimeError):
    """Raised by create_app() when the environment fails validation."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("Invalid environment configuration: " + "; ".join(errors))


class Config:
    """Base configuration class for organizing application settings."""

    def to_dict(self) -> Dict[str, Any]:
        """Public attributes only; secrets are stored with a leading underscore."""
        return {k: v for k, v in self.__dict__.items() if not k.startswith("_")}


def _split_csv(raw: str) -> List[str]:
    return [p.strip() for p in raw.split(",") if p.strip()]


class AppConfig(Config):
    """Application-level configuration loaded from environment variables.

    All env vars have defaults so the application runs in development
    without any configuration.

    Environment variables:
        APP_ENV: development, staging, production or test (default: development)
        APP_DB_PATH: Path to the SQLite database file (default: rbi.sqlite)
        APP_PORT: API server port (default: 8000)
        APP_HOST: API server bind address (default: 127.0.0.1)
        APP_LOG_FORMAT: "text" or "json" (default: text)
        APP_CORS_ORIGINS: Comma-separated allowed origins (default: *)
        RATE_LIMIT_SEARCH: Max search requests per minute per IP (default: 60)
        RATE_LIMIT_DOWNLOAD: Max export requests per minute per IP (default: 10)
        RATE_LIMIT_AUTH: Max auth requests per minute per IP (default: 20)
        RATE_LIMIT_DEFAULT: Max requests per minute for other endpoints (default: 120)
        TRUSTED_PROXIES: Comma-separated proxy IPs whose X-Forwarded-For is used
        CSRF_SECRET: HMAC key for CSRF tokens
        CSRF_SECRET_DEVELOPMENT / _STAGING / _PRODUCTION: the secrets deployed
            in each environment, used to detect reuse across environments
        APP_JWT_SECRET: HMAC key for bearer tokens
        APP_TOKEN_TTL_MINUTES: Bearer token lifetime (default: 480)
        APP_BCRYPT_ROUNDS: Password hashing cost (default: 12)
    """

    def __init__(self) -> None:
        super().__init__()
        self.environment = os.getenv("APP_ENV", "development").strip().lower()
        self.db_path = Path(os.getenv("APP_DB_PATH", "rbi.sqlite"))
        self.api_port = int(os.getenv("APP_PORT", "8000"))
        self.api_host = os.getenv("APP_HOST", "127.0.0.1")
        self.log_format = os.getenv("APP_LOG_FORMAT", "text")
        raw_origins = os.getenv("APP_CORS_ORIGINS", "*")
        self.cors_origins: list[str] = (
            ["*"] if raw_origins.strip() == "*" else _split_csv(raw_origins)
        )
        self.rate_limit_search = int(os.getenv("RATE_LIMIT_SEARCH", "60"))
        self.rate_limit_download = int(os.getenv("RATE_LIMIT_DOWNLOAD", "10"))
        self.rate_limit_auth = int(os.getenv("RATE_LIMIT_AUTH", "20"))
        self.rate_limit_default = int(os.getenv("RATE_LIMIT_DEFAULT", "120"))
        self.trusted_proxies: set[str] = set(_split_csv(os.getenv("TRUSTED_PROXIES", "")))
        self.token_ttl_minutes = int(os.getenv("APP_TOKEN_TTL_MINUTES", "480"))
        self.bcrypt_rounds = int(os.getenv("APP_BCRYPT_ROUNDS", "12"))

        self._csrf_secret = os.getenv("CSRF_SECRET", "")
        self._jwt_secret = os.getenv("APP_JWT_SECRET", "")
        self._declared_csrf_secrets: Dict[str, str] = {
            env: os.getenv(f"CSRF_SECRET_{env.upper()}", "")
            for env in ("development", "staging", "production")
        }
        self._generated: set[str] = set()

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create an AppConfig instance populated from environment variables."""
        return cls()

    @property
    def is_strict(self) -> bool:
        return self.environment in STRICT_ENVIRONMENTS

    @property
    def csrf_secret(self) -> str:
        """The CSRF key; a random per-process key outside staging/production."""
        if not self._csrf_secret and not self.is_strict:
            self._csrf_secret = secrets.token_hex(32)
            self._generated.add("CSRF_SECRET")
        return self._csrf_secret

    @property
    def jwt_secret(self) -> str:
        if not self._jwt_secret and not self.is_strict:
            self._jwt_secret = secrets.token_hex(32)
            self._generated.add("APP_JWT_SECRET")
        return self._jwt_secret


# ── Environment validation ────────────────────────────────────────────────────

def _check_environment_name(cfg: AppConfig) -> List[ValidationIssue]:
    if cfg.environment not in ENVIRONMENTS:
        return [ValidationIssue("environment", "error",
                                f"APP_ENV must be one of {', '.join(ENVIRONMENTS)}, "
                                f"got '{cfg.environment}'")]
    return []


def _check_secret(name: str, value: str, cfg: AppConfig) -> List[ValidationIssue]:
    check = name.lower()
    if not value:
        if cfg.is_strict:
            return [ValidationIssue(check, "error",
                                    f"{name} is required in {cfg.environment}")]
        return [ValidationIssue(check, "warning",
                                f"{name} is not set; using a random per-process secret")]

    issues: List[ValidationIssue] = []
    lowered = value.lower()
    if any(marker in lowered for marker in PLACEHOLDER_MARKERS):
        severity = "error" if cfg.is_strict else "warning"
        issues.append(ValidationIssue(check, severity,
                                      f"{name} looks like a placeholder value"))
    if cfg.is_strict and len(value) < MIN_SECRET_LENGTH:
        issues.append(ValidationIssue(
            check, "error",
            f"{name} must be at least {MIN_SECRET_LENGTH} characters in {cfg.environment}"))
    return issues


def _configured(cfg: AppConfig, name: str, value: str) -> str:
    """The secret as supplied by the environment (empty if generated)."""
    return "" if name in cfg._generated else value


def _check_csrf_secret(cfg: AppConfig) -> List[ValidationIssue]:
    return _check_secret("CSRF_SECRET", _configured(cfg, "CSRF_SECRET", cfg._csrf_secret), cfg)


def _check_jwt_secret(cfg: AppConfig) -> List[ValidationIssue]:
    return _check_secret("APP_JWT_SECRET",
                         _configured(cfg, "APP_JWT_SECRET", cfg._jwt_secret), cfg)


def _check_distinct_secrets(cfg: AppConfig) -> List[ValidationIssue]:
    """The active CSRF secret must not be one declared for another environment."""
    active = _configured(cfg, "CSRF_SECRET", cfg._csrf_secret)
    if not active:
        return []
    return [
        ValidationIssue("csrf_secret_distinct", "error",
                        f"CSRF_SECRET reuses the {env} secret; "
                        f"each environment needs its own")
        for env, declared in cfg._declared_csrf_secrets.items()
        if declared and env != cfg.environment and declared == active
    ]


def _check_cors(cfg: AppConfig) -> List[ValidationIssue]:
    if cfg.environment == "production" and cfg.cors_origins == ["*"]:
        return [ValidationIssue("cors", "warning",
                                "APP_CORS_ORIGINS is '*' in production")]
    return []


ENVIRONMENT_CHECKS = ValidationRegistry()
ENVIRONMENT_CHECKS.register("environment", _check_environment_name)
ENVIRONMENT_CHECKS.register("csrf_secret", _check_csrf_secret)
ENVIRONMENT_CHECKS.register("jwt_secret", _check_jwt_secret)
ENVIRONMENT_CHECKS.register("csrf_secret_distinct", _check_distinct_secrets)
ENVIRONMENT_CHECKS.register("cors", _check_cors)


def validate_environment(cfg: AppConfig) -> ValidationResult:
    """Run every environment check against *cfg*."""
    return ENVIRONMENT_CHECKS.run_all(cfg)
