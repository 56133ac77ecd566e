"""
FastAPI application factory for the RBI registry.

Usage:
    python -m api.app                    # Dev server on port 8000
    APP_DB_PATH=/data/rbi.sqlite python -m api.app

OpenAPI docs available at http://localhost:8000/docs after starting.

create_app() validates the environment first (secrets, CORS) and refuses to
start when validation reports errors; warnings are logged.
"""

import logging
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import api.auth as auth
import api.database as database
from api.middleware import PathRateLimiter, RequestMetrics, configure_logging, install_middleware
from api.routes import addresses, dashboard, download, households, psgc, residents, search, user
from api.routes import auth as auth_routes
from utils.config import AppConfig, EnvironmentConfigError, validate_environment
from utils.database import get_table_count
from utils.validation import RecordValidationError

_cfg = AppConfig.from_env()
configure_logging(_cfg.log_format)
_logger = logging.getLogger("rbi_api")

API_PREFIX = "/api/v1"
_COUNTED_TABLES = ("residents", "households", "psgc_barangays", "user_profiles")

_ROUTERS = (auth_routes, addresses, psgc, user, residents, households, dashboard,
            search, download)

_TAGS = [
    {"name": "auth", "description": "Sign-up, sign-in, sign-out and CSRF tokens."},
    {"name": "addresses", "description": "PSGC options for the geographic selector."},
    {"name": "psgc", "description": "Free-text search over the PSGC hierarchy."},
    {"name": "user", "description": "The signed-in user's profile and location."},
    {"name": "residents", "description": "Resident records."},
    {"name": "households", "description": "Households and their members."},
    {"name": "dashboard", "description": "Population statistics."},
    {"name": "search", "description": "Command menu search and name suggestions."},
    {"name": "download", "description": "CSV, NDJSON and Excel exports."},
    {"name": "meta", "description": "Health checks."},
]


def _description(cfg: AppConfig) -> str:
    return (
        "Barangay resident and household registry with PSGC address lookups.\n\n"
        "### Authentication\n"
        "Sign in at `/api/v1/auth/sign-in` and send `Authorization: Bearer <token>`. "
        "POST, PUT and DELETE on registry data also need the `X-CSRF-Token` header "
        "returned at sign-in.\n\n"
        "### Access scope\n"
        "Records are limited to the user's barangay, city, province or region "
        "according to their role.\n\n"
        "### Rate limits (per IP, per minute)\n"
        f"- `/api/v1/auth`: {cfg.rate_limit_auth}\n"
        f"- `/api/v1/search`: {cfg.rate_limit_search}\n"
        f"- `/api/v1/download`: {cfg.rate_limit_download}\n"
        f"- everything else: {cfg.rate_limit_default}\n\n"
        "Over the limit the API answers `429` with `Retry-After: 60`."
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    db_path = database.get_db_path()
    if not db_path.exists():
        _logger.warning("Database not found at %s. Run 'python build_rbi_db.py' first.",
                        db_path)
    yield


def _check_environment(cfg: AppConfig) -> None:
    result = validate_environment(cfg)
    for warning in result.warnings:
        _logger.warning("config: %s", warning)
    if not result.is_valid():
        for error in result.errors:
            _logger.error("config: %s", error)
        raise EnvironmentConfigError(result.errors)


def _row_counts(db_path: Path) -> dict[str, int]:
    conn = sqlite3.connect(str(db_path))
    try:
        return {t: get_table_count(conn, t) for t in _COUNTED_TABLES}
    finally:
        conn.close()


def _error_body(status_code: int, error: str, detail=None, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code,
                        content={"error": error, "detail": detail,
                                 "status_code": status_code, **extra})


def _add_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(RecordValidationError)
    async def record_validation_handler(request: Request, exc: RecordValidationError):
        return _error_body(422, "Validation failed", exc.detail,
                           errors=[e.to_dict() for e in exc.errors])

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error_body(400, "Bad request", str(exc))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        _logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_body(500, "Internal server error", str(exc))


def _add_health_routes(app: FastAPI, cfg: AppConfig, limiter: PathRateLimiter,
                       metrics: RequestMetrics) -> None:

    def counts_or_503(db_path: Path):
        if not db_path.exists():
            return None, JSONResponse(status_code=503, content={
                "status": "no_database", "database": str(db_path)})
        try:
            return _row_counts(db_path), None
        except sqlite3.Error as exc:
            return None, JSONResponse(status_code=503, content={
                "status": "degraded", "error": str(exc)})

    @app.get("/health", tags=["meta"], summary="Health check")
    def health():
        """200 while the database answers; 503 when it is missing or broken."""
        db_path = database.get_db_path()
        counts, failure = counts_or_503(db_path)
        if failure is not None:
            return failure
        return {"status": "ok", "database": str(db_path), "residents": counts["residents"]}

    @app.get("/health/detailed", tags=["meta"], summary="Operational metrics")
    def health_detailed():
        """Uptime, request counters, row counts and rate limiter state.

        Counters reset when the process restarts.
        """
        db_path = database.get_db_path()
        counts, failure = counts_or_503(db_path)
        if failure is not None:
            return failure
        size = db_path.stat().st_size
        return {
            "status": "ok",
            "environment": cfg.environment,
            "uptime_seconds": metrics.uptime_seconds,
            "request_count": metrics.requests,
            "error_count": metrics.errors,
            "avg_response_time_ms": metrics.avg_duration_ms,
            "db_size_bytes": size,
            "db_size_mb": round(size / (1024 * 1024), 2),
            "row_counts": counts,
            "rate_limiter_stats": {"tracked_ips": limiter.tracked_ips,
                                   "blocked_requests": limiter.blocked},
        }


def create_app(db_path: Path | None = None, config: AppConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_path: Override the database path (useful for testing).
        config: Settings to use instead of the environment-derived defaults.

    Raises:
        EnvironmentConfigError: If environment validation reports errors.
    """
    cfg = config or _cfg
    _check_environment(cfg)
    auth.configure(cfg)
    if db_path is not None:
        database._DB_PATH = Path(db_path)

    app = FastAPI(
        title="RBI Registry API",
        summary="Records of Barangay Inhabitants: residents, households and PSGC reference data.",
        description=_description(cfg),
        version="1.0.0",
        lifespan=lifespan,
        openapi_tags=_TAGS,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", auth.CSRF_HEADER],
        expose_headers=["X-Total-Count", "X-Request-ID"],
    )

    limiter = PathRateLimiter.from_config(cfg)
    metrics = RequestMetrics()
    app.state.rate_limiter = limiter
    app.state.metrics = metrics
    install_middleware(app, cfg, limiter, metrics)
    _add_error_handlers(app)
    _add_health_routes(app, cfg, limiter, metrics)

    for module in _ROUTERS:
        app.include_router(module.router, prefix=API_PREFIX)
    return app


# Singleton instance for uvicorn
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.app:app", host=_cfg.api_host, port=_cfg.api_port,
                reload=True, log_level="info")
