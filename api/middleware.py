"""
HTTP middleware for the RBI registry API.

install_middleware() wires, outermost first:

    security headers → request log + rate limit → Cache-Control → routes

Rate limits are per client IP and per path over a sliding 60 second window.
The window state and the request counters belong to one application
instance, so every app built by create_app() starts with a clean slate.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from utils.config import AppConfig

logger = logging.getLogger("rbi_api")

WINDOW_SECONDS = 60.0
SLOW_REQUEST_MS = 500.0

# Registry data must never land in a shared cache
PRIVATE_PREFIXES = (
    "/api/v1/residents",
    "/api/v1/households",
    "/api/v1/search",
    "/api/v1/download",
)

CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "script-src 'self' cdn.jsdelivr.net 'unsafe-inline'; "
    "style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data:; "
    "font-src 'self'; "
    "connect-src 'self';"
)

_LOG_EXTRAS = ("method", "path", "status", "duration_ms", "client_ip", "request_id",
               "user_id")


# ── Logging ───────────────────────────────────────────────────────────────────

class JsonLogFormatter(logging.Formatter):
    """One JSON object per line; request fields passed via ``extra`` are kept."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update({k: getattr(record, k) for k in _LOG_EXTRAS if hasattr(record, k)})
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(log_format: str = "text") -> None:
    """Route the root logger to stderr as plain text or JSON lines."""
    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logging.basicConfig(handlers=[handler], level=logging.INFO, force=True)


# ── Rate limiting ─────────────────────────────────────────────────────────────

class PathRateLimiter:
    """Sliding-window hit counter keyed by (client IP, path).

    *limits* maps a path prefix to its per-window budget; any other path
    gets *default*.  Stale entries are swept at most every *sweep_every*
    seconds, and past *max_tracked_ips* the quietest clients are dropped.
    """

    def __init__(self, limits: dict[str, int], default: int,
                 max_tracked_ips: int = 10_000, sweep_every: float = 300.0) -> None:
        self.limits = limits
        self.default = default
        self.max_tracked_ips = max_tracked_ips
        self.sweep_every = sweep_every
        self.blocked = 0
        self._hits: dict[str, dict[str, list[float]]] = {}
        self._last_sweep = 0.0

    @classmethod
    def from_config(cls, cfg: AppConfig) -> "PathRateLimiter":
        return cls(
            {
                "/api/v1/auth": cfg.rate_limit_auth,
                "/api/v1/search": cfg.rate_limit_search,
                "/api/v1/download": cfg.rate_limit_download,
            },
            cfg.rate_limit_default,
        )

    def limit_for(self, path: str) -> int:
        for prefix, budget in self.limits.items():
            if path == prefix or path.startswith(prefix + "/"):
                return budget
        return self.default

    def allow(self, ip: str, path: str, now: float | None = None) -> bool:
        """Record a hit and say whether it fits in the window."""
        now = time.time() if now is None else now
        self.sweep(now)
        per_path = self._hits.setdefault(ip, {})
        recent = [t for t in per_path.get(path, ()) if t > now - WINDOW_SECONDS]
        if len(recent) >= self.limit_for(path):
            per_path[path] = recent
            self.blocked += 1
            return False
        recent.append(now)
        per_path[path] = recent
        return True

    def sweep(self, now: float) -> None:
        if now - self._last_sweep < self.sweep_every:
            return
        self._last_sweep = now
        cutoff = now - WINDOW_SECONDS
        for ip in list(self._hits):
            live = {p: [t for t in ts if t > cutoff] for p, ts in self._hits[ip].items()}
            live = {p: ts for p, ts in live.items() if ts}
            if live:
                self._hits[ip] = live
            else:
                del self._hits[ip]
        overflow = len(self._hits) - self.max_tracked_ips
        if overflow > 0:
            quietest = sorted(self._hits, key=lambda ip: sum(map(len, self._hits[ip].values())))
            for ip in quietest[:overflow]:
                del self._hits[ip]

    @property
    def tracked_ips(self) -> int:
        return len(self._hits)

    def reset(self) -> None:
        self._hits.clear()
        self.blocked = 0


@dataclass
class RequestMetrics:
    """In-process counters reported by ``/health/detailed``."""
    started_at: float = field(default_factory=time.time)
    requests: int = 0
    errors: int = 0
    durations_ms: list[float] = field(default_factory=list)
    window: int = 100

    def record(self, status_code: int, duration_ms: float) -> None:
        self.requests += 1
        if status_code >= 500:
            self.errors += 1
        self.durations_ms.append(duration_ms)
        del self.durations_ms[:-self.window]

    @property
    def avg_duration_ms(self) -> float:
        if not self.durations_ms:
            return 0.0
        return round(sum(self.durations_ms) / len(self.durations_ms), 2)

    @property
    def uptime_seconds(self) -> float:
        return round(time.time() - self.started_at, 2)


def client_ip(request: Request, trusted_proxies: set[str]) -> str:
    """The caller's IP; ``X-Forwarded-For`` counts only from a trusted proxy."""
    peer = request.client.host if request.client else "unknown"
    if peer not in trusted_proxies:
        return peer
    forwarded = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    return forwarded or peer


def _log_request(cfg: AppConfig, request: Request, status: int, duration_ms: float,
                 ip: str, request_id: str) -> None:
    if cfg.log_format == "json":
        logger.info("request", extra={
            "method": request.method, "path": request.url.path, "status": status,
            "duration_ms": round(duration_ms, 1), "client_ip": ip,
            "request_id": request_id,
        })
    else:
        logger.info("method=%s path=%s status=%d duration_ms=%.1f ip=%s rid=%s",
                    request.method, request.url.path, status, duration_ms, ip, request_id)
    if duration_ms > SLOW_REQUEST_MS:
        logger.warning("slow_request method=%s path=%s duration_ms=%.1f",
                       request.method, request.url.path, duration_ms)


# ── Wiring ────────────────────────────────────────────────────────────────────

def install_middleware(app: FastAPI, cfg: AppConfig, limiter: PathRateLimiter,
                       metrics: RequestMetrics) -> None:
    # Starlette runs the last registered middleware first

    @app.middleware("http")
    async def private_cache_control(request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith(PRIVATE_PREFIXES):
            response.headers.setdefault("Cache-Control", "private, no-cache")
        return response

    @app.middleware("http")
    async def log_and_rate_limit(request: Request, call_next):
        path = request.url.path
        if path == "/health":
            return await call_next(request)

        ip = client_ip(request, cfg.trusted_proxies)
        if not limiter.allow(ip, path):
            logger.warning("rate_limited ip=%s path=%s limit=%d",
                           ip, path, limiter.limit_for(path))
            return JSONResponse(status_code=429,
                                content={"error": "Too many requests", "status_code": 429},
                                headers={"Retry-After": str(int(WINDOW_SECONDS))})

        request_id = uuid.uuid4().hex[:8]
        start = time.monotonic()
        response = await call_next(request)
        duration_ms = (time.monotonic() - start) * 1000
        metrics.record(response.status_code, duration_ms)
        response.headers["X-Request-ID"] = request_id
        _log_request(cfg, request, response.status_code, duration_ms, ip, request_id)
        return response

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["Content-Security-Policy"] = CONTENT_SECURITY_POLICY
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response
