"""
Authentication, CSRF and access scoping for the API.

Bearer tokens are HS256 JWTs whose ``jti`` is stored in ``user_sessions``;
deleting the row (sign-out) revokes the token before ``exp``.  The CSRF
token for a session is HMAC-SHA256(CSRF_SECRET, jti) so the server keeps no
extra state for it.

Dependencies for routes::

    user: CurrentUser = Depends(get_current_user)   # any authenticated call
    user: CurrentUser = Depends(require_csrf)       # POST/PUT/DELETE
"""

import hashlib
import hmac
import logging
import sqlite3
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.database import get_db
from utils.config import AppConfig
from utils.security import verify_password

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("api.audit")

CSRF_HEADER = "X-CSRF-Token"
JWT_ALGORITHM = "HS256"

# access level -> column restricting queries (national is unrestricted)
ACCESS_LEVEL_COLUMNS = {
    "barangay": "barangay_code",
    "city": "city_municipality_code",
    "province": "province_code",
    "region": "region_code",
}

_bearer = HTTPBearer(auto_error=False)
_cfg: AppConfig | None = None


def configure(cfg: AppConfig) -> None:
    """Install the settings used for signing tokens (called by create_app)."""
    global _cfg
    _cfg = cfg


def get_settings() -> AppConfig:
    global _cfg
    if _cfg is None:
        _cfg = AppConfig.from_env()
    return _cfg


@dataclass
class CurrentUser:
    id: str
    email: str
    role: str
    access_level: str
    first_name: str | None = None
    last_name: str | None = None
    barangay_code: str | None = None
    city_municipality_code: str | None = None
    province_code: str | None = None
    region_code: str | None = None
    jti: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("jti")
        return data


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail,
                         headers={"WWW-Authenticate": "Bearer"})


def _utc_text(dt: datetime) -> str:
    """Format matching SQLite's datetime('now')."""
    return dt.strftime("%Y-%m-%d %H:%M:%S")


# ── Tokens ────────────────────────────────────────────────────────────────────

def issue_token(conn: sqlite3.Connection, user: sqlite3.Row) -> tuple[str, str, int]:
    """Sign a bearer token for *user* and record its session.

    Returns:
        ``(token, jti, expires_in_seconds)``
    """
    cfg = get_settings()
    now = datetime.now(timezone.utc)
    expires_in = cfg.token_ttl_minutes * 60
    exp = now + timedelta(seconds=expires_in)
    jti = uuid.uuid4().hex
    payload = {
        "sub": user["id"],
        "email": user["email"],
        "role": user["role"],
        "jti": jti,
        "iat": now,
        "exp": exp,
    }
    token = jwt.encode(payload, cfg.jwt_secret, algorithm=JWT_ALGORITHM)
    conn.execute(
        "INSERT INTO user_sessions (jti, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
        (jti, user["id"], _utc_text(now), _utc_text(exp)),
    )
    conn.commit()
    return token, jti, expires_in


def decode_token(token: str) -> dict[str, Any]:
    """Verify signature and expiry.

    Raises:
        HTTPException: 401 for an expired or otherwise invalid token.
    """
    try:
        return jwt.decode(token, get_settings().jwt_secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid token")


def revoke_session(conn: sqlite3.Connection, jti: str) -> None:
    conn.execute("DELETE FROM user_sessions WHERE jti = ?", (jti,))
    conn.commit()


def csrf_token_for(jti: str) -> str:
    secret = get_settings().csrf_secret.encode("utf-8")
    return hmac.new(secret, jti.encode("utf-8"), hashlib.sha256).hexdigest()


# ── Users ─────────────────────────────────────────────────────────────────────

_PROFILE_SQL = """
    SELECT u.*, COALESCE(r.access_level, 'barangay') AS access_level
    FROM user_profiles u
    LEFT JOIN roles r ON r.name = u.role
"""


def load_user(conn: sqlite3.Connection, user_id: str) -> sqlite3.Row | None:
    return conn.execute(_PROFILE_SQL + " WHERE u.id = ?", (user_id,)).fetchone()


def authenticate(conn: sqlite3.Connection, email: str, password: str) -> sqlite3.Row | None:
    """Return the active profile matching the credentials, else None."""
    row = conn.execute(_PROFILE_SQL + " WHERE u.email = ?", (email.strip().lower(),)).fetchone()
    if row is None or not verify_password(password, row["password_hash"]):
        return None
    if not row["is_active"]:
        logger.info("Sign-in refused for inactive account %s", row["id"])
        return None
    return row


def user_from_row(row: sqlite3.Row, jti: str | None = None) -> CurrentUser:
    return CurrentUser(
        id=row["id"],
        email=row["email"],
        role=row["role"],
        access_level=row["access_level"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        barangay_code=row["barangay_code"],
        city_municipality_code=row["city_municipality_code"],
        province_code=row["province_code"],
        region_code=row["region_code"],
        jti=jti,
    )


# ── Dependencies ──────────────────────────────────────────────────────────────

def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    conn: sqlite3.Connection = Depends(get_db),
) -> CurrentUser:
    """Resolve ``Authorization: Bearer`` to an active user with a live session."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _unauthorized("Not authenticated")
    payload = decode_token(credentials.credentials)
    jti, user_id = payload.get("jti"), payload.get("sub")
    if not jti or not user_id:
        raise _unauthorized("Invalid token")

    session = conn.execute(
        "SELECT 1 FROM user_sessions WHERE jti = ? AND user_id = ? "
        "AND expires_at > datetime('now')",
        (jti, user_id),
    ).fetchone()
    if session is None:
        raise _unauthorized("Session has ended")

    row = load_user(conn, user_id)
    if row is None or not row["is_active"]:
        raise _unauthorized("Account is not active")
    return user_from_row(row, jti)


def require_csrf(request: Request,
                 user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Authenticated user whose request carries the session's CSRF token."""
    supplied = request.headers.get(CSRF_HEADER, "")
    expected = csrf_token_for(user.jti or "")
    if not supplied or not hmac.compare_digest(supplied, expected):
        logger.warning("CSRF check failed user=%s path=%s", user.id, request.url.path)
        raise HTTPException(status_code=403, detail="Invalid or missing CSRF token")
    return user


def access_scope(user: CurrentUser) -> tuple[str, str | None] | None:
    """``(column, value)`` restricting what *user* may see; None for national.

    Unknown access levels are treated as barangay.  A scoped user without the
    matching code gets ``(column, None)``, which the query builders turn into
    an empty result.
    """
    if user.access_level == "national":
        return None
    column = ACCESS_LEVEL_COLUMNS.get(user.access_level, "barangay_code")
    return column, getattr(user, column)


def in_scope(user: CurrentUser, row: sqlite3.Row | dict) -> bool:
    """Whether a row carrying geo columns is visible to *user*."""
    scope = access_scope(user)
    if scope is None:
        return True
    column, value = scope
    return bool(value) and row[column] == value


def audit(action: str, entity: str, entity_id: Any, user: CurrentUser, **details: Any) -> None:
    """One line per registry mutation on the ``api.audit`` logger."""
    audit_logger.info(
        "%s %s id=%s user=%s%s", action, entity, entity_id, user.id,
        "".join(f" {k}={v}" for k, v in details.items()),
        extra={"user_id": user.id},
    )
