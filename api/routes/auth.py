"""
Authentication endpoints.

POST /api/v1/auth/sign-up   → create a barangay_staff account (201)
POST /api/v1/auth/sign-in   → bearer token + CSRF token
POST /api/v1/auth/sign-out  → revoke the session (204)
GET  /api/v1/auth/csrf      → CSRF token for the current session
GET  /api/v1/auth/me        → the signed-in user
"""

import logging
import sqlite3
import uuid

from fastapi import APIRouter, Depends, HTTPException, Response, status

from api.auth import (
    CurrentUser,
    authenticate,
    csrf_token_for,
    get_current_user,
    get_settings,
    issue_token,
    require_csrf,
    revoke_session,
    user_from_row,
)
from api.database import get_db
from api.models import SignInIn, SignUpIn, TokenOut, UserOut
from utils.psgc import barangay_geo_codes
from utils.sanitization import sanitize_email, sanitize_name, sanitize_psgc_code
from utils.security import hash_password
from utils.validation import FieldError, RecordValidationError, validate_email_format

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

MIN_PASSWORD_LENGTH = 8
SIGN_UP_ROLE = "barangay_staff"


@router.post(
    "/sign-up",
    status_code=status.HTTP_201_CREATED,
    summary="Register an account",
    responses={409: {"description": "Email already registered"},
               422: {"description": "Invalid email, short password or unknown barangay"}},
)
def sign_up(body: SignUpIn, conn: sqlite3.Connection = Depends(get_db)) -> dict:
    """Create an active barangay_staff account; geo codes follow the barangay."""
    email = sanitize_email(body.email)
    errors: list[FieldError] = []
    if not validate_email_format(email):
        errors.append(FieldError("email", "Invalid email format"))
    if len(body.password or "") < MIN_PASSWORD_LENGTH:
        errors.append(FieldError("password",
                                 f"Must be at least {MIN_PASSWORD_LENGTH} characters"))

    geo = {"barangay_code": None, "city_municipality_code": None,
           "province_code": None, "region_code": None}
    if body.barangay_code:
        found = barangay_geo_codes(conn, sanitize_psgc_code(body.barangay_code))
        if found is None:
            errors.append(FieldError("barangay_code", "Unknown barangay code"))
        else:
            geo = found
    if errors:
        raise RecordValidationError(errors)

    if conn.execute("SELECT 1 FROM user_profiles WHERE email = ?", (email,)).fetchone():
        raise HTTPException(status_code=409, detail="Email is already registered")

    user_id = str(uuid.uuid4())
    conn.execute(
        "INSERT INTO user_profiles (id, email, password_hash, first_name, last_name, role, "
        "barangay_code, city_municipality_code, province_code, region_code) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (user_id, email, hash_password(body.password, get_settings().bcrypt_rounds),
         sanitize_name(body.first_name) or None, sanitize_name(body.last_name) or None,
         SIGN_UP_ROLE, geo["barangay_code"], geo["city_municipality_code"],
         geo["province_code"], geo["region_code"]),
    )
    conn.commit()
    logger.info("Account created user=%s barangay=%s", user_id, geo["barangay_code"])
    return {"user_id": user_id, "email": email, "role": SIGN_UP_ROLE}


@router.post(
    "/sign-in",
    response_model=TokenOut,
    summary="Sign in",
    responses={401: {"description": "Bad credentials or inactive account"}},
)
def sign_in(body: SignInIn, conn: sqlite3.Connection = Depends(get_db)) -> dict:
    """Exchange email and password for a bearer token and its CSRF token."""
    row = authenticate(conn, sanitize_email(body.email), body.password)
    if row is None:
        raise HTTPException(status_code=401, detail="Invalid email or password",
                            headers={"WWW-Authenticate": "Bearer"})
    token, jti, expires_in = issue_token(conn, row)
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_in": expires_in,
        "csrf_token": csrf_token_for(jti),
        "user": user_from_row(row).to_dict(),
    }


@router.post("/sign-out", status_code=status.HTTP_204_NO_CONTENT, summary="Sign out")
def sign_out(user: CurrentUser = Depends(require_csrf),
             conn: sqlite3.Connection = Depends(get_db)) -> Response:
    """Delete the session so the token stops working immediately."""
    revoke_session(conn, user.jti or "")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/csrf", summary="CSRF token for the current session")
def csrf(user: CurrentUser = Depends(get_current_user)) -> dict:
    return {"csrf_token": csrf_token_for(user.jti or "")}


@router.get("/me", response_model=UserOut, summary="Current user")
def me(user: CurrentUser = Depends(get_current_user)) -> dict:
    return user.to_dict()
