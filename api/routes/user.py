"""
Signed-in user endpoints.

GET /api/v1/user/geographic-location → hierarchy of the user's barangay
GET /api/v1/user/profile             → profile with the role's access level
"""

import sqlite3

from fastapi import APIRouter, Depends, HTTPException

from api.auth import CurrentUser, get_current_user, load_user
from api.database import get_db
from utils.psgc import hierarchy

router = APIRouter(prefix="/user", tags=["user"])

_PRIVATE_COLUMNS = ("password_hash",)


@router.get("/geographic-location", summary="Address hierarchy of the user's barangay")
def geographic_location(
    user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    """Feeds the selector's auto-population; 404 when no barangay is assigned."""
    if not user.barangay_code:
        raise HTTPException(status_code=404, detail="No barangay assigned to this account")
    result = hierarchy(conn, user.barangay_code)
    if result is None:
        raise HTTPException(status_code=404,
                            detail=f"Barangay '{user.barangay_code}' not found")
    return {"hierarchy": result}


@router.get("/profile", summary="Current user's profile")
def profile(
    user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    row = load_user(conn, user.id)
    if row is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    data = {k: row[k] for k in row.keys() if k not in _PRIVATE_COLUMNS}
    data["is_active"] = bool(data.get("is_active"))
    return data
