"""
Resident endpoints.

GET    /api/v1/residents         → paginated list in the caller's scope
GET    /api/v1/residents/{id}    → detail with household, geo info and classification
POST   /api/v1/residents         → create (201)
PUT    /api/v1/residents/{id}    → partial update
DELETE /api/v1/residents/{id}    → soft delete

The write helpers (prepare_resident, insert_resident, recount_household, ...)
are shared with the household routes, which register members in the same
transaction as the household itself.
"""

import logging
import sqlite3
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.auth import CurrentUser, access_scope, audit, get_current_user, in_scope, require_csrf
from api.database import get_db
from api.models import ResidentCreate, ResidentUpdate
from api.routes.dashboard import invalidate_stats
from utils.database import transaction
from utils.demographics import calculate_age, classify_resident
from utils.psgc import barangay_geo_codes, full_address, lookup_barangay
from utils.query import (
    RESIDENT_SORTS,
    build_order_clause,
    build_resident_where,
    page_meta,
    paginate,
)
from utils.sanitization import sanitize_object_by_field_types
from utils.security import philsys_hash, philsys_last4
from utils.strings import build_search_text, full_name
from utils.validation import (
    FieldError,
    RecordValidationError,
    validate_resident_data,
    validate_sanitized,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/residents", tags=["residents"])

GEO_COLUMNS = ("barangay_code", "city_municipality_code", "province_code", "region_code")

BOOL_FIELDS = ("is_voter", "is_resident_voter", "is_pwd", "is_solo_parent",
               "is_ofw", "is_indigenous")

# Columns written straight from a (sanitized) payload
RESIDENT_COLUMNS = (
    "first_name", "middle_name", "last_name", "extension_name", "birthdate",
    "birth_place_code", "sex", "civil_status", "citizenship",
    "education_attainment", "employment_status", "occupation",
    "mobile_number", "telephone_number", "email", "philsys_last4",
    "philsys_hash", "height", "weight", "ethnicity", "religion",
    "mother_maiden_first", "mother_maiden_middle", "mother_maiden_last",
    *BOOL_FIELDS,
    "previous_barangay_code", "date_of_transfer", "reason_for_migration",
    "relationship_to_head",
)

RESIDENT_DEFAULTS = {
    "civil_status": "single",
    "citizenship": "filipino",
    "religion": "roman_catholic",
}

_HIDDEN_COLUMNS = ("philsys_hash", "search_text")


# ── Write helpers ─────────────────────────────────────────────────────────────

def prepare_resident(payload: dict[str, Any], partial: bool = False) -> dict[str, Any]:
    """Sanitize and validate a resident payload.

    The PhilSys card number is replaced by ``philsys_last4`` and
    ``philsys_hash``; defaults are applied on create.

    Raises:
        RecordValidationError: With every failed field check.
    """
    data = sanitize_object_by_field_types(payload)
    data = {k: (None if v == "" else v) for k, v in data.items()}
    errors = validate_sanitized(payload, data)
    emptied = {e.field for e in errors}
    errors += [e for e in validate_resident_data(data, partial=partial)
               if e.field not in emptied]
    if errors:
        raise RecordValidationError(errors)

    if not partial:
        for field, default in RESIDENT_DEFAULTS.items():
            if data.get(field) is None:
                data[field] = default

    if "philsys_card_number" in data:
        card = data.pop("philsys_card_number")
        data["philsys_last4"] = philsys_last4(card) if card else None
        data["philsys_hash"] = philsys_hash(card) if card else None

    for field in BOOL_FIELDS:
        if data.get(field) is not None:
            data[field] = int(bool(data[field]))
    return data


def ensure_unique_philsys(conn: sqlite3.Connection, data: dict[str, Any],
                          resident_id: int | None = None) -> None:
    digest = data.get("philsys_hash")
    if not digest:
        return
    row = conn.execute(
        "SELECT id FROM residents WHERE philsys_hash = ? AND id IS NOT ?",
        (digest, resident_id),
    ).fetchone()
    if row is not None:
        raise HTTPException(status_code=409,
                            detail="PhilSys number is already registered to another resident")


def household_geo(conn: sqlite3.Connection, user: CurrentUser, code: str) -> dict[str, Any]:
    """Geo codes of an active, in-scope household."""
    row = conn.execute(
        "SELECT * FROM households WHERE code = ? AND is_active = 1", (code,)
    ).fetchone()
    if row is None or not in_scope(user, row):
        raise RecordValidationError([FieldError("household_code", "Unknown household")])
    return {col: row[col] for col in GEO_COLUMNS}


def barangay_geo(conn: sqlite3.Connection, user: CurrentUser,
                 code: str | None, field: str = "barangay_code") -> dict[str, Any]:
    """Geo codes of a barangay the user may write to.

    Raises:
        RecordValidationError: Missing or unknown barangay.
        HTTPException: 403 when the barangay is outside the user's scope.
    """
    if not code:
        raise RecordValidationError([FieldError(field, "This field is required")])
    geo = barangay_geo_codes(conn, code)
    if geo is None:
        raise RecordValidationError([FieldError(field, "Unknown barangay code")])
    if not in_scope(user, geo):
        raise HTTPException(status_code=403, detail="Barangay is outside your jurisdiction")
    return geo


def insert_resident(conn: sqlite3.Connection, data: dict[str, Any], geo: dict[str, Any],
                    user: CurrentUser, household_code: str | None = None) -> int:
    """INSERT one prepared resident (no commit) and return its id."""
    values = {c: data[c] for c in RESIDENT_COLUMNS if data.get(c) is not None}
    values.update(geo)
    values["household_code"] = household_code
    values["search_text"] = build_search_text(
        data.get("first_name"), data.get("middle_name"), data.get("last_name"),
        data.get("extension_name"), data.get("email"))
    values["created_by"] = user.id
    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    cur = conn.execute(f"INSERT INTO residents ({columns}) VALUES ({placeholders})",
                       list(values.values()))
    return cur.lastrowid


def recount_household(conn: sqlite3.Connection, code: str | None) -> None:
    """Refresh ``total_members`` from the active residents (no commit)."""
    if not code:
        return
    conn.execute(
        "UPDATE households SET total_members = "
        "(SELECT COUNT(*) FROM residents WHERE household_code = ? AND is_active = 1), "
        "updated_at = datetime('now') WHERE code = ?",
        (code, code),
    )


def clear_head_if(conn: sqlite3.Connection, code: str | None, resident_id: int) -> None:
    if code:
        conn.execute(
            "UPDATE households SET household_head_id = NULL "
            "WHERE code = ? AND household_head_id = ?",
            (code, resident_id),
        )


def public_resident(row: sqlite3.Row) -> dict[str, Any]:
    """Row as a response dict: hidden columns dropped, age and full_name added."""
    item = {k: row[k] for k in row.keys() if k not in _HIDDEN_COLUMNS}
    for field in BOOL_FIELDS + ("is_active",):
        if field in item and item[field] is not None:
            item[field] = bool(item[field])
    item["age"] = calculate_age(item.get("birthdate"))
    item["full_name"] = full_name(row)
    return item


def load_resident(conn: sqlite3.Connection, user: CurrentUser, resident_id: int) -> sqlite3.Row:
    """Active, in-scope resident or 404."""
    row = conn.execute(
        "SELECT * FROM residents WHERE id = ? AND is_active = 1", (resident_id,)
    ).fetchone()
    if row is None or not in_scope(user, row):
        raise HTTPException(status_code=404, detail=f"Resident {resident_id} not found")
    return row


# ── Detail helpers ────────────────────────────────────────────────────────────

def _geo_info(conn: sqlite3.Connection, barangay_code: str | None) -> dict[str, Any] | None:
    info = lookup_barangay(conn, barangay_code) if barangay_code else None
    if info is None:
        return None
    return {
        "region_name": info["region_name"],
        "province_name": info["province_name"],
        "city_municipality_name": info["city_name"],
        "barangay_name": info["barangay_name"],
        "full_address": full_address(info["barangay_name"], info["city_name"],
                                     info["province_name"], info["region_name"]),
    }


def _birth_place_info(conn: sqlite3.Connection, code: str | None) -> dict[str, Any] | None:
    """Resolve a birthplace code at barangay, city or province level."""
    if not code:
        return None
    info = lookup_barangay(conn, code)
    if info is not None:
        return {"code": code, "level": "barangay", "name": info["barangay_name"],
                "full_address": full_address(info["barangay_name"], info["city_name"],
                                             info["province_name"], info["region_name"])}
    row = conn.execute(
        "SELECT c.name, p.name AS province_name, r.name AS region_name "
        "FROM psgc_cities_municipalities c "
        "LEFT JOIN psgc_provinces p ON p.code = c.province_code "
        "LEFT JOIN psgc_regions r ON r.code = COALESCE(c.region_code, p.region_code) "
        "WHERE c.code = ?",
        (code,),
    ).fetchone()
    if row is not None:
        return {"code": code, "level": "city", "name": row["name"],
                "full_address": full_address(row["name"], row["province_name"],
                                             row["region_name"])}
    row = conn.execute(
        "SELECT p.name, r.name AS region_name FROM psgc_provinces p "
        "LEFT JOIN psgc_regions r ON r.code = p.region_code WHERE p.code = ?",
        (code,),
    ).fetchone()
    if row is not None:
        return {"code": code, "level": "province", "name": row["name"],
                "full_address": full_address(row["name"], row["region_name"])}
    return None


# ── Endpoints ─────────────────────────────────────────────────────────────────

@router.get("", summary="List residents")
def list_residents(
    search: str | None = Query(None, description="Name or email contains"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sex: str | None = Query(None),
    civil_status: str | None = Query(None),
    employment_status: str | None = Query(None),
    household_code: str | None = Query(None),
    barangay_code: str | None = Query(None),
    is_voter: bool | None = Query(None),
    sort_by: str = Query("created_at", description=f"One of {sorted(RESIDENT_SORTS)}"),
    sort_dir: str = Query("desc", pattern="^(asc|desc)$"),
    user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    """Active residents in scope, newest first unless *sort_by* says otherwise."""
    where, params = build_resident_where(
        access_scope(user), search=search, sex=sex, civil_status=civil_status,
        employment_status=employment_status, household_code=household_code,
        barangay_code=barangay_code, is_voter=is_voter,
    )
    total = conn.execute(f"SELECT COUNT(*) FROM residents r {where}", params).fetchone()[0]
    order = build_order_clause(sort_by, sort_dir, RESIDENT_SORTS, alias="r")
    lim, offset = paginate(page, limit)
    rows = conn.execute(
        f"SELECT r.* FROM residents r {where} {order} LIMIT ? OFFSET ?",
        params + [lim, offset],
    ).fetchall()
    return {"items": [public_resident(r) for r in rows], **page_meta(total, page, limit)}


@router.get("/{resident_id}", summary="Resident detail")
def get_resident(
    resident_id: int,
    user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    row = load_resident(conn, user, resident_id)
    result = public_resident(row)

    household = None
    if row["household_code"]:
        hh = conn.execute(
            "SELECT code, household_number, house_number, street_name, subdivision, "
            "household_type, tenure_status, total_members, household_head_id "
            "FROM households WHERE code = ?",
            (row["household_code"],),
        ).fetchone()
        household = dict(hh) if hh else None

    result["household"] = household
    result["geo_info"] = _geo_info(conn, row["barangay_code"])
    result["birth_place_info"] = _birth_place_info(conn, row["birth_place_code"])
    result["classification"] = classify_resident(row)
    return result


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create a resident")
def create_resident(
    body: ResidentCreate,
    user: CurrentUser = Depends(require_csrf),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    """Geo codes come from the household, else the barangay, else the user's barangay.

    The user's barangay is used only when ``barangay_code`` is absent.
    """
    data = prepare_resident(body.model_dump(exclude_none=True))
    household_code = data.get("household_code")
    if household_code:
        geo = household_geo(conn, user, household_code)
    elif "barangay_code" in data:
        geo = barangay_geo(conn, user, data["barangay_code"])
    else:
        geo = barangay_geo(conn, user, user.barangay_code)
    ensure_unique_philsys(conn, data)

    try:
        with transaction(conn):
            resident_id = insert_resident(conn, data, geo, user, household_code)
            recount_household(conn, household_code)
    except sqlite3.IntegrityError as exc:
        logger.warning("Resident registration rejected: %s", exc)
        raise HTTPException(status_code=409,
                            detail="Resident conflicts with an existing record")

    invalidate_stats()
    audit("create", "resident", resident_id, user, barangay=geo["barangay_code"])
    return {"resident_id": resident_id, "message": "Resident created successfully"}


@router.put("/{resident_id}", summary="Update a resident")
def update_resident(
    resident_id: int,
    body: ResidentUpdate,
    user: CurrentUser = Depends(require_csrf),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    """Partial update; fields absent from the body are left unchanged.

    Setting ``household_code`` moves the resident (geo codes follow the new
    household); setting it to null detaches them.  ``barangay_code`` can only
    change for residents outside a household.
    """
    current = load_resident(conn, user, resident_id)
    data = prepare_resident(body.model_dump(exclude_unset=True), partial=True)

    changes = {c: data[c] for c in RESIDENT_COLUMNS if c in data}
    old_household = current["household_code"]
    new_household = old_household
    if "household_code" in data:
        new_household = data["household_code"]
        changes["household_code"] = new_household
        if new_household and new_household != old_household:
            changes.update(household_geo(conn, user, new_household))
    elif data.get("barangay_code") and data["barangay_code"] != current["barangay_code"]:
        if old_household:
            raise HTTPException(
                status_code=400,
                detail="Resident belongs to a household; move the membership instead",
            )
        changes.update(barangay_geo(conn, user, data["barangay_code"]))
    ensure_unique_philsys(conn, data, resident_id)

    if not changes:
        return {"resident_id": resident_id, "message": "No changes"}

    merged = {**dict(current), **changes}
    changes["search_text"] = build_search_text(
        merged["first_name"], merged["middle_name"], merged["last_name"],
        merged["extension_name"], merged["email"])
    assignments = ", ".join(f"{c} = ?" for c in changes)

    with transaction(conn):
        conn.execute(
            f"UPDATE residents SET {assignments}, updated_at = datetime('now') WHERE id = ?",
            list(changes.values()) + [resident_id],
        )
        if new_household != old_household:
            clear_head_if(conn, old_household, resident_id)
            recount_household(conn, old_household)
            recount_household(conn, new_household)

    invalidate_stats()
    audit("update", "resident", resident_id, user,
          fields=",".join(sorted(c for c in changes if c != "search_text")))
    return {"resident_id": resident_id, "message": "Resident updated successfully"}


@router.delete("/{resident_id}", summary="Delete a resident")
def delete_resident(
    resident_id: int,
    user: CurrentUser = Depends(require_csrf),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    """Soft delete: the row is kept with ``is_active = 0``."""
    current = load_resident(conn, user, resident_id)
    household_code = current["household_code"]
    with transaction(conn):
        conn.execute(
            "UPDATE residents SET is_active = 0, updated_at = datetime('now') WHERE id = ?",
            (resident_id,),
        )
        clear_head_if(conn, household_code, resident_id)
        recount_household(conn, household_code)

    invalidate_stats()
    audit("delete", "resident", resident_id, user)
    return {"resident_id": resident_id, "message": "Resident deleted successfully"}
