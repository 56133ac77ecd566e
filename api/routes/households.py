"""
Household endpoints.

GET    /api/v1/households                          → paginated list in scope
GET    /api/v1/households/stats                    → size and tenure aggregates
GET    /api/v1/households/{code}                   → detail with members and head
POST   /api/v1/households                          → register with members (201)
PUT    /api/v1/households/{code}                   → partial update
DELETE /api/v1/households/{code}                   → soft delete (409 with members)
GET    /api/v1/households/{code}/members           → active members
POST   /api/v1/households/{code}/members           → move a resident in
DELETE /api/v1/households/{code}/members/{id}      → detach a member

Household codes are ``<barangay_code>-<household_number:06d>``.
"""

import logging
import sqlite3
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.auth import CurrentUser, access_scope, audit, get_current_user, in_scope, require_csrf
from api.database import get_db
from api.models import HouseholdCreate, HouseholdUpdate, MemberAdd
from api.routes.dashboard import invalidate_stats
from api.routes.residents import (
    GEO_COLUMNS,
    barangay_geo,
    clear_head_if,
    ensure_unique_philsys,
    insert_resident,
    load_resident,
    prepare_resident,
    public_resident,
    recount_household,
)
from utils.database import transaction
from utils.demographics import count_distribution
from utils.psgc import full_address
from utils.query import (
    HOUSEHOLD_SORTS,
    build_household_where,
    build_order_clause,
    page_meta,
    paginate,
)
from utils.sanitization import sanitize_input, sanitize_psgc_code
from utils.validation import (
    FieldError,
    RecordValidationError,
    validate_enum,
    validate_psgc_code,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/households", tags=["households"])

ADDRESS_FIELDS = ("street_name", "house_number", "subdivision")
MAX_HOUSEHOLD_NUMBER = 999999

_LIST_SQL = """
    SELECT h.*, b.name AS barangay_name,
           hr.first_name AS head_first_name, hr.middle_name AS head_middle_name,
           hr.last_name AS head_last_name, hr.extension_name AS head_extension_name
    FROM households h
    LEFT JOIN residents hr ON hr.id = h.household_head_id AND hr.is_active = 1
    LEFT JOIN psgc_barangays b ON b.code = h.barangay_code
"""


def household_code(barangay_code: str, number: int) -> str:
    return f"{barangay_code}-{number:06d}"


def _address(row: sqlite3.Row) -> str:
    street = " ".join(p for p in (row["house_number"], row["street_name"]) if p)
    return full_address(street, row["subdivision"], row["barangay_name"])


def _head_name(row: sqlite3.Row) -> str | None:
    parts = [row[k] for k in ("head_first_name", "head_middle_name",
                              "head_last_name", "head_extension_name") if row[k]]
    return " ".join(parts) or None


def _household_item(row: sqlite3.Row) -> dict[str, Any]:
    item = {k: row[k] for k in row.keys() if not k.startswith("head_")}
    item["is_active"] = bool(item["is_active"])
    item["head_name"] = _head_name(row)
    item["address"] = _address(row)
    return item


def _clean_household_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Sanitize address parts and check the household enums."""
    cleaned = dict(data)
    for field in ("household_type", "tenure_status"):
        if cleaned.get(field) == "":
            cleaned[field] = None
    for field in ADDRESS_FIELDS:
        if isinstance(cleaned.get(field), str):
            cleaned[field] = sanitize_input(cleaned[field], max_length=200) or None
    errors = [e for e in (validate_enum("household_type", cleaned.get("household_type")),
                          validate_enum("tenure_status", cleaned.get("tenure_status"))) if e]
    if errors:
        raise RecordValidationError(errors)
    return cleaned


def _load_household(conn: sqlite3.Connection, user: CurrentUser, code: str) -> sqlite3.Row:
    row = conn.execute(
        _LIST_SQL + " WHERE h.code = ? AND h.is_active = 1", (code,)
    ).fetchone()
    if row is None or not in_scope(user, row):
        raise HTTPException(status_code=404, detail=f"Household '{code}' not found")
    return row


def _members(conn: sqlite3.Connection, code: str, head_id: int | None) -> list[dict[str, Any]]:
    rows = conn.execute(
        "SELECT * FROM residents WHERE household_code = ? AND is_active = 1 "
        "ORDER BY (id = ?) DESC, id",
        (code, head_id or 0),
    ).fetchall()
    return [public_resident(r) for r in rows]


# ── Queries ───────────────────────────────────────────────────────────────────

@router.get("", summary="List households")
def list_households(
    search: str | None = Query(None, description="Code, address or head name contains"),
    barangay_code: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at", description=f"One of {sorted(HOUSEHOLD_SORTS)}"),
    sort_dir: str = Query("desc", pattern="^(asc|desc)$"),
    user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    where, params = build_household_where(access_scope(user), search=search,
                                          barangay_code=barangay_code)
    total = conn.execute(
        "SELECT COUNT(*) FROM households h "
        "LEFT JOIN residents hr ON hr.id = h.household_head_id AND hr.is_active = 1 "
        f"{where}",
        params,
    ).fetchone()[0]
    order = build_order_clause(sort_by, sort_dir, HOUSEHOLD_SORTS, alias="h", tiebreak="code")
    lim, offset = paginate(page, limit)
    rows = conn.execute(
        f"{_LIST_SQL} {where} {order} LIMIT ? OFFSET ?",
        params + [lim, offset],
    ).fetchall()
    return {"items": [_household_item(r) for r in rows], **page_meta(total, page, limit)}


@router.get("/stats", summary="Household statistics")
def household_stats(
    barangay_code: str | None = Query(None),
    user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    where, params = build_household_where(access_scope(user), barangay_code=barangay_code,
                                          head_alias=None)
    rows = conn.execute(
        f"SELECT h.code, h.total_members, h.household_type, h.tenure_status "
        f"FROM households h {where}",
        params,
    ).fetchall()
    total_members = sum(r["total_members"] or 0 for r in rows)
    largest = max(rows, key=lambda r: (r["total_members"] or 0, r["code"]), default=None)
    return {
        "total_households": len(rows),
        "total_members": total_members,
        "average_household_size": round(total_members / len(rows), 2) if rows else 0.0,
        "by_household_type": count_distribution(rows, "household_type"),
        "by_tenure_status": count_distribution(rows, "tenure_status"),
        "largest_household": (
            {"code": largest["code"], "total_members": largest["total_members"]}
            if largest is not None else None
        ),
    }


@router.get("/{code}", summary="Household detail")
def get_household(
    code: str,
    user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    row = _load_household(conn, user, code)
    result = _household_item(row)
    members = _members(conn, code, row["household_head_id"])
    result["members"] = members
    result["head"] = next((m for m in members if m["id"] == row["household_head_id"]), None)
    return result


@router.get("/{code}/members", summary="Active members of a household")
def list_members(
    code: str,
    user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    row = _load_household(conn, user, code)
    members = _members(conn, code, row["household_head_id"])
    return {"household_code": code, "members": members, "count": len(members)}


# ── Mutations ─────────────────────────────────────────────────────────────────

@router.post("", status_code=status.HTTP_201_CREATED, summary="Register a household")
def create_household(
    body: HouseholdCreate,
    user: CurrentUser = Depends(require_csrf),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    """Write the household and all its members in one transaction.

    A member failing validation rejects the whole registration with a 422
    whose field paths carry the member index (``members[1].birthdate``).
    """
    fields = _clean_household_fields(body.model_dump(exclude={"members"}))
    if body.barangay_code is None:
        geo = barangay_geo(conn, user, user.barangay_code)
    else:
        requested = sanitize_psgc_code(body.barangay_code)
        if not validate_psgc_code(requested):
            raise RecordValidationError(
                [FieldError("barangay_code", "Must be a 9-10 digit PSGC code")])
        geo = barangay_geo(conn, user, requested)
    barangay = geo["barangay_code"]

    members: list[dict[str, Any]] = []
    for i, member in enumerate(body.members):
        try:
            data = prepare_resident(member.model_dump(exclude_none=True))
        except RecordValidationError as exc:
            raise exc.prefixed(f"members[{i}].") from exc
        ensure_unique_philsys(conn, data)
        members.append(data)

    head_index = body.household_head_index or 0
    if members and head_index >= len(members):
        raise RecordValidationError(
            [FieldError("household_head_index", "Must point at one of the members")])

    number = body.household_number
    if number is None:
        number = conn.execute(
            "SELECT COALESCE(MAX(household_number), 0) + 1 FROM households "
            "WHERE barangay_code = ?",
            (barangay,),
        ).fetchone()[0]
        if number > MAX_HOUSEHOLD_NUMBER:
            raise HTTPException(status_code=409,
                                detail="No household numbers left in this barangay")
    code = household_code(barangay, number)
    if conn.execute("SELECT 1 FROM households WHERE code = ?", (code,)).fetchone():
        raise HTTPException(status_code=409, detail=f"Household '{code}' already exists")

    try:
        with transaction(conn):
            conn.execute(
                "INSERT INTO households (code, household_number, barangay_code, "
                "city_municipality_code, province_code, region_code, street_name, "
                "house_number, subdivision, household_type, tenure_status, "
                "monthly_income, created_by) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (code, number, barangay, geo["city_municipality_code"], geo["province_code"],
                 geo["region_code"], fields.get("street_name"), fields.get("house_number"),
                 fields.get("subdivision"), fields.get("household_type"),
                 fields.get("tenure_status"), fields.get("monthly_income"), user.id),
            )
            member_ids = [insert_resident(conn, data, geo, user, code) for data in members]
            head_id = member_ids[head_index] if member_ids else None
            if head_id is not None:
                conn.execute("UPDATE households SET household_head_id = ? WHERE code = ?",
                             (head_id, code))
            recount_household(conn, code)
    except sqlite3.IntegrityError as exc:
        logger.warning("Household registration rejected code=%s: %s", code, exc)
        raise HTTPException(status_code=409,
                            detail="Household or member conflicts with an existing record")

    invalidate_stats()
    audit("create", "household", code, user, members=len(member_ids))
    return {
        "household_code": code,
        "household_number": number,
        "household_head_id": head_id,
        "member_ids": member_ids,
        "message": "Household created successfully",
    }


@router.put("/{code}", summary="Update a household")
def update_household(
    code: str,
    body: HouseholdUpdate,
    user: CurrentUser = Depends(require_csrf),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    _load_household(conn, user, code)
    changes = _clean_household_fields(body.model_dump(exclude_unset=True))

    head_id = changes.get("household_head_id")
    if head_id is not None:
        member = conn.execute(
            "SELECT 1 FROM residents WHERE id = ? AND household_code = ? AND is_active = 1",
            (head_id, code),
        ).fetchone()
        if member is None:
            raise HTTPException(status_code=400,
                                detail=f"Resident {head_id} is not an active member of {code}")

    if not changes:
        return {"household_code": code, "message": "No changes"}

    assignments = ", ".join(f"{c} = ?" for c in changes)
    conn.execute(
        f"UPDATE households SET {assignments}, updated_at = datetime('now') WHERE code = ?",
        list(changes.values()) + [code],
    )
    conn.commit()

    invalidate_stats()
    audit("update", "household", code, user, fields=",".join(sorted(changes)))
    return {"household_code": code, "message": "Household updated successfully"}


@router.delete("/{code}", summary="Delete a household")
def delete_household(
    code: str,
    user: CurrentUser = Depends(require_csrf),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    """Soft delete; refused while active members remain."""
    _load_household(conn, user, code)
    remaining = conn.execute(
        "SELECT COUNT(*) FROM residents WHERE household_code = ? AND is_active = 1", (code,)
    ).fetchone()[0]
    if remaining:
        raise HTTPException(
            status_code=409,
            detail=f"Household '{code}' still has {remaining} active member(s)",
        )
    conn.execute(
        "UPDATE households SET is_active = 0, household_head_id = NULL, "
        "updated_at = datetime('now') WHERE code = ?",
        (code,),
    )
    conn.commit()

    invalidate_stats()
    audit("delete", "household", code, user)
    return {"household_code": code, "message": "Household deleted successfully"}


@router.post("/{code}/members", summary="Move a resident into a household")
def add_member(
    code: str,
    body: MemberAdd,
    user: CurrentUser = Depends(require_csrf),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    """The resident's geo codes follow the household; both counts are refreshed."""
    household = _load_household(conn, user, code)
    resident = load_resident(conn, user, body.resident_id)
    old_code = resident["household_code"]
    if old_code == code:
        raise HTTPException(status_code=409,
                            detail=f"Resident {body.resident_id} is already a member of {code}")

    relationship = sanitize_input(body.relationship_to_head, max_length=50) or None
    geo_values = [household[c] for c in GEO_COLUMNS]
    with transaction(conn):
        conn.execute(
            "UPDATE residents SET household_code = ?, relationship_to_head = ?, "
            + ", ".join(f"{c} = ?" for c in GEO_COLUMNS)
            + ", updated_at = datetime('now') WHERE id = ?",
            [code, relationship, *geo_values, body.resident_id],
        )
        clear_head_if(conn, old_code, body.resident_id)
        recount_household(conn, old_code)
        recount_household(conn, code)

    invalidate_stats()
    audit("add_member", "household", code, user, resident=body.resident_id,
          previous=old_code)
    return {"household_code": code, "resident_id": body.resident_id,
            "message": "Member added successfully"}


@router.delete("/{code}/members/{resident_id}", summary="Detach a member")
def remove_member(
    code: str,
    resident_id: int,
    user: CurrentUser = Depends(require_csrf),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    _load_household(conn, user, code)
    resident = load_resident(conn, user, resident_id)
    if resident["household_code"] != code:
        raise HTTPException(status_code=404,
                            detail=f"Resident {resident_id} is not a member of {code}")

    with transaction(conn):
        conn.execute(
            "UPDATE residents SET household_code = NULL, relationship_to_head = NULL, "
            "updated_at = datetime('now') WHERE id = ?",
            (resident_id,),
        )
        clear_head_if(conn, code, resident_id)
        recount_household(conn, code)

    invalidate_stats()
    audit("remove_member", "household", code, user, resident=resident_id)
    return {"household_code": code, "resident_id": resident_id,
            "message": "Member removed successfully"}
