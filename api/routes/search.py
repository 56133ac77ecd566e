"""
GET /api/v1/search: typeahead backend for the command menu.

Residents are matched through the ``residents_fts`` index with an AND-joined
prefix query; households by code, house number and street.  Results are
scoped to the caller.  A failing query is logged and contributes no rows.
"""

import logging
import sqlite3
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from api.auth import CurrentUser, access_scope, get_current_user
from api.database import get_db
from utils.query import Scope, scope_condition
from utils.sanitization import sanitize_search_query
from utils.strings import build_fts_prefix_query, escape_like, full_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["search"])

SEARCH_TYPES = ("resident", "household")
_SUGGEST_FIELDS = ("first_name", "last_name")


def _parse_types(types: str) -> list[str]:
    wanted = [t.strip().lower() for t in types.split(",") if t.strip()]
    unknown = [t for t in wanted if t not in SEARCH_TYPES]
    if unknown:
        raise HTTPException(status_code=400,
                            detail=f"Unknown type(s): {', '.join(unknown)}. "
                                   f"Use any of: {', '.join(SEARCH_TYPES)}")
    return wanted or list(SEARCH_TYPES)


def _scope_sql(scope: Scope, alias: str) -> tuple[str, list[Any]]:
    cond, params = scope_condition(scope, alias)
    return (f" AND {cond}" if cond else ""), params


def _search_residents(conn: sqlite3.Connection, query: str, scope: Scope,
                      limit: int) -> list[dict[str, Any]]:
    fts_query = build_fts_prefix_query(query)
    if not fts_query:
        return []
    scope_sql, scope_params = _scope_sql(scope, "r")
    try:
        rows = conn.execute(
            "SELECT r.id, r.first_name, r.middle_name, r.last_name, r.extension_name, "
            "r.household_code, r.birthdate "
            "FROM residents_fts JOIN residents r ON r.id = residents_fts.rowid "
            f"WHERE residents_fts MATCH ? AND r.is_active = 1{scope_sql} "
            "ORDER BY residents_fts.rank LIMIT ?",
            [fts_query, *scope_params, limit],
        ).fetchall()
    except sqlite3.Error as exc:
        logger.warning("Resident search failed for %r: %s", query, exc)
        return []
    return [
        {
            "id": str(r["id"]),
            "type": "resident",
            "title": full_name(r),
            "subtitle": (f"Household {r['household_code']}" if r["household_code"]
                         else "No household"),
            "href": f"/residents/{r['id']}",
        }
        for r in rows
    ]


def _search_households(conn: sqlite3.Connection, query: str, scope: Scope,
                       limit: int) -> list[dict[str, Any]]:
    if not query:
        return []
    like = f"%{escape_like(query.lower())}%"
    scope_sql, scope_params = _scope_sql(scope, "h")
    try:
        rows = conn.execute(
            "SELECT h.code, h.house_number, h.street_name, h.total_members "
            "FROM households h WHERE h.is_active = 1 AND ("
            "LOWER(h.code) LIKE ? ESCAPE '\\' "
            "OR LOWER(COALESCE(h.house_number, '')) LIKE ? ESCAPE '\\' "
            f"OR LOWER(COALESCE(h.street_name, '')) LIKE ? ESCAPE '\\'){scope_sql} "
            "ORDER BY h.code LIMIT ?",
            [like, like, like, *scope_params, limit],
        ).fetchall()
    except sqlite3.Error as exc:
        logger.warning("Household search failed for %r: %s", query, exc)
        return []
    results = []
    for r in rows:
        street = " ".join(p for p in (r["house_number"], r["street_name"]) if p)
        members = r["total_members"] or 0
        results.append({
            "id": r["code"],
            "type": "household",
            "title": f"Household {r['code']}",
            "subtitle": ", ".join(p for p in (street, f"{members} member(s)") if p),
            "href": f"/households/{r['code']}",
        })
    return results


@router.get("", summary="Search residents and households")
def search(
    q: str = Query("", description="Free text"),
    limit: int = Query(5, ge=1, le=50, description="Max results per type"),
    types: str = Query("resident,household", description="Comma list of result types"),
    user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    wanted = _parse_types(types)
    cleaned = sanitize_search_query(q)
    scope = access_scope(user)

    results: list[dict[str, Any]] = []
    if "resident" in wanted:
        results.extend(_search_residents(conn, cleaned, scope, limit))
    if "household" in wanted:
        results.extend(_search_households(conn, cleaned, scope, limit))
    return {"query": q, "total": len(results), "results": results}


@router.get("/suggest", summary="Name completions")
def suggest(
    q: str = Query("", description="Name prefix"),
    limit: int = Query(5, ge=1, le=20),
    user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    """First and last names starting with *q*, de-duplicated case-insensitively."""
    cleaned = sanitize_search_query(q)
    if not cleaned:
        return {"query": q, "suggestions": []}

    prefix = f"{escape_like(cleaned.lower())}%"
    scope_sql, scope_params = _scope_sql(access_scope(user), "r")
    seen: set[str] = set()
    suggestions: list[dict[str, str]] = []
    for field in _SUGGEST_FIELDS:
        rows = conn.execute(
            f"SELECT DISTINCT r.{field} AS value FROM residents r "
            f"WHERE r.is_active = 1 AND LOWER(r.{field}) LIKE ? ESCAPE '\\'{scope_sql} "
            f"ORDER BY r.{field} LIMIT ?",
            [prefix, *scope_params, limit],
        ).fetchall()
        for row in rows:
            key = row["value"].lower()
            if key in seen:
                continue
            seen.add(key)
            suggestions.append({"value": row["value"], "field": field})
    return {"query": q, "suggestions": suggestions[:limit]}
