"""Shared SQL query builder utilities for the RBI API routes.

Provides the WHERE, ORDER BY and pagination pieces used by residents.py,
households.py, dashboard.py and download.py so list views and exports
filter identically.
"""

import math
from typing import Any

from utils.strings import escape_like

Scope = tuple[str, str | None] | None

SCOPE_COLUMNS = {"barangay_code", "city_municipality_code", "province_code", "region_code"}

RESIDENT_SORTS = {"created_at", "last_name", "first_name", "birthdate", "id"}
HOUSEHOLD_SORTS = {"created_at", "code", "household_number", "total_members"}


def scope_condition(scope: Scope, alias: str = "") -> tuple[str | None, list[Any]]:
    """Translate an access scope into a SQL condition.

    Args:
        scope: ``(column, value)`` from api.auth.access_scope(), or None for
            national access.
        alias: Optional table alias (``"r"`` gives ``r.barangay_code``).

    Returns:
        ``(condition, params)``; condition is None when unrestricted and
        ``"1=0"`` when the user is scoped but has no code on file.

    Raises:
        ValueError: If the scope column is not a geographic code column.
    """
    if scope is None:
        return None, []
    column, value = scope
    if column not in SCOPE_COLUMNS:
        raise ValueError(f"Invalid scope column: '{column}'")
    if not value:
        return "1=0", []
    prefix = f"{alias}." if alias else ""
    return f"{prefix}{column} = ?", [value]


def _join(conditions: list[str]) -> str:
    return "WHERE " + " AND ".join(conditions) if conditions else ""


def build_resident_where(
    scope: Scope = None,
    search: str | None = None,
    sex: str | None = None,
    civil_status: str | None = None,
    employment_status: str | None = None,
    household_code: str | None = None,
    barangay_code: str | None = None,
    is_voter: bool | None = None,
    alias: str = "r",
) -> tuple[str, list[Any]]:
    """Build the WHERE clause for resident lists and exports.

    Only active residents are included.  ``search`` is a case-insensitive
    contains match on first, middle and last name and email.

    Returns:
        Tuple of (where_clause_string, params_list); the clause always starts
        with "WHERE ".
    """
    p = f"{alias}." if alias else ""
    conditions: list[str] = [f"{p}is_active = 1"]
    params: list[Any] = []

    cond, cond_params = scope_condition(scope, alias)
    if cond:
        conditions.append(cond)
        params.extend(cond_params)

    if search:
        like = f"%{escape_like(search.lower())}%"
        conditions.append(
            "(" + " OR ".join(
                f"LOWER(COALESCE({p}{col}, '')) LIKE ? ESCAPE '\\'"
                for col in ("first_name", "middle_name", "last_name", "email")
            ) + ")"
        )
        params.extend([like] * 4)

    for column, value in (("sex", sex), ("civil_status", civil_status),
                          ("employment_status", employment_status),
                          ("household_code", household_code),
                          ("barangay_code", barangay_code)):
        if value:
            conditions.append(f"{p}{column} = ?")
            params.append(value)

    if is_voter is not None:
        conditions.append(f"{p}is_voter = ?")
        params.append(1 if is_voter else 0)

    return _join(conditions), params


def build_household_where(
    scope: Scope = None,
    search: str | None = None,
    barangay_code: str | None = None,
    alias: str = "h",
    head_alias: str | None = "hr",
) -> tuple[str, list[Any]]:
    """Build the WHERE clause for household lists and exports.

    ``search`` matches code, house number, street and subdivision, plus the
    head's name when *head_alias* names a joined residents table.
    """
    p = f"{alias}." if alias else ""
    conditions: list[str] = [f"{p}is_active = 1"]
    params: list[Any] = []

    cond, cond_params = scope_condition(scope, alias)
    if cond:
        conditions.append(cond)
        params.extend(cond_params)

    if barangay_code:
        conditions.append(f"{p}barangay_code = ?")
        params.append(barangay_code)

    if search:
        like = f"%{escape_like(search.lower())}%"
        cols = [f"{p}code", f"{p}house_number", f"{p}street_name", f"{p}subdivision"]
        if head_alias:
            cols += [f"{head_alias}.first_name", f"{head_alias}.last_name"]
        conditions.append(
            "(" + " OR ".join(f"LOWER(COALESCE({c}, '')) LIKE ? ESCAPE '\\'"
                              for c in cols) + ")"
        )
        params.extend([like] * len(cols))

    return _join(conditions), params


def build_order_clause(
    sort_by: str,
    sort_dir: str,
    allowed_sorts: set[str],
    default_sort: str = "created_at",
    alias: str = "",
    tiebreak: str | None = "id",
) -> str:
    """Build a safe SQL ORDER BY clause.

    Unknown columns fall back to *default_sort*; the tiebreak column keeps
    pagination stable when the sort column has duplicates.

    Returns:
        ORDER BY clause string, e.g. "ORDER BY r.created_at DESC, r.id DESC".
    """
    p = f"{alias}." if alias else ""
    col = sort_by if sort_by in allowed_sorts else default_sort
    direction = "DESC" if sort_dir.lower() == "desc" else "ASC"
    clause = f"ORDER BY {p}{col} {direction}"
    if tiebreak and tiebreak != col:
        clause += f", {p}{tiebreak} {direction}"
    return clause


def paginate(page: int, limit: int) -> tuple[int, int]:
    """Return ``(limit, offset)`` for a 1-based *page*."""
    page = max(page, 1)
    limit = max(limit, 1)
    return limit, (page - 1) * limit


def page_meta(total: int, page: int, limit: int) -> dict[str, Any]:
    """Pagination block returned next to ``items``."""
    pages = math.ceil(total / limit) if limit else 0
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "pages": pages,
        "has_next": page < pages,
        "has_prev": page > 1,
    }
