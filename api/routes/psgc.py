"""
GET /api/v1/psgc/search: free-text lookup across the PSGC levels.

Queries are normalised and expanded with common abbreviations ("qc",
"sta", "brgy", ...) before matching, so "sta rosa" finds "Santa Rosa".
"""

import logging
import sqlite3
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from api.database import get_db
from utils.psgc import LEVELS, full_address, normalize_query, query_variations
from utils.strings import escape_like

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/psgc", tags=["psgc"])

MIN_QUERY_LENGTH = 2

# level -> SELECT returning the common result columns for items of that level
_LEVEL_SQL = {
    "region": """
        SELECT r.code, r.name, 'region' AS level,
               r.code AS region_code, r.name AS region_name,
               NULL AS province_code, NULL AS province_name,
               NULL AS city_code, NULL AS city_name
        FROM psgc_regions r
    """,
    "province": """
        SELECT p.code, p.name, 'province' AS level,
               r.code AS region_code, r.name AS region_name,
               p.code AS province_code, p.name AS province_name,
               NULL AS city_code, NULL AS city_name
        FROM psgc_provinces p
        LEFT JOIN psgc_regions r ON r.code = p.region_code
    """,
    "city": """
        SELECT c.code, c.name, 'city' AS level,
               r.code AS region_code, r.name AS region_name,
               p.code AS province_code, p.name AS province_name,
               c.code AS city_code, c.name AS city_name
        FROM psgc_cities_municipalities c
        LEFT JOIN psgc_provinces p ON p.code = c.province_code
        LEFT JOIN psgc_regions r ON r.code = COALESCE(c.region_code, p.region_code)
    """,
    "barangay": """
        SELECT b.code, b.name, 'barangay' AS level,
               r.code AS region_code, r.name AS region_name,
               p.code AS province_code, p.name AS province_name,
               c.code AS city_code, c.name AS city_name
        FROM psgc_barangays b
        JOIN psgc_cities_municipalities c ON c.code = b.city_municipality_code
        LEFT JOIN psgc_provinces p ON p.code = c.province_code
        LEFT JOIN psgc_regions r ON r.code = COALESCE(c.region_code, p.region_code)
    """,
}

_NAME_COLUMN = {"region": "r.name", "province": "p.name", "city": "c.name", "barangay": "b.name"}


def _parse_levels(levels: str) -> list[str]:
    if levels.strip().lower() == "all":
        return list(LEVELS)
    parsed = [lv.strip().lower() for lv in levels.split(",") if lv.strip()]
    unknown = [lv for lv in parsed if lv not in LEVELS]
    if unknown or not parsed:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown level(s): {', '.join(unknown) or levels!r}. "
                   f"Use 'all' or any of: {', '.join(LEVELS)}",
        )
    return parsed


def _search_level(conn: sqlite3.Connection, level: str, base: str,
                  variations: list[str], limit: int) -> list[sqlite3.Row]:
    name = _NAME_COLUMN[level]
    likes = " OR ".join(f"LOWER({name}) LIKE ? ESCAPE '\\'" for _ in variations)
    sql = (
        f"{_LEVEL_SQL[level]} WHERE ({likes}) "
        f"ORDER BY CASE WHEN LOWER({name}) = ? THEN 0 "
        f"WHEN LOWER({name}) LIKE ? ESCAPE '\\' THEN 1 ELSE 2 END, {name} "
        "LIMIT ?"
    )
    params: list[Any] = [f"%{escape_like(v)}%" for v in variations]
    params += [base, f"{escape_like(base)}%", limit]
    return conn.execute(sql, params).fetchall()


def _rank(item: dict[str, Any], base: str) -> tuple[int, str]:
    name = (item["name"] or "").lower()
    if name == base:
        return 0, name
    if name.startswith(base):
        return 1, name
    return 2, name


@router.get("/search", summary="Search regions, provinces, cities and barangays")
def search_psgc(
    q: str = Query("", description="Place name; abbreviations are expanded"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    levels: str = Query("city", description="'all' or comma list of levels"),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    """Results are ranked exact match, then prefix match, then by name."""
    wanted = _parse_levels(levels)
    if len(q.strip()) < MIN_QUERY_LENGTH:
        return {"data": [], "count": 0, "query": q, "levels": wanted}

    base = normalize_query(q)
    variations = query_variations(q)
    seen: set[str] = set()
    items: list[dict[str, Any]] = []
    for level in wanted:
        # Each level's top (offset + limit) is enough to fill the merged page
        for row in _search_level(conn, level, base, variations, offset + limit):
            if row["code"] in seen:
                continue
            seen.add(row["code"])
            item = dict(row)
            names = [item["name"]]
            if level == "barangay":
                names.append(item["city_name"])
            if level in ("barangay", "city"):
                names.append(item["province_name"])
            if level != "region":
                names.append(item["region_name"])
            item["full_address"] = full_address(*names)
            items.append(item)

    items.sort(key=lambda it: _rank(it, base))
    page = items[offset:offset + limit]
    logger.debug("PSGC search q=%r levels=%s matched=%d", q, wanted, len(items))
    return {"data": page, "count": len(page), "query": q, "levels": wanted}
