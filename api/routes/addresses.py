"""
PSGC address option endpoints for the cascading geographic selector.

GET /api/v1/addresses/regions[/public]
GET /api/v1/addresses/provinces[/public]?regionCode=
GET /api/v1/addresses/cities[/public]?provinceCode=|regionCode=
GET /api/v1/addresses/barangays[/public]?cityCode=
GET /api/v1/addresses/subdivisions?barangayCode=
GET /api/v1/addresses/streets?barangayCode=&subdivisionId=
GET /api/v1/addresses/hierarchy/{barangay_code}

Option lists are ``{"data": [{"value", "label", ...}], "count": n}`` sorted
by name.  The ``/public`` variants need no token; everything else does.
"""

import sqlite3
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from api.auth import CurrentUser, get_current_user
from api.database import get_db
from api.models import OptionsResponse
from utils.psgc import hierarchy as psgc_hierarchy
from utils.strings import escape_like

router = APIRouter(prefix="/addresses", tags=["addresses"])

_CDN_CACHE_HEADER = {"Cache-Control": "public, max-age=3600, s-maxage=86400"}
_CACHE_HEADER = {"Cache-Control": "max-age=3600"}

_MAX_LIMIT = 1000
_LOCAL_LIMIT = 100


def _option(row: sqlite3.Row, value_col: str = "code", label_col: str = "name") -> dict[str, Any]:
    opt: dict[str, Any] = {"value": row[value_col], "label": row[label_col]}
    for key in row.keys():
        if key in (value_col, label_col) or row[key] is None:
            continue
        opt[key] = bool(row[key]) if key == "is_independent" else row[key]
    return opt


def _respond(rows: list[sqlite3.Row], headers: dict[str, str], **kw: str) -> JSONResponse:
    data = [_option(r, **kw) for r in rows]
    return JSONResponse(content={"data": data, "count": len(data)}, headers=headers)


def _filters(search: str | None, column: str = "name") -> tuple[list[str], list[Any]]:
    if not search or not search.strip():
        return [], []
    return ([f"LOWER({column}) LIKE ? ESCAPE '\\'"],
            [f"%{escape_like(search.strip().lower())}%"])


def _where(conditions: list[str]) -> str:
    return "WHERE " + " AND ".join(conditions) if conditions else ""


# ── Query helpers (shared by the authenticated and public paths) ──────────────

def _regions(conn: sqlite3.Connection, search: str | None, limit: int) -> JSONResponse:
    conds, params = _filters(search)
    rows = conn.execute(
        f"SELECT code, name FROM psgc_regions {_where(conds)} ORDER BY name LIMIT ?",
        params + [limit],
    ).fetchall()
    return _respond(rows, _CDN_CACHE_HEADER)


def _provinces(conn: sqlite3.Connection, region_code: str | None,
               search: str | None, limit: int) -> JSONResponse:
    conds, params = _filters(search)
    conds.append("is_active = 1")
    if region_code:
        conds.append("region_code = ?")
        params.append(region_code)
    rows = conn.execute(
        f"SELECT code, name, region_code FROM psgc_provinces {_where(conds)} "
        "ORDER BY name LIMIT ?",
        params + [limit],
    ).fetchall()
    return _respond(rows, _CDN_CACHE_HEADER)


def _cities(conn: sqlite3.Connection, province_code: str | None, region_code: str | None,
            search: str | None, limit: int) -> JSONResponse:
    """Cities of a province, or of a region when no province is given.

    A region filter lists only the cities outside any province (NCR and
    other independent cities).
    """
    conds, params = _filters(search)
    if province_code:
        # Independent cities of the same region sit beside the province's own
        conds.append(
            "(province_code = ? OR (province_code IS NULL AND region_code = "
            "(SELECT region_code FROM psgc_provinces WHERE code = ?)))"
        )
        params.extend([province_code, province_code])
    elif region_code:
        conds.append("province_code IS NULL AND region_code = ?")
        params.append(region_code)
    rows = conn.execute(
        "SELECT code, name, province_code, type, is_independent "
        f"FROM psgc_cities_municipalities {_where(conds)} ORDER BY name LIMIT ?",
        params + [limit],
    ).fetchall()
    return _respond(rows, _CACHE_HEADER)


def _barangays(conn: sqlite3.Connection, city_code: str | None,
               search: str | None, limit: int) -> JSONResponse:
    conds, params = _filters(search)
    if city_code:
        conds.append("city_municipality_code = ?")
        params.append(city_code)
    rows = conn.execute(
        "SELECT code, name, city_municipality_code, urban_rural_status "
        f"FROM psgc_barangays {_where(conds)} ORDER BY name LIMIT ?",
        params + [limit],
    ).fetchall()
    return _respond(rows, _CACHE_HEADER)


# ── Authenticated ─────────────────────────────────────────────────────────────

@router.get("/regions", response_model=OptionsResponse, summary="List regions")
def list_regions(
    search: str | None = Query(None, description="Case-insensitive name filter"),
    limit: int = Query(_MAX_LIMIT, ge=1, le=_MAX_LIMIT),
    _user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> JSONResponse:
    return _regions(conn, search, limit)


@router.get("/provinces", response_model=OptionsResponse, summary="List provinces")
def list_provinces(
    regionCode: str | None = Query(None, description="Parent region code"),
    region: str | None = Query(None, description="Alias for regionCode"),
    search: str | None = Query(None),
    limit: int = Query(_MAX_LIMIT, ge=1, le=_MAX_LIMIT),
    _user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> JSONResponse:
    return _provinces(conn, regionCode or region, search, limit)


@router.get("/cities", response_model=OptionsResponse,
            summary="List cities and municipalities")
def list_cities(
    provinceCode: str | None = Query(None, description="Parent province code"),
    province: str | None = Query(None, description="Alias for provinceCode"),
    regionCode: str | None = Query(None, description="Region of province-less cities"),
    region: str | None = Query(None, description="Alias for regionCode"),
    search: str | None = Query(None),
    limit: int = Query(_MAX_LIMIT, ge=1, le=_MAX_LIMIT),
    _user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> JSONResponse:
    return _cities(conn, provinceCode or province, regionCode or region, search, limit)


@router.get("/barangays", response_model=OptionsResponse, summary="List barangays")
def list_barangays(
    cityCode: str | None = Query(None, description="Parent city/municipality code"),
    city: str | None = Query(None, description="Alias for cityCode"),
    search: str | None = Query(None),
    limit: int = Query(_MAX_LIMIT, ge=1, le=_MAX_LIMIT),
    _user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> JSONResponse:
    return _barangays(conn, cityCode or city, search, limit)


# ── Public (no token) ─────────────────────────────────────────────────────────

@router.get("/regions/public", response_model=OptionsResponse,
            summary="List regions (public)")
def list_regions_public(
    search: str | None = Query(None),
    limit: int = Query(_MAX_LIMIT, ge=1, le=_MAX_LIMIT),
    conn: sqlite3.Connection = Depends(get_db),
) -> JSONResponse:
    return _regions(conn, search, limit)


@router.get("/provinces/public", response_model=OptionsResponse,
            summary="List provinces (public)")
def list_provinces_public(
    regionCode: str | None = Query(None),
    region: str | None = Query(None),
    search: str | None = Query(None),
    limit: int = Query(_MAX_LIMIT, ge=1, le=_MAX_LIMIT),
    conn: sqlite3.Connection = Depends(get_db),
) -> JSONResponse:
    return _provinces(conn, regionCode or region, search, limit)


@router.get("/cities/public", response_model=OptionsResponse,
            summary="List cities and municipalities (public)")
def list_cities_public(
    provinceCode: str | None = Query(None),
    province: str | None = Query(None),
    regionCode: str | None = Query(None),
    region: str | None = Query(None),
    search: str | None = Query(None),
    limit: int = Query(_MAX_LIMIT, ge=1, le=_MAX_LIMIT),
    conn: sqlite3.Connection = Depends(get_db),
) -> JSONResponse:
    return _cities(conn, provinceCode or province, regionCode or region, search, limit)


@router.get("/barangays/public", response_model=OptionsResponse,
            summary="List barangays (public)")
def list_barangays_public(
    cityCode: str | None = Query(None),
    city: str | None = Query(None),
    search: str | None = Query(None),
    limit: int = Query(_MAX_LIMIT, ge=1, le=_MAX_LIMIT),
    conn: sqlite3.Connection = Depends(get_db),
) -> JSONResponse:
    return _barangays(conn, cityCode or city, search, limit)


# ── Local address parts ───────────────────────────────────────────────────────

@router.get("/subdivisions", response_model=OptionsResponse,
            summary="Subdivisions, sitios and puroks of a barangay")
def list_subdivisions(
    barangayCode: str = Query(..., description="Barangay PSGC code"),
    search: str | None = Query(None),
    _user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> JSONResponse:
    conds, params = _filters(search)
    conds += ["barangay_code = ?", "is_active = 1"]
    params.append(barangayCode)
    rows = conn.execute(
        f"SELECT id, name, type FROM geo_subdivisions {_where(conds)} "
        "ORDER BY name LIMIT ?",
        params + [_LOCAL_LIMIT],
    ).fetchall()
    return _respond(rows, _CACHE_HEADER, value_col="id")


@router.get("/streets", response_model=OptionsResponse, summary="Streets of a barangay")
def list_streets(
    barangayCode: str = Query(..., description="Barangay PSGC code"),
    subdivisionId: int | None = Query(None, description="Restrict to one subdivision"),
    search: str | None = Query(None),
    _user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> JSONResponse:
    conds, params = _filters(search)
    conds += ["barangay_code = ?", "is_active = 1"]
    params.append(barangayCode)
    if subdivisionId is not None:
        conds.append("subdivision_id = ?")
        params.append(subdivisionId)
    rows = conn.execute(
        f"SELECT id, name, subdivision_id FROM geo_streets {_where(conds)} "
        "ORDER BY name LIMIT ?",
        params + [_LOCAL_LIMIT],
    ).fetchall()
    return _respond(rows, _CACHE_HEADER, value_col="id")


@router.get("/hierarchy/{barangay_code}", summary="Full address hierarchy of a barangay")
def get_hierarchy(
    barangay_code: str,
    _user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    """``{region, province, city, barangay}``; province is null for HUCs."""
    result = psgc_hierarchy(conn, barangay_code)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Barangay '{barangay_code}' not found")
    return result
