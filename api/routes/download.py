"""
Registry exports.

GET /api/v1/download/residents?fmt=csv|json|xlsx
GET /api/v1/download/households?fmt=csv|json|xlsx

Streams the scoped list (same filters as the list endpoints) without loading
everything into memory.  CSV starts with ``#`` attribution rows, JSON is
NDJSON with a leading ``_metadata`` object and Excel carries a Metadata sheet.
PhilSys hashes are never exported.
"""

import csv
import io
import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Iterator

import openpyxl
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from api.auth import CurrentUser, access_scope, get_current_user
from api.database import _make_conn, get_db, get_db_path
from utils.query import build_household_where, build_resident_where

router = APIRouter(prefix="/download", tags=["download"])

EXPORT_SOURCE = "RBI Registry"

RESIDENT_EXPORT_COLUMNS = [
    "id", "first_name", "middle_name", "last_name", "extension_name",
    "birthdate", "sex", "civil_status", "citizenship", "education_attainment",
    "employment_status", "occupation", "mobile_number", "telephone_number",
    "email", "philsys_last4", "ethnicity", "religion", "is_voter",
    "is_resident_voter", "is_pwd", "is_solo_parent", "is_ofw", "is_indigenous",
    "relationship_to_head", "household_code", "barangay_code",
    "city_municipality_code", "province_code", "region_code", "created_at",
]

HOUSEHOLD_EXPORT_COLUMNS = [
    "code", "household_number", "barangay_code", "city_municipality_code",
    "province_code", "region_code", "house_number", "street_name",
    "subdivision", "household_type", "tenure_status", "monthly_income",
    "household_head_id", "total_members", "created_at",
]

_MEDIA_TYPES = {
    "csv": "text/csv",
    "json": "application/x-ndjson",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
_EXTENSIONS = {"csv": "csv", "json": "ndjson", "xlsx": "xlsx"}


def _iter_rows(sql: str, params: list[Any]) -> Iterator[tuple]:
    """Yield rows in batches of 500 from a connection owned by the stream."""
    conn = _make_conn(get_db_path())
    try:
        cur = conn.execute(sql, params)
        while True:
            batch = cur.fetchmany(500)
            if not batch:
                break
            yield from (tuple(r) for r in batch)
    finally:
        conn.close()


def _filter_summary(filters: dict[str, Any]) -> str:
    active = [f"{k}={v}" for k, v in filters.items() if v not in (None, "")]
    return "; ".join(active) if active else "none"


def _export(
    request: Request,
    fmt: str,
    name: str,
    columns: list[str],
    sql: str,
    params: list[Any],
    total: int,
    filters: dict[str, Any],
) -> StreamingResponse:
    export_date = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    filter_summary = _filter_summary(filters)
    metadata = [
        ("Source", EXPORT_SOURCE),
        ("Export Date", export_date),
        ("Filters", filter_summary),
        ("URL", str(request.url)),
        ("Total Records", total),
    ]
    headers = {
        "Content-Disposition": f"attachment; filename={name}.{_EXTENSIONS[fmt]}",
        "X-Total-Count": str(total),
    }

    if fmt == "csv":
        def csv_stream() -> Iterator[str]:
            buf = io.StringIO()
            writer = csv.writer(buf)
            for label, value in metadata:
                writer.writerow([f"# {label}: {value}"])
            writer.writerow(columns)
            yield buf.getvalue()
            for row in _iter_rows(sql, params):
                buf.seek(0)
                buf.truncate()
                writer.writerow(row)
                yield buf.getvalue()

        return StreamingResponse(csv_stream(), media_type=_MEDIA_TYPES[fmt], headers=headers)

    if fmt == "xlsx":
        wb = openpyxl.Workbook(write_only=True)
        meta_ws = wb.create_sheet("Metadata")
        for label, value in metadata:
            meta_ws.append([label, value])
        ws = wb.create_sheet(name.capitalize())
        ws.append(columns)
        for row in _iter_rows(sql, params):
            ws.append(list(row))
        buf = io.BytesIO()
        wb.save(buf)
        content = buf.getvalue()
        headers["Content-Length"] = str(len(content))
        return StreamingResponse(iter([content]), media_type=_MEDIA_TYPES[fmt],
                                 headers=headers)

    def json_stream() -> Iterator[str]:
        meta = {"_metadata": {label.lower().replace(" ", "_"): value
                              for label, value in metadata}}
        yield json.dumps(meta, default=str) + "\n"
        for row in _iter_rows(sql, params):
            yield json.dumps(dict(zip(columns, row)), default=str) + "\n"

    return StreamingResponse(json_stream(), media_type=_MEDIA_TYPES[fmt], headers=headers)


@router.get("/residents", summary="Export residents as CSV, NDJSON or Excel")
def download_residents(
    request: Request,
    fmt: str = Query("csv", pattern="^(csv|json|xlsx)$", description="Output format"),
    search: str | None = Query(None),
    sex: str | None = Query(None),
    civil_status: str | None = Query(None),
    employment_status: str | None = Query(None),
    household_code: str | None = Query(None),
    barangay_code: str | None = Query(None),
    is_voter: bool | None = Query(None),
    user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> StreamingResponse:
    filters = {"search": search, "sex": sex, "civil_status": civil_status,
               "employment_status": employment_status, "household_code": household_code,
               "barangay_code": barangay_code, "is_voter": is_voter}
    where, params = build_resident_where(access_scope(user), **filters)
    total = conn.execute(f"SELECT COUNT(*) FROM residents r {where}", params).fetchone()[0]
    col_list = ", ".join(f"r.{c}" for c in RESIDENT_EXPORT_COLUMNS)
    sql = f"SELECT {col_list} FROM residents r {where} ORDER BY r.id"
    return _export(request, fmt, "residents", RESIDENT_EXPORT_COLUMNS, sql, params,
                   total, filters)


@router.get("/households", summary="Export households as CSV, NDJSON or Excel")
def download_households(
    request: Request,
    fmt: str = Query("csv", pattern="^(csv|json|xlsx)$", description="Output format"),
    search: str | None = Query(None),
    barangay_code: str | None = Query(None),
    user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> StreamingResponse:
    filters = {"search": search, "barangay_code": barangay_code}
    where, params = build_household_where(access_scope(user), **filters)
    from_sql = (
        "FROM households h "
        "LEFT JOIN residents hr ON hr.id = h.household_head_id AND hr.is_active = 1 "
        f"{where}"
    )
    total = conn.execute(f"SELECT COUNT(*) {from_sql}", params).fetchone()[0]
    col_list = ", ".join(f"h.{c}" for c in HOUSEHOLD_EXPORT_COLUMNS)
    sql = f"SELECT {col_list} {from_sql} ORDER BY h.code"
    return _export(request, fmt, "households", HOUSEHOLD_EXPORT_COLUMNS, sql, params,
                   total, filters)
