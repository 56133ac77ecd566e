"""Dashboard statistics for the registry overview page."""

import logging
import sqlite3

from fastapi import APIRouter, Depends, Query

from api.auth import CurrentUser, access_scope, get_current_user
from api.database import get_db
from utils.cache import TTLCache
from utils.demographics import (
    build_population_pyramid,
    calculate_dependency_ratios,
    count_distribution,
    sectoral_summary,
    sex_distribution,
)
from utils.query import build_household_where, build_resident_where

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

_stats_cache: TTLCache = TTLCache(maxsize=32, ttl_seconds=300)

_STATS_COLUMNS = """
    r.birthdate, r.sex, r.civil_status, r.employment_status,
    r.education_attainment, r.ethnicity, r.is_indigenous, r.is_pwd,
    r.is_solo_parent, r.is_ofw, r.is_voter, r.previous_barangay_code,
    r.date_of_transfer, r.reason_for_migration
"""


def invalidate_stats() -> None:
    """Drop every cached statistics block (called after registry writes)."""
    dropped = _stats_cache.invalidate(("dashboard",))
    if dropped:
        logger.debug("Dashboard cache cleared (%d entries)", dropped)


@router.get("/stats", summary="Population statistics")
def dashboard_stats(
    barangay_code: str | None = Query(None, description="Restrict to one barangay"),
    user: CurrentUser = Depends(get_current_user),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    """Return the dashboard aggregates for active residents in scope.

    Includes:
    - Resident and household totals
    - Population pyramid in 5-year age groups
    - Dependency ratios per 100 working-age persons
    - Sex, civil status and employment distributions
    - Sectoral counts (labor force, seniors, PWD, OSC/OSY, migrants, ...)
    """
    scope = access_scope(user)
    return _stats_cache.get_or_set(
        ("dashboard", scope, barangay_code),
        lambda: _compute_stats(conn, scope, barangay_code),
    )


def _compute_stats(conn: sqlite3.Connection, scope, barangay_code: str | None) -> dict:
    where, params = build_resident_where(scope, barangay_code=barangay_code)
    residents = conn.execute(
        f"SELECT {_STATS_COLUMNS} FROM residents r {where}", params
    ).fetchall()

    hh_where, hh_params = build_household_where(
        scope, barangay_code=barangay_code, head_alias=None)
    total_households = conn.execute(
        f"SELECT COUNT(*) FROM households h {hh_where}", hh_params
    ).fetchone()[0]

    return {
        "total_residents": len(residents),
        "total_households": total_households,
        "population_pyramid": build_population_pyramid(residents),
        "dependency_ratios": calculate_dependency_ratios(residents),
        "sex_distribution": sex_distribution(residents),
        "civil_status_distribution": count_distribution(residents, "civil_status"),
        "employment_distribution": count_distribution(residents, "employment_status"),
        "sectoral": sectoral_summary(residents),
    }
