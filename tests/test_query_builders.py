"""
Tests for the shared SQL query builders in utils/query.py.

Covers scope translation, the resident and household WHERE builders, the
ORDER BY builder and the pagination helpers.  The WHERE clauses are also run
against an in-memory table to check they select what they claim to.
"""
import sqlite3

import pytest

from utils.query import (
    HOUSEHOLD_SORTS,
    RESIDENT_SORTS,
    build_household_where,
    build_order_clause,
    build_resident_where,
    page_meta,
    paginate,
    scope_condition,
)


# ═══════════════════════════════════════════════════════════════════════════════
# scope_condition
# ═══════════════════════════════════════════════════════════════════════════════

class TestScopeCondition:
    def test_national_is_unrestricted(self):
        assert scope_condition(None) == (None, [])

    def test_barangay_scope(self):
        assert scope_condition(("barangay_code", "0402108001"), "r") == (
            "r.barangay_code = ?", ["0402108001"])

    def test_missing_value_matches_nothing(self):
        assert scope_condition(("barangay_code", None)) == ("1=0", [])

    def test_rejects_unknown_column(self):
        with pytest.raises(ValueError, match="Invalid scope column"):
            scope_condition(("id; DROP TABLE residents", "1"))


# ═══════════════════════════════════════════════════════════════════════════════
# WHERE builders
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture()
def conn():
    db = sqlite3.connect(":memory:")
    db.execute("""
        CREATE TABLE residents (
            id INTEGER PRIMARY KEY, first_name TEXT, middle_name TEXT,
            last_name TEXT, email TEXT, sex TEXT, civil_status TEXT,
            employment_status TEXT, household_code TEXT, barangay_code TEXT,
            city_municipality_code TEXT, is_voter INTEGER, is_active INTEGER
        )
    """)
    db.executemany(
        "INSERT INTO residents VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)", [
            (1, "Juan", "Reyes", "Dela Cruz", "juan@example.ph", "male", "married",
             "employed", "0402108001-000001", "0402108001", "0402108000", 1, 1),
            (2, "Maria", None, "Dela Cruz", None, "female", "married",
             None, "0402108001-000001", "0402108001", "0402108000", 0, 1),
            (3, "Pedro", None, "100%_Santos", None, "male", "single",
             None, None, "0402108002", "0402108000", 1, 1),
            (4, "Ana", None, "Reyes", None, "female", "single",
             None, None, "0402108001", "0402108000", 1, 0),
        ])
    yield db
    db.close()


def _ids(conn, where, params):
    return [r[0] for r in conn.execute(
        f"SELECT r.id FROM residents r {where} ORDER BY r.id", params)]


class TestBuildResidentWhere:
    def test_active_only_by_default(self, conn):
        where, params = build_resident_where()
        assert where == "WHERE r.is_active = 1"
        assert _ids(conn, where, params) == [1, 2, 3]

    def test_scope_applied(self, conn):
        where, params = build_resident_where(scope=("barangay_code", "0402108002"))
        assert _ids(conn, where, params) == [3]

    def test_scoped_without_code_returns_nothing(self, conn):
        where, params = build_resident_where(scope=("barangay_code", None))
        assert _ids(conn, where, params) == []

    def test_search_is_case_insensitive_across_names_and_email(self, conn):
        assert _ids(conn, *build_resident_where(search="dela")) == [1, 2]
        assert _ids(conn, *build_resident_where(search="REYES")) == [1]
        assert _ids(conn, *build_resident_where(search="example.ph")) == [1]

    def test_search_escapes_like_wildcards(self, conn):
        assert _ids(conn, *build_resident_where(search="100%_")) == [3]
        assert _ids(conn, *build_resident_where(search="%")) == [3]

    def test_filters_combine(self, conn):
        where, params = build_resident_where(sex="male", is_voter=True,
                                             barangay_code="0402108001")
        assert _ids(conn, where, params) == [1]
        assert _ids(conn, *build_resident_where(is_voter=False)) == [2]
        assert _ids(conn, *build_resident_where(
            household_code="0402108001-000001", civil_status="married")) == [1, 2]

    def test_blank_filters_ignored(self, conn):
        assert build_resident_where(sex="", search="") == ("WHERE r.is_active = 1", [])

    def test_alias_can_be_dropped(self):
        where, _ = build_resident_where(sex="male", alias="")
        assert where == "WHERE is_active = 1 AND sex = ?"


class TestBuildHouseholdWhere:
    def test_search_includes_head_name(self):
        where, params = build_household_where(search="cruz")
        assert "hr.first_name" in where and "hr.last_name" in where
        assert params == ["%cruz%"] * 6

    def test_search_without_head_join(self):
        where, params = build_household_where(search="mabini", head_alias=None)
        assert "hr." not in where
        assert len(params) == 4

    def test_scope_and_barangay(self):
        where, params = build_household_where(
            scope=("city_municipality_code", "0402108000"), barangay_code="0402108001")
        assert where == ("WHERE h.is_active = 1 AND h.city_municipality_code = ? "
                         "AND h.barangay_code = ?")
        assert params == ["0402108000", "0402108001"]


# ═══════════════════════════════════════════════════════════════════════════════
# ORDER BY and pagination
# ═══════════════════════════════════════════════════════════════════════════════

class TestBuildOrderClause:
    def test_allowed_column(self):
        assert build_order_clause("last_name", "asc", RESIDENT_SORTS, alias="r") == \
            "ORDER BY r.last_name ASC, r.id ASC"

    def test_unknown_column_falls_back(self):
        assert build_order_clause("password_hash", "desc", RESIDENT_SORTS) == \
            "ORDER BY created_at DESC, id DESC"

    def test_direction_defaults_to_asc(self):
        assert build_order_clause("code", "sideways", HOUSEHOLD_SORTS,
                                  tiebreak=None) == "ORDER BY code ASC"

    def test_no_duplicate_tiebreak(self):
        assert build_order_clause("id", "desc", RESIDENT_SORTS) == "ORDER BY id DESC"


class TestPagination:
    @pytest.mark.parametrize("page, limit, expected", [
        (1, 20, (20, 0)),
        (3, 20, (20, 40)),
        (0, 20, (20, 0)),
        (2, 0, (1, 1)),
    ])
    def test_paginate(self, page, limit, expected):
        assert paginate(page, limit) == expected

    def test_page_meta_middle_page(self):
        assert page_meta(45, 2, 20) == {
            "total": 45, "page": 2, "limit": 20, "pages": 3,
            "has_next": True, "has_prev": True,
        }

    def test_page_meta_empty(self):
        meta = page_meta(0, 1, 20)
        assert meta["pages"] == 0
        assert not meta["has_next"] and not meta["has_prev"]
