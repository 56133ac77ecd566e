"""
Tests for build_rbi_db.py: schema creation, PSGC import and account creation.
"""
import sqlite3

import pytest

from build_rbi_db import (
    ROLES,
    create_database,
    create_user,
    import_psgc_csv,
    import_psgc_workbook,
    main,
)
from conftest import BARANGAY, CITY, PROVINCE, REGION, seed_psgc
from utils.security import verify_password

openpyxl = pytest.importorskip("openpyxl")


def _tables(conn) -> set[str]:
    return {r[0] for r in conn.execute(
        "SELECT name FROM sqlite_master WHERE type IN ('table', 'view')")}


class TestCreateDatabase:
    def test_creates_core_tables(self, tmp_path):
        conn = create_database(tmp_path / "rbi.sqlite")
        try:
            tables = _tables(conn)
        finally:
            conn.close()
        for name in ("psgc_regions", "psgc_provinces", "psgc_cities_municipalities",
                     "psgc_barangays", "geo_subdivisions", "geo_streets", "roles",
                     "user_profiles", "user_sessions", "households", "residents",
                     "residents_fts"):
            assert name in tables, name

    def test_idempotent(self, tmp_path):
        path = tmp_path / "rbi.sqlite"
        create_database(path).close()
        conn = create_database(path)
        try:
            roles = conn.execute("SELECT COUNT(*) FROM roles").fetchone()[0]
        finally:
            conn.close()
        assert roles == len(ROLES)


@pytest.fixture()
def conn(tmp_path):
    db = create_database(tmp_path / "rbi.sqlite")
    yield db
    db.close()


class TestCreateUser:
    def test_derives_geo_codes(self, conn):
        seed_psgc(conn)
        user_id = create_user(conn, " Clerk@RBI.test ", "password123", "barangay_admin",
                              barangay_code=BARANGAY, rounds=4)
        row = conn.execute("SELECT * FROM user_profiles WHERE id = ?", (user_id,)).fetchone()
        assert row["email"] == "clerk@rbi.test"
        assert row["city_municipality_code"] == CITY
        assert row["province_code"] == PROVINCE
        assert row["region_code"] == REGION
        assert verify_password("password123", row["password_hash"])

    @pytest.mark.parametrize("kwargs, message", [
        ({"email": "not-an-email"}, "Invalid email"),
        ({"role": "mayor"}, "Unknown role"),
        ({"barangay_code": "9999999999"}, "Unknown barangay"),
    ])
    def test_rejects_bad_input(self, conn, kwargs, message):
        seed_psgc(conn)
        args = {"email": "x@rbi.test", "password": "password123", "role": "barangay_staff",
                "rounds": 4, **kwargs}
        with pytest.raises(ValueError, match=message):
            create_user(conn, **args)

    def test_duplicate_email(self, conn):
        create_user(conn, "a@rbi.test", "password123", "super_admin", rounds=4)
        with pytest.raises(ValueError, match="already exists"):
            create_user(conn, "A@rbi.test", "password123", "super_admin", rounds=4)


class TestImportCsv:
    def _write(self, path, text):
        path.write_text(text, encoding="utf-8")
        return path

    def test_levels_in_order(self, conn, tmp_path):
        import_psgc_csv(conn, "region", self._write(
            tmp_path / "r.csv", "code,name\n0400000000,CALABARZON\n1300000000,NCR\n"))
        import_psgc_csv(conn, "province", self._write(
            tmp_path / "p.csv", "code,name\n0402100000,Cavite\n"))
        count = import_psgc_csv(conn, "city", self._write(
            tmp_path / "c.csv",
            "code,name,type\n0402108000,Dasmarinas City,city\n1381300000,Quezon City,city\n"))
        import_psgc_csv(conn, "barangay", self._write(
            tmp_path / "b.csv", "code,name\n0402108001,Burol\n"))
        assert count == 2

        cities = {r["code"]: r for r in conn.execute("SELECT * FROM psgc_cities_municipalities")}
        assert cities["0402108000"]["province_code"] == PROVINCE
        assert cities["0402108000"]["is_independent"] == 0
        assert cities["1381300000"]["province_code"] is None
        assert cities["1381300000"]["is_independent"] == 1
        brgy = conn.execute("SELECT * FROM psgc_barangays").fetchone()
        assert brgy["city_municipality_code"] == CITY

    def test_explicit_blank_parent_marks_independent(self, conn, tmp_path):
        import_psgc_csv(conn, "city", self._write(
            tmp_path / "c.csv", "code,name,parent_code\n1381300000,Quezon City,\n"))
        row = conn.execute("SELECT * FROM psgc_cities_municipalities").fetchone()
        assert row["is_independent"] == 1

    def test_skips_malformed_codes(self, conn, tmp_path):
        count = import_psgc_csv(conn, "region", self._write(
            tmp_path / "r.csv", "code,name\n04,Broken\n0400000000,CALABARZON\n"))
        assert count == 1

    def test_unknown_level(self, conn, tmp_path):
        with pytest.raises(ValueError, match="Unknown PSGC level"):
            import_psgc_csv(conn, "sitio", tmp_path / "x.csv")


class TestImportWorkbook:
    def test_publication_layout(self, conn, tmp_path):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = "PSGC"
        ws.append(["10-digit PSGC", "Name", "Correspondence Code", "Geographic Level",
                   "Urban / Rural"])
        ws.append(["0400000000", "Region IV-A (CALABARZON)", None, "Reg", None])
        ws.append([402100000, "Cavite", None, "Prov", None])
        ws.append(["0402108000", "City of Dasmarinas", None, "City", None])
        ws.append(["0402108001", "Burol", None, "Bgy", "U"])
        ws.append(["1300000000", "National Capital Region (NCR)", None, "Reg", None])
        ws.append(["1381300000", "Quezon City", None, "City", None])
        ws.append(["bad", "Broken row", None, "Bgy", None])
        ws.append([None, None, None, None, None])
        path = tmp_path / "psgc.xlsx"
        wb.save(path)

        counts = import_psgc_workbook(conn, path)
        assert counts == {"regions": 2, "provinces": 1, "cities": 2, "barangays": 1}
        assert conn.execute("SELECT code FROM psgc_provinces").fetchone()[0] == PROVINCE
        qc = conn.execute("SELECT * FROM psgc_cities_municipalities WHERE code = ?",
                          ("1381300000",)).fetchone()
        assert qc["is_independent"] == 1 and qc["province_code"] is None
        brgy = conn.execute("SELECT * FROM psgc_barangays").fetchone()
        assert brgy["urban_rural_status"] == "U"


class TestMain:
    def test_builds_and_creates_admin(self, tmp_path, capsys):
        regions = tmp_path / "regions.csv"
        regions.write_text("code,name\n0400000000,CALABARZON\n", encoding="utf-8")
        db = tmp_path / "cli.sqlite"
        rc = main(["--db", str(db), "--psgc-csv", f"region={regions}",
                   "--create-admin", "root@rbi.test", "password123", "super_admin",
                   "--bcrypt-rounds", "4"])
        assert rc == 0
        out = capsys.readouterr().out
        assert "Created super_admin account root@rbi.test" in out
        conn = sqlite3.connect(db)
        try:
            assert conn.execute("SELECT COUNT(*) FROM psgc_regions").fetchone()[0] == 1
        finally:
            conn.close()

    def test_missing_csv(self, tmp_path, capsys):
        rc = main(["--db", str(tmp_path / "cli.sqlite"),
                   "--psgc-csv", f"region={tmp_path / 'missing.csv'}"])
        assert rc == 1
        assert "CSV not found" in capsys.readouterr().out

    def test_bad_admin_role(self, tmp_path, capsys):
        rc = main(["--db", str(tmp_path / "cli.sqlite"),
                   "--create-admin", "x@rbi.test", "password123", "overlord",
                   "--bcrypt-rounds", "4"])
        assert rc == 1
        assert "Unknown role" in capsys.readouterr().out

    def test_rebuild_removes_existing(self, tmp_path):
        db = tmp_path / "cli.sqlite"
        db.write_bytes(b"")
        assert main(["--db", str(db), "--rebuild"]) == 0
        assert db.stat().st_size > 0
