"""
RBI Database Builder

Creates the SQLite database behind the registry API: the PSGC reference
tables, roles, user accounts and sessions, households and residents (with
an FTS5 index over resident names), and loads PSGC reference data from the
official PSA publication workbook or from per-level CSV files.

Usage:
    python build_rbi_db.py                                  # create empty schema
    python build_rbi_db.py --rebuild                        # delete and recreate
    python build_rbi_db.py --psgc-xlsx PSGC-2Q-2024.xlsx    # load PSGC workbook
    python build_rbi_db.py --psgc-csv region=regions.csv --psgc-csv province=prov.csv
    python build_rbi_db.py --create-admin admin@example.ph s3cretpass super_admin
    python build_rbi_db.py --create-admin clerk@example.ph s3cretpass barangay_admin 0402108001
"""

import argparse
import csv
import logging
import sqlite3
import sys
import time
import uuid
from pathlib import Path

import openpyxl

from utils.database import batch_insert, get_table_count
from utils.psgc import barangay_geo_codes, parent_codes
from utils.sanitization import sanitize_email
from utils.security import DEFAULT_BCRYPT_ROUNDS, hash_password
from utils.validation import validate_email_format

logger = logging.getLogger(__name__)

# ── Schema versioning ────────────────────────────────────────────────────────
# Increment _SCHEMA_VERSION when CREATE TABLE statements change.
_SCHEMA_VERSION = 1
_SCHEMA_DESCRIPTION = (
    "PSGC reference tables, geo subdivisions/streets, roles, user profiles "
    "and sessions, households, residents with residents_fts"
)

DEFAULT_DB_PATH = Path("rbi.sqlite")

# role -> (description, access level)
ROLES = {
    "super_admin": ("System administrator", "national"),
    "region_admin": ("Regional administrator", "region"),
    "province_admin": ("Provincial administrator", "province"),
    "city_admin": ("City or municipal administrator", "city"),
    "barangay_admin": ("Barangay administrator", "barangay"),
    "barangay_staff": ("Barangay records clerk", "barangay"),
    "resident": ("Resident self-service account", "barangay"),
}

# PSGC "Geographic Level" column values
_LEVEL_REGION = "Reg"
_LEVEL_PROVINCE = "Prov"
_LEVELS_CITY = {"City": "city", "Mun": "municipality", "SubMun": "sub_municipality"}
_LEVEL_BARANGAY = "Bgy"

CSV_LEVELS = ("region", "province", "city", "barangay")


def create_database(db_path: Path) -> sqlite3.Connection:
    """Create the SQLite database with all tables (idempotent)."""
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA temp_store=MEMORY")

    conn.executescript("""
        -- PSGC reference data
        CREATE TABLE IF NOT EXISTS psgc_regions (
            code TEXT PRIMARY KEY,
            name TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS psgc_provinces (
            code TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            region_code TEXT NOT NULL,
            is_active INTEGER DEFAULT 1
        );
        CREATE INDEX IF NOT EXISTS idx_provinces_region ON psgc_provinces(region_code);

        -- province_code is NULL for independent (HUC) and NCR cities
        CREATE TABLE IF NOT EXISTS psgc_cities_municipalities (
            code TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            province_code TEXT,
            region_code TEXT NOT NULL,
            type TEXT NOT NULL DEFAULT 'municipality',
            is_independent INTEGER DEFAULT 0
        );
        CREATE INDEX IF NOT EXISTS idx_cities_province
            ON psgc_cities_municipalities(province_code);
        CREATE INDEX IF NOT EXISTS idx_cities_region
            ON psgc_cities_municipalities(region_code);

        CREATE TABLE IF NOT EXISTS psgc_barangays (
            code TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            city_municipality_code TEXT NOT NULL,
            urban_rural_status TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_barangays_city
            ON psgc_barangays(city_municipality_code);

        -- Local address parts maintained per barangay
        CREATE TABLE IF NOT EXISTS geo_subdivisions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            type TEXT DEFAULT 'subdivision',
            barangay_code TEXT NOT NULL,
            is_active INTEGER DEFAULT 1
        );
        CREATE INDEX IF NOT EXISTS idx_subdivisions_barangay
            ON geo_subdivisions(barangay_code);

        CREATE TABLE IF NOT EXISTS geo_streets (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            barangay_code TEXT NOT NULL,
            subdivision_id INTEGER REFERENCES geo_subdivisions(id),
            is_active INTEGER DEFAULT 1
        );
        CREATE INDEX IF NOT EXISTS idx_streets_barangay ON geo_streets(barangay_code);

        -- Accounts
        CREATE TABLE IF NOT EXISTS roles (
            name TEXT PRIMARY KEY,
            description TEXT,
            access_level TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS user_profiles (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            first_name TEXT,
            last_name TEXT,
            role TEXT NOT NULL DEFAULT 'barangay_staff' REFERENCES roles(name),
            barangay_code TEXT,
            city_municipality_code TEXT,
            province_code TEXT,
            region_code TEXT,
            is_active INTEGER DEFAULT 1,
            created_at TEXT DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS user_sessions (
            jti TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES user_profiles(id),
            created_at TEXT DEFAULT (datetime('now')),
            expires_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_sessions_user ON user_sessions(user_id);

        -- Households: code is <barangay_code>-<household_number:06d>
        CREATE TABLE IF NOT EXISTS households (
            code TEXT PRIMARY KEY,
            household_number INTEGER NOT NULL,
            barangay_code TEXT NOT NULL,
            city_municipality_code TEXT,
            province_code TEXT,
            region_code TEXT,
            street_name TEXT,
            house_number TEXT,
            subdivision TEXT,
            household_type TEXT,
            tenure_status TEXT,
            monthly_income REAL,
            household_head_id INTEGER,
            total_members INTEGER DEFAULT 0,
            is_active INTEGER DEFAULT 1,
            created_by TEXT,
            created_at TEXT DEFAULT (datetime('now')),
            updated_at TEXT DEFAULT (datetime('now')),
            UNIQUE(barangay_code, household_number)
        );
        CREATE INDEX IF NOT EXISTS idx_households_barangay ON households(barangay_code);
        CREATE INDEX IF NOT EXISTS idx_households_city
            ON households(city_municipality_code);

        CREATE TABLE IF NOT EXISTS residents (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            first_name TEXT NOT NULL,
            middle_name TEXT,
            last_name TEXT NOT NULL,
            extension_name TEXT,
            birthdate TEXT NOT NULL,
            birth_place_code TEXT,
            sex TEXT NOT NULL,
            civil_status TEXT DEFAULT 'single',
            citizenship TEXT DEFAULT 'filipino',
            education_attainment TEXT,
            employment_status TEXT,
            occupation TEXT,
            mobile_number TEXT,
            telephone_number TEXT,
            email TEXT,
            philsys_last4 TEXT,
            philsys_hash TEXT,
            height REAL,
            weight REAL,
            ethnicity TEXT,
            religion TEXT DEFAULT 'roman_catholic',
            mother_maiden_first TEXT,
            mother_maiden_middle TEXT,
            mother_maiden_last TEXT,
            is_voter INTEGER DEFAULT 0,
            is_resident_voter INTEGER DEFAULT 0,
            is_pwd INTEGER DEFAULT 0,
            is_solo_parent INTEGER DEFAULT 0,
            is_ofw INTEGER DEFAULT 0,
            is_indigenous INTEGER DEFAULT 0,
            previous_barangay_code TEXT,
            date_of_transfer TEXT,
            reason_for_migration TEXT,
            relationship_to_head TEXT,
            household_code TEXT REFERENCES households(code),
            barangay_code TEXT,
            city_municipality_code TEXT,
            province_code TEXT,
            region_code TEXT,
            search_text TEXT,
            is_active INTEGER DEFAULT 1,
            created_by TEXT,
            created_at TEXT DEFAULT (datetime('now')),
            updated_at TEXT DEFAULT (datetime('now'))
        );
        CREATE INDEX IF NOT EXISTS idx_residents_barangay ON residents(barangay_code);
        CREATE INDEX IF NOT EXISTS idx_residents_household ON residents(household_code);
        CREATE INDEX IF NOT EXISTS idx_residents_active_created
            ON residents(is_active, created_at);
        CREATE UNIQUE INDEX IF NOT EXISTS idx_residents_philsys
            ON residents(philsys_hash) WHERE philsys_hash IS NOT NULL;

        -- Full-text search over resident names and email
        CREATE VIRTUAL TABLE IF NOT EXISTS residents_fts USING fts5(
            search_text,
            content='residents',
            content_rowid='id'
        );

        CREATE TRIGGER IF NOT EXISTS residents_ai AFTER INSERT ON residents BEGIN
            INSERT INTO residents_fts(rowid, search_text) VALUES (new.id, new.search_text);
        END;

        CREATE TRIGGER IF NOT EXISTS residents_ad AFTER DELETE ON residents BEGIN
            INSERT INTO residents_fts(residents_fts, rowid, search_text)
            VALUES ('delete', old.id, old.search_text);
        END;

        CREATE TRIGGER IF NOT EXISTS residents_au AFTER UPDATE OF search_text ON residents
        BEGIN
            INSERT INTO residents_fts(residents_fts, rowid, search_text)
            VALUES ('delete', old.id, old.search_text);
            INSERT INTO residents_fts(rowid, search_text) VALUES (new.id, new.search_text);
        END;

        CREATE TABLE IF NOT EXISTS schema_versions (
            version      INTEGER PRIMARY KEY,
            description  TEXT,
            applied_at   TEXT DEFAULT (datetime('now'))
        );
    """)

    conn.executemany(
        "INSERT OR IGNORE INTO roles (name, description, access_level) VALUES (?, ?, ?)",
        [(name, desc, level) for name, (desc, level) in ROLES.items()],
    )

    current_version = conn.execute(
        "SELECT MAX(version) FROM schema_versions"
    ).fetchone()[0]
    if current_version is None or current_version < _SCHEMA_VERSION:
        conn.execute(
            "INSERT OR REPLACE INTO schema_versions (version, description) "
            "VALUES (?, ?)",
            (_SCHEMA_VERSION, _SCHEMA_DESCRIPTION),
        )

    conn.commit()
    return conn


# ── PSGC import ───────────────────────────────────────────────────────────────

def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _normalise_code(raw) -> str:
    """PSGC codes lose their leading zero when Excel stores them as numbers."""
    code = _cell_text(raw)
    if isinstance(raw, (int, float)) and code.isdigit() and len(code) == 9:
        code = code.zfill(10)
    return code


def _header_index(header: tuple, *candidates: str) -> int | None:
    lowered = [_cell_text(h).lower() for h in header]
    for cand in candidates:
        for i, h in enumerate(lowered):
            if h.startswith(cand):
                return i
    return None


def import_psgc_workbook(conn: sqlite3.Connection, path: Path) -> dict[str, int]:
    """Load regions, provinces, cities/municipalities and barangays.

    Reads sheet ``PSGC`` of the PSA publication: code, name and
    ``Geographic Level`` columns (located by header text, falling back to
    columns A, B and D).  Parent codes are derived from the code structure;
    a city whose derived province is not in the workbook is stored as
    independent with no province.

    Returns:
        Row counts per level.
    """
    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        ws = wb["PSGC"]
        rows = ws.iter_rows(values_only=True)
        header = next(rows, ())
        code_i = _header_index(header, "10-digit psgc", "psgc", "code")
        name_i = _header_index(header, "name")
        level_i = _header_index(header, "geographic level", "level")
        code_i = 0 if code_i is None else code_i
        name_i = 1 if name_i is None else name_i
        level_i = 3 if level_i is None else level_i
        urban_i = _header_index(header, "urban", "2020 urban")

        regions, provinces, cities, barangays = [], [], [], []
        for row in rows:
            if not row or len(row) <= max(code_i, name_i, level_i):
                continue
            code = _normalise_code(row[code_i])
            name = _cell_text(row[name_i])
            level = _cell_text(row[level_i])
            if not code or not name or not level:
                continue
            try:
                parents = parent_codes(code)
            except ValueError:
                logger.warning("Skipping malformed PSGC code %r (%s)", code, name)
                continue
            if level == _LEVEL_REGION:
                regions.append((code, name))
            elif level == _LEVEL_PROVINCE:
                provinces.append((code, name, parents["region_code"]))
            elif level in _LEVELS_CITY:
                cities.append((code, name, parents["province_code"],
                               parents["region_code"], _LEVELS_CITY[level]))
            elif level == _LEVEL_BARANGAY:
                urban = _cell_text(row[urban_i]) if urban_i is not None and len(row) > urban_i else ""
                barangays.append((code, name, parents["city_municipality_code"], urban or None))
    finally:
        wb.close()

    province_codes = {p[0] for p in provinces}
    city_rows = []
    for code, name, prov, region, ctype in cities:
        independent = prov not in province_codes
        city_rows.append((code, name, None if independent else prov, region, ctype,
                          1 if independent else 0))

    counts = {
        "regions": batch_insert(
            conn, "INSERT OR REPLACE INTO psgc_regions (code, name) VALUES (?, ?)", regions),
        "provinces": batch_insert(
            conn, "INSERT OR REPLACE INTO psgc_provinces (code, name, region_code) "
                  "VALUES (?, ?, ?)", provinces),
        "cities": batch_insert(
            conn, "INSERT OR REPLACE INTO psgc_cities_municipalities "
                  "(code, name, province_code, region_code, type, is_independent) "
                  "VALUES (?, ?, ?, ?, ?, ?)", city_rows),
        "barangays": batch_insert(
            conn, "INSERT OR REPLACE INTO psgc_barangays "
                  "(code, name, city_municipality_code, urban_rural_status) "
                  "VALUES (?, ?, ?, ?)", barangays),
    }
    logger.info("PSGC workbook %s loaded: %s", path, counts)
    return counts


def import_psgc_csv(conn: sqlite3.Connection, level: str, path: Path) -> int:
    """Load one PSGC level from a CSV with ``code,name[,parent_code][,type]``.

    ``parent_code`` is the region (for provinces), the province (for cities,
    blank for independent cities) or the city (for barangays); when absent
    it is derived from the code.  For cities ``type`` defaults to
    ``municipality``; for barangays the fourth column is the urban/rural
    status.

    Raises:
        ValueError: If *level* is not region, province, city or barangay.
    """
    if level not in CSV_LEVELS:
        raise ValueError(f"Unknown PSGC level '{level}'; expected one of {CSV_LEVELS}")

    rows: list[tuple] = []
    with open(path, newline="", encoding="utf-8-sig") as fh:
        reader = csv.DictReader(fh)
        for rec in reader:
            code = _normalise_code(rec.get("code"))
            name = _cell_text(rec.get("name"))
            if not code or not name:
                continue
            parent = _cell_text(rec.get("parent_code"))
            try:
                derived = parent_codes(code)
            except ValueError:
                logger.warning("Skipping malformed PSGC code %r in %s", code, path)
                continue
            if level == "region":
                rows.append((code, name))
            elif level == "province":
                rows.append((code, name, parent or derived["region_code"]))
            elif level == "city":
                if "parent_code" in rec:
                    prov = parent or None
                else:
                    prov = derived["province_code"]
                    known = conn.execute("SELECT 1 FROM psgc_provinces WHERE code = ?",
                                         (prov,)).fetchone()
                    prov = prov if known else None
                rows.append((code, name, prov, derived["region_code"],
                             _cell_text(rec.get("type")) or "municipality",
                             0 if prov else 1))
            else:
                rows.append((code, name, parent or derived["city_municipality_code"],
                             _cell_text(rec.get("type")) or None))

    sql = {
        "region": "INSERT OR REPLACE INTO psgc_regions (code, name) VALUES (?, ?)",
        "province": "INSERT OR REPLACE INTO psgc_provinces (code, name, region_code) "
                    "VALUES (?, ?, ?)",
        "city": "INSERT OR REPLACE INTO psgc_cities_municipalities "
                "(code, name, province_code, region_code, type, is_independent) "
                "VALUES (?, ?, ?, ?, ?, ?)",
        "barangay": "INSERT OR REPLACE INTO psgc_barangays "
                    "(code, name, city_municipality_code, urban_rural_status) "
                    "VALUES (?, ?, ?, ?)",
    }[level]
    count = batch_insert(conn, sql, rows)
    logger.info("Loaded %d %s rows from %s", count, level, path)
    return count


# ── Accounts ──────────────────────────────────────────────────────────────────

def create_user(conn: sqlite3.Connection, email: str, password: str,
                role: str = "barangay_staff", barangay_code: str | None = None,
                first_name: str | None = None, last_name: str | None = None,
                rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    """Create an active account and return its id.

    Geo codes are derived from *barangay_code* when given.

    Raises:
        ValueError: On an invalid email, unknown role, unknown barangay or a
            duplicate email.
    """
    email = sanitize_email(email)
    if not validate_email_format(email):
        raise ValueError(f"Invalid email: '{email}'")
    if role not in ROLES:
        raise ValueError(f"Unknown role '{role}'; expected one of {', '.join(ROLES)}")
    geo = {"barangay_code": None, "city_municipality_code": None,
           "province_code": None, "region_code": None}
    if barangay_code:
        found = barangay_geo_codes(conn, barangay_code)
        if found is None:
            raise ValueError(f"Unknown barangay code '{barangay_code}'")
        geo = found
    if conn.execute("SELECT 1 FROM user_profiles WHERE email = ?", (email,)).fetchone():
        raise ValueError(f"User '{email}' already exists")

    user_id = str(uuid.uuid4())
    conn.execute(
        "INSERT INTO user_profiles (id, email, password_hash, first_name, last_name, "
        "role, barangay_code, city_municipality_code, province_code, region_code) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (user_id, email, hash_password(password, rounds), first_name, last_name, role,
         geo["barangay_code"], geo["city_municipality_code"], geo["province_code"],
         geo["region_code"]),
    )
    conn.commit()
    return user_id


# ── CLI ───────────────────────────────────────────────────────────────────────

def _parse_level_path(value: str) -> tuple[str, Path]:
    level, sep, path = value.partition("=")
    if not sep or level not in CSV_LEVELS:
        raise argparse.ArgumentTypeError(
            f"expected LEVEL=PATH with LEVEL in {', '.join(CSV_LEVELS)}")
    return level, Path(path)


def main(argv: list[str] | None = None) -> int:
    """Parse command-line arguments and build or seed the database."""
    parser = argparse.ArgumentParser(description="Build the RBI registry database")
    parser.add_argument("--db", type=Path, default=DEFAULT_DB_PATH,
                        help=f"Database path (default: {DEFAULT_DB_PATH})")
    parser.add_argument("--rebuild", action="store_true",
                        help="Delete the existing database first")
    parser.add_argument("--psgc-xlsx", type=Path, metavar="PATH",
                        help="Load the PSA PSGC publication workbook")
    parser.add_argument("--psgc-csv", type=_parse_level_path, action="append",
                        default=[], metavar="LEVEL=PATH",
                        help="Load one PSGC level from CSV (repeatable; "
                             "load region, province, city, barangay in order)")
    parser.add_argument("--create-admin", nargs="+",
                        metavar="ARG",
                        help="Create an account: EMAIL PASSWORD ROLE [BARANGAY]")
    parser.add_argument("--bcrypt-rounds", type=int, default=DEFAULT_BCRYPT_ROUNDS)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    start = time.time()

    if args.rebuild and args.db.exists():
        logger.info("Removing existing database %s", args.db)
        args.db.unlink()
        for suffix in ("-wal", "-shm"):
            Path(str(args.db) + suffix).unlink(missing_ok=True)

    conn = create_database(args.db)
    try:
        if args.psgc_xlsx:
            if not args.psgc_xlsx.exists():
                print(f"ERROR: workbook not found: {args.psgc_xlsx}")
                return 1
            import_psgc_workbook(conn, args.psgc_xlsx)
        for level, path in args.psgc_csv:
            if not path.exists():
                print(f"ERROR: CSV not found: {path}")
                return 1
            import_psgc_csv(conn, level, path)
        if args.create_admin:
            if len(args.create_admin) not in (3, 4):
                parser.error("--create-admin takes EMAIL PASSWORD ROLE [BARANGAY]")
            email, password, role, *rest = args.create_admin
            try:
                user_id = create_user(conn, email, password, role,
                                      barangay_code=rest[0] if rest else None,
                                      rounds=args.bcrypt_rounds)
            except ValueError as e:
                print(f"ERROR: {e}")
                return 1
            print(f"Created {role} account {email} ({user_id})")

        for table in ("psgc_regions", "psgc_provinces", "psgc_cities_municipalities",
                      "psgc_barangays", "user_profiles", "households", "residents"):
            print(f"  {table:<28} {get_table_count(conn, table):>8,}")
    finally:
        conn.close()

    print(f"Done in {time.time() - start:.1f}s: {args.db}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
