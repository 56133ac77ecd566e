"""
Pytest fixtures for the RBI registry tests.

Provides a freshly built SQLite database per test, seeded with a small PSGC
hierarchy (CALABARZON with Cavite and Laguna, plus NCR with independent
Quezon City), address parts and one account per access level.  API tests
get a TestClient wired to that database and a helper that signs in and
returns the Authorization and CSRF headers.
"""

import os

# Read once by utils.config when api.app is imported
os.environ.setdefault("APP_ENV", "test")
os.environ["APP_BCRYPT_ROUNDS"] = "4"

import sys  # noqa: E402
from pathlib import Path  # noqa: E402

import pytest  # noqa: E402

from build_rbi_db import create_database, create_user  # noqa: E402

PASSWORD = "password123"

REGION = "0400000000"
PROVINCE = "0402100000"
OTHER_PROVINCE = "0403400000"
CITY = "0402108000"
OTHER_CITY = "0403428000"
BARANGAY = "0402108001"
OTHER_BARANGAY = "0402108002"
LAGUNA_BARANGAY = "0403428001"
NCR = "1300000000"
QUEZON_CITY = "1381300000"
QC_BARANGAY = "1381300001"

# email -> (role, barangay)
USERS = {
    "admin@rbi.test": ("super_admin", None),
    "clerk@rbi.test": ("barangay_admin", BARANGAY),
    "neighbor@rbi.test": ("barangay_staff", OTHER_BARANGAY),
    "mayor@rbi.test": ("city_admin", BARANGAY),
    "qc@rbi.test": ("barangay_staff", QC_BARANGAY),
    "nobody@rbi.test": ("barangay_staff", None),
}


def seed_psgc(conn) -> None:
    conn.executemany("INSERT INTO psgc_regions (code, name) VALUES (?, ?)", [
        (REGION, "Region IV-A (CALABARZON)"),
        (NCR, "National Capital Region (NCR)"),
    ])
    conn.executemany(
        "INSERT INTO psgc_provinces (code, name, region_code) VALUES (?, ?, ?)", [
            (PROVINCE, "Cavite", REGION),
            (OTHER_PROVINCE, "Laguna", REGION),
        ])
    conn.executemany(
        "INSERT INTO psgc_cities_municipalities "
        "(code, name, province_code, region_code, type, is_independent) "
        "VALUES (?, ?, ?, ?, ?, ?)", [
            (CITY, "Dasmarinas City", PROVINCE, REGION, "city", 0),
            (OTHER_CITY, "Santa Rosa City", OTHER_PROVINCE, REGION, "city", 0),
            (QUEZON_CITY, "Quezon City", None, NCR, "city", 1),
        ])
    conn.executemany(
        "INSERT INTO psgc_barangays (code, name, city_municipality_code, urban_rural_status) "
        "VALUES (?, ?, ?, ?)", [
            (BARANGAY, "Burol", CITY, "urban"),
            (OTHER_BARANGAY, "Paliparan", CITY, "rural"),
            (LAGUNA_BARANGAY, "Balibago", OTHER_CITY, "urban"),
            (QC_BARANGAY, "Bagong Pag-asa", QUEZON_CITY, "urban"),
        ])
    conn.execute(
        "INSERT INTO geo_subdivisions (id, name, type, barangay_code) VALUES (?, ?, ?, ?)",
        (1, "Villa Verde", "subdivision", BARANGAY))
    conn.execute(
        "INSERT INTO geo_subdivisions (id, name, type, barangay_code) VALUES (?, ?, ?, ?)",
        (2, "Purok 3", "purok", BARANGAY))
    conn.executemany(
        "INSERT INTO geo_streets (name, barangay_code, subdivision_id) VALUES (?, ?, ?)", [
            ("Mabini Street", BARANGAY, 1),
            ("Rizal Avenue", BARANGAY, None),
        ])
    conn.commit()


@pytest.fixture()
def db_path(tmp_path) -> Path:
    """A built and seeded database file."""
    path = tmp_path / "rbi.sqlite"
    conn = create_database(path)
    try:
        seed_psgc(conn)
        for email, (role, barangay) in USERS.items():
            create_user(conn, email, PASSWORD, role, barangay_code=barangay,
                        first_name="Test", last_name=role.replace("_", " ").title(),
                        rounds=4)
    finally:
        conn.close()
    return path


@pytest.fixture(autouse=True)
def reset_module_state():
    """Clear the per-process dashboard statistics cache."""
    def _reset():
        dashboard = sys.modules.get("api.routes.dashboard")
        if dashboard is not None:
            dashboard._stats_cache.clear()

    _reset()
    yield
    _reset()


@pytest.fixture()
def client(db_path):
    """TestClient over a fresh database."""
    pytest.importorskip("fastapi")
    pytest.importorskip("httpx")
    from fastapi.testclient import TestClient
    from api.app import create_app

    app = create_app(db_path=db_path)
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture()
def login(client):
    """Sign in as one of USERS; returns request headers for that session."""
    def _login(email: str = "clerk@rbi.test") -> dict:
        resp = client.post("/api/v1/auth/sign-in",
                           json={"email": email, "password": PASSWORD})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        return {
            "Authorization": f"Bearer {body['access_token']}",
            "X-CSRF-Token": body["csrf_token"],
        }
    return _login


def resident_payload(**overrides) -> dict:
    payload = {
        "first_name": "Juan",
        "middle_name": "Reyes",
        "last_name": "Dela Cruz",
        "birthdate": "1990-05-15",
        "sex": "male",
        "civil_status": "married",
        "employment_status": "employed",
        "education_attainment": "college",
        "mobile_number": "09171234567",
        "email": "juan@example.ph",
        "is_voter": True,
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def make_resident(client, login):
    """Create a resident through the API and return its id."""
    def _make(headers: dict | None = None, **overrides) -> int:
        headers = headers or login()
        resp = client.post("/api/v1/residents", json=resident_payload(**overrides),
                           headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()["resident_id"]
    return _make


@pytest.fixture()
def make_household(client, login):
    """Register a household with members; returns the response body."""
    def _make(headers: dict | None = None, members: list | None = None, **fields) -> dict:
        headers = headers or login()
        body = {"barangay_code": BARANGAY, "street_name": "Mabini Street",
                "house_number": "12", "household_type": "nuclear",
                "tenure_status": "owned", **fields}
        body["members"] = members if members is not None else [
            resident_payload(),
            resident_payload(first_name="Maria", sex="female", email="maria@example.ph",
                             birthdate="1992-03-01"),
        ]
        resp = client.post("/api/v1/households", json=body, headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _make


class _StreamedResponse:
    """TestClient response with the ``iter_content`` that requests provides."""

    def __init__(self, resp):
        self._resp = resp
        self.status_code = resp.status_code
        self.headers = resp.headers
        self.content = resp.content
        self.text = resp.text

    def json(self):
        return self._resp.json()

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start:start + chunk_size]


class TestClientSession:
    """requests.Session stand-in that routes ApiClient calls into a TestClient."""

    __test__ = False

    def __init__(self, test_client):
        self.test_client = test_client
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    def request(self, method, url, params=None, json=None, headers=None,
                timeout=None, stream=False):
        self.calls.append((method, url))
        resp = self.test_client.request(method, url, params=params, json=json,
                                        headers=headers)
        return _StreamedResponse(resp)

    def close(self):
        self.closed = True


@pytest.fixture()
def api_client(client):
    """client.http.ApiClient talking to the TestClient app."""
    from client.http import ApiClient
    return ApiClient("http://testserver", session=TestClientSession(client))
