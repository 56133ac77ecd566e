"""
Tests for the auth endpoints and the bearer/CSRF dependencies.
"""
import pytest

from conftest import BARANGAY, CITY, PASSWORD

pytest.importorskip("fastapi")


class TestSignUp:
    def test_creates_barangay_staff(self, client):
        resp = client.post("/api/v1/auth/sign-up", json={
            "email": "New.Clerk@RBI.test", "password": "longenough",
            "first_name": "Ana", "last_name": "Santos", "barangay_code": BARANGAY,
        })
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["email"] == "new.clerk@rbi.test"
        assert body["role"] == "barangay_staff"

        signin = client.post("/api/v1/auth/sign-in", json={
            "email": "new.clerk@rbi.test", "password": "longenough"})
        assert signin.status_code == 200
        user = signin.json()["user"]
        assert user["access_level"] == "barangay"
        assert user["city_municipality_code"] == CITY

    def test_field_errors(self, client):
        resp = client.post("/api/v1/auth/sign-up", json={
            "email": "not-an-email", "password": "short", "barangay_code": "9999999999"})
        assert resp.status_code == 422
        fields = {e["field"] for e in resp.json()["errors"]}
        assert fields == {"email", "password", "barangay_code"}

    def test_duplicate_email(self, client):
        resp = client.post("/api/v1/auth/sign-up", json={
            "email": "clerk@rbi.test", "password": "longenough"})
        assert resp.status_code == 409


class TestSignIn:
    def test_token_and_csrf(self, client):
        resp = client.post("/api/v1/auth/sign-in",
                           json={"email": "CLERK@rbi.test", "password": PASSWORD})
        assert resp.status_code == 200
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["expires_in"] > 0
        assert body["csrf_token"]
        assert body["user"]["role"] == "barangay_admin"
        assert "password_hash" not in body["user"]

    def test_bad_password(self, client):
        resp = client.post("/api/v1/auth/sign-in",
                           json={"email": "clerk@rbi.test", "password": "wrong-password"})
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_unknown_user(self, client):
        resp = client.post("/api/v1/auth/sign-in",
                           json={"email": "ghost@rbi.test", "password": PASSWORD})
        assert resp.status_code == 401

    def test_rate_limited(self, client):
        for _ in range(20):
            client.post("/api/v1/auth/sign-in",
                        json={"email": "ghost@rbi.test", "password": "x"})
        resp = client.post("/api/v1/auth/sign-in",
                           json={"email": "ghost@rbi.test", "password": "x"})
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "60"


class TestSession:
    def test_me(self, client, login):
        headers = login()
        resp = client.get("/api/v1/auth/me", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["email"] == "clerk@rbi.test"
        assert resp.json()["barangay_code"] == BARANGAY

    def test_missing_token(self, client):
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_garbage_token(self, client):
        resp = client.get("/api/v1/auth/me",
                          headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401

    def test_csrf_endpoint_matches_sign_in(self, client, login):
        headers = login()
        resp = client.get("/api/v1/auth/csrf",
                          headers={"Authorization": headers["Authorization"]})
        assert resp.json()["csrf_token"] == headers["X-CSRF-Token"]

    def test_sign_out_requires_csrf(self, client, login):
        headers = login()
        resp = client.post("/api/v1/auth/sign-out",
                           headers={"Authorization": headers["Authorization"]})
        assert resp.status_code == 403
        resp = client.post("/api/v1/auth/sign-out",
                           headers={**headers, "X-CSRF-Token": "forged"})
        assert resp.status_code == 403

    def test_sign_out_revokes_token(self, client, login):
        headers = login()
        assert client.post("/api/v1/auth/sign-out", headers=headers).status_code == 204
        resp = client.get("/api/v1/auth/me", headers=headers)
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Session has ended"

    def test_csrf_token_is_per_session(self, client, login):
        first, second = login(), login()
        assert first["X-CSRF-Token"] != second["X-CSRF-Token"]
        mixed = {**first, "X-CSRF-Token": second["X-CSRF-Token"]}
        assert client.post("/api/v1/auth/sign-out", headers=mixed).status_code == 403


class TestUserEndpoints:
    def test_geographic_location(self, client, login):
        resp = client.get("/api/v1/user/geographic-location", headers=login())
        assert resp.status_code == 200
        tree = resp.json()["hierarchy"]
        assert tree["barangay"] == {"code": BARANGAY, "name": "Burol"}
        assert tree["city"]["name"] == "Dasmarinas City"
        assert tree["province"]["name"] == "Cavite"

    def test_geographic_location_huc(self, client, login):
        resp = client.get("/api/v1/user/geographic-location", headers=login("qc@rbi.test"))
        tree = resp.json()["hierarchy"]
        assert tree["province"] is None
        assert tree["city"]["name"] == "Quezon City"

    def test_geographic_location_without_barangay(self, client, login):
        resp = client.get("/api/v1/user/geographic-location",
                          headers=login("nobody@rbi.test"))
        assert resp.status_code == 404

    def test_profile_hides_password_hash(self, client, login):
        resp = client.get("/api/v1/user/profile", headers=login("admin@rbi.test"))
        assert resp.status_code == 200
        body = resp.json()
        assert body["role"] == "super_admin"
        assert body["is_active"] is True
        assert "password_hash" not in body
