"""
Tests for client/http.py: ApiClient against the real app, plus transport
failure handling.
"""
import pytest
import requests

from client.http import ApiClient, ApiError, _clean_params
from conftest import BARANGAY, PASSWORD, resident_payload


class TestHelpers:
    def test_clean_params(self):
        assert _clean_params({"a": None, "b": True, "c": False, "d": 2}) == {
            "b": "true", "c": "false", "d": 2}
        assert _clean_params({}) is None
        assert _clean_params(None) is None

    def test_url_prefix(self):
        api = ApiClient("http://rbi.local/")
        assert api._url("/residents") == "http://rbi.local/api/v1/residents"
        assert api._url("residents") == "http://rbi.local/api/v1/residents"
        assert api._url("/api/v1/search") == "http://rbi.local/api/v1/search"
        api.close()

    def test_headers(self):
        api = ApiClient("http://rbi.local", token="t", csrf_token="c")
        assert "X-CSRF-Token" not in api._headers("GET")
        assert api._headers("DELETE")["X-CSRF-Token"] == "c"
        assert api._headers("GET")["Authorization"] == "Bearer t"

    def test_field_errors(self):
        err = ApiError(422, "Validation failed",
                       {"errors": [{"field": "sex", "message": "bad"}]})
        assert err.field_errors == [{"field": "sex", "message": "bad"}]
        assert ApiError(500, "boom").field_errors == []


class _FailingSession:
    def request(self, *args, **kwargs):
        raise requests.ConnectionError("connection refused")


def test_transport_failure_becomes_status_zero():
    api = ApiClient("http://rbi.local", session=_FailingSession())
    with pytest.raises(ApiError) as excinfo:
        api.get("/health")
    assert excinfo.value.status_code == 0
    assert "connection refused" in excinfo.value.message


class TestAgainstApp:
    def test_sign_in_keeps_tokens(self, api_client):
        body = api_client.sign_in("clerk@rbi.test", PASSWORD)
        assert api_client.is_authenticated
        assert api_client.csrf_token == body["csrf_token"]
        assert api_client.user["barangay_code"] == BARANGAY

    def test_bad_credentials(self, api_client):
        with pytest.raises(ApiError) as excinfo:
            api_client.sign_in("clerk@rbi.test", "wrong-password")
        assert excinfo.value.status_code == 401
        assert excinfo.value.message == "Invalid email or password"
        assert not api_client.is_authenticated

    def test_local_sign_in_limit(self, api_client):
        for _ in range(5):
            with pytest.raises(ApiError):
                api_client.sign_in("Clerk@rbi.test", "wrong-password")
        calls = len(api_client.session.calls)
        with pytest.raises(ApiError) as excinfo:
            api_client.sign_in("clerk@rbi.test", PASSWORD)
        assert excinfo.value.status_code == 429
        assert len(api_client.session.calls) == calls

    def test_crud_round(self, api_client):
        api_client.sign_in("clerk@rbi.test", PASSWORD)
        created = api_client.post("/residents", json=resident_payload())
        rid = created["resident_id"]
        assert api_client.get(f"/residents/{rid}")["first_name"] == "Juan"
        api_client.put(f"/residents/{rid}", json={"occupation": "Driver"})
        page = api_client.get("/residents", params={"is_voter": True, "sex": None})
        assert page["items"][0]["occupation"] == "Driver"
        api_client.delete(f"/residents/{rid}")
        with pytest.raises(ApiError) as excinfo:
            api_client.get(f"/residents/{rid}")
        assert excinfo.value.status_code == 404

    def test_validation_error_payload(self, api_client):
        api_client.sign_in("clerk@rbi.test", PASSWORD)
        with pytest.raises(ApiError) as excinfo:
            api_client.post("/residents", json={"sex": "male"})
        assert excinfo.value.status_code == 422
        assert {e["field"] for e in excinfo.value.field_errors} == {
            "first_name", "last_name", "birthdate"}

    def test_request_validation_message(self, api_client):
        api_client.sign_in("clerk@rbi.test", PASSWORD)
        with pytest.raises(ApiError) as excinfo:
            api_client.get("/residents", params={"page": 0})
        assert excinfo.value.message == "Invalid request"

    def test_sign_out(self, api_client):
        api_client.sign_in("clerk@rbi.test", PASSWORD)
        token = api_client.token
        api_client.sign_out()
        assert not api_client.is_authenticated
        api_client.token = token
        with pytest.raises(ApiError) as excinfo:
            api_client.get("/auth/me")
        assert excinfo.value.status_code == 401

    def test_download_to_directory(self, api_client, tmp_path):
        api_client.sign_in("clerk@rbi.test", PASSWORD)
        api_client.post("/residents", json=resident_payload())
        path = api_client.download("/download/residents", params={"fmt": "csv"},
                                   dest=tmp_path)
        assert path == tmp_path / "residents.csv"
        assert "Juan" in path.read_text()

    def test_context_manager_closes_session(self, api_client):
        with api_client as api:
            api.get("/addresses/regions/public")
        assert api_client.session.closed
