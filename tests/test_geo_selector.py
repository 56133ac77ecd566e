"""Tests for client/geo_selector.py: cascade, pre-filling and filtering."""
import pytest

from client.geo_selector import GeographicSelector
from client.http import ApiError
from conftest import (
    BARANGAY, CITY, NCR, OTHER_BARANGAY, PASSWORD, PROVINCE, QC_BARANGAY,
    QUEZON_CITY, REGION,
)

pytest.importorskip("fastapi")


class OptionsClient:
    """Answers option requests from a dict keyed by (path, parent code)."""

    def __init__(self, responses, authenticated=False, location=None):
        self.responses = responses
        self.is_authenticated = authenticated
        self.location = location
        self.calls = []

    def get(self, path, params=None):
        self.calls.append((path, params))
        if path == "/user/geographic-location":
            if self.location is None:
                raise ApiError(404, "No barangay assigned to this account")
            return {"hierarchy": self.location}
        parent = next(iter(params.values())) if params else None
        result = self.responses.get((path, parent))
        if isinstance(result, Exception):
            raise result
        return {"data": result or [], "count": len(result or [])}


def _opts(*labels):
    return [{"value": f"{i}", "label": label} for i, label in enumerate(labels)]


# ═══════════════════════════════════════════════════════════════════════════════
# Cascade against a fake client
# ═══════════════════════════════════════════════════════════════════════════════

class TestCascade:
    @pytest.fixture()
    def fake(self):
        return OptionsClient({
            ("/addresses/regions/public", None): _opts("CALABARZON", "NCR"),
            ("/addresses/provinces/public", "R1"): _opts("Batangas", "Cavite"),
            ("/addresses/cities/public", "P1"): _opts("Dasmarinas City"),
            ("/addresses/barangays/public", "C1"): _opts("Burol", "Paliparan"),
        })

    def test_select_loads_next_level(self, fake):
        changes = []
        selector = GeographicSelector(fake, on_change=changes.append)
        selector.load_regions()
        selector.select("region", "R1")
        assert [o["label"] for o in selector.options["province"]] == ["Batangas", "Cavite"]
        assert fake.calls[-1] == ("/addresses/provinces/public", {"regionCode": "R1"})
        assert changes[-1]["region_code"] == "R1"

    def test_region_without_provinces_fetches_cities_by_region(self, fake):
        fake.responses[("/addresses/cities/public", "NCR")] = _opts("Quezon City")
        selector = GeographicSelector(fake)
        selector.select("region", "NCR")
        assert fake.calls[-1] == ("/addresses/cities/public", {"regionCode": "NCR"})
        assert [o["label"] for o in selector.options["city"]] == ["Quezon City"]

    def test_region_with_provinces_waits_for_province(self, fake):
        selector = GeographicSelector(fake)
        selector.select("region", "R1")
        assert [c[0] for c in fake.calls] == ["/addresses/provinces/public"]
        assert selector.options["city"] == []

    def test_reselecting_clears_descendants(self, fake):
        selector = GeographicSelector(fake)
        selector.select("region", "R1")
        selector.select("province", "P1")
        selector.select("city", "C1")
        selector.select("barangay", "B1")
        selector.select("province", "P1")
        assert selector.selected["city"] is None
        assert selector.selected["barangay"] is None
        assert selector.options["barangay"] == []
        assert len(selector.options["city"]) == 1

    def test_select_none_only_clears(self, fake):
        selector = GeographicSelector(fake)
        selector.select("region", "R1")
        calls = len(fake.calls)
        selector.select("region", None)
        assert len(fake.calls) == calls
        assert selector.options["province"] == []
        assert selector.value == {"region_code": None, "province_code": None,
                                  "city_municipality_code": None, "barangay_code": None}

    def test_selecting_barangay_fetches_nothing(self, fake):
        selector = GeographicSelector(fake)
        selector.select("barangay", "B1")
        assert fake.calls == []

    def test_unknown_level(self, fake):
        with pytest.raises(ValueError, match="Unknown level"):
            GeographicSelector(fake).select("purok", "x")

    def test_fetch_failure_leaves_level_empty(self, caplog):
        fake = OptionsClient({
            ("/addresses/provinces/public", "R1"): ApiError(0, "Connection refused"),
        })
        selector = GeographicSelector(fake)
        selector.options["province"] = _opts("stale")
        selector.select("region", "R1")
        assert selector.options["province"] == []
        assert "Failed to fetch province options" in caplog.text

    def test_authenticated_endpoints(self, fake):
        selector = GeographicSelector(fake, public=False)
        selector.load_regions()
        assert fake.calls[0] == ("/addresses/regions", None)


class TestSearchFilter:
    def test_filter_commits_on_flush(self):
        fake = OptionsClient({("/addresses/regions/public", None): _opts(
            "Region IV-A (CALABARZON)", "National Capital Region (NCR)")})
        selector = GeographicSelector(fake, debounce_seconds=10)
        selector.load_regions()
        selector.set_search("region", "ncr")
        assert len(selector.filtered_options("region")) == 2
        selector.flush_search("region")
        assert [o["label"] for o in selector.filtered_options("region")] == [
            "National Capital Region (NCR)"]
        selector.close()

    def test_clearing_parent_drops_child_search(self):
        fake = OptionsClient({})
        selector = GeographicSelector(fake, debounce_seconds=10)
        selector.set_search("province", "cav")
        selector.flush_search("province")
        selector.set_search("city", "das")
        selector.select("region", "R1")
        assert selector.search["province"] == ""
        assert not selector._filters["city"].pending


# ═══════════════════════════════════════════════════════════════════════════════
# Pre-filling
# ═══════════════════════════════════════════════════════════════════════════════

class TestPrefill:
    def test_restore_only_once(self):
        fake = OptionsClient({})
        changes = []
        selector = GeographicSelector(fake, on_change=changes.append)
        assert selector.restore({"region_code": "R1", "province_code": "P1",
                                 "city_municipality_code": "C1", "barangay_code": "B1"})
        assert selector.value["barangay_code"] == "B1"
        assert [c[0] for c in fake.calls] == [
            "/addresses/provinces/public", "/addresses/cities/public",
            "/addresses/barangays/public"]
        assert not selector.restore({"region": "R2"})
        assert selector.selected["region"] == "R1"
        assert len(changes) == 1

    def test_restore_without_region_is_ignored(self):
        selector = GeographicSelector(OptionsClient({}))
        assert not selector.restore({"city": "C1"})
        assert not selector.initial_loaded

    def test_auto_populate_needs_session(self):
        fake = OptionsClient({}, authenticated=False)
        assert not GeographicSelector(fake).auto_populate()
        assert fake.calls == []

    def test_auto_populate_without_barangay(self, caplog):
        fake = OptionsClient({}, authenticated=True, location=None)
        assert not GeographicSelector(fake).auto_populate()
        assert "Could not load user location" in caplog.text

    def test_initialize_prefers_initial_codes(self):
        fake = OptionsClient({}, authenticated=True, location={
            "region": {"code": "R9"}, "province": None, "city": None, "barangay": None})
        selector = GeographicSelector(fake)
        selector.initialize({"region": "R1"})
        assert selector.selected["region"] == "R1"
        assert ("/user/geographic-location", None) not in fake.calls


# ═══════════════════════════════════════════════════════════════════════════════
# Against the API
# ═══════════════════════════════════════════════════════════════════════════════

class TestAgainstApp:
    def test_public_cascade(self, api_client):
        selector = GeographicSelector(api_client)
        selector.load_regions()
        assert {o["value"] for o in selector.options["region"]} == {REGION, NCR}
        selector.select("region", REGION)
        assert [o["label"] for o in selector.options["province"]] == ["Cavite", "Laguna"]
        selector.select("province", PROVINCE)
        assert [o["value"] for o in selector.options["city"]] == [CITY]
        selector.select("city", CITY)
        assert {o["value"] for o in selector.options["barangay"]} == {
            BARANGAY, OTHER_BARANGAY}

    def test_initialize_auto_populates(self, api_client):
        api_client.sign_in("clerk@rbi.test", PASSWORD)
        selector = GeographicSelector(api_client, public=False)
        selector.initialize()
        assert selector.value == {"region_code": REGION, "province_code": PROVINCE,
                                  "city_municipality_code": CITY,
                                  "barangay_code": BARANGAY}
        assert len(selector.options["barangay"]) == 2

    def test_independent_city_skips_province(self, api_client):
        api_client.sign_in("qc@rbi.test", PASSWORD)
        selector = GeographicSelector(api_client)
        assert selector.auto_populate()
        assert selector.selected["province"] is None
        assert selector.selected["city"] == QUEZON_CITY
        assert selector.selected["barangay"] == QC_BARANGAY
        assert selector.options["province"] == []
        assert [o["value"] for o in selector.options["city"]] == [QUEZON_CITY]
        assert [o["value"] for o in selector.options["barangay"]] == [QC_BARANGAY]

    def test_region_without_provinces_lists_cities(self, api_client):
        selector = GeographicSelector(api_client)
        selector.select("region", NCR)
        assert selector.options["province"] == []
        assert [o["label"] for o in selector.options["city"]] == ["Quezon City"]
        selector.select("city", QUEZON_CITY)
        assert [o["value"] for o in selector.options["barangay"]] == [QC_BARANGAY]
        assert selector.value["province_code"] is None
