"""Tests for utils/psgc.py: code arithmetic, query expansion and hierarchy lookup."""
import pytest

from build_rbi_db import create_database
from conftest import (
    BARANGAY,
    CITY,
    NCR,
    PROVINCE,
    QC_BARANGAY,
    QUEZON_CITY,
    REGION,
    seed_psgc,
)
from utils.psgc import (
    barangay_geo_codes,
    full_address,
    hierarchy,
    lookup_barangay,
    normalize_query,
    parent_codes,
    query_variations,
)


class TestParentCodes:
    def test_ten_digit(self):
        assert parent_codes("0402108001") == {
            "region_code": "0400000000",
            "province_code": "0402100000",
            "city_municipality_code": "0402108000",
        }

    def test_nine_digit(self):
        assert parent_codes("042108001") == {
            "region_code": "040000000",
            "province_code": "042100000",
            "city_municipality_code": "042108000",
        }

    @pytest.mark.parametrize("code", ["", "04021", "04021080011", "04021O8001"])
    def test_invalid(self, code):
        with pytest.raises(ValueError, match="Invalid PSGC code"):
            parent_codes(code)


class TestQueryVariations:
    def test_normalize(self):
        assert normalize_query("  City of   Dasmarinas ") == "dasmarinas"

    def test_abbreviation_expanded(self):
        assert query_variations("Sta Rosa") == ["sta rosa", "santa rosa"]

    def test_multiple_expansions(self):
        assert query_variations("ncr") == ["ncr", "national capital region", "metro manila"]

    def test_no_abbreviation(self):
        assert query_variations("burol") == ["burol"]


def test_full_address_skips_blanks():
    assert full_address("Burol", None, "Dasmarinas City", "", "Cavite") == \
        "Burol, Dasmarinas City, Cavite"


@pytest.fixture()
def conn(tmp_path):
    db = create_database(tmp_path / "psgc.sqlite")
    seed_psgc(db)
    yield db
    db.close()


class TestLookup:
    def test_lookup_barangay(self, conn):
        info = lookup_barangay(conn, BARANGAY)
        assert info["barangay_name"] == "Burol"
        assert info["city_code"] == CITY
        assert info["province_name"] == "Cavite"
        assert info["region_code"] == REGION

    def test_unknown_barangay(self, conn):
        assert lookup_barangay(conn, "9999999999") is None
        assert hierarchy(conn, "9999999999") is None
        assert barangay_geo_codes(conn, "9999999999") is None

    def test_independent_city_has_no_province(self, conn):
        tree = hierarchy(conn, QC_BARANGAY)
        assert tree["province"] is None
        assert tree["city"] == {"code": QUEZON_CITY, "name": "Quezon City"}
        assert tree["region"]["code"] == NCR

    def test_geo_codes(self, conn):
        assert barangay_geo_codes(conn, BARANGAY) == {
            "barangay_code": BARANGAY,
            "city_municipality_code": CITY,
            "province_code": PROVINCE,
            "region_code": REGION,
        }
