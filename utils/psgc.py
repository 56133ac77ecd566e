"""Philippine Standard Geographic Code helpers.

Codes come in two published widths:

    10 digits  RR PPP MM BBB   e.g. 0402108001
     9 digits  RR PP  MM BBB   e.g. 042108001

Parents are derived by zero-filling the trailing segments.  Independent and
NCR cities carry province digits that match no province row; callers treat a
missing province as "independent".
"""

import sqlite3
from typing import Any, Dict, List, Optional

from utils.strings import normalize_whitespace

LEVELS = ("region", "province", "city", "barangay")

# (region, province, city) prefix lengths per code width
_PREFIX_LENGTHS = {10: (2, 5, 7), 9: (2, 4, 6)}

ABBREVIATIONS: Dict[str, List[str]] = {
    "qc": ["quezon city"],
    "ncr": ["national capital region", "metro manila"],
    "mla": ["manila"],
    "cav": ["cavite"],
    "bgy": ["barangay"],
    "brgy": ["barangay"],
    "sta": ["santa"],
    "sto": ["santo"],
    "gen": ["general"],
    "pres": ["president"],
    "mt": ["mount"],
}


def parent_codes(code: str) -> Dict[str, Optional[str]]:
    """Return the region, province and city codes implied by *code*.

    Raises:
        ValueError: If *code* is not a 9 or 10 digit PSGC code.
    """
    if not code or not code.isdigit() or len(code) not in _PREFIX_LENGTHS:
        raise ValueError(f"Invalid PSGC code: '{code}'")
    width = len(code)
    reg, prov, city = _PREFIX_LENGTHS[width]
    return {
        "region_code": code[:reg].ljust(width, "0"),
        "province_code": code[:prov].ljust(width, "0"),
        "city_municipality_code": code[:city].ljust(width, "0"),
    }


def normalize_query(query: str) -> str:
    """Lowercase, collapse whitespace and drop a leading ``city of``."""
    q = normalize_whitespace(query.lower())
    if q.startswith("city of "):
        q = q[len("city of "):]
    return q


def query_variations(query: str) -> List[str]:
    """The normalised query plus every abbreviation expansion of it.

    Example:
        "sta rosa" -> ["sta rosa", "santa rosa"]
        "qc"       -> ["qc", "quezon city"]
    """
    base = normalize_query(query)
    variations = [base]
    words = base.split(" ")
    for i, word in enumerate(words):
        for expansion in ABBREVIATIONS.get(word, []):
            candidate = " ".join(words[:i] + [expansion] + words[i + 1:])
            if candidate not in variations:
                variations.append(candidate)
    return variations


def full_address(*names: Optional[str]) -> str:
    """Comma-join the non-empty names, most specific first."""
    return ", ".join(n for n in names if n)


_HIERARCHY_SQL = """
    SELECT b.code AS barangay_code, b.name AS barangay_name,
           c.code AS city_code, c.name AS city_name,
           c.type AS city_type, c.is_independent,
           p.code AS province_code, p.name AS province_name,
           r.code AS region_code, r.name AS region_name
    FROM psgc_barangays b
    JOIN psgc_cities_municipalities c ON c.code = b.city_municipality_code
    LEFT JOIN psgc_provinces p ON p.code = c.province_code
    LEFT JOIN psgc_regions r ON r.code = COALESCE(c.region_code, p.region_code)
    WHERE b.code = ?
"""


def lookup_barangay(conn: sqlite3.Connection, barangay_code: str) -> Optional[Dict[str, Any]]:
    """Resolve a barangay to its full hierarchy, or None when unknown."""
    cursor = conn.execute(_HIERARCHY_SQL, (barangay_code,))
    row = cursor.fetchone()
    if row is None:
        return None
    # works with or without row_factory=sqlite3.Row
    return dict(zip([d[0] for d in cursor.description], tuple(row)))


def barangay_geo_codes(conn: sqlite3.Connection, barangay_code: str) -> Optional[Dict[str, Any]]:
    """The four geo columns stored on residents, households and profiles."""
    info = lookup_barangay(conn, barangay_code)
    if info is None:
        return None
    return {
        "barangay_code": info["barangay_code"],
        "city_municipality_code": info["city_code"],
        "province_code": info["province_code"],
        "region_code": info["region_code"],
    }


def hierarchy(conn: sqlite3.Connection, barangay_code: str) -> Optional[Dict[str, Any]]:
    """``{region, province, city, barangay}`` as ``{code, name}`` (or None)."""
    info = lookup_barangay(conn, barangay_code)
    if info is None:
        return None

    def node(code_key: str, name_key: str) -> Optional[Dict[str, str]]:
        if not info[code_key]:
            return None
        return {"code": info[code_key], "name": info[name_key]}

    return {
        "region": node("region_code", "region_name"),
        "province": node("province_code", "province_name"),
        "city": node("city_code", "city_name"),
        "barangay": node("barangay_code", "barangay_name"),
    }
