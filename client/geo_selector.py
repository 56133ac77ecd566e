"""
Cascading region → province → city → barangay selector.

Holds the state a form needs to pick a barangay: the selected code, the
option list and a search string per level.  Choosing a level clears every
level below it and loads the options of the next one.  Fetch failures are
logged and leave that level empty; nothing is retried.

    selector = GeographicSelector(client, on_change=print)
    selector.initialize()                     # regions, then the user's own area
    selector.select("region", "0400000000")   # loads provinces
    selector.set_search("province", "bat")    # debounced filter
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from client.debounce import Debouncer
from client.http import ApiClient, ApiError

logger = logging.getLogger(__name__)

LEVELS = ("region", "province", "city", "barangay")

# level -> (endpoint, parent query parameter)
_ENDPOINTS = {
    "region": ("regions", None),
    "province": ("provinces", "regionCode"),
    "city": ("cities", "provinceCode"),
    "barangay": ("barangays", "cityCode"),
}

_VALUE_KEYS = {
    "region": "region_code",
    "province": "province_code",
    "city": "city_municipality_code",
    "barangay": "barangay_code",
}


def _check_level(level: str) -> int:
    if level not in LEVELS:
        raise ValueError(f"Unknown level {level!r}; use one of {LEVELS}")
    return LEVELS.index(level)


class GeographicSelector:

    def __init__(self, client: ApiClient,
                 on_change: Optional[Callable[[Dict[str, Optional[str]]], None]] = None,
                 debounce_seconds: float = 0.3, public: bool = True) -> None:
        self.client = client
        self.on_change = on_change
        self.public = public
        self.selected: Dict[str, Optional[str]] = {lvl: None for lvl in LEVELS}
        self.options: Dict[str, List[Dict[str, Any]]] = {lvl: [] for lvl in LEVELS}
        self.search: Dict[str, str] = {lvl: "" for lvl in LEVELS}
        self._pending_search: Dict[str, str] = {lvl: "" for lvl in LEVELS}
        self._filters = {
            lvl: Debouncer(self._commit_search, delay=debounce_seconds) for lvl in LEVELS
        }
        self.initial_loaded = False

    # ── Fetching ──────────────────────────────────────────────────────────────

    def _fetch(self, level: str, parent_code: Optional[str] = None,
               parent_param: Optional[str] = None) -> List[Dict[str, Any]]:
        endpoint, default_param = _ENDPOINTS[level]
        parent_param = parent_param or default_param
        path = f"/addresses/{endpoint}" + ("/public" if self.public else "")
        params = {parent_param: parent_code} if parent_param else None
        try:
            body = self.client.get(path, params=params)
        except ApiError as exc:
            logger.error("Failed to fetch %s options: %s", level, exc)
            self.options[level] = []
            return []
        self.options[level] = list((body or {}).get("data") or [])
        return self.options[level]

    def load_regions(self) -> List[Dict[str, Any]]:
        return self._fetch("region")

    def _load_cities(self, region: str, province: Optional[str]) -> List[Dict[str, Any]]:
        """Cities of *province*, or the province-less cities of *region* (NCR)."""
        if province:
            return self._fetch("city", province)
        if self.options["province"]:
            self.options["city"] = []
            return []
        return self._fetch("city", region, "regionCode")

    # ── Selection ─────────────────────────────────────────────────────────────

    def _clear_below(self, index: int) -> None:
        for lvl in LEVELS[index + 1:]:
            self.selected[lvl] = None
            self.options[lvl] = []
            self.search[lvl] = ""
            self._pending_search[lvl] = ""
            self._filters[lvl].cancel()

    def _emit(self) -> None:
        if self.on_change is not None:
            self.on_change(self.value)

    def select(self, level: str, code: Optional[str]) -> None:
        """Set *level* to *code*, reset everything below and load the next level."""
        index = _check_level(level)
        self.selected[level] = code
        self._clear_below(index)
        if code and index + 1 < len(LEVELS):
            self._fetch(LEVELS[index + 1], code)
            if level == "region":
                self._load_cities(code, None)
        self._emit()

    # ── Search ────────────────────────────────────────────────────────────────

    def _commit_search(self, level: str) -> None:
        self.search[level] = self._pending_search[level]

    def set_search(self, level: str, text: str) -> None:
        _check_level(level)
        self._pending_search[level] = text or ""
        self._filters[level].call(level)

    def flush_search(self, level: str) -> None:
        _check_level(level)
        self._filters[level].flush()

    def filtered_options(self, level: str) -> List[Dict[str, Any]]:
        _check_level(level)
        needle = self.search[level].strip().lower()
        if not needle:
            return list(self.options[level])
        return [o for o in self.options[level] if needle in str(o.get("label", "")).lower()]

    # ── Pre-filling ───────────────────────────────────────────────────────────

    def _apply(self, codes: Dict[str, Optional[str]]) -> None:
        """Walk down from region, fetching each child list, until a code is missing.

        A missing province (independent city) does not stop the walk: the
        region's province-less cities are listed and the city and barangay
        codes still apply.
        """
        region = codes.get("region")
        if not region:
            return
        self.selected["region"] = region
        self._clear_below(0)
        self._fetch("province", region)

        province = codes.get("province")
        if province:
            self.selected["province"] = province
        self._load_cities(region, province)

        city = codes.get("city")
        if not city:
            return
        self.selected["city"] = city
        self._fetch("barangay", city)

        barangay = codes.get("barangay")
        if barangay:
            self.selected["barangay"] = barangay

    def restore(self, initial_codes: Dict[str, Optional[str]]) -> bool:
        """Apply externally supplied codes once; later calls are ignored.

        Keys may be level names or the ``*_code`` column names.
        """
        if self.initial_loaded:
            return False
        codes = {
            lvl: initial_codes.get(lvl) or initial_codes.get(_VALUE_KEYS[lvl])
            for lvl in LEVELS
        }
        if not codes["region"]:
            return False
        self._apply(codes)
        self.initial_loaded = True
        self._emit()
        return True

    def auto_populate(self) -> bool:
        """Pre-select the signed-in user's own barangay hierarchy."""
        if not self.client.is_authenticated:
            logger.debug("Skipping auto-populate: no session")
            return False
        try:
            body = self.client.get("/user/geographic-location")
        except ApiError as exc:
            logger.warning("Could not load user location: %s", exc)
            return False
        hierarchy = (body or {}).get("hierarchy") or {}
        codes = {lvl: (hierarchy.get(lvl) or {}).get("code") for lvl in LEVELS}
        if not codes["region"]:
            return False
        self._apply(codes)
        self._emit()
        return True

    def initialize(self, initial_codes: Optional[Dict[str, Optional[str]]] = None,
                   auto_populate: bool = True) -> None:
        self.load_regions()
        if initial_codes and (initial_codes.get("region") or initial_codes.get("region_code")):
            self.restore(initial_codes)
        elif auto_populate:
            self.auto_populate()

    # ── State ─────────────────────────────────────────────────────────────────

    @property
    def value(self) -> Dict[str, Optional[str]]:
        return {_VALUE_KEYS[lvl]: self.selected[lvl] for lvl in LEVELS}

    def close(self) -> None:
        for debouncer in self._filters.values():
            debouncer.cancel()
