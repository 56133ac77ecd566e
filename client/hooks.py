"""
Cached query and mutation helpers over :class:`client.http.ApiClient`.

Queries hit the API once and are then served from a :class:`TTLCache` keyed
``(entity, frozenset(params))`` until they expire or a mutation invalidates
them.  Mutations report their outcome through a :class:`Notifier`:

    hooks = DataHooks(ApiClient("http://localhost:8000", token=..., csrf_token=...))
    page = hooks.residents(page=1, sex="female")
    hooks.update_resident(42, {"occupation": "Teacher"})   # drops resident/list keys
"""

import logging
from typing import Any, Callable, Dict, Iterable, Optional

from client.http import ApiClient, ApiError
from client.notifications import Notifier
from utils.cache import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


def _freeze_value(value: Any) -> Any:
    if isinstance(value, dict):
        return _freeze(value)
    if isinstance(value, (list, tuple)):
        return tuple(_freeze_value(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze_value(v) for v in value)
    return value


def _freeze(params: Dict[str, Any]) -> frozenset:
    """Hashable cache key for query params; nested lists become tuples."""
    return frozenset((k, _freeze_value(v)) for k, v in params.items() if v is not None)


class DataHooks:

    def __init__(self, client: ApiClient, cache: Optional[TTLCache] = None,
                 notifier: Optional[Notifier] = None) -> None:
        self.client = client
        self.cache = cache if cache is not None else TTLCache(maxsize=256,
                                                              ttl_seconds=DEFAULT_TTL_SECONDS)
        self.notifier = notifier if notifier is not None else Notifier()

    # ── Queries ───────────────────────────────────────────────────────────────

    def _query(self, entity: str, path: str, params: Optional[Dict[str, Any]] = None,
               key_extra: Any = None) -> Any:
        params = params or {}
        key = (entity, key_extra, _freeze(params)) if key_extra is not None \
            else (entity, _freeze(params))
        return self.cache.get_or_set(key, lambda: self.client.get(path, params=params or None))

    def residents(self, **filters: Any) -> Dict[str, Any]:
        return self._query("residents", "/residents", filters)

    def resident(self, resident_id: int) -> Dict[str, Any]:
        return self._query("resident", f"/residents/{resident_id}", key_extra=resident_id)

    def households(self, **filters: Any) -> Dict[str, Any]:
        return self._query("households", "/households", filters)

    def household(self, code: str) -> Dict[str, Any]:
        return self._query("household", f"/households/{code}", key_extra=code)

    def household_members(self, code: str) -> Dict[str, Any]:
        return self._query("household_members", f"/households/{code}/members",
                           key_extra=code)

    def household_stats(self) -> Dict[str, Any]:
        return self._query("households_stats", "/households/stats")

    def dashboard_stats(self, barangay_code: Optional[str] = None) -> Dict[str, Any]:
        return self._query("dashboard", "/dashboard/stats",
                           {"barangay_code": barangay_code})

    def regions(self) -> Dict[str, Any]:
        return self._query("regions", "/addresses/regions")

    # ── Mutations ─────────────────────────────────────────────────────────────

    def _mutate(self, call: Callable[[], Any], invalidate: Iterable[tuple],
                success: str, failure: str) -> Any:
        """Run *call*; on success drop *invalidate* keys and toast *success*.

        Raises:
            ApiError: Re-raised after an error toast.
        """
        try:
            result = call()
        except ApiError as exc:
            self.notifier.error(f"{failure}: {exc.message}")
            raise
        for prefix in invalidate:
            dropped = self.cache.invalidate(prefix)
            logger.debug("Invalidated %d cache entries for %r", dropped, prefix)
        self.notifier.success(success)
        return result

    def create_resident(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._mutate(
            lambda: self.client.post("/residents", json=data),
            [("residents",), ("households",), ("households_stats",),
             ("household",), ("household_members",), ("dashboard",)],
            "Resident created successfully", "Failed to create resident",
        )

    def update_resident(self, resident_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._mutate(
            lambda: self.client.put(f"/residents/{resident_id}", json=data),
            [("resident", resident_id), ("residents",), ("households",),
             ("households_stats",), ("household",), ("household_members",),
             ("dashboard",)],
            "Resident updated successfully", "Failed to update resident",
        )

    def delete_resident(self, resident_id: int) -> Dict[str, Any]:
        return self._mutate(
            lambda: self.client.delete(f"/residents/{resident_id}"),
            [("resident", resident_id), ("residents",), ("households",),
             ("households_stats",), ("household",), ("household_members",),
             ("dashboard",)],
            "Resident deleted successfully", "Failed to delete resident",
        )

    def create_household(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._mutate(
            lambda: self.client.post("/households", json=data),
            [("households",), ("households_stats",), ("residents",), ("resident",),
             ("household",), ("household_members",), ("dashboard",)],
            "Household created successfully", "Failed to create household",
        )

    def update_household(self, code: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._mutate(
            lambda: self.client.put(f"/households/{code}", json=data),
            [("household", code), ("household_members", code), ("households",),
             ("households_stats",), ("resident",), ("dashboard",)],
            "Household updated successfully", "Failed to update household",
        )

    def delete_household(self, code: str) -> Dict[str, Any]:
        return self._mutate(
            lambda: self.client.delete(f"/households/{code}"),
            [("household", code), ("household_members", code), ("households",),
             ("households_stats",), ("dashboard",)],
            "Household deleted successfully", "Failed to delete household",
        )

    def add_household_member(self, code: str, resident_id: int,
                             relationship_to_head: Optional[str] = None) -> Dict[str, Any]:
        body = {"resident_id": resident_id, "relationship_to_head": relationship_to_head}
        # The resident's previous household changes too, so all household keys go
        return self._mutate(
            lambda: self.client.post(f"/households/{code}/members", json=body),
            [("household",), ("household_members",), ("households",),
             ("households_stats",), ("resident", resident_id), ("residents",),
             ("dashboard",)],
            "Member added successfully", "Failed to add member",
        )

    def remove_household_member(self, code: str, resident_id: int) -> Dict[str, Any]:
        return self._mutate(
            lambda: self.client.delete(f"/households/{code}/members/{resident_id}"),
            [("household", code), ("household_members", code), ("households",),
             ("households_stats",), ("resident", resident_id), ("residents",),
             ("dashboard",)],
            "Member removed successfully", "Failed to remove member",
        )
