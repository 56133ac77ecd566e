"""
Command menu: static navigation and actions plus live registry search.

With an empty query the menu shows recent items and then every static item.
Typing runs a debounced ``GET /api/v1/search`` whose hits are listed first,
followed by the static items matching the text.  Each search that runs is
kept as a recent item; choosing it later types the query again.  Arrow keys
move the selection (wrapping), Enter runs it and Escape closes the menu.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from client.debounce import Debouncer
from client.http import ApiClient, ApiError

logger = logging.getLogger(__name__)

SEARCH_GROUP = "Search Results"
RECENT_GROUP = "Recent"
QUERY_ITEM_PREFIX = "search-query-"
SEARCH_LIMIT = 5


@dataclass
class MenuItem:
    id: str
    label: str
    group: str
    description: str = ""
    href: Optional[str] = None
    keywords: Tuple[str, ...] = ()
    action: Optional[Callable[["CommandMenu"], Any]] = field(default=None, repr=False,
                                                             compare=False)

    def matches(self, query: str) -> bool:
        needle = query.strip().lower()
        if not needle:
            return True
        haystack = [self.label, self.description, *self.keywords]
        return any(needle in (text or "").lower() for text in haystack)

    @property
    def search_query(self) -> Optional[str]:
        """The query a recorded search re-runs, or None for other items."""
        if self.id.startswith(QUERY_ITEM_PREFIX) and self.keywords:
            return self.keywords[0]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "label": self.label, "group": self.group,
                "description": self.description, "href": self.href,
                "keywords": list(self.keywords)}


# ── Data actions ──────────────────────────────────────────────────────────────

def _export(entity: str, fmt: str = "csv") -> Callable[["CommandMenu"], Path]:
    def run(menu: "CommandMenu") -> Path:
        return menu.client.download(f"/download/{entity}", params={"fmt": fmt},
                                    dest=menu.export_dir)
    return run


def _backup(menu: "CommandMenu") -> List[Path]:
    """NDJSON snapshot of residents and households into the export folder."""
    return [
        menu.client.download(f"/download/{entity}", params={"fmt": "json"},
                             dest=menu.export_dir)
        for entity in ("residents", "households")
    ]


STATIC_ITEMS: Tuple[MenuItem, ...] = (
    MenuItem("nav-dashboard", "Dashboard", "Navigation", "View overview and statistics",
             "/dashboard", ("home", "overview", "stats", "main")),
    MenuItem("nav-residents", "Residents", "Navigation", "Manage resident records",
             "/residents", ("people", "citizens", "records", "population")),
    MenuItem("nav-households", "Households", "Navigation", "Manage household information",
             "/households", ("families", "homes", "address", "dwelling")),
    MenuItem("nav-reports", "Reports", "Navigation", "Generate and view reports",
             "/reports", ("analytics", "statistics", "data", "charts")),
    MenuItem("nav-certifications", "Certifications", "Navigation",
             "Manage certificates and clearances", "/certification",
             ("certificates", "clearance", "documents", "barangay clearance")),
    MenuItem("nav-settings", "Settings", "Navigation", "Configure system preferences",
             "/settings", ("config", "preferences", "admin", "configuration")),
    MenuItem("action-add-resident", "Add New Resident", "Quick Actions",
             "Register a new resident", "/residents/create",
             ("register", "new", "create", "add resident")),
    MenuItem("action-create-household", "Create Household", "Quick Actions",
             "Add a new household record", "/households/create",
             ("new", "family", "create", "household")),
    MenuItem("action-rbi-form", "RBI Registration Form", "Quick Actions",
             "Records of barangay inhabitants by household",
             "/reports/records-of-barangay-inhabitants-by-household",
             ("rbi", "form", "registration", "inhabitants")),
    MenuItem("export-residents", "Export Resident Data", "Data Actions",
             "Download resident information as CSV", None,
             ("download", "csv", "export", "residents"), _export("residents")),
    MenuItem("export-households", "Export Household Data", "Data Actions",
             "Download household information as CSV", None,
             ("download", "csv", "export", "households"), _export("households")),
    MenuItem("admin-backup", "Backup Data", "Data Actions", "Create system backup", None,
             ("backup", "export", "save", "archive"), _backup),
)


# ── Recent items ──────────────────────────────────────────────────────────────

def _query_item(query: str) -> MenuItem:
    text = query.strip()
    return MenuItem(id=f"{QUERY_ITEM_PREFIX}{text.lower()}", label=f"Search: {text}",
                    group=RECENT_GROUP, description="Recent search", keywords=(text,))


class RecentItemsStore:
    """Most-recently-used items, newest first, optionally persisted as JSON."""

    def __init__(self, path: Optional[Path] = None, max_items: int = 5) -> None:
        self.path = Path(path) if path is not None else None
        self.max_items = max_items
        self._items: List[Dict[str, Any]] = self._load()

    def _load(self) -> List[Dict[str, Any]]:
        if self.path is None or not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable recent items file %s: %s", self.path, exc)
            return []
        if not isinstance(data, list):
            return []
        return [d for d in data if isinstance(d, dict) and d.get("id")][: self.max_items]

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._items, indent=2), encoding="utf-8")

    def add(self, item: MenuItem) -> None:
        entry = item.to_dict()
        entry["group"] = RECENT_GROUP
        self._items = [entry] + [d for d in self._items if d["id"] != item.id]
        del self._items[self.max_items:]
        self._save()

    def items(self, actions: Optional[Dict[str, MenuItem]] = None) -> List[MenuItem]:
        """Stored entries as menu items; *actions* re-attaches callables by id."""
        actions = actions or {}
        result = []
        for d in self._items:
            source = actions.get(d["id"])
            result.append(MenuItem(
                id=d["id"], label=d.get("label", ""), group=RECENT_GROUP,
                description=d.get("description") or "", href=d.get("href"),
                keywords=tuple(d.get("keywords") or ()),
                action=source.action if source is not None else None,
            ))
        return result

    def clear(self) -> None:
        self._items = []
        self._save()

    def __len__(self) -> int:
        return len(self._items)


# ── Menu ──────────────────────────────────────────────────────────────────────

class CommandMenu:

    def __init__(self, client: ApiClient, static_items: Sequence[MenuItem] = STATIC_ITEMS,
                 recent_store: Optional[RecentItemsStore] = None, max_results: int = 10,
                 debounce_seconds: float = 0.3,
                 navigate: Optional[Callable[[str], Any]] = None,
                 export_dir: Any = ".") -> None:
        self.client = client
        self.static_items = list(static_items)
        self.recent_store = recent_store if recent_store is not None else RecentItemsStore()
        self.max_results = max_results
        self.navigate = navigate
        self.export_dir = Path(export_dir)
        self.is_open = False
        self.query = ""
        self.selected_index = 0
        self.search_results: List[MenuItem] = []
        self._lock = threading.Lock()
        self._search = Debouncer(self._run_search, delay=debounce_seconds)

    # ── Open / close ──────────────────────────────────────────────────────────

    def open(self) -> None:
        self.is_open = True
        self.selected_index = 0

    def close(self) -> None:
        self._search.cancel()
        self.is_open = False
        self.query = ""
        self.selected_index = 0
        with self._lock:
            self.search_results = []

    def toggle(self) -> None:
        if self.is_open:
            self.close()
        else:
            self.open()

    # ── Query ─────────────────────────────────────────────────────────────────

    def set_query(self, query: str) -> None:
        self.query = query or ""
        self.selected_index = 0
        if not self.query.strip():
            self._search.cancel()
            with self._lock:
                self.search_results = []
            return
        self._search.call(self.query)

    def flush_search(self) -> None:
        """Run a pending debounced search immediately."""
        self._search.flush()

    def _run_search(self, query: str) -> None:
        try:
            body = self.client.get("/search", params={"q": query.strip(),
                                                      "limit": SEARCH_LIMIT})
        except ApiError as exc:
            logger.error("Command menu search failed for %r: %s", query, exc)
            body = None
        results = [
            MenuItem(
                id=f"search-{hit['type']}-{hit['id']}",
                label=hit.get("title", ""),
                group=SEARCH_GROUP,
                description=hit.get("subtitle") or "",
                href=hit.get("href"),
            )
            for hit in ((body or {}).get("results") or [])
        ]
        with self._lock:
            if query != self.query:
                # A newer query has been typed since this one was sent
                return
            self.search_results = results
        self.recent_store.add(_query_item(query))

    @property
    def items(self) -> List[MenuItem]:
        if not self.query.strip():
            by_id = {item.id: item for item in self.static_items}
            combined = self.recent_store.items(by_id) + self.static_items
            return combined[: max(self.max_results, len(self.static_items))]
        with self._lock:
            dynamic = list(self.search_results)
        matching = [item for item in self.static_items if item.matches(self.query)]
        return (dynamic + matching)[: self.max_results]

    # ── Keyboard ──────────────────────────────────────────────────────────────

    def move_down(self) -> None:
        count = len(self.items)
        self.selected_index = (self.selected_index + 1) % count if count else 0

    def move_up(self) -> None:
        count = len(self.items)
        self.selected_index = (self.selected_index - 1) % count if count else 0

    def handle_key(self, key: str) -> Any:
        if key == "ArrowDown":
            self.move_down()
        elif key == "ArrowUp":
            self.move_up()
        elif key == "Enter":
            return self.execute()
        elif key == "Escape":
            self.close()
        return None

    def execute(self, index: Optional[int] = None) -> Any:
        """Run or navigate to the item at *index* (default: the selection)."""
        items = self.items
        index = self.selected_index if index is None else index
        if not 0 <= index < len(items):
            return None
        item = items[index]
        if item.search_query is not None:
            self.recent_store.add(item)
            self.set_query(item.search_query)
            return None
        result = None
        if item.action is not None:
            result = item.action(self)
        elif item.href and self.navigate is not None:
            result = self.navigate(item.href)
        logger.info("Command menu ran %s", item.id)
        self.recent_store.add(item)
        self.close()
        return result
