"""Python client for the RBI registry API."""

from client.http import ApiClient, ApiError
from client.notifications import Notifier, Toast
from client.debounce import Debouncer
from client.hooks import DataHooks
from client.geo_selector import GeographicSelector, LEVELS
from client.command_menu import (
    CommandMenu,
    MenuItem,
    RecentItemsStore,
    STATIC_ITEMS,
)

__all__ = [
    "ApiClient",
    "ApiError",
    "Notifier",
    "Toast",
    "Debouncer",
    "DataHooks",
    "GeographicSelector",
    "LEVELS",
    "CommandMenu",
    "MenuItem",
    "RecentItemsStore",
    "STATIC_ITEMS",
]
