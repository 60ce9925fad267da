"""Find the document a rule's field path is evaluated against.

Tiers are tried in a fixed order and the first one that yields a document
wins:

1. integration: up to 10 widgets bound to ``rule["integration_id"]``; the
   first cached payload across all of them, else the first non-empty config.
2. portal: the 5 most recently updated widgets of ``rule["portal_id"]``,
   aggregated by widget name (cached payload, else config).
3. workspace: the first portal of ``rule["workspace_id"]``, up to 3 of its
   widgets; the first cached payload, else the first widget's config.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from datawatch.validation.cache import WidgetDataCache

if TYPE_CHECKING:
    from datawatch.store import SqlStore


logger = logging.getLogger(__name__)

INTEGRATION_WIDGET_LIMIT = 10
PORTAL_WIDGET_LIMIT = 5
WORKSPACE_WIDGET_LIMIT = 3


class DataResolver:
    def __init__(self, store: SqlStore, cache: WidgetDataCache) -> None:
        self._store = store
        self._cache = cache

    def resolve(self, rule: dict[str, Any]) -> Any | None:
        for tier in (self._from_integration, self._from_portal, self._from_workspace):
            document = tier(rule)
            if document is not None:
                return document
        logger.debug("No data available for validation rule %s", rule["id"])
        return None

    def _from_integration(self, rule: dict[str, Any]) -> Any | None:
        integration_id = rule.get("integration_id")
        if not integration_id:
            return None
        widgets = self._store.list_widgets_for_integration(
            integration_id, limit=INTEGRATION_WIDGET_LIMIT
        )
        for widget in widgets:
            cached = self._cache.get_widget_data(widget["id"])
            if cached is not None:
                logger.debug("Using cached data for widget %s", widget["id"])
                return cached
        for widget in widgets:
            if widget["config"]:
                return widget["config"]
        return None

    def _from_portal(self, rule: dict[str, Any]) -> Any | None:
        portal_id = rule.get("portal_id")
        if not portal_id:
            return None
        widgets = self._store.list_recent_portal_widgets(portal_id, limit=PORTAL_WIDGET_LIMIT)
        if not widgets:
            return None
        aggregated: dict[str, Any] = {}
        for widget in widgets:
            cached = self._cache.get_widget_data(widget["id"])
            if cached is not None:
                aggregated[widget["name"]] = cached
            elif widget["config"] is not None:
                aggregated[widget["name"]] = widget["config"]
        return aggregated

    def _from_workspace(self, rule: dict[str, Any]) -> Any | None:
        workspace_id = rule.get("workspace_id")
        if not workspace_id:
            return None
        widgets = self._store.list_first_portal_widgets(workspace_id, limit=WORKSPACE_WIDGET_LIMIT)
        if not widgets:
            return None
        for widget in widgets:
            cached = self._cache.get_widget_data(widget["id"])
            if cached is not None:
                return cached
        return widgets[0]["config"]
