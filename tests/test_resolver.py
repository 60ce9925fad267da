from datetime import datetime, timedelta, timezone

from datawatch.store import STORE
from datawatch.validation.resolver import DataResolver


def _widget(portal_id, name, config=None, **extra):
    payload = {"portal_id": portal_id, "name": name, "config": config or {}}
    payload.update(extra)
    return STORE.create_widget(payload)


def _rule(workspace_id, **scope):
    rule = {"id": "rule-1", "workspace_id": workspace_id, "integration_id": None, "portal_id": None}
    rule.update(scope)
    return rule


class TestIntegrationTier:
    def test_cache_wins_over_config_across_all_widgets(self, workspace, portal, cache):
        first = _widget(portal["id"], "A", {"revenue": 1}, integration_id="stripe", position=0)
        second = _widget(portal["id"], "B", {"revenue": 2}, integration_id="stripe", position=1)
        cache.set_widget_data(second["id"], {"revenue": 99})

        document = DataResolver(STORE, cache).resolve(_rule(workspace["id"], integration_id="stripe"))

        assert document == {"revenue": 99}
        assert cache.reads[:2] == [first["id"], second["id"]]

    def test_falls_back_to_first_non_empty_config(self, workspace, portal, cache):
        _widget(portal["id"], "Empty", {}, integration_id="stripe", position=0)
        _widget(portal["id"], "Configured", {"revenue": 5}, integration_id="stripe", position=1)

        document = DataResolver(STORE, cache).resolve(_rule(workspace["id"], integration_id="stripe"))

        assert document == {"revenue": 5}

    def test_reads_at_most_ten_widgets(self, workspace, portal, cache):
        widgets = [
            _widget(portal["id"], f"W{i}", {}, integration_id="stripe", position=i) for i in range(12)
        ]
        cache.set_widget_data(widgets[11]["id"], {"revenue": 1})

        DataResolver(STORE, cache).resolve(_rule(workspace["id"], integration_id="stripe"))

        assert cache.reads[:10] == [w["id"] for w in widgets[:10]]
        assert widgets[11]["id"] not in cache.reads

    def test_falls_through_to_later_tiers_when_nothing_is_found(self, workspace, portal, cache):
        _widget(portal["id"], "Unrelated", {"revenue": 7})

        document = DataResolver(STORE, cache).resolve(_rule(workspace["id"], integration_id="missing"))

        assert document == {"revenue": 7}


class TestPortalTier:
    def test_aggregates_by_widget_name(self, workspace, portal, cache):
        revenue = _widget(portal["id"], "Revenue", {"static": True})
        _widget(portal["id"], "Costs", {"total": 10})
        cache.set_widget_data(revenue["id"], {"total": 500})

        document = DataResolver(STORE, cache).resolve(_rule(workspace["id"], portal_id=portal["id"]))

        assert document == {"Revenue": {"total": 500}, "Costs": {"total": 10}}

    def test_uses_five_most_recently_updated_widgets(self, workspace, portal, cache):
        now = datetime.now(timezone.utc)
        for i in range(7):
            _widget(portal["id"], f"W{i}", {"i": i}, updated_at=now - timedelta(minutes=i))

        document = DataResolver(STORE, cache).resolve(_rule(workspace["id"], portal_id=portal["id"]))

        assert set(document) == {"W0", "W1", "W2", "W3", "W4"}

    def test_config_update_moves_widget_into_recent_set(self, workspace, portal, cache):
        now = datetime.now(timezone.utc)
        widgets = [
            _widget(portal["id"], f"W{i}", {"i": i}, updated_at=now - timedelta(hours=1, minutes=i))
            for i in range(6)
        ]

        STORE.update_widget_config(widgets[5]["id"], {"i": 50})
        document = DataResolver(STORE, cache).resolve(_rule(workspace["id"], portal_id=portal["id"]))

        assert document["W5"] == {"i": 50}
        assert set(document) == {"W0", "W1", "W2", "W3", "W5"}

    def test_portal_without_widgets_falls_through(self, workspace, cache):
        empty_portal = STORE.create_portal(workspace["id"], "Empty")

        document = DataResolver(STORE, cache).resolve(_rule(workspace["id"], portal_id=empty_portal["id"]))

        assert document is None


class TestWorkspaceTier:
    def test_first_cached_widget_of_first_portal(self, workspace, portal, cache):
        _widget(portal["id"], "A", {"a": 1}, position=0)
        second = _widget(portal["id"], "B", {"b": 2}, position=1)
        later_portal = STORE.create_portal(workspace["id"], "Later")
        _widget(later_portal["id"], "C", {"c": 3})
        cache.set_widget_data(second["id"], {"live": True})

        document = DataResolver(STORE, cache).resolve(_rule(workspace["id"]))

        assert document == {"live": True}

    def test_first_widget_config_without_cache(self, workspace, portal, cache):
        _widget(portal["id"], "A", {"a": 1}, position=0)
        _widget(portal["id"], "B", {"b": 2}, position=1)

        assert DataResolver(STORE, cache).resolve(_rule(workspace["id"])) == {"a": 1}

    def test_only_three_widgets_are_considered(self, workspace, portal, cache):
        widgets = [_widget(portal["id"], f"W{i}", {"i": i}, position=i) for i in range(4)]
        cache.set_widget_data(widgets[3]["id"], {"live": True})

        assert DataResolver(STORE, cache).resolve(_rule(workspace["id"])) == {"i": 0}


def test_no_data_anywhere_returns_none(workspace, cache):
    assert DataResolver(STORE, cache).resolve(_rule(workspace["id"])) is None
