import os
import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATAWATCH_DATABASE_URL", "sqlite+pysqlite:///:memory:")

from datawatch.store import STORE
from datawatch.validation.cache import InMemoryWidgetCache
from datawatch.validation.transports import ViolationAlert


@pytest.fixture(autouse=True)
def reset_store():
    STORE.reset()
    yield


@pytest.fixture
def workspace():
    return STORE.create_workspace("Acme Analytics")


@pytest.fixture
def portal(workspace):
    return STORE.create_portal(workspace["id"], "Revenue")


class SpyWidgetCache(InMemoryWidgetCache):
    def __init__(self, default_ttl=None):
        super().__init__(default_ttl)
        self.reads: list[str] = []

    def get_widget_data(self, widget_id):
        self.reads.append(widget_id)
        return super().get_widget_data(widget_id)


@pytest.fixture
def cache():
    return SpyWidgetCache()


class RecordingTransport:
    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.alerts: list[ViolationAlert] = []

    def send_violation_alert(self, alert: ViolationAlert) -> bool:
        self.alerts.append(alert)
        return self.result


@pytest.fixture
def transport():
    return RecordingTransport()


def make_rule(workspace_id: str, **overrides):
    payload = {
        "workspace_id": workspace_id,
        "name": "Revenue is positive",
        "field_path": "metrics.revenue",
        "rule_type": "NO_NEGATIVE_VALUES",
        "config": {},
        "severity": "WARNING",
        "notify_emails": ["ops@example.com"],
    }
    payload.update(overrides)
    return STORE.create_rule(payload)
