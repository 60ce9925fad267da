from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_rule
from datawatch.store import STORE
from datawatch.validation.evaluators import RuleEvaluator
from datawatch.validation.history import ViolationHistorySource, parse_numeric


def _seed(rule, values, age=timedelta(hours=1)):
    ts = datetime.now(timezone.utc) - age
    for offset, value in enumerate(values):
        STORE.create_violation(
            {
                "rule_id": rule["id"],
                "timestamp": ts - timedelta(minutes=offset),
                "field_path": rule["field_path"],
                "actual_value": value,
                "expected_value": None,
                "violation_type": "SPIKE_DETECTED",
                "severity": "WARNING",
            }
        )


@pytest.fixture
def spike_rule(workspace):
    return make_rule(workspace["id"], rule_type="SPIKE_DETECTION", name="Sessions spike")


def test_parse_numeric():
    assert parse_numeric("12.5") == 12.5
    assert parse_numeric("-3") == -3.0
    assert parse_numeric("abc") is None
    assert parse_numeric("Infinity") is None
    assert parse_numeric(None) is None


def test_fewer_than_ten_violations_is_insufficient(spike_rule):
    _seed(spike_rule, ["10"] * 9)

    assert ViolationHistorySource(STORE).load(spike_rule) is None
    assert RuleEvaluator(STORE).evaluate(spike_rule, 10_000, {}) is None


def test_ten_violations_form_a_baseline(spike_rule):
    _seed(spike_rule, ["8", "12"] * 5)

    history = ViolationHistorySource(STORE).load(spike_rule)

    assert sorted(history) == [8.0] * 5 + [12.0] * 5
    result = RuleEvaluator(STORE).evaluate(spike_rule, 17, {})
    assert result.type == "SPIKE_DETECTED"


def test_old_violations_are_outside_the_window(spike_rule):
    _seed(spike_rule, ["10"] * 5)
    _seed(spike_rule, ["10"] * 10, age=timedelta(days=8))

    assert ViolationHistorySource(STORE).load(spike_rule) is None


def test_minimum_counts_rows_before_dropping_non_numeric(spike_rule):
    _seed(spike_rule, ["10"] * 8 + ["n/a", "null"])

    history = ViolationHistorySource(STORE).load(spike_rule)

    assert history == [10.0] * 8


def test_history_is_capped_at_the_limit(spike_rule):
    _seed(spike_rule, ["1"] * 15)

    history = ViolationHistorySource(STORE, limit=12).load(spike_rule)

    assert len(history) == 12


def test_other_rules_do_not_contribute(workspace, spike_rule):
    other = make_rule(workspace["id"], rule_type="SPIKE_DETECTION", name="Other")
    _seed(other, ["10"] * 20)

    assert ViolationHistorySource(STORE).load(spike_rule) is None
