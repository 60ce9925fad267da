import math

from conftest import make_rule
from datawatch.store import STORE
from datawatch.validation.evaluators import ViolationDescriptor
from datawatch.validation.recorder import ViolationRecorder, json_safe


def test_record_stores_rule_context_and_descriptor(workspace):
    rule = make_rule(workspace["id"], severity="ERROR")
    descriptor = ViolationDescriptor(type="NEGATIVE_VALUE", expected_value=">= 0", metadata={"actual_value": -2.0})

    violation = ViolationRecorder(STORE).record(rule, -2.0, descriptor)

    assert violation["rule_id"] == rule["id"]
    assert violation["field_path"] == "metrics.revenue"
    assert violation["actual_value"] == "-2"
    assert violation["expected_value"] == ">= 0"
    assert violation["violation_type"] == "NEGATIVE_VALUE"
    assert violation["severity"] == "ERROR"
    assert violation["resolved"] is False
    assert violation["metadata"] == {"actual_value": -2.0}


def test_record_without_metadata(workspace):
    rule = make_rule(workspace["id"], rule_type="REQUIRED_FIELD")
    descriptor = ViolationDescriptor(type="REQUIRED_FIELD_MISSING", expected_value="any value")

    violation = ViolationRecorder(STORE).record(rule, None, descriptor)

    assert violation["actual_value"] == "null"
    assert violation["metadata"] is None


def test_repeated_failures_are_not_deduplicated(workspace):
    rule = make_rule(workspace["id"])
    descriptor = ViolationDescriptor(type="NEGATIVE_VALUE", expected_value=">= 0", metadata={"actual_value": -1})
    recorder = ViolationRecorder(STORE)

    recorder.record(rule, -1, descriptor)
    recorder.record(rule, -1, descriptor)

    assert len(STORE.list_violations(workspace["id"])) == 2


def test_non_finite_metadata_is_stored_as_strings(workspace):
    rule = make_rule(workspace["id"], rule_type="SPIKE_DETECTION")
    descriptor = ViolationDescriptor(
        type="SPIKE_DETECTED",
        expected_value="10.00 ± 0.00",
        metadata={"actual_value": 50, "deviation": math.inf, "std_dev": 0.0},
    )

    violation = ViolationRecorder(STORE).record(rule, 50, descriptor)

    assert violation["metadata"]["deviation"] == "Infinity"
    assert violation["metadata"]["std_dev"] == 0.0


def test_json_safe_walks_nested_values():
    assert json_safe({"a": [math.nan, -math.inf, 1.5]}) == {"a": ["NaN", "-Infinity", 1.5]}
