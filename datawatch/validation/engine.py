"""Scheduled and on-demand rule evaluation.

A batch run walks every enabled rule in creation order, one at a time. Each
rule runs under its own timeout and its own error boundary so that a broken
rule never stops the others. Once the batch deadline has passed no new rule
is started; the rest are counted as skipped.

A rule that overruns its timeout keeps running on an abandoned thread, but
its fence is cancelled first, so nothing it computes reaches the store, the
notifier or the run counters. The run lock is renewed before every rule and
the batch stops as soon as renewal fails.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterator

from datawatch.config import DEFAULT_SCHEDULE, Settings, ValidationSchedule
from datawatch.models import ValidationRunStatus
from datawatch.validation.cache import build_widget_cache
from datawatch.validation.errors import RuleTimeoutError, RunInProgressError
from datawatch.validation.evaluators import RuleEvaluator
from datawatch.validation.locks import DatabaseRunLease, RunLock
from datawatch.validation.notifier import NotificationStatus, ViolationNotifier
from datawatch.validation.paths import get_value_by_path
from datawatch.validation.recorder import ViolationRecorder
from datawatch.validation.resolver import DataResolver
from datawatch.validation.transports import build_transport

if TYPE_CHECKING:
    from datawatch.store import SqlStore


logger = logging.getLogger(__name__)

OUTCOME_NO_DATA = "no_data"
OUTCOME_PASSED = "passed"
OUTCOME_VIOLATION = "violation"


@dataclass
class BatchRunContext:
    run_id: str
    trigger: str
    rules_total: int = 0
    rules_evaluated: int = 0
    rules_skipped: int = 0
    violations_recorded: int = 0
    rule_failures: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    failed_rule_ids: list[str] = field(default_factory=list)

    def counters(self) -> dict[str, int]:
        return {
            "rules_total": self.rules_total,
            "rules_evaluated": self.rules_evaluated,
            "rules_skipped": self.rules_skipped,
            "violations_recorded": self.violations_recorded,
            "rule_failures": self.rule_failures,
            "notifications_sent": self.notifications_sent,
            "notifications_failed": self.notifications_failed,
        }


class RuleFence:
    """Guards the writes of one rule evaluation against a timed-out batch.

    The worker applies its side effects (violation row, alert, run counters)
    inside ``commit``. Once ``cancel`` has returned True the worker can no
    longer write anything, even if it is still running.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.cancelled = False
        self.committed = False

    def cancel(self) -> bool:
        """Fence the worker out; False if it already started committing."""
        with self._lock:
            if self.committed:
                return False
            self.cancelled = True
            return True

    @contextmanager
    def commit(self) -> Iterator[bool]:
        with self._lock:
            if self.cancelled:
                yield False
                return
            try:
                yield True
            finally:
                self.committed = True


class ValidationEngine:
    def __init__(
        self,
        store: SqlStore,
        resolver: DataResolver,
        evaluator: RuleEvaluator,
        recorder: ViolationRecorder,
        notifier: ViolationNotifier,
        run_lock: RunLock,
        schedule: ValidationSchedule = DEFAULT_SCHEDULE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.evaluator = evaluator
        self.recorder = recorder
        self.notifier = notifier
        self.run_lock = run_lock
        self.schedule = schedule
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="datawatch-rule")

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def run_scheduled_validations(
        self, trigger: str = "schedule", *, fail_if_running: bool = False
    ) -> dict[str, Any]:
        if not self.run_lock.acquire():
            logger.warning("Validation run already in progress; skipping %s trigger", trigger)
            if fail_if_running:
                raise RunInProgressError("A validation run is already in progress")
            return self.store.record_skipped_run(trigger, "run already in progress")

        try:
            return self._run_batch(trigger)
        finally:
            self.run_lock.release()

    def _run_batch(self, trigger: str) -> dict[str, Any]:
        run = self.store.start_run(trigger)
        context = BatchRunContext(run_id=run["id"], trigger=trigger)
        try:
            rules = self.store.list_enabled_rules()
        except Exception as exc:
            logger.exception("Failed to load validation rules")
            return self.store.finish_run(
                run["id"], ValidationRunStatus.FAILED, context.counters(), failure_reason=str(exc)
            )

        context.rules_total = len(rules)
        logger.info("Running %d validation rules (run %s)", len(rules), run["id"])
        started = self._clock()
        status = ValidationRunStatus.SUCCEEDED
        failure_reason = None

        for index, rule in enumerate(rules):
            remaining = len(rules) - index
            if self._clock() - started >= self.schedule.batch_deadline_seconds:
                logger.warning(
                    "Batch deadline of %ss reached; skipping %d remaining rules",
                    self.schedule.batch_deadline_seconds,
                    remaining,
                )
                context.rules_skipped += remaining
                status = ValidationRunStatus.PARTIAL
                break
            if not self.run_lock.renew():
                logger.error("Run lease lost to another instance; stopping run %s", run["id"])
                context.rules_skipped += remaining
                status = ValidationRunStatus.FAILED
                failure_reason = "run lease lost"
                break
            try:
                self._run_with_timeout(rule, context)
            except Exception:
                logger.exception("Error validating rule %s", rule["id"])
                context.rule_failures += 1
                context.failed_rule_ids.append(rule["id"])

        logger.info(
            "Validation run %s finished: %d evaluated, %d violations, %d failures",
            run["id"],
            context.rules_evaluated,
            context.violations_recorded,
            context.rule_failures,
        )
        summary = self.store.finish_run(run["id"], status, context.counters(), failure_reason=failure_reason)
        summary["failed_rule_ids"] = list(context.failed_rule_ids)
        return summary

    def _run_with_timeout(self, rule: dict[str, Any], context: BatchRunContext) -> None:
        timeout = self.schedule.rule_timeout_seconds
        fence = RuleFence()
        future = self._executor.submit(self.validate_rule, rule, context, fence)
        try:
            future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            if not fence.cancel():
                # Timed out while committing; the result stands.
                future.result()
                return
            # The worker thread cannot be interrupted. It is fenced out of every
            # write, so abandon it and start a fresh one.
            self._executor.shutdown(wait=False)
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="datawatch-rule")
            raise RuleTimeoutError(rule["id"], timeout) from exc

    # ------------------------------------------------------------------
    # Single rule
    # ------------------------------------------------------------------

    def validate_rule(
        self,
        rule: dict[str, Any],
        context: BatchRunContext | None = None,
        fence: RuleFence | None = None,
    ) -> dict[str, Any] | None:
        """Resolve, evaluate, record and notify for one rule.

        Returns ``None`` for disabled rules and for evaluations fenced out by
        a timeout, otherwise an outcome dict.
        """
        if not rule.get("enabled"):
            return None

        document = self.resolver.resolve(rule)
        value = None
        descriptor = None
        if document is not None:
            value = get_value_by_path(document, rule["field_path"])
            descriptor = self.evaluator.evaluate(rule, value, document)

        with (fence or RuleFence()).commit() as accepted:
            if not accepted:
                logger.warning("Discarding result of timed-out rule %s", rule["id"])
                return None
            if document is None:
                if context is not None:
                    context.rules_skipped += 1
                return {"rule_id": rule["id"], "outcome": OUTCOME_NO_DATA, "violation": None, "notification": None}
            if context is not None:
                context.rules_evaluated += 1
            if descriptor is None:
                return {"rule_id": rule["id"], "outcome": OUTCOME_PASSED, "violation": None, "notification": None}

            violation = self.recorder.record(rule, value, descriptor)
            status = self.notifier.notify(rule, descriptor)
            if context is not None:
                context.violations_recorded += 1
                if status == NotificationStatus.SENT:
                    context.notifications_sent += 1
                elif status == NotificationStatus.FAILED:
                    context.notifications_failed += 1
        return {
            "rule_id": rule["id"],
            "outcome": OUTCOME_VIOLATION,
            "violation": violation,
            "notification": status.value,
        }

    # ------------------------------------------------------------------
    # On demand
    # ------------------------------------------------------------------

    def validate_data_on_demand(
        self, workspace_id: str, data: Any, field_path: str
    ) -> list[dict[str, Any]]:
        value = get_value_by_path(data, field_path)
        results = []
        for rule in self.store.list_rules_for(workspace_id, field_path):
            descriptor = self.evaluator.evaluate(rule, value, data)
            results.append(
                {
                    "rule_id": rule["id"],
                    "rule_name": rule["name"],
                    "passed": descriptor is None,
                    "violation": descriptor.to_dict() if descriptor is not None else None,
                }
            )
        return results

    def close(self) -> None:
        self._executor.shutdown(wait=False)


def build_engine(store: SqlStore, settings: Settings) -> ValidationEngine:
    schedule = ValidationSchedule.from_settings(settings)
    return ValidationEngine(
        store=store,
        resolver=DataResolver(store, build_widget_cache(settings)),
        evaluator=RuleEvaluator(store),
        recorder=ViolationRecorder(store),
        notifier=ViolationNotifier(store, build_transport(settings)),
        run_lock=DatabaseRunLease(ttl_seconds=schedule.lease_seconds),
        schedule=schedule,
    )
