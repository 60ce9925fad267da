"""Mutual exclusion for batch runs.

A trigger that fires while a run is still in flight must not start a second
one; ``acquire`` never blocks and callers skip the run when it returns False.
A running batch calls ``renew`` before each rule and stops once it fails.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
from datetime import datetime, timedelta, timezone
from typing import Protocol
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from datawatch.db import SessionLocal
from datawatch.models import ValidationRunLeaseModel


logger = logging.getLogger(__name__)

DEFAULT_LEASE_NAME = "scheduled-validations"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class RunLock(Protocol):
    def acquire(self) -> bool: ...

    def renew(self) -> bool: ...

    def release(self) -> None: ...


class InProcessRunLock:
    """Single-instance deployments."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def renew(self) -> bool:
        return self._lock.locked()

    def release(self) -> None:
        self._lock.release()

    @property
    def locked(self) -> bool:
        return self._lock.locked()


class DatabaseRunLease:
    """Lease row shared by every instance pointed at the same database.

    An unexpired lease blocks acquisition, including by its own holder. An
    expired or released lease is taken over and its fencing counter
    incremented.
    """

    def __init__(self, ttl_seconds: int, name: str = DEFAULT_LEASE_NAME, holder: str | None = None) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self.name = name
        self.holder = holder or f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"
        self.fencing_counter: int | None = None

    def acquire(self) -> bool:
        now = _now()
        try:
            with SessionLocal.begin() as session:
                lease = session.execute(
                    select(ValidationRunLeaseModel)
                    .where(ValidationRunLeaseModel.name == self.name)
                    .with_for_update()
                ).scalar_one_or_none()
                if lease is None:
                    lease = ValidationRunLeaseModel(
                        name=self.name,
                        holder=self.holder,
                        fencing_counter=1,
                        acquired_at=now,
                        expires_at=now + self.ttl,
                    )
                    session.add(lease)
                    session.flush()
                    self.fencing_counter = lease.fencing_counter
                    return True

                if _ensure_aware(lease.expires_at) > now:
                    return False

                if lease.holder and lease.holder != self.holder:
                    logger.warning("Taking over expired run lease held by %s", lease.holder)
                lease.holder = self.holder
                lease.fencing_counter += 1
                lease.acquired_at = now
                lease.expires_at = now + self.ttl
                self.fencing_counter = lease.fencing_counter
                return True
        except IntegrityError:
            # Another instance inserted the lease row first.
            return False

    def _owns(self, lease: ValidationRunLeaseModel | None) -> bool:
        return (
            lease is not None
            and lease.holder == self.holder
            and lease.fencing_counter == self.fencing_counter
        )

    def renew(self) -> bool:
        """Push the expiry out by one TTL.

        Returns False when the lease was taken over since ``acquire``; the
        caller must stop writing.
        """
        now = _now()
        with SessionLocal.begin() as session:
            lease = session.execute(
                select(ValidationRunLeaseModel)
                .where(ValidationRunLeaseModel.name == self.name)
                .with_for_update()
            ).scalar_one_or_none()
            if not self._owns(lease):
                return False
            lease.expires_at = now + self.ttl
            return True

    def release(self) -> None:
        with SessionLocal.begin() as session:
            lease = session.get(ValidationRunLeaseModel, self.name)
            if not self._owns(lease):
                return
            lease.holder = ""
            lease.expires_at = _now()
