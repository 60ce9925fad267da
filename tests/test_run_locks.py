from datetime import datetime, timedelta, timezone

from datawatch.db import SessionLocal
from datawatch.models import ValidationRunLeaseModel
from datawatch.validation.locks import DatabaseRunLease, InProcessRunLock


def test_in_process_lock_is_non_blocking():
    lock = InProcessRunLock()

    assert lock.acquire() is True
    assert lock.locked
    assert lock.acquire() is False

    lock.release()
    assert lock.acquire() is True


def test_database_lease_blocks_second_holder():
    first = DatabaseRunLease(ttl_seconds=60, holder="worker-a")
    second = DatabaseRunLease(ttl_seconds=60, holder="worker-b")

    assert first.acquire() is True
    assert first.fencing_counter == 1
    assert second.acquire() is False
    assert first.acquire() is False


def test_released_lease_can_be_taken_over():
    first = DatabaseRunLease(ttl_seconds=60, holder="worker-a")
    second = DatabaseRunLease(ttl_seconds=60, holder="worker-b")

    assert first.acquire() is True
    first.release()

    assert second.acquire() is True
    assert second.fencing_counter == 2


def test_expired_lease_is_taken_over():
    stale = DatabaseRunLease(ttl_seconds=60, holder="worker-a")
    assert stale.acquire() is True
    with SessionLocal.begin() as session:
        lease = session.get(ValidationRunLeaseModel, stale.name)
        lease.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)

    fresh = DatabaseRunLease(ttl_seconds=60, holder="worker-b")

    assert fresh.acquire() is True
    assert fresh.fencing_counter == 2
    with SessionLocal() as session:
        assert session.get(ValidationRunLeaseModel, stale.name).holder == "worker-b"


def test_release_by_non_holder_is_ignored():
    owner = DatabaseRunLease(ttl_seconds=60, holder="worker-a")
    other = DatabaseRunLease(ttl_seconds=60, holder="worker-b")
    assert owner.acquire() is True

    other.release()

    assert other.acquire() is False


def test_renew_extends_expiry():
    lease = DatabaseRunLease(ttl_seconds=60, holder="worker-a")
    assert lease.acquire() is True
    with SessionLocal.begin() as session:
        row = session.get(ValidationRunLeaseModel, lease.name)
        row.expires_at = datetime.now(timezone.utc) + timedelta(seconds=1)

    assert lease.renew() is True

    with SessionLocal() as session:
        expires_at = session.get(ValidationRunLeaseModel, lease.name).expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    assert expires_at > datetime.now(timezone.utc) + timedelta(seconds=30)


def test_renew_fails_after_takeover():
    stale = DatabaseRunLease(ttl_seconds=60, holder="worker-a")
    assert stale.acquire() is True
    with SessionLocal.begin() as session:
        session.get(ValidationRunLeaseModel, stale.name).expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    fresh = DatabaseRunLease(ttl_seconds=60, holder="worker-b")
    assert fresh.acquire() is True

    assert stale.renew() is False
    stale.release()
    assert fresh.renew() is True
    with SessionLocal() as session:
        assert session.get(ValidationRunLeaseModel, stale.name).holder == "worker-b"


def test_in_process_lock_renews_only_while_held():
    lock = InProcessRunLock()
    assert lock.renew() is False

    lock.acquire()

    assert lock.renew() is True
