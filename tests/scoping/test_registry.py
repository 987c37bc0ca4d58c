import asyncio
import logging

import pytest

from dbscope.dialects import IsolationLevel
from dbscope.scoping import (
    RegisteredSessionFactory,
    ScopeAlreadyCompletedError,
    ScopeDisposedError,
    SessionRegistry,
)


class FakeTransaction:
    def __init__(self, calls: list, fail_on: str | None = None) -> None:
        self.calls = calls
        self.fail_on = fail_on

    def _record(self, action: str) -> None:
        self.calls.append(action)
        if action == self.fail_on:
            raise RuntimeError(f"{action} failed")

    def commit(self) -> None:
        self._record("commit")

    def rollback(self) -> None:
        self._record("rollback")

    def close(self) -> None:
        self.calls.append("close-transaction")


class FakeSession:
    save_error: Exception | None = None
    transaction_fail_on: str | None = None

    def __init__(self) -> None:
        self.auto_detect_changes = True
        self.calls: list = []
        self.isolation_level = None
        self.closed = False

    def save_changes(self) -> int:
        self.calls.append("save")
        if self.save_error is not None:
            raise self.save_error
        return 2

    async def save_changes_async(self, cancel_event=None) -> int:
        if cancel_event is not None and cancel_event.is_set():
            raise asyncio.CancelledError()
        return self.save_changes()

    def begin_transaction(self, isolation_level=None) -> FakeTransaction:
        self.isolation_level = isolation_level
        return FakeTransaction(self.calls, self.transaction_fail_on)

    def entry(self, instance):
        raise NotImplementedError

    def entries(self):
        return []

    def close(self) -> None:
        self.closed = True


class OrdersSession(FakeSession):
    pass


class BillingSession(FakeSession):
    save_error = RuntimeError("billing unavailable")


class AuditSession(FakeSession):
    save_error = ValueError("audit rejected")


class BrokenRollbackSession(FakeSession):
    transaction_fail_on = "rollback"


def test_get_creates_each_type_once():
    registry = SessionRegistry()
    first = registry.get(OrdersSession)
    assert registry.get(OrdersSession) is first
    assert OrdersSession in registry
    assert dict(registry.initialized_sessions) == {OrdersSession: first}
    assert first.auto_detect_changes is True
    assert first.isolation_level is None


def test_read_only_registry_disables_change_detection():
    registry = SessionRegistry(read_only=True)
    assert registry.get(OrdersSession).auto_detect_changes is False


def test_isolation_level_opens_transaction_per_session():
    registry = SessionRegistry(isolation_level=IsolationLevel.SERIALIZABLE)
    session = registry.get(OrdersSession)
    assert session.isolation_level is IsolationLevel.SERIALIZABLE

    assert registry.commit() == 2
    assert session.calls == ["save", "commit", "close-transaction"]
    assert registry.completed


def test_uses_configured_session_factory():
    created = []

    def build():
        session = OrdersSession()
        created.append(session)
        return session

    factory = RegisteredSessionFactory()
    factory.register_session_type(OrdersSession, build)
    registry = SessionRegistry(session_factory=factory)
    assert registry.get(OrdersSession) is created[0]


def test_commit_attempts_every_session_and_raises_first_error(caplog):
    registry = SessionRegistry()
    orders = registry.get(OrdersSession)
    billing = registry.get(BillingSession)
    audit = registry.get(AuditSession)

    with caplog.at_level(logging.WARNING, logger="dbscope.scoping.registry"):
        with pytest.raises(RuntimeError, match="billing unavailable"):
            registry.commit()

    assert orders.calls == ["save"]
    assert billing.calls == ["save"]
    assert audit.calls == ["save"]
    assert not registry.completed
    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 2


def test_read_only_commit_skips_save_but_commits_transactions():
    registry = SessionRegistry(read_only=True, isolation_level=IsolationLevel.READ_COMMITTED)
    session = registry.get(OrdersSession)
    assert registry.commit() == 0
    assert session.calls == ["commit", "close-transaction"]


def test_commit_twice_raises():
    registry = SessionRegistry()
    registry.get(OrdersSession)
    registry.commit()
    with pytest.raises(ScopeAlreadyCompletedError):
        registry.commit()
    with pytest.raises(ScopeAlreadyCompletedError):
        registry.rollback()


def test_rollback_only_touches_transactions():
    registry = SessionRegistry(isolation_level=IsolationLevel.READ_COMMITTED)
    session = registry.get(OrdersSession)
    registry.rollback()
    assert session.calls == ["rollback", "close-transaction"]
    assert registry.completed

    plain = SessionRegistry()
    plain_session = plain.get(OrdersSession)
    plain.rollback()
    assert plain_session.calls == []


def test_rollback_is_best_effort():
    registry = SessionRegistry(isolation_level=IsolationLevel.READ_COMMITTED)
    broken = registry.get(BrokenRollbackSession)
    orders = registry.get(OrdersSession)
    with pytest.raises(RuntimeError, match="rollback failed"):
        registry.rollback()
    assert broken.calls == ["rollback"]
    assert orders.calls == ["rollback", "close-transaction"]
    assert registry.completed


def test_dispose_rolls_back_read_write_and_closes_sessions():
    registry = SessionRegistry(isolation_level=IsolationLevel.READ_COMMITTED)
    session = registry.get(OrdersSession)
    registry.dispose()
    registry.dispose()
    assert session.calls == ["rollback", "close-transaction"]
    assert session.closed
    assert registry.disposed
    assert len(registry.initialized_sessions) == 0


def test_dispose_commits_read_only():
    registry = SessionRegistry(read_only=True, isolation_level=IsolationLevel.READ_COMMITTED)
    session = registry.get(OrdersSession)
    registry.dispose()
    assert session.calls == ["commit", "close-transaction"]


def test_dispose_swallows_completion_failure(caplog):
    registry = SessionRegistry(isolation_level=IsolationLevel.READ_COMMITTED)
    session = registry.get(BrokenRollbackSession)
    with caplog.at_level(logging.WARNING, logger="dbscope.scoping.registry"):
        registry.dispose()
    assert session.closed
    assert any("during dispose" in record.getMessage() for record in caplog.records)


def test_disposed_registry_rejects_use():
    registry = SessionRegistry()
    registry.dispose()
    with pytest.raises(ScopeDisposedError):
        registry.get(OrdersSession)
    with pytest.raises(ScopeDisposedError):
        registry.commit()


@pytest.mark.asyncio
async def test_commit_async_sums_affected_records():
    registry = SessionRegistry()
    registry.get(OrdersSession)
    registry.get(FakeSession)
    assert await registry.commit_async() == 4
    assert registry.completed


@pytest.mark.asyncio
async def test_commit_async_stops_on_cancellation():
    registry = SessionRegistry()
    session = registry.get(OrdersSession)
    cancel = asyncio.Event()
    cancel.set()
    with pytest.raises(asyncio.CancelledError):
        await registry.commit_async(cancel)
    assert session.calls == []
    assert not registry.completed
