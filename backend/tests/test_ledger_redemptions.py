from decimal import Decimal
import threading
import time

import pytest
from sqlalchemy.dialects import mssql, postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from deedbank.modules.ledger.errors import (
    ChildNotFoundError,
    InsufficientBalanceError,
    InvalidPointsError,
    LedgerConflictError,
)
from deedbank.modules.ledger.models import Redemption
from deedbank.modules.ledger.services import ledger_service
from deedbank.modules.ledger.services.ledger_service import (
    AppendDeed,
    AppendRedemption,
    GetBalance,
    GetHistory,
)
from deedbank.modules.ledger.utils.locks import child_locks


class _FakeDbError(Exception):
    def __init__(self, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate


def _Redemptions(db, child_id: int) -> list[Redemption]:
    db.expire_all()
    return db.query(Redemption).filter(Redemption.ChildId == child_id).all()


def test_redemption_scenario_from_zero(db, family):
    AppendDeed(db, family.ChildId, family.GoodDeedId, 10, None, family.ParentId)
    AppendDeed(db, family.ChildId, family.GoodDeedId, 0, None, family.ParentId)

    redemption = AppendRedemption(db, family.ChildId, 12, "Movie night", family.ParentId)
    assert redemption.Points == 12
    balance = GetBalance(db, family.ChildId)
    assert balance.Points == 3
    assert balance.Dollars == Decimal("0.75")

    with pytest.raises(InsufficientBalanceError) as exc_info:
        AppendRedemption(db, family.ChildId, 5, "Toy", family.ParentId)
    assert exc_info.value.Available == 3
    assert exc_info.value.Requested == 5
    assert GetBalance(db, family.ChildId).Points == 3
    assert len(_Redemptions(db, family.ChildId)) == 1

    history = list(GetHistory(db, family.ChildId))
    assert [(entry.EntryType, entry.Points) for entry in history] == [
        ("deed", 10),
        ("deed", 5),
        ("redemption", -12),
    ]
    assert list(GetHistory(db, family.ChildId).RunningTotals()) == [10, 15, 3]


@pytest.mark.parametrize("points", [0, -4])
def test_redemption_requires_positive_points(db, family, points):
    AppendDeed(db, family.ChildId, family.GoodDeedId, 10, None, family.ParentId)
    with pytest.raises(InvalidPointsError):
        AppendRedemption(db, family.ChildId, points, None, family.ParentId)
    assert _Redemptions(db, family.ChildId) == []


def test_redemption_of_exact_balance_leaves_zero(db, family):
    AppendDeed(db, family.ChildId, family.GoodDeedId, 0, None, family.ParentId)
    AppendRedemption(db, family.ChildId, 5, None, family.ParentId)
    assert GetBalance(db, family.ChildId).Points == 0


def test_redemption_for_missing_child_raises(db, family):
    with pytest.raises(ChildNotFoundError):
        AppendRedemption(db, family.ChildId + 100, 1, None, family.ParentId)


def test_redemption_normalizes_description(db, family):
    AppendDeed(db, family.ChildId, family.GoodDeedId, 10, None, family.ParentId)
    redemption = AppendRedemption(db, family.ChildId, 1, "  Sticker  ", family.ParentId)
    blank = AppendRedemption(db, family.ChildId, 1, "", family.ParentId)
    assert redemption.Description == "Sticker"
    assert blank.Description is None


def test_concurrent_redemptions_cannot_overdraw(session_factory, db, family, monkeypatch):
    AppendDeed(db, family.ChildId, family.GoodDeedId, 10, None, family.ParentId)
    db.close()

    original_sum = ledger_service._SumPoints
    barrier = threading.Barrier(2)

    def _SlowSum(session, child_id):
        total = original_sum(session, child_id)
        time.sleep(0.05)
        return total

    monkeypatch.setattr(ledger_service, "_SumPoints", _SlowSum)
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()

    def _Redeem():
        session = session_factory()
        try:
            barrier.wait()
            AppendRedemption(session, family.ChildId, 10, None, family.ParentId)
            outcome = "ok"
        except (InsufficientBalanceError, LedgerConflictError) as exc:
            outcome = exc.__class__.__name__
        finally:
            session.close()
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=_Redeem) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert sorted(outcomes) == ["InsufficientBalanceError", "ok"]
    check = session_factory()
    try:
        assert GetBalance(check, family.ChildId).Points == 0
    finally:
        check.close()


def test_redemption_lock_timeout_is_conflict(db, family):
    AppendDeed(db, family.ChildId, family.GoodDeedId, 10, None, family.ParentId)
    with child_locks.Hold(family.ChildId):
        with pytest.raises(LedgerConflictError):
            AppendRedemption(db, family.ChildId, 1, None, family.ParentId, lock_timeout=0.01)
    assert _Redemptions(db, family.ChildId) == []


def test_redemption_retries_serialization_failure(db, family, monkeypatch):
    AppendDeed(db, family.ChildId, family.GoodDeedId, 10, None, family.ParentId)
    original_redeem = ledger_service._RedeemOnce
    calls = {"count": 0}

    def _FlakyRedeem(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("SELECT ...", {}, _FakeDbError("could not serialize", "40001"))
        return original_redeem(*args, **kwargs)

    monkeypatch.setattr(ledger_service, "_RedeemOnce", _FlakyRedeem)
    redemption = AppendRedemption(db, family.ChildId, 4, None, family.ParentId, max_attempts=3)
    assert redemption.Points == 4
    assert calls["count"] == 2
    assert GetBalance(db, family.ChildId).Points == 6


def test_redemption_conflict_after_retries_exhausted(db, family, monkeypatch):
    AppendDeed(db, family.ChildId, family.GoodDeedId, 10, None, family.ParentId)
    calls = {"count": 0}

    def _AlwaysDeadlocked(*_args, **_kwargs):
        calls["count"] += 1
        raise OperationalError("INSERT ...", {}, _FakeDbError("deadlock detected", "40P01"))

    monkeypatch.setattr(ledger_service, "_RedeemOnce", _AlwaysDeadlocked)
    with pytest.raises(LedgerConflictError):
        AppendRedemption(db, family.ChildId, 4, None, family.ParentId, max_attempts=2)
    assert calls["count"] == 2
    assert GetBalance(db, family.ChildId).Points == 10


def test_redemption_does_not_retry_other_store_errors(db, family, monkeypatch):
    AppendDeed(db, family.ChildId, family.GoodDeedId, 10, None, family.ParentId)
    calls = {"count": 0}

    def _Broken(*_args, **_kwargs):
        calls["count"] += 1
        raise IntegrityError("INSERT ...", {}, _FakeDbError("constraint failed"))

    monkeypatch.setattr(ledger_service, "_RedeemOnce", _Broken)
    with pytest.raises(IntegrityError):
        AppendRedemption(db, family.ChildId, 4, None, family.ParentId, max_attempts=3)
    assert calls["count"] == 1


def test_failure_inside_critical_section_leaves_no_write(db, family, monkeypatch):
    AppendDeed(db, family.ChildId, family.GoodDeedId, 10, None, family.ParentId)

    class _BrokenClock:
        def Next(self):
            raise KeyboardInterrupt

    monkeypatch.setattr(ledger_service, "ledger_clock", _BrokenClock())
    with pytest.raises(KeyboardInterrupt):
        AppendRedemption(db, family.ChildId, 4, None, family.ParentId)
    monkeypatch.undo()

    assert _Redemptions(db, family.ChildId) == []
    redemption = AppendRedemption(db, family.ChildId, 4, None, family.ParentId, lock_timeout=1)
    assert redemption.Points == 4


def test_redemption_child_read_takes_a_row_lock_on_each_server_backend(db, family):
    query = ledger_service._ChildQuery(db, family.ChildId, for_update=True)

    mssql_sql = str(query.statement.compile(dialect=mssql.dialect()))
    postgres_sql = str(query.statement.compile(dialect=postgresql.dialect()))
    plain_sql = str(ledger_service._ChildQuery(db, family.ChildId).statement.compile(dialect=mssql.dialect()))

    assert "WITH (UPDLOCK, ROWLOCK)" in mssql_sql
    assert "FOR UPDATE" in postgres_sql
    assert "UPDLOCK" not in postgres_sql
    assert "UPDLOCK" not in plain_sql
