from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import heapq
import logging
import os
from typing import Iterator

from sqlalchemy import func
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from deedbank.core.clock import AsUtc
from deedbank.modules.family.models import Child, DeedType
from deedbank.modules.ledger.errors import (
    ChildNotFoundError,
    DeedNotFoundError,
    DeedTypeNotFoundError,
    InsufficientBalanceError,
    InvalidPointsError,
    LedgerConflictError,
    RedemptionNotFoundError,
)
from deedbank.modules.ledger.models import ENTRY_TYPE_DEED, Deed, Redemption
from deedbank.modules.ledger.utils.locks import ChildLockTimeout, child_locks, ledger_clock

logger = logging.getLogger("ledger")

DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0
DEFAULT_REDEMPTION_MAX_ATTEMPTS = 3

# Serialization failure, deadlock and lock-not-available: the store has rolled
# the transaction back, so a retry cannot double-redeem.
_TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03"}
_TRANSIENT_SQLSERVER_ERRORS = ("(1205)", "(1222)")


@dataclass(frozen=True)
class Balance:
    ChildId: int
    Points: int
    Dollars: Decimal


@dataclass(frozen=True)
class HistoryEntry:
    EntryType: str
    EntryId: int
    Points: int
    DollarValue: Decimal
    Note: str | None
    OccurredAt: datetime
    RecordedBy: int


@dataclass(frozen=True)
class _LedgerRow:
    EntryType: str
    EntryId: int
    SignedPoints: int
    Note: str | None
    RecordedAt: datetime
    RecordedBy: int


def _HistoryOrderKey(row: _LedgerRow) -> tuple:
    kind_rank = 0 if row.EntryType == ENTRY_TYPE_DEED else 1
    return (row.RecordedAt, kind_rank, row.EntryId)


class ChildHistory:
    """Chronological deeds and redemptions for one child.

    Rows are read once when the history is built; every iteration merges
    them again, so the sequence can be walked any number of times and always
    comes back in the same order. Dollar values use the child's rate as it
    was when the history was read.
    """

    def __init__(
        self,
        child_id: int,
        dollar_per_point: Decimal,
        deeds: list[_LedgerRow],
        redemptions: list[_LedgerRow],
    ):
        self.ChildId = child_id
        self.DollarPerPoint = dollar_per_point
        self._deeds = sorted(deeds, key=_HistoryOrderKey)
        self._redemptions = sorted(redemptions, key=_HistoryOrderKey)

    def __iter__(self) -> Iterator[HistoryEntry]:
        for row in heapq.merge(self._deeds, self._redemptions, key=_HistoryOrderKey):
            yield HistoryEntry(
                EntryType=row.EntryType,
                EntryId=row.EntryId,
                Points=row.SignedPoints,
                DollarValue=_ToDollars(row.SignedPoints, self.DollarPerPoint),
                Note=row.Note,
                OccurredAt=row.RecordedAt,
                RecordedBy=row.RecordedBy,
            )

    def __len__(self) -> int:
        return len(self._deeds) + len(self._redemptions)

    def RunningTotals(self) -> Iterator[int]:
        total = 0
        for entry in self:
            total += entry.Points
            yield total


def _read_float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number") from exc


def _read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc


def _NormalizeText(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()


def _ToDollars(points: int, dollar_per_point) -> Decimal:
    rate = dollar_per_point if isinstance(dollar_per_point, Decimal) else Decimal(str(dollar_per_point))
    return Decimal(points) * rate


def _ChildQuery(db: Session, child_id: int, for_update: bool = False):
    query = db.query(Child).filter(Child.Id == child_id)
    if for_update:
        # SQL Server renders no FOR UPDATE clause; the table hint takes the row lock there.
        query = query.with_for_update().with_hint(Child, "WITH (UPDLOCK, ROWLOCK)", "mssql")
    return query


def _LoadChild(db: Session, child_id: int, for_update: bool = False) -> Child:
    child = _ChildQuery(db, child_id, for_update=for_update).first()
    if not child:
        raise ChildNotFoundError(child_id)
    return child


def _SumPoints(db: Session, child_id: int) -> int:
    # Two independent aggregates; joining both tables to the child would
    # multiply each sum by the other table's row count.
    earned = (
        db.query(func.coalesce(func.sum(Deed.Points), 0))
        .filter(Deed.ChildId == child_id)
        .scalar()
    )
    redeemed = (
        db.query(func.coalesce(func.sum(Redemption.Points), 0))
        .filter(Redemption.ChildId == child_id)
        .scalar()
    )
    return int(earned or 0) - int(redeemed or 0)


def _SnapshotRow(entry: Deed | Redemption) -> _LedgerRow:
    return _LedgerRow(
        EntryType=entry.EntryType,
        EntryId=entry.Id,
        SignedPoints=entry.SignedPoints,
        Note=entry.EntryNote,
        RecordedAt=AsUtc(entry.RecordedAt),
        RecordedBy=entry.CreatedBy,
    )


def _IsTransientDbError(exc: DBAPIError) -> bool:
    if exc.connection_invalidated:
        # The commit may or may not have landed; retrying could redeem twice.
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _TRANSIENT_SQLSTATES:
        return True
    args = getattr(orig, "args", ())
    if args and str(args[0]) in _TRANSIENT_SQLSTATES:
        return True
    message = str(orig)
    if any(code in message for code in _TRANSIENT_SQLSERVER_ERRORS):
        return True
    return isinstance(exc, OperationalError) and "database is locked" in message


def ResolveDeedPoints(explicit_points: int | None, deed_type_points: int) -> int:
    points = explicit_points if explicit_points else deed_type_points
    if not points:
        raise InvalidPointsError("Points must resolve to a non-zero value")
    return points


def AppendDeed(
    db: Session,
    child_id: int,
    deed_type_id: int,
    explicit_points: int | None,
    note: str | None,
    created_by: int,
) -> Deed:
    deed_type = db.query(DeedType).filter(DeedType.Id == deed_type_id).first()
    if not deed_type:
        raise DeedTypeNotFoundError(deed_type_id)
    points = ResolveDeedPoints(explicit_points, deed_type.Points)

    deed = Deed(
        ChildId=child_id,
        DeedTypeId=deed_type_id,
        Points=points,
        Note=_NormalizeText(note),
        OccurredAt=ledger_clock.Next(),
        CreatedBy=created_by,
    )
    try:
        db.add(deed)
        db.commit()
    except BaseException:
        db.rollback()
        raise
    db.refresh(deed)
    logger.info(
        "deed recorded child_id=%s deed_id=%s deed_type_id=%s points=%s",
        child_id,
        deed.Id,
        deed_type_id,
        points,
    )
    return deed


def _RedeemOnce(
    db: Session,
    child_id: int,
    points: int,
    description: str | None,
    created_by: int,
) -> Redemption:
    try:
        _LoadChild(db, child_id, for_update=True)
        available = _SumPoints(db, child_id)
        if available < points:
            raise InsufficientBalanceError(available, points)
        redemption = Redemption(
            ChildId=child_id,
            Points=points,
            Description=description,
            CreatedAt=ledger_clock.Next(),
            CreatedBy=created_by,
        )
        db.add(redemption)
        db.commit()
    except BaseException:
        db.rollback()
        raise
    db.refresh(redemption)
    return redemption


def AppendRedemption(
    db: Session,
    child_id: int,
    points: int,
    description: str | None,
    created_by: int,
    lock_timeout: float | None = None,
    max_attempts: int | None = None,
) -> Redemption:
    if points is None or points <= 0:
        raise InvalidPointsError("Points must be greater than zero")
    if lock_timeout is None:
        lock_timeout = _read_float_env("LEDGER_LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT_SECONDS)
    if max_attempts is None:
        max_attempts = _read_int_env("LEDGER_REDEMPTION_MAX_ATTEMPTS", DEFAULT_REDEMPTION_MAX_ATTEMPTS)
    max_attempts = max(1, max_attempts)
    description = _NormalizeText(description)

    try:
        with child_locks.Hold(child_id, timeout=lock_timeout):
            for attempt in range(1, max_attempts + 1):
                try:
                    redemption = _RedeemOnce(db, child_id, points, description, created_by)
                except InsufficientBalanceError as exc:
                    logger.info(
                        "redemption rejected child_id=%s requested=%s available=%s",
                        child_id,
                        exc.Requested,
                        exc.Available,
                    )
                    raise
                except DBAPIError as exc:
                    db.rollback()
                    if not _IsTransientDbError(exc):
                        raise
                    if attempt >= max_attempts:
                        logger.warning(
                            "redemption conflict child_id=%s attempts=%s", child_id, attempt
                        )
                        raise LedgerConflictError(
                            "Redemption conflicted with a concurrent update"
                        ) from exc
                    logger.warning(
                        "redemption retry child_id=%s attempt=%s error=%s",
                        child_id,
                        attempt,
                        exc.__class__.__name__,
                    )
                    continue
                logger.info(
                    "redemption recorded child_id=%s redemption_id=%s points=%s",
                    child_id,
                    redemption.Id,
                    points,
                )
                return redemption
    except ChildLockTimeout as exc:
        logger.warning("redemption lock timeout child_id=%s timeout=%ss", child_id, lock_timeout)
        raise LedgerConflictError("Another redemption for this child is in progress") from exc
    raise LedgerConflictError("Redemption conflicted with a concurrent update")


def GetBalance(db: Session, child_id: int) -> Balance:
    child = _LoadChild(db, child_id)
    points = _SumPoints(db, child_id)
    return Balance(
        ChildId=child.Id,
        Points=points,
        Dollars=_ToDollars(points, child.DollarPerPoint),
    )


def GetHistory(db: Session, child_id: int) -> ChildHistory:
    child = _LoadChild(db, child_id)
    deeds = (
        db.query(Deed)
        .filter(Deed.ChildId == child_id)
        .order_by(Deed.OccurredAt.asc(), Deed.Id.asc())
        .all()
    )
    redemptions = (
        db.query(Redemption)
        .filter(Redemption.ChildId == child_id)
        .order_by(Redemption.CreatedAt.asc(), Redemption.Id.asc())
        .all()
    )
    return ChildHistory(
        child.Id,
        child.DollarPerPoint,
        [_SnapshotRow(deed) for deed in deeds],
        [_SnapshotRow(redemption) for redemption in redemptions],
    )


def ListDeeds(db: Session, child_id: int) -> list[Deed]:
    _LoadChild(db, child_id)
    return (
        db.query(Deed)
        .filter(Deed.ChildId == child_id)
        .order_by(Deed.OccurredAt.desc(), Deed.Id.desc())
        .all()
    )


def ListRedemptions(db: Session, child_id: int) -> list[Redemption]:
    _LoadChild(db, child_id)
    return (
        db.query(Redemption)
        .filter(Redemption.ChildId == child_id)
        .order_by(Redemption.CreatedAt.desc(), Redemption.Id.desc())
        .all()
    )


def GetDeed(db: Session, deed_id: int) -> Deed:
    deed = db.query(Deed).filter(Deed.Id == deed_id).first()
    if not deed:
        raise DeedNotFoundError(deed_id)
    return deed


def GetRedemption(db: Session, redemption_id: int) -> Redemption:
    redemption = db.query(Redemption).filter(Redemption.Id == redemption_id).first()
    if not redemption:
        raise RedemptionNotFoundError(redemption_id)
    return redemption


def DeleteDeed(db: Session, deed_id: int) -> None:
    deed = GetDeed(db, deed_id)
    child_id = deed.ChildId
    try:
        db.delete(deed)
        db.commit()
    except BaseException:
        db.rollback()
        raise
    # Corrections are not balance-checked; the child's balance may go negative.
    logger.warning("deed deleted child_id=%s deed_id=%s", child_id, deed_id)


def DeleteRedemption(db: Session, redemption_id: int) -> None:
    redemption = GetRedemption(db, redemption_id)
    child_id = redemption.ChildId
    try:
        db.delete(redemption)
        db.commit()
    except BaseException:
        db.rollback()
        raise
    logger.warning("redemption deleted child_id=%s redemption_id=%s", child_id, redemption_id)
