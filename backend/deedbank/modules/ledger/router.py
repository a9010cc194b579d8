import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from deedbank.core.bootstrap import EnsureStorageReady
from deedbank.core.clock import AsUtc
from deedbank.db import GetDb
from deedbank.modules.family.services import (
    EnsureChildOwnedBy,
    EnsureDeedTypeUsable,
    FamilyAccessError,
    FamilyConflictError,
    FamilyNotFoundError,
)
from deedbank.modules.ledger.errors import (
    InsufficientBalanceError,
    LedgerConflictError,
    LedgerNotFoundError,
)
from deedbank.modules.ledger.models import Deed, Redemption
from deedbank.modules.ledger.schemas import (
    BalanceOut,
    ChildHistoryResponse,
    DeedCreate,
    DeedOut,
    HistoryEntryOut,
    RedemptionCreate,
    RedemptionOut,
)
from deedbank.modules.ledger.services.history_export import (
    HISTORY_CSV_MEDIA_TYPE,
    ExportHistoryCsv,
    HistoryCsvFilename,
)
from deedbank.modules.ledger.services.ledger_service import (
    AppendDeed,
    AppendRedemption,
    Balance,
    DeleteDeed,
    DeleteRedemption,
    GetBalance,
    GetDeed,
    GetHistory,
    GetRedemption,
    ListDeeds,
    ListRedemptions,
)

router = APIRouter(
    prefix="/api",
    tags=["ledger"],
    dependencies=[Depends(EnsureStorageReady)],
)
logger = logging.getLogger("ledger")


def _handle_db_error(exc: Exception) -> None:
    logger.exception("ledger database error")
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Storage not initialized. Run alembic upgrade head.",
    ) from exc


def _handle_ledger_error(exc: Exception) -> None:
    detail = str(exc)
    if isinstance(exc, (LedgerNotFoundError, FamilyNotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail) from exc
    if isinstance(exc, FamilyAccessError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail) from exc
    if isinstance(exc, (InsufficientBalanceError, LedgerConflictError, FamilyConflictError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail) from exc


def _BuildDeedOut(deed: Deed) -> DeedOut:
    return DeedOut(
        Id=deed.Id,
        ChildId=deed.ChildId,
        DeedTypeId=deed.DeedTypeId,
        Points=deed.Points,
        Note=deed.Note,
        OccurredAt=AsUtc(deed.OccurredAt),
        CreatedBy=deed.CreatedBy,
    )


def _BuildRedemptionOut(redemption: Redemption) -> RedemptionOut:
    return RedemptionOut(
        Id=redemption.Id,
        ChildId=redemption.ChildId,
        Points=redemption.Points,
        Description=redemption.Description,
        CreatedAt=AsUtc(redemption.CreatedAt),
        CreatedBy=redemption.CreatedBy,
    )


def _BuildBalanceOut(balance: Balance) -> BalanceOut:
    return BalanceOut(
        ChildId=balance.ChildId,
        Points=balance.Points,
        Dollars=balance.Dollars,
    )


@router.post("/deeds", response_model=DeedOut, status_code=status.HTTP_201_CREATED)
def CreateDeedItem(
    payload: DeedCreate,
    db: Session = Depends(GetDb),
) -> DeedOut:
    try:
        child = EnsureChildOwnedBy(db, payload.ChildId, payload.CreatedBy, "log deeds")
        EnsureDeedTypeUsable(db, payload.DeedTypeId, child.ParentId)
        deed = AppendDeed(
            db,
            payload.ChildId,
            payload.DeedTypeId,
            payload.Points,
            payload.Note,
            payload.CreatedBy,
        )
        return _BuildDeedOut(deed)
    except ValueError as exc:
        _handle_ledger_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/children/{child_id}/deeds", response_model=list[DeedOut])
def ListDeedItems(
    child_id: int,
    db: Session = Depends(GetDb),
) -> list[DeedOut]:
    try:
        return [_BuildDeedOut(deed) for deed in ListDeeds(db, child_id)]
    except ValueError as exc:
        _handle_ledger_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.delete(
    "/deeds/{deed_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
def DeleteDeedItem(
    deed_id: int,
    parent_id: int,
    db: Session = Depends(GetDb),
) -> Response:
    try:
        deed = GetDeed(db, deed_id)
        EnsureChildOwnedBy(db, deed.ChildId, parent_id, "delete deeds")
        DeleteDeed(db, deed_id)
    except ValueError as exc:
        _handle_ledger_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/redemptions", response_model=RedemptionOut, status_code=status.HTTP_201_CREATED)
def CreateRedemptionItem(
    payload: RedemptionCreate,
    db: Session = Depends(GetDb),
) -> RedemptionOut:
    if payload.Points <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Points must be greater than zero",
        )
    try:
        EnsureChildOwnedBy(db, payload.ChildId, payload.CreatedBy, "redeem")
        redemption = AppendRedemption(
            db,
            payload.ChildId,
            payload.Points,
            payload.Description,
            payload.CreatedBy,
        )
        return _BuildRedemptionOut(redemption)
    except ValueError as exc:
        _handle_ledger_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/children/{child_id}/redemptions", response_model=list[RedemptionOut])
def ListRedemptionItems(
    child_id: int,
    db: Session = Depends(GetDb),
) -> list[RedemptionOut]:
    try:
        return [_BuildRedemptionOut(item) for item in ListRedemptions(db, child_id)]
    except ValueError as exc:
        _handle_ledger_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.delete(
    "/redemptions/{redemption_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
def DeleteRedemptionItem(
    redemption_id: int,
    parent_id: int,
    db: Session = Depends(GetDb),
) -> Response:
    try:
        redemption = GetRedemption(db, redemption_id)
        EnsureChildOwnedBy(db, redemption.ChildId, parent_id, "delete redemptions")
        DeleteRedemption(db, redemption_id)
    except ValueError as exc:
        _handle_ledger_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/children/{child_id}/balance", response_model=BalanceOut)
def GetBalanceItem(
    child_id: int,
    db: Session = Depends(GetDb),
) -> BalanceOut:
    try:
        return _BuildBalanceOut(GetBalance(db, child_id))
    except ValueError as exc:
        _handle_ledger_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/children/{child_id}/history", response_model=ChildHistoryResponse)
def GetHistoryItems(
    child_id: int,
    db: Session = Depends(GetDb),
) -> ChildHistoryResponse:
    try:
        history = GetHistory(db, child_id)
        balance = GetBalance(db, child_id)
        return ChildHistoryResponse(
            ChildId=child_id,
            Balance=_BuildBalanceOut(balance),
            Entries=[
                HistoryEntryOut(
                    EntryType=entry.EntryType,
                    Points=entry.Points,
                    DollarValue=entry.DollarValue,
                    Note=entry.Note,
                    OccurredAt=entry.OccurredAt,
                    RecordedBy=entry.RecordedBy,
                )
                for entry in history
            ],
        )
    except ValueError as exc:
        _handle_ledger_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/children/{child_id}/export/csv", response_class=Response)
def ExportHistoryCsvItem(
    child_id: int,
    db: Session = Depends(GetDb),
) -> Response:
    try:
        csv_text = ExportHistoryCsv(db, child_id)
    except ValueError as exc:
        _handle_ledger_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)
    logger.info("history exported child_id=%s", child_id)
    return Response(
        content=csv_text,
        media_type=HISTORY_CSV_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={HistoryCsvFilename(child_id)}"},
    )
