from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from deedbank.modules.family.models import Child, DeedType, Parent
from deedbank.modules.ledger.models import Deed

logger = logging.getLogger("family")

DEFAULT_DOLLAR_PER_POINT = Decimal("1.00")
# Numeric(10, 2): two decimal places, eight integer digits.
DOLLAR_PER_POINT_STEP = Decimal("0.01")
MAX_DOLLAR_PER_POINT = Decimal(10**8)
MAX_NAME_LENGTH = 200
MAX_EMAIL_LENGTH = 320


class FamilyNotFoundError(ValueError):
    pass


class FamilyAccessError(ValueError):
    pass


class FamilyConflictError(ValueError):
    pass


def NormalizeEmail(value: str | None) -> str:
    if value is None:
        return ""
    return value.strip().lower()


def ValidateName(value: str | None, label: str) -> str:
    normalized = (value or "").strip()
    if not normalized:
        raise ValueError(f"{label} is required")
    if len(normalized) > MAX_NAME_LENGTH:
        raise ValueError(f"{label} is too long")
    return normalized


def ValidateDollarPerPoint(value) -> Decimal:
    try:
        rate = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError("DollarPerPoint must be a number") from exc
    if not rate.is_finite():
        raise ValueError("DollarPerPoint must be a number")
    if rate >= MAX_DOLLAR_PER_POINT:
        raise ValueError("DollarPerPoint is too large")
    rate = rate.quantize(DOLLAR_PER_POINT_STEP, rounding=ROUND_HALF_UP)
    if rate >= MAX_DOLLAR_PER_POINT:
        raise ValueError("DollarPerPoint is too large")
    if rate <= 0:
        raise ValueError("DollarPerPoint must be at least 0.01")
    return rate


def ValidateDeedTypePoints(points: int) -> int:
    if not points:
        raise ValueError("Points must be non-zero to indicate good or bad deed")
    return points


def _CommitOrConflict(db: Session, detail: str) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise FamilyConflictError(detail) from exc


def GetParent(db: Session, parent_id: int) -> Parent:
    parent = db.query(Parent).filter(Parent.Id == parent_id).first()
    if not parent:
        raise FamilyNotFoundError("Parent not found")
    return parent


def FindParentByEmail(db: Session, email: str) -> Parent:
    normalized = NormalizeEmail(email)
    if not normalized:
        raise ValueError("Email is required")
    parent = db.query(Parent).filter(Parent.Email == normalized).first()
    if not parent:
        raise FamilyNotFoundError("Parent not found")
    return parent


def CreateParent(db: Session, email: str) -> Parent:
    normalized = NormalizeEmail(email)
    if not normalized:
        raise ValueError("Email is required")
    if len(normalized) > MAX_EMAIL_LENGTH:
        raise ValueError("Email is too long")
    existing = db.query(Parent).filter(Parent.Email == normalized).first()
    if existing:
        raise FamilyConflictError("Parent already exists")
    parent = Parent(Email=normalized)
    db.add(parent)
    _CommitOrConflict(db, "Parent already exists")
    db.refresh(parent)
    logger.info("parent created parent_id=%s", parent.Id)
    return parent


def GetChild(db: Session, child_id: int) -> Child:
    child = db.query(Child).filter(Child.Id == child_id).first()
    if not child:
        raise FamilyNotFoundError("Child not found")
    return child


def EnsureChildOwnedBy(db: Session, child_id: int, parent_id: int, action: str) -> Child:
    child = GetChild(db, child_id)
    if child.ParentId != parent_id:
        raise FamilyAccessError(f"You cannot {action} for another parent")
    return child


def ListChildren(db: Session, parent_id: int) -> list[Child]:
    GetParent(db, parent_id)
    return (
        db.query(Child)
        .filter(Child.ParentId == parent_id)
        .order_by(Child.CreatedAt.asc(), Child.Id.asc())
        .all()
    )


def CreateChild(
    db: Session,
    parent_id: int,
    name: str,
    dollar_per_point=None,
    payload_parent_id: int | None = None,
) -> Child:
    if payload_parent_id and payload_parent_id != parent_id:
        raise ValueError("ParentId mismatch")
    GetParent(db, parent_id)
    child = Child(
        ParentId=parent_id,
        Name=ValidateName(name, "Child name"),
        DollarPerPoint=ValidateDollarPerPoint(
            DEFAULT_DOLLAR_PER_POINT if dollar_per_point is None else dollar_per_point
        ),
    )
    db.add(child)
    db.commit()
    db.refresh(child)
    logger.info("child created parent_id=%s child_id=%s", parent_id, child.Id)
    return child


def UpdateChild(
    db: Session,
    child_id: int,
    name: str,
    dollar_per_point=None,
    payload_parent_id: int | None = None,
) -> Child:
    child = GetChild(db, child_id)
    if payload_parent_id and payload_parent_id != child.ParentId:
        raise FamilyConflictError("ParentId mismatch")
    normalized = ValidateName(name, "Child name")
    rate = ValidateDollarPerPoint(
        child.DollarPerPoint if dollar_per_point is None else dollar_per_point
    )
    child.Name = normalized
    child.DollarPerPoint = rate
    db.add(child)
    db.commit()
    db.refresh(child)
    return child


def DeleteChild(db: Session, parent_id: int, child_id: int) -> None:
    child = GetChild(db, child_id)
    if child.ParentId != parent_id:
        raise FamilyAccessError("Child does not belong to this parent")
    db.delete(child)
    db.commit()
    logger.warning("child deleted parent_id=%s child_id=%s", parent_id, child_id)


def GetDeedType(db: Session, deed_type_id: int) -> DeedType:
    deed_type = db.query(DeedType).filter(DeedType.Id == deed_type_id).first()
    if not deed_type:
        raise FamilyNotFoundError("Deed type not found")
    return deed_type


def _FindDeedTypeByName(db: Session, parent_id: int, name: str) -> DeedType | None:
    return (
        db.query(DeedType)
        .filter(DeedType.ParentId == parent_id, func.lower(DeedType.Name) == name.lower())
        .first()
    )


def EnsureDeedTypeUsable(db: Session, deed_type_id: int, parent_id: int) -> DeedType:
    deed_type = db.query(DeedType).filter(DeedType.Id == deed_type_id).first()
    if not deed_type or deed_type.ParentId != parent_id:
        raise ValueError("Deed type not found for this parent")
    if not deed_type.Active:
        raise FamilyConflictError("Deed type is inactive")
    return deed_type


def ListDeedTypes(db: Session, parent_id: int) -> list[DeedType]:
    GetParent(db, parent_id)
    return (
        db.query(DeedType)
        .filter(DeedType.ParentId == parent_id)
        .order_by(DeedType.CreatedAt.asc(), DeedType.Id.asc())
        .all()
    )


def CreateDeedType(
    db: Session,
    parent_id: int,
    name: str,
    points: int,
    payload_parent_id: int | None = None,
) -> DeedType:
    if payload_parent_id and payload_parent_id != parent_id:
        raise ValueError("ParentId mismatch")
    GetParent(db, parent_id)
    normalized = ValidateName(name, "Name")
    ValidateDeedTypePoints(points)
    if _FindDeedTypeByName(db, parent_id, normalized):
        raise FamilyConflictError("Deed type already exists")
    deed_type = DeedType(ParentId=parent_id, Name=normalized, Points=points, Active=True)
    db.add(deed_type)
    _CommitOrConflict(db, "Deed type already exists")
    db.refresh(deed_type)
    logger.info("deed type created parent_id=%s deed_type_id=%s", parent_id, deed_type.Id)
    return deed_type


def UpdateDeedType(
    db: Session,
    deed_type_id: int,
    name: str,
    points: int,
    active: bool,
    payload_parent_id: int | None = None,
) -> DeedType:
    deed_type = GetDeedType(db, deed_type_id)
    if payload_parent_id and payload_parent_id != deed_type.ParentId:
        raise FamilyConflictError("ParentId mismatch")
    normalized = ValidateName(name, "Name")
    ValidateDeedTypePoints(points)
    conflicting = _FindDeedTypeByName(db, deed_type.ParentId, normalized)
    if conflicting and conflicting.Id != deed_type_id:
        raise FamilyConflictError("Another deed type with that name exists")
    deed_type.Name = normalized
    deed_type.Points = points
    deed_type.Active = active
    db.add(deed_type)
    _CommitOrConflict(db, "Another deed type with that name exists")
    db.refresh(deed_type)
    return deed_type


def DeleteDeedType(db: Session, deed_type_id: int) -> None:
    deed_type = GetDeedType(db, deed_type_id)
    in_use = db.query(func.count(Deed.Id)).filter(Deed.DeedTypeId == deed_type_id).scalar()
    if in_use:
        raise FamilyConflictError("Deed type is used by recorded deeds; deactivate it instead")
    db.delete(deed_type)
    _CommitOrConflict(db, "Deed type is used by recorded deeds; deactivate it instead")
    logger.warning("deed type deleted deed_type_id=%s", deed_type_id)
