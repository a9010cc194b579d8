import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from deedbank.core.bootstrap import EnsureStorageReady
from deedbank.db import GetDb
from deedbank.modules.family.models import Child, DeedType, Parent
from deedbank.modules.family.schemas import (
    ChildCreate,
    ChildOut,
    ChildUpdate,
    DeedTypeCreate,
    DeedTypeOut,
    DeedTypeUpdate,
    ParentCreate,
    ParentOut,
)
from deedbank.modules.family.services import (
    CreateChild,
    CreateDeedType,
    CreateParent,
    DeleteChild,
    DeleteDeedType,
    FamilyAccessError,
    FamilyConflictError,
    FamilyNotFoundError,
    FindParentByEmail,
    GetChild,
    GetParent,
    ListChildren,
    ListDeedTypes,
    UpdateChild,
    UpdateDeedType,
)

router = APIRouter(
    prefix="/api",
    tags=["family"],
    dependencies=[Depends(EnsureStorageReady)],
)
logger = logging.getLogger("family")


def _handle_db_error(exc: Exception) -> None:
    logger.exception("family database error")
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Storage not initialized. Run alembic upgrade head.",
    ) from exc


def _handle_family_error(exc: Exception) -> None:
    detail = str(exc)
    if isinstance(exc, FamilyNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail) from exc
    if isinstance(exc, FamilyAccessError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail) from exc
    if isinstance(exc, FamilyConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail) from exc


def _BuildParentOut(parent: Parent) -> ParentOut:
    return ParentOut(Id=parent.Id, Email=parent.Email)


def _BuildChildOut(child: Child) -> ChildOut:
    return ChildOut(
        Id=child.Id,
        ParentId=child.ParentId,
        Name=child.Name,
        DollarPerPoint=child.DollarPerPoint,
    )


def _BuildDeedTypeOut(deed_type: DeedType) -> DeedTypeOut:
    return DeedTypeOut(
        Id=deed_type.Id,
        ParentId=deed_type.ParentId,
        Name=deed_type.Name,
        Points=deed_type.Points,
        Active=deed_type.Active,
    )


@router.post("/parents", response_model=ParentOut, status_code=status.HTTP_201_CREATED)
def CreateParentItem(
    payload: ParentCreate,
    db: Session = Depends(GetDb),
) -> ParentOut:
    try:
        return _BuildParentOut(CreateParent(db, payload.Email))
    except ValueError as exc:
        _handle_family_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/parents", response_model=ParentOut)
def FindParentItem(
    email: str = "",
    db: Session = Depends(GetDb),
) -> ParentOut:
    try:
        return _BuildParentOut(FindParentByEmail(db, email))
    except ValueError as exc:
        _handle_family_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/parents/{parent_id}", response_model=ParentOut)
def GetParentItem(
    parent_id: int,
    db: Session = Depends(GetDb),
) -> ParentOut:
    try:
        return _BuildParentOut(GetParent(db, parent_id))
    except ValueError as exc:
        _handle_family_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.post(
    "/parents/{parent_id}/children",
    response_model=ChildOut,
    status_code=status.HTTP_201_CREATED,
)
def CreateChildItem(
    parent_id: int,
    payload: ChildCreate,
    db: Session = Depends(GetDb),
) -> ChildOut:
    try:
        child = CreateChild(
            db,
            parent_id,
            payload.Name,
            payload.DollarPerPoint,
            payload_parent_id=payload.ParentId,
        )
        return _BuildChildOut(child)
    except ValueError as exc:
        _handle_family_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/parents/{parent_id}/children", response_model=list[ChildOut])
def ListChildItems(
    parent_id: int,
    db: Session = Depends(GetDb),
) -> list[ChildOut]:
    try:
        return [_BuildChildOut(child) for child in ListChildren(db, parent_id)]
    except ValueError as exc:
        _handle_family_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/children/{child_id}", response_model=ChildOut)
def GetChildItem(
    child_id: int,
    db: Session = Depends(GetDb),
) -> ChildOut:
    try:
        return _BuildChildOut(GetChild(db, child_id))
    except ValueError as exc:
        _handle_family_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.api_route("/children/{child_id}", methods=["PUT", "PATCH"], response_model=ChildOut)
def UpdateChildItem(
    child_id: int,
    payload: ChildUpdate,
    db: Session = Depends(GetDb),
) -> ChildOut:
    try:
        child = UpdateChild(
            db,
            child_id,
            payload.Name,
            payload.DollarPerPoint,
            payload_parent_id=payload.ParentId,
        )
        return _BuildChildOut(child)
    except ValueError as exc:
        _handle_family_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.delete(
    "/parents/{parent_id}/children/{child_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
def DeleteChildItem(
    parent_id: int,
    child_id: int,
    db: Session = Depends(GetDb),
) -> Response:
    try:
        DeleteChild(db, parent_id, child_id)
    except ValueError as exc:
        _handle_family_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/parents/{parent_id}/deed-types",
    response_model=DeedTypeOut,
    status_code=status.HTTP_201_CREATED,
)
def CreateDeedTypeItem(
    parent_id: int,
    payload: DeedTypeCreate,
    db: Session = Depends(GetDb),
) -> DeedTypeOut:
    try:
        deed_type = CreateDeedType(
            db,
            parent_id,
            payload.Name,
            payload.Points,
            payload_parent_id=payload.ParentId,
        )
        return _BuildDeedTypeOut(deed_type)
    except ValueError as exc:
        _handle_family_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/parents/{parent_id}/deed-types", response_model=list[DeedTypeOut])
def ListDeedTypeItems(
    parent_id: int,
    db: Session = Depends(GetDb),
) -> list[DeedTypeOut]:
    try:
        return [_BuildDeedTypeOut(deed_type) for deed_type in ListDeedTypes(db, parent_id)]
    except ValueError as exc:
        _handle_family_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.api_route("/deed-types/{deed_type_id}", methods=["PUT", "PATCH"], response_model=DeedTypeOut)
def UpdateDeedTypeItem(
    deed_type_id: int,
    payload: DeedTypeUpdate,
    db: Session = Depends(GetDb),
) -> DeedTypeOut:
    try:
        deed_type = UpdateDeedType(
            db,
            deed_type_id,
            payload.Name,
            payload.Points,
            payload.Active,
            payload_parent_id=payload.ParentId,
        )
        return _BuildDeedTypeOut(deed_type)
    except ValueError as exc:
        _handle_family_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.delete(
    "/deed-types/{deed_type_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
def DeleteDeedTypeItem(
    deed_type_id: int,
    db: Session = Depends(GetDb),
) -> Response:
    try:
        DeleteDeedType(db, deed_type_id)
    except ValueError as exc:
        _handle_family_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
