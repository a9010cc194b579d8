from decimal import Decimal

import pytest

from deedbank.modules.family.models import Child, DeedType
from deedbank.modules.family.services import (
    CreateChild,
    CreateDeedType,
    CreateParent,
    DeleteChild,
    DeleteDeedType,
    EnsureChildOwnedBy,
    EnsureDeedTypeUsable,
    FamilyAccessError,
    FamilyConflictError,
    FamilyNotFoundError,
    FindParentByEmail,
    ListChildren,
    ListDeedTypes,
    UpdateChild,
    UpdateDeedType,
    ValidateDollarPerPoint,
)
from deedbank.modules.ledger.models import Deed
from deedbank.modules.ledger.services.ledger_service import AppendDeed


def test_create_parent_normalizes_email(db):
    parent = CreateParent(db, "  Dad@Example.COM ")
    assert parent.Email == "dad@example.com"
    assert FindParentByEmail(db, "DAD@example.com").Id == parent.Id


def test_create_parent_rejects_duplicate_and_blank(db):
    CreateParent(db, "mum@example.com")
    with pytest.raises(FamilyConflictError):
        CreateParent(db, "MUM@example.com")
    with pytest.raises(ValueError):
        CreateParent(db, "   ")


def test_create_child_defaults_rate(db, family):
    child = CreateChild(db, family.ParentId, "  Ben ")
    assert child.Name == "Ben"
    assert child.DollarPerPoint == Decimal("1.00")
    assert [item.Id for item in ListChildren(db, family.ParentId)] == [family.ChildId, child.Id]


@pytest.mark.parametrize("rate", [0, -1, "abc", "NaN"])
def test_invalid_rates_are_rejected(rate):
    with pytest.raises(ValueError):
        ValidateDollarPerPoint(rate)


def test_create_child_for_missing_parent(db, family):
    with pytest.raises(FamilyNotFoundError):
        CreateChild(db, family.ParentId + 100, "Ben")


def test_create_child_parent_mismatch(db, family):
    with pytest.raises(ValueError):
        CreateChild(db, family.ParentId, "Ben", payload_parent_id=family.ParentId + 1)


def test_update_child_keeps_rate_when_omitted(db, family):
    child = UpdateChild(db, family.ChildId, "Ava Rose")
    assert child.Name == "Ava Rose"
    assert child.DollarPerPoint == Decimal("0.25")
    child = UpdateChild(db, family.ChildId, "Ava Rose", Decimal("0.10"))
    assert child.DollarPerPoint == Decimal("0.10")


def test_child_ownership_check(db, family):
    other = CreateParent(db, "other@example.com")
    assert EnsureChildOwnedBy(db, family.ChildId, family.ParentId, "redeem").Id == family.ChildId
    with pytest.raises(FamilyAccessError) as exc_info:
        EnsureChildOwnedBy(db, family.ChildId, other.Id, "redeem")
    assert str(exc_info.value) == "You cannot redeem for another parent"


def test_delete_child_cascades_ledger(db, family):
    AppendDeed(db, family.ChildId, family.GoodDeedId, 0, None, family.ParentId)
    other = CreateParent(db, "other@example.com")
    with pytest.raises(FamilyAccessError):
        DeleteChild(db, other.Id, family.ChildId)

    DeleteChild(db, family.ParentId, family.ChildId)

    db.expire_all()
    assert db.query(Child).filter(Child.Id == family.ChildId).first() is None
    assert db.query(Deed).filter(Deed.ChildId == family.ChildId).count() == 0


def test_create_deed_type_validation(db, family):
    with pytest.raises(ValueError):
        CreateDeedType(db, family.ParentId, "Nothing", 0)
    with pytest.raises(FamilyConflictError):
        CreateDeedType(db, family.ParentId, "tidy ROOM", 2)
    created = CreateDeedType(db, family.ParentId, "Homework", 4)
    assert created.Active is True
    assert [item.Name for item in ListDeedTypes(db, family.ParentId)] == [
        "Tidy room",
        "Talking back",
        "Homework",
    ]


def test_update_deed_type_rename_conflict(db, family):
    with pytest.raises(FamilyConflictError):
        UpdateDeedType(db, family.GoodDeedId, "Talking back", 5, True)
    updated = UpdateDeedType(db, family.GoodDeedId, "Tidy bedroom", 6, False)
    assert (updated.Name, updated.Points, updated.Active) == ("Tidy bedroom", 6, False)


def test_inactive_or_foreign_deed_type_is_not_usable(db, family):
    other = CreateParent(db, "other@example.com")
    with pytest.raises(ValueError):
        EnsureDeedTypeUsable(db, family.GoodDeedId, other.Id)
    UpdateDeedType(db, family.GoodDeedId, "Tidy room", 5, False)
    with pytest.raises(FamilyConflictError):
        EnsureDeedTypeUsable(db, family.GoodDeedId, family.ParentId)


def test_delete_deed_type_refused_while_referenced(db, family):
    AppendDeed(db, family.ChildId, family.GoodDeedId, 0, None, family.ParentId)
    with pytest.raises(FamilyConflictError):
        DeleteDeedType(db, family.GoodDeedId)

    DeleteDeedType(db, family.BadDeedId)
    db.expire_all()
    assert db.query(DeedType).filter(DeedType.Id == family.BadDeedId).first() is None
    with pytest.raises(FamilyNotFoundError):
        DeleteDeedType(db, family.BadDeedId)


@pytest.mark.parametrize(
    "rate, expected",
    [
        (Decimal("0.005"), Decimal("0.01")),
        ("0.254", Decimal("0.25")),
        (Decimal("99999999.99"), Decimal("99999999.99")),
    ],
)
def test_rates_are_stored_to_the_cent(rate, expected):
    assert ValidateDollarPerPoint(rate) == expected


@pytest.mark.parametrize(
    "rate",
    [Decimal("0.004"), Decimal("0.0001"), Decimal("99999999.995"), Decimal("100000000"), Decimal("1E+30")],
)
def test_rates_outside_column_range_are_rejected(rate):
    with pytest.raises(ValueError):
        ValidateDollarPerPoint(rate)


def test_sub_cent_rate_never_reaches_the_ledger(db, family):
    with pytest.raises(ValueError):
        CreateChild(db, family.ParentId, "Ben", Decimal("0.004"))
    with pytest.raises(ValueError):
        UpdateChild(db, family.ChildId, "Ava", Decimal("0.004"))

    db.expire_all()
    assert db.query(Child).filter(Child.Id == family.ChildId).first().DollarPerPoint == Decimal("0.25")
    assert [child.Name for child in ListChildren(db, family.ParentId)] == ["Ava"]
