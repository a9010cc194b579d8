from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

# Points columns are 32-bit Integer.
POINTS_MIN = -(2**31)
POINTS_MAX = 2**31 - 1


class DeedCreate(BaseModel):
    ChildId: int
    DeedTypeId: int
    Points: int = Field(default=0, ge=POINTS_MIN, le=POINTS_MAX)
    Note: str | None = Field(default=None, max_length=500)
    CreatedBy: int


class DeedOut(BaseModel):
    Id: int
    ChildId: int
    DeedTypeId: int
    Points: int
    Note: str | None = None
    OccurredAt: datetime
    CreatedBy: int


class RedemptionCreate(BaseModel):
    ChildId: int
    Points: int = Field(ge=POINTS_MIN, le=POINTS_MAX)
    Description: str | None = Field(default=None, max_length=500)
    CreatedBy: int


class RedemptionOut(BaseModel):
    Id: int
    ChildId: int
    Points: int
    Description: str | None = None
    CreatedAt: datetime
    CreatedBy: int


class BalanceOut(BaseModel):
    ChildId: int
    Points: int
    Dollars: Decimal


class HistoryEntryOut(BaseModel):
    EntryType: str
    Points: int
    DollarValue: Decimal
    Note: str | None = None
    OccurredAt: datetime
    RecordedBy: int


class ChildHistoryResponse(BaseModel):
    ChildId: int
    Balance: BalanceOut
    Entries: list[HistoryEntryOut]
