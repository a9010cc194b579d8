from decimal import Decimal

from pydantic import BaseModel, Field

from deedbank.modules.ledger.schemas import POINTS_MAX, POINTS_MIN


class ParentCreate(BaseModel):
    Email: str | None = Field(default=None, max_length=320)


class ParentOut(BaseModel):
    Id: int
    Email: str


class ChildCreate(BaseModel):
    ParentId: int | None = None
    Name: str | None = Field(default=None, max_length=200)
    DollarPerPoint: Decimal | None = None


class ChildUpdate(BaseModel):
    ParentId: int | None = None
    Name: str | None = Field(default=None, max_length=200)
    DollarPerPoint: Decimal | None = None


class ChildOut(BaseModel):
    Id: int
    ParentId: int
    Name: str
    DollarPerPoint: Decimal


class DeedTypeCreate(BaseModel):
    ParentId: int | None = None
    Name: str | None = Field(default=None, max_length=200)
    Points: int = Field(default=0, ge=POINTS_MIN, le=POINTS_MAX)


class DeedTypeUpdate(BaseModel):
    ParentId: int | None = None
    Name: str | None = Field(default=None, max_length=200)
    Points: int = Field(default=0, ge=POINTS_MIN, le=POINTS_MAX)
    Active: bool = True


class DeedTypeOut(BaseModel):
    Id: int
    ParentId: int
    Name: str
    Points: int
    Active: bool
