from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)

from deedbank.core.clock import NowUtc
from deedbank.db import Base


class Parent(Base):
    __tablename__ = "parents"

    Id = Column(Integer, primary_key=True, index=True)
    Email = Column(String(320), nullable=False, unique=True)
    CreatedAt = Column(DateTime(timezone=True), default=NowUtc, nullable=False)


class Child(Base):
    __tablename__ = "children"
    __table_args__ = (
        CheckConstraint('"DollarPerPoint" > 0', name="ck_children_dollar_per_point_positive"),
    )

    Id = Column(Integer, primary_key=True, index=True)
    ParentId = Column(Integer, ForeignKey("parents.Id", ondelete="CASCADE"), nullable=False, index=True)
    Name = Column(String(200), nullable=False)
    DollarPerPoint = Column(Numeric(10, 2), nullable=False, default=1)
    CreatedAt = Column(DateTime(timezone=True), default=NowUtc, nullable=False)


class DeedType(Base):
    __tablename__ = "deed_types"
    __table_args__ = (
        UniqueConstraint("ParentId", "Name", name="uq_deed_types_parent_name"),
        CheckConstraint('"Points" <> 0', name="ck_deed_types_points_nonzero"),
    )

    Id = Column(Integer, primary_key=True, index=True)
    ParentId = Column(Integer, ForeignKey("parents.Id", ondelete="CASCADE"), nullable=False, index=True)
    Name = Column(String(200), nullable=False)
    Points = Column(Integer, nullable=False)
    Active = Column(Boolean, nullable=False, default=True)
    CreatedAt = Column(DateTime(timezone=True), default=NowUtc, nullable=False)
