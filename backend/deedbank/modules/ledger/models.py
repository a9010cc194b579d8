from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
)

from deedbank.db import Base

ENTRY_TYPE_DEED = "deed"
ENTRY_TYPE_REDEMPTION = "redemption"


class Deed(Base):
    __tablename__ = "deeds"
    __table_args__ = (
        CheckConstraint('"Points" <> 0', name="ck_deeds_points_nonzero"),
        Index("ix_deeds_child_occurred", "ChildId", "OccurredAt", "Id"),
    )

    Id = Column(Integer, primary_key=True, index=True)
    ChildId = Column(Integer, ForeignKey("children.Id", ondelete="CASCADE"), nullable=False)
    DeedTypeId = Column(Integer, ForeignKey("deed_types.Id"), nullable=False, index=True)
    Points = Column(Integer, nullable=False)
    Note = Column(Text)
    OccurredAt = Column(DateTime(timezone=True), nullable=False)
    CreatedBy = Column(Integer, ForeignKey("parents.Id"), nullable=False)

    EntryType = ENTRY_TYPE_DEED

    @property
    def SignedPoints(self) -> int:
        return self.Points

    @property
    def RecordedAt(self):
        return self.OccurredAt

    @property
    def EntryNote(self) -> str | None:
        return self.Note


class Redemption(Base):
    __tablename__ = "redemptions"
    __table_args__ = (
        CheckConstraint('"Points" > 0', name="ck_redemptions_points_positive"),
        Index("ix_redemptions_child_created", "ChildId", "CreatedAt", "Id"),
    )

    Id = Column(Integer, primary_key=True, index=True)
    ChildId = Column(Integer, ForeignKey("children.Id", ondelete="CASCADE"), nullable=False)
    Points = Column(Integer, nullable=False)
    Description = Column(Text)
    CreatedAt = Column(DateTime(timezone=True), nullable=False)
    CreatedBy = Column(Integer, ForeignKey("parents.Id"), nullable=False)

    EntryType = ENTRY_TYPE_REDEMPTION

    @property
    def SignedPoints(self) -> int:
        return -self.Points

    @property
    def RecordedAt(self):
        return self.CreatedAt

    @property
    def EntryNote(self) -> str | None:
        return self.Description
