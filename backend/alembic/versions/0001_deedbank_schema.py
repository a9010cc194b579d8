"""create parents, children, deed types and ledger tables

Revision ID: 0001_deedbank_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_deedbank_schema"
down_revision = None
branch_labels = None
depends_on = None


def _created_at(name: str = "CreatedAt") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    op.create_table(
        "parents",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("Email", sa.String(length=320), nullable=False),
        _created_at(),
        sa.UniqueConstraint("Email", name="uq_parents_email"),
    )
    op.create_index("ix_parents_Id", "parents", ["Id"])

    op.create_table(
        "children",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column(
            "ParentId",
            sa.Integer(),
            sa.ForeignKey("parents.Id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("Name", sa.String(length=200), nullable=False),
        sa.Column(
            "DollarPerPoint",
            sa.Numeric(10, 2),
            nullable=False,
            server_default=sa.text("1.00"),
        ),
        _created_at(),
        sa.CheckConstraint('"DollarPerPoint" > 0', name="ck_children_dollar_per_point_positive"),
    )
    op.create_index("ix_children_Id", "children", ["Id"])
    op.create_index("ix_children_ParentId", "children", ["ParentId"])

    op.create_table(
        "deed_types",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column(
            "ParentId",
            sa.Integer(),
            sa.ForeignKey("parents.Id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("Name", sa.String(length=200), nullable=False),
        sa.Column("Points", sa.Integer(), nullable=False),
        sa.Column("Active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.UniqueConstraint("ParentId", "Name", name="uq_deed_types_parent_name"),
        sa.CheckConstraint('"Points" <> 0', name="ck_deed_types_points_nonzero"),
    )
    op.create_index("ix_deed_types_Id", "deed_types", ["Id"])
    op.create_index("ix_deed_types_ParentId", "deed_types", ["ParentId"])

    op.create_table(
        "deeds",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column(
            "ChildId",
            sa.Integer(),
            sa.ForeignKey("children.Id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("DeedTypeId", sa.Integer(), sa.ForeignKey("deed_types.Id"), nullable=False),
        sa.Column("Points", sa.Integer(), nullable=False),
        sa.Column("Note", sa.Text(), nullable=True),
        _created_at("OccurredAt"),
        sa.Column("CreatedBy", sa.Integer(), sa.ForeignKey("parents.Id"), nullable=False),
        sa.CheckConstraint('"Points" <> 0', name="ck_deeds_points_nonzero"),
    )
    op.create_index("ix_deeds_Id", "deeds", ["Id"])
    op.create_index("ix_deeds_DeedTypeId", "deeds", ["DeedTypeId"])
    op.create_index("ix_deeds_child_occurred", "deeds", ["ChildId", "OccurredAt", "Id"])

    op.create_table(
        "redemptions",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column(
            "ChildId",
            sa.Integer(),
            sa.ForeignKey("children.Id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("Points", sa.Integer(), nullable=False),
        sa.Column("Description", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("CreatedBy", sa.Integer(), sa.ForeignKey("parents.Id"), nullable=False),
        sa.CheckConstraint('"Points" > 0', name="ck_redemptions_points_positive"),
    )
    op.create_index("ix_redemptions_Id", "redemptions", ["Id"])
    op.create_index("ix_redemptions_child_created", "redemptions", ["ChildId", "CreatedAt", "Id"])


def downgrade() -> None:
    op.drop_index("ix_redemptions_child_created", table_name="redemptions")
    op.drop_index("ix_redemptions_Id", table_name="redemptions")
    op.drop_table("redemptions")

    op.drop_index("ix_deeds_child_occurred", table_name="deeds")
    op.drop_index("ix_deeds_DeedTypeId", table_name="deeds")
    op.drop_index("ix_deeds_Id", table_name="deeds")
    op.drop_table("deeds")

    op.drop_index("ix_deed_types_ParentId", table_name="deed_types")
    op.drop_index("ix_deed_types_Id", table_name="deed_types")
    op.drop_table("deed_types")

    op.drop_index("ix_children_ParentId", table_name="children")
    op.drop_index("ix_children_Id", table_name="children")
    op.drop_table("children")

    op.drop_index("ix_parents_Id", table_name="parents")
    op.drop_table("parents")
