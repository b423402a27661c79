"""Create stage tracking tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Creates service_stages (templates), contract_services (service
       instances), contract_service_stages (per-instance checklist) and
       service_routines (routine record mirroring the instance lifecycle).

Rollback: downgrade() drops all four tables (destructive, all data lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "service_stages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "service_id",
            sa.Integer(),
            nullable=False,
            comment="Catalogue service owning this template",
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column(
            "sort_order",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
            comment="Position of the stage within the service checklist",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_service_stages_service_id",
        "service_stages",
        ["service_id", "sort_order"],
    )

    op.create_table(
        "contract_services",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("contract_id", sa.Integer(), nullable=True),
        sa.Column(
            "service_id",
            sa.Integer(),
            nullable=False,
            comment="Catalogue service this instance was sold from",
        ),
        sa.Column(
            "status",
            sa.String(50),
            nullable=False,
            server_default=sa.text("'not_started'"),
            comment="Lifecycle: not_started, in_progress, completed, ...",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_contract_services_service_id", "contract_services", ["service_id"])

    op.create_table(
        "contract_service_stages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("contract_service_id", sa.Integer(), nullable=False),
        sa.Column("service_stage_id", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'pending'"),
            comment="pending or completed",
        ),
        sa.Column(
            "is_not_applicable",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_by", sa.Integer(), nullable=True),
        sa.Column("updated_by", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["contract_service_id"], ["contract_services.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["service_stage_id"], ["service_stages.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "contract_service_id",
            "service_stage_id",
            name="uq_contract_service_stage_template",
        ),
    )
    # Progress is always computed over one instance's stages
    op.create_index(
        "idx_contract_service_stages_owner",
        "contract_service_stages",
        ["contract_service_id"],
    )

    op.create_table(
        "service_routines",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("contract_service_id", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.String(50),
            nullable=False,
            server_default=sa.text("'not_started'"),
        ),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["contract_service_id"], ["contract_services.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("contract_service_id"),
    )


def downgrade() -> None:
    op.drop_table("service_routines")
    op.drop_index("idx_contract_service_stages_owner", table_name="contract_service_stages")
    op.drop_table("contract_service_stages")
    op.drop_index("idx_contract_services_service_id", table_name="contract_services")
    op.drop_table("contract_services")
    op.drop_index("idx_service_stages_service_id", table_name="service_stages")
    op.drop_table("service_stages")
