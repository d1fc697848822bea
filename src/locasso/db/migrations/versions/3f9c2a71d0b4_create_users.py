"""create users table

Revision ID: 3f9c2a71d0b4
Revises:
Create Date: 2026-10-19 09:12:44.301877

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


revision: str = "3f9c2a71d0b4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("photo_url", sa.String(length=2048), nullable=False),
        sa.Column(
            "role",
            sa.Enum(
                "Admin",
                "Guide",
                "Traveler",
                name="user_role",
                native_enum=False,
                length=20,
            ),
            nullable=False,
        ),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "last_login_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "external_id", "provider", name="uq_users_external_id_provider"
        ),
    )


def downgrade() -> None:
    op.drop_table("users")
