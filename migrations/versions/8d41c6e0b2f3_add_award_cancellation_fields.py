"""add_award_cancellation_fields

Revision ID: 8d41c6e0b2f3
Revises: 3f2a9c1d7e10
Create Date: 2026-10-20 14:03:27.512904+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "8d41c6e0b2f3"
down_revision: Union[str, None] = "3f2a9c1d7e10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("awards", sa.Column("cancellation_reason", sa.Text(), nullable=True))
    op.add_column("awards", sa.Column("cancelled_at", sa.DateTime(), nullable=True))
    op.add_column("awards", sa.Column("cancelled_by", sa.Uuid(), nullable=True))
    op.create_foreign_key(
        "fk_award_cancelled_by", "awards", "users", ["cancelled_by"], ["id"]
    )


def downgrade() -> None:
    op.drop_constraint("fk_award_cancelled_by", "awards", type_="foreignkey")
    op.drop_column("awards", "cancelled_by")
    op.drop_column("awards", "cancelled_at")
    op.drop_column("awards", "cancellation_reason")
