"""add_conflict_change_id

Revision ID: 8b41e07c2d93
Revises: 3f2a9c1d7e40
Create Date: 2026-10-19 15:40:02.771930

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "8b41e07c2d93"
down_revision: Union[str, None] = "3f2a9c1d7e40"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("sync_conflicts") as batch_op:
        batch_op.add_column(sa.Column("change_id", sa.String(length=64), nullable=True))
        batch_op.create_index(
            "idx_sync_conflicts_change_id", ["user_id", "change_id"]
        )


def downgrade() -> None:
    with op.batch_alter_table("sync_conflicts") as batch_op:
        batch_op.drop_index("idx_sync_conflicts_change_id")
        batch_op.drop_column("change_id")
