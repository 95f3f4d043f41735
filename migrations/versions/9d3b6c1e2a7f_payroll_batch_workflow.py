"""payroll batch approval workflow and recalculation grants

Revision ID: 9d3b6c1e2a7f
Revises: 4f1e2d3c5b6a
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '9d3b6c1e2a7f'
down_revision: Union[str, Sequence[str], None] = '4f1e2d3c5b6a'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_COLUMNS = (
    ('recalculation_expires_at', sa.DateTime()),
    ('recalculation_requested_by', sa.String(length=64)),
    ('recalculation_requested_at', sa.DateTime()),
    ('recalculation_granted_by', sa.String(length=64)),
    ('recalculation_granted_at', sa.DateTime()),
    ('recalculation_reason', sa.String(length=255)),
    ('approved_by', sa.String(length=64)),
    ('approved_at', sa.DateTime()),
    ('frozen_by', sa.String(length=64)),
    ('frozen_at', sa.DateTime()),
    ('completed_by', sa.String(length=64)),
    ('completed_at', sa.DateTime()),
    ('status_history', sa.JSON()),
)


def upgrade() -> None:
    with op.batch_alter_table('payroll_batches') as batch:
        for name, type_ in _COLUMNS:
            batch.add_column(sa.Column(name, type_, nullable=True))


def downgrade() -> None:
    with op.batch_alter_table('payroll_batches') as batch:
        for name, _ in reversed(_COLUMNS):
            batch.drop_column(name)
