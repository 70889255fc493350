"""Create stocks table with seed quotes

Revision ID: 3f1c2a9d0b7e
Revises:
Create Date: 2026-10-12 09:14:02.118204
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = '3f1c2a9d0b7e'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    stocks = op.create_table(
        'stocks',
        sa.Column('code', sa.String(length=10), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.PrimaryKeyConstraint('code'),
    )
    op.bulk_insert(stocks, [
        {'code': 'MSFT', 'name': 'Microsoft', 'price': 100},
        {'code': 'AAPL', 'name': 'Apple', 'price': 180},
        {'code': 'GOOG', 'name': 'Alphabet', 'price': 140},
    ])


def downgrade() -> None:
    op.drop_table('stocks')
