"""Baseline

Revision ID: 5b1e0c2a9d41
Revises: 
Create Date: 2026-09-02 09:12:41.508113

"""
from typing import Sequence, Union


# revision identifiers, used by Alembic.
revision: str = '5b1e0c2a9d41'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema.

    Tables are created by ``init_db`` from the models; this revision only
    marks the starting point that later migrations build on.
    """
    pass


def downgrade() -> None:
    pass
