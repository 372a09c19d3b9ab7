"""geocoding jobs for parliaments and localities

Revision ID: d4f2a8b61c03
Revises: c7a43f18e2b6
Create Date: 2026-10-18 10:41:52.508113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'd4f2a8b61c03'
down_revision: Union[str, None] = 'c7a43f18e2b6'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TARGET_INDEX = 'geocoding_jobs_one_active_per_target'
TARGET_WHERE = sa.text("version_id IS NULL AND status IN ('pending', 'running', 'paused')")


def upgrade() -> None:
    """Add geocoding_jobs.target and allow jobs without a voter version"""
    inspector = sa.inspect(op.get_bind())
    # Fresh databases get the whole schema from init_db
    if not inspector.has_table('geocoding_jobs'):
        return

    columns = {column['name'] for column in inspector.get_columns('geocoding_jobs')}
    with op.batch_alter_table('geocoding_jobs') as batch_op:
        if 'target' not in columns:
            batch_op.add_column(
                sa.Column('target', sa.String(), server_default='voters', nullable=False)
            )
        batch_op.alter_column('version_id', existing_type=sa.Integer(), nullable=True)

    indexes = {index['name'] for index in inspector.get_indexes('geocoding_jobs')}
    if TARGET_INDEX not in indexes:
        op.create_index(
            TARGET_INDEX,
            'geocoding_jobs',
            ['target'],
            unique=True,
            sqlite_where=TARGET_WHERE,
            postgresql_where=TARGET_WHERE,
        )


def downgrade() -> None:
    op.drop_index(TARGET_INDEX, table_name='geocoding_jobs')
    op.execute(sa.text("DELETE FROM geocoding_jobs WHERE version_id IS NULL"))
    with op.batch_alter_table('geocoding_jobs') as batch_op:
        batch_op.alter_column('version_id', existing_type=sa.Integer(), nullable=False)
        batch_op.drop_column('target')
