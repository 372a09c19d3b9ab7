"""geocoding job resume cursor and one active job per version

Revision ID: c7a43f18e2b6
Revises: 5b1e0c2a9d41
Create Date: 2026-09-16 14:03:27.220946

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c7a43f18e2b6'
down_revision: Union[str, None] = '5b1e0c2a9d41'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_INDEX = 'geocoding_jobs_one_active_per_version'
ACTIVE_WHERE = sa.text("status IN ('pending', 'running', 'paused')")


def upgrade() -> None:
    """Add geocoding_jobs.last_voter_id and the partial unique index on active jobs"""
    inspector = sa.inspect(op.get_bind())
    # Fresh databases get the whole schema from init_db
    if not inspector.has_table('geocoding_jobs'):
        return

    columns = {column['name'] for column in inspector.get_columns('geocoding_jobs')}
    if 'last_voter_id' not in columns:
        with op.batch_alter_table('geocoding_jobs') as batch_op:
            batch_op.add_column(sa.Column('last_voter_id', sa.Integer(), nullable=True))

    indexes = {index['name'] for index in inspector.get_indexes('geocoding_jobs')}
    if ACTIVE_INDEX not in indexes:
        # Older versions could leave several active jobs per version; keep the newest
        op.execute(sa.text(
            "UPDATE geocoding_jobs SET status = 'failed', "
            "error_message = 'Superseded by a newer job for this version' "
            "WHERE status IN ('pending', 'running', 'paused') AND id NOT IN ("
            "SELECT MAX(id) FROM geocoding_jobs "
            "WHERE status IN ('pending', 'running', 'paused') GROUP BY version_id)"
        ))
        op.create_index(
            ACTIVE_INDEX,
            'geocoding_jobs',
            ['version_id'],
            unique=True,
            sqlite_where=ACTIVE_WHERE,
            postgresql_where=ACTIVE_WHERE,
        )


def downgrade() -> None:
    op.drop_index(ACTIVE_INDEX, table_name='geocoding_jobs')
    with op.batch_alter_table('geocoding_jobs') as batch_op:
        batch_op.drop_column('last_voter_id')
