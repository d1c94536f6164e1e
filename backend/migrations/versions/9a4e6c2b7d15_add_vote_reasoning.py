"""add reasoning to vote

Revision ID: 9a4e6c2b7d15
Revises: 5b7c1d9e2f30
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '9a4e6c2b7d15'
down_revision = '5b7c1d9e2f30'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    cols = {c['name'] for c in insp.get_columns('vote')}
    if 'reasoning' not in cols:
        with op.batch_alter_table('vote') as batch_op:
            batch_op.add_column(sa.Column('reasoning', sa.Text(), nullable=True))


def downgrade():
    with op.batch_alter_table('vote') as batch_op:
        batch_op.drop_column('reasoning')
