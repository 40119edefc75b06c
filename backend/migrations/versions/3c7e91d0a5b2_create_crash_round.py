"""create crash_round table

Revision ID: 3c7e91d0a5b2
Revises:
Create Date: 2026-10-17 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c7e91d0a5b2'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    # Tables created by AUTO_CREATE_TABLES already match this revision
    if 'crash_round' in set(insp.get_table_names()):
        return

    op.create_table(
        'crash_round',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('game_id', sa.String(length=36), nullable=False),
        sa.Column('round_number', sa.Integer(), nullable=True),
        sa.Column('crash_at', sa.Float(), nullable=False),
        sa.Column('player_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_staked', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_crash_round_game_id', 'crash_round', ['game_id'], unique=True)


def downgrade():
    op.drop_index('ix_crash_round_game_id', table_name='crash_round')
    op.drop_table('crash_round')
