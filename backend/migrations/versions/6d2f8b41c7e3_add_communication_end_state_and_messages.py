"""add communication flag, end reason, final standings; game_message table

Revision ID: 6d2f8b41c7e3
Revises: 1a7c3e9d2b10
Create Date: 2026-09-09 16:40:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '6d2f8b41c7e3'
down_revision = '1a7c3e9d2b10'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)

    cols = {c['name'] for c in insp.get_columns('game_session')}
    with op.batch_alter_table('game_session') as batch_op:
        if 'communication_enabled' not in cols:
            batch_op.add_column(sa.Column('communication_enabled', sa.Boolean(), nullable=False,
                                          server_default=sa.false()))
        if 'end_reason' not in cols:
            batch_op.add_column(sa.Column('end_reason', sa.String(length=32), nullable=True))
        if 'final_standings' not in cols:
            batch_op.add_column(sa.Column('final_standings', sa.Text(), nullable=True))

    if 'game_message' not in set(insp.get_table_names()):
        op.create_table(
            'game_message',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('session_id', sa.Integer(), nullable=False),
            sa.Column('from_player_id', sa.Integer(), nullable=False),
            sa.Column('to_player_id', sa.Integer(), nullable=True),
            sa.Column('message_text', sa.Text(), nullable=False),
            sa.Column('is_broadcast', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.Float(), nullable=False),
            sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
            sa.ForeignKeyConstraint(['from_player_id'], ['player.id']),
            sa.ForeignKeyConstraint(['to_player_id'], ['player.id']),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_game_message_session_id', 'game_message', ['session_id'])


def downgrade():
    op.drop_index('ix_game_message_session_id', table_name='game_message')
    op.drop_table('game_message')
    with op.batch_alter_table('game_session') as batch_op:
        batch_op.drop_column('final_standings')
        batch_op.drop_column('end_reason')
        batch_op.drop_column('communication_enabled')
