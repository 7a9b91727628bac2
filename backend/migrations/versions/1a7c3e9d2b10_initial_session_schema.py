"""initial session, player, boundary, immunity, mission and ledger tables

Revision ID: 1a7c3e9d2b10
Revises:
Create Date: 2026-09-02 10:12:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1a7c3e9d2b10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'game_session',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_code', sa.String(length=6), nullable=True),
        sa.Column('host_player_key', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('game_mode', sa.String(length=32), nullable=True),
        sa.Column('settings', sa.Text(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=True),
        sa.Column('started_at', sa.Float(), nullable=True),
        sa.Column('ended_at', sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_game_session_session_code', 'game_session', ['session_code'], unique=True)

    op.create_table(
        'player',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('player_key', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('violations', sa.Integer(), nullable=False),
        sa.Column('last_location', sa.Text(), nullable=True),
        sa.Column('tagged_at', sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'player_key', name='uq_player_session_key'),
    )
    op.create_index('ix_player_player_key', 'player', ['player_key'])
    op.create_index('ix_player_session_id', 'player', ['session_id'])

    op.create_table(
        'boundary',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('original_boundary', sa.Text(), nullable=False),
        sa.Column('current_boundary', sa.Text(), nullable=False),
        sa.Column('shrink_count', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id'),
    )

    op.create_table(
        'immunity_spot',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('location', sa.Text(), nullable=False),
        sa.Column('unlock_threshold', sa.Integer(), nullable=False),
        sa.Column('activation_cost', sa.Integer(), nullable=False),
        sa.Column('drain_rate', sa.Integer(), nullable=False),
        sa.Column('occupied_by', sa.Integer(), nullable=True),
        sa.Column('occupied_at', sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.ForeignKeyConstraint(['occupied_by'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id'),
    )

    op.create_table(
        'mission',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('assigned_to', sa.Integer(), nullable=False),
        sa.Column('mission_type', sa.String(length=32), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('point_value', sa.Integer(), nullable=False),
        sa.Column('risk_level', sa.String(length=16), nullable=False),
        sa.Column('deadline', sa.Float(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=True),
        sa.Column('completed_at', sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.ForeignKeyConstraint(['assigned_to'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_mission_session_id', 'mission', ['session_id'])
    op.create_index('ix_mission_assigned_to', 'mission', ['assigned_to'])

    op.create_table(
        'violation',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('player_id', sa.Integer(), nullable=False),
        sa.Column('violation_type', sa.String(length=32), nullable=False),
        sa.Column('penalty_applied', sa.Text(), nullable=True),
        sa.Column('location', sa.Text(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.ForeignKeyConstraint(['player_id'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_violation_session_id', 'violation', ['session_id'])
    op.create_index('ix_violation_player_id', 'violation', ['player_id'])
    op.create_index('ix_violation_created_at', 'violation', ['created_at'])

    op.create_table(
        'point_transaction',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('from_player_id', sa.Integer(), nullable=True),
        sa.Column('to_player_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=32), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.ForeignKeyConstraint(['from_player_id'], ['player.id']),
        sa.ForeignKeyConstraint(['to_player_id'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_point_transaction_session_id', 'point_transaction', ['session_id'])

    op.create_table(
        'game_event',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('event_data', sa.Text(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_game_event_session_id', 'game_event', ['session_id'])


def downgrade():
    op.drop_index('ix_game_event_session_id', table_name='game_event')
    op.drop_table('game_event')
    op.drop_index('ix_point_transaction_session_id', table_name='point_transaction')
    op.drop_table('point_transaction')
    op.drop_index('ix_violation_created_at', table_name='violation')
    op.drop_index('ix_violation_player_id', table_name='violation')
    op.drop_index('ix_violation_session_id', table_name='violation')
    op.drop_table('violation')
    op.drop_index('ix_mission_assigned_to', table_name='mission')
    op.drop_index('ix_mission_session_id', table_name='mission')
    op.drop_table('mission')
    op.drop_table('immunity_spot')
    op.drop_table('boundary')
    op.drop_index('ix_player_session_id', table_name='player')
    op.drop_index('ix_player_player_key', table_name='player')
    op.drop_table('player')
    op.drop_index('ix_game_session_session_code', table_name='game_session')
    op.drop_table('game_session')
