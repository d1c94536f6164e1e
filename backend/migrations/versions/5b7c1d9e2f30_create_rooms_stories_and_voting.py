"""create rooms, stories and voting sessions

Revision ID: 5b7c1d9e2f30
Revises:
Create Date: 2026-10-18 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5b7c1d9e2f30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'room',
        sa.Column('code', sa.String(length=6), primary_key=True),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('host_id', sa.String(length=64), nullable=False),
        sa.Column('settings_json', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('last_activity', sa.Float(), nullable=False),
        sa.Column('expires_at', sa.Float(), nullable=False),
    )
    op.create_index('ix_room_expires_at', 'room', ['expires_at'])

    op.create_table(
        'participant',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('room_code', sa.String(length=6), sa.ForeignKey('room.code'), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=64), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('is_online', sa.Boolean(), nullable=False),
        sa.Column('joined_at', sa.Float(), nullable=False),
        sa.Column('last_activity', sa.Float(), nullable=False),
        sa.UniqueConstraint('room_code', 'user_id', name='uq_participant_room_user'),
    )
    op.create_index('ix_participant_room_code', 'participant', ['room_code'])

    op.create_table(
        'story',
        sa.Column('id', sa.String(length=40), primary_key=True),
        sa.Column('room_code', sa.String(length=6), sa.ForeignKey('room.code'), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('last_voted_at', sa.Float(), nullable=True),
        sa.Column('estimate_value', sa.String(length=16), nullable=True),
        sa.Column('estimate_confidence', sa.Float(), nullable=True),
        sa.Column('finalized_by', sa.String(length=64), nullable=True),
        sa.Column('finalized_at', sa.Float(), nullable=True),
    )
    op.create_index('ix_story_room_code', 'story', ['room_code'])

    op.create_table(
        'voting_session',
        sa.Column('id', sa.String(length=40), primary_key=True),
        sa.Column('story_id', sa.String(length=40), sa.ForeignKey('story.id'), nullable=False),
        sa.Column('room_code', sa.String(length=6), sa.ForeignKey('room.code'), nullable=False),
        sa.Column('phase', sa.String(length=16), nullable=False),
        sa.Column('current_round', sa.Integer(), nullable=False),
        sa.Column('deck_type', sa.String(length=16), nullable=False),
        sa.Column('deck_json', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('votes_revealed', sa.Boolean(), nullable=False),
        sa.Column('facilitator_id', sa.String(length=64), nullable=False),
        sa.Column('consensus_threshold', sa.Float(), nullable=False),
        sa.Column('timer_duration', sa.Integer(), nullable=True),
        sa.Column('timer_started_at', sa.Float(), nullable=True),
        sa.Column('timer_ends_at', sa.Float(), nullable=True),
        sa.Column('is_paused', sa.Boolean(), nullable=False),
        sa.Column('paused_at', sa.Float(), nullable=True),
        sa.Column('paused_duration', sa.Float(), nullable=False),
        sa.Column('consensus_json', sa.Text(), nullable=True),
        sa.Column('rounds_json', sa.Text(), nullable=True),
        sa.Column('participants_json', sa.Text(), nullable=True),
        sa.Column('stats_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('completed_at', sa.Float(), nullable=True),
        sa.Column('completed_by', sa.String(length=64), nullable=True),
    )
    op.create_index('ix_voting_session_story_id', 'voting_session', ['story_id'])
    op.create_index('ix_voting_session_room_code', 'voting_session', ['room_code'])
    op.create_index('uq_active_session_per_story', 'voting_session', ['story_id'], unique=True,
                    sqlite_where=sa.text('is_active'), postgresql_where=sa.text('is_active'))

    op.create_table(
        'vote',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.String(length=40), sa.ForeignKey('voting_session.id'), nullable=False),
        sa.Column('story_id', sa.String(length=40), sa.ForeignKey('story.id'), nullable=False),
        sa.Column('room_code', sa.String(length=6), sa.ForeignKey('room.code'), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=64), nullable=False),
        sa.Column('value', sa.String(length=16), nullable=False),
        sa.Column('confidence', sa.Integer(), nullable=False),
        sa.Column('round_number', sa.Integer(), nullable=False),
        sa.Column('submitted_at', sa.Float(), nullable=False),
        sa.Column('is_revealed_vote', sa.Boolean(), nullable=False),
        sa.UniqueConstraint('session_id', 'user_id', 'round_number', name='uq_vote_session_user_round'),
    )
    op.create_index('ix_vote_session_id', 'vote', ['session_id'])


def downgrade():
    op.drop_index('ix_vote_session_id', table_name='vote')
    op.drop_table('vote')
    op.drop_index('uq_active_session_per_story', table_name='voting_session')
    op.drop_index('ix_voting_session_room_code', table_name='voting_session')
    op.drop_index('ix_voting_session_story_id', table_name='voting_session')
    op.drop_table('voting_session')
    op.drop_index('ix_story_room_code', table_name='story')
    op.drop_table('story')
    op.drop_index('ix_participant_room_code', table_name='participant')
    op.drop_table('participant')
    op.drop_index('ix_room_expires_at', table_name='room')
    op.drop_table('room')
