"""create players, seasons, games, turns and scheduled jobs

Revision ID: 4c2a9e7d1b30
Revises:
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c2a9e7d1b30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'player',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('external_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('banned_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_player_external_id', 'player', ['external_id'], unique=True)

    op.create_table(
        'season_config',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('turn_pattern', sa.String(length=256), nullable=False),
        sa.Column('claim_timeout', sa.String(length=32), nullable=True),
        sa.Column('writing_timeout', sa.String(length=32), nullable=True),
        sa.Column('drawing_timeout', sa.String(length=32), nullable=True),
        sa.Column('open_duration', sa.String(length=32), nullable=True),
        sa.Column('min_players', sa.Integer(), nullable=False),
        sa.Column('max_players', sa.Integer(), nullable=True),
    )

    op.create_table(
        'season',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False, unique=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('config_id', sa.Integer(), sa.ForeignKey('season_config.id'), nullable=False, unique=True),
        sa.Column('creator_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_season_status', 'season', ['status'])

    op.create_table(
        'players_on_seasons',
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('player.id'), primary_key=True),
        sa.Column('season_id', sa.Integer(), sa.ForeignKey('season.id'), primary_key=True),
        sa.Column('joined_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'game',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('season_id', sa.Integer(), sa.ForeignKey('season.id'), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_game_season_id', 'game', ['season_id'])
    op.create_index('ix_game_status', 'game', ['status'])

    op.create_table(
        'turn',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('game_id', sa.Integer(), sa.ForeignKey('game.id'), nullable=False),
        sa.Column('turn_number', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=True),
        sa.Column('text_content', sa.Text(), nullable=True),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('previous_turn_id', sa.Integer(), sa.ForeignKey('turn.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('offered_at', sa.DateTime(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('skipped_at', sa.DateTime(), nullable=True),
        sa.Column('deadline_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('game_id', 'turn_number', name='uq_turn_game_number'),
    )
    op.create_index('ix_turn_game_id', 'turn', ['game_id'])
    op.create_index('ix_turn_status', 'turn', ['status'])
    op.create_index('ix_turn_player_id', 'turn', ['player_id'])

    op.create_table(
        'turn_dismissal',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('turn_id', sa.Integer(), sa.ForeignKey('turn.id'), nullable=False),
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('dismissed_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_turn_dismissal_turn_id', 'turn_dismissal', ['turn_id'])

    op.create_table(
        'scheduled_job',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('job_id', sa.String(length=128), nullable=False),
        sa.Column('job_type', sa.String(length=64), nullable=False),
        sa.Column('fire_at', sa.DateTime(), nullable=False),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('executed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_scheduled_job_job_id', 'scheduled_job', ['job_id'], unique=True)
    op.create_index('ix_scheduled_job_job_type', 'scheduled_job', ['job_type'])
    op.create_index('ix_scheduled_job_fire_at', 'scheduled_job', ['fire_at'])
    op.create_index('ix_scheduled_job_status', 'scheduled_job', ['status'])


def downgrade():
    op.drop_table('scheduled_job')
    op.drop_table('turn_dismissal')
    op.drop_table('turn')
    op.drop_table('game')
    op.drop_table('players_on_seasons')
    op.drop_table('season')
    op.drop_table('season_config')
    op.drop_table('player')
