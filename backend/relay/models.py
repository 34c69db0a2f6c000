from datetime import datetime, timezone
from enum import Enum
import json

from relay import db


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class TurnType(str, Enum):
    WRITING = 'WRITING'
    DRAWING = 'DRAWING'


class TurnStatus(str, Enum):
    AVAILABLE = 'AVAILABLE'
    OFFERED = 'OFFERED'
    PENDING = 'PENDING'
    COMPLETED = 'COMPLETED'
    SKIPPED = 'SKIPPED'


class GameStatus(str, Enum):
    SETUP = 'SETUP'
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    PAUSED = 'PAUSED'


class SeasonStatus(str, Enum):
    SETUP = 'SETUP'
    OPEN = 'OPEN'
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    TERMINATED = 'TERMINATED'


class JobStatus(str, Enum):
    SCHEDULED = 'SCHEDULED'
    FIRED = 'FIRED'
    EXECUTED = 'EXECUTED'
    CANCELLED = 'CANCELLED'
    FAILED = 'FAILED'


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    banned_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    memberships = db.relationship('PlayersOnSeasons', back_populates='player')

    @property
    def is_banned(self) -> bool:
        return self.banned_at is not None

    def to_dict(self):
        return {
            'id': self.id,
            'external_id': self.external_id,
            'name': self.name,
            'banned': self.is_banned,
        }


class SeasonConfig(db.Model):
    __tablename__ = 'season_config'
    id = db.Column(db.Integer, primary_key=True)
    turn_pattern = db.Column(db.String(256), nullable=False, default='writing,drawing')
    claim_timeout = db.Column(db.String(32), nullable=True, default='1d')
    writing_timeout = db.Column(db.String(32), nullable=True, default='1d')
    drawing_timeout = db.Column(db.String(32), nullable=True, default='3d')
    open_duration = db.Column(db.String(32), nullable=True, default='7d')
    min_players = db.Column(db.Integer, nullable=False, default=2)
    max_players = db.Column(db.Integer, nullable=True, default=20)

    @property
    def pattern(self):
        return [TurnType(part.strip().upper()) for part in self.turn_pattern.split(',') if part.strip()]

    def to_dict(self):
        return {
            'turn_pattern': self.turn_pattern,
            'claim_timeout': self.claim_timeout,
            'writing_timeout': self.writing_timeout,
            'drawing_timeout': self.drawing_timeout,
            'open_duration': self.open_duration,
            'min_players': self.min_players,
            'max_players': self.max_players,
        }


class Season(db.Model):
    __tablename__ = 'season'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), unique=True, nullable=False)
    status = db.Column(db.String(32), nullable=False, default=SeasonStatus.SETUP.value, index=True)
    config_id = db.Column(db.Integer, db.ForeignKey('season_config.id'), nullable=False, unique=True)
    creator_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    activated_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    config = db.relationship('SeasonConfig')
    creator = db.relationship('Player')
    members = db.relationship('PlayersOnSeasons', back_populates='season',
                              order_by='PlayersOnSeasons.joined_at')
    games = db.relationship('Game', back_populates='season', order_by='Game.id')

    @property
    def players(self):
        return [m.player for m in self.members]

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'status': self.status,
            'config': self.config.to_dict() if self.config else None,
            'players': [p.to_dict() for p in self.players],
            'games': [g.id for g in self.games],
        }


class PlayersOnSeasons(db.Model):
    __tablename__ = 'players_on_seasons'
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), primary_key=True)
    season_id = db.Column(db.Integer, db.ForeignKey('season.id'), primary_key=True)
    joined_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    player = db.relationship('Player', back_populates='memberships')
    season = db.relationship('Season', back_populates='members')


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    season_id = db.Column(db.Integer, db.ForeignKey('season.id'), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False, default=GameStatus.SETUP.value, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    season = db.relationship('Season', back_populates='games')
    turns = db.relationship('Turn', back_populates='game', order_by='Turn.turn_number',
                            foreign_keys='Turn.game_id')

    def to_dict(self):
        return {
            'id': self.id,
            'season_id': self.season_id,
            'status': self.status,
            'turns': [t.to_dict() for t in self.turns],
        }


class Turn(db.Model):
    __tablename__ = 'turn'
    __table_args__ = (db.UniqueConstraint('game_id', 'turn_number', name='uq_turn_game_number'),)
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    turn_number = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=TurnStatus.AVAILABLE.value, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=True, index=True)
    text_content = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.Text, nullable=True)
    previous_turn_id = db.Column(db.Integer, db.ForeignKey('turn.id'), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    offered_at = db.Column(db.DateTime, nullable=True)
    claimed_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    skipped_at = db.Column(db.DateTime, nullable=True)
    # Absolute claim or submission deadline currently armed for this turn
    deadline_at = db.Column(db.DateTime, nullable=True)

    game = db.relationship('Game', back_populates='turns', foreign_keys=[game_id])
    player = db.relationship('Player')
    previous_turn = db.relationship('Turn', remote_side=[id])

    def to_dict(self):
        return {
            'id': self.id,
            'game_id': self.game_id,
            'turn_number': self.turn_number,
            'type': self.type,
            'status': self.status,
            'player_id': self.player_id,
            'text_content': self.text_content,
            'image_url': self.image_url,
            'previous_turn_id': self.previous_turn_id,
            'offered_at': _iso(self.offered_at),
            'claimed_at': _iso(self.claimed_at),
            'completed_at': _iso(self.completed_at),
            'skipped_at': _iso(self.skipped_at),
            'deadline_at': _iso(self.deadline_at),
        }


class TurnDismissal(db.Model):
    """An offer that lapsed or was declined; the turn went back to AVAILABLE."""
    __tablename__ = 'turn_dismissal'
    id = db.Column(db.Integer, primary_key=True)
    turn_id = db.Column(db.Integer, db.ForeignKey('turn.id'), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    reason = db.Column(db.String(32), nullable=False)
    dismissed_at = db.Column(db.DateTime, nullable=False, default=utcnow)


class ScheduledJob(db.Model):
    __tablename__ = 'scheduled_job'
    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.String(128), unique=True, nullable=False, index=True)
    job_type = db.Column(db.String(64), nullable=False, index=True)
    fire_at = db.Column(db.DateTime, nullable=False, index=True)
    payload = db.Column(db.Text, nullable=True)  # JSON-encoded dict
    status = db.Column(db.String(16), nullable=False, default=JobStatus.SCHEDULED.value, index=True)
    failure_reason = db.Column(db.Text, nullable=True)
    executed_at = db.Column(db.DateTime, nullable=True)

    @property
    def data(self):
        return json.loads(self.payload) if self.payload else {}

    def to_dict(self):
        return {
            'job_id': self.job_id,
            'job_type': self.job_type,
            'fire_at': _iso(self.fire_at),
            'payload': self.data,
            'status': self.status,
        }
