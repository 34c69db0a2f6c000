from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    NOT_FOUND = 'not_found'
    INVALID_TRANSITION = 'invalid_transition'
    NO_ELIGIBLE_PLAYERS = 'no_eligible_players'
    INVALID_CONTENT = 'invalid_content'
    CONFIG_INVALID = 'config_invalid'
    WRONG_PLAYER = 'wrong_player'
    INACTIVE = 'inactive'


@dataclass
class Result:
    """Outcome of an orchestration call.

    Callers (timers, HTTP handlers) branch on ``ok``/``error``; ``idle`` marks
    the normal nothing-to-do outcomes, which are successes.
    """
    ok: bool
    error: Optional[ErrorKind] = None
    message: str = ''
    turn: Any = None
    player_id: Optional[int] = None
    idle: bool = False
    season: Any = None

    @classmethod
    def success(cls, turn=None, player_id=None, message=''):
        return cls(ok=True, turn=turn, player_id=player_id, message=message)

    @classmethod
    def nothing_to_do(cls, message, turn=None):
        return cls(ok=True, idle=True, turn=turn, message=message)

    @classmethod
    def failure(cls, error: ErrorKind, message: str, turn=None):
        return cls(ok=False, error=error, message=message, turn=turn)

    def to_dict(self):
        return {
            'ok': self.ok,
            'error': self.error.value if self.error else None,
            'message': self.message,
            'idle': self.idle,
            'player_id': self.player_id,
            'turn': self.turn.to_dict() if self.turn is not None else None,
            'season': self.season.to_dict() if self.season is not None else None,
        }
