"""Turn lifecycle transitions.

Every transition is a single conditional UPDATE (``WHERE id = ? AND status =
expected``). When a concurrent claim, submission or timer has already moved
the turn, the update touches no row and the caller gets INVALID_TRANSITION;
the turn is left as the winner wrote it.
"""
import logging
from datetime import datetime
from typing import Optional

from relay import db
from relay.models import Game, Turn, TurnDismissal, TurnStatus, TurnType
from .results import ErrorKind, Result
from .selection import HELD_STATUSES

logger = logging.getLogger(__name__)

TRANSITIONS = {
    TurnStatus.AVAILABLE: {TurnStatus.OFFERED},
    TurnStatus.OFFERED: {TurnStatus.PENDING, TurnStatus.AVAILABLE},
    TurnStatus.PENDING: {TurnStatus.COMPLETED, TurnStatus.SKIPPED},
    TurnStatus.COMPLETED: set(),
    TurnStatus.SKIPPED: set(),
}


def can_transition(current, target) -> bool:
    try:
        return TurnStatus(target) in TRANSITIONS[TurnStatus(current)]
    except ValueError:
        return False


def validate_content(turn_type, text_content: Optional[str], image_url: Optional[str]) -> Optional[str]:
    """Return a problem description, or None when the content fits the turn type."""
    text = (text_content or '').strip()
    image = (image_url or '').strip()
    if text and image:
        return 'Submit either text or an image, not both'
    if TurnType(turn_type) == TurnType.WRITING:
        if not text:
            return 'Writing turns need non-empty text content'
    elif not image:
        return 'Drawing turns need an image reference'
    return None


def _player_holds_turn_in_game(game_id: int, player_id: int) -> bool:
    return db.session.query(Turn.id).filter(
        Turn.game_id == game_id,
        Turn.player_id == player_id,
        Turn.status.in_(HELD_STATUSES),
    ).first() is not None


def _player_has_pending_in_season(season_id: int, player_id: int, exclude_turn_id=None) -> bool:
    query = db.session.query(Turn.id).join(Game, Game.id == Turn.game_id).filter(
        Game.season_id == season_id,
        Turn.player_id == player_id,
        Turn.status == TurnStatus.PENDING.value,
    )
    if exclude_turn_id is not None:
        query = query.filter(Turn.id != exclude_turn_id)
    return query.first() is not None


def _apply(turn: Turn, target: TurnStatus, values: dict) -> Result:
    current = turn.status
    if not can_transition(current, target):
        return Result.failure(
            ErrorKind.INVALID_TRANSITION,
            f'Invalid transition {current} -> {target.value} for turn {turn.id}',
            turn=turn,
        )
    values = dict(values, status=target.value)
    updated = Turn.query.filter_by(id=turn.id, status=current).update(values, synchronize_session=False)
    if updated != 1:
        db.session.rollback()
        db.session.refresh(turn)
        logger.info(f"[transition-lost] turn={turn.id} expected={current} actual={turn.status} target={target.value}")
        return Result.failure(
            ErrorKind.INVALID_TRANSITION,
            f'Invalid transition {current} -> {target.value} for turn {turn.id}: turn is now {turn.status}',
            turn=turn,
        )
    db.session.commit()
    logger.info(f"[transition] turn={turn.id} {current} -> {target.value}")
    return Result.success(turn=turn, player_id=turn.player_id)


def offer(turn: Turn, player_id: int, deadline_at: datetime, now: datetime) -> Result:
    season_id = turn.game.season_id
    if _player_holds_turn_in_game(turn.game_id, player_id):
        return Result.failure(ErrorKind.INVALID_TRANSITION,
                              f'Player {player_id} already holds a turn in game {turn.game_id}', turn=turn)
    if _player_has_pending_in_season(season_id, player_id):
        return Result.failure(ErrorKind.INVALID_TRANSITION,
                              f'Player {player_id} already has a pending turn in season {season_id}', turn=turn)
    return _apply(turn, TurnStatus.OFFERED, {
        'player_id': player_id,
        'offered_at': now,
        'deadline_at': deadline_at,
    })


def claim(turn: Turn, deadline_at: datetime, now: datetime) -> Result:
    if turn.player_id is not None and _player_has_pending_in_season(
            turn.game.season_id, turn.player_id, exclude_turn_id=turn.id):
        return Result.failure(ErrorKind.INVALID_TRANSITION,
                              f'Player {turn.player_id} already has a pending turn in this season', turn=turn)
    return _apply(turn, TurnStatus.PENDING, {'claimed_at': now, 'deadline_at': deadline_at})


def dismiss(turn: Turn, reason: str, now: datetime) -> Result:
    """Put an offered turn back up for grabs, remembering who let it go."""
    previous_player = turn.player_id
    if can_transition(turn.status, TurnStatus.AVAILABLE) and previous_player is not None:
        db.session.add(TurnDismissal(turn_id=turn.id, player_id=previous_player, reason=reason, dismissed_at=now))
    result = _apply(turn, TurnStatus.AVAILABLE, {
        'player_id': None,
        'offered_at': None,
        'deadline_at': None,
    })
    if result.ok:
        result.player_id = previous_player
    return result


def complete(turn: Turn, text_content: Optional[str], image_url: Optional[str], now: datetime) -> Result:
    problem = validate_content(turn.type, text_content, image_url)
    if problem:
        return Result.failure(ErrorKind.INVALID_CONTENT, problem, turn=turn)
    if TurnType(turn.type) == TurnType.WRITING:
        content = {'text_content': text_content.strip(), 'image_url': None}
    else:
        content = {'text_content': None, 'image_url': image_url.strip()}
    return _apply(turn, TurnStatus.COMPLETED, dict(content, completed_at=now, deadline_at=None))


def skip(turn: Turn, now: datetime) -> Result:
    return _apply(turn, TurnStatus.SKIPPED, {'skipped_at': now, 'deadline_at': None})
