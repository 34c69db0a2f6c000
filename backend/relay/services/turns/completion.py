"""Game and season completion checks.

Both checks are pure functions of a snapshot, so they can run after every
terminal transition without coordination.
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from relay.models import GameStatus
from .selection import RESOLVED_STATUSES, TurnSnapshot


@dataclass
class GameCompletion:
    complete: bool
    waiting_on: List[int] = field(default_factory=list)


def check_game_completion(roster_ids: Iterable[int], turns: Sequence[TurnSnapshot]) -> GameCompletion:
    """A game is done once every roster player has a completed or skipped turn in it."""
    roster = sorted(set(roster_ids))
    if not roster:
        return GameCompletion(complete=False)
    resolved = {t.player_id for t in turns if t.status in RESOLVED_STATUSES and t.player_id is not None}
    waiting_on = [pid for pid in roster if pid not in resolved]
    return GameCompletion(complete=not waiting_on, waiting_on=waiting_on)


def check_season_completion(game_statuses: Iterable[str]) -> bool:
    statuses = list(game_statuses)
    return bool(statuses) and all(s == GameStatus.COMPLETED.value for s in statuses)
