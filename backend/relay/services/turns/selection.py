"""Next-player selection.

Pure functions over a snapshot of season state: no database access, no
clock, no logging. Given the same snapshot the selector always returns the
same player, which is what makes offers safe to retry.

Rules, in priority order:

1. MUST: no player holds two turns in the same game.
2. MUST: no player holds two PENDING turns across the season.
3. SHOULD: prefer players not already passed over for this very turn.
4. SHOULD: prefer players most "due" for the requested type
   (requested-type count minus other-type count, lowest wins).
5. SHOULD: prefer players who have not already followed the previous player
   of this game with a turn of the same type elsewhere in the season.
6. SHOULD: prefer the fewest turns of the requested type.
7. SHOULD: prefer the fewest outstanding (offered or pending) turns.
8. Tie-break on the smallest player id.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple, TypeVar

from relay.models import TurnStatus, TurnType

T = TypeVar('T')

# Statuses in which a turn counts as "held" by its player
HELD_STATUSES = frozenset({
    TurnStatus.OFFERED.value,
    TurnStatus.PENDING.value,
    TurnStatus.COMPLETED.value,
    TurnStatus.SKIPPED.value,
})
RESOLVED_STATUSES = frozenset({TurnStatus.COMPLETED.value, TurnStatus.SKIPPED.value})
OUTSTANDING_STATUSES = frozenset({TurnStatus.OFFERED.value, TurnStatus.PENDING.value})


@dataclass(frozen=True)
class PlayerSnapshot:
    id: int
    banned: bool = False


@dataclass(frozen=True)
class TurnSnapshot:
    game_id: int
    turn_number: int
    type: str
    status: str
    player_id: Optional[int] = None


@dataclass(frozen=True)
class SelectionInput:
    game_id: int
    turn_type: str
    roster: Sequence[PlayerSnapshot]
    # Every turn of every game in the season, the target game included
    season_turns: Sequence[TurnSnapshot]
    # Players whose offer of this turn lapsed or was declined
    dismissed_player_ids: FrozenSet[int] = frozenset()


@dataclass
class PlayerStats:
    player_id: int
    writing: int = 0
    drawing: int = 0
    pending: int = 0
    outstanding: int = 0
    played_in_game: bool = False

    def count(self, turn_type: str) -> int:
        return self.writing if turn_type == TurnType.WRITING.value else self.drawing


@dataclass
class Selection:
    ok: bool
    player_id: Optional[int] = None
    reason: str = ''
    trace: List[Tuple[str, List[int]]] = field(default_factory=list)


def apply_soft_filter(candidates: Sequence[T], keep: Callable[[T], bool]) -> List[T]:
    """Narrow ``candidates`` to those passing ``keep``, unless none would pass."""
    narrowed = [c for c in candidates if keep(c)]
    return narrowed if narrowed else list(candidates)


def prefer_lowest(candidates: Sequence[T], key: Callable[[T], int]) -> List[T]:
    if not candidates:
        return list(candidates)
    best = min(key(c) for c in candidates)
    return apply_soft_filter(candidates, lambda c: key(c) == best)


def other_type(turn_type: str) -> str:
    if turn_type == TurnType.WRITING.value:
        return TurnType.DRAWING.value
    return TurnType.WRITING.value


def calculate_player_stats(roster: Sequence[PlayerSnapshot], season_turns: Sequence[TurnSnapshot],
                           game_id: int) -> Dict[int, PlayerStats]:
    stats = {p.id: PlayerStats(player_id=p.id) for p in roster}
    for turn in season_turns:
        entry = stats.get(turn.player_id) if turn.player_id is not None else None
        if entry is None or turn.status not in HELD_STATUSES:
            continue
        if turn.game_id == game_id:
            entry.played_in_game = True
        if turn.type == TurnType.WRITING.value:
            entry.writing += 1
        elif turn.type == TurnType.DRAWING.value:
            entry.drawing += 1
        if turn.status == TurnStatus.PENDING.value:
            entry.pending += 1
        if turn.status in OUTSTANDING_STATUSES:
            entry.outstanding += 1
    return stats


def apply_must_rules(stats: Sequence[PlayerStats]) -> List[PlayerStats]:
    return [s for s in stats if not s.played_in_game and s.pending == 0]


def previous_player(season_turns: Sequence[TurnSnapshot], game_id: int) -> Optional[int]:
    """Player of the most recent completed or skipped turn in the game."""
    resolved = [t for t in season_turns if t.game_id == game_id and t.status in RESOLVED_STATUSES]
    if not resolved:
        return None
    return max(resolved, key=lambda t: t.turn_number).player_id


def count_follows(season_turns: Sequence[TurnSnapshot], follower_id: int, leader_id: int,
                  turn_type: str) -> int:
    """How often ``follower_id`` took a ``turn_type`` turn right after ``leader_id``."""
    by_game: Dict[int, List[TurnSnapshot]] = defaultdict(list)
    for turn in season_turns:
        if turn.status in RESOLVED_STATUSES:
            by_game[turn.game_id].append(turn)
    times = 0
    for turns in by_game.values():
        chain = sorted(turns, key=lambda t: t.turn_number)
        for earlier, later in zip(chain, chain[1:]):
            if (later.player_id == follower_id and later.type == turn_type
                    and earlier.player_id == leader_id):
                times += 1
    return times


def select_next_player(data: SelectionInput) -> Selection:
    roster = [p for p in data.roster if not p.banned]
    if not roster:
        return Selection(ok=False, reason='No players in season')

    stats = calculate_player_stats(roster, data.season_turns, data.game_id)
    trace: List[Tuple[str, List[int]]] = []

    def note(rule, remaining):
        trace.append((rule, sorted(s.player_id for s in remaining)))
        return remaining

    candidates = note('must', apply_must_rules(list(stats.values())))
    if not candidates:
        return Selection(ok=False, reason='No eligible players found after applying MUST rules',
                         trace=trace)

    turn_type = data.turn_type
    opposite = other_type(turn_type)

    candidates = note('not-dismissed', apply_soft_filter(
        candidates, lambda s: s.player_id not in data.dismissed_player_ids))

    candidates = note('type-balance', prefer_lowest(
        candidates, lambda s: s.count(turn_type) - s.count(opposite)))

    leader = previous_player(data.season_turns, data.game_id)
    if leader is not None:
        candidates = note('no-repeat-follow', apply_soft_filter(
            candidates,
            lambda s: count_follows(data.season_turns, s.player_id, leader, turn_type) == 0))

    candidates = note('fewest-of-type', prefer_lowest(candidates, lambda s: s.count(turn_type)))
    candidates = note('fewest-outstanding', prefer_lowest(candidates, lambda s: s.outstanding))

    chosen = min(candidates, key=lambda s: s.player_id)
    return Selection(ok=True, player_id=chosen.player_id, trace=trace)
