"""Turn offering orchestration.

Stateful shell around the pure selector and completion checks: reads season
state, drives the turn state machine, arms timers and notifies players.
"""
import logging
from collections import Counter
from typing import Callable, Dict, List, Optional

from relay import db
from relay.models import (
    Game, GameStatus, Player, Season, SeasonStatus, Turn, TurnDismissal, TurnStatus, utcnow,
)
from relay.services.scheduler import (
    CLAIM_TIMEOUT, SUBMISSION_TIMEOUT, claim_job_id, submission_job_id,
)
from . import state_machine
from . import completion
from .completion import GameCompletion
from .results import ErrorKind, Result
from .season_config import resolve_claim_timeout, resolve_submission_timeout
from .selection import PlayerSnapshot, SelectionInput, TurnSnapshot, select_next_player

logger = logging.getLogger(__name__)

NON_TERMINAL_STATUSES = (TurnStatus.AVAILABLE.value, TurnStatus.OFFERED.value, TurnStatus.PENDING.value)


def _snapshot(turn: Turn) -> TurnSnapshot:
    return TurnSnapshot(game_id=turn.game_id, turn_number=turn.turn_number, type=turn.type,
                        status=turn.status, player_id=turn.player_id)


class TurnOffering:

    def __init__(self, scheduler, notifier=None, clock: Optional[Callable] = None):
        self.scheduler = scheduler
        self.notifier = notifier
        self.clock = clock or utcnow

    def register_handlers(self):
        self.scheduler.register(CLAIM_TIMEOUT, self.handle_claim_timeout)
        self.scheduler.register(SUBMISSION_TIMEOUT, self.handle_submission_timeout)

    # ---- snapshots ----

    @staticmethod
    def roster(season: Season) -> List[PlayerSnapshot]:
        return [PlayerSnapshot(id=p.id, banned=p.is_banned) for p in season.players]

    @staticmethod
    def season_turns(season_id: int) -> List[TurnSnapshot]:
        turns = (Turn.query.join(Game, Game.id == Turn.game_id)
                 .filter(Game.season_id == season_id)
                 .order_by(Turn.game_id, Turn.turn_number)
                 .all())
        return [_snapshot(t) for t in turns]

    def selection_input(self, turn: Turn) -> SelectionInput:
        season = turn.game.season
        dismissed = {row.player_id for row in TurnDismissal.query.filter_by(turn_id=turn.id)}
        return SelectionInput(
            game_id=turn.game_id,
            turn_type=turn.type,
            roster=self.roster(season),
            season_turns=self.season_turns(season.id),
            dismissed_player_ids=frozenset(dismissed),
        )

    # ---- offering ----

    def _check_active(self, game: Game) -> Optional[Result]:
        season = game.season
        if season is None or season.status != SeasonStatus.ACTIVE.value:
            status = season.status if season else None
            return Result.failure(ErrorKind.INACTIVE, f'Season of game {game.id} is not active ({status})')
        if game.status != GameStatus.ACTIVE.value:
            return Result.failure(ErrorKind.INACTIVE, f'Game {game.id} is not active ({game.status})')
        return None

    def offer_next_turn(self, game_id: int, trigger: str = 'manual') -> Result:
        game = db.session.get(Game, game_id)
        if game is None:
            return Result.failure(ErrorKind.NOT_FOUND, f'Game {game_id} not found')
        if game.status == GameStatus.COMPLETED.value:
            return Result.nothing_to_do(f'No available turns: game {game_id} is complete')
        inactive = self._check_active(game)
        if inactive:
            return inactive

        turn = (Turn.query.filter_by(game_id=game.id, status=TurnStatus.AVAILABLE.value)
                .order_by(Turn.turn_number).first())
        if turn is None:
            return Result.nothing_to_do(f'No available turns in game {game_id}')

        selection = select_next_player(self.selection_input(turn))
        if not selection.ok:
            # banned players leave the roster, so the game may already be done
            if self.check_game_completion(game.id).complete:
                return Result.nothing_to_do(f'No available turns: game {game_id} is complete')
            logger.info(f"[offer-blocked] game={game.id} turn={turn.id} trigger={trigger} reason={selection.reason}")
            return Result.failure(ErrorKind.NO_ELIGIBLE_PLAYERS, selection.reason, turn=turn)

        now = self.clock()
        deadline = now + resolve_claim_timeout(game.season.config)
        result = state_machine.offer(turn, selection.player_id, deadline, now)
        if not result.ok:
            return result

        job_id = claim_job_id(turn.id)
        self.scheduler.cancel(job_id)
        self.scheduler.schedule(job_id, CLAIM_TIMEOUT, deadline,
                                {'turn_id': turn.id, 'player_id': selection.player_id})
        logger.info(
            f"[turn-offered] game={game.id} turn={turn.id} number={turn.turn_number} "
            f"player={selection.player_id} trigger={trigger} deadline={deadline.isoformat()}"
        )
        self._notify(selection.player_id, self.offer_message(turn))
        return Result.success(turn=turn, player_id=selection.player_id,
                              message=f'Turn {turn.id} offered to player {selection.player_id}')

    def offer_message(self, turn: Turn) -> dict:
        message = {
            'type': 'turn_offered',
            'turn_id': turn.id,
            'turn_number': turn.turn_number,
            'turn_type': turn.type,
            'game_id': turn.game_id,
            'season_id': turn.game.season_id,
            'claim_deadline': turn.deadline_at.isoformat() if turn.deadline_at else None,
        }
        previous = turn.previous_turn
        if previous is not None:
            message['previous_turn'] = {
                'id': previous.id,
                'type': previous.type,
                'text_content': previous.text_content,
                'image_url': previous.image_url,
            }
        return message

    def _notify(self, player_id: int, message: dict) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(player_id, message)
        except Exception:
            logger.warning(f"[notify-failed] player={player_id} type={message.get('type')}", exc_info=True)

    # ---- player actions ----

    def claim_turn(self, turn_id: int, player_id: int) -> Result:
        turn = db.session.get(Turn, turn_id)
        if turn is None:
            return Result.failure(ErrorKind.NOT_FOUND, f'Turn {turn_id} not found')
        inactive = self._check_active(turn.game)
        if inactive:
            return inactive
        if turn.status == TurnStatus.OFFERED.value and turn.player_id != player_id:
            return Result.failure(ErrorKind.WRONG_PLAYER, f'Turn {turn_id} is not offered to player {player_id}',
                                  turn=turn)

        now = self.clock()
        deadline = now + resolve_submission_timeout(turn.game.season.config, turn.type)
        result = state_machine.claim(turn, deadline, now)
        if not result.ok:
            return result

        self.scheduler.cancel(claim_job_id(turn.id))
        self.scheduler.schedule(submission_job_id(turn.id), SUBMISSION_TIMEOUT, deadline,
                                {'turn_id': turn.id, 'player_id': player_id})
        logger.info(f"[turn-claimed] game={turn.game_id} turn={turn.id} player={player_id} deadline={deadline.isoformat()}")
        return Result.success(turn=turn, player_id=player_id, message=f'Turn {turn.id} claimed')

    def submit_turn(self, turn_id: int, player_id: int, text_content: Optional[str] = None,
                    image_url: Optional[str] = None) -> Result:
        turn = db.session.get(Turn, turn_id)
        if turn is None:
            return Result.failure(ErrorKind.NOT_FOUND, f'Turn {turn_id} not found')
        inactive = self._check_active(turn.game)
        if inactive:
            return inactive
        if turn.status == TurnStatus.PENDING.value and turn.player_id != player_id:
            return Result.failure(ErrorKind.WRONG_PLAYER, f'Turn {turn_id} belongs to another player', turn=turn)

        result = state_machine.complete(turn, text_content, image_url, self.clock())
        if not result.ok:
            return result

        self.scheduler.cancel(submission_job_id(turn.id))
        logger.info(f"[turn-completed] game={turn.game_id} turn={turn.id} player={player_id}")
        self.advance_game(turn.game_id, 'turn_completed')
        return Result.success(turn=turn, player_id=player_id, message=f'Turn {turn.id} completed')

    def dismiss_offer(self, turn_id: int, player_id: int, reason: str = 'declined') -> Result:
        turn = db.session.get(Turn, turn_id)
        if turn is None:
            return Result.failure(ErrorKind.NOT_FOUND, f'Turn {turn_id} not found')
        if turn.status == TurnStatus.OFFERED.value and turn.player_id != player_id:
            return Result.failure(ErrorKind.WRONG_PLAYER, f'Turn {turn_id} is not offered to player {player_id}',
                                  turn=turn)
        return self._release_offer(turn, reason)

    def skip_turn(self, turn_id: int) -> Result:
        """Administrative skip: a pending turn is skipped, an offered one dismissed."""
        turn = db.session.get(Turn, turn_id)
        if turn is None:
            return Result.failure(ErrorKind.NOT_FOUND, f'Turn {turn_id} not found')
        if turn.status == TurnStatus.OFFERED.value:
            return self._release_offer(turn, 'admin_skip')
        return self._skip(turn, 'admin_skip')

    # ---- timers ----

    def handle_claim_timeout(self, payload: Dict) -> Result:
        turn = db.session.get(Turn, payload.get('turn_id'))
        if turn is None:
            return Result.nothing_to_do(f"Turn {payload.get('turn_id')} no longer exists")
        expected_player = payload.get('player_id')
        if turn.status != TurnStatus.OFFERED.value or (
                expected_player is not None and turn.player_id != expected_player):
            return Result.nothing_to_do(f'Turn {turn.id} already moved on ({turn.status})', turn=turn)
        result = self._release_offer(turn, 'claim_timeout')
        if not result.ok and result.error == ErrorKind.INVALID_TRANSITION:
            return Result.nothing_to_do(result.message, turn=turn)
        return result

    def handle_submission_timeout(self, payload: Dict) -> Result:
        turn = db.session.get(Turn, payload.get('turn_id'))
        if turn is None:
            return Result.nothing_to_do(f"Turn {payload.get('turn_id')} no longer exists")
        expected_player = payload.get('player_id')
        if turn.status != TurnStatus.PENDING.value or (
                expected_player is not None and turn.player_id != expected_player):
            return Result.nothing_to_do(f'Turn {turn.id} already moved on ({turn.status})', turn=turn)
        result = self._skip(turn, 'submission_timeout')
        if not result.ok and result.error == ErrorKind.INVALID_TRANSITION:
            return Result.nothing_to_do(result.message, turn=turn)
        return result

    def _release_offer(self, turn: Turn, reason: str) -> Result:
        game_id = turn.game_id
        result = state_machine.dismiss(turn, reason, self.clock())
        if not result.ok:
            return result
        self.scheduler.cancel(claim_job_id(turn.id))
        logger.info(f"[turn-dismissed] game={game_id} turn={turn.id} player={result.player_id} reason={reason}")
        self.offer_next_turn(game_id, reason)
        self.retry_stalled_games(turn.game.season_id, exclude_game_id=game_id)
        return Result.success(turn=turn, player_id=result.player_id, message=f'Offer of turn {turn.id} released')

    def _skip(self, turn: Turn, reason: str) -> Result:
        player_id = turn.player_id
        result = state_machine.skip(turn, self.clock())
        if not result.ok:
            return result
        self.scheduler.cancel(submission_job_id(turn.id))
        logger.info(f"[turn-skipped] game={turn.game_id} turn={turn.id} player={player_id} reason={reason}")
        if player_id is not None:
            self._notify(player_id, {
                'type': 'turn_skipped',
                'turn_id': turn.id,
                'game_id': turn.game_id,
                'reason': reason,
            })
        self.advance_game(turn.game_id, 'turn_skipped')
        return Result.success(turn=turn, player_id=player_id, message=f'Turn {turn.id} skipped')

    # ---- chain progression ----

    def advance_game(self, game_id: int, trigger: str) -> Result:
        """Run after a turn resolves: finish the game or grow and offer its chain."""
        game = db.session.get(Game, game_id)
        if self.check_game_completion(game_id).complete:
            result = Result.nothing_to_do(f'Game {game_id} is complete')
        else:
            result = self._check_active(game)
            if result is None:
                self._create_next_turn(game)
                result = self.offer_next_turn(game_id, trigger)
        self.retry_stalled_games(game.season_id, exclude_game_id=game_id)
        return result

    def _create_next_turn(self, game: Game) -> Optional[Turn]:
        turns = list(game.turns)
        if any(t.status in NON_TERMINAL_STATUSES for t in turns):
            return None
        completed = [t for t in turns if t.status == TurnStatus.COMPLETED.value]
        pattern = game.season.config.pattern
        turn = Turn(
            game_id=game.id,
            turn_number=(turns[-1].turn_number + 1) if turns else 1,
            type=pattern[len(completed) % len(pattern)].value,
            status=TurnStatus.AVAILABLE.value,
            previous_turn_id=completed[-1].id if completed else None,
            created_at=self.clock(),
        )
        db.session.add(turn)
        db.session.commit()
        logger.info(f"[turn-created] game={game.id} turn={turn.id} number={turn.turn_number} type={turn.type}")
        return turn

    def retry_stalled_games(self, season_id: int, exclude_game_id: Optional[int] = None) -> List[Result]:
        """Re-offer AVAILABLE turns left unassigned by an earlier selection failure."""
        stalled = (Game.query.join(Turn, Turn.game_id == Game.id)
                   .filter(Game.season_id == season_id,
                           Game.status == GameStatus.ACTIVE.value,
                           Turn.status == TurnStatus.AVAILABLE.value)
                   .order_by(Game.id)
                   .distinct()
                   .all())
        results = []
        for game in stalled:
            if game.id == exclude_game_id:
                continue
            results.append(self.offer_next_turn(game.id, 'retry'))
        return results

    # ---- completion ----

    def check_game_completion(self, game_id: int) -> GameCompletion:
        game = db.session.get(Game, game_id)
        if game is None:
            return GameCompletion(complete=False)
        if game.status == GameStatus.COMPLETED.value:
            return GameCompletion(complete=True)
        roster_ids = [p.id for p in self.roster(game.season) if not p.banned]
        outcome = completion.check_game_completion(roster_ids, [_snapshot(t) for t in game.turns])
        if not outcome.complete:
            return outcome

        now = self.clock()
        marked = Game.query.filter(
            Game.id == game.id, Game.status != GameStatus.COMPLETED.value,
        ).update({'status': GameStatus.COMPLETED.value, 'completed_at': now}, synchronize_session=False)
        db.session.commit()
        if marked:
            logger.info(f"[game-completed] game={game.id} season={game.season_id}")
            for player_id in roster_ids:
                self._notify(player_id, {'type': 'game_completed', 'game_id': game.id,
                                         'season_id': game.season_id})
            self.check_season_completion(game.season_id)
        return outcome

    def check_season_completion(self, season_id: int) -> bool:
        season = db.session.get(Season, season_id)
        if season is None:
            return False
        if season.status == SeasonStatus.COMPLETED.value:
            return True
        if not completion.check_season_completion(g.status for g in season.games):
            return False
        marked = Season.query.filter_by(id=season.id, status=SeasonStatus.ACTIVE.value).update(
            {'status': SeasonStatus.COMPLETED.value, 'completed_at': self.clock()}, synchronize_session=False)
        db.session.commit()
        if marked:
            logger.info(f"[season-completed] season={season_id}")
        return bool(marked)

    def reconcile_player(self, player: Player) -> List[Result]:
        """Re-run offering in a player's active seasons after a ban or unban.

        A banned player's live offers are released so the turns move on (or
        their games complete when nobody else still has to play them).
        """
        results = []
        if player.is_banned:
            offered = (Turn.query.join(Game, Game.id == Turn.game_id)
                       .filter(Turn.player_id == player.id,
                               Turn.status == TurnStatus.OFFERED.value,
                               Game.status == GameStatus.ACTIVE.value)
                       .order_by(Turn.id)
                       .all())
            for turn in offered:
                results.append(self._release_offer(turn, 'player_banned'))
        season_ids = [m.season_id for m in player.memberships]
        for season in (Season.query.filter(Season.id.in_(season_ids),
                                           Season.status == SeasonStatus.ACTIVE.value)
                       .order_by(Season.id)):
            results.extend(self.retry_stalled_games(season.id))
        return results

    # ---- recovery and inspection ----

    def restore_timers(self) -> int:
        """Re-arm claim and submission timers for turns that lost their job row."""
        restored = 0
        live = (Turn.query.join(Game, Game.id == Turn.game_id)
                .filter(Game.status == GameStatus.ACTIVE.value,
                        Turn.status.in_((TurnStatus.OFFERED.value, TurnStatus.PENDING.value)))
                .order_by(Turn.id)
                .all())
        for turn in live:
            if turn.status == TurnStatus.OFFERED.value:
                job_id, job_type = claim_job_id(turn.id), CLAIM_TIMEOUT
                started = turn.offered_at
            else:
                job_id, job_type = submission_job_id(turn.id), SUBMISSION_TIMEOUT
                started = turn.claimed_at
            if self.scheduler.is_scheduled(job_id):
                continue
            fire_at = turn.deadline_at
            if fire_at is None:
                config = turn.game.season.config
                if turn.status == TurnStatus.OFFERED.value:
                    duration = resolve_claim_timeout(config)
                else:
                    duration = resolve_submission_timeout(config, turn.type)
                fire_at = (started or self.clock()) + duration
            self.scheduler.schedule(job_id, job_type, fire_at, {'turn_id': turn.id, 'player_id': turn.player_id})
            logger.info(f"[timer-restore] job={job_id} fire_at={fire_at.isoformat()}")
            restored += 1

        for season in Season.query.filter_by(status=SeasonStatus.ACTIVE.value).order_by(Season.id):
            self.retry_stalled_games(season.id)
        return restored

    def game_state(self, game_id: int) -> Optional[dict]:
        game = db.session.get(Game, game_id)
        if game is None:
            return None
        counts = Counter(t.status for t in game.turns)
        roster_ids = [p.id for p in self.roster(game.season) if not p.banned]
        outcome = completion.check_game_completion(roster_ids, [_snapshot(t) for t in game.turns])
        state = game.to_dict()
        state['counts'] = {status.value: counts.get(status.value, 0) for status in TurnStatus}
        state['completion'] = {
            'complete': game.status == GameStatus.COMPLETED.value,
            'waiting_on': outcome.waiting_on,
        }
        return state
