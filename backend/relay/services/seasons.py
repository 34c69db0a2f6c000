"""Season lifecycle: SETUP -> OPEN -> ACTIVE -> COMPLETED, or TERMINATED."""
import logging
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError

from relay import db
from relay.models import (
    Game, GameStatus, Player, PlayersOnSeasons, Season, SeasonConfig, SeasonStatus, Turn, TurnStatus, utcnow,
)
from relay.services.scheduler import (
    SEASON_ACTIVATION, activation_job_id, claim_job_id, submission_job_id,
)
from relay.services.turns.results import ErrorKind, Result
from relay.services.turns.season_config import parse_duration, parse_turn_pattern

logger = logging.getLogger(__name__)

PRE_ACTIVATION_STATUSES = (SeasonStatus.SETUP.value, SeasonStatus.OPEN.value)
TERMINAL_STATUSES = (SeasonStatus.COMPLETED.value, SeasonStatus.TERMINATED.value)

CONFIG_FIELDS = ('turn_pattern', 'claim_timeout', 'writing_timeout', 'drawing_timeout',
                 'open_duration', 'min_players', 'max_players')


def _season_result(season, message=''):
    result = Result.success(message=message)
    result.season = season
    return result


class SeasonService:

    def __init__(self, offering, scheduler, clock=None):
        self.offering = offering
        self.scheduler = scheduler
        self.clock = clock or utcnow

    def register_handlers(self):
        self.scheduler.register(SEASON_ACTIVATION, self.handle_open_duration_timeout)

    def create_season(self, creator_id: int, name: str, **options) -> Result:
        if db.session.get(Player, creator_id) is None:
            return Result.failure(ErrorKind.NOT_FOUND, f'Player {creator_id} not found')
        unknown = set(options) - set(CONFIG_FIELDS)
        if unknown:
            return Result.failure(ErrorKind.INVALID_CONTENT, f"Unknown season options: {', '.join(sorted(unknown))}")
        if not name or not name.strip():
            return Result.failure(ErrorKind.INVALID_CONTENT, 'Season name is required')

        config = SeasonConfig(**{k: v for k, v in options.items() if v is not None})
        try:
            parse_turn_pattern(config.turn_pattern or 'writing,drawing')
        except ValueError as exc:
            return Result.failure(ErrorKind.INVALID_CONTENT, str(exc))
        min_players = config.min_players if config.min_players is not None else 2
        if min_players < 1:
            return Result.failure(ErrorKind.INVALID_CONTENT, 'min_players must be at least 1')
        if config.max_players is not None and config.max_players < min_players:
            return Result.failure(ErrorKind.INVALID_CONTENT,
                                  f'max_players ({config.max_players}) cannot be less than min_players ({min_players})')

        season = Season(name=name.strip(), status=SeasonStatus.SETUP.value, config=config,
                        creator_id=creator_id, created_at=self.clock())
        db.session.add(season)
        db.session.add(PlayersOnSeasons(player_id=creator_id, season=season, joined_at=self.clock()))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return Result.failure(ErrorKind.INVALID_CONTENT, f'Season name {name!r} is already taken')
        logger.info(f"[season-created] season={season.id} name={season.name} creator={creator_id}")
        return _season_result(season, f'Season {season.name} created')

    def open_season(self, season_id: int) -> Result:
        season = db.session.get(Season, season_id)
        if season is None:
            return Result.failure(ErrorKind.NOT_FOUND, f'Season {season_id} not found')
        if season.status == SeasonStatus.OPEN.value:
            return Result.nothing_to_do(f'Season {season_id} is already open')
        opened = Season.query.filter_by(id=season.id, status=SeasonStatus.SETUP.value).update(
            {'status': SeasonStatus.OPEN.value}, synchronize_session=False)
        db.session.commit()
        if not opened:
            return Result.failure(ErrorKind.INVALID_TRANSITION,
                                  f'Season {season_id} cannot open from {season.status}')
        self._arm_activation(season)
        logger.info(f"[season-opened] season={season.id}")
        return _season_result(season, f'Season {season.name} is open')

    def _arm_activation(self, season: Season) -> Optional[str]:
        duration = parse_duration(season.config.open_duration)
        if duration is None:
            logger.warning(f"[season-open] season={season.id} open_duration={season.config.open_duration!r} "
                           f"invalid, activation job not scheduled")
            return None
        start = season.created_at or self.clock()
        job_id = activation_job_id(season.id)
        self.scheduler.schedule(job_id, SEASON_ACTIVATION, start + duration, {'season_id': season.id})
        return job_id

    def join_season(self, season_id: int, player_id: int) -> Result:
        season = db.session.get(Season, season_id)
        if season is None:
            return Result.failure(ErrorKind.NOT_FOUND, f'Season {season_id} not found')
        if season.status not in PRE_ACTIVATION_STATUSES:
            return Result.failure(ErrorKind.INACTIVE, f'Season {season_id} is not accepting players ({season.status})')
        if db.session.get(PlayersOnSeasons, (player_id, season_id)) is not None:
            return Result.nothing_to_do(f'Player {player_id} already joined season {season_id}')
        max_players = season.config.max_players
        if max_players is not None and len(season.members) >= max_players:
            return Result.failure(ErrorKind.INACTIVE, f'Season {season_id} is full')

        db.session.add(PlayersOnSeasons(player_id=player_id, season_id=season.id, joined_at=self.clock()))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return Result.nothing_to_do(f'Player {player_id} already joined season {season_id}')
        logger.info(f"[season-joined] season={season.id} player={player_id} count={len(season.members)}")

        if max_players is not None and len(season.members) >= max_players:
            activated = self.activate_season(season.id, trigger='max_players')
            if not activated.ok:
                logger.error(f"[season-activate] season={season.id} failed after max players: {activated.message}")
        result = _season_result(season, f'Player {player_id} joined season {season.name}')
        result.player_id = player_id
        return result

    def activate_season(self, season_id: int, trigger: str = 'manual') -> Result:
        season = db.session.get(Season, season_id)
        if season is None:
            return Result.failure(ErrorKind.NOT_FOUND, f'Season {season_id} not found')
        if season.status not in PRE_ACTIVATION_STATUSES:
            return Result.failure(ErrorKind.INVALID_TRANSITION,
                                  f'Season {season_id} cannot activate from {season.status}')

        config = season.config
        members = [p for p in season.players if not p.is_banned]
        count = len(members)
        if trigger == 'max_players':
            ready = config.max_players is not None and len(season.members) >= config.max_players
        else:
            ready = count >= (config.min_players or 1)
        if not ready:
            logger.info(f"[season-activate] season={season.id} trigger={trigger} not ready "
                        f"players={count} min={config.min_players} max={config.max_players}")
            return Result.failure(ErrorKind.INACTIVE,
                                  f'Season {season_id} does not meet activation conditions for {trigger}')

        now = self.clock()
        activated = Season.query.filter(
            Season.id == season.id, Season.status.in_(PRE_ACTIVATION_STATUSES),
        ).update({'status': SeasonStatus.ACTIVE.value, 'activated_at': now}, synchronize_session=False)
        if not activated:
            db.session.rollback()
            return Result.failure(ErrorKind.INVALID_TRANSITION, f'Season {season_id} was activated concurrently')

        first_type = config.pattern[0].value
        games = []
        for _ in members:
            game = Game(season_id=season.id, status=GameStatus.ACTIVE.value, created_at=now)
            game.turns.append(Turn(turn_number=1, type=first_type, status=TurnStatus.AVAILABLE.value,
                                   created_at=now))
            db.session.add(game)
            games.append(game)
        db.session.commit()
        self.scheduler.cancel(activation_job_id(season.id))
        logger.info(f"[season-activated] season={season.id} trigger={trigger} games={len(games)}")

        for game in games:
            self.offering.offer_next_turn(game.id, 'season_activated')
        return _season_result(season, f'Season {season.name} activated with {len(games)} games')

    def handle_open_duration_timeout(self, payload: Dict) -> Result:
        season = db.session.get(Season, payload.get('season_id'))
        if season is None:
            return Result.nothing_to_do(f"Season {payload.get('season_id')} no longer exists")
        if season.status not in PRE_ACTIVATION_STATUSES:
            return Result.nothing_to_do(f'Season {season.id} already {season.status}')
        result = self.activate_season(season.id, trigger='open_duration')
        if not result.ok and result.error == ErrorKind.INACTIVE:
            return Result.nothing_to_do(result.message)
        return result

    def terminate_season(self, season_id: int) -> Result:
        season = db.session.get(Season, season_id)
        if season is None:
            return Result.failure(ErrorKind.NOT_FOUND, f'Season {season_id} not found')
        terminated = Season.query.filter(
            Season.id == season.id, Season.status.notin_(TERMINAL_STATUSES),
        ).update({'status': SeasonStatus.TERMINATED.value, 'completed_at': self.clock()},
                 synchronize_session=False)
        if not terminated:
            db.session.rollback()
            return Result.failure(ErrorKind.INVALID_TRANSITION,
                                  f'Season {season_id} is already {season.status}')
        Game.query.filter(
            Game.season_id == season.id, Game.status != GameStatus.COMPLETED.value,
        ).update({'status': GameStatus.PAUSED.value}, synchronize_session=False)
        db.session.commit()

        live = (Turn.query.join(Game, Game.id == Turn.game_id)
                .filter(Game.season_id == season.id,
                        Turn.status.in_((TurnStatus.OFFERED.value, TurnStatus.PENDING.value)))
                .all())
        for turn in live:
            self.scheduler.cancel(claim_job_id(turn.id))
            self.scheduler.cancel(submission_job_id(turn.id))
        self.scheduler.cancel(activation_job_id(season.id))
        logger.info(f"[season-terminated] season={season.id} timers_cancelled={len(live)}")
        return _season_result(season, f'Season {season.name} terminated')

    def restore_activation_jobs(self) -> int:
        restored = 0
        for season in Season.query.filter_by(status=SeasonStatus.OPEN.value).order_by(Season.id):
            if self.scheduler.is_scheduled(activation_job_id(season.id)):
                continue
            if self._arm_activation(season):
                restored += 1
        return restored
