import click
from flask import Flask
from flask_migrate import Migrate
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy

from relay.config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def create_app(config_class=Config, clock=None, notifier=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    socketio.init_app(flask_app)

    from relay.services.scheduler import TimeoutScheduler
    from relay.services.seasons import SeasonService
    from relay.services.turns import SocketIONotifier, TurnOffering

    scheduler = TimeoutScheduler(flask_app, clock=clock)
    offering = TurnOffering(scheduler, notifier=notifier or SocketIONotifier(), clock=scheduler.clock)
    seasons = SeasonService(offering, scheduler, clock=scheduler.clock)
    offering.register_handlers()
    seasons.register_handlers()
    flask_app.extensions['turn_offering'] = offering
    flask_app.extensions['season_service'] = seasons

    from relay.main import main
    flask_app.register_blueprint(main)

    from relay.api.players import players
    from relay.api.seasons import seasons as seasons_bp
    from relay.api.games import games
    from relay.api.turns import turns
    flask_app.register_blueprint(players, url_prefix='/api/players')
    flask_app.register_blueprint(seasons_bp, url_prefix='/api/seasons')
    flask_app.register_blueprint(games, url_prefix='/api/games')
    flask_app.register_blueprint(turns, url_prefix='/api/turns')

    from relay.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    def restore_timers():
        restored = offering.restore_timers()
        restored += seasons.restore_activation_jobs()
        overdue = scheduler.overdue_count()
        flask_app.logger.info(f"[timer-restore] rearmed={restored} overdue={overdue}")
        return restored

    @flask_app.cli.command('restore-timers')
    def restore_timers_command():
        """Re-arms claim, submission and activation timers from persisted state."""
        restored = restore_timers()
        click.echo(f'Restored {restored} timers')

    @flask_app.cli.command('run-due-timers')
    def run_due_timers_command():
        """Fires every timer that is due, once."""
        fired = scheduler.run_due()
        click.echo(f'Fired {len(fired)} timers')
        for job_id in fired:
            click.echo(f'  {job_id}')

    if flask_app.config.get('ENABLE_SCHEDULER') and not flask_app.config.get('TESTING'):
        with flask_app.app_context():
            try:
                restore_timers()
            except Exception:
                db.session.rollback()
                flask_app.logger.exception("[timer-restore] failed; loop will still pick up due jobs")
        scheduler.start(flask_app)

    return flask_app
