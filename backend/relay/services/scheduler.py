import json
import logging
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

from relay import db, socketio
from relay.models import JobStatus, ScheduledJob, utcnow

logger = logging.getLogger(__name__)

CLAIM_TIMEOUT = 'claim-timeout'
SUBMISSION_TIMEOUT = 'submission-timeout'
SEASON_ACTIVATION = 'season-activation'


def claim_job_id(turn_id: int) -> str:
    return f'{CLAIM_TIMEOUT}:{turn_id}'


def submission_job_id(turn_id: int) -> str:
    return f'{SUBMISSION_TIMEOUT}:{turn_id}'


def activation_job_id(season_id: int) -> str:
    return f'{SEASON_ACTIVATION}:{season_id}'


class TimeoutScheduler:
    """Named, persisted, one-shot timers.

    Jobs live in the ``scheduled_job`` table, so a restart loses nothing: any
    row still SCHEDULED whose fire time has passed fires on the next poll.
    Each job is claimed with a conditional SCHEDULED -> FIRED update before
    its handler runs, so a job fires at most once even with two pollers.
    """

    def __init__(self, app=None, clock: Optional[Callable[[], datetime]] = None):
        self.handlers: Dict[str, Callable[[dict], object]] = {}
        self.clock = clock or utcnow
        self._running = False
        if app is not None:
            self.init_app(app, clock=clock)

    def init_app(self, app, clock=None):
        if clock is not None:
            self.clock = clock
        app.extensions['timeout_scheduler'] = self

    def now(self) -> datetime:
        return self.clock()

    def register(self, job_type: str, handler: Callable[[dict], object]) -> None:
        self.handlers[job_type] = handler

    def schedule(self, job_id: str, job_type: str, fire_at: datetime, payload: Optional[dict] = None) -> ScheduledJob:
        """Arm ``job_id`` to fire at ``fire_at``, replacing any earlier arming."""
        job = ScheduledJob.query.filter_by(job_id=job_id).first()
        if job is None:
            job = ScheduledJob(job_id=job_id)
            db.session.add(job)
        job.job_type = job_type
        job.fire_at = fire_at
        job.payload = json.dumps(payload or {})
        job.status = JobStatus.SCHEDULED.value
        job.failure_reason = None
        job.executed_at = None
        db.session.commit()
        logger.info(f"[timer-set] job={job_id} fire_at={fire_at.isoformat()}")
        return job

    def cancel(self, job_id: str) -> bool:
        cancelled = ScheduledJob.query.filter_by(
            job_id=job_id, status=JobStatus.SCHEDULED.value,
        ).update({'status': JobStatus.CANCELLED.value}, synchronize_session=False)
        db.session.commit()
        if cancelled:
            logger.info(f"[timer-cancel] job={job_id}")
        return bool(cancelled)

    def is_scheduled(self, job_id: str) -> bool:
        return ScheduledJob.query.filter_by(job_id=job_id, status=JobStatus.SCHEDULED.value).first() is not None

    def get(self, job_id: str) -> Optional[ScheduledJob]:
        return ScheduledJob.query.filter_by(job_id=job_id).first()

    def run_due(self, now: Optional[datetime] = None) -> List[str]:
        """Fire every SCHEDULED job whose time has come; return the fired job ids."""
        now = now or self.now()
        due = (ScheduledJob.query
               .filter(ScheduledJob.status == JobStatus.SCHEDULED.value, ScheduledJob.fire_at <= now)
               .order_by(ScheduledJob.fire_at, ScheduledJob.id)
               .all())
        fired = []
        for job in due:
            job_id, job_type, payload = job.job_id, job.job_type, job.data
            claimed = ScheduledJob.query.filter_by(
                id=job.id, status=JobStatus.SCHEDULED.value,
            ).update({'status': JobStatus.FIRED.value}, synchronize_session=False)
            db.session.commit()
            if claimed != 1:
                logger.info(f"[timer-skip] job={job_id} already taken")
                continue

            logger.info(f"[timer-fire] job={job_id}")
            status, reason = JobStatus.EXECUTED, None
            handler = self.handlers.get(job_type)
            if handler is None:
                status, reason = JobStatus.FAILED, f'no handler registered for {job_type}'
                logger.error(f"[timer-error] job={job_id} {reason}")
            else:
                try:
                    outcome = handler(payload)
                    message = getattr(outcome, 'message', '')
                    if message:
                        logger.info(f"[timer-done] job={job_id} {message}")
                except Exception as exc:
                    db.session.rollback()
                    logger.exception(f"[timer-error] job={job_id} handler raised")
                    status, reason = JobStatus.FAILED, str(exc)

            # A handler may have re-armed its own job id; leave that arming alone.
            ScheduledJob.query.filter_by(job_id=job_id, status=JobStatus.FIRED.value).update({
                'status': status.value,
                'failure_reason': reason,
                'executed_at': self.now(),
            }, synchronize_session=False)
            db.session.commit()
            fired.append(job_id)
        return fired

    def overdue_count(self, now: Optional[datetime] = None) -> int:
        now = now or self.now()
        return ScheduledJob.query.filter(
            ScheduledJob.status == JobStatus.SCHEDULED.value, ScheduledJob.fire_at <= now,
        ).count()

    def start(self, app) -> bool:
        """Start the polling loop as a Socket.IO background task.

        No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set, and
        when ENABLE_SCHEDULER is off.
        """
        if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
            return False
        if not app.config.get('ENABLE_SCHEDULER', True) or self._running:
            return False
        self._running = True
        socketio.start_background_task(self._loop, app)
        return True

    def stop(self) -> None:
        self._running = False

    def _loop(self, app):
        poll = float(app.config.get('TIMER_POLL_SEC', 5))
        try:
            hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
        except (TypeError, ValueError):
            hb = 0
        last_beat = time.monotonic()
        app.logger.info(f"[timer-loop] started poll={poll}s")
        while self._running:
            with app.app_context():
                try:
                    self.run_due()
                except Exception:
                    db.session.rollback()
                    app.logger.exception("[timer-loop] poll failed")
                if hb > 0 and time.monotonic() - last_beat >= hb:
                    last_beat = time.monotonic()
                    pending = ScheduledJob.query.filter_by(status=JobStatus.SCHEDULED.value).count()
                    app.logger.info(f"[timer-heartbeat] scheduled={pending}")
            socketio.sleep(poll)
        app.logger.info("[timer-loop] stopped")
