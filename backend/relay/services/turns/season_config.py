"""Duration strings and per-season timeout resolution."""
import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from relay.models import TurnType

logger = logging.getLogger(__name__)

DEFAULT_CLAIM_TIMEOUT_MINUTES = 1440
DEFAULT_WRITING_TIMEOUT_MINUTES = 1440
DEFAULT_DRAWING_TIMEOUT_MINUTES = 4320

_DURATION_RE = re.compile(r'^(?:(\d+)d)?(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$')


def parse_duration(value) -> Optional[timedelta]:
    """Parse ``"1d2h30m10s"``-style strings (a bare number means minutes).

    Returns None for anything that is not a positive duration.
    """
    if value is None:
        return None
    text = str(value).strip().lower().replace(' ', '')
    if not text:
        return None
    if text.isdigit():
        duration = timedelta(minutes=int(text))
    else:
        match = _DURATION_RE.match(text)
        if not match or not any(match.groups()):
            return None
        days, hours, minutes, seconds = (int(g) if g else 0 for g in match.groups())
        duration = timedelta(days=days, hours=hours, minutes=minutes, seconds=seconds)
    return duration if duration > timedelta(0) else None


def resolve_duration(value, default_minutes: int, field_name: str = 'duration') -> timedelta:
    duration = parse_duration(value)
    if duration is None:
        logger.warning(
            f"[config-invalid] field={field_name} value={value!r} using default={default_minutes}m"
        )
        return timedelta(minutes=default_minutes)
    return duration


@dataclass(frozen=True)
class SeasonTimeouts:
    claim: timedelta
    writing: timedelta
    drawing: timedelta

    def submission_for(self, turn_type) -> timedelta:
        return self.writing if TurnType(turn_type) == TurnType.WRITING else self.drawing

    def to_dict(self):
        return {
            'claim_minutes': self.claim.total_seconds() / 60,
            'writing_minutes': self.writing.total_seconds() / 60,
            'drawing_minutes': self.drawing.total_seconds() / 60,
        }


def resolve_claim_timeout(config) -> timedelta:
    if config is None:
        return timedelta(minutes=DEFAULT_CLAIM_TIMEOUT_MINUTES)
    return resolve_duration(config.claim_timeout, DEFAULT_CLAIM_TIMEOUT_MINUTES, 'claim_timeout')


def resolve_submission_timeout(config, turn_type) -> timedelta:
    """Submission window for one turn type; only that type's field is read."""
    if TurnType(turn_type) == TurnType.WRITING:
        field_name, default = 'writing_timeout', DEFAULT_WRITING_TIMEOUT_MINUTES
    else:
        field_name, default = 'drawing_timeout', DEFAULT_DRAWING_TIMEOUT_MINUTES
    if config is None:
        return timedelta(minutes=default)
    return resolve_duration(getattr(config, field_name), default, field_name)


def resolve_timeouts(config) -> SeasonTimeouts:
    """Timeouts for a SeasonConfig row (or None), with fixed fallbacks."""
    if config is None:
        return SeasonTimeouts(
            claim=timedelta(minutes=DEFAULT_CLAIM_TIMEOUT_MINUTES),
            writing=timedelta(minutes=DEFAULT_WRITING_TIMEOUT_MINUTES),
            drawing=timedelta(minutes=DEFAULT_DRAWING_TIMEOUT_MINUTES),
        )
    return SeasonTimeouts(
        claim=resolve_duration(config.claim_timeout, DEFAULT_CLAIM_TIMEOUT_MINUTES, 'claim_timeout'),
        writing=resolve_duration(config.writing_timeout, DEFAULT_WRITING_TIMEOUT_MINUTES, 'writing_timeout'),
        drawing=resolve_duration(config.drawing_timeout, DEFAULT_DRAWING_TIMEOUT_MINUTES, 'drawing_timeout'),
    )


def parse_turn_pattern(value: str):
    """Validate a comma-separated ``writing,drawing`` pattern into TurnTypes."""
    parts = [p.strip().upper() for p in (value or '').split(',') if p.strip()]
    if not parts:
        raise ValueError('turn pattern is empty')
    try:
        return [TurnType(p) for p in parts]
    except ValueError:
        raise ValueError(f'turn pattern {value!r} may only contain writing/drawing')
