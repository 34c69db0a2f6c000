import logging
from datetime import timedelta
from types import SimpleNamespace

import pytest

from relay.services.turns.season_config import (
    DEFAULT_CLAIM_TIMEOUT_MINUTES, DEFAULT_DRAWING_TIMEOUT_MINUTES, DEFAULT_WRITING_TIMEOUT_MINUTES,
    parse_duration, parse_turn_pattern, resolve_claim_timeout, resolve_submission_timeout, resolve_timeouts,
)


def config(**overrides):
    values = dict(claim_timeout='1d', writing_timeout='1d', drawing_timeout='3d')
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.mark.parametrize('text,expected', [
    ('1d', timedelta(days=1)),
    ('2h30m', timedelta(hours=2, minutes=30)),
    ('45m', timedelta(minutes=45)),
    ('90s', timedelta(seconds=90)),
    ('1d2h30m10s', timedelta(days=1, hours=2, minutes=30, seconds=10)),
    ('90', timedelta(minutes=90)),
    (' 3D ', timedelta(days=3)),
])
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize('text', [None, '', 'abc', '0', '0m', '-5m', '1x', 'm', '30m1h'])
def test_parse_duration_rejects(text):
    assert parse_duration(text) is None


def test_unparseable_claim_timeout_falls_back_with_one_warning(caplog):
    caplog.set_level(logging.WARNING)
    timeouts = resolve_timeouts(config(claim_timeout='abc'))
    assert timeouts.claim == timedelta(minutes=DEFAULT_CLAIM_TIMEOUT_MINUTES)
    assert timeouts.writing == timedelta(days=1)
    assert timeouts.drawing == timedelta(days=3)
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert 'claim_timeout' in warnings[0].getMessage()


def test_zero_negative_and_missing_values_fall_back():
    timeouts = resolve_timeouts(config(claim_timeout='0', writing_timeout='-1', drawing_timeout=None))
    assert timeouts.claim == timedelta(minutes=DEFAULT_CLAIM_TIMEOUT_MINUTES)
    assert timeouts.writing == timedelta(minutes=DEFAULT_WRITING_TIMEOUT_MINUTES)
    assert timeouts.drawing == timedelta(minutes=DEFAULT_DRAWING_TIMEOUT_MINUTES)


def test_missing_config_uses_defaults(caplog):
    caplog.set_level(logging.WARNING)
    timeouts = resolve_timeouts(None)
    assert timeouts.to_dict() == {'claim_minutes': 1440, 'writing_minutes': 1440, 'drawing_minutes': 4320}
    assert not caplog.records


def test_submission_timeout_follows_turn_type():
    timeouts = resolve_timeouts(config(writing_timeout='2h', drawing_timeout='6h'))
    assert timeouts.submission_for('WRITING') == timedelta(hours=2)
    assert timeouts.submission_for('DRAWING') == timedelta(hours=6)


def test_single_field_resolution_reads_only_that_field(caplog):
    caplog.set_level(logging.WARNING)
    broken = config(claim_timeout='abc', writing_timeout='soon', drawing_timeout='12h')
    assert resolve_submission_timeout(broken, 'DRAWING') == timedelta(hours=12)
    assert not caplog.records

    assert resolve_claim_timeout(broken) == timedelta(minutes=DEFAULT_CLAIM_TIMEOUT_MINUTES)
    assert resolve_submission_timeout(broken, 'WRITING') == timedelta(minutes=DEFAULT_WRITING_TIMEOUT_MINUTES)
    fields = [r.getMessage().split()[1] for r in caplog.records]
    assert fields == ['field=claim_timeout', 'field=writing_timeout']
    assert resolve_claim_timeout(None) == timedelta(minutes=DEFAULT_CLAIM_TIMEOUT_MINUTES)


def test_turn_pattern():
    assert [t.value for t in parse_turn_pattern('writing, drawing,drawing')] == ['WRITING', 'DRAWING', 'DRAWING']
    with pytest.raises(ValueError):
        parse_turn_pattern('writing,painting')
    with pytest.raises(ValueError):
        parse_turn_pattern(' , ')
