import logging
from datetime import timedelta

from relay import db
from relay.models import Game, JobStatus, Player, Season, ScheduledJob, Turn, TurnDismissal
from relay.services.players import ban_player
from relay.services.scheduler import claim_job_id, submission_job_id
from relay.services.turns.results import ErrorKind

from conftest import live_turn, season_games


def offered(game):
    turn = live_turn(game.id)
    assert turn is not None and turn.status == 'OFFERED'
    return turn


def play(offering, turn, content='a caption'):
    player_id = turn.player_id
    assert offering.claim_turn(turn.id, player_id).ok
    if turn.type == 'WRITING':
        result = offering.submit_turn(turn.id, player_id, text_content=content)
    else:
        result = offering.submit_turn(turn.id, player_id, image_url=f'https://img.example/{turn.id}.png')
    assert result.ok, result.message
    return player_id


def test_activation_offers_first_turns_to_distinct_players(start_season, notifier):
    season, ids = start_season(4)
    games = season_games(season.id)
    assert len(games) == 4
    first_turns = [offered(g) for g in games]
    assert all(t.turn_number == 1 and t.type == 'WRITING' for t in first_turns)
    assert sorted(t.player_id for t in first_turns) == sorted(ids)
    assert len(notifier.of_type('turn_offered')) == 4


def test_drawing_turns_go_to_someone_other_than_the_writer(start_season, offering):
    season, ids = start_season(4)
    games = season_games(season.id)
    writers = {}
    for game in games:
        writers[game.id] = play(offering, offered(game))

    drawers = {}
    for game in games:
        turn = offered(game)
        assert turn.turn_number == 2
        assert turn.type == 'DRAWING'
        assert turn.player_id != writers[game.id]
        assert turn.previous_turn.player_id == writers[game.id]
        drawers[game.id] = turn.player_id
    # nobody is handed two drawings while others have none
    assert sorted(drawers.values()) == sorted(ids)


def test_offer_notification_carries_previous_turn(start_season, offering, notifier):
    season, ids = start_season(2)
    game = season_games(season.id)[0]
    play(offering, offered(game), content='a cat on a bicycle')

    turn = offered(game)
    player_id, message = notifier.of_type('turn_offered')[-1]
    assert player_id == turn.player_id
    assert message['turn_id'] == turn.id
    assert message['turn_type'] == 'DRAWING'
    assert message['previous_turn']['text_content'] == 'a cat on a bicycle'
    first_offer = notifier.of_type('turn_offered')[0][1]
    assert 'previous_turn' not in first_offer


def test_submission_timeout_skips_and_reoffers(start_season, offering, scheduler, clock, notifier):
    season, ids = start_season(3, claim_timeout='3d', writing_timeout='1h')
    game = season_games(season.id)[0]
    turn = offered(game)
    writer = turn.player_id
    assert offering.claim_turn(turn.id, writer).ok

    clock.advance(hours=2)
    fired = scheduler.run_due()
    assert fired == [submission_job_id(turn.id)]

    db.session.refresh(turn)
    assert turn.status == 'SKIPPED'
    assert turn.skipped_at == clock()
    retry = offered(game)
    assert retry.turn_number == 2
    assert retry.type == 'WRITING'
    assert retry.player_id != writer
    assert retry.previous_turn_id is None
    assert notifier.of_type('turn_skipped')[0][0] == writer


def test_claim_timeout_moves_offer_to_another_player(start_season, offering, scheduler):
    season, ids = start_season(3)
    game = season_games(season.id)[0]
    turn = offered(game)
    first = turn.player_id

    result = offering.handle_claim_timeout({'turn_id': turn.id, 'player_id': first})
    assert result.ok and not result.idle
    db.session.refresh(turn)
    assert turn.status == 'OFFERED'
    assert turn.player_id != first
    assert TurnDismissal.query.filter_by(turn_id=turn.id, player_id=first).count() == 1
    assert scheduler.get(claim_job_id(turn.id)).status == JobStatus.SCHEDULED.value


def test_claim_timer_fires_through_scheduler(start_season, scheduler, clock):
    season, ids = start_season(2, claim_timeout='30m')
    game = season_games(season.id)[0]
    turn = offered(game)
    assert turn.deadline_at == clock() + timedelta(minutes=30)

    clock.advance(minutes=31)
    fired = scheduler.run_due()
    assert claim_job_id(turn.id) in fired
    assert TurnDismissal.query.filter_by(turn_id=turn.id).count() >= 1
    # the re-offer armed a fresh timer under the same job id
    assert scheduler.get(claim_job_id(turn.id)).status == JobStatus.SCHEDULED.value


def test_timeouts_after_the_fact_are_no_ops(start_season, offering):
    season, ids = start_season(2)
    game = season_games(season.id)[0]
    turn = offered(game)
    player_id = turn.player_id
    assert offering.claim_turn(turn.id, player_id).ok

    late_claim = offering.handle_claim_timeout({'turn_id': turn.id, 'player_id': player_id})
    assert late_claim.ok and late_claim.idle
    db.session.refresh(turn)
    assert turn.status == 'PENDING'

    assert offering.submit_turn(turn.id, player_id, text_content='done').ok
    late_submit = offering.handle_submission_timeout({'turn_id': turn.id, 'player_id': player_id})
    assert late_submit.ok and late_submit.idle
    db.session.refresh(turn)
    assert turn.status == 'COMPLETED'

    missing = offering.handle_submission_timeout({'turn_id': 9999})
    assert missing.ok and missing.idle


def test_only_the_assigned_player_may_claim_or_submit(start_season, offering):
    season, ids = start_season(2)
    turn = offered(season_games(season.id)[0])
    stranger = next(pid for pid in ids if pid != turn.player_id)

    assert offering.claim_turn(turn.id, stranger).error == ErrorKind.WRONG_PLAYER
    assert offering.claim_turn(turn.id, turn.player_id).ok
    assert offering.submit_turn(turn.id, stranger, text_content='mine').error == ErrorKind.WRONG_PLAYER
    assert offering.claim_turn(9999, stranger).error == ErrorKind.NOT_FOUND


def test_bad_content_keeps_turn_pending(start_season, offering, scheduler):
    season, ids = start_season(2)
    turn = offered(season_games(season.id)[0])
    assert offering.claim_turn(turn.id, turn.player_id).ok

    result = offering.submit_turn(turn.id, turn.player_id, image_url='https://img.example/1.png')
    assert result.error == ErrorKind.INVALID_CONTENT
    db.session.refresh(turn)
    assert turn.status == 'PENDING'
    assert scheduler.is_scheduled(submission_job_id(turn.id))


def test_dismissed_offer_goes_elsewhere(start_season, offering):
    season, ids = start_season(3)
    turn = offered(season_games(season.id)[0])
    first = turn.player_id
    assert offering.dismiss_offer(turn.id, first).ok
    db.session.refresh(turn)
    assert turn.status == 'OFFERED'
    assert turn.player_id != first


def test_blocked_turn_is_retried_when_pending_turn_resolves(start_season, offering):
    season, (a, b) = start_season(2)
    g1, g2 = season_games(season.id)
    t1, t2 = offered(g1), offered(g2)
    assert (t1.player_id, t2.player_id) == (a, b)

    assert offering.claim_turn(t2.id, b).ok
    play(offering, t1)
    # b is busy with a pending turn, so nobody can draw in game 1 yet
    blocked = live_turn(g1.id)
    assert blocked.status == 'AVAILABLE'
    assert blocked.player_id is None
    assert offering.offer_next_turn(g1.id).error == ErrorKind.NO_ELIGIBLE_PLAYERS

    assert offering.submit_turn(t2.id, b, text_content='a dog').ok
    retried = live_turn(g1.id)
    assert retried.id == blocked.id
    assert retried.status == 'OFFERED'
    assert retried.player_id == b
    assert offered(g2).player_id == a


def test_games_and_season_complete(start_season, offering, notifier):
    season, ids = start_season(2)
    games = season_games(season.id)
    for _ in range(2):
        for game in games:
            turn = live_turn(game.id)
            if turn is not None and turn.status == 'OFFERED':
                play(offering, turn)
    for game in games:
        db.session.refresh(game)
        assert game.status == 'COMPLETED'
        assert [t.turn_number for t in game.turns] == [1, 2]
        assert [t.status for t in game.turns] == ['COMPLETED', 'COMPLETED']
    season = db.session.get(Season, season.id)
    assert season.status == 'COMPLETED'
    assert len(notifier.of_type('game_completed')) == 4

    # completed games never grow again
    again = offering.offer_next_turn(games[0].id)
    assert again.ok and again.idle
    assert Turn.query.filter_by(game_id=games[0].id).count() == 2


def config_warnings(caplog):
    return [r.getMessage() for r in caplog.records
            if r.levelno == logging.WARNING and '[config-invalid]' in r.getMessage()]


def test_unparseable_claim_timeout_warns_once_per_offer(start_season, offering, clock, caplog):
    caplog.set_level(logging.WARNING)
    season, ids = start_season(2, claim_timeout='abc')
    turns = [offered(game) for game in season_games(season.id)]
    for turn in turns:
        assert turn.deadline_at == clock() + timedelta(minutes=1440)
    warnings = config_warnings(caplog)
    assert len(warnings) == len(turns)
    assert all('field=claim_timeout' in message for message in warnings)

    # claiming only needs the submission window
    caplog.clear()
    assert offering.claim_turn(turns[0].id, turns[0].player_id).ok
    assert config_warnings(caplog) == []


def test_notification_failure_does_not_undo_offer(start_season, notifier, caplog):
    notifier.fail = True
    caplog.set_level(logging.WARNING)
    season, ids = start_season(2)
    for game in season_games(season.id):
        assert offered(game).player_id in ids
    assert any('[notify-failed]' in r.getMessage() for r in caplog.records)


def test_restore_rearms_lost_timers(start_season, offering, scheduler, clock):
    season, ids = start_season(2)
    turn = offered(season_games(season.id)[0])
    deadline = turn.deadline_at
    ScheduledJob.query.delete()
    db.session.commit()

    assert offering.restore_timers() == 2
    job = scheduler.get(claim_job_id(turn.id))
    assert job.status == JobStatus.SCHEDULED.value
    assert job.fire_at == deadline
    assert offering.restore_timers() == 0


def test_game_state_reports_counts(start_season, offering):
    season, ids = start_season(2)
    game = season_games(season.id)[0]
    state = offering.game_state(game.id)
    assert state['counts']['OFFERED'] == 1
    assert state['counts']['COMPLETED'] == 0
    assert state['completion'] == {'complete': False, 'waiting_on': sorted(ids)}
    assert offering.game_state(9999) is None


def test_inactive_games_are_not_offered(start_season, offering, seasons):
    season, ids = start_season(2)
    game = season_games(season.id)[0]
    assert seasons.terminate_season(season.id).ok
    assert db.session.get(Game, game.id).status == 'PAUSED'
    assert offering.offer_next_turn(game.id).error == ErrorKind.INACTIVE
    assert offering.offer_next_turn(9999).error == ErrorKind.NOT_FOUND


def test_game_completes_when_only_banned_players_are_left(start_season, offering, clock):
    season, (a, b) = start_season(2)
    g1, g2 = season_games(season.id)
    play(offering, offered(g1))
    drawing = offered(g1)
    assert drawing.player_id == b

    db.session.get(Player, b).banned_at = clock()
    db.session.commit()

    result = offering.handle_claim_timeout({'turn_id': drawing.id, 'player_id': b})
    assert result.ok
    assert db.session.get(Game, g1.id).status == 'COMPLETED'
    assert db.session.get(Season, season.id).status == 'ACTIVE'

    # the other game still needs its first turn from the remaining player
    stale = offered(g2)
    assert offering.handle_claim_timeout({'turn_id': stale.id, 'player_id': b}).ok
    play(offering, offered(g2))
    assert db.session.get(Game, g2.id).status == 'COMPLETED'
    assert db.session.get(Season, season.id).status == 'COMPLETED'


def test_banning_a_player_releases_their_offers(start_season, offering):
    season, (a, b) = start_season(2)
    g1, g2 = season_games(season.id)
    play(offering, offered(g1))
    assert offered(g1).player_id == b
    assert offered(g2).player_id == b

    ban_player(b)

    assert db.session.get(Game, g1.id).status == 'COMPLETED'
    reoffered = offered(g2)
    assert reoffered.player_id == a
    reasons = {row.reason for row in TurnDismissal.query.filter_by(player_id=b)}
    assert reasons == {'player_banned'}

    play(offering, reoffered)
    assert db.session.get(Season, season.id).status == 'COMPLETED'
    assert offering.retry_stalled_games(season.id) == []
    assert offering.restore_timers() == 0
