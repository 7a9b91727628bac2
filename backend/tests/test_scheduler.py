import threading
import time

import pytest

from conftest import OUTSIDE, INSIDE, TestConfig, setup_game
from manhunt import create_app, db, get_registry
from manhunt.models import Boundary, GameSession, Mission, Player, PointTransaction
from manhunt.services.game import triggers
from manhunt.services.game import scheduler
from manhunt.services.game.errors import InvariantViolation, NotPermitted, TransientPersistenceFailure
from manhunt.services.game.gateway import PersistenceGateway
from manhunt.services.game.scheduler import SessionLoop, SessionTimers


def _session(session_id):
    return db.session.get(GameSession, session_id)


def _player(player_id):
    return db.session.get(Player, player_id)


def test_time_up_ends_with_hiders_winning(registry, clock, sink):
    ids = setup_game(registry, settings={'duration': 60000})
    triggers.start_session(registry, ids['session'])
    loop = registry.get(ids['session'])

    clock.advance(59)
    loop.tick()
    assert _session(ids['session']).status == 'active'

    clock.advance(1)
    loop.tick()
    game_session = _session(ids['session'])
    assert game_session.status == 'ended'
    assert game_session.end_reason == 'time_up'
    ended = sink.named('game:ended')
    assert len(ended) == 1
    assert ended[0]['payload']['winner'] == 'hiders'
    assert ended[0]['payload']['reason_code'] == 'time_up'
    assert ended[0]['payload']['gameStats']['duration'] == '1:00'
    assert not registry.is_running(ids['session'])


def test_tagging_last_hider_ends_with_seeker_winning(registry, clock, sink, started):
    triggers.tag_player(registry, started['session'], started['seeker'], started['hider'])
    assert _player(started['hider']).status == 'caught'

    # tagging twice is rejected, the first tag stands
    with pytest.raises(InvariantViolation):
        triggers.tag_player(registry, started['session'], started['seeker'], started['hider'])

    clock.advance(1)
    started['loop'].tick()
    game_session = _session(started['session'])
    assert game_session.status == 'ended'
    assert game_session.end_reason == 'all_caught'
    result = sink.named('game:ended')[0]['payload']
    assert result['winner'] == 'seeker'
    assert result['gameStats']['caught'] == 1


def test_only_seeker_can_tag(registry, started):
    with pytest.raises(NotPermitted):
        triggers.tag_player(registry, started['session'], started['hider'], started['seeker'])


def test_shrink_warns_then_applies_after_delay(registry, clock, sink):
    ids = setup_game(registry, settings={'boundaryShrinkInterval': 60000})
    triggers.start_session(registry, ids['session'])
    loop = registry.get(ids['session'])
    original = Boundary.query.filter_by(session_id=ids['session']).first().current

    clock.advance(60)
    loop.tick()
    assert len(sink.named('boundary:shrinking')) == 1
    assert loop.timers.pending() == ['shrink-apply']
    assert Boundary.query.filter_by(session_id=ids['session']).first().current == original

    clock.advance(29)
    loop.tick()
    assert sink.named('boundary:shrunk') == []

    clock.advance(1)
    loop.tick()
    shrunk = sink.named('boundary:shrunk')
    assert len(shrunk) == 1
    assert shrunk[0]['payload']['shrinkCount'] == 1
    boundary = Boundary.query.filter_by(session_id=ids['session']).first()
    assert boundary.shrink_count == 1
    assert boundary.current == shrunk[0]['payload']['newBoundary']['coordinates']
    assert boundary.original == original
    # each vertex kept 80% of its offset from the centroid
    assert abs(boundary.current[0]['lat'] - 40.001) < 1e-9
    assert abs(boundary.current[0]['lng'] - (-75.009)) < 1e-9


def test_stop_cancels_pending_timers_and_silences_session(registry, clock, sink):
    ids = setup_game(registry, settings={'boundaryShrinkInterval': 60000})
    triggers.start_session(registry, ids['session'])
    loop = registry.get(ids['session'])

    clock.advance(60)
    loop.tick()
    assert len(loop.timers) == 1

    result = triggers.stop_session(registry, ids['session'])
    assert result['winner'] is None
    assert result['reason_code'] == 'manual_stop'
    assert len(loop.timers) == 0
    assert sink.names()[-1] == 'game:ended'

    sink.clear()
    clock.advance(60)
    loop.tick()
    assert sink.events == []
    assert Boundary.query.filter_by(session_id=ids['session']).first().shrink_count == 0
    assert _session(ids['session']).end_reason == 'manual_stop'

    with pytest.raises(InvariantViolation):
        triggers.stop_session(registry, ids['session'])
    with pytest.raises(InvariantViolation):
        triggers.start_session(registry, ids['session'])


def test_hider_location_hidden_until_violation(registry, clock, sink, started):
    triggers.update_player_location(registry, started['hider'], OUTSIDE['lat'], OUTSIDE['lng'])
    triggers.update_player_location(registry, started['seeker'], INSIDE['lat'], INSIDE['lng'])

    before = started['loop'].snapshot(clock(), 3600)
    hider = next(p for p in before['players'] if p['id'] == started['hider'])
    seeker = next(p for p in before['players'] if p['id'] == started['seeker'])
    assert 'location' not in hider
    assert seeker['location']['lat'] == INSIDE['lat']

    clock.advance(1)
    started['loop'].tick()
    violations = sink.named('violation:out_of_bounds')
    assert len(violations) == 1
    assert violations[0]['payload']['playerId'] == started['hider']
    assert violations[0]['payload']['reveal'] == {'type': 'out_of_bounds', 'penalty': 'location_reveal', 'duration': 5}

    state = sink.named('game:state')[-1]['payload']
    hider = next(p for p in state['players'] if p['id'] == started['hider'])
    assert hider['location']['lat'] == OUTSIDE['lat']
    assert hider['violations'] == 1
    # the seeker is still in bounds, so no chaos
    assert sink.named('chaos:mode_activated') == []


def test_chaos_mode_when_every_active_player_violates(registry, clock, sink, started):
    triggers.update_player_location(registry, started['hider'], OUTSIDE['lat'], OUTSIDE['lng'])
    triggers.update_player_location(registry, started['seeker'], OUTSIDE['lat'], OUTSIDE['lng'])

    clock.advance(1)
    started['loop'].tick()
    activated = sink.named('chaos:mode_activated')
    assert len(activated) == 1
    assert activated[0]['payload']['duration'] == 10000
    assert {p['id'] for p in activated[0]['payload']['players']} == {started['hider'], started['seeker']}
    assert sink.named('game:state')[-1]['payload']['chaos'] is True

    # still inside the chaos window: no second activation
    clock.advance(1)
    started['loop'].tick()
    assert len(sink.named('chaos:mode_activated')) == 1

    clock.advance(9)
    started['loop'].tick()
    assert len(sink.named('chaos:mode_ended')) == 1


def test_communication_unlocks_once_in_final_phase(registry, clock, sink):
    ids = setup_game(registry, settings={'duration': 1200000})
    triggers.start_session(registry, ids['session'])
    loop = registry.get(ids['session'])

    with pytest.raises(NotPermitted):
        triggers.send_message(registry, ids['session'], ids['hider'], 'psst')

    clock.advance(599)
    loop.tick()
    assert sink.named('communication:enabled') == []

    clock.advance(1)
    loop.tick()
    clock.advance(1)
    loop.tick()
    assert len(sink.named('communication:enabled')) == 1
    assert _session(ids['session']).communication_enabled is True

    triggers.send_message(registry, ids['session'], ids['hider'], 'psst')
    assert sink.named('message:received')[0]['payload']['message'] == 'psst'


def test_communication_always_mode_enabled_at_start(registry, sink):
    ids = setup_game(registry, settings={'communicationMode': 'always'})
    triggers.start_session(registry, ids['session'])
    assert len(sink.named('communication:enabled')) == 1
    assert _session(ids['session']).communication_enabled is True


def test_mission_wave_then_single_failure_penalty(registry, clock, sink, started):
    clock.advance(30)
    started['loop'].tick()
    assert len(sink.named('missions:spawned')) == 1
    assigned = sink.named('mission:assigned')
    # one mission per active hider, delivered privately
    assert [e['player_id'] for e in assigned] == [started['hider']]
    # no seeker location: the safe fallback
    assert assigned[0]['payload']['risk_level'] == 'safe'
    mission_id = assigned[0]['payload']['id']

    clock.advance(180)
    started['loop'].tick()
    clock.advance(1)
    started['loop'].tick()

    failed = sink.named('mission:failed')
    assert len(failed) == 1
    assert failed[0]['payload'] == {'missionId': mission_id, 'playerId': started['hider'], 'penalty': -20}
    assert db.session.get(Mission, mission_id).status == 'failed'
    assert PointTransaction.query.filter_by(transaction_type='mission_penalty').one().amount == -20
    hider = _player(started['hider'])
    # the first survival payout landed on the same tick as the penalty
    assert hider.points == 10 - 20
    assert hider.visible_points == 0
    assert hider.violations == 1


def test_survival_income_each_interval(registry, clock, started):
    clock.advance(60)
    started['loop'].tick()
    clock.advance(30)
    started['loop'].tick()
    assert _player(started['hider']).points == 10
    assert _player(started['seeker']).points == 0
    clock.advance(30)
    started['loop'].tick()
    assert _player(started['hider']).points == 20
    assert PointTransaction.query.filter_by(transaction_type='survival').count() == 2


def test_session_timers_fire_in_due_order():
    timers = SessionTimers()
    fired = []
    timers.schedule(20.0, 'late', fired.append)
    timers.schedule(10.0, 'early', fired.append)
    assert timers.pending() == ['early', 'late']
    due = timers.pop_due(15.0)
    assert [t.name for t in due] == ['early']
    assert timers.cancel_all() == 1
    assert timers.pop_due(100.0) == []


class ThreadedConfig(TestConfig):
    ENABLE_SCHEDULER_IN_TESTS = True
    TICK_INTERVAL_SEC = 0.02


def test_concurrent_start_runs_one_loop(monkeypatch):
    calls = []
    lock = threading.Lock()

    def counting_tick(self, now=None):
        with lock:
            calls.append(threading.get_ident())

    monkeypatch.setattr(SessionLoop, 'tick', counting_tick)

    application = create_app(ThreadedConfig)
    with application.app_context():
        import manhunt.models  # noqa: F401
        db.create_all()
        registry = get_registry(application)
        ids = setup_game(registry)

        first = triggers.start_session(registry, ids['session'])
        second = triggers.start_session(registry, ids['session'])
        assert first['started'] is True
        assert second['started'] is False

        deadline = time.time() + 2.0
        while time.time() < deadline and len(calls) < 5:
            time.sleep(0.02)
        registry.stop(ids['session'])
        time.sleep(0.1)

        assert len(calls) >= 5
        assert len(set(calls)) == 1
        db.session.remove()
        db.drop_all()


def test_failed_step_is_skipped_and_retried_next_tick(registry, clock, sink, started, monkeypatch):
    clock.advance(30)
    started['loop'].tick()
    mission_id = sink.named('mission:assigned')[0]['payload']['id']

    real_expired = PersistenceGateway.expired_missions
    calls = []

    def flaky_expired(self, session_id, now):
        calls.append(now)
        if len(calls) == 1:
            raise TransientPersistenceFailure('expired_missions failed: OperationalError')
        return real_expired(self, session_id, now)

    monkeypatch.setattr(PersistenceGateway, 'expired_missions', flaky_expired)

    sink.clear()
    clock.advance(180)
    started['loop'].tick()
    assert sink.named('mission:failed') == []
    # later steps of the same tick still ran
    assert len(sink.named('game:state')) == 1
    assert db.session.get(Mission, mission_id).status == 'assigned'

    clock.advance(1)
    started['loop'].tick()
    assert len(calls) == 2
    assert [e['payload']['missionId'] for e in sink.named('mission:failed')] == [mission_id]
    assert _session(started['session']).status == 'active'


def test_failed_final_write_is_retried_out_of_band(registry, clock, sink, monkeypatch):
    ids = setup_game(registry, settings={'duration': 60000})
    # run retries inline and without waiting
    registry.spawn = lambda fn, *args: fn(*args)
    monkeypatch.setattr(scheduler.time, 'sleep', lambda seconds: None)
    triggers.start_session(registry, ids['session'])
    loop = registry.get(ids['session'])

    real_finalize = SessionLoop._finalize
    attempts = []

    def flaky_finalize(self, reason, now, elapsed):
        attempts.append(reason)
        if len(attempts) < 3:
            raise TransientPersistenceFailure('commit failed: OperationalError')
        return real_finalize(self, reason, now, elapsed)

    monkeypatch.setattr(SessionLoop, '_finalize', flaky_finalize)

    clock.advance(60)
    loop.tick()
    assert attempts == ['time_up', 'time_up', 'time_up']
    assert not loop.running
    assert not registry.is_running(ids['session'])
    ended = sink.named('game:ended')
    assert len(ended) == 1
    assert ended[0]['payload']['winner'] == 'hiders'

    db.session.expire_all()
    game_session = _session(ids['session'])
    assert game_session.status == 'ended'
    assert game_session.end_reason == 'time_up'


def test_session_stays_ended_while_final_write_is_pending(registry, clock, sink, monkeypatch):
    ids = setup_game(registry)
    # retries never get to run
    registry.spawn = lambda fn, *args: None
    triggers.start_session(registry, ids['session'])
    loop = registry.get(ids['session'])

    def failing_finalize(self, reason, now, elapsed):
        raise TransientPersistenceFailure('commit failed: OperationalError')

    monkeypatch.setattr(SessionLoop, '_finalize', failing_finalize)
    result = triggers.stop_session(registry, ids['session'])
    assert result['winner'] is None
    monkeypatch.undo()

    db.session.expire_all()
    assert _session(ids['session']).status == 'active'
    assert registry.is_ended(ids['session'])

    sink.clear()
    with pytest.raises(InvariantViolation):
        triggers.start_session(registry, ids['session'])
    with pytest.raises(InvariantViolation):
        registry.start(ids['session'])
    assert registry.get(ids['session']) is None

    clock.advance(1)
    loop.tick()
    assert sink.events == []


def test_slow_start_does_not_block_other_sessions(registry, monkeypatch):
    entered = threading.Event()
    release = threading.Event()

    def slow_activate(self):
        entered.set()
        release.wait(2.0)

    monkeypatch.setattr(SessionLoop, 'activate', slow_activate)
    worker = threading.Thread(target=registry.start, args=(101,))
    worker.start()
    try:
        assert entered.wait(2.0)
        began = time.time()
        assert registry.is_running(202) is False
        assert registry.active_ids() == []
        assert time.time() - began < 0.5
        # the starting session keeps its own lock for the whole start
        assert registry.lock_for(101).acquire(blocking=False) is False
    finally:
        release.set()
        worker.join(2.0)
    assert registry.is_running(101)
