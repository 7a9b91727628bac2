"""Per-session game loop.

One ``SessionLoop`` per active session. Its ``run`` method is the body of
a background task that calls ``tick`` once per ``TICK_INTERVAL_SEC``; all
rule evaluation, deferred timers and point mutations for the session go
through ``tick`` while holding the session lock, so a session has exactly
one writer and ticks never overlap. A slow tick delays the next one.

Tick order (later steps rely on the side effects of earlier ones):

1. time up -> end ``time_up``
2. no active hiders -> end ``all_caught``
   then: fire due session timers (shrink apply, chaos end)
3. unlock communication in the final phase (once)
4. out-of-bounds check for every active located player
5. fail expired missions
   then: chaos-mode check if 4 or 5 recorded violations
6. boundary shrink schedule (warning now, apply after SHRINK_WARNING_SEC)
7. immunity spot drain
   then: survival income
8. mission wave
9. state snapshot broadcast
"""

import json
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from manhunt.models import GameSession
from .errors import InvariantViolation, TransientPersistenceFailure
from .gateway import PersistenceGateway
from .geometry import point_in_polygon, scale_polygon
from .ledger import Ledger
from .missions import MissionGenerator
from .scoring import REASON_TEXT, game_result, winner_for

FINALIZE_ATTEMPTS = 5


@dataclass(order=True)
class DeferredTask:
    due_at: float
    name: str = field(compare=False)
    callback: Callable[[float], None] = field(compare=False)


class SessionTimers:
    """One-shot callbacks owned by a session, fired from its own tick."""

    def __init__(self):
        self._tasks: List[DeferredTask] = []

    def schedule(self, due_at: float, name: str, callback: Callable[[float], None]) -> DeferredTask:
        task = DeferredTask(due_at, name, callback)
        self._tasks.append(task)
        self._tasks.sort()
        return task

    def pop_due(self, now: float) -> List[DeferredTask]:
        due = [t for t in self._tasks if t.due_at <= now]
        self._tasks = [t for t in self._tasks if t.due_at > now]
        return due

    def cancel_all(self) -> int:
        count = len(self._tasks)
        self._tasks = []
        return count

    def pending(self) -> List[str]:
        return [t.name for t in self._tasks]

    def __len__(self):
        return len(self._tasks)


def _has_coords(location) -> bool:
    return bool(location) and location.get('lat') is not None and location.get('lng') is not None


def player_view(player, reveal_all: bool = False):
    # Hiders stay hidden until they break a rule.
    visible = reveal_all or player.role == 'seeker' or (player.violations or 0) >= 1
    return player.to_dict(include_location=visible)


class SessionLoop:
    def __init__(self, app, session_id: int, sink, clock: Callable[[], float] = time.time,
                 rng=None, spawn=None, lock=None, on_stopped=None):
        self.app = app
        self.session_id = int(session_id)
        self.sink = sink
        self.clock = clock
        self.spawn = spawn
        self.lock = lock or threading.RLock()
        self._on_stopped = on_stopped
        self._stop_event = threading.Event()

        cfg = app.config
        self.gateway = PersistenceGateway()
        self.ledger = Ledger(self.gateway, cfg)
        self.missions = MissionGenerator(self.gateway, cfg, rng)
        self.timers = SessionTimers()

        self.interval = float(cfg.get('TICK_INTERVAL_SEC', 1.0))
        self.heartbeat = int(cfg.get('TIMER_HEARTBEAT_SEC', 0))
        self.shrink_warning = float(cfg.get('SHRINK_WARNING_SEC', 30))
        self.shrink_factor = float(cfg.get('SHRINK_FACTOR', 0.8))
        self.final_phase = float(cfg.get('FINAL_PHASE_SEC', 600))
        self.economy_ratio = float(cfg.get('ECONOMY_FINAL_PHASE_RATIO', 0.3))
        self.survival_interval = float(cfg.get('SURVIVAL_INTERVAL_SEC', 60))

        self.ended = False
        self.started_at: Optional[float] = None
        self.communication_enabled = False
        self.chaos_until: Optional[float] = None
        self.shrinks = 0
        self.tick_count = 0
        self._last_heartbeat = 0.0

    # ---- lifecycle ----

    def activate(self) -> None:
        """Move the session to ``active`` (or resume an already active one) and arm the schedule."""
        game_session = self.gateway.require_session(self.session_id)
        if game_session.status == 'ended':
            raise InvariantViolation('Session has ended; create a new session')
        settings = game_session.config
        self.duration = float(settings.get('duration', self.app.config.get('GAME_DURATION_MS', 3600000))) / 1000.0
        self.shrink_interval = float(settings.get('boundaryShrinkInterval',
                                                  self.app.config.get('SHRINK_INTERVAL_MS', 600000))) / 1000.0
        self.mission_interval = float(settings.get('missionFrequency',
                                                   self.app.config.get('MISSION_INTERVAL_MS', 300000))) / 1000.0
        self.communication_mode = settings.get('communicationMode',
                                               self.app.config.get('COMMUNICATION_MODE', 'final_phase_only'))

        now = self.clock()
        if game_session.status == 'lobby':
            game_session.status = 'active'
            game_session.started_at = now
            self.gateway.commit()
        self.started_at = game_session.started_at if game_session.started_at is not None else now
        self.communication_enabled = bool(game_session.communication_enabled)
        self.shrinks = game_session.boundary.shrink_count if game_session.boundary else 0

        self.last_shrink_at = self.started_at + self.shrinks * self.shrink_interval
        self.next_mission_at = self.started_at + float(self.app.config.get('MISSION_INITIAL_DELAY_SEC', 30))
        self.next_mission_at = max(self.next_mission_at, now)
        self.next_survival_at = now + self.survival_interval

        if self.communication_mode == 'always' and not self.communication_enabled:
            self.communication_enabled = True
            if self.gateway.set_communication_enabled(self.session_id):
                self._publish('communication:enabled', {'message': 'Communication now available!'})

        self.app.logger.info(
            f"[session-active] session={self.session_id} duration={self.duration}s "
            f"shrink_every={self.shrink_interval}s missions_every={self.mission_interval}s"
        )

    def run(self) -> None:
        """Background task body: tick every interval until stopped."""
        self.app.logger.info(f"[tick-start] session={self.session_id} interval={self.interval}s")
        while not self._stop_event.wait(self.interval):
            with self.app.app_context():
                try:
                    self.tick()
                except Exception:
                    self.app.logger.exception(f"[tick-error] session={self.session_id} step=tick")
        self.app.logger.info(f"[tick-exit] session={self.session_id} ticks={self.tick_count}")

    @property
    def running(self) -> bool:
        return not self.ended

    # ---- tick ----

    def tick(self, now: Optional[float] = None) -> None:
        with self.lock:
            if self.ended:
                return
            now = self.clock() if now is None else now
            self.tick_count += 1
            elapsed = now - self.started_at
            remaining = self.duration - elapsed
            self._maybe_heartbeat(now, remaining)

            if remaining <= 0:
                self.stop('time_up', now)
                return

            active_hiders = self._step('count-hiders', self.gateway.count_active_hiders, self.session_id)
            if active_hiders == 0:
                self.stop('all_caught', now)
                return

            for task in self.timers.pop_due(now):
                self._step(task.name, task.callback, now)

            self._step('communication', self._check_communication, remaining)
            violations = self._step('containment', self._check_containment, now) or 0
            failures = self._step('mission-expiry', self._expire_missions, now) or 0
            if violations or failures:
                self._step('chaos', self._check_chaos, now)
            self._step('shrink', self._check_shrink, now)
            self._step('immunity', self._drain_immunity, now, remaining)
            self._step('survival', self._award_survival, now)
            self._step('mission-spawn', self._spawn_missions, now)
            self._step('snapshot', self._broadcast_state, now, remaining)

    def _step(self, name, fn, *args):
        try:
            return fn(*args)
        except TransientPersistenceFailure as exc:
            self.app.logger.warning(f"[tick-skip] session={self.session_id} step={name} error={exc}")
        except Exception:
            self.gateway.rollback()
            self.app.logger.exception(f"[tick-error] session={self.session_id} step={name}")
        return None

    def _maybe_heartbeat(self, now, remaining):
        if self.heartbeat > 0 and now - self._last_heartbeat >= self.heartbeat:
            self._last_heartbeat = now
            self.app.logger.info(
                f"[tick-heartbeat] session={self.session_id} remaining={max(0, int(remaining))}s "
                f"timers={self.timers.pending()}"
            )

    def _publish(self, event, payload, final=False):
        if self.ended and not final:
            return
        self.sink.publish(self.session_id, event, payload)

    def _publish_to(self, player_id, event, payload):
        if self.ended:
            return
        self.sink.publish_to(self.session_id, player_id, event, payload)

    # ---- rules ----

    def in_final_phase(self, remaining: float) -> bool:
        return remaining <= self.final_phase

    def in_economy_final_phase(self, remaining: float) -> bool:
        return remaining <= self.duration * self.economy_ratio

    def _check_communication(self, remaining):
        if self.communication_enabled or self.communication_mode != 'final_phase_only':
            return
        if not self.in_final_phase(remaining):
            return
        self.communication_enabled = True
        if self.gateway.set_communication_enabled(self.session_id):
            self.app.logger.info(f"[communication] session={self.session_id} enabled")
            self._publish('communication:enabled', {'message': 'Communication now available!'})

    def _check_containment(self, now) -> int:
        boundary = self.gateway.get_boundary(self.session_id)
        if not boundary:
            return 0
        polygon = boundary.current
        count = 0
        for player in self.gateway.players(self.session_id, status='active'):
            location = player.location
            if not _has_coords(location) or point_in_polygon(location, polygon):
                continue
            reveal = self.ledger.record_out_of_bounds(self.session_id, player, location, now)
            count += 1
            self.app.logger.info(f"[violation] session={self.session_id} player={player.id} out_of_bounds")
            self._publish('violation:out_of_bounds', {
                'playerId': player.id,
                'playerName': player.name,
                'location': location,
                'reveal': reveal,
            })
        return count

    def _expire_missions(self, now) -> int:
        count = 0
        for mission in self.gateway.expired_missions(self.session_id, now):
            result = self.ledger.record_mission_failed(self.session_id, mission, now)
            if not result:
                continue
            count += 1
            self.app.logger.info(
                f"[mission-failed] session={self.session_id} mission={mission.id} player={mission.assigned_to}"
            )
            self._publish('mission:failed', {
                'missionId': mission.id,
                'playerId': mission.assigned_to,
                'penalty': result['penalty'],
            })
        return count

    def _check_chaos(self, now):
        if self.chaos_until is not None and now < self.chaos_until:
            return
        result = self.ledger.evaluate_chaos_mode(self.session_id, now)
        if not result['triggered']:
            return
        duration = result['duration']
        self.chaos_until = now + duration
        self.ledger.log_event(self.session_id, 'chaos_mode', {'duration': duration}, now)
        self.app.logger.info(f"[chaos-on] session={self.session_id} duration={duration}s")
        self._publish('chaos:mode_activated', {
            'duration': duration * 1000,
            'players': [
                {'id': p.id, 'name': p.name, 'location': p.location}
                for p in self.gateway.players(self.session_id)
            ],
        })
        self.timers.schedule(self.chaos_until, 'chaos-end', self._end_chaos)

    def _end_chaos(self, now):
        self.chaos_until = None
        self.app.logger.info(f"[chaos-off] session={self.session_id}")
        self._publish('chaos:mode_ended', {})

    def _check_shrink(self, now):
        if self.shrink_interval <= 0 or now - self.last_shrink_at < self.shrink_interval:
            return
        if not self.gateway.get_boundary(self.session_id):
            return
        self.last_shrink_at = now
        apply_at = now + self.shrink_warning
        self.app.logger.info(f"[shrink-warn] session={self.session_id} apply_at={apply_at}")
        self._publish('boundary:shrinking', {
            'message': f'Boundary shrinking in {int(self.shrink_warning)} seconds!',
            'seconds': int(self.shrink_warning),
        })
        self.timers.schedule(apply_at, 'shrink-apply', self._apply_shrink)

    def _apply_shrink(self, now):
        boundary = self.gateway.get_boundary(self.session_id)
        if not boundary:
            return
        new_polygon = scale_polygon(boundary.current, self.shrink_factor)
        self.gateway.replace_boundary(self.session_id, new_polygon)
        self.shrinks += 1
        self.app.logger.info(f"[shrink-apply] session={self.session_id} shrinks={self.shrinks}")
        self._publish('boundary:shrunk', {'newBoundary': {'coordinates': new_polygon}, 'shrinkCount': self.shrinks})
        if self._check_containment(now):
            self._check_chaos(now)

    def _drain_immunity(self, now, remaining):
        result = self.ledger.drain_immunity(self.session_id, self.in_economy_final_phase(remaining), now)
        if result and result['type'] == 'expired':
            self.app.logger.info(f"[immunity-expired] session={self.session_id} player={result['player_id']}")
            self._publish('immunity:expired', {
                'playerId': result['player_id'],
                'message': 'Out of points, immunity lost!',
            })

    def _award_survival(self, now):
        if self.survival_interval <= 0 or now < self.next_survival_at:
            return
        self.ledger.award_survival_points(self.session_id, now)
        self.next_survival_at = now + self.survival_interval

    def _spawn_missions(self, now):
        if self.mission_interval <= 0 or now < self.next_mission_at:
            return
        missions = self.missions.generate_for_all_hiders(self.session_id, now)
        self.next_mission_at = now + self.mission_interval
        if not missions:
            return
        self.app.logger.info(f"[missions-spawned] session={self.session_id} count={len(missions)}")
        self._publish('missions:spawned', {'message': 'New missions available!', 'count': len(missions)})
        for mission in missions:
            self._publish_to(mission.assigned_to, 'mission:assigned', mission.to_dict())

    def snapshot(self, now: float, remaining: float):
        chaos = self.chaos_until is not None and now < self.chaos_until
        players = [player_view(p, reveal_all=chaos) for p in self.gateway.players(self.session_id)]
        boundary = self.gateway.get_boundary(self.session_id)
        spot = self.gateway.get_immunity_spot(self.session_id)
        return {
            'sessionId': self.session_id,
            'remaining': int(max(0, remaining) * 1000),
            'elapsed': int((now - self.started_at) * 1000),
            'players': players,
            'boundary': boundary.current if boundary else None,
            'immunitySpot': spot.to_dict() if spot else None,
            'communicationEnabled': self.communication_enabled,
            'chaos': chaos,
        }

    def _broadcast_state(self, now, remaining):
        self._publish('game:state', self.snapshot(now, remaining))

    # ---- stop ----

    def stop(self, reason: str, now: Optional[float] = None):
        """Single exit path: halt the loop, cancel timers, persist and announce the result."""
        with self.lock:
            if self.ended:
                return None
            self.ended = True
            self._stop_event.set()
            cancelled = self.timers.cancel_all()
            now = self.clock() if now is None else now
            elapsed = now - (self.started_at or now)
            self.app.logger.info(
                f"[session-end] session={self.session_id} reason={reason} cancelled_timers={cancelled}"
            )
            try:
                result = self._finalize(reason, now, elapsed)
            except Exception:
                self.gateway.rollback()
                self.app.logger.exception(f"[session-end] session={self.session_id} persist failed, retrying out of band")
                result = {
                    'winner': winner_for(reason),
                    'reason_code': reason,
                    'reason': REASON_TEXT.get(reason, reason),
                    'finalScores': [],
                    'gameStats': {},
                }
                self._retry_finalize(reason, now, elapsed)
            self._publish('game:ended', result, final=True)
        if self._on_stopped:
            self._on_stopped(self)
        return result

    def _finalize(self, reason, now, elapsed):
        result = game_result(self.gateway, self.session_id, reason, elapsed, self.shrinks)
        game_session = self.gateway.session.get(GameSession, self.session_id)
        if game_session is not None:
            game_session.status = 'ended'
            game_session.ended_at = now
            game_session.end_reason = reason
            game_session.final_standings = json.dumps(result['finalScores'])
            self.gateway.commit()
        return result

    def _retry_finalize(self, reason, now, elapsed):
        if not self.spawn:
            return

        def _worker():
            for attempt in range(1, FINALIZE_ATTEMPTS + 1):
                time.sleep(self.interval)
                with self.app.app_context():
                    try:
                        self._finalize(reason, now, elapsed)
                    except Exception as exc:
                        self.gateway.rollback()
                        self.app.logger.warning(
                            f"[persist-retry] session={self.session_id} attempt={attempt} error={exc}"
                        )
                        continue
                    self.app.logger.info(f"[persist-retry] session={self.session_id} ended state saved")
                    return
            self.app.logger.error(f"[persist-retry] session={self.session_id} gave up after {FINALIZE_ATTEMPTS}")

        self.spawn(_worker)
