"""Registry of running session loops, one per app."""

import threading
import time
from typing import Callable, Dict, List, Optional, Set, Tuple

from .errors import InvariantViolation
from .scheduler import SessionLoop


class SessionRegistry:
    """Maps session id -> running ``SessionLoop``.

    Also hands out the per-session lock that inbound triggers take before
    mutating points or occupancy, which is the same lock the loop holds
    while ticking.
    """

    def __init__(self, app, sink, spawn: Optional[Callable] = None, clock: Callable[[], float] = time.time):
        self.app = app
        self.sink = sink
        self.spawn = spawn
        self.clock = clock
        self._loops: Dict[int, SessionLoop] = {}
        # sessions stopped in this process; they stay ended even if the final write is still pending
        self._ended: Set[int] = set()
        self._locks: Dict[int, threading.RLock] = {}
        self._guard = threading.Lock()

    def scheduler_enabled(self) -> bool:
        cfg = self.app.config
        return not (cfg.get('TESTING') and not cfg.get('ENABLE_SCHEDULER_IN_TESTS'))

    def lock_for(self, session_id) -> threading.RLock:
        with self._guard:
            return self._locks.setdefault(int(session_id), threading.RLock())

    def get(self, session_id) -> Optional[SessionLoop]:
        with self._guard:
            return self._loops.get(int(session_id))

    def is_running(self, session_id) -> bool:
        loop = self.get(session_id)
        return loop is not None and loop.running

    def active_ids(self) -> List[int]:
        with self._guard:
            return [sid for sid, loop in self._loops.items() if loop.running]

    def start(self, session_id, rng=None) -> Tuple[SessionLoop, bool]:
        """Start (or resume) the loop for a session.

        Returns ``(loop, created)``; a second call for a running session
        returns the existing loop with ``created=False`` and spawns nothing.
        A session this registry has already stopped raises
        ``InvariantViolation``, even if its final write has not landed yet.
        """
        sid = int(session_id)
        lock = self.lock_for(sid)
        with lock:
            with self._guard:
                ended = sid in self._ended
                existing = self._loops.get(sid)
            if ended or (existing is not None and not existing.running):
                raise InvariantViolation('Session has ended; create a new session')
            if existing is not None and existing.running:
                self.app.logger.info(f"[tick-skip] session={sid} already running")
                return existing, False
            loop = SessionLoop(
                self.app, sid, self.sink,
                clock=self.clock, rng=rng, spawn=self.spawn, lock=lock, on_stopped=self._discard,
            )
            loop.activate()
            with self._guard:
                self._loops[sid] = loop

        if self.scheduler_enabled():
            if self.spawn is None:
                raise RuntimeError('SessionRegistry has no spawn function for background loops')
            self.spawn(loop.run)
        else:
            self.app.logger.info(f"[tick-manual] session={sid} scheduler disabled in tests")
        return loop, True

    def stop(self, session_id, reason: str = 'manual_stop'):
        loop = self.get(session_id)
        if loop is None:
            return None
        return loop.stop(reason)

    def stop_all(self, reason: str = 'manual_stop') -> None:
        """Stop every running loop. Call inside an app context."""
        with self._guard:
            loops = list(self._loops.values())
        for loop in loops:
            loop.stop(reason)

    def is_ended(self, session_id) -> bool:
        with self._guard:
            return int(session_id) in self._ended

    def _discard(self, loop: SessionLoop) -> None:
        with self._guard:
            self._ended.add(loop.session_id)
            if self._loops.get(loop.session_id) is loop:
                del self._loops[loop.session_id]
