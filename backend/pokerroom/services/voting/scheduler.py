import threading
from typing import Set, Tuple


class ExpiryWatcher:
    """Reveal a round automatically once its voting timer runs out.

    Subscribes to coordinator timer events. For each (session, round,
    deadline) it starts one background task that sleeps until the deadline
    and then asks the coordinator to reveal. The coordinator re-checks the
    round and deadline, so a paused, stopped or restarted timer makes the
    pending task a no-op.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Skipped entirely when AUTO_REVEAL_ON_EXPIRY is off
    """

    EVENTS = ('timer_started', 'timer_resumed')

    def __init__(self, app, socketio, coordinator):
        self.app = app
        self.socketio = socketio
        self.coordinator = coordinator
        self._scheduled: Set[Tuple[str, int, float]] = set()
        self._guard = threading.Lock()

    def __call__(self, room_code, event, payload):
        if event not in self.EVENTS:
            return
        if payload.get('is_paused') or payload.get('ends_at') is None:
            return
        self.schedule(payload['session_id'], int(payload['round']), float(payload['ends_at']))

    def enabled(self):
        cfg = self.app.config
        if cfg.get('TESTING') and not cfg.get('ENABLE_SCHEDULER_IN_TESTS'):
            return False
        return bool(cfg.get('AUTO_REVEAL_ON_EXPIRY', True))

    def schedule(self, session_id: str, round_number: int, ends_at: float) -> bool:
        if not self.enabled():
            return False
        key = (session_id, round_number, ends_at)
        with self._guard:
            if key in self._scheduled:
                self.app.logger.info(f"[timer-skip] session={session_id} round={round_number} already scheduled")
                return False
            self._scheduled.add(key)
        self.app.logger.info(f"[timer-watch] session={session_id} round={round_number} deadline={ends_at}")
        self.socketio.start_background_task(self._worker, session_id, round_number, ends_at)
        return True

    def _sleep_until(self, session_id, ends_at):
        hb = int(self.app.config.get('TIMER_HEARTBEAT_SEC', 0) or 0)
        while True:
            remaining = ends_at - self.coordinator.clock()
            if remaining <= 0:
                break
            step = min(hb, remaining) if hb > 0 else remaining
            # Sleep a hair past the deadline so the expiry check sees it as passed
            self.socketio.sleep(step + 0.05)
            if hb > 0:
                self.app.logger.info(
                    f"[timer-heartbeat] session={session_id} remaining={max(0.0, ends_at - self.coordinator.clock()):.0f}s"
                )

    def _worker(self, session_id, round_number, ends_at):
        try:
            self._sleep_until(session_id, ends_at)
            with self.app.app_context():
                self.coordinator.reveal_if_expired(session_id, round_number, ends_at)
        except Exception:
            self.app.logger.exception(f"[timer-error] session={session_id} round={round_number}")
        finally:
            with self._guard:
                self._scheduled.discard((session_id, round_number, ends_at))

    def pending(self):
        with self._guard:
            return set(self._scheduled)
