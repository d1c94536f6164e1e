"""Countdown arithmetic for a voting session.

Works on any object carrying the session timer fields (``timer_duration``,
``timer_started_at``, ``timer_ends_at``, ``is_paused``, ``paused_at``,
``paused_duration``). Nothing here sleeps or schedules; callers pass ``now``.
"""


def start_timer(session, now: float, duration: int = None) -> None:
    if duration is not None:
        session.timer_duration = int(duration)
    if not session.timer_duration or session.timer_duration <= 0:
        raise ValueError('timer duration must be positive')
    session.timer_started_at = now
    session.timer_ends_at = now + session.timer_duration
    session.is_paused = False
    session.paused_at = None
    session.paused_duration = 0.0


def pause_timer(session, now: float) -> bool:
    if session.timer_ends_at is None or session.is_paused:
        return False
    session.is_paused = True
    session.paused_at = now
    return True


def resume_timer(session, now: float) -> float:
    """Shift the deadline by the time spent paused; returns the gap."""
    if not session.is_paused or session.paused_at is None:
        return 0.0
    gap = max(0.0, now - session.paused_at)
    session.paused_duration = (session.paused_duration or 0.0) + gap
    session.timer_ends_at = session.timer_ends_at + gap
    session.is_paused = False
    session.paused_at = None
    return gap


def stop_timer(session) -> None:
    session.timer_started_at = None
    session.timer_ends_at = None
    session.is_paused = False
    session.paused_at = None


def is_running(session) -> bool:
    return session.timer_ends_at is not None


def remaining(session, now: float):
    if session.timer_ends_at is None:
        return None
    # A paused clock stands still at the moment it was paused
    reference = session.paused_at if session.is_paused and session.paused_at is not None else now
    return max(0.0, session.timer_ends_at - reference)


def is_expired(session, now: float) -> bool:
    if session.timer_ends_at is None:
        return False
    reference = session.paused_at if session.is_paused and session.paused_at is not None else now
    return reference > session.timer_ends_at
