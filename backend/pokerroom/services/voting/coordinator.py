"""Lifecycle of estimation rounds for backlog stories.

The coordinator is the only writer of voting sessions and of the vote
ledger. Every transition follows the same three steps: compute the new
state on the session row, commit it, then publish an event to subscribers
(the Socket.IO broadcaster and the expiry watcher). Ledger changes are
applied only once the commit has gone through.

Transitions for one session run one at a time under a per-session lock.
"""

import math
import threading
import time
from collections import defaultdict
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from pokerroom import db
from pokerroom.errors import Conflict, Expired, InvalidInput, InvalidState, NotFound
from pokerroom.models import VOTE_VALUE_LENGTH, Story, Vote, VotingSession
from pokerroom.services.registry import online_participants, touch_room
from . import timer
from .consensus import ConsensusResult, EMPTY_CONSENSUS, calculate_consensus
from .ledger import LedgerVote, VoteLedger

DECKS = {
    'fibonacci': ['0', '1', '2', '3', '5', '8', '13', '21', '34', '55', '89', '?'],
    'powersOfTwo': ['0', '1', '2', '4', '8', '16', '32', '64', '?'],
    'tShirt': ['XS', 'S', 'M', 'L', 'XL', 'XXL', '?'],
}
CONFIDENCE_RANGE = (1, 5)
REASONING_LENGTH = 1000
SYSTEM = 'system'

Listener = Callable[[str, str, dict], None]


def resolve_deck(deck_type, custom_deck=None):
    if deck_type == 'custom':
        values = [str(v).strip() for v in (custom_deck or []) if str(v).strip()]
        if not values:
            raise InvalidInput('A custom deck needs at least one value')
        too_long = [v for v in values if len(v) > VOTE_VALUE_LENGTH]
        if too_long:
            raise InvalidInput(f'Deck values are limited to {VOTE_VALUE_LENGTH} characters: {too_long[0]!r}')
        # Keep order, drop duplicates
        return list(dict.fromkeys(values))
    if deck_type not in DECKS:
        raise InvalidInput(f'Unknown deck type: {deck_type}')
    return list(DECKS[deck_type])


@dataclass
class VoteProgress:
    session_id: str
    round_number: int
    vote_count: int
    total_participants: int
    all_votes_in: bool
    revealed: bool = False

    def to_dict(self):
        return {
            'session_id': self.session_id,
            'round': self.round_number,
            'vote_count': self.vote_count,
            'total_participants': self.total_participants,
            'all_votes_in': self.all_votes_in,
            'revealed': self.revealed,
        }


@dataclass
class RevealResult:
    session: VotingSession
    consensus: ConsensusResult
    votes: List[LedgerVote] = field(default_factory=list)
    already_revealed: bool = False


class VotingCoordinator:

    def __init__(self, gatekeeper, ledger: Optional[VoteLedger] = None, clock: Callable[[], float] = time.time):
        self.gatekeeper = gatekeeper
        self.ledger = ledger or VoteLedger()
        self.clock = clock
        self._listeners: List[Listener] = []
        self._locks = {}
        self._locks_guard = threading.Lock()
        # room code -> session ids holding ephemeral state in this process
        self._room_sessions = defaultdict(set)
        # room code -> story ids that have a story lock
        self._room_stories = defaultdict(set)

    # ---- Events ----

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _publish(self, room_code: str, event: str, payload: dict) -> None:
        for listener in list(self._listeners):
            try:
                listener(room_code, event, payload)
            except Exception:
                # State is already committed; a failing subscriber must not undo the action
                current_app.logger.exception(f"[publish-error] room={room_code} event={event}")

    # ---- Serialization and bookkeeping ----

    @contextmanager
    def _lock(self, key: str):
        with self._locks_guard:
            lock = self._locks.setdefault(key, threading.RLock())
        with lock:
            try:
                yield
            except NotFound:
                # No lock entry for ids that do not exist
                with self._locks_guard:
                    self._locks.pop(key, None)
                raise

    def _track(self, session):
        self._room_sessions[session.room_code].add(session.id)

    def _discard(self, session):
        # Called with the session lock held; an inactive session takes no further writes
        self.ledger.clear(session.id)
        self._room_sessions[session.room_code].discard(session.id)
        with self._locks_guard:
            self._locks.pop(session.id, None)

    def teardown_room(self, room_code: str) -> None:
        """Drop all ephemeral state for a room (used when it is purged)."""
        session_ids = self._room_sessions.pop(room_code, set())
        story_ids = self._room_stories.pop(room_code, set())
        for session_id in session_ids:
            self.ledger.clear(session_id)
        with self._locks_guard:
            for key in list(session_ids) + [f"story:{s}" for s in story_ids]:
                self._locks.pop(key, None)
        self.gatekeeper.forget_room(room_code)

    def lock_count(self) -> int:
        with self._locks_guard:
            return len(self._locks)

    @staticmethod
    def _commit():
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise Conflict('Conflicting update, please retry') from exc
        except Exception:
            db.session.rollback()
            raise

    @staticmethod
    def _load(session_id) -> VotingSession:
        session = None
        if session_id:
            session = db.session.get(VotingSession, session_id, populate_existing=True)
        if session is None:
            raise NotFound('Voting session not found')
        return session

    @staticmethod
    def _require_active(session):
        if not session.is_active:
            raise InvalidState('Voting session is not active')

    def _config(self, key, default):
        return current_app.config.get(key, default)

    def _default_confidence(self):
        return int(self._config('DEFAULT_CONFIDENCE', 3))

    def _confidence(self, confidence):
        if confidence is None:
            return self._default_confidence()
        if isinstance(confidence, bool):
            raise InvalidInput('Confidence must be a number')
        try:
            confidence = int(confidence)
        except (TypeError, ValueError):
            raise InvalidInput('Confidence must be a number')
        low, high = CONFIDENCE_RANGE
        if not low <= confidence <= high:
            raise InvalidInput(f'Confidence must be between {low} and {high}')
        return confidence

    @staticmethod
    def _duration(value):
        if value is None:
            return None
        try:
            value = int(value)
        except (TypeError, ValueError):
            raise InvalidInput('Timer duration must be a whole number of seconds')
        if value <= 0:
            raise InvalidInput('Timer duration must be positive')
        return value

    @staticmethod
    def _round_entry(round_number, now):
        return {'round': round_number, 'started_at': now, 'completed_at': None,
                'vote_count': 0, 'consensus': False, 'final_estimate': None}

    @staticmethod
    def _close_round(session, now, result):
        rounds = session.rounds
        entry = next((r for r in rounds if r['round'] == session.current_round), None)
        if entry is None:
            entry = VotingCoordinator._round_entry(session.current_round, now)
            rounds.append(entry)
        entry.update(completed_at=now, vote_count=result.total_votes,
                     consensus=result.achieved, final_estimate=result.final_estimate)
        session.rounds = rounds

    @staticmethod
    def _roster_snapshot(room_code):
        return [{'user_id': p.user_id, 'display_name': p.display_name, 'has_voted': False}
                for p in online_participants(room_code)]

    @staticmethod
    def _mark_voted(participants, user_id, display_name):
        for p in participants:
            if p['user_id'] == user_id:
                p['has_voted'] = True
                return participants
        participants.append({'user_id': user_id, 'display_name': display_name, 'has_voted': True})
        return participants

    def _timer_payload(self, session):
        return {
            'story_id': session.story_id,
            'session_id': session.id,
            'round': session.current_round,
            'duration': session.timer_duration,
            'started_at': session.timer_started_at,
            'ends_at': session.timer_ends_at,
            'is_paused': session.is_paused,
            'remaining': timer.remaining(session, self.clock()),
        }

    # ---- Transitions ----

    def create_session(self, ctx, story_id, deck_type=None, timer_seconds=None, custom_deck=None) -> VotingSession:
        story = db.session.get(Story, story_id) if story_id else None
        if story is None:
            raise NotFound('Story not found')
        self.gatekeeper.require_admin(ctx, story.room_code)
        room = story.room
        settings = room.settings
        deck_type = deck_type or settings.get('deck_type') or self._config('DEFAULT_DECK_TYPE', 'fibonacci')
        deck = resolve_deck(deck_type, custom_deck or settings.get('custom_deck'))
        timer_seconds = self._duration(timer_seconds)

        with self._lock(f"story:{story.id}"), ExitStack() as held:
            self._room_stories[story.room_code].add(story.id)
            prior_ids = sorted(s.id for s in VotingSession.query.filter_by(story_id=story.id, is_active=True))
            # Superseding is a write to each prior session: wait out in-flight actions on it
            for prior_id in prior_ids:
                held.enter_context(self._lock(prior_id))
            superseded = []
            if prior_ids:
                superseded = (VotingSession.query
                              .filter(VotingSession.id.in_(prior_ids), VotingSession.is_active.is_(True))
                              .populate_existing().all())

            now = self.clock()
            for prior in superseded:
                prior.is_active = False
                prior.completed_at = now
                prior.completed_by = ctx.user_id
                timer.stop_timer(prior)
                current_app.logger.info(
                    f"[supersede] story={story.id} session={prior.id} phase={prior.phase} round={prior.current_round}"
                )
            if superseded:
                db.session.flush()

            session = VotingSession(
                story_id=story.id,
                room_code=story.room_code,
                phase='voting',
                current_round=1,
                deck_type=deck_type,
                is_active=True,
                votes_revealed=False,
                facilitator_id=ctx.user_id,
                consensus_threshold=float(self._config('CONSENSUS_THRESHOLD', 66.7)),
                is_paused=False,
                paused_duration=0.0,
                created_at=now,
            )
            session.deck = deck
            session.rounds = [self._round_entry(1, now)]
            session.participants = self._roster_snapshot(story.room_code)
            if timer_seconds:
                timer.start_timer(session, now, timer_seconds)
            story.status = 'voting'
            story.last_voted_at = now
            touch_room(room, now)
            db.session.add(session)
            self._commit()

            for prior in superseded:
                self._discard(prior)
            self._track(session)

        current_app.logger.info(
            f"[session-start] room={session.room_code} story={story.id} session={session.id} deck={deck_type} timer={session.timer_duration}"
        )
        self._publish(session.room_code, 'voting_session_started', {'session': session.to_dict()})
        if session.timer_ends_at is not None:
            self._publish(session.room_code, 'timer_started', self._timer_payload(session))
        return session

    @staticmethod
    def _reasoning(reasoning):
        if reasoning is None:
            return None
        reasoning = str(reasoning).strip()
        if len(reasoning) > REASONING_LENGTH:
            raise InvalidInput(f'Reasoning is limited to {REASONING_LENGTH} characters')
        return reasoning or None

    def submit_vote(self, ctx, session_id, value, confidence=None, reasoning=None) -> VoteProgress:
        with self._lock(session_id):
            session = self._load(session_id)
            self.gatekeeper.require_member(ctx, session.room_code)
            self._require_active(session)
            if session.votes_revealed:
                raise InvalidState('Votes have already been revealed for this round')
            now = self.clock()
            if timer.is_expired(session, now):
                raise Expired('Voting time has expired')
            value = '' if value is None else str(value).strip()
            if value not in session.deck:
                raise InvalidInput(f'Vote value {value!r} is not in the {session.deck_type} deck')
            confidence = self._confidence(confidence)
            reasoning = self._reasoning(reasoning)

            session.participants = self._mark_voted(session.participants, ctx.user_id, ctx.display_name)
            self._commit()
            # Committed state is reloaded here; the ledger only follows a session that is still open
            if not session.is_active or session.votes_revealed:
                raise InvalidState('Voting session is no longer accepting votes')

            vote_count = self.ledger.upsert(session.id, LedgerVote(
                user_id=ctx.user_id,
                display_name=ctx.display_name,
                value=value,
                confidence=confidence,
                round_number=session.current_round,
                submitted_at=now,
                reasoning=reasoning,
            ))
            self._track(session)
            # Read count and roster together while holding the session lock
            total = len(online_participants(session.room_code))
            progress = VoteProgress(
                session_id=session.id,
                round_number=session.current_round,
                vote_count=vote_count,
                total_participants=total,
                all_votes_in=total > 0 and vote_count >= total,
            )
            current_app.logger.info(
                f"[vote] session={session.id} round={session.current_round} user={ctx.user_id} progress={vote_count}/{total}"
            )
            self._publish(session.room_code, 'vote_submitted', {
                'story_id': session.story_id,
                'session_id': session.id,
                'user_id': ctx.user_id,
                'display_name': ctx.display_name,
                'vote_count': vote_count,
                'total_participants': total,
            })

            if progress.all_votes_in:
                current_app.logger.info(f"[auto-reveal] session={session.id} round={session.current_round}")
                self._reveal_locked(session, SYSTEM)
                progress.revealed = True
        return progress

    def reveal(self, ctx, session_id) -> RevealResult:
        with self._lock(session_id):
            session = self._load(session_id)
            self.gatekeeper.require_admin(ctx, session.room_code)
            return self._reveal_locked(session, ctx.user_id)

    def _reveal_locked(self, session, revealed_by) -> RevealResult:
        self._require_active(session)
        votes = self.ledger.votes(session.id, session.current_round)
        if session.votes_revealed:
            stored = session.consensus
            consensus = ConsensusResult(**stored) if stored else EMPTY_CONSENSUS
            return RevealResult(session=session, consensus=consensus, votes=votes, already_revealed=True)

        now = self.clock()
        result = calculate_consensus(votes, session.consensus_threshold, self._default_confidence())
        session.votes_revealed = True
        session.phase = 'discussing'
        session.consensus = result.to_dict()
        self._close_round(session, now, result)
        timer.stop_timer(session)
        self._commit()

        current_app.logger.info(
            f"[reveal] session={session.id} round={session.current_round} by={revealed_by} "
            f"votes={result.total_votes} achieved={result.achieved} percentage={result.percentage}"
        )
        self._publish(session.room_code, 'votes_revealed', {
            'story_id': session.story_id,
            'session_id': session.id,
            'round': session.current_round,
            'revealed': True,
            'votes': [v.to_dict() for v in votes],
            'consensus': None if result.is_empty else result.to_dict(),
        })
        return RevealResult(session=session, consensus=result, votes=votes)

    def hide(self, ctx, session_id) -> VotingSession:
        with self._lock(session_id):
            session = self._load(session_id)
            self.gatekeeper.require_admin(ctx, session.room_code)
            self._require_active(session)
            session.votes_revealed = False
            session.phase = 'voting'
            self._commit()
            current_app.logger.info(f"[hide] session={session.id} round={session.current_round} by={ctx.user_id}")
            self._publish(session.room_code, 'votes_revealed', {
                'story_id': session.story_id,
                'session_id': session.id,
                'round': session.current_round,
                'revealed': False,
                'votes': [],
            })
            return session

    def change_deck(self, ctx, session_id, deck_type, custom_deck=None) -> VotingSession:
        """Swap the card deck of an open round before anyone has voted."""
        with self._lock(session_id):
            session = self._load(session_id)
            self.gatekeeper.require_admin(ctx, session.room_code)
            self._require_active(session)
            if session.votes_revealed:
                raise InvalidState('Votes have already been revealed for this round')
            if self.ledger.count(session.id, session.current_round):
                raise InvalidState('The deck cannot change once votes are in; start a new round first')
            deck = resolve_deck(deck_type, custom_deck)
            session.deck_type = deck_type
            session.deck = deck
            self._commit()

            current_app.logger.info(f"[deck] session={session.id} round={session.current_round} deck={deck_type}")
            self._publish(session.room_code, 'deck_type_changed', {
                'story_id': session.story_id,
                'session_id': session.id,
                'deck_type': deck_type,
                'deck': deck,
            })
            return session

    def start_new_round(self, ctx, session_id) -> VotingSession:
        with self._lock(session_id):
            session = self._load(session_id)
            self.gatekeeper.require_admin(ctx, session.room_code)
            self._require_active(session)
            now = self.clock()
            previous = session.current_round
            session.current_round = previous + 1
            session.phase = 'voting'
            session.votes_revealed = False
            session.consensus = None
            session.rounds = session.rounds + [self._round_entry(session.current_round, now)]
            session.participants = self._roster_snapshot(session.room_code)
            if session.timer_duration:
                timer.start_timer(session, now)
            else:
                timer.stop_timer(session)
            self._commit()
            self.ledger.clear(session.id)

            current_app.logger.info(
                f"[new-round] session={session.id} advance round {previous} -> {session.current_round}"
            )
            self._publish(session.room_code, 'voting_reset', {
                'story_id': session.story_id,
                'session_id': session.id,
                'round': session.current_round,
            })
            if session.timer_ends_at is not None:
                self._publish(session.room_code, 'timer_started', self._timer_payload(session))
            return session

    def finalize(self, ctx, session_id, estimate) -> VotingSession:
        with self._lock(session_id):
            session = self._load(session_id)
            self.gatekeeper.require_admin(ctx, session.room_code)
            if session.phase == 'completed':
                raise InvalidState('Voting session is already completed')
            self._require_active(session)
            estimate = '' if estimate is None else str(estimate).strip()
            if not estimate:
                raise InvalidInput('A final estimate is required')
            if len(estimate) > VOTE_VALUE_LENGTH:
                raise InvalidInput('Final estimate is too long')

            now = self.clock()
            votes = self.ledger.votes(session.id, session.current_round)
            for v in votes:
                record = Vote.query.filter_by(session_id=session.id, user_id=v.user_id,
                                              round_number=v.round_number).first()
                if record is None:
                    record = Vote(session_id=session.id, user_id=v.user_id, round_number=v.round_number)
                    db.session.add(record)
                record.story_id = session.story_id
                record.room_code = session.room_code
                record.display_name = v.display_name
                record.value = v.value
                record.confidence = v.confidence
                record.submitted_at = v.submitted_at
                record.reasoning = v.reasoning
                record.is_revealed_vote = True

            result = calculate_consensus(votes, session.consensus_threshold, self._default_confidence())
            session.consensus = result.to_dict()
            self._close_round(session, now, result)
            session.phase = 'completed'
            session.is_active = False
            session.completed_at = now
            session.completed_by = ctx.user_id
            timer.stop_timer(session)
            session.stats = self._session_stats(session, votes)

            story = session.story
            story.status = 'estimated'
            story.estimate_value = estimate
            story.estimate_confidence = result.confidence if result.confidence is not None else float(self._default_confidence())
            story.finalized_by = ctx.user_id
            story.finalized_at = now
            story.last_voted_at = now
            touch_room(story.room, now)
            self._commit()
            self._discard(session)

            current_app.logger.info(
                f"[finalize] session={session.id} story={story.id} estimate={estimate} votes={len(votes)} by={ctx.user_id}"
            )
            self._publish(session.room_code, 'final_estimate_saved', {
                'story_id': story.id,
                'session_id': session.id,
                'final_estimate': estimate,
                'vote_count': len(votes),
            })
            return session

    @staticmethod
    def _session_stats(session, votes):
        # Only the finalized round is persisted, so its votes are the whole durable record
        confidences = [v.confidence for v in votes]
        return {
            'total_rounds': session.current_round,
            'total_participants': len({v.user_id for v in votes}),
            'total_votes': len(votes),
            'average_confidence': round(sum(confidences) / len(confidences), 1) if confidences else None,
        }

    def end(self, ctx, session_id) -> VotingSession:
        with self._lock(session_id):
            session = self._load(session_id)
            self.gatekeeper.require_admin(ctx, session.room_code)
            self._require_active(session)
            now = self.clock()
            session.is_active = False
            session.completed_at = now
            session.completed_by = ctx.user_id
            timer.stop_timer(session)
            story = session.story
            if story.status == 'voting':
                story.status = 'backlog'
            self._commit()
            self._discard(session)

            current_app.logger.info(f"[end] session={session.id} story={story.id} round={session.current_round} by={ctx.user_id}")
            self._publish(session.room_code, 'voting_session_ended', {
                'story_id': story.id,
                'session_id': session.id,
            })
            return session

    # ---- Timer ----

    def start_timer(self, ctx, session_id, duration=None) -> VotingSession:
        with self._lock(session_id):
            session = self._load(session_id)
            self.gatekeeper.require_admin(ctx, session.room_code)
            self._require_active(session)
            if session.votes_revealed:
                raise InvalidState('Votes have already been revealed for this round')
            duration = (self._duration(duration) or session.timer_duration
                        or session.story.room.settings.get('timer_duration')
                        or int(self._config('DEFAULT_TIMER_SEC', 60)))
            timer.start_timer(session, self.clock(), duration)
            self._commit()
            current_app.logger.info(
                f"[timer-set] session={session.id} round={session.current_round} duration={duration}s deadline={session.timer_ends_at}"
            )
            self._publish(session.room_code, 'timer_started', self._timer_payload(session))
            return session

    def stop_timer(self, ctx, session_id) -> VotingSession:
        with self._lock(session_id):
            session = self._load(session_id)
            self.gatekeeper.require_admin(ctx, session.room_code)
            self._require_active(session)
            timer.stop_timer(session)
            self._commit()
            current_app.logger.info(f"[timer-stop] session={session.id} round={session.current_round}")
            self._publish(session.room_code, 'timer_stopped', {
                'story_id': session.story_id,
                'session_id': session.id,
            })
            return session

    def pause_timer(self, ctx, session_id) -> VotingSession:
        with self._lock(session_id):
            session = self._load(session_id)
            self.gatekeeper.require_admin(ctx, session.room_code)
            self._require_active(session)
            if not timer.is_running(session):
                raise InvalidState('No timer is running')
            if not timer.pause_timer(session, self.clock()):
                raise InvalidState('Timer is already paused')
            self._commit()
            current_app.logger.info(f"[timer-pause] session={session.id} remaining={timer.remaining(session, self.clock())}")
            self._publish(session.room_code, 'timer_paused', self._timer_payload(session))
            return session

    def resume_timer(self, ctx, session_id) -> VotingSession:
        with self._lock(session_id):
            session = self._load(session_id)
            self.gatekeeper.require_admin(ctx, session.room_code)
            self._require_active(session)
            if not session.is_paused:
                raise InvalidState('Timer is not paused')
            gap = timer.resume_timer(session, self.clock())
            self._commit()
            current_app.logger.info(f"[timer-resume] session={session.id} gap={gap:.3f}s deadline={session.timer_ends_at}")
            self._publish(session.room_code, 'timer_resumed', self._timer_payload(session))
            return session

    def reveal_if_expired(self, session_id, expected_round, expected_ends_at) -> bool:
        """Reveal as the system when the round's deadline has passed.

        Does nothing unless the same round is still open with the same
        deadline, so a stale watcher cannot reveal a later round.
        """
        with self._lock(session_id):
            session = db.session.get(VotingSession, session_id, populate_existing=True)
            if session is None or not session.is_active or session.votes_revealed:
                return False
            if session.current_round != expected_round or session.is_paused \
                    or session.timer_ends_at is None \
                    or not math.isclose(session.timer_ends_at, expected_ends_at, abs_tol=1e-6):
                current_app.logger.info(f"[timer-abort] session={session_id} mismatch round/deadline")
                return False
            if not timer.is_expired(session, self.clock()):
                return False
            current_app.logger.info(f"[timer-fire] session={session_id} round={expected_round} auto-reveal")
            self._reveal_locked(session, SYSTEM)
            return True

    # ---- Reads ----

    @staticmethod
    def active_session_for_story(story_id) -> Optional[VotingSession]:
        if not story_id:
            return None
        return VotingSession.query.filter_by(story_id=story_id, is_active=True).first()

    def require_session(self, session_id=None, story_id=None) -> VotingSession:
        """Resolve an action's target by session id, else by story id."""
        if session_id:
            return self._load(session_id)
        session = self.active_session_for_story(story_id)
        if session is None:
            raise NotFound('No active voting session found')
        return session

    def session_snapshot(self, session_id) -> dict:
        session = self._load(session_id)
        payload = session.to_dict()
        votes = self.ledger.votes(session.id, session.current_round) if session.is_active else []
        payload['progress'] = {
            'vote_count': len(votes),
            'total_participants': len(online_participants(session.room_code)),
            'voted': [v.user_id for v in votes],
        }
        payload['votes'] = [v.to_dict() for v in votes] if session.votes_revealed else []
        return payload

    @staticmethod
    def list_sessions(room_code, status=None, story_id=None, page=1, limit=20) -> dict:
        query = VotingSession.query.filter_by(room_code=room_code)
        if status == 'active':
            query = query.filter_by(is_active=True)
        elif status == 'completed':
            query = query.filter_by(phase='completed')
        elif status == 'ended':
            query = query.filter(VotingSession.is_active.is_(False), VotingSession.phase != 'completed')
        elif status:
            raise InvalidInput(f'Unknown session status filter: {status}')
        if story_id:
            query = query.filter_by(story_id=story_id)
        page = max(1, int(page))
        limit = max(1, min(100, int(limit)))
        total = query.count()
        sessions = (query.order_by(VotingSession.created_at.desc())
                    .offset((page - 1) * limit).limit(limit).all())
        return {
            'sessions': [s.to_dict() for s in sessions],
            'total': total,
            'page': page,
            'total_pages': math.ceil(total / limit) if total else 0,
        }

    def session_history(self, session_id) -> dict:
        session = self._load(session_id)
        records = (Vote.query.filter_by(session_id=session.id)
                   .order_by(Vote.round_number, Vote.submitted_at).all())
        by_round = defaultdict(list)
        for r in records:
            by_round[r.round_number].append(r.to_dict())
        return {'session': session.to_dict(), 'votes_by_round': dict(by_round)}
