from pokerroom import db
import json
import random
import string
import time
import uuid

ROOM_CODE_LENGTH = 6
VOTE_VALUE_LENGTH = 16
ROLES = ('host', 'facilitator', 'participant')
ADMIN_ROLES = ('host', 'facilitator')
STORY_STATUSES = ('backlog', 'ready', 'voting', 'voted', 'estimated', 'completed', 'archived')
SESSION_PHASES = ('starting', 'voting', 'discussing', 'finalizing', 'completed')


def _loads(raw, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


def generate_room_code(length=ROOM_CODE_LENGTH, attempts=10):
    """Generate a unique room code of uppercase letters and digits."""
    for _ in range(attempts):
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        if not db.session.get(Room, code):
            return code
    raise RuntimeError('Failed to generate unique room code')


def new_id(prefix):
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class Room(db.Model):
    __tablename__ = 'room'
    code = db.Column(db.String(ROOM_CODE_LENGTH), primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    host_id = db.Column(db.String(64), nullable=False)
    # JSON-encoded room settings (deck_type, custom_deck, timer_duration, auto_reveal)
    settings_json = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), default='active', nullable=False)  # active, archived
    created_at = db.Column(db.Float, default=time.time, nullable=False)
    last_activity = db.Column(db.Float, default=time.time, nullable=False)
    expires_at = db.Column(db.Float, nullable=False, index=True)
    participants = db.relationship('Participant', back_populates='room', cascade='all, delete-orphan',
                                   order_by='Participant.id')
    stories = db.relationship('Story', back_populates='room', cascade='all, delete-orphan',
                              lazy='dynamic')

    @property
    def settings(self):
        return _loads(self.settings_json, {})

    @settings.setter
    def settings(self, value):
        self.settings_json = json.dumps(value or {})

    def participant(self, user_id):
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None

    def is_admin(self, user_id):
        p = self.participant(user_id)
        return bool(p and p.role in ADMIN_ROLES)

    def to_dict(self):
        return {
            'code': self.code,
            'name': self.name,
            'description': self.description,
            'host_id': self.host_id,
            'settings': self.settings,
            'status': self.status,
            'participants': [p.to_dict() for p in self.participants],
            'last_activity': self.last_activity,
            'expires_at': self.expires_at,
        }


class Participant(db.Model):
    __tablename__ = 'participant'
    __table_args__ = (db.UniqueConstraint('room_code', 'user_id', name='uq_participant_room_user'),)
    id = db.Column(db.Integer, primary_key=True)
    room_code = db.Column(db.String(ROOM_CODE_LENGTH), db.ForeignKey('room.code'), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=False)
    display_name = db.Column(db.String(64), nullable=False)
    role = db.Column(db.String(16), default='participant', nullable=False)
    is_online = db.Column(db.Boolean, default=False, nullable=False)
    joined_at = db.Column(db.Float, default=time.time, nullable=False)
    last_activity = db.Column(db.Float, default=time.time, nullable=False)
    room = db.relationship('Room', back_populates='participants')

    @property
    def is_admin(self):
        return self.role in ADMIN_ROLES

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'display_name': self.display_name,
            'role': self.role,
            'is_online': self.is_online,
            'last_activity': self.last_activity,
        }


class Story(db.Model):
    __tablename__ = 'story'
    id = db.Column(db.String(40), primary_key=True, default=lambda: new_id('story'))
    room_code = db.Column(db.String(ROOM_CODE_LENGTH), db.ForeignKey('room.code'), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), default='backlog', nullable=False)
    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.Float, default=time.time, nullable=False)
    last_voted_at = db.Column(db.Float, nullable=True)
    # Finalized estimate
    estimate_value = db.Column(db.String(VOTE_VALUE_LENGTH), nullable=True)
    estimate_confidence = db.Column(db.Float, nullable=True)
    finalized_by = db.Column(db.String(64), nullable=True)
    finalized_at = db.Column(db.Float, nullable=True)
    room = db.relationship('Room', back_populates='stories')

    def to_dict(self):
        estimate = None
        if self.estimate_value is not None:
            estimate = {
                'value': self.estimate_value,
                'confidence': self.estimate_confidence,
                'finalized_by': self.finalized_by,
                'finalized_at': self.finalized_at,
            }
        return {
            'id': self.id,
            'room_code': self.room_code,
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'estimate': estimate,
        }


class VotingSession(db.Model):
    __tablename__ = 'voting_session'
    __table_args__ = (
        # At most one active session per story
        db.Index('uq_active_session_per_story', 'story_id', unique=True,
                 sqlite_where=db.text('is_active'), postgresql_where=db.text('is_active')),
    )
    id = db.Column(db.String(40), primary_key=True, default=lambda: new_id('session'))
    story_id = db.Column(db.String(40), db.ForeignKey('story.id'), nullable=False, index=True)
    room_code = db.Column(db.String(ROOM_CODE_LENGTH), db.ForeignKey('room.code'), nullable=False, index=True)
    phase = db.Column(db.String(16), default='starting', nullable=False)
    current_round = db.Column(db.Integer, default=1, nullable=False)
    deck_type = db.Column(db.String(16), nullable=False)
    deck_json = db.Column(db.Text, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    votes_revealed = db.Column(db.Boolean, default=False, nullable=False)
    facilitator_id = db.Column(db.String(64), nullable=False)
    consensus_threshold = db.Column(db.Float, nullable=False)
    # Timer: wall-clock seconds; timer_duration is None when no timer is configured
    timer_duration = db.Column(db.Integer, nullable=True)
    timer_started_at = db.Column(db.Float, nullable=True)
    timer_ends_at = db.Column(db.Float, nullable=True)
    is_paused = db.Column(db.Boolean, default=False, nullable=False)
    paused_at = db.Column(db.Float, nullable=True)
    paused_duration = db.Column(db.Float, default=0.0, nullable=False)
    # JSON-encoded derived state
    consensus_json = db.Column(db.Text, nullable=True)
    rounds_json = db.Column(db.Text, nullable=True)
    participants_json = db.Column(db.Text, nullable=True)
    stats_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.Float, default=time.time, nullable=False)
    completed_at = db.Column(db.Float, nullable=True)
    completed_by = db.Column(db.String(64), nullable=True)
    story = db.relationship('Story')

    @property
    def deck(self):
        return _loads(self.deck_json, [])

    @deck.setter
    def deck(self, values):
        self.deck_json = json.dumps(list(values))

    @property
    def consensus(self):
        return _loads(self.consensus_json, None)

    @consensus.setter
    def consensus(self, value):
        self.consensus_json = json.dumps(value) if value is not None else None

    @property
    def rounds(self):
        return _loads(self.rounds_json, [])

    @rounds.setter
    def rounds(self, value):
        self.rounds_json = json.dumps(value)

    @property
    def participants(self):
        return _loads(self.participants_json, [])

    @participants.setter
    def participants(self, value):
        self.participants_json = json.dumps(value)

    @property
    def stats(self):
        return _loads(self.stats_json, None)

    @stats.setter
    def stats(self, value):
        self.stats_json = json.dumps(value) if value is not None else None

    def to_dict(self):
        return {
            'id': self.id,
            'story_id': self.story_id,
            'room_code': self.room_code,
            'phase': self.phase,
            'current_round': self.current_round,
            'deck_type': self.deck_type,
            'deck': self.deck,
            'is_active': self.is_active,
            'votes_revealed': self.votes_revealed,
            'facilitator_id': self.facilitator_id,
            'consensus_threshold': self.consensus_threshold,
            'timer': {
                'duration': self.timer_duration,
                'started_at': self.timer_started_at,
                'ends_at': self.timer_ends_at,
                'is_paused': self.is_paused,
                'paused_at': self.paused_at,
                'paused_duration': self.paused_duration,
            },
            'consensus': self.consensus,
            'rounds': self.rounds,
            'participants': self.participants,
            'stats': self.stats,
            'created_at': self.created_at,
            'completed_at': self.completed_at,
        }


class Vote(db.Model):
    """A finalized vote. In-flight votes live in the vote ledger only."""
    __tablename__ = 'vote'
    __table_args__ = (
        db.UniqueConstraint('session_id', 'user_id', 'round_number', name='uq_vote_session_user_round'),
    )
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(40), db.ForeignKey('voting_session.id'), nullable=False, index=True)
    story_id = db.Column(db.String(40), db.ForeignKey('story.id'), nullable=False)
    room_code = db.Column(db.String(ROOM_CODE_LENGTH), db.ForeignKey('room.code'), nullable=False)
    user_id = db.Column(db.String(64), nullable=False)
    display_name = db.Column(db.String(64), nullable=False)
    value = db.Column(db.String(VOTE_VALUE_LENGTH), nullable=False)
    confidence = db.Column(db.Integer, nullable=False)
    reasoning = db.Column(db.Text, nullable=True)
    round_number = db.Column(db.Integer, nullable=False)
    submitted_at = db.Column(db.Float, nullable=False)
    is_revealed_vote = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'display_name': self.display_name,
            'value': self.value,
            'confidence': self.confidence,
            'reasoning': self.reasoning,
            'round_number': self.round_number,
            'submitted_at': self.submitted_at,
            'is_revealed_vote': self.is_revealed_vote,
        }
