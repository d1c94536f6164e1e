"""Rooms, their participant rosters and their backlog stories.

Thin persistence helpers used by the HTTP routes and socket handlers. The
voting coordinator reads from here but only writes story status and
estimate fields.
"""

import re
import time

from flask import current_app

from pokerroom import db
from pokerroom.errors import InvalidInput, NotFound, Unauthorized
from pokerroom.models import (ADMIN_ROLES, Participant, Room, Story, Vote,
                              VotingSession, generate_room_code)

ROOM_CODE_RE = re.compile(r'^[A-Z0-9]{6}$')
DAY = 24 * 60 * 60


def _retention_seconds():
    return int(current_app.config.get('ROOM_RETENTION_DAYS', 7)) * DAY


def normalize_code(code):
    code = (code or '').strip().upper()
    if not ROOM_CODE_RE.match(code):
        raise InvalidInput('Invalid room code format')
    return code


def touch_room(room, now=None):
    now = now or time.time()
    room.last_activity = now
    if room.status == 'active':
        room.expires_at = now + _retention_seconds()


def get_room(code):
    room = db.session.get(Room, normalize_code(code))
    if room is None:
        raise NotFound('Room not found')
    return room


def create_room(host_id, host_name, name, description=None, settings=None):
    if not host_id or not host_name or not name:
        raise InvalidInput('host_id, host_name and name are required')
    now = time.time()
    room = Room(
        code=generate_room_code(),
        name=name[:100],
        description=(description or '')[:500],
        host_id=host_id,
        created_at=now,
        last_activity=now,
        expires_at=now + _retention_seconds(),
    )
    room.settings = {
        'deck_type': current_app.config.get('DEFAULT_DECK_TYPE', 'fibonacci'),
        'custom_deck': [],
        'timer_duration': int(current_app.config.get('DEFAULT_TIMER_SEC', 60)),
        **(settings or {}),
    }
    room.participants.append(Participant(user_id=host_id, display_name=host_name, role='host',
                                         is_online=False, joined_at=now, last_activity=now))
    db.session.add(room)
    db.session.commit()
    current_app.logger.info(f"[room-create] room={room.code} host={host_id}")
    return room


def join_room(code, user_id, display_name, role='participant'):
    """Add or refresh a roster entry and mark it online."""
    if not user_id or not display_name:
        raise InvalidInput('user_id and display_name are required')
    room = get_room(code)
    now = time.time()
    participant = room.participant(user_id)
    if participant is None:
        limit = int(current_app.config.get('MAX_PARTICIPANTS', 30))
        if len(room.participants) >= limit:
            raise InvalidInput(f'Room cannot have more than {limit} participants')
        participant = Participant(user_id=user_id, display_name=display_name, role=role, joined_at=now)
        room.participants.append(participant)
    participant.display_name = display_name
    participant.is_online = True
    participant.last_activity = now
    touch_room(room, now)
    db.session.commit()
    return room, participant


def leave_room(code, user_id):
    room = db.session.get(Room, code)
    if room is None:
        return None
    participant = room.participant(user_id)
    if participant is not None:
        participant.is_online = False
        participant.last_activity = time.time()
    touch_room(room)
    db.session.commit()
    return participant


def online_participants(code):
    return Participant.query.filter_by(room_code=code, is_online=True).order_by(Participant.id).all()


def room_admins(code):
    return Participant.query.filter(Participant.room_code == code, Participant.role.in_(ADMIN_ROLES)).all()


def set_role(code, requester_id, target_id, role):
    """Promote to facilitator or demote to participant. Host only."""
    if role not in ('facilitator', 'participant'):
        raise InvalidInput('Role must be facilitator or participant')
    room = get_room(code)
    if room.host_id != requester_id:
        raise Unauthorized('Only the host can change roles')
    target = room.participant(target_id)
    if target is None:
        raise NotFound('Participant not found')
    if target.role == 'host':
        raise InvalidInput('The host role cannot be changed')
    target.role = role
    touch_room(room)
    db.session.commit()
    current_app.logger.info(f"[role] room={room.code} user={target_id} role={role}")
    return target


def create_story(code, requester_id, title, description=None):
    room = get_room(code)
    if not room.is_admin(requester_id):
        raise Unauthorized('Only room admin can add stories')
    if not title or not title.strip():
        raise InvalidInput('Story title is required')
    story = Story(room_code=room.code, title=title.strip()[:200], description=description,
                  status='backlog', created_by=requester_id)
    db.session.add(story)
    touch_room(room)
    db.session.commit()
    return story


def list_stories(code):
    room = get_room(code)
    return room.stories.order_by(Story.created_at).all()


def purge_expired_rooms(coordinator=None, now=None):
    """Delete rooms past their retention window; returns the purged codes."""
    now = now or time.time()
    expired = Room.query.filter(Room.expires_at < now).all()
    codes = []
    for room in expired:
        code = room.code
        session_ids = [s.id for s in VotingSession.query.filter_by(room_code=code).all()]
        if session_ids:
            Vote.query.filter(Vote.session_id.in_(session_ids)).delete(synchronize_session=False)
            VotingSession.query.filter(VotingSession.id.in_(session_ids)).delete(synchronize_session=False)
        Story.query.filter_by(room_code=code).delete(synchronize_session=False)
        db.session.delete(room)
        codes.append(code)
    db.session.commit()
    if coordinator is not None:
        for code in codes:
            coordinator.teardown_room(code)
    for code in codes:
        current_app.logger.info(f"[purge] room={code}")
    return codes
