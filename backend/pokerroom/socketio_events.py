from functools import wraps

from flask import current_app, request
from flask_socketio import emit, join_room, leave_room

from pokerroom import db, socketio
from pokerroom.errors import PokerError, Unauthorized
from pokerroom.services import registry
from pokerroom.services.voting import get_coordinator, get_gatekeeper

NAMESPACE = '/ws'


def room_name(room_code: str) -> str:
    return f"room:{room_code}"


def broadcast(room_code, event, payload):
    """Coordinator subscriber: fan an event out to everyone in the room."""
    socketio.emit(event, payload, to=room_name(room_code), namespace=NAMESPACE)


def _users_updated(room_code):
    users = [p.to_dict() for p in registry.online_participants(room_code)]
    socketio.emit('users_updated', users, to=room_name(room_code), namespace=NAMESPACE)


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def action(handler):
    """Action boundary: resolve the caller, run the handler, report errors to the caller only."""
    @wraps(handler)
    def wrapper(data=None):
        data = data or {}
        try:
            ctx = get_gatekeeper().resolve(_get_sid())
            if ctx is None:
                raise Unauthorized('You must join a room first')
            return handler(ctx, data)
        except PokerError as exc:
            current_app.logger.info(f"[action-error] event={handler.__name__} code={exc.code} message={exc.message}")
            emit('error', exc.to_dict())
        except Exception:
            current_app.logger.exception(f"[action-error] event={handler.__name__} unexpected failure")
            db.session.rollback()
            emit('error', {'code': 'internal', 'message': 'Something went wrong, please try again'})
    return wrapper


def _target(data):
    return get_coordinator().require_session(data.get('session_id'), data.get('story_id'))


# ---- Connection lifecycle ----

def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    ctx = get_gatekeeper().unbind(_get_sid())
    if not ctx:
        return
    # Another tab of the same user keeps them online
    if get_gatekeeper().connections_for(ctx.room_code, ctx.user_id):
        return
    registry.leave_room(ctx.room_code, ctx.user_id)
    _users_updated(ctx.room_code)


def handle_join_room(data):
    data = data or {}
    gatekeeper = get_gatekeeper()
    try:
        code = registry.normalize_code(data.get('room_code'))
        room, participant = registry.join_room(code, data.get('user_id'), data.get('display_name'))
    except PokerError as exc:
        emit('error', exc.to_dict())
        return
    previous = gatekeeper.resolve(_get_sid())
    if previous and previous.room_code != code:
        leave_room(room_name(previous.room_code))
        gatekeeper.unbind(_get_sid())
        if not gatekeeper.connections_for(previous.room_code, previous.user_id):
            registry.leave_room(previous.room_code, previous.user_id)
            _users_updated(previous.room_code)
    gatekeeper.bind(_get_sid(), participant.user_id, code, participant.display_name)
    join_room(room_name(code))

    coordinator = get_coordinator()
    active = [coordinator.session_snapshot(s['id'])
              for s in coordinator.list_sessions(code, status='active', limit=100)['sessions']]
    emit('room_joined', {
        'room': room.to_dict(),
        'participant': participant.to_dict(),
        'is_host': room.host_id == participant.user_id,
        'stories': [s.to_dict() for s in registry.list_stories(code)],
        'active_sessions': active,
    })
    _users_updated(code)
    current_app.logger.info(f"[join] room={code} user={participant.user_id} role={participant.role}")


def handle_leave_room(data=None):
    ctx = get_gatekeeper().unbind(_get_sid())
    if not ctx:
        emit('error', Unauthorized('You are not in a room').to_dict())
        return
    leave_room(room_name(ctx.room_code))
    if not get_gatekeeper().connections_for(ctx.room_code, ctx.user_id):
        registry.leave_room(ctx.room_code, ctx.user_id)
    emit('room_left', {'room_code': ctx.room_code, 'user_id': ctx.user_id})
    _users_updated(ctx.room_code)


def handle_ping(data):
    emit('pong', data or {})


# ---- Voting actions ----

@action
def start_voting_session(ctx, data):
    session = get_coordinator().create_session(
        ctx,
        data.get('story_id'),
        deck_type=data.get('deck_type'),
        timer_seconds=data.get('timer_seconds'),
        custom_deck=data.get('custom_deck'),
    )
    return {'session_id': session.id}


@action
def submit_vote(ctx, data):
    session = _target(data)
    progress = get_coordinator().submit_vote(ctx, session.id, data.get('value'), data.get('confidence'),
                                             reasoning=data.get('reasoning'))
    return progress.to_dict()


@action
def reveal_votes(ctx, data):
    session = _target(data)
    # Legacy toggle: reveal_votes with revealed=false hides
    if data.get('revealed') is False:
        get_coordinator().hide(ctx, session.id)
        return {'revealed': False}
    result = get_coordinator().reveal(ctx, session.id)
    if result.already_revealed:
        # Nothing changed; only the caller needs the results again
        emit('votes_revealed', {
            'story_id': session.story_id,
            'session_id': session.id,
            'round': session.current_round,
            'revealed': True,
            'votes': [v.to_dict() for v in result.votes],
            'consensus': None if result.consensus.is_empty else result.consensus.to_dict(),
        })
    return {'revealed': True}


@action
def change_deck_type(ctx, data):
    session = _target(data)
    session = get_coordinator().change_deck(ctx, session.id, data.get('deck_type'), data.get('custom_deck'))
    return {'deck_type': session.deck_type, 'deck': session.deck}


@action
def hide_votes(ctx, data):
    session = _target(data)
    get_coordinator().hide(ctx, session.id)
    return {'revealed': False}


@action
def reset_voting(ctx, data):
    session = _target(data)
    session = get_coordinator().start_new_round(ctx, session.id)
    return {'round': session.current_round}


@action
def end_voting_session(ctx, data):
    session = _target(data)
    get_coordinator().end(ctx, session.id)
    return {'ended': True}


@action
def save_final_estimate(ctx, data):
    session = _target(data)
    get_coordinator().finalize(ctx, session.id, data.get('final_estimate'))
    return {'saved': True}


@action
def start_timer(ctx, data):
    session = _target(data)
    session = get_coordinator().start_timer(ctx, session.id, data.get('duration'))
    return {'ends_at': session.timer_ends_at}


@action
def stop_timer(ctx, data):
    session = _target(data)
    get_coordinator().stop_timer(ctx, session.id)
    return {'stopped': True}


@action
def pause_timer(ctx, data):
    session = _target(data)
    get_coordinator().pause_timer(ctx, session.id)
    return {'paused': True}


@action
def resume_timer(ctx, data):
    session = _target(data)
    session = get_coordinator().resume_timer(ctx, session.id)
    return {'ends_at': session.timer_ends_at}


# ---- Roles ----

def _change_role(ctx, data, role, event):
    target = registry.set_role(ctx.room_code, ctx.user_id, data.get('target_user_id'), role)
    socketio.emit(event, {'user_id': target.user_id, 'display_name': target.display_name, 'role': target.role},
                  to=room_name(ctx.room_code), namespace=NAMESPACE)
    admins = [p.to_dict() for p in registry.room_admins(ctx.room_code)]
    socketio.emit('room_admins_updated', {'admins': admins}, to=room_name(ctx.room_code), namespace=NAMESPACE)
    return {'role': target.role}


@action
def promote_to_admin(ctx, data):
    return _change_role(ctx, data, 'facilitator', 'user_promoted_to_admin')


@action
def demote_from_admin(ctx, data):
    return _change_role(ctx, data, 'participant', 'user_demoted_from_admin')


@action
def get_room_admins(ctx, data):
    admins = [p.to_dict() for p in registry.room_admins(ctx.room_code)]
    emit('room_admins_list', {'room_code': ctx.room_code, 'admins': admins})


ACTIONS = {
    'start_voting_session': start_voting_session,
    'submit_vote': submit_vote,
    'reveal_votes': reveal_votes,
    'hide_votes': hide_votes,
    'change_deck_type': change_deck_type,
    'reset_voting': reset_voting,
    'end_voting_session': end_voting_session,
    'save_final_estimate': save_final_estimate,
    'start_timer': start_timer,
    'stop_timer': stop_timer,
    'pause_timer': pause_timer,
    'resume_timer': resume_timer,
    'promote_to_admin': promote_to_admin,
    'demote_from_admin': demote_from_admin,
    'get_room_admins': get_room_admins,
}


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on namespace '/ws'."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('join_room', handle_join_room, namespace=NAMESPACE)
    socketio.on_event('leave_room', handle_leave_room, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)
    for name, handler in ACTIONS.items():
        socketio.on_event(name, handler, namespace=NAMESPACE)
