from flask import Blueprint, current_app, jsonify, request

from pokerroom.errors import InvalidInput, NotFound, PokerError
from pokerroom.services import registry
from pokerroom.services.voting import get_coordinator
from pokerroom.socketio_events import NAMESPACE, room_name
from pokerroom import socketio


rooms = Blueprint('rooms', __name__)


@rooms.errorhandler(PokerError)
def handle_poker_error(exc):
    return jsonify({'error': exc.message, 'code': exc.code}), exc.status


def _int_arg(name, default):
    raw = request.args.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidInput(f'{name} must be a number')


@rooms.route('/create', methods=['POST'])
def create_room():
    data = request.get_json(silent=True) or {}
    room = registry.create_room(
        data.get('host_id'),
        data.get('host_name'),
        data.get('name'),
        description=data.get('description'),
        settings=data.get('settings'),
    )
    return jsonify({
        'message': 'New room created!',
        'room_code': room.code,
    }), 201


@rooms.route('/join', methods=['POST'])
def join_room():
    data = request.get_json(silent=True) or {}
    room_code = data.get('room_code')
    if not all([room_code, data.get('user_id'), data.get('display_name')]):
        return jsonify({'error': 'Room code, user id and display name are required'}), 400
    _, participant = registry.join_room(room_code, data['user_id'], data['display_name'])
    return jsonify(participant.to_dict()), 201


@rooms.route('/<string:room_code>/stories', methods=['POST'])
def create_story(room_code):
    data = request.get_json(silent=True) or {}
    story = registry.create_story(room_code, data.get('user_id'), data.get('title'), data.get('description'))
    code = story.room_code
    stories = [s.to_dict() for s in registry.list_stories(code)]
    # Emit live update to all clients in the room
    socketio.emit('stories_updated', {'room_code': code, 'stories': stories}, to=room_name(code), namespace=NAMESPACE)
    return jsonify(story.to_dict()), 201


@rooms.route('/<string:room_code>/stories', methods=['GET'])
def list_stories(room_code):
    return jsonify([s.to_dict() for s in registry.list_stories(room_code)])


@rooms.route('/<string:room_code>/state', methods=['GET'])
def get_room_state(room_code):
    room = registry.get_room(room_code)
    coordinator = get_coordinator()
    active = coordinator.list_sessions(room.code, status='active', limit=100)['sessions']
    payload = room.to_dict()
    payload['stories'] = [s.to_dict() for s in registry.list_stories(room.code)]
    payload['active_sessions'] = [coordinator.session_snapshot(s['id']) for s in active]
    payload['consensus_threshold'] = current_app.config.get('CONSENSUS_THRESHOLD', 66.7)
    return jsonify(payload)


@rooms.route('/<string:room_code>/sessions', methods=['GET'])
def list_sessions(room_code):
    room = registry.get_room(room_code)
    result = get_coordinator().list_sessions(
        room.code,
        status=request.args.get('status'),
        story_id=request.args.get('story_id'),
        page=_int_arg('page', 1),
        limit=_int_arg('limit', 20),
    )
    return jsonify(result)


def _session_in_room(room_code, session_id):
    room = registry.get_room(room_code)
    snapshot = get_coordinator().session_snapshot(session_id)
    if snapshot['room_code'] != room.code:
        raise NotFound('Voting session not found')
    return snapshot


@rooms.route('/<string:room_code>/sessions/<string:session_id>', methods=['GET'])
def get_session(room_code, session_id):
    return jsonify(_session_in_room(room_code, session_id))


@rooms.route('/<string:room_code>/sessions/<string:session_id>/votes', methods=['GET'])
def get_session_votes(room_code, session_id):
    _session_in_room(room_code, session_id)
    return jsonify(get_coordinator().session_history(session_id))
