from pokerroom import socketio

NS = '/ws'


def names(packets):
    return [p['name'] for p in packets]


def first(packets, name):
    return next(p['args'][0] for p in packets if p['name'] == name)


def connect(flask_app):
    return socketio.test_client(flask_app, namespace=NS)


def setup_room(client):
    code = client.post('/api/rooms/create', json={'host_id': 'host-1', 'host_name': 'Hana',
                                                  'name': 'Sprint 42'}).get_json()['room_code']
    story = client.post(f'/api/rooms/{code}/stories', json={'user_id': 'host-1', 'title': 'Login'}).get_json()
    return code, story['id']


def join(sio, code, user_id, name):
    sio.emit('join_room', {'room_code': code, 'user_id': user_id, 'display_name': name}, namespace=NS)
    return sio.get_received(NS)


def test_socket_connect_and_ping(sio_client):
    assert sio_client.is_connected(NS)
    assert 'connected' in names(sio_client.get_received(NS))
    sio_client.emit('ping', {'n': 1}, namespace=NS)
    assert first(sio_client.get_received(NS), 'pong') == {'n': 1}


def test_join_room_sends_room_state(client, sio_client):
    code, story_id = setup_room(client)
    sio_client.get_received(NS)
    received = join(sio_client, code, 'host-1', 'Hana')
    joined = first(received, 'room_joined')
    assert joined['is_host'] is True
    assert joined['room']['code'] == code
    assert [s['id'] for s in joined['stories']] == [story_id]
    assert [u['user_id'] for u in first(received, 'users_updated')] == ['host-1']


def test_join_unknown_room_reports_error(sio_client):
    sio_client.get_received(NS)
    received = join(sio_client, 'ZZZ999', 'u1', 'U')
    assert first(received, 'error')['code'] == 'not_found'


def test_actions_require_joining_first(sio_client):
    sio_client.get_received(NS)
    sio_client.emit('submit_vote', {'story_id': 'story_x', 'value': '3'}, namespace=NS)
    assert first(sio_client.get_received(NS), 'error')['code'] == 'unauthorized'


def test_voting_round_over_sockets(flask_app, client):
    code, story_id = setup_room(client)
    host = connect(flask_app)
    alice = connect(flask_app)
    join(host, code, 'host-1', 'Hana')
    join(alice, code, 'u-alice', 'Alice')
    host.get_received(NS)

    ack = host.emit('start_voting_session', {'story_id': story_id, 'deck_type': 'fibonacci'},
                    namespace=NS, callback=True)
    session_id = ack['session_id']
    started = first(alice.get_received(NS), 'voting_session_started')
    assert started['session']['id'] == session_id
    host.get_received(NS)

    progress = alice.emit('submit_vote', {'story_id': story_id, 'value': '5', 'confidence': 4},
                          namespace=NS, callback=True)
    assert progress['vote_count'] == 1
    assert progress['total_participants'] == 2
    submitted = first(host.get_received(NS), 'vote_submitted')
    assert submitted['user_id'] == 'u-alice'
    alice.get_received(NS)

    # Non-admin reveal: only the caller hears about it
    alice.emit('reveal_votes', {'session_id': session_id}, namespace=NS)
    assert first(alice.get_received(NS), 'error')['code'] == 'unauthorized'
    assert 'votes_revealed' not in names(host.get_received(NS))

    host.emit('reveal_votes', {'session_id': session_id}, namespace=NS)
    revealed = first(alice.get_received(NS), 'votes_revealed')
    assert revealed['revealed'] is True
    assert revealed['votes'][0]['value'] == '5'
    assert revealed['consensus']['final_estimate'] == '5'
    host.get_received(NS)

    # Voting after reveal is an invalid state for the caller only
    alice.emit('submit_vote', {'session_id': session_id, 'value': '8'}, namespace=NS)
    assert first(alice.get_received(NS), 'error')['code'] == 'invalid_state'
    assert 'vote_submitted' not in names(host.get_received(NS))

    # A repeated reveal only answers the caller
    host.emit('reveal_votes', {'session_id': session_id}, namespace=NS)
    assert 'votes_revealed' in names(host.get_received(NS))
    assert 'votes_revealed' not in names(alice.get_received(NS))

    ack = host.emit('save_final_estimate', {'session_id': session_id, 'final_estimate': '5'},
                    namespace=NS, callback=True)
    assert ack == {'saved': True}
    saved = first(alice.get_received(NS), 'final_estimate_saved')
    assert saved['final_estimate'] == '5'

    host.disconnect(namespace=NS)
    alice.disconnect(namespace=NS)


def test_reset_and_end_over_sockets(flask_app, client):
    code, story_id = setup_room(client)
    host = connect(flask_app)
    join(host, code, 'host-1', 'Hana')
    host.emit('start_voting_session', {'story_id': story_id}, namespace=NS, callback=True)
    host.get_received(NS)

    ack = host.emit('reset_voting', {'story_id': story_id}, namespace=NS, callback=True)
    assert ack == {'round': 2}
    assert first(host.get_received(NS), 'voting_reset')['round'] == 2

    host.emit('end_voting_session', {'story_id': story_id}, namespace=NS)
    assert 'voting_session_ended' in names(host.get_received(NS))
    host.emit('reveal_votes', {'story_id': story_id}, namespace=NS)
    assert first(host.get_received(NS), 'error')['code'] == 'not_found'
    host.disconnect(namespace=NS)


def test_timer_events_over_sockets(flask_app, client):
    code, story_id = setup_room(client)
    host = connect(flask_app)
    join(host, code, 'host-1', 'Hana')
    host.emit('start_voting_session', {'story_id': story_id}, namespace=NS, callback=True)
    host.get_received(NS)

    ack = host.emit('start_timer', {'story_id': story_id, 'duration': 90}, namespace=NS, callback=True)
    assert ack['ends_at'] is not None
    assert first(host.get_received(NS), 'timer_started')['duration'] == 90

    host.emit('pause_timer', {'story_id': story_id}, namespace=NS)
    assert first(host.get_received(NS), 'timer_paused')['is_paused'] is True
    host.emit('pause_timer', {'story_id': story_id}, namespace=NS)
    assert first(host.get_received(NS), 'error')['code'] == 'invalid_state'
    host.emit('resume_timer', {'story_id': story_id}, namespace=NS)
    assert 'timer_resumed' in names(host.get_received(NS))
    host.emit('stop_timer', {'story_id': story_id}, namespace=NS)
    assert 'timer_stopped' in names(host.get_received(NS))
    host.disconnect(namespace=NS)


def test_promote_and_demote(flask_app, client):
    code, story_id = setup_room(client)
    host = connect(flask_app)
    alice = connect(flask_app)
    join(host, code, 'host-1', 'Hana')
    join(alice, code, 'u-alice', 'Alice')
    host.get_received(NS)

    alice.emit('promote_to_admin', {'target_user_id': 'u-alice'}, namespace=NS)
    assert first(alice.get_received(NS), 'error')['code'] == 'unauthorized'

    host.emit('promote_to_admin', {'target_user_id': 'u-alice'}, namespace=NS)
    promoted = first(alice.get_received(NS), 'user_promoted_to_admin')
    assert promoted['role'] == 'facilitator'

    # Promotion takes effect on the next action
    ack = alice.emit('start_voting_session', {'story_id': story_id}, namespace=NS, callback=True)
    assert 'session_id' in ack

    alice.emit('get_room_admins', {}, namespace=NS)
    admins = first(alice.get_received(NS), 'room_admins_list')['admins']
    assert {a['user_id'] for a in admins} == {'host-1', 'u-alice'}

    host.emit('demote_from_admin', {'target_user_id': 'u-alice'}, namespace=NS)
    assert first(alice.get_received(NS), 'user_demoted_from_admin')['role'] == 'participant'
    host.disconnect(namespace=NS)
    alice.disconnect(namespace=NS)


def test_disconnect_marks_participant_offline(flask_app, client):
    code, _ = setup_room(client)
    host = connect(flask_app)
    alice = connect(flask_app)
    join(host, code, 'host-1', 'Hana')
    join(alice, code, 'u-alice', 'Alice')
    host.get_received(NS)

    alice.disconnect(namespace=NS)
    online = first(host.get_received(NS), 'users_updated')
    assert [u['user_id'] for u in online] == ['host-1']
    host.disconnect(namespace=NS)


def test_leave_room(flask_app, client):
    code, _ = setup_room(client)
    host = connect(flask_app)
    join(host, code, 'host-1', 'Hana')
    host.emit('leave_room', {}, namespace=NS)
    assert first(host.get_received(NS), 'room_left') == {'room_code': code, 'user_id': 'host-1'}
    host.emit('leave_room', {}, namespace=NS)
    assert first(host.get_received(NS), 'error')['code'] == 'unauthorized'
    host.disconnect(namespace=NS)


def test_change_deck_type_over_sockets(flask_app, client):
    code, story_id = setup_room(client)
    host = connect(flask_app)
    alice = connect(flask_app)
    join(host, code, 'host-1', 'Hana')
    join(alice, code, 'u-alice', 'Alice')
    host.emit('start_voting_session', {'story_id': story_id}, namespace=NS, callback=True)
    host.get_received(NS)
    alice.get_received(NS)

    alice.emit('change_deck_type', {'story_id': story_id, 'deck_type': 'tShirt'}, namespace=NS)
    assert first(alice.get_received(NS), 'error')['code'] == 'unauthorized'

    ack = host.emit('change_deck_type', {'story_id': story_id, 'deck_type': 'tShirt'}, namespace=NS, callback=True)
    assert ack['deck_type'] == 'tShirt'
    changed = first(alice.get_received(NS), 'deck_type_changed')
    assert changed['deck'][0] == 'XS'

    alice.emit('submit_vote', {'story_id': story_id, 'value': 'L', 'reasoning': 'Two services change'},
               namespace=NS, callback=True)
    host.get_received(NS)
    host.emit('reveal_votes', {'story_id': story_id}, namespace=NS)
    revealed = first(alice.get_received(NS), 'votes_revealed')
    assert revealed['votes'][0]['reasoning'] == 'Two services change'

    host.emit('change_deck_type', {'story_id': story_id, 'deck_type': 'fibonacci'}, namespace=NS)
    assert first(host.get_received(NS), 'error')['code'] == 'invalid_state'
    host.disconnect(namespace=NS)
    alice.disconnect(namespace=NS)
