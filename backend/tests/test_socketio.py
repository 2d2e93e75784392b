import json
from urllib.parse import urlencode

from yahtzee.realtime import events as ev


def create(client, name='Alice'):
    return client.post('/api/rooms', json={'player_name': name}).get_json()


def join(client, code, name):
    return client.post('/api/rooms/join', json={'room_code': code, 'player_name': name}).get_json()


def connect(socketio, flask_app, creds, **overrides):
    query = {
        'room_code': creds['room_code'],
        'player_id': creds['player_id'],
        'token': creds['token'],
    }
    query.update(overrides)
    return socketio.test_client(flask_app, query_string=urlencode(query))


def frames(sio_client):
    """Decoded JSON frames delivered on the plain message channel.

    A client the server already disconnected still holds what it was sent
    before the disconnect, but refuses get_received().
    """
    if sio_client.is_connected():
        received = sio_client.get_received()
    else:
        received, sio_client.queue = sio_client.queue, []
    out = []
    for item in received:
        if item['name'] != 'message':
            continue
        data = item['args']
        out.append(json.loads(data) if isinstance(data, str) else data)
    return out


def test_unknown_room_is_refused(socketio, flask_app):
    sio = connect(socketio, flask_app, {'room_code': 'NOPE42', 'player_id': 'x', 'token': 'y'})
    assert not sio.is_connected()


def test_bad_token_is_refused(client, socketio, flask_app):
    host = create(client)
    sio = connect(socketio, flask_app, host, token='wrong')
    assert not sio.is_connected()


def test_auth_payload_is_accepted(client, socketio, flask_app):
    host = create(client)
    sio = socketio.test_client(flask_app, auth=host)

    assert sio.is_connected()
    assert [f['type'] for f in frames(sio)] == [ev.PLAYER_JOINED]


def test_connect_greets_and_announces(client, socketio, flask_app):
    host = create(client)
    guest = join(client, host['room_code'], 'Bob')
    host_sio = connect(socketio, flask_app, host)
    frames(host_sio)

    guest_sio = connect(socketio, flask_app, guest)

    assert guest_sio.is_connected()
    greeted = {f['player_id'] for f in frames(guest_sio) if f['type'] == ev.PLAYER_JOINED}
    assert greeted == {host['player_id'], guest['player_id']}
    announced = frames(host_sio)
    assert [f['player_id'] for f in announced] == [guest['player_id']]


def test_game_round_trip(client, socketio, flask_app):
    host = create(client)
    guest = join(client, host['room_code'], 'Bob')
    host_sio = connect(socketio, flask_app, host)
    guest_sio = connect(socketio, flask_app, guest)
    frames(host_sio)
    frames(guest_sio)

    host_sio.send(json.dumps({'type': ev.GAME_START}))
    started = frames(guest_sio)[-1]
    assert started['type'] == ev.GAME_STARTED
    assert started['event_id'] == 1

    current = started['current_player']
    roller = host_sio if current == host['player_id'] else guest_sio
    roller.send(json.dumps({'type': ev.REQUEST_ROLL, 'held_indices': [], 'player_id': 'spoofed'}))

    rolled = frames(host_sio)[-1]
    assert rolled['type'] == ev.ROLL_RESULT
    assert rolled['player_id'] == current
    assert rolled['rolls_left'] == 2
    assert frames(guest_sio)[-1] == rolled


def test_host_disconnect_ends_the_room(client, socketio, flask_app):
    host = create(client)
    guest = join(client, host['room_code'], 'Bob')
    host_sio = connect(socketio, flask_app, host)
    guest_sio = connect(socketio, flask_app, guest)
    host_sio.send(json.dumps({'type': ev.GAME_START}))
    frames(guest_sio)

    host_sio.disconnect()

    received = frames(guest_sio)
    assert received[0]['type'] == ev.PLAYER_LEFT
    assert received[-1]['type'] == ev.ROOM_ENDED
    assert received[-1]['reason'] == ev.ROOM_ENDED_HOST
    assert not guest_sio.is_connected()
    assert host['room_code'] not in flask_app.extensions['yahtzee']


def test_late_viewer_receives_game_state(client, socketio, flask_app):
    host = create(client)
    guest = join(client, host['room_code'], 'Bob')
    host_sio = connect(socketio, flask_app, host)
    connect(socketio, flask_app, guest)
    host_sio.send(json.dumps({'type': ev.GAME_START}))

    viewer = join(client, host['room_code'], 'Vic')
    viewer_sio = connect(socketio, flask_app, viewer)

    received = frames(viewer_sio)
    assert viewer['is_viewer'] is True
    assert [f['type'] for f in received[:2]] == [ev.VIEWER_MODE, ev.GAME_STATE]
    assert received[1]['event_history'][0]['type'] == ev.GAME_STARTED
