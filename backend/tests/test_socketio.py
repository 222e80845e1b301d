import base64

PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(b"\x89PNG\r\n\x1a\nsocket-image").decode()


def _received(client):
    return [(msg['name'], msg['args'][0] if msg['args'] else None) for msg in client.get_received()]


def _payloads(received, name):
    return [payload for event, payload in received if event == name]


def _room_with_player(sio_factory):
    host = sio_factory()
    ack = host.emit('create-room', {'playerName': 'Hostess'}, callback=True)
    code = ack['roomCode']
    host_id = _payloads(_received(host), 'room-created')[0]['room']['ownerId']

    player = sio_factory()
    ack = player.emit('join-room', {'roomCode': code.lower(), 'playerName': 'Bob'}, callback=True)
    assert ack == {'ok': True, 'roomCode': code}
    player_id = _payloads(_received(player), 'room-joined')[0]['player']['id']
    host.get_received()
    return host, host_id, player, player_id, code


def test_create_room_acks_and_notifies(sio_factory, game_server):
    host = sio_factory()
    ack = host.emit('create-room', {'playerName': 'Hostess', 'settings': {'totalRounds': 4}}, callback=True)
    assert ack['ok'] is True
    code = ack['roomCode']

    created = _payloads(_received(host), 'room-created')
    assert len(created) == 1
    assert created[0]['roomCode'] == code
    assert created[0]['room']['totalRounds'] == 4
    assert game_server.registry.get(code) is not None


def test_create_admin_room(sio_factory):
    admin = sio_factory()
    ack = admin.emit('create-room', {'roomCode': 'face01'}, callback=True)
    assert ack == {'ok': True, 'roomCode': 'FACE01'}
    created = _payloads(_received(admin), 'admin-room-created')
    assert created[0]['roomId'] == 'FACE01'
    assert created[0]['room']['players'] == []


def test_join_room_broadcasts_to_others(sio_factory):
    host = sio_factory()
    code = host.emit('create-room', {'playerName': 'Hostess'}, callback=True)['roomCode']
    host.get_received()

    player = sio_factory()
    player.emit('join-room', {'roomCode': code, 'playerName': 'Bob'}, callback=True)

    joined = _payloads(_received(host), 'player-joined')
    assert joined[0]['player']['name'] == 'Bob'
    assert joined[0]['playerCount'] == 2

    own = _received(player)
    assert [event for event, _ in own] == ['room-joined']


def test_unknown_room_errors_reach_only_the_sender(sio_factory):
    host = sio_factory()
    host.emit('create-room', {'playerName': 'Hostess'}, callback=True)
    host.get_received()

    player = sio_factory()
    ack = player.emit('join-room', {'roomCode': 'NOPE99', 'playerName': 'Bob'}, callback=True)
    assert ack['ok'] is False
    assert ack['error'] == 'not_found'
    errors = _payloads(_received(player), 'error')
    assert errors == [{'message': 'Game room NOPE99 not found', 'error': 'not_found'}]
    assert host.get_received() == []


def test_bad_player_name(sio_factory):
    client = sio_factory()
    ack = client.emit('create-room', {'playerName': '<b>Bob</b>'}, callback=True)
    assert ack['error'] == 'validation_error'
    ack = client.emit('create-room', {'playerName': '   '}, callback=True)
    assert ack['error'] == 'validation_error'
    ack = client.emit('create-room', {'playerName': 'x' * 25}, callback=True)
    assert ack['error'] == 'validation_error'


def test_missing_room_code(sio_factory):
    client = sio_factory()
    ack = client.emit('start-game', {}, callback=True)
    assert ack['error'] == 'validation_error'


def test_players_cannot_start_the_game(sio_factory, game_server):
    host, host_id, player, player_id, code = _room_with_player(sio_factory)
    ack = player.emit('start-game', {'roomCode': code}, callback=True)
    assert ack['ok'] is False
    assert ack['error'] == 'unauthorized'
    assert host.get_received() == []
    assert game_server.snapshot(code)['phase'] == 'lobby'


def test_full_game_over_sockets(sio_factory, game_server, clock):
    host, host_id, player, player_id, code = _room_with_player(sio_factory)

    ack = host.emit('upload-image', {'roomCode': code, 'imageData': PNG_DATA_URL}, callback=True)
    assert ack['ok'] is True
    assert ack['imageUrl'].startswith('/uploads/')
    assert host.emit('calibrate-target', {'roomCode': code, 'position': {'x': 50, 'y': 50}}, callback=True) == {
        'ok': True
    }

    start = clock.now
    settings = {'minPlayers': 2, 'totalRounds': 1, 'viewTimeMs': 1000, 'guessTimeMs': 2000}
    assert host.emit('start-game', {'roomCode': code, 'settings': settings}, callback=True) == {'ok': True}
    received = _received(player)
    assert [event for event, _ in received][-2:] == ['game-started', 'show-image']
    assert _payloads(received, 'show-image')[0]['imageUrl'] == ack['imageUrl']

    game_server.pump(start + 1000)
    assert _payloads(_received(player), 'hide-image')[0]['round'] == 1

    clock.now = start + 1500
    ack = player.emit('player-click', {'roomCode': code, 'position': {'x': 52, 'y': 49}}, callback=True)
    assert ack == {'ok': True, 'totalScore': 100}
    ack = player.emit('player-click', {'roomCode': code, 'position': {'x': 52, 'y': 49}}, callback=True)
    assert ack['error'] == 'conflict'

    scored = _payloads(_received(host), 'player-scored')
    assert scored[0]['playerId'] == player_id
    assert scored[0]['points'] == 100

    game_server.pump(start + 3000)
    game_server.pump(start + 8000)
    received = _received(host)
    assert _payloads(received, 'round-ended')[0]['correctPosition'] == {'x': 50, 'y': 50}
    ended = _payloads(received, 'game-ended')[0]
    assert ended['winner']['name'] == 'Bob'
    assert [e['score'] for e in ended['finalLeaderboard']] == [100, 0]


def test_pause_and_resume_over_sockets(sio_factory, game_server, clock):
    host, host_id, player, player_id, code = _room_with_player(sio_factory)
    host.emit('upload-image', {'roomCode': code, 'imageData': PNG_DATA_URL}, callback=True)
    host.emit('calibrate-target', {'roomCode': code, 'position': {'x': 20, 'y': 20}}, callback=True)
    host.emit('start-game', {'roomCode': code}, callback=True)
    player.get_received()

    assert host.emit('pause-game', {'roomCode': code}, callback=True) == {'ok': True}
    paused = _payloads(_received(player), 'game-paused')[0]
    assert paused['pausedFrom'] == 'viewing'

    assert host.emit('resume-game', {'roomCode': code}, callback=True) == {'ok': True}
    assert _payloads(_received(player), 'game-resumed')[0]['phase'] == 'viewing'


def test_kick_over_sockets(sio_factory, game_server):
    host, host_id, player, player_id, code = _room_with_player(sio_factory)
    ack = host.emit('kick-player', {'roomCode': code, 'playerId': player_id}, callback=True)
    assert ack == {'ok': True}
    kicked = _payloads(_received(player), 'kicked')
    assert kicked[0]['roomCode'] == code
    assert [p['id'] for p in game_server.snapshot(code)['players']] == [host_id]


def test_host_disconnect_hands_over(sio_factory, game_server):
    host, host_id, player, player_id, code = _room_with_player(sio_factory)
    host.disconnect()

    left = _payloads(_received(player), 'player-left')
    assert left[0]['playerId'] == host_id
    assert left[0]['room']['ownerId'] == player_id
    assert game_server.snapshot(code)['ownerId'] == player_id


def test_leave_room_keeps_the_player_on_the_roster(sio_factory, game_server):
    host, host_id, player, player_id, code = _room_with_player(sio_factory)
    ack = player.emit('leave-room', {}, callback=True)
    assert ack == {'ok': True, 'roomCode': code}
    assert _payloads(_received(host), 'player-left')[0]['playerCount'] == 1
    players = {p['id']: p for p in game_server.snapshot(code)['players']}
    assert players[player_id]['connected'] is False


def test_close_room_over_sockets(sio_factory, game_server):
    host, host_id, player, player_id, code = _room_with_player(sio_factory)
    assert host.emit('close-room', {'roomCode': code}, callback=True) == {'ok': True}
    assert _payloads(_received(player), 'room-closed')[0]['roomCode'] == code
    assert game_server.registry.get(code) is None


def test_admin_panel_events(sio_factory, game_server):
    admin = sio_factory()
    settings = {'viewTime': 2, 'guessTime': 3, 'totalRounds': 1, 'minPlayers': 1}
    ack = admin.emit('admin-create-room', {'roomId': 'room42', 'settings': settings}, callback=True)
    assert ack == {'ok': True, 'roomCode': 'ROOM42', 'roomId': 'ROOM42'}
    assert _payloads(_received(admin), 'admin-room-created')[0]['roomId'] == 'ROOM42'

    player = sio_factory()
    player.emit('join-room', {'roomCode': 'ROOM42', 'playerName': 'Bob'}, callback=True)
    player_id = _payloads(_received(player), 'room-joined')[0]['player']['id']
    assert _payloads(_received(admin), 'admin-player-joined')[0]['playerCount'] == 1

    ack = admin.emit(
        'admin-start-game',
        {
            'roomId': 'ROOM42',
            'gameImage': PNG_DATA_URL,
            'targetPosition': {'x': 40, 'y': 60},
            'settings': settings,
        },
        callback=True,
    )
    assert ack == {'ok': True}
    show = _payloads(_received(player), 'show-image')[0]
    assert show['targetPosition'] == {'x': 40, 'y': 60}
    assert show['viewTimeMs'] == 2000
    assert _payloads(_received(admin), 'admin-round-update')[0]['timeRemaining'] == 2

    assert admin.emit('admin-pause-game', {'roomId': 'ROOM42'}, callback=True) == {'ok': True}
    assert game_server.snapshot('ROOM42')['phase'] == 'paused'
    assert admin.emit('admin-resume-game', {'roomId': 'ROOM42'}, callback=True) == {'ok': True}

    assert admin.emit('admin-kick-player', {'roomId': 'ROOM42', 'playerId': player_id}, callback=True) == {
        'ok': True
    }
    assert _payloads(_received(player), 'kicked')[0]['roomCode'] == 'ROOM42'

    assert admin.emit('admin-end-game', {'roomId': 'ROOM42'}, callback=True) == {'ok': True}
    assert _payloads(_received(admin), 'admin-game-ended')[0]['winner'] is None

    assert admin.emit('admin-close-room', {'roomId': 'ROOM42'}, callback=True) == {'ok': True}
    assert game_server.registry.get('ROOM42') is None


def test_admin_events_are_host_only(sio_factory, game_server):
    admin = sio_factory()
    admin.emit('admin-create-room', {'roomId': 'ROOM42'}, callback=True)
    player = sio_factory()
    player.emit('join-room', {'roomCode': 'ROOM42', 'playerName': 'Bob'}, callback=True)

    for event in ('admin-start-game', 'admin-next-round', 'admin-end-game', 'admin-close-room'):
        ack = player.emit(event, {'roomId': 'ROOM42'}, callback=True)
        assert ack['error'] == 'unauthorized', event
    assert game_server.snapshot('ROOM42')['phase'] == 'lobby'


def test_admin_create_requires_room_id(sio_factory):
    admin = sio_factory()
    ack = admin.emit('admin-create-room', {'settings': {}}, callback=True)
    assert ack['error'] == 'validation_error'


def test_one_timer_task_per_room(timed_app):
    app, socketio, started = timed_app
    host = socketio.test_client(app, flask_test_client=app.test_client())
    guest = socketio.test_client(app, flask_test_client=app.test_client())
    try:
        code = host.emit('create-room', {'playerName': 'Hostess'}, callback=True)['roomCode']
        guest.emit('join-room', {'roomCode': code, 'playerName': 'Bob'}, callback=True)
        host.emit('start-game', {'roomCode': code, 'settings': {'minPlayers': 1}}, callback=True)
        assert len(started) == 1
    finally:
        host.disconnect()
        guest.disconnect()
