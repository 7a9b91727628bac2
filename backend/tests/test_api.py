from conftest import BOUNDARY


def _create(client, name='Hannah', **extra):
    res = client.post('/api/games/create', json={'playerName': name, **extra})
    assert res.status_code == 201
    return res.get_json()


def _lobby(client):
    created = _create(client, playerId='host-key')
    session_id = created['session']['id']
    code = created['session']['code']
    seeker = client.post('/api/games/join', json={'sessionCode': code, 'playerName': 'Sam'}).get_json()['player']
    assert client.post(f'/api/games/{session_id}/assign-seeker', json={'playerId': seeker['id']}).status_code == 200
    assert client.post(f'/api/games/{session_id}/boundary', json={'coordinates': BOUNDARY}).status_code == 200
    return session_id, created['player'], seeker


def test_create_game(client):
    data = _create(client, settings={'duration': 600000})
    assert data['success'] is True
    assert len(data['session']['code']) == 6
    assert data['session']['status'] == 'lobby'
    assert data['session']['settings']['duration'] == 600000
    assert data['session']['settings']['communicationMode'] == 'final_phase_only'
    assert data['player']['role'] == 'hider'


def test_create_requires_name_and_valid_settings(client):
    res = client.post('/api/games/create', json={})
    assert res.status_code == 400
    assert 'error' in res.get_json()
    res = client.post('/api/games/create', json={'playerName': 'Hannah', 'settings': {'communicationMode': 'loud'}})
    assert res.status_code == 400


def test_join_and_state(client):
    created = _create(client)
    code = created['session']['code']
    res = client.post('/api/games/join', json={'sessionCode': code, 'playerName': 'Alice'})
    assert res.status_code == 201
    assert res.get_json()['sessionId'] == created['session']['id']

    res = client.get(f"/api/games/{created['session']['id']}/state")
    assert res.status_code == 200
    state = res.get_json()
    assert state['running'] is False
    assert any(p['name'] == 'Alice' for p in state['players'])


def test_join_unknown_code(client):
    res = client.post('/api/games/join', json={'sessionCode': '000000x', 'playerName': 'Alice'})
    assert res.status_code == 404


def test_boundary_needs_three_points(client):
    session_id = _create(client)['session']['id']
    res = client.post(f'/api/games/{session_id}/boundary', json={'coordinates': BOUNDARY[:2]})
    assert res.status_code == 400


def test_start_preconditions(client):
    created = _create(client)
    session_id = created['session']['id']
    # no boundary yet
    assert client.post(f'/api/games/{session_id}/start').status_code == 409
    client.post(f'/api/games/{session_id}/boundary', json={'coordinates': BOUNDARY})
    # only the host has joined
    assert client.post(f'/api/games/{session_id}/start').status_code == 409


def test_start_is_idempotent(client, registry, sink):
    session_id, host, seeker = _lobby(client)
    first = client.post(f'/api/games/{session_id}/start').get_json()
    assert first['started'] is True
    assert first['session']['status'] == 'active'
    second = client.post(f'/api/games/{session_id}/start').get_json()
    assert second['started'] is False
    assert second['message'] == 'Game already running'
    assert sink.names().count('game:started') == 1
    assert registry.active_ids() == [session_id]
    assert client.get('/health').get_json()['active_sessions'] == 1

    # lobby setup is frozen once running
    res = client.post(f'/api/games/{session_id}/boundary', json={'coordinates': BOUNDARY})
    assert res.status_code == 409


def test_location_update_and_validation(client, registry):
    session_id, host, seeker = _lobby(client)
    res = client.post(f"/api/players/{host['player_key']}/location", json={'lat': 40.005, 'lng': -75.005, 'accuracy': 4})
    assert res.status_code == 200
    assert res.get_json()['location']['accuracy'] == 4.0
    res = client.post(f"/api/players/{host['player_key']}/location", json={'lat': 140, 'lng': -75.005})
    assert res.status_code == 400
    assert client.post('/api/players/nobody/location', json={'lat': 1, 'lng': 1}).status_code == 404


def test_mission_completion_over_http(client, registry, clock):
    session_id, host, seeker = _lobby(client)
    client.post(f'/api/games/{session_id}/start')
    clock.advance(30)
    registry.get(session_id).tick()

    missions = client.get(f"/api/games/{session_id}/player/{host['player_key']}/missions").get_json()['missions']
    assert len(missions) == 1
    mission = missions[0]

    res = client.post(f"/api/missions/{mission['id']}/complete", json={'playerId': seeker['id']})
    assert res.status_code == 403
    res = client.post(f"/api/missions/{mission['id']}/complete", json={'playerId': host['id']})
    assert res.status_code == 200
    assert res.get_json()['points'] == mission['point_value']

    stats = client.get(f"/api/players/{host['player_key']}/stats").get_json()
    assert stats['missionsCompleted'] == 1
    assert stats['player']['points'] == mission['point_value']
    listed = client.get(f'/api/missions/session/{session_id}').get_json()['missions']
    assert listed[0]['status'] == 'completed'
    assert listed[0]['player_name'] == 'Hannah'


def test_stop_reports_result(client):
    session_id, host, seeker = _lobby(client)
    client.post(f'/api/games/{session_id}/start')
    res = client.post(f'/api/games/{session_id}/stop')
    assert res.status_code == 200
    result = res.get_json()['result']
    assert result['winner'] is None
    assert {s['player_id'] for s in result['finalScores']} == {host['id'], seeker['id']}

    state = client.get(f'/api/games/{session_id}/state').get_json()
    assert state['session']['status'] == 'ended'
    assert state['running'] is False
    assert client.post(f'/api/games/{session_id}/stop').status_code == 409
    assert client.post(f'/api/games/{session_id}/start').status_code == 409


def test_unknown_session(client):
    assert client.get('/api/games/9999/state').status_code == 404
    assert client.post('/api/games/9999/start').status_code == 404
