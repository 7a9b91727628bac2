from flask import Blueprint, jsonify, request

from manhunt import get_registry
from manhunt.services.game import triggers

games = Blueprint('games', __name__)


@games.route('/create', methods=['POST'])
def create_game():
    data = request.get_json(silent=True) or {}
    game_session, host = triggers.create_session(
        get_registry(),
        data.get('playerName'),
        game_mode=data.get('gameMode'),
        settings=data.get('settings'),
        player_key=data.get('playerId'),
    )
    return jsonify({
        'success': True,
        'session': game_session.to_dict(),
        'player': host.to_dict(),
    }), 201


@games.route('/join', methods=['POST'])
def join_game():
    data = request.get_json(silent=True) or {}
    player = triggers.join_session(
        get_registry(), data.get('sessionCode'), data.get('playerName'), player_key=data.get('playerId'),
    )
    return jsonify({'success': True, 'sessionId': player.session_id, 'player': player.to_dict()}), 201


@games.route('/<int:session_id>/boundary', methods=['POST'])
def set_boundary(session_id):
    data = request.get_json(silent=True) or {}
    boundary = triggers.set_boundary(get_registry(), session_id, data.get('coordinates'))
    return jsonify({'success': True, 'boundary': boundary.to_dict()})


@games.route('/<int:session_id>/immunity-spot', methods=['POST'])
def set_immunity_spot(session_id):
    data = request.get_json(silent=True) or {}
    spot = triggers.set_immunity_spot(get_registry(), session_id, data.get('location'))
    return jsonify({'success': True, 'immunitySpot': spot.to_dict()})


@games.route('/<int:session_id>/assign-seeker', methods=['POST'])
def assign_seeker(session_id):
    data = request.get_json(silent=True) or {}
    player = triggers.assign_seeker(get_registry(), session_id, data.get('playerId'))
    return jsonify({'success': True, 'player': player.to_dict()})


@games.route('/<int:session_id>/start', methods=['POST'])
def start_game(session_id):
    result = triggers.start_session(get_registry(), session_id)
    message = 'Game started' if result['started'] else 'Game already running'
    return jsonify({'success': True, 'message': message, **result})


@games.route('/<int:session_id>/stop', methods=['POST'])
def stop_game(session_id):
    result = triggers.stop_session(get_registry(), session_id)
    return jsonify({'success': True, 'result': result})


@games.route('/<int:session_id>/state', methods=['GET'])
def get_game_state(session_id):
    return jsonify(triggers.session_state(get_registry(), session_id))


@games.route('/<int:session_id>/player/<string:player_key>/missions', methods=['GET'])
def get_player_missions(session_id, player_key):
    return jsonify({'missions': triggers.player_missions(session_id, player_key)})
