from flask import Blueprint, jsonify, request

from manhunt import get_registry
from manhunt.services.game import triggers

players = Blueprint('players', __name__)


@players.route('/<string:player_key>/location', methods=['POST'])
def update_location(player_key):
    data = request.get_json(silent=True) or {}
    player = triggers.player_info(player_key)
    location = triggers.update_player_location(
        get_registry(), player.id, data.get('lat'), data.get('lng'), data.get('accuracy'),
    )
    return jsonify({'success': True, 'location': location})


@players.route('/<string:player_key>', methods=['GET'])
def get_player(player_key):
    player = triggers.player_info(player_key)
    return jsonify({'player': player.to_dict(include_location=False)})


@players.route('/<string:player_key>/stats', methods=['GET'])
def get_player_stats(player_key):
    return jsonify(triggers.player_stats(player_key))
