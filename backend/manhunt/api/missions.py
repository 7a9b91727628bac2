from flask import Blueprint, jsonify, request

from manhunt import get_registry
from manhunt.services.game import triggers

missions = Blueprint('missions', __name__)


@missions.route('/<int:mission_id>/complete', methods=['POST'])
def complete_mission(mission_id):
    data = request.get_json(silent=True) or {}
    result = triggers.complete_mission(get_registry(), mission_id, data.get('playerId'))
    return jsonify({
        'success': True,
        'points': result['points'],
        'message': 'Mission completed successfully',
    })


@missions.route('/session/<int:session_id>', methods=['GET'])
def list_session_missions(session_id):
    return jsonify({'missions': triggers.session_missions(session_id)})
