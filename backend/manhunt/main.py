import time

from flask import Blueprint, jsonify

from manhunt import get_registry

main = Blueprint('main', __name__)

_booted_at = time.time()


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Manhunt game server!'})


@main.route('/health')
def health():
    return jsonify({
        'status': 'ok',
        'timestamp': time.time(),
        'uptime': time.time() - _booted_at,
        'active_sessions': len(get_registry().active_ids()),
    })
