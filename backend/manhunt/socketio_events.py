import functools
from typing import Any, Dict

from flask import request
from flask_socketio import emit, join_room, leave_room

from manhunt import get_registry, socketio
from manhunt.services.game import triggers
from manhunt.services.game.errors import GameError, ValidationError
from manhunt.services.game.events import NAMESPACE, player_room, session_room
from manhunt.services.game.gateway import PersistenceGateway

# socket id -> {'session_id': int, 'player_id': int}
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _ctx() -> Dict[str, Any]:
    ctx = _sid_to_ctx.get(_get_sid())
    if not ctx:
        raise ValidationError('Join a game first')
    return ctx


def _reports_errors(handler):
    """Turn game errors into an ``error`` event for the calling socket only."""
    @functools.wraps(handler)
    def wrapper(data=None):
        try:
            return handler(data or {})
        except GameError as exc:
            emit('error', {'message': exc.message})
    return wrapper


def handle_connect(auth=None):
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx:
        return
    get_registry().sink.publish(ctx['session_id'], 'player:left', {'playerId': ctx['player_id']})


@_reports_errors
def handle_join_game(data):
    session_id = data.get('sessionId')
    player_id = data.get('playerId')
    if session_id is None or player_id is None:
        raise ValidationError('sessionId and playerId are required')
    player = PersistenceGateway().require_player(player_id, session_id)
    join_room(session_room(player.session_id))
    join_room(player_room(player.id))
    _sid_to_ctx[_get_sid()] = {'session_id': player.session_id, 'player_id': player.id}
    emit('joined', {'room': session_room(player.session_id), 'sessionId': player.session_id, 'playerId': player.id})


@_reports_errors
def handle_leave_game(data):
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx:
        raise ValidationError('Not in a game')
    leave_room(session_room(ctx['session_id']))
    leave_room(player_room(ctx['player_id']))
    emit('left', {'room': session_room(ctx['session_id'])})


@_reports_errors
def handle_location_update(data):
    ctx = _ctx()
    location = data.get('location') or data
    triggers.update_player_location(
        get_registry(), ctx['player_id'], location.get('lat'), location.get('lng'), location.get('accuracy'),
    )


@_reports_errors
def handle_immunity_claim(data):
    ctx = _ctx()
    triggers.claim_immunity(get_registry(), ctx['session_id'], ctx['player_id'])


@_reports_errors
def handle_immunity_release(data):
    ctx = _ctx()
    triggers.release_immunity(get_registry(), ctx['session_id'], ctx['player_id'])


@_reports_errors
def handle_mission_complete(data):
    ctx = _ctx()
    result = triggers.complete_mission(get_registry(), data.get('missionId'), ctx['player_id'])
    emit('mission:completed', {'missionId': result['mission_id'], 'points': result['points']})


@_reports_errors
def handle_player_tag(data):
    ctx = _ctx()
    triggers.tag_player(get_registry(), ctx['session_id'], ctx['player_id'], data.get('targetId'))


@_reports_errors
def handle_points_transfer(data):
    ctx = _ctx()
    triggers.transfer_points(
        get_registry(), ctx['session_id'], ctx['player_id'], data.get('toPlayerId'), data.get('amount'),
    )


@_reports_errors
def handle_message_send(data):
    ctx = _ctx()
    to_player_id = None if data.get('isBroadcast', True) else data.get('toPlayerId')
    triggers.send_message(get_registry(), ctx['session_id'], ctx['player_id'], data.get('message'), to_player_id)


def handle_ping(data=None):
    emit('pong', data or {})


HANDLERS = {
    'connect': handle_connect,
    'disconnect': handle_disconnect,
    'join_game': handle_join_game,
    'leave_game': handle_leave_game,
    'location:update': handle_location_update,
    'immunity:claim': handle_immunity_claim,
    'immunity:release': handle_immunity_release,
    'mission:complete': handle_mission_complete,
    'player:tag': handle_player_tag,
    'points:transfer': handle_points_transfer,
    'message:send': handle_message_send,
    'ping': handle_ping,
}


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    for event, handler in HANDLERS.items():
        socketio.on_event(event, handler, namespace=NAMESPACE)
        if testing:
            socketio.on_event(event, handler, namespace='/')
