"""Inbound game operations called by the HTTP routes and socket handlers.

Each function takes the app's ``SessionRegistry`` explicitly. Operations
that move points or immunity occupancy run under the session lock so
they serialize with the session's tick.
"""

import json
import uuid
from typing import Any, Dict, List, Optional

from flask import current_app

from manhunt.models import Boundary, GameMessage, GameSession, ImmunitySpot, Player
from .errors import InvariantViolation, NotFound, NotPermitted, ValidationError
from .gateway import PersistenceGateway
from .ledger import Ledger
from .registry import SessionRegistry
from .scheduler import player_view

COMMUNICATION_MODES = ('final_phase_only', 'always', 'never')


def _gateway() -> PersistenceGateway:
    return PersistenceGateway()


def _ledger(registry: SessionRegistry) -> Ledger:
    return Ledger(_gateway(), registry.app.config)


def _coerce_point(data, label='location') -> Dict[str, float]:
    if not isinstance(data, dict):
        raise ValidationError(f'Invalid {label}')
    try:
        lat = float(data['lat'])
        lng = float(data['lng'])
    except (KeyError, TypeError, ValueError):
        raise ValidationError(f'Invalid {label}: lat and lng are required')
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        raise ValidationError(f'Invalid {label}: coordinates out of range')
    return {'lat': lat, 'lng': lng}


def _as_id(value, label='player_id') -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{label} is required')


def _require_status(game_session: GameSession, *statuses: str) -> None:
    if game_session.status not in statuses:
        raise InvariantViolation(f'Session is {game_session.status}')


def default_settings(config) -> Dict[str, Any]:
    return {
        'duration': int(config.get('GAME_DURATION_MS', 3600000)),
        'boundaryShrinkInterval': int(config.get('SHRINK_INTERVAL_MS', 600000)),
        'missionFrequency': int(config.get('MISSION_INTERVAL_MS', 300000)),
        'seekerCount': int(config.get('SEEKER_COUNT', 1)),
        'communicationMode': config.get('COMMUNICATION_MODE', 'final_phase_only'),
    }


def merge_settings(config, overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    settings = default_settings(config)
    for key, value in (overrides or {}).items():
        if key not in settings:
            continue
        if key == 'communicationMode':
            if value not in COMMUNICATION_MODES:
                raise ValidationError(f'communicationMode must be one of {", ".join(COMMUNICATION_MODES)}')
            settings[key] = value
            continue
        try:
            value = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f'{key} must be an integer')
        if value <= 0:
            raise ValidationError(f'{key} must be positive')
        settings[key] = value
    return settings


# ---- lobby ----

def create_session(registry: SessionRegistry, player_name: str, game_mode: Optional[str] = None,
                   settings: Optional[Dict[str, Any]] = None, player_key: Optional[str] = None):
    """Create a lobby and seat the host as its first player (a hider)."""
    if not player_name:
        raise ValidationError('Player name required')
    gateway = _gateway()
    host_key = player_key or str(uuid.uuid4())
    game_session = GameSession(
        host_player_key=host_key,
        status='lobby',
        game_mode=game_mode or 'standard',
        settings=json.dumps(merge_settings(registry.app.config, settings)),
        created_at=registry.clock(),
    )
    gateway.add(game_session)
    host = Player(session_id=game_session.id, player_key=host_key, name=player_name,
                  role='hider', status='active', points=0, violations=0)
    gateway.add(host)
    current_app.logger.info(f"[session-create] session={game_session.id} code={game_session.session_code}")
    return game_session, host


def join_session(registry: SessionRegistry, code: str, player_name: str, player_key: Optional[str] = None) -> Player:
    if not code or not player_name:
        raise ValidationError('Missing required fields')
    gateway = _gateway()
    game_session = gateway.get_session_by_code(str(code).strip())
    if not game_session or game_session.status != 'lobby':
        raise NotFound('Game not found or already started')
    player_key = player_key or str(uuid.uuid4())
    if gateway.get_player_by_key(player_key, game_session.id):
        raise ValidationError('Already joined this game')
    player = Player(session_id=game_session.id, player_key=player_key, name=player_name,
                    role='hider', status='active', points=0, violations=0)
    gateway.add(player)
    registry.sink.publish(game_session.id, 'player:joined', {'playerId': player.id, 'playerName': player.name})
    return player


def set_boundary(registry: SessionRegistry, session_id, coordinates) -> Boundary:
    if not isinstance(coordinates, list) or len(coordinates) < 3:
        raise ValidationError('Invalid boundary coordinates: need at least 3 points')
    polygon = [_coerce_point(c, 'boundary coordinate') for c in coordinates]
    gateway = _gateway()
    game_session = gateway.require_session(session_id)
    _require_status(game_session, 'lobby')
    boundary = gateway.get_boundary(game_session.id)
    encoded = json.dumps(polygon)
    if boundary is None:
        boundary = Boundary(session_id=game_session.id, original_boundary=encoded,
                            current_boundary=encoded, shrink_count=0)
    else:
        boundary.original_boundary = encoded
        boundary.current_boundary = encoded
    gateway.add(boundary)
    registry.sink.publish(game_session.id, 'boundary:set',
                          {'sessionId': game_session.id, 'boundary': {'coordinates': polygon}})
    return boundary


def set_immunity_spot(registry: SessionRegistry, session_id, location) -> ImmunitySpot:
    point = _coerce_point(location)
    cfg = registry.app.config
    gateway = _gateway()
    game_session = gateway.require_session(session_id)
    _require_status(game_session, 'lobby')
    spot = gateway.get_immunity_spot(game_session.id)
    if spot is None:
        spot = ImmunitySpot(
            session_id=game_session.id,
            unlock_threshold=int(cfg.get('IMMUNITY_UNLOCK_THRESHOLD', 50)),
            activation_cost=int(cfg.get('IMMUNITY_ACTIVATION_COST', 0)),
            drain_rate=int(cfg.get('IMMUNITY_DRAIN_RATE', 1)),
        )
    spot.location = json.dumps(point)
    gateway.add(spot)
    registry.sink.publish(game_session.id, 'immunity:placed', {'sessionId': game_session.id, 'location': point})
    return spot


def assign_seeker(registry: SessionRegistry, session_id, player_id) -> Player:
    gateway = _gateway()
    game_session = gateway.require_session(session_id)
    _require_status(game_session, 'lobby')
    player = gateway.require_player(player_id, game_session.id)
    if player.role == 'seeker':
        return player
    limit = int(game_session.config.get('seekerCount', 1))
    if len(gateway.players(game_session.id, role='seeker')) >= limit:
        raise InvariantViolation(f'Session allows {limit} seeker(s)')
    player.role = 'seeker'
    gateway.commit()
    registry.sink.publish(game_session.id, 'seeker:assigned',
                          {'playerId': player.id, 'message': 'Seeker has been assigned'})
    return player


# ---- lifecycle ----

def start_session(registry: SessionRegistry, session_id) -> Dict[str, Any]:
    gateway = _gateway()
    game_session = gateway.require_session(session_id)
    if registry.is_running(game_session.id):
        current_app.logger.info(f"[start-skip] session={game_session.id} already running")
        return {'started': False, 'session': game_session.to_dict()}
    if game_session.status == 'ended' or registry.is_ended(game_session.id):
        raise InvariantViolation('Session has ended; create a new session')
    if game_session.status == 'lobby':
        if not gateway.get_boundary(game_session.id):
            raise InvariantViolation('Must set boundary before starting')
        min_players = int(registry.app.config.get('MIN_PLAYERS', 2))
        if len(gateway.players(game_session.id)) < min_players:
            raise InvariantViolation(f'At least {min_players} players are required to start')
    _, created = registry.start(game_session.id)
    if created:
        registry.sink.publish(game_session.id, 'game:started',
                              {'sessionId': game_session.id, 'message': 'Game is starting!'})
    return {'started': created, 'session': gateway.require_session(game_session.id).to_dict()}


def stop_session(registry: SessionRegistry, session_id, reason: str = 'manual_stop') -> Dict[str, Any]:
    gateway = _gateway()
    game_session = gateway.require_session(session_id)
    result = registry.stop(game_session.id, reason)
    if result is None:
        raise InvariantViolation('Session is not running')
    return result


# ---- in-game ----

def update_player_location(registry: SessionRegistry, player_id, lat, lng, accuracy=None) -> Dict[str, Any]:
    point = _coerce_point({'lat': lat, 'lng': lng})
    gateway = _gateway()
    player = gateway.require_player(player_id)
    if player.session.status == 'ended':
        raise InvariantViolation('Session has ended')
    if accuracy is not None:
        try:
            point['accuracy'] = float(accuracy)
        except (TypeError, ValueError):
            raise ValidationError('accuracy must be a number')
    point['timestamp'] = registry.clock()
    player.location = point
    gateway.commit()
    return point


def complete_mission(registry: SessionRegistry, mission_id, player_id) -> Dict[str, Any]:
    gateway = _gateway()
    mission = gateway.get_mission(mission_id)
    if not mission:
        raise NotFound('Mission not found')
    game_session = gateway.require_session(mission.session_id)
    _require_status(game_session, 'active')
    with registry.lock_for(game_session.id):
        result = _ledger(registry).record_mission_completed(
            game_session.id, mission, _as_id(player_id), registry.clock(),
        )
    registry.sink.publish(game_session.id, 'mission:completed', {
        'missionId': mission.id, 'points': result['points'], 'playerId': result['player_id'],
    })
    registry.sink.publish(game_session.id, 'player:points_updated', {
        'playerId': result['player_id'], 'points': result['points'],
    })
    return result


def tag_player(registry: SessionRegistry, session_id, seeker_id, target_id) -> Dict[str, Any]:
    gateway = _gateway()
    game_session = gateway.require_session(session_id)
    _require_status(game_session, 'active')
    seeker = gateway.require_player(seeker_id, game_session.id)
    if seeker.role != 'seeker':
        raise NotPermitted('Only seeker can tag')
    target = gateway.require_player(target_id, game_session.id)
    if target.role != 'hider':
        raise ValidationError('Only hiders can be tagged')
    with registry.lock_for(game_session.id):
        spot = gateway.get_immunity_spot(game_session.id)
        if spot and spot.occupied_by == target.id:
            raise NotPermitted('Player is protected by immunity')
        if not gateway.mark_caught(target.id, registry.clock()):
            raise InvariantViolation('Player already caught')
    current_app.logger.info(f"[tag] session={game_session.id} seeker={seeker.id} target={target.id}")
    registry.sink.publish(game_session.id, 'player:tagged', {'targetId': target.id, 'seekerId': seeker.id})
    return {'targetId': target.id, 'seekerId': seeker.id}


def transfer_points(registry: SessionRegistry, session_id, from_player_id, to_player_id, amount) -> Dict[str, Any]:
    gateway = _gateway()
    game_session = gateway.require_session(session_id)
    _require_status(game_session, 'active')
    sender = gateway.require_player(from_player_id, game_session.id)
    receiver = gateway.require_player(to_player_id, game_session.id)
    with registry.lock_for(game_session.id):
        result = _ledger(registry).transfer_points(game_session.id, sender, receiver, amount, registry.clock())
    registry.sink.publish(game_session.id, 'points:transferred', {
        'fromPlayerId': result['from_player_id'],
        'toPlayerId': result['to_player_id'],
        'amount': result['amount'],
    })
    return result


def claim_immunity(registry: SessionRegistry, session_id, player_id) -> Dict[str, Any]:
    gateway = _gateway()
    game_session = gateway.require_session(session_id)
    _require_status(game_session, 'active')
    player = gateway.require_player(player_id, game_session.id)
    with registry.lock_for(game_session.id):
        result = _ledger(registry).claim_immunity(game_session.id, player, registry.clock())
    registry.sink.publish(game_session.id, 'immunity:claimed',
                          {'playerId': result['player_id'], 'spotId': result['spot_id']})
    return result


def release_immunity(registry: SessionRegistry, session_id, player_id) -> Dict[str, Any]:
    gateway = _gateway()
    game_session = gateway.require_session(session_id)
    player = gateway.require_player(player_id, game_session.id)
    with registry.lock_for(game_session.id):
        result = _ledger(registry).release_immunity(game_session.id, player)
    registry.sink.publish(game_session.id, 'immunity:released',
                          {'playerId': result['player_id'], 'spotId': result['spot_id']})
    return result


def send_message(registry: SessionRegistry, session_id, from_player_id, text, to_player_id=None) -> GameMessage:
    if not text or not str(text).strip():
        raise ValidationError('Message text required')
    gateway = _gateway()
    game_session = gateway.require_session(session_id)
    _require_status(game_session, 'active')
    if not game_session.communication_enabled:
        raise NotPermitted('Communication is not available yet')
    sender = gateway.require_player(from_player_id, game_session.id)
    receiver = gateway.require_player(to_player_id, game_session.id) if to_player_id is not None else None
    message = GameMessage(
        session_id=game_session.id,
        from_player_id=sender.id,
        to_player_id=receiver.id if receiver else None,
        message_text=str(text),
        is_broadcast=receiver is None,
        created_at=registry.clock(),
    )
    gateway.add(message)
    payload = {'fromPlayerId': sender.id, 'fromPlayerName': sender.name, 'message': message.message_text}
    if receiver is None:
        registry.sink.publish(game_session.id, 'message:received', payload)
    else:
        registry.sink.publish_to(game_session.id, receiver.id, 'message:received', payload)
    return message


# ---- read models ----

def session_state(registry: SessionRegistry, session_id) -> Dict[str, Any]:
    gateway = _gateway()
    game_session = gateway.require_session(session_id)
    boundary = gateway.get_boundary(game_session.id)
    spot = gateway.get_immunity_spot(game_session.id)
    return {
        'session': game_session.to_dict(),
        'players': [player_view(p) for p in gateway.players(game_session.id)],
        'boundary': boundary.to_dict() if boundary else None,
        'immunitySpot': spot.to_dict() if spot else None,
        'running': registry.is_running(game_session.id),
    }


def player_missions(session_id, player_key: str) -> List[Dict[str, Any]]:
    gateway = _gateway()
    game_session = gateway.require_session(session_id)
    player = gateway.get_player_by_key(player_key, game_session.id)
    if not player:
        raise NotFound('Player not found')
    return [m.to_dict() for m in gateway.missions(game_session.id, player.id, statuses=('assigned',))]


def session_missions(session_id) -> List[Dict[str, Any]]:
    gateway = _gateway()
    game_session = gateway.require_session(session_id)
    players = {p.id: p.name for p in gateway.players(game_session.id)}
    missions = []
    for mission in reversed(gateway.missions(game_session.id)):
        data = mission.to_dict()
        data['player_name'] = players.get(mission.assigned_to)
        missions.append(data)
    return missions


def player_info(player_key: str) -> Player:
    player = _gateway().get_player_by_key(player_key)
    if not player:
        raise NotFound('Player not found')
    return player


def player_stats(player_key: str) -> Dict[str, Any]:
    gateway = _gateway()
    player = player_info(player_key)
    return {
        'player': player.to_dict(include_location=False),
        'missionsCompleted': gateway.count_missions(player.session_id, 'completed', player.id),
        'totalViolations': gateway.count_violations(player.id),
    }
