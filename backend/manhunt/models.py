from manhunt import db
import json
import string
import random


def _load(raw, default=None):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    player_key = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    role = db.Column(db.String(16), default='hider', nullable=False)  # hider, seeker
    status = db.Column(db.String(16), default='active', nullable=False)  # active, caught
    points = db.Column(db.Integer, default=0, nullable=False)
    violations = db.Column(db.Integer, default=0, nullable=False)
    last_location = db.Column(db.Text, nullable=True)  # JSON: lat, lng, accuracy, timestamp
    tagged_at = db.Column(db.Float, nullable=True)
    session = db.relationship('GameSession', back_populates='players')

    __table_args__ = (db.UniqueConstraint('session_id', 'player_key', name='uq_player_session_key'),)

    @property
    def location(self):
        return _load(self.last_location)

    @location.setter
    def location(self, value):
        self.last_location = json.dumps(value) if value is not None else None

    @property
    def visible_points(self):
        return max(0, self.points or 0)

    def to_dict(self, include_location=True):
        data = {
            'id': self.id,
            'player_key': self.player_key,
            'name': self.name,
            'session_id': self.session_id,
            'role': self.role,
            'status': self.status,
            'points': self.visible_points,
            'violations': self.violations,
        }
        if include_location:
            data['location'] = self.location
        return data


def generate_session_code(length=6):
    """Generate a unique numeric join code."""
    while True:
        code = ''.join(random.choices(string.digits, k=length))
        if not GameSession.query.filter_by(session_code=code).first():
            return code


class GameSession(db.Model):
    __tablename__ = 'game_session'
    id = db.Column(db.Integer, primary_key=True)
    session_code = db.Column(db.String(6), unique=True, index=True)
    host_player_key = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(16), default='lobby', nullable=False)  # lobby, active, ended
    game_mode = db.Column(db.String(32), default='standard')
    settings = db.Column(db.Text, nullable=True)  # JSON, frozen at creation
    communication_enabled = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.Float, nullable=True)
    started_at = db.Column(db.Float, nullable=True)
    ended_at = db.Column(db.Float, nullable=True)
    end_reason = db.Column(db.String(32), nullable=True)
    final_standings = db.Column(db.Text, nullable=True)  # JSON list
    players = db.relationship('Player', back_populates='session', order_by='Player.id')
    boundary = db.relationship('Boundary', uselist=False, back_populates='session')
    immunity_spot = db.relationship('ImmunitySpot', uselist=False, back_populates='session')

    def __init__(self, **kwargs):
        super(GameSession, self).__init__(**kwargs)
        if not self.session_code:
            self.session_code = generate_session_code()

    @property
    def config(self):
        return _load(self.settings, {})

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.session_code,
            'host_player_key': self.host_player_key,
            'status': self.status,
            'game_mode': self.game_mode,
            'settings': self.config,
            'communication_enabled': self.communication_enabled,
            'started_at': self.started_at,
            'ended_at': self.ended_at,
            'end_reason': self.end_reason,
        }


class Boundary(db.Model):
    __tablename__ = 'boundary'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, unique=True)
    original_boundary = db.Column(db.Text, nullable=False)  # JSON list of {lat, lng}
    current_boundary = db.Column(db.Text, nullable=False)
    shrink_count = db.Column(db.Integer, default=0, nullable=False)
    session = db.relationship('GameSession', back_populates='boundary')

    @property
    def original(self):
        return _load(self.original_boundary, [])

    @property
    def current(self):
        return _load(self.current_boundary, [])

    def to_dict(self):
        return {
            'original': self.original,
            'coordinates': self.current,
            'shrink_count': self.shrink_count,
        }


class ImmunitySpot(db.Model):
    __tablename__ = 'immunity_spot'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, unique=True)
    location = db.Column(db.Text, nullable=False)
    unlock_threshold = db.Column(db.Integer, default=50, nullable=False)
    activation_cost = db.Column(db.Integer, default=0, nullable=False)
    drain_rate = db.Column(db.Integer, default=1, nullable=False)
    occupied_by = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=True)
    occupied_at = db.Column(db.Float, nullable=True)
    session = db.relationship('GameSession', back_populates='immunity_spot')

    def to_dict(self):
        return {
            'id': self.id,
            'location': _load(self.location),
            'unlock_threshold': self.unlock_threshold,
            'activation_cost': self.activation_cost,
            'drain_rate': self.drain_rate,
            'occupied_by': self.occupied_by,
            'occupied_at': self.occupied_at,
        }


class Mission(db.Model):
    __tablename__ = 'mission'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    assigned_to = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    mission_type = db.Column(db.String(32), nullable=False)
    description = db.Column(db.Text, nullable=False)
    point_value = db.Column(db.Integer, nullable=False)
    risk_level = db.Column(db.String(16), nullable=False)  # safe, low, medium, high, nightmare
    deadline = db.Column(db.Float, nullable=False)
    status = db.Column(db.String(16), default='assigned', nullable=False)  # assigned, completed, failed
    created_at = db.Column(db.Float, nullable=True)
    completed_at = db.Column(db.Float, nullable=True)
    player = db.relationship('Player', foreign_keys=[assigned_to])

    def to_dict(self):
        return {
            'id': self.id,
            'session_id': self.session_id,
            'assigned_to': self.assigned_to,
            'mission_type': self.mission_type,
            'description': self.description,
            'point_value': self.point_value,
            'risk_level': self.risk_level,
            'deadline': self.deadline,
            'status': self.status,
        }


class Violation(db.Model):
    __tablename__ = 'violation'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    violation_type = db.Column(db.String(32), nullable=False)  # out_of_bounds, mission_failed
    penalty_applied = db.Column(db.Text, nullable=True)
    location = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.Float, nullable=False, index=True)


class PointTransaction(db.Model):
    __tablename__ = 'point_transaction'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    from_player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=True)
    to_player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=True)
    amount = db.Column(db.Integer, nullable=False)
    transaction_type = db.Column(db.String(32), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.Float, nullable=False)


class GameEvent(db.Model):
    __tablename__ = 'game_event'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    event_type = db.Column(db.String(32), nullable=False)
    event_data = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.Float, nullable=False)


class GameMessage(db.Model):
    __tablename__ = 'game_message'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    from_player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    to_player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=True)
    message_text = db.Column(db.Text, nullable=False)
    is_broadcast = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.Float, nullable=False)
