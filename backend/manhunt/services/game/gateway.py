"""SQLAlchemy-backed persistence gateway for the game services.

All reads return ORM snapshots; all writes that affect the point economy
or mission lifecycle are single conditional UPDATE statements so the
database row, not a previously loaded object, decides whether they apply.
"""

import functools
import json
from typing import Iterable, List, Optional, Set

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError

from manhunt import db
from manhunt.models import (
    Boundary, GameEvent, GameSession, ImmunitySpot, Mission, Player, PointTransaction, Violation,
)
from .errors import NotFound, TransientPersistenceFailure


def _guarded(fn):
    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise TransientPersistenceFailure(f"{fn.__name__} failed: {exc.__class__.__name__}") from exc
    return wrapper


class PersistenceGateway:
    @property
    def session(self):
        return db.session

    # ---- sessions ----

    @_guarded
    def get_session(self, session_id) -> Optional[GameSession]:
        return self.session.get(GameSession, session_id)

    def require_session(self, session_id) -> GameSession:
        game_session = self.get_session(session_id)
        if not game_session:
            raise NotFound(f'Session {session_id} not found')
        return game_session

    @_guarded
    def get_session_by_code(self, code: str) -> Optional[GameSession]:
        return GameSession.query.filter_by(session_code=code).first()

    @_guarded
    def set_communication_enabled(self, session_id) -> bool:
        """Flip the flag once; returns False when it was already on."""
        result = self.session.execute(
            update(GameSession)
            .where(GameSession.id == session_id, GameSession.communication_enabled.is_(False))
            .values(communication_enabled=True)
        )
        self.session.commit()
        return result.rowcount == 1

    # ---- players ----

    @_guarded
    def get_player(self, player_id) -> Optional[Player]:
        return self.session.get(Player, player_id)

    def require_player(self, player_id, session_id=None) -> Player:
        player = self.get_player(player_id)
        if not player or (session_id is not None and player.session_id != int(session_id)):
            raise NotFound(f'Player {player_id} not found')
        return player

    @_guarded
    def get_player_by_key(self, player_key: str, session_id=None) -> Optional[Player]:
        query = Player.query.filter_by(player_key=player_key)
        if session_id is not None:
            query = query.filter_by(session_id=session_id)
        return query.order_by(Player.id.desc()).first()

    @_guarded
    def players(self, session_id, role: Optional[str] = None, status: Optional[str] = None) -> List[Player]:
        query = Player.query.filter_by(session_id=session_id)
        if role:
            query = query.filter_by(role=role)
        if status:
            query = query.filter_by(status=status)
        return query.order_by(Player.id).all()

    @_guarded
    def count_active_hiders(self, session_id) -> int:
        return Player.query.filter_by(session_id=session_id, role='hider', status='active').count()

    @_guarded
    def try_debit(self, player_id, amount: int) -> bool:
        """Subtract ``amount`` only if the stored balance covers it. Not committed."""
        result = self.session.execute(
            update(Player)
            .where(Player.id == player_id, Player.points >= amount)
            .values(points=Player.points - amount)
        )
        return result.rowcount == 1

    @_guarded
    def credit(self, player_id, amount: int, violation: bool = False) -> None:
        """Add a signed ``amount``. Not committed."""
        values = {'points': Player.points + amount}
        if violation:
            values['violations'] = Player.violations + 1
        self.session.execute(update(Player).where(Player.id == player_id).values(**values))

    @_guarded
    def increment_violations(self, player_id) -> None:
        self.session.execute(
            update(Player).where(Player.id == player_id).values(violations=Player.violations + 1)
        )

    @_guarded
    def mark_caught(self, player_id, when: float) -> bool:
        result = self.session.execute(
            update(Player)
            .where(Player.id == player_id, Player.status == 'active')
            .values(status='caught', tagged_at=when)
        )
        self.session.commit()
        return result.rowcount == 1

    # ---- boundary / immunity ----

    @_guarded
    def get_boundary(self, session_id) -> Optional[Boundary]:
        return Boundary.query.filter_by(session_id=session_id).first()

    @_guarded
    def replace_boundary(self, session_id, polygon) -> None:
        self.session.execute(
            update(Boundary)
            .where(Boundary.session_id == session_id)
            .values(current_boundary=json.dumps(polygon), shrink_count=Boundary.shrink_count + 1)
        )
        self.session.commit()

    @_guarded
    def get_immunity_spot(self, session_id) -> Optional[ImmunitySpot]:
        return ImmunitySpot.query.filter_by(session_id=session_id).first()

    @_guarded
    def set_occupant(self, spot_id, player_id, when: Optional[float], expected) -> bool:
        """Swap the occupant only if it is still ``expected``. Not committed."""
        criteria = [ImmunitySpot.id == spot_id]
        if expected is None:
            criteria.append(ImmunitySpot.occupied_by.is_(None))
        else:
            criteria.append(ImmunitySpot.occupied_by == expected)
        result = self.session.execute(
            update(ImmunitySpot).where(*criteria).values(occupied_by=player_id, occupied_at=when)
        )
        return result.rowcount == 1

    # ---- missions ----

    @_guarded
    def get_mission(self, mission_id) -> Optional[Mission]:
        return self.session.get(Mission, mission_id)

    @_guarded
    def expired_missions(self, session_id, now: float) -> List[Mission]:
        return (
            Mission.query.filter(
                Mission.session_id == session_id,
                Mission.status == 'assigned',
                Mission.deadline <= now,
            )
            .order_by(Mission.deadline, Mission.id)
            .all()
        )

    @_guarded
    def missions(self, session_id, player_id=None, statuses: Optional[Iterable[str]] = None) -> List[Mission]:
        query = Mission.query.filter_by(session_id=session_id)
        if player_id is not None:
            query = query.filter_by(assigned_to=player_id)
        if statuses:
            query = query.filter(Mission.status.in_(list(statuses)))
        return query.order_by(Mission.deadline, Mission.id).all()

    @_guarded
    def count_missions(self, session_id, status: str, player_id=None) -> int:
        query = Mission.query.filter_by(session_id=session_id, status=status)
        if player_id is not None:
            query = query.filter_by(assigned_to=player_id)
        return query.count()

    @_guarded
    def resolve_mission(self, mission_id, status: str, when: float) -> bool:
        """Move an assigned mission to a terminal status. Not committed."""
        values = {'status': status}
        if status == 'completed':
            values['completed_at'] = when
        result = self.session.execute(
            update(Mission).where(Mission.id == mission_id, Mission.status == 'assigned').values(**values)
        )
        return result.rowcount == 1

    # ---- ledger records ----

    @_guarded
    def recent_violator_ids(self, session_id, since: float) -> Set[int]:
        rows = (
            self.session.query(func.distinct(Violation.player_id))
            .filter(Violation.session_id == session_id, Violation.created_at > since)
            .all()
        )
        return {row[0] for row in rows}

    @_guarded
    def count_violations(self, player_id) -> int:
        return Violation.query.filter_by(player_id=player_id).count()

    @_guarded
    def append(self, record) -> None:
        if not isinstance(record, (Violation, PointTransaction, GameEvent)):
            raise TypeError(f'{type(record).__name__} is not an append-only ledger record')
        self.session.add(record)

    # ---- generic ----

    @_guarded
    def add(self, obj, commit: bool = True) -> None:
        self.session.add(obj)
        if commit:
            self.session.commit()

    @_guarded
    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
