"""Violation and economy ledger.

Every change to a player's points goes through here and leaves a
PointTransaction behind; every rule break leaves a Violation. Both are
append-only. Balance checks happen inside the UPDATE statement itself
(see ``PersistenceGateway.try_debit``) so a transfer can never be
validated against a balance that a concurrent drain already spent.
"""

import json
from typing import Any, Dict, List, Optional

from manhunt.models import GameEvent, Mission, Player, PointTransaction, Violation
from .errors import InsufficientFunds, InvariantViolation, NotPermitted, ValidationError
from .gateway import PersistenceGateway


class Ledger:
    def __init__(self, gateway: PersistenceGateway, config):
        self.gateway = gateway
        self.config = config

    def _cfg(self, key, default):
        return self.config.get(key, default)

    # ---- violations ----

    def record_out_of_bounds(self, session_id, player: Player, location, now: float) -> Dict[str, Any]:
        """Log the violation and return the reveal directive for the caller to broadcast."""
        duration = int(self._cfg('REVEAL_DURATION_SEC', 5))
        penalty = {'type': 'location_reveal', 'duration': duration}
        self.gateway.append(Violation(
            session_id=session_id,
            player_id=player.id,
            violation_type='out_of_bounds',
            penalty_applied=json.dumps(penalty),
            location=json.dumps(location) if location is not None else None,
            created_at=now,
        ))
        self.gateway.increment_violations(player.id)
        self.gateway.commit()
        return {'type': 'out_of_bounds', 'penalty': 'location_reveal', 'duration': duration}

    def record_mission_failed(self, session_id, mission: Mission, now: float) -> Optional[Dict[str, Any]]:
        """Fail an assigned mission and charge the penalty.

        Returns None when the mission was already resolved, so a mission
        seen on several ticks is only ever penalised once.
        """
        penalty = int(self._cfg('MISSION_FAIL_PENALTY', 20))
        if not self.gateway.resolve_mission(mission.id, 'failed', now):
            self.gateway.rollback()
            return None
        self.gateway.append(Violation(
            session_id=session_id,
            player_id=mission.assigned_to,
            violation_type='mission_failed',
            penalty_applied=json.dumps({'type': 'point_penalty', 'amount': -penalty}),
            created_at=now,
        ))
        # Penalties may take the stored balance below zero; visible totals are clamped.
        self.gateway.credit(mission.assigned_to, -penalty, violation=True)
        self.gateway.append(PointTransaction(
            session_id=session_id,
            from_player_id=mission.assigned_to,
            amount=-penalty,
            transaction_type='mission_penalty',
            reason=f'Failed mission: {mission.description}',
            created_at=now,
        ))
        self.gateway.commit()
        return {'type': 'mission_failed', 'penalty': -penalty, 'mission_id': mission.id,
                'player_id': mission.assigned_to}

    def record_mission_completed(self, session_id, mission: Mission, player_id, now: float) -> Dict[str, Any]:
        if mission.session_id != int(session_id):
            raise ValidationError('Mission does not belong to this session')
        if mission.assigned_to != player_id:
            raise NotPermitted('Mission is assigned to another player')
        if mission.status != 'assigned':
            raise ValidationError(f'Mission already {mission.status}')
        if mission.deadline <= now:
            raise ValidationError('Mission deadline has passed')
        if not self.gateway.resolve_mission(mission.id, 'completed', now):
            self.gateway.rollback()
            raise ValidationError('Mission already resolved')
        self.gateway.credit(player_id, mission.point_value)
        self.gateway.append(PointTransaction(
            session_id=session_id,
            to_player_id=player_id,
            amount=mission.point_value,
            transaction_type='mission_reward',
            reason=mission.description,
            created_at=now,
        ))
        self.gateway.commit()
        return {'mission_id': mission.id, 'player_id': player_id, 'points': mission.point_value}

    def evaluate_chaos_mode(self, session_id, now: float, window: Optional[float] = None) -> Dict[str, Any]:
        """Trigger when every active player has a violation inside the trailing window."""
        window = float(window if window is not None else self._cfg('CHAOS_WINDOW_SEC', 300))
        active_ids = {p.id for p in self.gateway.players(session_id, status='active')}
        if not active_ids:
            return {'triggered': False}
        violators = self.gateway.recent_violator_ids(session_id, now - window)
        if active_ids.issubset(violators):
            return {'triggered': True, 'duration': int(self._cfg('CHAOS_DURATION_SEC', 10))}
        return {'triggered': False}

    def log_event(self, session_id, event_type: str, data, now: float) -> None:
        self.gateway.append(GameEvent(
            session_id=session_id, event_type=event_type, event_data=json.dumps(data), created_at=now,
        ))
        self.gateway.commit()

    # ---- economy ----

    def credit(self, session_id, player_id, amount: int, transaction_type: str, reason: str, now: float) -> None:
        self.gateway.credit(player_id, amount)
        self.gateway.append(PointTransaction(
            session_id=session_id,
            to_player_id=player_id,
            amount=amount,
            transaction_type=transaction_type,
            reason=reason,
            created_at=now,
        ))

    def award_survival_points(self, session_id, now: float) -> List[int]:
        amount = int(self._cfg('SURVIVAL_POINTS', 10))
        hiders = self.gateway.players(session_id, role='hider', status='active')
        for hider in hiders:
            self.credit(session_id, hider.id, amount, 'survival', 'Survival income', now)
        self.gateway.commit()
        return [h.id for h in hiders]

    def transfer_points(self, session_id, from_player: Player, to_player: Player, amount, now: float) -> Dict[str, Any]:
        try:
            amount = int(amount)
        except (TypeError, ValueError):
            raise ValidationError('amount must be an integer')
        if amount <= 0:
            raise ValidationError('amount must be positive')
        if from_player.id == to_player.id:
            raise ValidationError('Cannot transfer points to yourself')
        if from_player.session_id != int(session_id) or to_player.session_id != int(session_id):
            raise ValidationError('Both players must be in this session')
        if not self.gateway.try_debit(from_player.id, amount):
            self.gateway.rollback()
            raise InsufficientFunds('Insufficient points')
        self.gateway.credit(to_player.id, amount)
        self.gateway.append(PointTransaction(
            session_id=session_id,
            from_player_id=from_player.id,
            to_player_id=to_player.id,
            amount=amount,
            transaction_type='transfer',
            reason='Player point transfer',
            created_at=now,
        ))
        self.gateway.commit()
        return {'from_player_id': from_player.id, 'to_player_id': to_player.id, 'amount': amount}

    # ---- immunity spot ----

    def claim_immunity(self, session_id, player: Player, now: float) -> Dict[str, Any]:
        spot = self.gateway.get_immunity_spot(session_id)
        if not spot:
            raise ValidationError('No immunity spot available')
        if player.status != 'active':
            raise NotPermitted('Only active players can claim immunity')
        if spot.occupied_by == player.id:
            raise InvariantViolation('You already occupy the immunity spot')
        if spot.occupied_by is not None:
            raise InvariantViolation('Immunity spot is occupied')
        if player.points < spot.unlock_threshold:
            raise InsufficientFunds(f'Need {spot.unlock_threshold} points to claim immunity')
        cost = int(spot.activation_cost or 0)
        if cost and not self.gateway.try_debit(player.id, cost):
            self.gateway.rollback()
            raise InsufficientFunds('Insufficient points')
        if not self.gateway.set_occupant(spot.id, player.id, now, expected=None):
            self.gateway.rollback()
            raise InvariantViolation('Immunity spot is occupied')
        if cost:
            self.gateway.append(PointTransaction(
                session_id=session_id, from_player_id=player.id, amount=-cost,
                transaction_type='immunity_activation', reason='Claimed immunity spot', created_at=now,
            ))
        self.gateway.commit()
        return {'player_id': player.id, 'spot_id': spot.id, 'cost': cost}

    def release_immunity(self, session_id, player: Player) -> Dict[str, Any]:
        spot = self.gateway.get_immunity_spot(session_id)
        if not spot or spot.occupied_by != player.id:
            raise ValidationError('You do not occupy the immunity spot')
        if not self.gateway.set_occupant(spot.id, None, None, expected=player.id):
            self.gateway.rollback()
            raise ValidationError('You do not occupy the immunity spot')
        self.gateway.commit()
        return {'player_id': player.id, 'spot_id': spot.id}

    def drain_immunity(self, session_id, final_phase: bool, now: float) -> Optional[Dict[str, Any]]:
        """Charge the occupant for this tick, or evict them if they cannot pay.

        Never leaves a negative stored balance: the debit only applies when
        the balance covers the full rate.
        """
        spot = self.gateway.get_immunity_spot(session_id)
        if not spot or spot.occupied_by is None:
            return None
        occupant = spot.occupied_by
        rate = int(spot.drain_rate or 0)
        if final_phase:
            rate *= int(self._cfg('IMMUNITY_FINAL_PHASE_MULTIPLIER', 10))
        if rate <= 0:
            return None
        if self.gateway.try_debit(occupant, rate):
            self.gateway.append(PointTransaction(
                session_id=session_id, from_player_id=occupant, amount=-rate,
                transaction_type='immunity_drain', reason='Immunity upkeep', created_at=now,
            ))
            self.gateway.commit()
            return {'type': 'drained', 'player_id': occupant, 'amount': rate}
        self.gateway.set_occupant(spot.id, None, None, expected=occupant)
        self.gateway.commit()
        return {'type': 'expired', 'player_id': occupant, 'spot_id': spot.id}
