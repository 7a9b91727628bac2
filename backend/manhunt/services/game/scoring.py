from typing import Dict, List, Optional

from .gateway import PersistenceGateway

WINNERS = {
    'all_caught': 'seeker',
    'time_up': 'hiders',
}

REASON_TEXT = {
    'all_caught': 'All hiders caught!',
    'time_up': 'Time ran out!',
    'manual_stop': 'Game stopped by host',
}


def winner_for(reason: str) -> Optional[str]:
    """Seeker wins a full catch, hiders win the clock; a manual stop has no winner."""
    return WINNERS.get(reason)


def format_duration(seconds: float) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def final_standings(gateway: PersistenceGateway, session_id) -> List[Dict]:
    players = gateway.players(session_id)
    players.sort(key=lambda p: (-(p.points or 0), p.id))
    return [
        {
            'player_id': p.id,
            'player_key': p.player_key,
            'player_name': p.name,
            'role': p.role,
            'points': p.visible_points,
            'status': p.status,
            'violations': p.violations,
        }
        for p in players
    ]


def game_result(gateway: PersistenceGateway, session_id, reason: str, elapsed: float, shrinks: int) -> Dict:
    standings = final_standings(gateway, session_id)
    return {
        'winner': winner_for(reason),
        'reason_code': reason,
        'reason': REASON_TEXT.get(reason, reason),
        'finalScores': standings,
        'gameStats': {
            'duration': format_duration(elapsed),
            'caught': sum(1 for p in standings if p['status'] == 'caught'),
            'missions': gateway.count_missions(session_id, 'completed'),
            'shrinks': shrinks,
        },
    }
