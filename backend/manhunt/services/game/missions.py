"""Risk-tiered mission generation.

The closer a hider is to a seeker when a wave spawns, the riskier the
mission categories they are offered and the larger the multiplier on
the category's base points.
"""

import random
from typing import Dict, List, Optional, Sequence, Tuple

from manhunt.models import Mission, Player
from .gateway import PersistenceGateway
from .geometry import haversine_distance

# (upper distance bound in meters, tier, multiplier); first match wins
RISK_TIERS: Sequence[Tuple[float, str, float]] = (
    (10.0, 'nightmare', 3.0),
    (20.0, 'high', 2.0),
    (40.0, 'medium', 1.5),
)
DEFAULT_TIER = ('safe', 1.0)

# tier -> ((category, weight), ...)
CATEGORY_WEIGHTS: Dict[str, Tuple[Tuple[str, float], ...]] = {
    'nightmare': (('nightmare', 0.5), ('proximity', 0.5)),
    'high': (('proximity', 0.4), ('stealth', 0.6)),
    'medium': (('task', 0.5), ('location', 0.5)),
    'safe': (('location', 0.5), ('task', 0.5)),
}

BASE_POINTS = {
    'location': 30,
    'task': 40,
    'proximity': 80,
    'stealth': 60,
    'nightmare': 150,
}

TEMPLATES = {
    'location': [
        'Move to the {room} within {time} seconds',
        'Enter the {room} area',
        'Reach {landmark} without being seen',
    ],
    'task': [
        'Turn the lights on and off in the {room}',
        'Take a photo of {object}',
        'Do {count} jumping jacks silently',
        'Stand completely still for {duration} seconds',
    ],
    'proximity': [
        'Get within 10 meters of the seeker',
        'Stay near the immunity spot for 2 minutes',
        'Enter the same room as the seeker',
    ],
    'stealth': [
        'Cross the open area without detection',
        'Enter and exit the {room} unseen',
        'Make a noise to draw the seeker away',
    ],
    'nightmare': [
        'Tag the seeker (hunt the hunter)',
        "Retrieve an object from the seeker's last location",
        "Survive in the seeker's line of sight for 45 seconds",
    ],
}

ROOMS = ['kitchen', 'living room', 'bedroom', 'bathroom', 'hallway']
OBJECTS = ['a window', 'a door', 'a chair', 'a plant', 'the ceiling']

SAFE_MISSION = {
    'mission_type': 'task',
    'description': 'Take a photo of any object near you',
    'point_value': 25,
    'risk_level': 'safe',
}


def risk_for_distance(distance_m: float) -> Tuple[str, float]:
    for bound, tier, multiplier in RISK_TIERS:
        if distance_m < bound:
            return tier, multiplier
    return DEFAULT_TIER


class MissionGenerator:
    def __init__(self, gateway: PersistenceGateway, config, rng: Optional[random.Random] = None):
        self.gateway = gateway
        self.config = config
        self.rng = rng or random.Random()

    @property
    def deadline_offset(self) -> float:
        return float(self.config.get('MISSION_DEADLINE_SEC', 180))

    def select_category(self, tier: str) -> str:
        weighted = CATEGORY_WEIGHTS.get(tier, CATEGORY_WEIGHTS['safe'])
        categories = [c for c, _ in weighted]
        weights = [w for _, w in weighted]
        return self.rng.choices(categories, weights=weights, k=1)[0]

    def fill_template(self, category: str) -> str:
        template = self.rng.choice(TEMPLATES.get(category, TEMPLATES['location']))
        return template.format(
            room=self.rng.choice(ROOMS),
            time=self.rng.randint(60, 179),
            count=self.rng.randint(5, 19),
            duration=self.rng.randint(30, 89),
            object=self.rng.choice(OBJECTS),
            landmark='the marked location',
        )

    def build(self, player_location, seeker_location) -> Dict:
        """Pick tier, category, text and points without touching storage."""
        if not player_location or not seeker_location:
            return dict(SAFE_MISSION)
        distance = haversine_distance(player_location, seeker_location)
        tier, multiplier = risk_for_distance(distance)
        category = self.select_category(tier)
        return {
            'mission_type': category,
            'description': self.fill_template(category),
            'point_value': int(BASE_POINTS.get(category, 30) * multiplier),
            'risk_level': tier,
        }

    def generate_for_player(self, session_id, player: Player, seeker_location, now: float) -> Mission:
        details = self.build(player.location, seeker_location)
        mission = Mission(
            session_id=session_id,
            assigned_to=player.id,
            deadline=now + self.deadline_offset,
            status='assigned',
            created_at=now,
            **details,
        )
        self.gateway.add(mission)
        return mission

    def generate_for_all_hiders(self, session_id, now: float) -> List[Mission]:
        """One mission per active hider, rated against the nearest seeker with a known location."""
        seeker_locations = [
            s.location for s in self.gateway.players(session_id, role='seeker') if s.location
        ]
        missions = []
        for hider in self.gateway.players(session_id, role='hider', status='active'):
            missions.append(self.generate_for_player(
                session_id, hider, self._nearest(hider.location, seeker_locations), now,
            ))
        return missions

    @staticmethod
    def _nearest(location, candidates):
        if not location or not candidates:
            return None
        return min(candidates, key=lambda c: haversine_distance(location, c))
