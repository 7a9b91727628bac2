"""Boundary geometry on (lat, lng) points.

Points are plain dicts with ``lat`` and ``lng`` keys, the same shape the
clients post and the models store. Polygons are lists of such points; the
last vertex is not repeated, the edge back to the first is implied.
"""

import math
from typing import Dict, List

Point = Dict[str, float]
Polygon = List[Point]

EARTH_RADIUS_M = 6371e3


def point_in_polygon(point: Point, polygon: Polygon) -> bool:
    """Ray-casting parity test.

    Points exactly on an edge or vertex may land on either side.
    """
    lat, lng = point['lat'], point['lng']
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i]['lng'], polygon[i]['lat']
        xj, yj = polygon[j]['lng'], polygon[j]['lat']
        if (yi > lat) != (yj > lat):
            if lng < (xj - xi) * (lat - yi) / (yj - yi) + xi:
                inside = not inside
        j = i
    return inside


def centroid(polygon: Polygon) -> Point:
    """Arithmetic mean of the vertices.

    Not the area-weighted centroid; for the convex-ish play areas drawn
    by hosts the two are close enough and this one is what clients expect.
    """
    if not polygon:
        raise ValueError('polygon has no vertices')
    n = len(polygon)
    return {
        'lat': sum(p['lat'] for p in polygon) / n,
        'lng': sum(p['lng'] for p in polygon) / n,
    }


def scale_polygon(polygon: Polygon, factor: float) -> Polygon:
    """Move every vertex toward the centroid, keeping ``factor`` of its offset.

    ``factor`` is not validated. Repeated calls compound:
    scaling by 0.8 twice retains 0.64 of each offset.
    """
    c = centroid(polygon)
    return [
        {
            'lat': c['lat'] + (p['lat'] - c['lat']) * factor,
            'lng': c['lng'] + (p['lng'] - c['lng']) * factor,
        }
        for p in polygon
    ]


def polygon_area(polygon: Polygon) -> float:
    """Planar shoelace area in squared degrees."""
    area = 0.0
    j = len(polygon) - 1
    for i in range(len(polygon)):
        area += polygon[j]['lng'] * polygon[i]['lat'] - polygon[i]['lng'] * polygon[j]['lat']
        j = i
    return abs(area) / 2.0


def haversine_distance(p1: Point, p2: Point) -> float:
    """Great-circle distance in meters."""
    phi1 = math.radians(p1['lat'])
    phi2 = math.radians(p2['lat'])
    dphi = math.radians(p2['lat'] - p1['lat'])
    dlmb = math.radians(p2['lng'] - p1['lng'])
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
