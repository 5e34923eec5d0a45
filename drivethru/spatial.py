# Copyright (c) 2025
# MIT License
# -----------------------------------------------------------------------------
# spatial.py
# -----------------------------------------------------------------------------
# Purpose:
#   2D vector helpers and a reference broad-phase index answering
#   "what occupies region R on collision layer L".
#
# Design notes:
#   - Occupants are any objects exposing `position`, `footprint_radius` and
#     `layer`. Footprints are circles.
#   - Queries read occupants' live positions, so an agent that moved earlier
#     in a tick is seen at its new position by agents ticked after it.
#   - The querying agent passes itself as `exclude`.
#
# Usage:
#   index = SpatialIndex(); index.insert(agent)
#   hits = index.query_circle(center, 0.5, layer="vehicle", exclude=agent)
# -----------------------------------------------------------------------------

from __future__ import annotations
import math
from typing import Any, Iterable, List, Optional, Tuple

Vec = Tuple[float, float]

# ------------------------------ helpers ------------------------------------

def add(a: Vec, b: Vec) -> Vec:
    return (a[0] + b[0], a[1] + b[1])

def sub(a: Vec, b: Vec) -> Vec:
    return (a[0] - b[0], a[1] - b[1])

def scale(a: Vec, k: float) -> Vec:
    return (a[0] * k, a[1] * k)

def dot(a: Vec, b: Vec) -> float:
    return a[0] * b[0] + a[1] * b[1]

def length_sq(a: Vec) -> float:
    return a[0] * a[0] + a[1] * a[1]

def clamp(x: float, lo: float, hi: float) -> float:
    return lo if x < lo else hi if x > hi else x

def heading_vector(heading: float) -> Vec:
    """Unit forward vector for a heading in radians (0 = +x, CCW positive)."""
    return (math.cos(heading), math.sin(heading))

def wrap_angle(a: float) -> float:
    """Wrap an angle into [-pi, pi)."""
    return (a + math.pi) % (2.0 * math.pi) - math.pi

def angle_between(a: Vec, b: Vec) -> float:
    """Unsigned angle in radians between two vectors; 0 if either is zero."""
    la = math.sqrt(length_sq(a))
    lb = math.sqrt(length_sq(b))
    if la == 0.0 or lb == 0.0:
        return 0.0
    cos = clamp(dot(a, b) / (la * lb), -1.0, 1.0)
    return math.acos(cos)

def rotate_towards(current: float, target: float, fraction: float) -> float:
    """Turn `current` by `fraction` of the shortest arc toward `target`."""
    fraction = clamp(fraction, 0.0, 1.0)
    return wrap_angle(current + wrap_angle(target - current) * fraction)

# ------------------------------ index --------------------------------------

class SpatialIndex:
    """Brute-force occupancy index over circular footprints.

    Parameters
    ----------
    occupants : iterable, optional
        Objects to register immediately.

    Notes
    -----
    - Every query is O(n) in the number of registered occupants; the
      facilities simulated here hold tens of vehicles.
    - Results keep registration order so runs are reproducible.
    """
    def __init__(self, occupants: Iterable[Any] = ()):
        self._occupants: List[Any] = []
        for occ in occupants:
            self.insert(occ)

    def __len__(self) -> int:
        return len(self._occupants)

    def __contains__(self, occupant: Any) -> bool:
        return any(o is occupant for o in self._occupants)

    def insert(self, occupant: Any):
        if occupant not in self:
            self._occupants.append(occupant)

    def remove(self, occupant: Any):
        self._occupants = [o for o in self._occupants if o is not occupant]

    def _candidates(self, layer: Optional[str], exclude: Any):
        for occ in self._occupants:
            if occ is exclude:
                continue
            if layer is not None and getattr(occ, "layer", None) != layer:
                continue
            yield occ

    def query_circle(self, center: Vec, radius: float, layer: Optional[str] = None,
                     exclude: Any = None) -> List[Any]:
        """Occupants whose footprint overlaps the circle (center, radius)."""
        hits = []
        for occ in self._candidates(layer, exclude):
            reach = radius + getattr(occ, "footprint_radius", 0.0)
            if length_sq(sub(occ.position, center)) <= reach * reach:
                hits.append(occ)
        return hits

    def query_box(self, center: Vec, half_extents: Vec, rotation: float,
                  layer: Optional[str] = None, exclude: Any = None) -> List[Any]:
        """Occupants whose footprint overlaps an oriented box.

        `half_extents` is (along, across) relative to the box's local axis,
        which points along `rotation` (radians).
        """
        u = heading_vector(rotation)
        v = (-u[1], u[0])
        hx, hy = half_extents
        hits = []
        for occ in self._candidates(layer, exclude):
            rel = sub(occ.position, center)
            lx, ly = dot(rel, u), dot(rel, v)
            # closest point on the box to the footprint center, in local frame
            cx, cy = clamp(lx, -hx, hx), clamp(ly, -hy, hy)
            r = getattr(occ, "footprint_radius", 0.0)
            if (lx - cx) ** 2 + (ly - cy) ** 2 <= r * r:
                hits.append(occ)
        return hits

    def contacts(self, layer: Optional[str] = None) -> List[Tuple[Any, Any]]:
        """Pairs of occupants whose footprints interpenetrate."""
        occs = list(self._candidates(layer, None))
        pairs = []
        for i, a in enumerate(occs):
            for b in occs[i + 1:]:
                reach = getattr(a, "footprint_radius", 0.0) + getattr(b, "footprint_radius", 0.0)
                if length_sq(sub(a.position, b.position)) < reach * reach:
                    pairs.append((a, b))
        return pairs
