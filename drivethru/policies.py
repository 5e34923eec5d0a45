# Copyright (c) 2025
# MIT License
# -----------------------------------------------------------------------------
# policies.py
# -----------------------------------------------------------------------------
# Purpose:
#   Pure decision rules used by vehicles: does something in the detection
#   cone block us, and does the occupant of our queue slot block us.
#
# Design notes:
#   - Keep pure functions to ease testing (inputs -> decision).
#   - A cone half-angle of 0 degenerates to a straight forward probe.
#
# Usage:
#   from drivethru.policies import cone_blocked, queue_slot_blocked
# -----------------------------------------------------------------------------

from __future__ import annotations
import math
from typing import Iterable

from .spatial import Vec, angle_between, heading_vector, length_sq, sub

CONSERVATIVE = "conservative"          # any occupant of the slot blocks
STATIONARY_ONLY = "stationary_only"    # only a stopped occupant blocks
QUEUE_POLICIES = (CONSERVATIVE, STATIONARY_ONLY)

def cone_blocked(position: Vec, heading: float, cone_angle_deg: float,
                 others: Iterable) -> bool:
    """True if any of `others` lies within half the cone angle of our heading."""
    forward = heading_vector(heading)
    half = math.radians(cone_angle_deg) * 0.5
    for other in others:
        to_other = sub(other.position, position)
        if length_sq(to_other) == 0.0:
            # sharing our position counts as directly ahead
            return True
        if angle_between(forward, to_other) <= half:
            return True
    return False

def queue_slot_blocked(occupants: Iterable, policy: str = CONSERVATIVE) -> bool:
    for occ in occupants:
        if policy == CONSERVATIVE:
            return True
        if getattr(occ, "is_stationary", True):
            return True
    return False
