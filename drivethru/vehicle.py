# Copyright (c) 2025
# MIT License
# -----------------------------------------------------------------------------
# vehicle.py
# -----------------------------------------------------------------------------
# Purpose:
#   One vehicle in the lane: position/heading plus a per-tick state machine
#   that follows waypoints, avoids the car ahead, queues single file and
#   waits at service stops.
#
# Design notes:
#   - No global coordination. Vehicles only see each other through the
#     spatial index (detection cone, queue slot) and contact notifications.
#   - Contacts arrive through a single-slot inbox that is drained at the start
#     of the next tick, so the host may report them at any time.
#   - Termination is reported through `on_terminated(agent_id)` exactly once.
#
# Usage:
#   car = VehicleAgent(1, params, spawn_pos, heading, graph.initial, graph,
#                      index, rng, facility=scheduler)
#   car.tick(dt)
# -----------------------------------------------------------------------------

from __future__ import annotations
import logging
import math
from dataclasses import dataclass, fields
from enum import Enum
from typing import Callable, Optional

from .errors import ConfigurationError
from .network import Waypoint, WaypointGraph
from .policies import CONSERVATIVE, QUEUE_POLICIES, cone_blocked, queue_slot_blocked
from .spatial import Vec, add, heading_vector, length_sq, rotate_towards, scale, sub

log = logging.getLogger(__name__)

# countdowns at or below this are treated as expired (float drift from dt sums)
_TIMER_EPS = 1e-9

class AgentState(Enum):
    TRAVELING = "traveling"
    WAITING_FOR_TRAFFIC = "waiting_for_traffic"
    WAITING_FOR_SERVICE = "waiting_for_service"
    TERMINATED = "terminated"

@dataclass
class VehicleParams:
    """Kinematic and sensing constants for one vehicle template."""
    name: str = "car"
    speed: float = 2.0                      # units per second
    rotation_speed: float = 5.0             # heading smoothing rate (1/s)
    stop_distance: float = 0.2              # arrival radius around a waypoint
    detection_distance: float = 0.5         # radius of the collision cone
    cone_angle: float = 75.0                # full cone angle, degrees
    waiting_gap: float = 1.5                # queue slot length ahead of the car
    queue_box_width: float = 0.5            # queue slot width
    footprint_radius: float = 0.25          # body used for overlap tests
    collision_recovery_time: float = 0.5    # brake time after touching a car
    traffic_wait_time: float = 0.5          # re-check period when the cone is blocked
    queue_policy: str = CONSERVATIVE
    layer: str = "vehicle"

    def __post_init__(self):
        for name in ("speed", "rotation_speed", "stop_distance", "detection_distance",
                     "cone_angle", "waiting_gap", "queue_box_width", "footprint_radius",
                     "collision_recovery_time", "traffic_wait_time"):
            val = getattr(self, name)
            if val < 0:
                raise ConfigurationError(f"{self.name}: {name} must be non-negative, got {val}")
        if self.queue_policy not in QUEUE_POLICIES:
            raise ConfigurationError(f"{self.name}: unknown queue_policy {self.queue_policy!r}")

    @classmethod
    def from_cfg(cls, entry: dict) -> "VehicleParams":
        known = {f.name for f in fields(cls)}
        unknown = set(entry) - known
        if unknown:
            raise ConfigurationError(f"Unknown vehicle settings: {sorted(unknown)}")
        return cls(**entry)

class VehicleAgent:
    """A vehicle driving the waypoint graph.

    Parameters
    ----------
    agent_id : int
        Identity reported back on termination.
    params : VehicleParams
        Template constants.
    position, heading : tuple, float
        Initial pose; heading in radians (0 = +x).
    initial_waypoint : Waypoint
        First target. Required; a vehicle without one refuses to activate.
    graph : WaypointGraph
        Topology used to pick successors.
    spatial : SpatialIndex-like
        Anything with query_circle/query_box.
    rng : random.Random
        Source for branch choices.
    facility : FacilityScheduler, optional
        Supplies service times and receives the termination notice. Without
        one, service stops take zero time.
    on_terminated : callable, optional
        Overrides the termination callback (defaults to the facility's).
    """
    def __init__(self, agent_id: int, params: VehicleParams, position: Vec, heading: float,
                 initial_waypoint: Optional[Waypoint], graph: WaypointGraph, spatial, rng,
                 facility=None, on_terminated: Optional[Callable[[int], None]] = None):
        if initial_waypoint is None:
            log.error("Vehicle %s has no initial waypoint; refusing to activate", agent_id)
            raise ConfigurationError(f"Vehicle {agent_id} has no initial waypoint")
        self.agent_id = agent_id
        self.params = params
        self.position: Vec = (float(position[0]), float(position[1]))
        self.heading = float(heading)
        self.current_waypoint: Waypoint = initial_waypoint
        self.graph = graph
        self.spatial = spatial
        self.rng = rng
        self.facility = facility
        if on_terminated is None and facility is not None:
            on_terminated = facility.on_agent_terminated
        self.on_terminated = on_terminated

        self.state = AgentState.TRAVELING
        self.remaining_wait_time = 0.0
        self.has_waited_at_current_stop = False
        self.active = True
        self.is_stationary = True
        self.blocked_by: Optional[str] = None
        self.distance_travelled = 0.0
        self._touched = False
        self._stashed_service: Optional[float] = None
        self._notified = False

    def __repr__(self) -> str:
        return f"VehicleAgent({self.agent_id}, {self.state.value}, at={self.current_waypoint.wid})"

    # Occupant interface for the spatial index
    @property
    def layer(self) -> str:
        return self.params.layer

    @property
    def footprint_radius(self) -> float:
        return self.params.footprint_radius

    @property
    def terminated(self) -> bool:
        return self.state is AgentState.TERMINATED

    def notify_contact(self, other, layer: str):
        """Host callback: we are now touching `other` on `layer`."""
        if other is self or layer != self.params.layer:
            return
        self._touched = True

    # ------------------------------------------------------------------ tick

    def tick(self, dt: float):
        if not self.active or self.state is AgentState.TERMINATED:
            return
        self.is_stationary = True
        self.blocked_by = None

        # Emergency brake after touching another car
        if self._touched:
            self._touched = False
            if self.state is AgentState.WAITING_FOR_SERVICE:
                self._stashed_service = self.remaining_wait_time
            self._wait_for_traffic(self.params.collision_recovery_time, "contact")
            return

        if self.state is AgentState.WAITING_FOR_TRAFFIC:
            self.remaining_wait_time -= dt
            if self.remaining_wait_time > _TIMER_EPS:
                return
            if self._car_ahead():
                self._wait_for_traffic(self.params.traffic_wait_time, "cone")
                return
            self._resume()
        elif self.state is AgentState.TRAVELING and self._car_ahead():
            self._wait_for_traffic(self.params.traffic_wait_time, "cone")
            return

        if self.state is AgentState.WAITING_FOR_SERVICE:
            self.remaining_wait_time -= dt
            if self.remaining_wait_time > _TIMER_EPS:
                return
            self.has_waited_at_current_stop = True
            self.state = AgentState.TRAVELING
            self.remaining_wait_time = 0.0
            if self._car_ahead():
                self.blocked_by = "cone"
                return
            if self._queue_slot_occupied():
                self.blocked_by = "queue"
                return

        wp = self.current_waypoint
        to_wp = sub(wp.position, self.position)
        dist_sq = length_sq(to_wp)
        if dist_sq > 0.0:
            target = math.atan2(to_wp[1], to_wp[0])
            self.heading = rotate_towards(self.heading, target, self.params.rotation_speed * dt)

        if dist_sq < self.params.stop_distance ** 2:
            if wp.is_stop_point and not self.has_waited_at_current_stop:
                self._begin_service(wp)
                return
            nxt = self.graph.choose_next(wp, self.rng)
            if nxt is None:
                self._terminate("journey complete")
                return
            self.current_waypoint = nxt
            self.has_waited_at_current_stop = False

        if self._queue_slot_occupied():
            self.blocked_by = "queue"
            return

        step = self.params.speed * dt
        if step > 0.0:
            self.position = add(self.position, scale(heading_vector(self.heading), step))
            self.distance_travelled += step
            self.is_stationary = False

    # --------------------------------------------------------------- sensing

    def _car_ahead(self) -> bool:
        others = self.spatial.query_circle(
            self.position, self.params.detection_distance, self.params.layer, exclude=self,
        )
        return cone_blocked(self.position, self.heading, self.params.cone_angle, others)

    def _queue_slot_occupied(self) -> bool:
        gap = self.params.waiting_gap
        center = add(self.position, scale(heading_vector(self.heading), gap * 0.5))
        half_extents = (gap * 0.5, self.params.queue_box_width * 0.5)
        occupants = self.spatial.query_box(
            center, half_extents, self.heading, self.params.layer, exclude=self,
        )
        return queue_slot_blocked(occupants, self.params.queue_policy)

    # ----------------------------------------------------------- transitions

    def _wait_for_traffic(self, duration: float, reason: str):
        self.state = AgentState.WAITING_FOR_TRAFFIC
        self.remaining_wait_time = duration
        self.blocked_by = reason

    def _resume(self):
        """Leave a traffic wait, returning to an interrupted service if any."""
        if self._stashed_service is not None:
            self.state = AgentState.WAITING_FOR_SERVICE
            self.remaining_wait_time = self._stashed_service
            self._stashed_service = None
        else:
            self.state = AgentState.TRAVELING
            self.remaining_wait_time = 0.0

    def _begin_service(self, wp: Waypoint):
        duration = 0.0
        if self.facility is not None:
            duration = max(0.0, self.facility.service_time(wp.service_type))
        self.state = AgentState.WAITING_FOR_SERVICE
        self.remaining_wait_time = duration
        log.debug("Vehicle %s stopped at %s for %.2fs", self.agent_id, wp.wid, duration)

    def _terminate(self, reason: str):
        self.state = AgentState.TERMINATED
        self.remaining_wait_time = 0.0
        self._stashed_service = None
        self.active = False
        if self._notified:
            return
        self._notified = True
        log.debug("Vehicle %s terminated (%s)", self.agent_id, reason)
        if self.on_terminated is not None:
            self.on_terminated(self.agent_id)

    # ------------------------------------------------------------ lifecycle

    def despawn(self):
        """Host-initiated removal; notifies like a normal exit."""
        if self.state is AgentState.TERMINATED:
            return
        self._terminate("despawned")

    def freeze(self):
        """Stop ticking for good without terminating (simulation cancelled)."""
        self.active = False
