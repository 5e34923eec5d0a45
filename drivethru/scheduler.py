# Copyright (c) 2025
# MIT License
# -----------------------------------------------------------------------------
# scheduler.py
# -----------------------------------------------------------------------------
# Purpose:
#   The facility: owns the live vehicles, runs the arrival loop, enforces the
#   admission limit, hands out service times and keeps statistics.
#
# Design notes:
#   - Queueing inputs (inter-arrival time or customers/hour, service time,
#     variations, stage split) live in FacilityParams; derived fields are
#     recomputed on every change and before every scheduling decision.
#   - The arrival loop is an "arrival" event that reschedules itself after an
#     exponential gap; stop() ends it and freezes the surviving vehicles.
#   - Vehicle templates can be swapped mid-run; only later spawns see them.
#   - Vehicles get a reference to the scheduler at creation and call
#     on_agent_terminated(agent_id) once when they leave.
#
# Usage:
#   fac = FacilityScheduler(params, graph, SpatialIndex(), [VehicleParams()])
#   env = Env(fac, dt=0.1); fac.start(env); env.run_until(3600)
# -----------------------------------------------------------------------------

from __future__ import annotations
import logging
import math
import random
from dataclasses import dataclass, field, fields, replace
from typing import Dict, List, Optional

from .arrivals import arrival_bounds, draw_interarrival, interarrival_from_rate
from .clock import Event
from .errors import ConfigurationError
from .metrics import FacilityStats
from .network import ServiceType, WaypointGraph
from .service import StageSplit, allocate_service_time
from .spatial import Vec
from .vehicle import VehicleAgent, VehicleParams

log = logging.getLogger(__name__)

@dataclass
class FacilityParams:
    """Queueing inputs for the lane plus the fields derived from them.

    `customers_per_hour`, when set, overrides `average_inter_arrival_time`
    (3600 / customers_per_hour). Derived fields are read-only outputs of
    reconcile().
    """
    average_inter_arrival_time: float = 3.0
    customers_per_hour: Optional[float] = None
    arrival_variation: float = 0.2
    clamp_arrivals: bool = True
    average_service_time: float = 180.0
    service_variation: float = 0.2
    order_percentage: float = 0.2
    payment_percentage: float = 0.15
    max_cars: int = 10
    spawn_clear_radius: float = 0.5

    preparation_percentage: float = field(init=False, default=0.0)
    traffic_intensity: float = field(init=False, default=0.0)
    min_inter_arrival: float = field(init=False, default=0.0)
    max_inter_arrival: float = field(init=False, default=0.0)
    split: Optional[StageSplit] = field(init=False, default=None, repr=False)

    def __post_init__(self):
        self.reconcile()

    def reconcile(self):
        if self.customers_per_hour is not None:
            self.average_inter_arrival_time = interarrival_from_rate(self.customers_per_hour)
        if self.average_inter_arrival_time <= 0:
            raise ConfigurationError(
                f"average_inter_arrival_time must be positive, got {self.average_inter_arrival_time}")
        if self.average_service_time < 0:
            raise ConfigurationError(
                f"average_service_time must be non-negative, got {self.average_service_time}")
        for name in ("arrival_variation", "service_variation"):
            v = getattr(self, name)
            if not 0.0 <= v <= 1.0:
                raise ConfigurationError(f"{name} must be in [0, 1], got {v}")
        if self.max_cars < 0:
            raise ConfigurationError(f"max_cars must be non-negative, got {self.max_cars}")
        self.split = StageSplit.from_percentages(self.order_percentage, self.payment_percentage)
        self.preparation_percentage = self.split.preparation
        self.traffic_intensity = self.average_service_time / self.average_inter_arrival_time
        self.min_inter_arrival, self.max_inter_arrival = arrival_bounds(
            self.average_inter_arrival_time, self.arrival_variation)

    def configure(self, **changes) -> "FacilityParams":
        """Hot-reload inputs; all-or-nothing, derived fields recomputed."""
        settable = {f.name for f in fields(self) if f.init}
        unknown = set(changes) - settable
        if unknown:
            raise ConfigurationError(f"Unknown facility settings: {sorted(unknown)}")
        # An explicit inter-arrival time replaces a previous customers/hour target
        if "average_inter_arrival_time" in changes and "customers_per_hour" not in changes:
            changes["customers_per_hour"] = None
        candidate = replace(self, **changes)   # validates via __post_init__
        for f in fields(self):
            setattr(self, f.name, getattr(candidate, f.name))
        return self

    @classmethod
    def from_cfg(cls, cfg: dict) -> "FacilityParams":
        settable = {f.name for f in fields(cls) if f.init}
        unknown = set(cfg) - settable
        if unknown:
            raise ConfigurationError(f"Unknown facility settings: {sorted(unknown)}")
        return cls(**cfg)

class FacilityScheduler:
    """Arrival loop, admission control and statistics for one run.

    Parameters
    ----------
    params : FacilityParams
        Queueing inputs; may be changed mid-run through configure().
    graph : WaypointGraph
        Lane topology; vehicles start toward `graph.initial`.
    spatial : SpatialIndex-like
        Shared occupancy index.
    templates : list[VehicleParams]
        Vehicle kinds, one picked uniformly per spawn.
    spawn_position, spawn_heading : tuple, float
        Pose of newly spawned vehicles (heading in radians).
    rng : random.Random, optional
        Stream for arrivals, service draws, templates and branch choices.
    """
    def __init__(self, params: FacilityParams, graph: WaypointGraph, spatial,
                 templates: List[VehicleParams], spawn_position: Vec = (0.0, 0.0),
                 spawn_heading: float = math.pi / 2, rng: Optional[random.Random] = None):
        if not templates:
            raise ConfigurationError("Facility needs at least one vehicle template")
        if graph is None or getattr(graph, "initial", None) is None:
            raise ConfigurationError("Facility needs a waypoint graph with an initial waypoint")
        self.params = params
        self.graph = graph
        self.spatial = spatial
        self.templates = list(templates)
        self.spawn_position: Vec = (float(spawn_position[0]), float(spawn_position[1]))
        self.spawn_heading = float(spawn_heading)
        self.rng = rng or random.Random()
        self.stats = FacilityStats()
        self.agents: Dict[int, VehicleAgent] = {}   # spawn order
        self.active = False
        self.env = None
        self._next_id = 0

    @property
    def current_car_count(self) -> int:
        return self.stats.current_car_count

    @property
    def traffic_intensity(self) -> float:
        return self.params.traffic_intensity

    @property
    def spawn_check_radius(self) -> float:
        largest = max(t.footprint_radius for t in self.templates)
        return max(self.params.spawn_clear_radius, largest)

    # ------------------------------------------------------------ lifecycle

    def start(self, env):
        self.env = env
        self.active = True
        self.stats = FacilityStats(start_time=env.t)
        log.info(
            "Facility started: mean gap %.2fs, mean service %.2fs, rho=%.3f, max_cars=%d",
            self.params.average_inter_arrival_time, self.params.average_service_time,
            self.params.traffic_intensity, self.params.max_cars,
        )
        env.schedule(Event(env.t, "arrival"))

    def stop(self):
        """Halt the arrival loop and freeze every surviving vehicle."""
        if not self.active:
            return
        self.active = False
        for agent in self.agents.values():
            agent.freeze()
        log.info("Facility stopped with %d vehicle(s) frozen in place", len(self.agents))

    def configure(self, vehicles=None, **changes):
        """Hot-reload facility inputs and, optionally, the vehicle templates.

        All-or-nothing: a bad setting leaves both untouched. New templates
        only apply to future spawns; live vehicles keep their own params.
        """
        templates = self.templates
        if vehicles is not None:
            templates = [t if isinstance(t, VehicleParams) else VehicleParams.from_cfg(t)
                         for t in vehicles]
            if not templates:
                raise ConfigurationError("Facility needs at least one vehicle template")
        self.params.configure(**changes)
        self.templates = templates
        reloaded = sorted(changes) + (["vehicles"] if vehicles is not None else [])
        log.info("Facility reconfigured %s (rho=%.3f)", reloaded, self.params.traffic_intensity)

    # ------------------------------------------------------------- arrivals

    def on_arrival(self, env, scheduled_at: Optional[float] = None):
        if not self.active:
            return
        self.params.reconcile()
        self.try_spawn(env)
        # chain gaps from the drawn time, not the tick it fired on
        base = env.t if scheduled_at is None else scheduled_at
        env.schedule(Event(base + self.next_interarrival(), "arrival"))

    def on_timer(self, env, kind: str = "", **data):
        if kind == "reconfigure":
            self.configure(**data.get("changes", {}))
        else:
            log.warning("Ignoring unknown facility timer %r at t=%.2f", kind, env.t)

    def next_interarrival(self) -> float:
        p = self.params
        if p.clamp_arrivals:
            return draw_interarrival(p.average_inter_arrival_time, self.rng,
                                     p.min_inter_arrival, p.max_inter_arrival)
        return draw_interarrival(p.average_inter_arrival_time, self.rng)

    def try_spawn(self, env) -> Optional[VehicleAgent]:
        """Admit one vehicle at the spawn point if capacity and space allow."""
        if self.stats.current_car_count >= self.params.max_cars:
            self.stats.note_spawn_blocked("capacity", env.t)
            log.debug("Spawn refused at t=%.2f: %d/%d cars", env.t,
                      self.stats.current_car_count, self.params.max_cars)
            return None
        template = self.templates[0] if len(self.templates) == 1 else self.rng.choice(self.templates)
        occupied = self.spatial.query_circle(self.spawn_position, self.spawn_check_radius, template.layer)
        if occupied:
            self.stats.note_spawn_blocked("spawn_area", env.t)
            log.debug("Spawn refused at t=%.2f: spawn area occupied", env.t)
            return None
        self._next_id += 1
        agent = VehicleAgent(
            self._next_id, template, self.spawn_position, self.spawn_heading,
            self.graph.initial, self.graph, self.spatial, self.rng, facility=self,
        )
        self.agents[agent.agent_id] = agent
        self.spatial.insert(agent)
        self.stats.note_arrival(env.t)
        log.debug("Spawned vehicle %d (%s) at t=%.2f", agent.agent_id, template.name, env.t)
        return agent

    # ------------------------------------------------------------- vehicles

    def tick(self, env):
        for agent in list(self.agents.values()):
            agent.tick(env.dt)

    def service_time(self, service_type: ServiceType) -> float:
        p = self.params
        return allocate_service_time(p.average_service_time, p.service_variation,
                                     p.split, service_type, self.rng)

    def remove(self, agent_id: int):
        """Host-side removal of a live vehicle."""
        agent = self.agents.get(agent_id)
        if agent is not None:
            agent.despawn()

    def on_agent_terminated(self, agent_id: int):
        agent = self.agents.pop(agent_id, None)
        if agent is None:
            log.debug("Duplicate termination notice for vehicle %s ignored", agent_id)
            return
        self.spatial.remove(agent)
        if not self.active:
            return
        now = self.env.now() if self.env is not None else 0.0
        tis = self.stats.note_departure(now)
        if tis is not None:
            log.debug("Vehicle %d left after %.2fs", agent_id, tis)
