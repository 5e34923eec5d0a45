# Copyright (c) 2025
# MIT License
# -----------------------------------------------------------------------------
# simulation.py
# -----------------------------------------------------------------------------
# Purpose:
#   Simulate a single replication: build the lane graph, spatial index,
#   vehicle templates and facility from config, run the clock, and return
#   the statistics summary.
#
# Design notes:
#   - One random.Random per run, seeded from sim.seed, feeds every draw.
#   - Scheduled parameter changes (sim.param_changes) are FEL timer events
#     that hot-reload the facility mid-run.
#
# Usage:
#   from drivethru.simulation import run_simulation
#   results = run_simulation(cfg)
# -----------------------------------------------------------------------------

from __future__ import annotations
import logging
import math
import random
from typing import Dict, Tuple

from .clock import Env, Event
from .errors import ConfigurationError
from .network import WaypointGraph
from .scheduler import FacilityParams, FacilityScheduler
from .spatial import SpatialIndex
from .vehicle import VehicleParams

log = logging.getLogger(__name__)

def build_facility(cfg: Dict, rng: random.Random) -> FacilityScheduler:
    if "graph" not in cfg:
        raise ConfigurationError("Config has no 'graph' section")
    graph = WaypointGraph.from_config(cfg["graph"])
    templates = [VehicleParams.from_cfg(entry) for entry in cfg.get("vehicles", [])]
    params = FacilityParams.from_cfg(cfg.get("facility", {}))
    spawn = cfg.get("spawn", {})
    position = tuple(spawn.get("position", graph.initial.position))
    heading = math.radians(float(spawn.get("heading_degrees", 90.0)))
    return FacilityScheduler(
        params, graph, SpatialIndex(), templates,
        spawn_position=position, spawn_heading=heading, rng=rng,
    )

def build_env(cfg: Dict, facility: FacilityScheduler) -> Env:
    sim = cfg.get("sim", {})
    return Env(facility, dt=float(sim.get("dt", 0.1)), contacts=bool(sim.get("contacts", True)))

def run_with_facility(cfg: Dict) -> Tuple[FacilityScheduler, Env]:
    """Build, run and stop one replication; returns the stopped facility and clock."""
    sim = cfg.get("sim", {})
    rng = random.Random(sim.get("seed", 0))

    facility = build_facility(cfg, rng)
    env = build_env(cfg, facility)
    facility.start(env)

    # Mid-run parameter changes, e.g. a lunch rush raising customers/hour
    for change in sim.get("param_changes", []) or []:
        changes = dict(change.get("facility", {}))
        if "vehicles" in change:
            changes["vehicles"] = list(change["vehicles"])
        env.schedule(Event(float(change["at"]), "timer", {"kind": "reconfigure", "changes": changes}))

    T_end = float(sim.get("duration_seconds", 3600.0))
    log.info("Running lane simulation for %.0fs (dt=%.3f, seed=%s)", T_end, env.dt, sim.get("seed", 0))
    env.run_until(T_end)
    env.stop()
    return facility, env

def run_simulation(cfg: Dict) -> Dict:
    facility, env = run_with_facility(cfg)
    summary = facility.stats.summary(env.now())
    summary["traffic_intensity"] = facility.traffic_intensity
    summary["average_inter_arrival_time"] = facility.params.average_inter_arrival_time
    log.info("Run finished: %d served, avg time in system %.1fs",
             summary["cars_served"], summary["avg_time_in_system_seconds"])
    return summary
