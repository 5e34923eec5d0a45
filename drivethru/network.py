# Copyright (c) 2025
# MIT License
# -----------------------------------------------------------------------------
# network.py
# -----------------------------------------------------------------------------
# Purpose:
#   Static lane topology: waypoints, stop points, service classification and
#   the successor rule agents use to pick where to drive next.
#
# Design notes:
#   - Built once at facility setup and never mutated afterwards.
#   - Branches are resolved per agent per visit from the agent's own RNG, so
#     different seeds give different paths from identical starting states.
#   - Reachable cycles are reported but not evicted; agents caught on one
#     tick forever.
#
# Usage:
#   graph = WaypointGraph.from_config(cfg["graph"])
#   nxt = graph.choose_next(wp, rng)   # None -> journey complete
# -----------------------------------------------------------------------------

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError

log = logging.getLogger(__name__)

class ServiceType(Enum):
    NONE = "none"
    ORDER = "order"
    PAYMENT = "payment"
    PREPARATION = "preparation"

    @classmethod
    def parse(cls, value) -> "ServiceType":
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.NONE
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigurationError(f"Unknown service type {value!r}") from None

@dataclass(eq=False)
class Waypoint:
    wid: str
    position: Tuple[float, float]
    is_stop_point: bool = False
    service_type: ServiceType = ServiceType.NONE
    next_waypoints: List["Waypoint"] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return not self.next_waypoints

    def __repr__(self) -> str:
        return f"Waypoint({self.wid!r})"

class WaypointGraph:
    """Directed waypoint graph with a designated initial waypoint.

    Parameters
    ----------
    waypoints : list[Waypoint]
        All nodes; successor lists must reference members of this list.
    initial : str
        Id of the waypoint freshly spawned vehicles head for.
    """
    def __init__(self, waypoints: List[Waypoint], initial: Optional[str]):
        self.nodes: Dict[str, Waypoint] = {}
        for wp in waypoints:
            if wp.wid in self.nodes:
                raise ConfigurationError(f"Duplicate waypoint id {wp.wid!r}")
            self.nodes[wp.wid] = wp
        for wp in waypoints:
            for nxt in wp.next_waypoints:
                if self.nodes.get(nxt.wid) is not nxt:
                    raise ConfigurationError(f"Waypoint {wp.wid!r} links outside the graph ({nxt.wid!r})")
        if initial is None or initial not in self.nodes:
            raise ConfigurationError(f"Initial waypoint {initial!r} is not in the graph")
        self.initial: Waypoint = self.nodes[initial]

    def __len__(self) -> int:
        return len(self.nodes)

    def __getitem__(self, wid: str) -> Waypoint:
        return self.nodes[wid]

    def next(self, node: Waypoint) -> List[Waypoint]:
        return list(node.next_waypoints)

    def choose_next(self, node: Waypoint, rng) -> Optional[Waypoint]:
        """Uniformly pick a successor; None when `node` is terminal."""
        if not node.next_waypoints:
            return None
        if len(node.next_waypoints) == 1:
            return node.next_waypoints[0]
        return node.next_waypoints[rng.randrange(len(node.next_waypoints))]

    def find_cycle(self, start: Optional[Waypoint] = None) -> Optional[List[Waypoint]]:
        """Return one cycle reachable from `start` (default: initial) or None."""
        start = start or self.initial
        WHITE, GREY, BLACK = 0, 1, 2
        color: Dict[str, int] = {}
        path: List[Waypoint] = []
        # iterative DFS; each stack frame is (node, iterator over successors)
        stack = [(start, iter(start.next_waypoints))]
        color[start.wid] = GREY
        path.append(start)
        while stack:
            node, it = stack[-1]
            nxt = next(it, None)
            if nxt is None:
                color[node.wid] = BLACK
                stack.pop()
                path.pop()
                continue
            state = color.get(nxt.wid, WHITE)
            if state == GREY:
                idx = next(i for i, wp in enumerate(path) if wp is nxt)
                return path[idx:] + [nxt]
            if state == WHITE:
                color[nxt.wid] = GREY
                path.append(nxt)
                stack.append((nxt, iter(nxt.next_waypoints)))
        return None

    def validate(self, allow_cycles: bool = True):
        cycle = self.find_cycle()
        if cycle is None:
            return
        names = " -> ".join(wp.wid for wp in cycle)
        if not allow_cycles:
            raise ConfigurationError(f"Waypoint graph contains a reachable cycle: {names}")
        log.warning("Waypoint graph contains a reachable cycle (%s); vehicles on it never exit", names)

    @classmethod
    def from_config(cls, cfg: dict) -> "WaypointGraph":
        """
        Build a graph from the YAML `graph` section.

        Expected shape::

            initial: entry
            waypoints:
              - {id: entry, position: [0, 0], next: [menu]}
              - {id: menu, position: [0, 6], stop: true, service: order, next: [exit]}
              - {id: exit, position: [0, 12]}
        """
        entries = cfg.get("waypoints") or []
        if not entries:
            raise ConfigurationError("Waypoint graph has no waypoints")
        nodes: Dict[str, Waypoint] = {}
        ordered: List[Waypoint] = []
        for idx, entry in enumerate(entries):
            if "id" not in entry:
                raise ConfigurationError(f"Waypoint entry #{idx} has no 'id'")
            wid = str(entry["id"])
            if wid in nodes:
                raise ConfigurationError(f"Duplicate waypoint id {wid!r}")
            position = entry.get("position", (0.0, 0.0))
            try:
                x, y = position
                position = (float(x), float(y))
            except (TypeError, ValueError):
                raise ConfigurationError(
                    f"Waypoint {wid!r} position must be two numbers, got {position!r}") from None
            wp = Waypoint(
                wid,
                position,
                is_stop_point=bool(entry.get("stop", False)),
                service_type=ServiceType.parse(entry.get("service")),
            )
            nodes[wid] = wp
            ordered.append(wp)
        for entry in entries:
            wp = nodes[str(entry["id"])]
            for nid in entry.get("next", []) or []:
                nxt = nodes.get(str(nid))
                if nxt is None:
                    raise ConfigurationError(f"Waypoint {wp.wid!r} references unknown successor {nid!r}")
                wp.next_waypoints.append(nxt)
        graph = cls(ordered, cfg.get("initial"))
        graph.validate(allow_cycles=cfg.get("allow_cycles", True))
        return graph
