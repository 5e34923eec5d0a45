# Copyright (c) 2025
# MIT License
# -----------------------------------------------------------------------------
# clock.py
# -----------------------------------------------------------------------------
# Purpose:
#   Fixed-step simulation clock with a Future Event List for timed
#   callbacks (arrivals, parameter changes) and edge-triggered contact
#   delivery between vehicles.
#
# Design notes:
#   - Each step: fire due events, tick the facility's vehicles with dt,
#     report newly touching pairs, then advance the clock.
#   - Time is ticks * dt rather than a running sum, so long runs do not drift.
#   - Waiting is always time-based resumption: an event in the FEL or an
#     agent countdown; nothing blocks.
#
# Usage:
#   env = Env(facility, dt=0.1); facility.start(env); env.run_until(3600)
# -----------------------------------------------------------------------------

from __future__ import annotations
import heapq
import logging
from typing import Any, FrozenSet, List, Set

log = logging.getLogger(__name__)

_TIME_EPS = 1e-9

class Event:
    """Minimal event object for the Future Event List (FEL)."""
    __slots__ = ("t", "kind", "data", "seq")
    def __init__(self, t: float, kind: str, data: dict = None):
        self.t = t; self.kind = kind; self.data = data or {}; self.seq = 0
    def __lt__(self, other: "Event"):
        return (self.t, self.seq) < (other.t, other.seq)

class Env:
    """Simulation environment holding the clock, FEL and the facility hook.

    Attributes
    ----------
    t : float
        Simulation time (seconds).
    dt : float
        Tick length (seconds).
    FEL : list[Event]
        Min-heap of scheduled events.
    facility : object
        Object with tick/on_arrival/on_timer and a `spatial` index.
    """
    def __init__(self, facility=None, dt: float = 0.1, contacts: bool = True,
                 contact_layer: str = "vehicle"):
        if dt <= 0:
            raise ValueError(f"dt must be positive, got {dt}")
        self.t: float = 0.0
        self.dt = dt
        self.ticks = 0
        self.FEL: List[Event] = []
        self.facility = facility
        self.contacts = contacts
        self.contact_layer = contact_layer
        self.running = True
        self._seq = 0
        self._touching: Set[FrozenSet[Any]] = set()

    def now(self) -> float:
        return self.t

    def delta(self) -> float:
        return self.dt

    def schedule(self, ev: Event):
        self._seq += 1
        ev.seq = self._seq
        heapq.heappush(self.FEL, ev)

    def step(self):
        if not self.running:
            return
        while self.FEL and self.FEL[0].t <= self.t + _TIME_EPS:
            ev = heapq.heappop(self.FEL)
            self._dispatch(ev)
            if not self.running:
                return
        if self.facility is not None:
            self.facility.tick(self)
            if self.contacts:
                self._deliver_contacts()
        self.ticks += 1
        self.t = self.ticks * self.dt

    def run_until(self, T_end: float):
        while self.running and self.t < T_end - _TIME_EPS:
            self.step()

    def stop(self):
        """Cancel the run: drop pending events and freeze the facility."""
        self.running = False
        self.FEL.clear()
        if self.facility is not None:
            self.facility.stop()

    def _dispatch(self, ev: Event):
        if ev.kind == "arrival":
            self.facility.on_arrival(self, scheduled_at=ev.t, **ev.data)
        elif ev.kind == "timer":
            self.facility.on_timer(self, **ev.data)
        else:
            log.warning("Dropping event of unknown kind %r at t=%.2f", ev.kind, ev.t)

    def _deliver_contacts(self):
        spatial = getattr(self.facility, "spatial", None)
        if spatial is None:
            return
        current = set()
        for a, b in spatial.contacts(self.contact_layer):
            pair = frozenset((a, b))
            current.add(pair)
            if pair in self._touching:
                continue
            # edge-triggered: only pairs that started touching this tick
            a.notify_contact(b, getattr(b, "layer", None))
            b.notify_contact(a, getattr(a, "layer", None))
        self._touching = current
