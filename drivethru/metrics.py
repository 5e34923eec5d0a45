# Copyright (c) 2025
# MIT License
# -----------------------------------------------------------------------------
# metrics.py
# -----------------------------------------------------------------------------
# Purpose:
#   Facility-level KPIs: occupancy, throughput, time in system, blocked
#   spawns, plus a time series for plotting.
#
# Design notes:
#   - Entry times are kept FIFO; a departure is matched against the oldest
#     entry, so time in system assumes vehicles leave in arrival order.
#   - Keep side-effect methods (note_*) for instrumentation from the
#     scheduler; summary() returns a JSON-serializable dict.
#   - Count mismatches (departure with no entry) are clamped and logged.
#
# Usage:
#   stats = FacilityStats(); stats.note_arrival(t); stats.summary(now)
# -----------------------------------------------------------------------------

from __future__ import annotations
import logging
import math
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional

log = logging.getLogger(__name__)

class FacilityStats:
    def __init__(self, start_time: float = 0.0):
        self.start_time = start_time
        self.entry_times: Deque[float] = deque()
        self.current_car_count = 0
        self.total_cars_spawned = 0
        self.total_cars_served = 0
        self.average_time_in_system = 0.0
        self.peak_car_count = 0
        self.time_in_system_samples: List[float] = []
        self.spawn_blocked = defaultdict(int)
        self.car_seconds = 0.0                 # integral of occupancy over time
        self.last_change = start_time
        self.time_series: List[Dict[str, float]] = []

    def _mark_occupancy(self, now: float):
        # Integrate car-seconds by tracking how many cars were present since the last change
        dt = now - self.last_change
        if dt > 0:
            self.car_seconds += self.current_car_count * dt
        self.last_change = max(self.last_change, now)

    def _record_time_series(self, t: float):
        self.time_series.append({
            "time": t,
            "occupancy": float(self.current_car_count),
            "served_total": float(self.total_cars_served),
            "blocked_total": float(sum(self.spawn_blocked.values())),
        })

    def note_arrival(self, now: float):
        self._mark_occupancy(now)
        self.entry_times.append(now)
        self.current_car_count += 1
        self.total_cars_spawned += 1
        self.peak_car_count = max(self.peak_car_count, self.current_car_count)
        self._record_time_series(now)

    def note_departure(self, now: float) -> Optional[float]:
        """Match a departure to the oldest entry; returns its time in system."""
        self._mark_occupancy(now)
        if not self.entry_times:
            log.warning("Departure at t=%.2f with no recorded entry; ignoring (double notification?)", now)
            self.current_car_count = max(self.current_car_count - 1, 0)
            return None
        entry = self.entry_times.popleft()
        time_in_system = now - entry
        self.total_cars_served += 1
        n = self.total_cars_served
        self.average_time_in_system = (self.average_time_in_system * (n - 1) + time_in_system) / n
        self.time_in_system_samples.append(time_in_system)
        self.current_car_count = max(self.current_car_count - 1, 0)
        self._record_time_series(now)
        return time_in_system

    def note_spawn_blocked(self, reason: str, now: float):
        self.spawn_blocked[reason] += 1
        self._record_time_series(now)

    def mean_occupancy(self, now: float) -> float:
        """Time-average number of cars in the facility up to `now`."""
        elapsed = now - self.start_time
        if elapsed <= 0:
            return 0.0
        pending = max(now - self.last_change, 0.0) * self.current_car_count
        return (self.car_seconds + pending) / elapsed

    def summary(self, now: float) -> Dict:
        elapsed = max(now - self.start_time, 0.0)
        hours = elapsed / 3600.0
        p90 = 0.0
        if self.time_in_system_samples:
            samples = sorted(self.time_in_system_samples)
            idx = int(math.ceil(0.9 * len(samples))) - 1
            idx = max(0, min(idx, len(samples) - 1))
            p90 = samples[idx]
        mean_occ = self.mean_occupancy(now)
        # Little's law estimate L / W -> arrival rate actually admitted
        littles_rate = (mean_occ / self.average_time_in_system) if self.average_time_in_system > 0 else 0.0
        return {
            "elapsed_seconds": elapsed,
            "cars_spawned": self.total_cars_spawned,
            "cars_served": self.total_cars_served,
            "cars_in_system": self.current_car_count,
            "peak_cars_in_system": self.peak_car_count,
            "throughput_per_hour": (self.total_cars_served / hours) if hours > 0 else 0.0,
            "avg_time_in_system_seconds": self.average_time_in_system,
            "p90_time_in_system_seconds": p90,
            "mean_cars_in_system": mean_occ,
            "littles_law_rate_per_hour": littles_rate * 3600.0,
            "spawn_blocked": dict(self.spawn_blocked),
            "time_series": list(self.time_series),
        }
