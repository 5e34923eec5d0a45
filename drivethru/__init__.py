"""
drivethru package initializer.

This package contains the agent-based drive-thru lane simulation: the
waypoint graph, vehicle state machine, spatial index, arrival and service
time draws, the facility scheduler, statistics and the clock that drives
them.
"""
__all__ = [
    "errors", "spatial", "network", "policies", "vehicle", "service",
    "arrivals", "metrics", "clock", "scheduler", "simulation",
]
