# Copyright (c) 2025
# MIT License
# -----------------------------------------------------------------------------
# arrivals.py
# -----------------------------------------------------------------------------
# Purpose:
#   Exogenous arrival process for the lane: exponential (Poisson-process)
#   inter-arrival gaps, optionally clamped to a variation band.
#
# Design notes:
#   - Memoryless arrivals: gaps ~ Exp(rate = 1/mean).
#   - Clamping to [mean*(1-v), mean*(1+v)] keeps the spawn cadence inside the
#     configured band; disable it to get the pure exponential process.
#
# Usage:
#   lo, hi = arrival_bounds(mean, variation)
#   gap = draw_interarrival(mean, rng, lo, hi)
# -----------------------------------------------------------------------------

from __future__ import annotations
from typing import Optional, Tuple

from .errors import ConfigurationError

SECONDS_PER_HOUR = 3600.0

def interarrival_from_rate(customers_per_hour: float) -> float:
    if customers_per_hour <= 0:
        raise ConfigurationError(f"customers_per_hour must be positive, got {customers_per_hour}")
    return SECONDS_PER_HOUR / customers_per_hour

def arrival_bounds(mean: float, variation: float) -> Tuple[float, float]:
    return mean * (1.0 - variation), mean * (1.0 + variation)

def draw_interarrival(mean: float, rng, lower: Optional[float] = None,
                      upper: Optional[float] = None) -> float:
    """Exponential gap with the given mean, clamped when bounds are given."""
    if mean <= 0:
        raise ConfigurationError(f"mean inter-arrival time must be positive, got {mean}")
    gap = rng.expovariate(1.0 / mean)
    if lower is not None and gap < lower:
        gap = lower
    if upper is not None and gap > upper:
        gap = upper
    return gap
