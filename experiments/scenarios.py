"""
experiments/scenarios.py

Holds scenario definitions (decision variables) to sweep during experiments.
Add arrival rates, admission limits and service splits here.
"""

from __future__ import annotations

BASELINE = {
    "name": "baseline",
    "overrides": {},  # override config keys here per scenario
}

LUNCH_RUSH = {
    "name": "lunch_rush",
    "overrides": {
        "facility": {
            "customers_per_hour": 45,
        },
    },
}

LUNCH_RUSH_MIDDAY_SPIKE = {
    "name": "lunch_rush_midday_spike",
    "overrides": {
        "sim": {
            # start at baseline demand, then switch to rush demand halfway through
            "param_changes": [
                {"at": 1800, "facility": {"customers_per_hour": 45}},
            ],
        },
    },
}

# Faster kitchen: same order/payment, shorter preparation share
EXPRESS_LANE = {
    "name": "express_lane",
    "overrides": {
        "facility": {
            "average_service_time": 70.0,
            "order_percentage": 0.25,
            "payment_percentage": 0.2,
        },
    },
}

MORE_LANE_SPACE = {
    "name": "more_lane_space",
    "overrides": {
        "facility": {
            "max_cars": 14,
            "customers_per_hour": 45,
        },
    },
}

SCENARIOS = [
    BASELINE,
    LUNCH_RUSH,
    LUNCH_RUSH_MIDDAY_SPIKE,
    EXPRESS_LANE,
    MORE_LANE_SPACE,
]
