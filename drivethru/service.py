# Copyright (c) 2025
# MIT License
# -----------------------------------------------------------------------------
# service.py
# -----------------------------------------------------------------------------
# Purpose:
#   Turn facility-level service parameters into the randomized time a vehicle
#   spends at one service stop (order, payment or preparation).
#
# Design notes:
#   - The total service time is drawn uniformly within +/- variation of the
#     average and then apportioned by the stage percentage.
#   - Every call redraws; visits to different stages vary independently.
#
# Usage:
#   split = StageSplit.from_percentages(0.2, 0.15)
#   t = allocate_service_time(180.0, 0.2, split, ServiceType.ORDER, rng)
# -----------------------------------------------------------------------------

from __future__ import annotations
from dataclasses import dataclass

from .errors import ConfigurationError
from .network import ServiceType

@dataclass(frozen=True)
class StageSplit:
    order: float
    payment: float
    preparation: float

    @classmethod
    def from_percentages(cls, order: float, payment: float) -> "StageSplit":
        """Derive preparation as whatever the order and payment stages leave."""
        for name, pct in (("order_percentage", order), ("payment_percentage", payment)):
            if not 0.0 <= pct <= 1.0:
                raise ConfigurationError(f"{name} must be in [0, 1], got {pct}")
        if order + payment > 1.0 + 1e-9:
            raise ConfigurationError(
                f"order_percentage + payment_percentage must not exceed 1 (got {order + payment:.3f})"
            )
        return cls(order, payment, max(0.0, 1.0 - order - payment))

    def fraction(self, stage: ServiceType) -> float:
        if stage is ServiceType.ORDER:
            return self.order
        if stage is ServiceType.PAYMENT:
            return self.payment
        if stage is ServiceType.PREPARATION:
            return self.preparation
        return 0.0

def allocate_service_time(average_service_time: float, variation: float,
                          split: StageSplit, stage: ServiceType, rng) -> float:
    """Draw the time one vehicle spends at a stop of the given stage."""
    pct = split.fraction(stage)
    if pct <= 0.0:
        return 0.0
    adjusted = average_service_time * rng.uniform(1.0 - variation, 1.0 + variation)
    return adjusted * pct
