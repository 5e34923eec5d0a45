# Copyright (c) 2025
# MIT License
# -----------------------------------------------------------------------------
# errors.py
# -----------------------------------------------------------------------------
# Purpose:
#   Exception types raised while wiring a facility.
#
# Design notes:
#   - Blocked cones, occupied queue slots and a busy spawn area are normal
#     control flow, not exceptions; agents retry on the next tick.
# -----------------------------------------------------------------------------

from __future__ import annotations


class ConfigurationError(ValueError):
    """Fatal setup problem: the agent or facility must not activate."""
