"""Experiment harness: scenarios, replications and KPI reporting for the lane."""
