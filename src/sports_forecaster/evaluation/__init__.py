"""Grading, conviction tiers, backtest replay and parameter calibration."""

__all__: list[str] = []
