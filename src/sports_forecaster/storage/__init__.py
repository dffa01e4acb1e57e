"""Persisted backtest state (one JSON document per sport and model version)."""

__all__: list[str] = []
