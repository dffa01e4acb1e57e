"""
sports_forecaster

Core package for the multi-sport forecasting and backtesting system.

Structure:
- data: schedule/line feeds, preprocessing, pre-game team statistics
- models: ratings, score projection, situational adjusters
- evaluation: grading, conviction tiers, backtest replay, calibration
- storage: whole-document JSON state per sport and model version
"""

__all__ = ["config"]
