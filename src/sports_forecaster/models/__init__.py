"""Team ratings, score projection and situational adjusters.

Import concrete modules where you need them, e.g.:

    from sports_forecaster.models.predictor import ScorePredictor
"""

__all__: list[str] = []
