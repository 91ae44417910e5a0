"""Scoring and leaderboard service for prediction contests."""

__version__ = "1.0.0"
