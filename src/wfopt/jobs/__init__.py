"""Evaluation jobs runnable by the walk-forward runner."""
