"""Derived metrics: streaks, medals, star progress, personal stats."""
