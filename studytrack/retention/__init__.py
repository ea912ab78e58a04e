"""Retention policy, blob cleanup and the cleanup scheduler."""
