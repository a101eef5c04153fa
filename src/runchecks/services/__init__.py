"""Stateful application services: check cache, run catalog, scheduling, users."""
