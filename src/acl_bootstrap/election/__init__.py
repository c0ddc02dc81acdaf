"""Deterministic rally point selection."""
