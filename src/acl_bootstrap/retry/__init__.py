"""Bounded retry with a fixed delay."""
