"""Retry and circuit-breaker primitives."""
