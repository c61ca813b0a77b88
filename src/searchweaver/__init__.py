"""SearchWeaver: multi-step research orchestration engine."""

__version__ = "0.1.0"
