"""Crew Dispatch: capability-aware routing and delegation for agent crews."""

__version__ = "0.1.0"
