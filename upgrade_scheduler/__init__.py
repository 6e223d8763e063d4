"""Deferral and enforcement orchestrator for managed OS upgrades."""

__version__ = "2.0.0"
