"""Gridkeeper - authorization-aware dynamic view queries."""

__version__ = "0.1.0"
