"""Gridkeeper command-line interface."""
