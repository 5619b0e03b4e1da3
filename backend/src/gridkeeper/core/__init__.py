"""Core type definitions."""
