"""Sagaflow core: errors, logging, configuration and scheduling primitives."""
