"""Incremental sync of TORUS protocol events into the dashboard's JSON cache."""

__version__ = "0.1.0"
