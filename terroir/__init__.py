"""Terroir: hierarchical merge engine for the wine catalogue."""

__version__ = "0.1.0"
