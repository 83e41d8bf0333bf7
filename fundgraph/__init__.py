"""Funding event resolution and graph synchronization engine."""

__version__ = "0.1.0"
