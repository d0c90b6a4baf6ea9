"""Pocket-ID access dashboard."""

__version__ = "0.1.0"
