"""Tiller: adaptive background worker-pool daemon."""

__version__ = "0.1.0"
