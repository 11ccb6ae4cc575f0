"""Batch driver for UI-only web applications."""

__version__ = "0.1.0"
