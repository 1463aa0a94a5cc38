"""Pirate Radio: FM broadcast of a music directory."""

__version__ = "0.1.0"
