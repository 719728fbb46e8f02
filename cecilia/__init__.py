"""Cecilia: voice-driven personal automation core."""

__version__ = "0.1.0"
