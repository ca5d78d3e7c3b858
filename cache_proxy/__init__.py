"""Adaptive caching and rate-governance proxy for Overpass, OpenSky and map data feeds."""

__version__ = "1.0.0"
