"""Polygon annotation map editor for GBIF species occurrence data."""

__version__ = "0.1.0"
