"""Occupancy-weighted selection of field survey sites."""

__version__ = "1.0.0"
