"""Collaborative PDF annotation: shared annotation model, PDF rebuilds and live sync."""

__version__ = '0.1.0'
