"""Watercolor rendering service for interior design images."""

__version__ = "0.1.0"
