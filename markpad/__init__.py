"""Markpad - local editor server for allow-listed markdown files."""

__version__ = "1.0.0"
