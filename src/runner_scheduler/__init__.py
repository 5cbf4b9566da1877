"""Koyeb GitHub Actions runner scheduler."""

__version__ = "0.3.0"
