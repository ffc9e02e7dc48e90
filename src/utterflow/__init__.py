"""Utterflow: speech fragments to completed engineering actions."""

__version__ = "0.1.0"

__all__ = ["__version__"]
