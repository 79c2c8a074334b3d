"""Offline-first record storage and synchronisation for Mobile POS."""

__version__ = "0.3.0"
