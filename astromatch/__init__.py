"""Ashta Koota compatibility resolution for profile matching."""

__version__ = "0.3.0"
