"""Encrypted, deduplicated app backup and restore on top of restic."""

__version__ = "1.0.0"
