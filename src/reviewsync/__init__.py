"""Reviewsync - sync layer for nested performance-review forms."""

__version__ = "0.1.0"
