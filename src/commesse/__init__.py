"""Commesse - time tracking and expense logging for client projects."""

__version__ = "1.0.0"
