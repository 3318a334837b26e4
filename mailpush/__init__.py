"""Sweep push backend: new-mail notifications for Gmail and Outlook accounts."""

__version__ = "1.0.0"
