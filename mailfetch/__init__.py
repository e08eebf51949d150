"""Inbox retrieval over IMAP, served as JSON."""

__version__ = "0.1.0"
