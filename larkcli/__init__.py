"""IMAP envelope sync into a SQLite cache, offline search, OAuth scope groups, time parsing and JSON output helpers."""

__version__ = "0.1.0"