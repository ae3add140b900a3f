"""Database schema migrations driven by pluggable source and database drivers."""

__version__ = "4.0.0"