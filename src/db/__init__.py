"""Database access for the Autoplan scheduling service."""

from .pool import Database, close_database, get_database, init_database

__all__ = ["Database", "get_database", "init_database", "close_database"]
