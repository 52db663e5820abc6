"""Database layer for banksync."""

from banksync.database.base import Database
from banksync.database.factories import create_database, create_sqlite_database

__all__ = ["Database", "create_database", "create_sqlite_database"]
