"""Database layer for firedragon application."""

from firedragon.database.base import Database
from firedragon.database.factories import create_sqlite_database

__all__ = ["Database", "create_sqlite_database"]
