"""RidersOS web application package."""
from __future__ import annotations

from . import persistence
from .application import app, build_billing, create_app
from .persistence import SqlRepository, create_db_and_tables, make_engine

__all__ = [
    "SqlRepository",
    "app",
    "build_billing",
    "create_app",
    "create_db_and_tables",
    "make_engine",
    "persistence",
]
