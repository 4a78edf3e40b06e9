"""Slot store persistence and schema migrations."""

from cronlog.db.migrations import get_connection, init_database
from cronlog.db.store import SlotStore

__all__ = ["SlotStore", "get_connection", "init_database"]
