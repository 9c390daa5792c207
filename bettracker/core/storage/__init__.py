"""
Record store implementations.
"""
from .sqlite import SQLiteRecordStore

__all__ = ["SQLiteRecordStore"]
