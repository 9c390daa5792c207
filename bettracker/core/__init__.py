"""
Core module - Protocols, containers, and abstractions.
"""
from .protocols import RecordStore
from .container import ServiceContainer

__all__ = [
    "RecordStore",
    "ServiceContainer",
]
