"""
Datastore module for per-operation database connections.

This module provides datastore implementations for different database types
with lazy loading of drivers, plus the connection validator built on them.
"""

from .base_datastore import BaseDatastore
from .postgres_datastore import PostgresDatastore
from .mysql_datastore import MySQLDatastore
from .factory import DATASTORE_TYPES, create_datastore, is_supported_scheme
from .connection_validator import ConnectionValidator

__all__ = [
    'BaseDatastore',
    'PostgresDatastore',
    'MySQLDatastore',
    'DATASTORE_TYPES',
    'create_datastore',
    'is_supported_scheme',
    'ConnectionValidator'
]
