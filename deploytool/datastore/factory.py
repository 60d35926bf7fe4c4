"""
Datastore factory keyed by connection string scheme.
"""
from typing import Dict, Type

from .base_datastore import BaseDatastore
from .postgres_datastore import PostgresDatastore
from .mysql_datastore import MySQLDatastore
from ..core.models import DatabaseEndpoint


DATASTORE_TYPES: Dict[str, Type[BaseDatastore]] = {
    'postgres': PostgresDatastore,
    'postgresql': PostgresDatastore,
    'mysql': MySQLDatastore,
}


def is_supported_scheme(scheme: str) -> bool:
    return scheme.lower() in DATASTORE_TYPES


def create_datastore(endpoint: DatabaseEndpoint) -> BaseDatastore:
    """Create an unconnected datastore for the endpoint's driver"""
    datastore_cls = DATASTORE_TYPES.get(endpoint.scheme)
    if datastore_cls is None:
        raise ValueError(
            f"Unsupported connection string scheme '{endpoint.scheme}' for {endpoint.name}. "
            f"Supported: {', '.join(sorted(DATASTORE_TYPES))}"
        )
    return datastore_cls(endpoint)
