"""
Connection validation and catalog probes for single databases.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Iterable, Optional

from .base_datastore import BaseDatastore
from .factory import create_datastore
from ..core.errors import ConnectivityError, TableValidationError
from ..core.models import DatabaseEndpoint, DatabaseMetadata, TableIdentifier


DatastoreFactory = Callable[[DatabaseEndpoint], BaseDatastore]


class ConnectionValidator:
    """
    Opens and probes connections to individual databases.

    Every connection opened here is owned by exactly one caller and closed
    before control returns; nothing is pooled or shared between callers.
    """

    def __init__(self, connect_timeout: float = 30, datastore_factory: DatastoreFactory = create_datastore):
        self.connect_timeout = connect_timeout
        self.datastore_factory = datastore_factory
        self.logger = logging.getLogger(__name__)

    async def open(self, endpoint: DatabaseEndpoint) -> BaseDatastore:
        """
        Open a connected datastore for the endpoint.

        Raises:
            ConnectivityError: if the connection cannot be opened in time
        """
        try:
            datastore = self.datastore_factory(endpoint)
        except ValueError as e:
            raise ConnectivityError(str(e)) from e

        try:
            await datastore.connect(timeout=self.connect_timeout)
        except asyncio.TimeoutError as e:
            raise ConnectivityError(
                f"Timed out after {self.connect_timeout}s connecting to {endpoint.name}"
            ) from e
        except Exception as e:
            raise ConnectivityError(f"Failed to connect to {endpoint.name}: {e}") from e
        return datastore

    @asynccontextmanager
    async def connection(self, endpoint: DatabaseEndpoint) -> AsyncIterator[BaseDatastore]:
        """Open a datastore for the duration of a block and always close it"""
        datastore = await self.open(endpoint)
        try:
            yield datastore
        finally:
            await datastore.disconnect()

    async def validate_connection(self, endpoint: DatabaseEndpoint) -> bool:
        """
        Check that a connection to the endpoint can be established.

        Never raises: every failure is logged and reported as False.
        """
        try:
            self.logger.info(f"Validating connection to {endpoint.name}...")

            async with self.connection(endpoint) as datastore:
                info = await datastore.get_server_info()

            self.logger.info(
                f"Successfully connected to {endpoint.name} "
                f"(Server: {info.get('server_name')}, Database: {info.get('database_name')}, "
                f"Version: {info.get('version')})"
            )
            return True

        except ConnectivityError as e:
            self.logger.error(e.message)
            return False
        except Exception as e:
            self.logger.error(f"Unexpected error connecting to {endpoint.name}: {e}", exc_info=True)
            return False

    async def validate_connections(self, endpoints: Iterable[DatabaseEndpoint]) -> Dict[str, bool]:
        """Validate several endpoints concurrently; one entry per endpoint name"""
        endpoints = list(endpoints)
        results = await asyncio.gather(*(self.validate_connection(e) for e in endpoints))
        return {endpoint.name: is_valid for endpoint, is_valid in zip(endpoints, results)}

    async def locate_table(self, endpoint: DatabaseEndpoint, table_name: str) -> Optional[TableIdentifier]:
        """
        Resolve a configured table name to the identifier stored in the catalog.

        Schema and table are matched case-insensitively, so 'public.Settings'
        resolves to the PostgreSQL table public.settings.

        Returns:
            The catalog spelling of the table, or None if the catalog says it does not exist

        Raises:
            ConnectivityError: if the connection or the catalog query fails
            TableValidationError: if the table name cannot be parsed
        """
        async with self.connection(endpoint) as datastore:
            try:
                table = datastore.parse_table(table_name)
            except ValueError as e:
                raise TableValidationError(str(e)) from e

            try:
                return await datastore.resolve_table(table)
            except Exception as e:
                raise ConnectivityError(
                    f"Failed to check if table {table_name} exists in {endpoint.name}: {e}"
                ) from e

    async def probe_table(self, endpoint: DatabaseEndpoint, table_name: str) -> bool:
        """Check whether a table exists, distinguishing absence from failure (see locate_table)"""
        return await self.locate_table(endpoint, table_name) is not None

    async def table_exists(self, endpoint: DatabaseEndpoint, table_name: str) -> bool:
        """Check whether a table exists; any failure is logged and reported as False"""
        try:
            return await self.probe_table(endpoint, table_name)
        except Exception as e:
            self.logger.error(f"Failed to check if table {table_name} exists: {e}")
            return False

    async def get_database_metadata(self, endpoint: DatabaseEndpoint) -> Optional[DatabaseMetadata]:
        """Server, database, version and object counts, or None on failure"""
        try:
            async with self.connection(endpoint) as datastore:
                info = await datastore.get_server_info()
                counts = await datastore.get_object_counts()

            return DatabaseMetadata(
                config_name=endpoint.name,
                server_name=str(info.get('server_name', '')),
                database_name=str(info.get('database_name', '')),
                version=str(info.get('version', '')),
                table_count=counts.get('table_count', 0),
                view_count=counts.get('view_count', 0),
                routine_count=counts.get('routine_count', 0)
            )
        except Exception as e:
            self.logger.error(f"Failed to get metadata for {endpoint.name}: {e}")
            return None
