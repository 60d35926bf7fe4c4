"""
Base datastore interface for all database connection implementations.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union, Tuple, Sequence

from ..core.models import DatabaseEndpoint, TableIdentifier, DEFAULT_SCHEMA
from ..core.schema_models import CatalogColumn, CatalogTable


class BaseDatastore(ABC):
    """
    Abstract base class for all datastore implementations.

    A datastore owns exactly one connection for the lifetime of a unit of work.
    Provides a common interface with:
    - Lazy loading of database drivers
    - Idempotent connect/disconnect operations
    - Explicit transaction control (begin/commit/rollback)
    - Raw query execution, full-table reads and bulk loads
    - Catalog reads and DDL rendering for schema comparison
    """

    identifier_quote = '"'

    def __init__(self, endpoint: DatabaseEndpoint):
        self.endpoint = endpoint
        self.name = endpoint.name
        self._connection = None
        self._connection_lock = asyncio.Lock()
        self._is_connected = False
        self._in_transaction = False
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def is_connected(self) -> bool:
        """Check if the datastore is currently connected"""
        return self._is_connected

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    @property
    def default_schema(self) -> str:
        """Schema used for unqualified table names"""
        return DEFAULT_SCHEMA

    async def __aenter__(self) -> 'BaseDatastore':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    @abstractmethod
    async def _create_connection(self) -> None:
        """Create the actual database connection - implemented by subclasses"""
        pass

    @abstractmethod
    async def _cleanup_connections(self) -> None:
        """Clean up database connections - implemented by subclasses"""
        pass

    @abstractmethod
    async def _begin(self) -> None:
        pass

    @abstractmethod
    async def _commit(self) -> None:
        pass

    @abstractmethod
    async def _rollback(self) -> None:
        pass

    @abstractmethod
    async def execute_query(
        self,
        query: str,
        params: Optional[List[Any]] = None,
        action: str = 'select'
    ) -> Union[List[Dict[str, Any]], int]:
        """
        Execute a raw SQL query against the datastore.

        Args:
            query: SQL query string
            params: Optional query parameters
            action: Type of query ('select', 'insert', 'update', 'delete', 'ddl')

        Returns:
            For SELECT queries: List of dictionaries representing rows
            For other queries: Number of affected rows
        """
        pass

    async def connect(self, timeout: Optional[float] = None, logger: Optional[logging.Logger] = None) -> None:
        """
        Connect to the datastore - idempotent operation.

        Args:
            timeout: Optional upper bound in seconds on opening the connection
            logger: Optional logger for connection messages
        """
        async with self._connection_lock:
            if self._is_connected:
                return

            if logger:
                logger.info(f"Connecting to {self.__class__.__name__}: {self.name}")

            try:
                if timeout:
                    await asyncio.wait_for(self._create_connection(), timeout=timeout)
                else:
                    await self._create_connection()
                self._is_connected = True
                if logger:
                    logger.info(f"Successfully connected to {self.__class__.__name__}: {self.name}")

            except BaseException as e:
                if logger:
                    logger.error(f"Failed to connect to {self.__class__.__name__} {self.name}: {e!r}")
                await self._cleanup_connections()
                raise

    async def disconnect(self, logger: Optional[logging.Logger] = None) -> None:
        """
        Disconnect from the datastore - idempotent operation.

        An open transaction is rolled back before the connection is closed.
        """
        async with self._connection_lock:
            if not self._is_connected:
                return

            if logger:
                logger.info(f"Disconnecting from {self.__class__.__name__}: {self.name}")

            try:
                if self._in_transaction:
                    await self.rollback()
                await self._cleanup_connections()
            except Exception as e:
                (logger or self._logger).error(
                    f"Error during disconnect from {self.__class__.__name__} {self.name}: {e}"
                )
            finally:
                # Still mark as disconnected even if cleanup failed
                self._is_connected = False
                self._in_transaction = False

    def _require_connection(self):
        if not self._is_connected or self._connection is None:
            raise RuntimeError(f"Datastore {self.name} is not connected. Call connect() first.")
        return self._connection

    # Transaction control

    async def begin(self) -> None:
        self._require_connection()
        if self._in_transaction:
            raise RuntimeError(f"Datastore {self.name} already has an open transaction")
        await self._begin()
        self._in_transaction = True

    async def commit(self) -> None:
        if not self._in_transaction:
            raise RuntimeError(f"Datastore {self.name} has no open transaction to commit")
        await self._commit()
        self._in_transaction = False

    async def rollback(self) -> None:
        """Roll back the open transaction; no-op when none is open"""
        if not self._in_transaction:
            return
        try:
            await self._rollback()
        finally:
            self._in_transaction = False

    # Identifier helpers

    def quote_identifier(self, name: str) -> str:
        q = self.identifier_quote
        return f"{q}{name.replace(q, q * 2)}{q}"

    def qualified_table(self, table: TableIdentifier) -> str:
        return f"{self.quote_identifier(table.schema)}.{self.quote_identifier(table.table)}"

    def parse_table(self, table_name: str) -> TableIdentifier:
        return TableIdentifier.parse(table_name, self.default_schema)

    # Data operations

    @abstractmethod
    async def resolve_table(self, table: TableIdentifier) -> Optional[TableIdentifier]:
        """
        Look up a table by case-insensitive schema and table name.

        Returns:
            The identifier spelled as the catalog stores it, or None when absent.
            Raises on query failure; callers decide how to treat that.
        """
        pass

    async def table_exists(self, table_name: str, schema_name: Optional[str] = None) -> bool:
        """Check if a table exists in the datastore; raises on query failure"""
        table = TableIdentifier(schema_name or self.default_schema, table_name)
        return await self.resolve_table(table) is not None


    @abstractmethod
    async def fetch_table(self, table: TableIdentifier) -> Tuple[List[str], List[Tuple[Any, ...]]]:
        """
        Read the full contents of a table.

        Returns:
            (column names, rows) where each row is a tuple in column order
        """
        pass

    @abstractmethod
    async def truncate_table(self, table: TableIdentifier) -> None:
        pass

    @abstractmethod
    async def bulk_insert(
        self,
        table: TableIdentifier,
        columns: List[str],
        records: Sequence[Tuple[Any, ...]],
        timeout: Optional[float] = None
    ) -> int:
        """
        Append records to a table, mapping values to same-named columns.

        Returns:
            Number of records written
        """
        pass

    async def get_row_count(self, table: TableIdentifier) -> int:
        rows = await self.execute_query(f"SELECT COUNT(*) AS row_count FROM {self.qualified_table(table)}")
        return int(rows[0]['row_count']) if rows else 0

    # Metadata

    @abstractmethod
    async def get_server_info(self) -> Dict[str, str]:
        """Return 'server_name', 'database_name' and 'version'"""
        pass

    @abstractmethod
    async def get_object_counts(self) -> Dict[str, int]:
        """Return 'table_count', 'view_count' and 'routine_count'"""
        pass

    @abstractmethod
    async def get_catalog_columns(self, schemas: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """
        List columns of all user base tables.

        Each row has 'table_schema', 'table_name', 'column_name', 'data_type',
        'is_nullable' (bool) and 'ordinal_position'.
        """
        pass

    async def get_catalog(self, schemas: Optional[List[str]] = None) -> Dict[TableIdentifier, CatalogTable]:
        """Group catalog columns into tables keyed by identifier"""
        tables: Dict[TableIdentifier, CatalogTable] = {}
        for row in await self.get_catalog_columns(schemas):
            identifier = TableIdentifier(row['table_schema'], row['table_name'])
            table = tables.setdefault(identifier, CatalogTable(identifier=identifier))
            table.columns.append(CatalogColumn(
                name=row['column_name'],
                data_type=row['data_type'],
                nullable=bool(row['is_nullable']),
                position=int(row['ordinal_position'])
            ))
        for table in tables.values():
            table.columns.sort(key=lambda c: c.position)
        return tables

    # DDL rendering

    def generate_create_table_ddl(self, table: CatalogTable) -> str:
        columns = [f"{self.quote_identifier(col.name)} {col.definition()}" for col in table.columns]
        columns_str = ',\n  '.join(columns)
        return f"""CREATE TABLE {self.qualified_table(table.identifier)} (
  {columns_str}
);"""

    def generate_drop_table_ddl(self, table: TableIdentifier) -> str:
        return f"DROP TABLE {self.qualified_table(table)};"

    def generate_alter_table_ddl(
        self,
        table: TableIdentifier,
        changes: List[Dict[str, Any]]
    ) -> List[str]:
        """
        Generate ALTER TABLE DDL statements.

        Args:
            table: Table to alter
            changes: List of change specifications with format:
                     {'type': 'add_column'|'modify_column'|'drop_column', 'column': CatalogColumn}

        Returns:
            List of ALTER TABLE DDL statements
        """
        full_table = self.qualified_table(table)
        ddl_statements = []

        for change in changes:
            col = change['column']
            if change['type'] == 'add_column':
                ddl_statements.append(
                    f"ALTER TABLE {full_table} ADD COLUMN {self.quote_identifier(col.name)} {col.definition()};"
                )
            elif change['type'] == 'modify_column':
                ddl_statements.extend(self._modify_column_ddl(full_table, col))
            elif change['type'] == 'drop_column':
                ddl_statements.append(
                    f"ALTER TABLE {full_table} DROP COLUMN {self.quote_identifier(col.name)};"
                )
            else:
                raise ValueError(f"Unknown column change type: {change['type']}")

        return ddl_statements

    @abstractmethod
    def _modify_column_ddl(self, full_table: str, column: CatalogColumn) -> List[str]:
        pass
