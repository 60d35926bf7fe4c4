"""
PostgreSQL datastore implementation.
"""
from typing import Dict, List, Optional, Any, Union, Tuple, Sequence

from .base_datastore import BaseDatastore
from ..core.models import DatabaseEndpoint, TableIdentifier
from ..core.schema_models import CatalogColumn


class PostgresDatastore(BaseDatastore):
    """
    PostgreSQL datastore implementation using asyncpg.

    Features:
    - Lazy loading of asyncpg driver
    - Raw query execution with parameter binding
    - Bulk loads through the COPY protocol
    - Transactional DDL for schema publishing
    """

    def __init__(self, endpoint: DatabaseEndpoint):
        super().__init__(endpoint)
        self._transaction = None

    async def _create_connection(self) -> None:
        """Create PostgreSQL connection using asyncpg"""
        try:
            import asyncpg
        except ImportError:
            raise ImportError(
                "asyncpg is required for PostgreSQL datastore. "
                "Install it with: pip install asyncpg"
            )

        connection = await asyncpg.connect(dsn=self.endpoint.connection_string)
        try:
            # Test connection
            await connection.fetchval("SELECT 1")
        except BaseException:
            await connection.close()
            raise
        self._connection = connection

    async def _cleanup_connections(self) -> None:
        """Close the PostgreSQL connection"""
        if self._connection:
            await self._connection.close()
            self._connection = None
        self._transaction = None

    async def _begin(self) -> None:
        self._transaction = self._connection.transaction()
        await self._transaction.start()

    async def _commit(self) -> None:
        await self._transaction.commit()
        self._transaction = None

    async def _rollback(self) -> None:
        try:
            await self._transaction.rollback()
        finally:
            self._transaction = None

    async def execute_query(
        self,
        query: str,
        params: Optional[List[Any]] = None,
        action: str = 'select'
    ) -> Union[List[Dict[str, Any]], int]:
        """
        Execute a raw SQL query against PostgreSQL.

        Returns:
            For SELECT queries: List of dictionaries representing rows
            For other queries: Number of affected rows
        """
        conn = self._require_connection()

        self._logger.debug(f"Executing PostgreSQL query: {query}")
        if params:
            self._logger.debug(f"Query parameters: {params}")

        try:
            if action.lower() == 'select':
                rows = await conn.fetch(query, *(params or []))
                return [dict(row) for row in rows]
            else:
                result = await conn.execute(query, *(params or []))
                # asyncpg returns a status string like "INSERT 0 5"
                if isinstance(result, str):
                    parts = result.split()
                    if len(parts) >= 2 and parts[-1].isdigit():
                        return int(parts[-1])
                    return 0
                return result
        except Exception as e:
            self._logger.error(f"PostgreSQL query failed: {e}")
            raise

    async def resolve_table(self, table: TableIdentifier) -> Optional[TableIdentifier]:
        """Find a table ignoring case; an exact spelling wins over a folded one"""
        query = """
        SELECT table_schema, table_name
        FROM information_schema.tables
        WHERE lower(table_schema) = lower($1)
        AND lower(table_name) = lower($2)
        ORDER BY (table_schema = $1 AND table_name = $2) DESC
        LIMIT 1
        """

        result = await self.execute_query(query, [table.schema, table.table])
        if not result:
            return None
        return TableIdentifier(result[0]['table_schema'], result[0]['table_name'])


    async def fetch_table(self, table: TableIdentifier) -> Tuple[List[str], List[Tuple[Any, ...]]]:
        conn = self._require_connection()
        # A prepared statement exposes column names even when the table is empty
        statement = await conn.prepare(f"SELECT * FROM {self.qualified_table(table)}")
        columns = [attr.name for attr in statement.get_attributes()]
        rows = await statement.fetch()
        return columns, [tuple(row) for row in rows]

    async def truncate_table(self, table: TableIdentifier) -> None:
        await self.execute_query(f"TRUNCATE TABLE {self.qualified_table(table)}", action='truncate')

    async def bulk_insert(
        self,
        table: TableIdentifier,
        columns: List[str],
        records: Sequence[Tuple[Any, ...]],
        timeout: Optional[float] = None
    ) -> int:
        if not records:
            return 0
        conn = self._require_connection()
        await conn.copy_records_to_table(
            table.table,
            records=records,
            columns=columns,
            schema_name=table.schema,
            timeout=timeout
        )
        return len(records)

    async def get_server_info(self) -> Dict[str, str]:
        rows = await self.execute_query("""
        SELECT
            COALESCE(host(inet_server_addr()), 'localhost') AS server_name,
            current_database() AS database_name,
            version() AS version
        """)
        return dict(rows[0]) if rows else {}

    async def get_object_counts(self) -> Dict[str, int]:
        rows = await self.execute_query("""
        SELECT
            (SELECT COUNT(*) FROM information_schema.tables
             WHERE table_type = 'BASE TABLE'
             AND table_schema NOT IN ('pg_catalog', 'information_schema')) AS table_count,
            (SELECT COUNT(*) FROM information_schema.views
             WHERE table_schema NOT IN ('pg_catalog', 'information_schema')) AS view_count,
            (SELECT COUNT(*) FROM information_schema.routines
             WHERE routine_schema NOT IN ('pg_catalog', 'information_schema')) AS routine_count
        """)
        return {key: int(value) for key, value in rows[0].items()} if rows else {}

    async def get_catalog_columns(self, schemas: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        query = """
        SELECT
            n.nspname AS table_schema,
            c.relname AS table_name,
            a.attname AS column_name,
            format_type(a.atttypid, a.atttypmod) AS data_type,
            NOT a.attnotnull AS is_nullable,
            a.attnum AS ordinal_position
        FROM pg_attribute a
        JOIN pg_class c ON a.attrelid = c.oid
        JOIN pg_namespace n ON c.relnamespace = n.oid
        WHERE c.relkind IN ('r', 'p')
            AND a.attnum > 0
            AND NOT a.attisdropped
            AND n.nspname NOT IN ('pg_catalog', 'information_schema')
            AND n.nspname NOT LIKE 'pg_toast%'
            AND n.nspname NOT LIKE 'pg_temp%'
        """
        params: List[Any] = []
        if schemas:
            query += " AND n.nspname = ANY($1::text[])"
            params.append(list(schemas))
        query += " ORDER BY n.nspname, c.relname, a.attnum"
        return await self.execute_query(query, params)

    def _modify_column_ddl(self, full_table: str, column: CatalogColumn) -> List[str]:
        # PostgreSQL requires separate ALTER COLUMN statements
        name = self.quote_identifier(column.name)
        nullability = "DROP NOT NULL" if column.nullable else "SET NOT NULL"
        return [
            f"ALTER TABLE {full_table} ALTER COLUMN {name} TYPE {column.data_type};",
            f"ALTER TABLE {full_table} ALTER COLUMN {name} {nullability};",
        ]
