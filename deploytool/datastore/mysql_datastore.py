"""
MySQL datastore implementation.
"""
import asyncio
from typing import Dict, List, Optional, Any, Union, Tuple, Sequence
from urllib.parse import urlsplit, unquote

from .base_datastore import BaseDatastore
from ..core.models import DatabaseEndpoint, TableIdentifier
from ..core.schema_models import CatalogColumn


class MySQLDatastore(BaseDatastore):
    """
    MySQL datastore implementation using aiomysql.

    Features:
    - Lazy loading of aiomysql driver
    - Raw query execution with parameter binding
    - Batched multi-row inserts for bulk loads

    MySQL schemas are databases, so unqualified table names resolve to the
    database named in the connection string.
    """

    identifier_quote = '`'
    batch_size = 1000

    def __init__(self, endpoint: DatabaseEndpoint):
        super().__init__(endpoint)
        self._url = urlsplit(endpoint.connection_string)

    @property
    def default_schema(self) -> str:
        return self._url.path.lstrip('/') or 'mysql'

    async def _create_connection(self) -> None:
        """Create MySQL connection using aiomysql"""
        try:
            import aiomysql
        except ImportError:
            raise ImportError(
                "aiomysql is required for MySQL datastore. "
                "Install it with: pip install aiomysql"
            )

        connection = await aiomysql.connect(
            host=self._url.hostname or 'localhost',
            port=self._url.port or 3306,
            user=unquote(self._url.username or ''),
            password=unquote(self._url.password or ''),
            db=self._url.path.lstrip('/') or None,
            autocommit=True
        )

        try:
            # Test connection
            async with connection.cursor() as cur:
                await cur.execute("SELECT 1")
                result = await cur.fetchone()
                if not result or result[0] != 1:
                    raise RuntimeError("MySQL connection test failed")
        except BaseException:
            connection.close()
            raise
        self._connection = connection

    async def _cleanup_connections(self) -> None:
        """Close the MySQL connection"""
        if self._connection:
            self._connection.close()
            self._connection = None

    async def _begin(self) -> None:
        await self._connection.begin()

    async def _commit(self) -> None:
        await self._connection.commit()

    async def _rollback(self) -> None:
        await self._connection.rollback()

    async def execute_query(
        self,
        query: str,
        params: Optional[List[Any]] = None,
        action: str = 'select'
    ) -> Union[List[Dict[str, Any]], int]:
        """
        Execute a raw SQL query against MySQL.

        Returns:
            For SELECT queries: List of dictionaries representing rows
            For other queries: Number of affected rows
        """
        conn = self._require_connection()

        self._logger.debug(f"Executing MySQL query: {query}")
        if params:
            self._logger.debug(f"Query parameters: {params}")

        try:
            async with conn.cursor() as cur:
                await cur.execute(query, params or None)

                if action.lower() == 'select':
                    columns = [desc[0] for desc in cur.description] if cur.description else []
                    rows = await cur.fetchall()
                    return [dict(zip(columns, row)) for row in rows]
                return cur.rowcount
        except Exception as e:
            self._logger.error(f"MySQL query failed: {e}")
            raise

    async def resolve_table(self, table: TableIdentifier) -> Optional[TableIdentifier]:
        """Find a table ignoring case; an exact spelling wins over a folded one"""
        query = """
        SELECT table_schema AS table_schema, table_name AS table_name
        FROM information_schema.tables
        WHERE LOWER(table_schema) = LOWER(%s) AND LOWER(table_name) = LOWER(%s)
        ORDER BY (BINARY table_schema = %s AND BINARY table_name = %s) DESC
        LIMIT 1
        """

        result = await self.execute_query(query, [table.schema, table.table, table.schema, table.table])
        if not result:
            return None
        return TableIdentifier(result[0]['table_schema'], result[0]['table_name'])


    async def fetch_table(self, table: TableIdentifier) -> Tuple[List[str], List[Tuple[Any, ...]]]:
        conn = self._require_connection()
        async with conn.cursor() as cur:
            await cur.execute(f"SELECT * FROM {self.qualified_table(table)}")
            columns = [desc[0] for desc in cur.description] if cur.description else []
            rows = await cur.fetchall()
        return columns, [tuple(row) for row in rows]

    async def truncate_table(self, table: TableIdentifier) -> None:
        # TRUNCATE commits implicitly in MySQL, so use DELETE inside a transaction
        if self._in_transaction:
            await self.execute_query(f"DELETE FROM {self.qualified_table(table)}", action='delete')
        else:
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
        if timeout:
            return await asyncio.wait_for(self._insert_batches(table, columns, records), timeout=timeout)
        return await self._insert_batches(table, columns, records)

    async def _insert_batches(
        self,
        table: TableIdentifier,
        columns: List[str],
        records: Sequence[Tuple[Any, ...]]
    ) -> int:
        conn = self._require_connection()
        insert_cols = ', '.join(self.quote_identifier(col) for col in columns)
        placeholders = ', '.join(['%s'] * len(columns))
        query = f"INSERT INTO {self.qualified_table(table)} ({insert_cols}) VALUES ({placeholders})"

        total_inserted = 0
        async with conn.cursor() as cur:
            for i in range(0, len(records), self.batch_size):
                batch = records[i:i + self.batch_size]
                await cur.executemany(query, batch)
                total_inserted += len(batch)
        return total_inserted

    async def get_server_info(self) -> Dict[str, str]:
        rows = await self.execute_query(
            "SELECT @@hostname AS server_name, DATABASE() AS database_name, VERSION() AS version"
        )
        return dict(rows[0]) if rows else {}

    async def get_object_counts(self) -> Dict[str, int]:
        rows = await self.execute_query("""
        SELECT
            (SELECT COUNT(*) FROM information_schema.tables
             WHERE table_schema = DATABASE() AND table_type = 'BASE TABLE') AS table_count,
            (SELECT COUNT(*) FROM information_schema.views
             WHERE table_schema = DATABASE()) AS view_count,
            (SELECT COUNT(*) FROM information_schema.routines
             WHERE routine_schema = DATABASE()) AS routine_count
        """)
        return {key: int(value) for key, value in rows[0].items()} if rows else {}

    async def get_catalog_columns(self, schemas: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        schemas = list(schemas) if schemas else [self.default_schema]
        placeholders = ', '.join(['%s'] * len(schemas))
        query = f"""
        SELECT
            c.table_schema AS table_schema,
            c.table_name AS table_name,
            c.column_name AS column_name,
            c.column_type AS data_type,
            c.is_nullable AS is_nullable,
            c.ordinal_position AS ordinal_position
        FROM information_schema.columns c
        JOIN information_schema.tables t
            ON t.table_schema = c.table_schema AND t.table_name = c.table_name
        WHERE t.table_type = 'BASE TABLE'
            AND c.table_schema IN ({placeholders})
        ORDER BY c.table_schema, c.table_name, c.ordinal_position
        """
        rows = await self.execute_query(query, schemas)
        for row in rows:
            row['is_nullable'] = row['is_nullable'] == 'YES'
        return rows

    def _modify_column_ddl(self, full_table: str, column: CatalogColumn) -> List[str]:
        return [
            f"ALTER TABLE {full_table} MODIFY COLUMN {self.quote_identifier(column.name)} {column.definition()};"
        ]
