"""
Full-replace synchronization of config tables from source to target.
"""
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence, Tuple

from ..core.enums import FailureKind
from ..core.errors import DataIntegrityError, DeploymentError, TableValidationError
from ..core.models import DatabaseEndpoint, SyncOutcome, TableIdentifier
from ..datastore.connection_validator import ConnectionValidator


# Fixed upper bound on a single bulk load, independent of caller cancellation
BULK_LOAD_TIMEOUT = 300


class DataSyncService:
    """
    Copies the full contents of config tables from source to target.

    Each table sync is: confirm the table exists on both sides, read the whole
    source table into memory, then truncate the target and bulk-load the rows,
    optionally inside a single transaction. Source and target connections are
    opened per table and never shared.
    """

    def __init__(self, connection_validator: ConnectionValidator, bulk_load_timeout: float = BULK_LOAD_TIMEOUT):
        self.connection_validator = connection_validator
        self.bulk_load_timeout = bulk_load_timeout
        self.logger = logging.getLogger(__name__)

    async def sync_table(
        self,
        source: DatabaseEndpoint,
        target: DatabaseEndpoint,
        table_name: str,
        use_transaction: bool = True
    ) -> SyncOutcome:
        """
        Synchronize one config table from source to target.

        Never raises for sync failures: they are reported on the returned
        SyncOutcome with a non-empty error message.
        """
        start_time = datetime.now(timezone.utc)
        rows_read = 0

        try:
            source_table = await self._require_table(source, table_name, 'source')
            target_table = await self._require_table(target, table_name, 'target')

            self.logger.info(f"Starting data sync for table {table_name} to {target.name}...")

            columns, rows = await self._extract(source, source_table)
            rows_read = len(rows)
            self.logger.info(f"Read {rows_read} rows from source table {source_table}")

            rows_synced = await self._load(target, target_table, columns, rows, use_transaction)

            self.logger.info(f"Successfully synced {rows_synced} rows to {target.name} table {table_name}")
            return SyncOutcome(
                table_name=table_name,
                success=True,
                start_time=start_time,
                end_time=datetime.now(timezone.utc),
                rows_read=rows_read,
                rows_synced=rows_synced
            )

        except TableValidationError as e:
            self.logger.warning(e.message)
            return self._failed(table_name, start_time, e.message, e.kind, rows_read)
        except DeploymentError as e:
            self.logger.error(f"Error syncing table {table_name}: {e.message}")
            return self._failed(table_name, start_time, e.message, e.kind, rows_read)
        except Exception as e:
            self.logger.error(f"Error syncing table {table_name}: {e}", exc_info=True)
            return self._failed(
                table_name, start_time, str(e) or e.__class__.__name__, FailureKind.UNEXPECTED, rows_read
            )

    async def sync_tables(
        self,
        source: DatabaseEndpoint,
        target: DatabaseEndpoint,
        table_names: List[str],
        use_transaction: bool = True
    ) -> List[SyncOutcome]:
        """Synchronize tables in order, stopping at the first failure"""
        outcomes = []

        for table_name in table_names:
            outcome = await self.sync_table(source, target, table_name, use_transaction)
            outcomes.append(outcome)

            if not outcome.success:
                self.logger.warning(f"Skipping remaining tables due to sync failure for {table_name}")
                break

        return outcomes

    async def get_table_row_count(self, endpoint: DatabaseEndpoint, table_name: str) -> int:
        """Row count of a table, or 0 when it cannot be read"""
        try:
            async with self.connection_validator.connection(endpoint) as datastore:
                table = datastore.parse_table(table_name)
                return await datastore.get_row_count(await datastore.resolve_table(table) or table)
        except Exception as e:
            self.logger.error(f"Error getting row count for {table_name}: {e}")
            return 0

    async def _require_table(self, endpoint: DatabaseEndpoint, table_name: str, side: str) -> TableIdentifier:
        """Catalog spelling of the table on one side, or TableValidationError when absent"""
        table = await self.connection_validator.locate_table(endpoint, table_name)
        if table is None:
            raise TableValidationError(
                f"Table {table_name} does not exist in {side} database {endpoint.name}"
            )
        return table

    async def _extract(
        self,
        source: DatabaseEndpoint,
        table: TableIdentifier
    ) -> Tuple[List[str], List[Tuple[Any, ...]]]:
        async with self.connection_validator.connection(source) as datastore:
            return await datastore.fetch_table(table)

    async def _load(
        self,
        target: DatabaseEndpoint,
        table: TableIdentifier,
        columns: List[str],
        rows: Sequence[Tuple[Any, ...]],
        use_transaction: bool
    ) -> int:
        """
        Truncate the target table and load rows; returns the source row count.

        Raises:
            DataIntegrityError: if the truncate, the load or the commit fails
        """
        async with self.connection_validator.connection(target) as datastore:
            try:
                if use_transaction:
                    await datastore.begin()

                await datastore.truncate_table(table)
                self.logger.debug(f"Truncated target table {table}")

                if rows:
                    await datastore.bulk_insert(table, columns, rows, timeout=self.bulk_load_timeout)
                    self.logger.debug(f"Bulk inserted {len(rows)} rows into {table}")
                else:
                    self.logger.info(f"No data to sync for table {table}")

                if use_transaction:
                    await datastore.commit()
            except Exception as e:
                await self._rollback_quietly(datastore, table)
                raise DataIntegrityError(f"Failed to load {table} into {target.name}: {e}") from e
            except BaseException:
                await self._rollback_quietly(datastore, table)
                raise

        return len(rows)

    async def _rollback_quietly(self, datastore, table: TableIdentifier) -> None:
        if not datastore.in_transaction:
            return
        try:
            await datastore.rollback()
            self.logger.info(f"Rolled back load of {table} on {datastore.name}")
        except Exception as e:
            self.logger.error(f"Rollback failed for {table} on {datastore.name}: {e}")

    @staticmethod
    def _failed(
        table_name: str,
        start_time: datetime,
        error_message: str,
        kind: Optional[FailureKind],
        rows_read: int
    ) -> SyncOutcome:
        return SyncOutcome(
            table_name=table_name,
            success=False,
            start_time=start_time,
            end_time=datetime.now(timezone.utc),
            error_message=error_message,
            rows_read=rows_read,
            rows_synced=0,
            failure_kind=kind
        )
