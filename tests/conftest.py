"""Pytest configuration and fixtures for deploytool tests."""

import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional
import pytest
import logging

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from deploytool.core.models import (
    ComparisonOutcome, DatabaseEndpoint, DeploymentOptions, DeploymentSettings, TableIdentifier
)
from deploytool.core.schema_models import CatalogColumn
from deploytool.datastore.base_datastore import BaseDatastore
from deploytool.datastore.connection_validator import ConnectionValidator
from deploytool.schema.comparer import SchemaComparer
from deploytool.sync.data_sync_service import DataSyncService

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class FakeTable:
    """Columns and rows of one in-memory table"""

    def __init__(self, columns: List[CatalogColumn], rows: Optional[List[tuple]] = None):
        self.columns = columns
        self.rows = list(rows or [])

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]


class FakeDatabase:
    """In-memory database shared by every FakeDatastore opened against it"""

    def __init__(self, name: str):
        self.name = name
        self.tables: Dict[TableIdentifier, FakeTable] = {}
        self.executed: List[str] = []
        self.open_connections = 0
        self.connect_count = 0
        self.connect_delay = 0.0
        self.fail_connect = False
        self.fail_exists = False
        self.fail_truncate = False
        self.fail_insert = False
        self.fail_ddl = False

    def add_table(self, name: str, columns, rows=None) -> FakeTable:
        cols = [c if isinstance(c, CatalogColumn) else CatalogColumn(name=c, data_type='text', position=i)
                for i, c in enumerate(columns, start=1)]
        table = FakeTable(cols, rows)
        self.tables[TableIdentifier.parse(name)] = table
        return table

    def get_table(self, name: str) -> FakeTable:
        return self.tables[TableIdentifier.parse(name)]


class FakeDatastore(BaseDatastore):
    """BaseDatastore over a FakeDatabase; transactions snapshot and restore rows"""

    def __init__(self, endpoint: DatabaseEndpoint, database: FakeDatabase):
        super().__init__(endpoint)
        self.database = database
        self._snapshot = None

    async def _create_connection(self) -> None:
        if self.database.connect_delay:
            await asyncio.sleep(self.database.connect_delay)
        if self.database.fail_connect:
            raise ConnectionError(f"could not connect to {self.database.name}")
        self._connection = object()
        self.database.open_connections += 1
        self.database.connect_count += 1

    async def _cleanup_connections(self) -> None:
        if self._connection is not None:
            self.database.open_connections -= 1
        self._connection = None

    async def _begin(self) -> None:
        self._snapshot = {key: list(t.rows) for key, t in self.database.tables.items()}

    async def _commit(self) -> None:
        self._snapshot = None

    async def _rollback(self) -> None:
        for key, rows in (self._snapshot or {}).items():
            if key in self.database.tables:
                self.database.tables[key].rows = rows
        self._snapshot = None

    async def execute_query(self, query, params=None, action='select'):
        self._require_connection()
        self.database.executed.append(query)
        if action == 'ddl' and self.database.fail_ddl:
            raise RuntimeError("DDL rejected")
        return [] if action == 'select' else 0

    async def resolve_table(self, table):
        self._require_connection()
        if self.database.fail_exists:
            raise RuntimeError("catalog query failed")
        for stored in self.database.tables:
            if stored == table:
                return stored
        return None

    def _stored(self, table) -> FakeTable:
        """Exact-spelling lookup, like a quoted identifier in SQL"""
        for stored, fake in self.database.tables.items():
            if (stored.schema, stored.table) == (table.schema, table.table):
                return fake
        raise RuntimeError(f'relation "{table}" does not exist')

    async def fetch_table(self, table):
        self._require_connection()
        fake = self._stored(table)
        return fake.column_names, [tuple(r) for r in fake.rows]

    async def truncate_table(self, table):
        self._require_connection()
        fake = self._stored(table)
        if self.database.fail_truncate:
            raise RuntimeError("truncate failed")
        fake.rows = []

    async def bulk_insert(self, table, columns, records, timeout=None):
        self._require_connection()
        fake = self._stored(table)
        missing = [c for c in columns if c not in fake.column_names]
        if missing:
            raise RuntimeError(f"column(s) {', '.join(missing)} do not exist in {table}")
        if self.database.fail_insert:
            raise RuntimeError("violates not-null constraint")
        positions = [fake.column_names.index(c) for c in columns]
        for record in records:
            row = [None] * len(fake.column_names)
            for pos, value in zip(positions, record):
                row[pos] = value
            fake.rows.append(tuple(row))
        return len(records)

    async def get_row_count(self, table):
        self._require_connection()
        return len(self._stored(table).rows)

    async def get_server_info(self):
        self._require_connection()
        return {'server_name': 'fakehost', 'database_name': self.database.name, 'version': 'Fake 1.0'}

    async def get_object_counts(self):
        self._require_connection()
        return {'table_count': len(self.database.tables), 'view_count': 0, 'routine_count': 0}

    async def get_catalog_columns(self, schemas=None):
        self._require_connection()
        rows = []
        for identifier, fake in self.database.tables.items():
            if schemas and identifier.schema not in schemas:
                continue
            for col in fake.columns:
                rows.append({
                    'table_schema': identifier.schema,
                    'table_name': identifier.table,
                    'column_name': col.name,
                    'data_type': col.data_type,
                    'is_nullable': col.nullable,
                    'ordinal_position': col.position,
                })
        return rows

    def _modify_column_ddl(self, full_table, column):
        return [f"ALTER TABLE {full_table} ALTER COLUMN {self.quote_identifier(column.name)} TYPE {column.data_type};"]


class FakeCluster(dict):
    """FakeDatabase per endpoint name, created on first use"""

    def __missing__(self, name: str) -> FakeDatabase:
        database = FakeDatabase(name)
        self[name] = database
        return database

    def factory(self, endpoint: DatabaseEndpoint) -> FakeDatastore:
        return FakeDatastore(endpoint, self[endpoint.name])


class FakeComparer(SchemaComparer):
    """Scripted SchemaComparer that records calls and peak concurrency"""

    def __init__(self):
        self.outcomes: Dict[str, Optional[ComparisonOutcome]] = {}
        self.default_outcome: Optional[ComparisonOutcome] = ComparisonOutcome(is_equal=True, difference_count=0)
        self.publish_result = True
        self.script: Optional[str] = "-- script"
        self.delay = 0.0
        self.compare_error: Optional[Exception] = None
        self.compared: List[str] = []
        self.published: List[str] = []
        self.scripted: List[str] = []
        self.excluded_seen: List[List[str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def compare(self, source, target, excluded_tables):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.compared.append(target.name)
            self.excluded_seen.append(list(excluded_tables))
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.compare_error is not None:
                raise self.compare_error
            return self.outcomes.get(target.name, self.default_outcome)
        finally:
            self.in_flight -= 1

    async def publish(self, outcome):
        self.published.append(outcome.payload)
        return self.publish_result

    async def generate_script(self, outcome, target_name):
        self.scripted.append(target_name)
        return self.script


def pg(name: str) -> DatabaseEndpoint:
    return DatabaseEndpoint(name=name, connection_string=f"postgresql://user:secret@{name}:5432/app")


@pytest.fixture
def cluster() -> FakeCluster:
    """In-memory databases keyed by endpoint name."""
    return FakeCluster()


@pytest.fixture
def validator(cluster) -> ConnectionValidator:
    """Connection validator opening fake datastores."""
    return ConnectionValidator(connect_timeout=5, datastore_factory=cluster.factory)


@pytest.fixture
def data_sync_service(validator) -> DataSyncService:
    return DataSyncService(validator)


@pytest.fixture
def comparer() -> FakeComparer:
    return FakeComparer()


@pytest.fixture
def endpoint_factory():
    """Build a postgres endpoint for a database name."""
    return pg


@pytest.fixture
def settings() -> DeploymentSettings:
    """Source plus three targets with two config tables."""
    return DeploymentSettings(
        source=pg('dev'),
        targets=[pg('prod-eu'), pg('prod-us'), pg('prod-ap')],
        config_tables=['public.settings', 'public.feature_flags'],
        excluded_tables=['public.audit_log'],
        options=DeploymentOptions(max_parallel_deployments=2)
    )


@pytest.fixture
def seeded_cluster(cluster, settings) -> FakeCluster:
    """Source and targets all carrying the config tables; source has data."""
    for endpoint in [settings.source] + settings.targets:
        db = cluster[endpoint.name]
        db.add_table('public.settings', ['key', 'value'])
        db.add_table('public.feature_flags', ['flag', 'enabled'])

    source = cluster[settings.source.name]
    source.get_table('public.settings').rows = [('theme', 'dark'), ('lang', 'en'), ('tz', 'UTC')]
    source.get_table('public.feature_flags').rows = [('beta', 'true')]
    return cluster
