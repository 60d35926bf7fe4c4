"""
Deploy Tool - rolls schema changes and config table data out to many databases

Main modules:
- core: Data models, enums and the error taxonomy
- datastore: PostgreSQL and MySQL datastores and the connection validator
- schema: Schema comparer interface and the catalog-based comparer
- sync: Full-replace config table synchronization
- deployment: Bounded-parallel deployment orchestration
- config: YAML settings loading and validation
"""

from .core.models import (
    DatabaseEndpoint, TableIdentifier, DeploymentOptions, DeploymentSettings,
    ComparisonOutcome, SchemaDifference, SyncOutcome, DeploymentResult, DeploymentSummary
)
from .datastore.connection_validator import ConnectionValidator
from .schema.comparer import SchemaComparer
from .schema.catalog_comparer import CatalogSchemaComparer
from .sync.data_sync_service import DataSyncService
from .deployment.service import DeploymentService
from .config.config_loader import ConfigLoader

__version__ = "0.1.0"

__all__ = [
    'DatabaseEndpoint',
    'TableIdentifier',
    'DeploymentOptions',
    'DeploymentSettings',
    'ComparisonOutcome',
    'SchemaDifference',
    'SyncOutcome',
    'DeploymentResult',
    'DeploymentSummary',
    'ConnectionValidator',
    'SchemaComparer',
    'CatalogSchemaComparer',
    'DataSyncService',
    'DeploymentService',
    'ConfigLoader',
]
