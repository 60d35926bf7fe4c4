"""
Core data models, enums and errors shared by every deploytool component.
"""
from .enums import UpdateAction, DifferenceType, FailureKind, RunState, enum_value
from .errors import (
    DeploymentError, ConnectivityError, TableValidationError,
    CollaboratorError, DataIntegrityError, PolicyBlockError
)
from .models import (
    DEFAULT_SCHEMA, DatabaseEndpoint, TableIdentifier, DeploymentOptions,
    DeploymentSettings, SchemaDifference, ComparisonOutcome, SyncOutcome,
    DeploymentResult, DeploymentSummary, DatabaseMetadata
)
from .schema_models import CatalogColumn, CatalogTable

__all__ = [
    'UpdateAction', 'DifferenceType', 'FailureKind', 'RunState', 'enum_value',
    'DeploymentError', 'ConnectivityError', 'TableValidationError',
    'CollaboratorError', 'DataIntegrityError', 'PolicyBlockError',
    'DEFAULT_SCHEMA', 'DatabaseEndpoint', 'TableIdentifier', 'DeploymentOptions',
    'DeploymentSettings', 'SchemaDifference', 'ComparisonOutcome', 'SyncOutcome',
    'DeploymentResult', 'DeploymentSummary', 'DatabaseMetadata',
    'CatalogColumn', 'CatalogTable',
]
