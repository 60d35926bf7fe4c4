from .comparer import SchemaComparer
from .catalog_comparer import CatalogSchemaComparer, ComparisonPlan, IGNORED_TABLES

__all__ = ['SchemaComparer', 'CatalogSchemaComparer', 'ComparisonPlan', 'IGNORED_TABLES']
