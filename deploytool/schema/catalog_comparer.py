"""
Schema comparer built on information_schema / pg_catalog reads.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .comparer import SchemaComparer
from ..core.enums import DifferenceType, UpdateAction, enum_value
from ..core.models import ComparisonOutcome, DatabaseEndpoint, SchemaDifference, TableIdentifier
from ..core.schema_models import CatalogTable
from ..datastore.base_datastore import BaseDatastore
from ..datastore.connection_validator import ConnectionValidator
from ..datastore.factory import DATASTORE_TYPES


# Migration bookkeeping tables are owned by their tools and never compared
IGNORED_TABLES = frozenset({
    '__refactorlog',
    '__migrationhistory',
    'alembic_version',
    'flyway_schema_history',
})


@dataclass
class ComparisonPlan:
    """Target and ordered DDL statements carried as a ComparisonOutcome payload"""
    target: DatabaseEndpoint
    statements: List[str] = field(default_factory=list)


class CatalogSchemaComparer(SchemaComparer):
    """
    Table and column level schema comparison between two databases of the same driver.

    Differences are reported as Add/Change/Delete on Table/Column. Indexes,
    constraints, views and routines are not compared.
    """

    def __init__(self, connection_validator: ConnectionValidator, included_schemas: Optional[List[str]] = None):
        self.connection_validator = connection_validator
        self.included_schemas = list(included_schemas) if included_schemas else []
        self.logger = logging.getLogger(__name__)

    async def compare(
        self,
        source: DatabaseEndpoint,
        target: DatabaseEndpoint,
        excluded_tables: List[str]
    ) -> Optional[ComparisonOutcome]:
        if DATASTORE_TYPES.get(source.scheme) is not DATASTORE_TYPES.get(target.scheme):
            self.logger.error(
                f"Cannot compare {source.name} ({source.scheme}) with {target.name} ({target.scheme}): "
                f"source and target must use the same database driver"
            )
            return None

        try:
            async with self.connection_validator.connection(source) as source_store:
                source_catalog = await source_store.get_catalog(self.included_schemas or None)
                source_default = source_store.default_schema

            async with self.connection_validator.connection(target) as target_store:
                target_catalog = await target_store.get_catalog(self.included_schemas or None)
                source_catalog = _rebase(source_catalog, source_default, target_store.default_schema)

                exclusions = self._parse_exclusions(excluded_tables, target_store.default_schema)
                source_catalog = self._filter(source_catalog, exclusions)
                target_catalog = self._filter(target_catalog, exclusions)

                differences, statements = self._diff(source_catalog, target_catalog, target_store)

        except Exception as e:
            self.logger.error(f"Schema comparison of {source.name} and {target.name} failed: {e}")
            return None

        outcome = ComparisonOutcome.from_differences(
            differences,
            payload=ComparisonPlan(target=target, statements=statements)
        )

        if outcome.is_equal:
            self.logger.info(f"Schemas of {source.name} and {target.name} are identical")
        else:
            self.logger.info(f"Found {outcome.difference_count} difference(s) between {source.name} and {target.name}")
            for diff_type, count in outcome.differences_by_type().items():
                self.logger.info(f"  {diff_type}: {count}")

        return outcome

    async def publish(self, outcome: ComparisonOutcome) -> bool:
        plan = outcome.payload
        if not isinstance(plan, ComparisonPlan):
            self.logger.error("Comparison outcome carries no publish plan")
            return False

        if not plan.statements:
            return True

        try:
            async with self.connection_validator.connection(plan.target) as datastore:
                await datastore.begin()
                try:
                    for ddl in plan.statements:
                        self.logger.info(f"Executing: {ddl}")
                        await datastore.execute_query(ddl, action='ddl')
                    await datastore.commit()
                except BaseException:
                    await datastore.rollback()
                    raise

            self.logger.info(f"Published {len(plan.statements)} DDL statement(s) to {plan.target.name}")
            return True

        except Exception as e:
            self.logger.error(f"Failed to publish schema changes to {plan.target.name}: {e}")
            return False

    async def generate_script(self, outcome: ComparisonOutcome, target_name: str) -> Optional[str]:
        plan = outcome.payload
        if not isinstance(plan, ComparisonPlan):
            self.logger.error("Comparison outcome carries no publish plan")
            return None

        header = [
            f"-- Deployment script for {target_name}",
            f"-- Generated at {datetime.now(timezone.utc).isoformat()}",
            f"-- {outcome.difference_count} difference(s), {len(plan.statements)} statement(s)",
        ]
        for difference in outcome.differences:
            header.append(
                f"--   {enum_value(difference.update_action)} "
                f"{enum_value(difference.difference_type)}: {difference.name}"
            )

        return '\n'.join(header) + '\n\n' + '\n\n'.join(plan.statements) + '\n'

    def _parse_exclusions(self, excluded_tables: List[str], default_schema: str) -> List[TableIdentifier]:
        exclusions = []
        for name in excluded_tables or []:
            try:
                exclusions.append(TableIdentifier.parse(name, default_schema))
            except ValueError as e:
                self.logger.warning(f"Ignoring invalid excluded table {name!r}: {e}")
        return exclusions

    def _filter(
        self,
        catalog: Dict[TableIdentifier, CatalogTable],
        exclusions: List[TableIdentifier]
    ) -> Dict[TableIdentifier, CatalogTable]:
        filtered = {}
        for identifier, table in catalog.items():
            if identifier.table.lower() in IGNORED_TABLES:
                continue
            if any(excluded == identifier for excluded in exclusions):
                self.logger.debug(f"Excluding table {identifier} from comparison")
                continue
            filtered[identifier] = table
        return filtered

    def _diff(
        self,
        source: Dict[TableIdentifier, CatalogTable],
        target: Dict[TableIdentifier, CatalogTable],
        target_store: BaseDatastore
    ) -> Tuple[List[SchemaDifference], List[str]]:
        differences: List[SchemaDifference] = []
        statements: List[str] = []

        for identifier in sorted(source, key=str):
            source_table = source[identifier]
            target_table = target.get(identifier)

            if target_table is None:
                differences.append(SchemaDifference(
                    name=identifier.qualified_name,
                    update_action=UpdateAction.ADD,
                    difference_type=DifferenceType.TABLE
                ))
                statements.append(target_store.generate_create_table_ddl(source_table))
                continue

            changes = self._diff_columns(source_table, target_table)
            for change in changes:
                action = {
                    'add_column': UpdateAction.ADD,
                    'modify_column': UpdateAction.CHANGE,
                    'drop_column': UpdateAction.DELETE,
                }[change['type']]
                differences.append(SchemaDifference(
                    name=f"{identifier.qualified_name}.{change['column'].name}",
                    update_action=action,
                    difference_type=DifferenceType.COLUMN
                ))
            if changes:
                statements.extend(target_store.generate_alter_table_ddl(identifier, changes))

        for identifier in sorted(target, key=str):
            if identifier not in source:
                differences.append(SchemaDifference(
                    name=identifier.qualified_name,
                    update_action=UpdateAction.DELETE,
                    difference_type=DifferenceType.TABLE
                ))
                statements.append(target_store.generate_drop_table_ddl(identifier))

        return differences, statements

    @staticmethod
    def _diff_columns(source_table: CatalogTable, target_table: CatalogTable) -> List[Dict]:
        changes = []
        target_cols = target_table.column_map()
        source_cols = source_table.column_map()

        for col in source_table.columns:
            existing = target_cols.get(col.name.lower())
            if existing is None:
                changes.append({'type': 'add_column', 'column': col})
            elif (existing.data_type.lower() != col.data_type.lower()
                  or existing.nullable != col.nullable):
                changes.append({'type': 'modify_column', 'column': col})

        for col in target_table.columns:
            if col.name.lower() not in source_cols:
                changes.append({'type': 'drop_column', 'column': col})

        return changes


def _rebase(
    catalog: Dict[TableIdentifier, CatalogTable],
    from_schema: str,
    to_schema: str
) -> Dict[TableIdentifier, CatalogTable]:
    """Move tables of the source default schema onto the target default schema"""
    if from_schema.lower() == to_schema.lower():
        return catalog

    rebased = {}
    for identifier, table in catalog.items():
        if identifier.schema.lower() == from_schema.lower():
            identifier = TableIdentifier(to_schema, identifier.table)
            table = CatalogTable(identifier=identifier, columns=list(table.columns))
        rebased[identifier] = table
    return rebased
