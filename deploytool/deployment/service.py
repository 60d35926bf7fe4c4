"""
Deployment service for rolling schema and config data out to target databases.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Iterable, List, Optional

from ..core.enums import FailureKind, RunState, enum_value
from ..core.errors import CollaboratorError, DeploymentError, PolicyBlockError
from ..core.models import (
    DatabaseEndpoint, DeploymentResult, DeploymentSettings, DeploymentSummary
)
from ..datastore.connection_validator import ConnectionValidator
from ..schema.comparer import SchemaComparer
from ..sync.data_sync_service import DataSyncService


SOURCE_VALIDATION = "Source Validation"


class DeploymentService:
    """
    Orchestrates a deployment run across all target databases.

    A run validates the source, resolves and validates targets, then deploys to
    each valid target under a concurrency cap. Each target runs the schema step
    followed by the data step and produces exactly one DeploymentResult; no
    failure of one target reaches another.
    """

    def __init__(
        self,
        connection_validator: ConnectionValidator,
        schema_comparer: SchemaComparer,
        data_sync_service: DataSyncService
    ):
        """
        Initialize deployment service.

        Args:
            connection_validator: Validates source and target connections
            schema_comparer: Computes, publishes and scripts schema differences
            data_sync_service: Copies config tables from source to target
        """
        self.connection_validator = connection_validator
        self.schema_comparer = schema_comparer
        self.data_sync_service = data_sync_service
        self.logger = logging.getLogger(__name__)

    async def deploy_to_targets(
        self,
        settings: DeploymentSettings,
        schema_only: bool = False,
        data_only: bool = False,
        target_filter: Optional[Iterable[str]] = None
    ) -> DeploymentSummary:
        """
        Deploy schema and config data to the configured targets.

        Args:
            settings: Source, targets, tables and policy options
            schema_only: Skip the data step
            data_only: Skip the schema step
            target_filter: Names of targets to deploy to; all targets when empty

        Returns:
            DeploymentSummary with one result per attempted target
        """
        if schema_only and data_only:
            raise ValueError("schema_only and data_only are mutually exclusive")

        started = datetime.now(timezone.utc)
        options = settings.options

        self.logger.info(f"Starting deployment to {len(settings.targets)} target(s)...")

        # Validate source connection
        self.logger.info("Validating source database connection...")
        if not await self.connection_validator.validate_connection(settings.source):
            self.logger.error("Source database connection validation failed. Aborting deployment.")
            result = DeploymentResult.failed(
                SOURCE_VALIDATION, "Failed to connect to source database", FailureKind.CONNECTIVITY
            )
            return self._summarize([result], started, RunState.ABORTED_AT_SOURCE_VALIDATION)

        targets = self._resolve_targets(settings.targets, target_filter)
        if not targets:
            self.logger.warning("No target databases found matching filter")
            return self._summarize([], started, RunState.COMPLETED)

        # Validate target connections
        self.logger.info("Validating target database connections...")
        validations = await self.connection_validator.validate_connections(targets)

        invalid_targets = [t for t in targets if not validations.get(t.name, False)]
        valid_targets = [t for t in targets if validations.get(t.name, False)]
        placeholders = [
            DeploymentResult.failed(t.name, "Connection validation failed", FailureKind.CONNECTIVITY)
            for t in invalid_targets
        ]

        if invalid_targets:
            self.logger.warning(
                f"The following targets failed connection validation: "
                f"{', '.join(t.name for t in invalid_targets)}"
            )
            if not options.continue_on_error:
                self.logger.error("Aborting deployment due to target connection validation failures")
                return self._summarize(placeholders, started, RunState.ABORTED_AT_TARGET_VALIDATION)

        # Deploy to each target in parallel, at most max_parallel_deployments at a time
        semaphore = asyncio.Semaphore(options.max_parallel_deployments)

        async def deploy_with_permit(target: DatabaseEndpoint) -> DeploymentResult:
            async with semaphore:
                return await self._deploy_to_single_target(settings, target, schema_only, data_only)

        results = await asyncio.gather(*(deploy_with_permit(t) for t in valid_targets))

        return self._summarize(placeholders + list(results), started, RunState.COMPLETED)

    def _resolve_targets(
        self,
        targets: List[DatabaseEndpoint],
        target_filter: Optional[Iterable[str]]
    ) -> List[DatabaseEndpoint]:
        """Configured targets, narrowed to the filter names when one is given"""
        names = [name for name in (target_filter or []) if name]
        if not names:
            return list(targets)

        wanted = set(names)
        configured = {t.name for t in targets}
        unknown = [name for name in names if name not in configured]
        if unknown:
            self.logger.warning(f"Unknown target(s) in filter ignored: {', '.join(unknown)}")

        return [t for t in targets if t.name in wanted]

    def _summarize(
        self,
        results: List[DeploymentResult],
        started: datetime,
        state: RunState
    ) -> DeploymentSummary:
        summary = DeploymentSummary(
            results=results,
            total_duration=datetime.now(timezone.utc) - started,
            state=state
        )
        self.logger.info(
            f"Deployment complete: {summary.success_count}/{len(summary.results)} targets succeeded "
            f"in {summary.total_duration}"
        )
        return summary

    async def _deploy_to_single_target(
        self,
        settings: DeploymentSettings,
        target: DatabaseEndpoint,
        schema_only: bool,
        data_only: bool
    ) -> DeploymentResult:
        """Run the schema step and then the data step for one target"""
        result = DeploymentResult(target_name=target.name)

        try:
            self.logger.info(f"Starting deployment to {target.name}...")

            if not data_only:
                await self._deploy_schema(settings, target, result)

            if not schema_only and settings.config_tables:
                if settings.options.preview_mode:
                    self._log(result, f"Preview mode: Skipping data sync for "
                                      f"{len(settings.config_tables)} config table(s)")
                else:
                    await self._sync_config_tables(settings, target, result)

            result.success = True
            self._log(result, f"Deployment to {target.name} completed successfully")

        except PolicyBlockError as e:
            result.fail(e.message, e.kind)
            self._log(result, f"BLOCKED: {e.message}", logging.WARNING)
        except DeploymentError as e:
            result.fail(e.message, e.kind)
            self._log(result, f"ERROR: {e.message}", logging.ERROR)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            result.fail(message, FailureKind.UNEXPECTED)
            result.log(f"ERROR: {message}")
            self.logger.error(f"Error deploying to {target.name}: {message}", exc_info=True)
        finally:
            result.finalize()
            self.logger.info(
                f"Deployment to {target.name} {'succeeded' if result.success else 'failed'} "
                f"in {result.duration}"
            )

        return result

    async def _deploy_schema(
        self,
        settings: DeploymentSettings,
        target: DatabaseEndpoint,
        result: DeploymentResult
    ) -> None:
        options = settings.options
        self._log(result, "Starting schema comparison...")

        comparison = await self._call_comparer(
            self.schema_comparer.compare(settings.source, target, list(settings.excluded_tables)),
            "Schema comparison",
            options.deployment_timeout
        )
        if comparison is None:
            raise CollaboratorError("Schema comparison failed")

        if comparison.is_equal or comparison.difference_count == 0:
            self._log(result, "No schema changes needed")
            return

        self._log(result, f"Found {comparison.difference_count} schema difference(s)")

        if options.block_destructive_changes:
            destructive = comparison.destructive_differences()
            if destructive:
                for difference in destructive:
                    self._log(result, f"BLOCKED: {difference.name}: {enum_value(difference.update_action)}",
                              logging.WARNING)
                raise PolicyBlockError(
                    f"Blocking deployment to {target.name} due to {len(destructive)} destructive change(s)"
                )

        if options.preview_mode:
            self._log(result, "Preview mode: Generating deployment script...")
            script = await self._call_comparer(
                self.schema_comparer.generate_script(comparison, target.name),
                "Script generation",
                options.deployment_timeout
            )
            if script is None:
                raise CollaboratorError("Failed to generate deployment script")

            result.deployment_script = script
            self._log(result, f"Generated script ({len(script)} characters)")
            self._log(result, "Preview mode: Skipping actual deployment")
            return

        self._log(result, "Deploying schema changes...")
        deployed = await self._call_comparer(
            self.schema_comparer.publish(comparison),
            "Schema deployment",
            options.deployment_timeout
        )
        if not deployed:
            raise CollaboratorError("Schema deployment failed")

        result.schema_changes_applied = comparison.difference_count
        self._log(result, f"Successfully applied {result.schema_changes_applied} schema change(s)")

    async def _sync_config_tables(
        self,
        settings: DeploymentSettings,
        target: DatabaseEndpoint,
        result: DeploymentResult
    ) -> None:
        options = settings.options
        tables = settings.config_tables
        failed_tables = []
        first_failure = None

        self._log(result, f"Starting data sync for {len(tables)} config table(s)...")

        for table_name in tables:
            self._log(result, f"Syncing table: {table_name}")

            outcome = await self.data_sync_service.sync_table(
                settings.source, target, table_name, options.use_transaction
            )
            result.sync_outcomes.append(outcome)

            if outcome.success:
                result.config_tables_synced += 1
                self._log(result, f"  {table_name}: Synced {outcome.rows_synced} row(s)")
                continue

            failed_tables.append(table_name)
            first_failure = first_failure or outcome
            self._log(result, f"ERROR: Failed to sync {table_name}", logging.ERROR)

            if not options.continue_on_error:
                raise DeploymentError(
                    f"Data sync failed for table {table_name}: {outcome.error_message}",
                    outcome.failure_kind
                )

        self._log(result, f"Data sync complete: {result.config_tables_synced}/{len(tables)} table(s) synced")

        if first_failure is not None:
            raise DeploymentError(
                f"Data sync failed for table(s) {', '.join(failed_tables)}: {first_failure.error_message}",
                first_failure.failure_kind
            )

    async def _call_comparer(self, call: Awaitable[Any], operation: str, timeout: Optional[float]) -> Any:
        """Await a comparer call, bounded by the deployment timeout"""
        try:
            if timeout:
                return await asyncio.wait_for(call, timeout=timeout)
            return await call
        except asyncio.TimeoutError as e:
            raise CollaboratorError(f"{operation} timed out after {timeout}s") from e
        except DeploymentError:
            raise
        except Exception as e:
            raise CollaboratorError(f"{operation} failed: {e}") from e

    def _log(self, result: DeploymentResult, message: str, level: int = logging.INFO) -> None:
        result.log(message)
        self.logger.log(level, f"[{result.target_name}] {message}")
