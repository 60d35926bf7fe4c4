from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Any, Tuple
from urllib.parse import urlsplit

from .enums import FailureKind, RunState, enum_value


DEFAULT_SCHEMA = "public"

_QUOTE_CHARS = '[]"`'


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _strip_quotes(part: str) -> str:
    return part.strip().strip(_QUOTE_CHARS).strip()


@dataclass(frozen=True)
class DatabaseEndpoint:
    """A named database reachable through a DSN-style connection string"""
    name: str
    connection_string: str = field(repr=False)

    @property
    def scheme(self) -> str:
        """Driver scheme of the connection string (postgresql, mysql, ...)"""
        return urlsplit(self.connection_string).scheme.lower()

    @property
    def safe_connection_string(self) -> str:
        """Connection string with the password masked, suitable for logs"""
        parts = urlsplit(self.connection_string)
        if parts.password is None:
            return self.connection_string
        userinfo, host = parts.netloc.rsplit('@', 1)
        user = userinfo.split(':', 1)[0]
        return parts._replace(netloc=f"{user}:****@{host}").geturl()


@dataclass(frozen=True, eq=False)
class TableIdentifier:
    """
    Qualified table name (schema.table).

    Two identifiers are equal when schema and table match case-insensitively.
    """
    schema: str
    table: str

    @classmethod
    def parse(cls, name: str, default_schema: str = DEFAULT_SCHEMA) -> 'TableIdentifier':
        """
        Parse 'table', 'schema.table' or 'database.schema.table'.

        Bracket, double-quote and backtick quoting is removed from each part.
        """
        if not name or not name.strip():
            raise ValueError("Table name cannot be empty")

        parts = [_strip_quotes(p) for p in name.strip().split('.')]
        if any(not p for p in parts):
            raise ValueError(f"Invalid table name: {name!r}")

        if len(parts) == 1:
            return cls(schema=default_schema, table=parts[0])
        return cls(schema=parts[-2], table=parts[-1])

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table}"

    def _key(self) -> Tuple[str, str]:
        return (self.schema.lower(), self.table.lower())

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, TableIdentifier):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        return self.qualified_name


@dataclass
class DeploymentOptions:
    """Operator policy for a deployment run"""
    preview_mode: bool = False
    max_parallel_deployments: int = 3
    continue_on_error: bool = True
    block_destructive_changes: bool = False
    use_transaction: bool = True
    # Upper bound, in seconds, on a single schema compare/publish/script call
    deployment_timeout: float = 300
    connect_timeout: float = 30


@dataclass
class DeploymentSettings:
    """Everything a deployment run needs, loaded from configuration"""
    source: DatabaseEndpoint
    targets: List[DatabaseEndpoint] = field(default_factory=list)
    config_tables: List[str] = field(default_factory=list)
    excluded_tables: List[str] = field(default_factory=list)
    included_schemas: List[str] = field(default_factory=list)
    options: DeploymentOptions = field(default_factory=DeploymentOptions)

    def get_target(self, name: str) -> Optional[DatabaseEndpoint]:
        for target in self.targets:
            if target.name == name:
                return target
        return None


@dataclass(frozen=True)
class SchemaDifference:
    """A single structural difference reported by a schema comparer"""
    name: str
    update_action: str
    difference_type: str

    @property
    def is_destructive(self) -> bool:
        action = enum_value(self.update_action).lower()
        return 'delete' in action or 'drop' in action


@dataclass(frozen=True)
class ComparisonOutcome:
    """Result of comparing a source schema against one target"""
    is_equal: bool
    difference_count: int
    differences: Tuple[SchemaDifference, ...] = ()
    # Opaque comparer handle used later by publish/generate_script
    payload: Any = field(default=None, compare=False, repr=False)

    @classmethod
    def from_differences(cls, differences: List[SchemaDifference], payload: Any = None) -> 'ComparisonOutcome':
        return cls(
            is_equal=not differences,
            difference_count=len(differences),
            differences=tuple(differences),
            payload=payload
        )

    def destructive_differences(self) -> List[SchemaDifference]:
        return [d for d in self.differences if d.is_destructive]

    def differences_by_type(self) -> Dict[str, int]:
        """Difference counts grouped by type, largest group first"""
        counts: Dict[str, int] = {}
        for difference in self.differences:
            key = enum_value(difference.difference_type)
            counts[key] = counts.get(key, 0) + 1
        return dict(sorted(counts.items(), key=lambda item: item[1], reverse=True))


@dataclass(frozen=True)
class SyncOutcome:
    """Result of copying one config table to one target"""
    table_name: str
    success: bool
    start_time: datetime
    end_time: datetime
    error_message: Optional[str] = None
    rows_read: int = 0
    rows_synced: int = 0
    failure_kind: Optional[FailureKind] = None

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['start_time'] = self.start_time.isoformat()
        result['end_time'] = self.end_time.isoformat()
        result['duration'] = self.duration.total_seconds()
        result['failure_kind'] = self.failure_kind.value if self.failure_kind else None
        return result


@dataclass
class DeploymentResult:
    """Per-target result, created when the target's work starts"""
    target_name: str
    success: bool = False
    error_message: Optional[str] = None
    log_messages: List[str] = field(default_factory=list)
    schema_changes_applied: int = 0
    config_tables_synced: int = 0
    start_time: datetime = field(default_factory=_utcnow)
    end_time: Optional[datetime] = None
    duration: timedelta = field(default_factory=timedelta)
    failure_kind: Optional[FailureKind] = None
    sync_outcomes: List[SyncOutcome] = field(default_factory=list)
    deployment_script: Optional[str] = None

    @classmethod
    def failed(cls, target_name: str, error_message: str,
               kind: Optional[FailureKind] = None) -> 'DeploymentResult':
        """Build an already finalized failed result (used for placeholders)"""
        result = cls(target_name=target_name)
        result.fail(error_message, kind)
        result.finalize()
        return result

    @property
    def is_finalized(self) -> bool:
        return self.end_time is not None

    def log(self, message: str) -> None:
        self.log_messages.append(message)

    def fail(self, error_message: str, kind: Optional[FailureKind] = None) -> None:
        self.success = False
        self.error_message = error_message
        self.failure_kind = kind

    def finalize(self, success: Optional[bool] = None) -> None:
        if self.is_finalized:
            raise RuntimeError(f"Result for {self.target_name} is already finalized")
        if success is not None:
            self.success = success
        self.end_time = _utcnow()
        self.duration = self.end_time - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            'target_name': self.target_name,
            'success': self.success,
            'error_message': self.error_message,
            'failure_kind': self.failure_kind.value if self.failure_kind else None,
            'schema_changes_applied': self.schema_changes_applied,
            'config_tables_synced': self.config_tables_synced,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'duration': self.duration.total_seconds(),
            'log_messages': list(self.log_messages),
            'sync_outcomes': [o.to_dict() for o in self.sync_outcomes],
        }


@dataclass
class DeploymentSummary:
    """Aggregate of all per-target results for one run"""
    results: List[DeploymentResult] = field(default_factory=list)
    total_duration: timedelta = field(default_factory=timedelta)
    state: RunState = RunState.COMPLETED

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def overall_success(self) -> bool:
        return all(r.success for r in self.results)

    def get_result(self, target_name: str) -> Optional[DeploymentResult]:
        for result in self.results:
            if result.target_name == target_name:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'overall_success': self.overall_success,
            'success_count': self.success_count,
            'failure_count': self.failure_count,
            'total_duration': self.total_duration.total_seconds(),
            'results': [r.to_dict() for r in self.results],
        }


@dataclass
class DatabaseMetadata:
    """Server and object-count information for one database"""
    config_name: str
    server_name: str
    database_name: str
    version: str
    table_count: int = 0
    view_count: int = 0
    routine_count: int = 0
