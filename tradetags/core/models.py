"""
Domain models for tag indexing, analytics and record migration.

These models represent trade records as supplied by the journal store and the
values computed from them (index entries, performance snapshots, suggestions,
migration results) independent of any storage format.
"""
from dataclasses import dataclass, field, asdict
import datetime as dt
from datetime import date, datetime
from typing import List, Optional, Dict, Any, Tuple
from enum import Enum


class TradeStatus(str, Enum):
    """Trade lifecycle status."""
    OPEN = "open"
    CLOSED = "closed"


class FilterMode(str, Enum):
    """How include tags combine when filtering records."""
    AND = "AND"
    OR = "OR"


class MigrationState(str, Enum):
    """Pipeline states for a single migration invocation."""
    IDLE = "idle"
    ANALYZING = "analyzing"
    BACKING_UP = "backing_up"
    BATCH_PROCESSING = "batch_processing"
    VALIDATING = "validating"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


# Fields of a trade record with a dedicated attribute; everything else lands in `extra`
RECORD_FIELDS = ("id", "date", "tags", "pnl", "status", "instrument", "strategy", "side")


def parse_date(value: Any) -> Optional[date]:
    """Parse a calendar date from a date, datetime or ISO string. Returns None if malformed."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def parse_pnl(value: Any) -> Optional[float]:
    """Parse a signed monetary amount. Returns None for missing or non-numeric values."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def parse_status(value: Any) -> TradeStatus:
    """Parse a trade status; anything other than 'closed' is treated as open."""
    if isinstance(value, TradeStatus):
        return value
    if isinstance(value, str) and value.strip().lower() == TradeStatus.CLOSED.value:
        return TradeStatus.CLOSED
    return TradeStatus.OPEN


@dataclass
class TradeRecord:
    """
    A trade journal record as consumed by this package.

    `tags` keeps the raw stored value: normally a list of label strings but
    possibly a legacy comma-separated string, None, or something unparseable.
    """
    id: str = ""
    date: Optional[dt.date] = None
    tags: Any = None
    pnl: Optional[float] = None
    status: TradeStatus = TradeStatus.OPEN
    instrument: Optional[str] = None
    strategy: Optional[str] = None
    side: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_closed(self) -> bool:
        return self.status == TradeStatus.CLOSED

    def get(self, name: str, default: Any = None) -> Any:
        """Look up a field by name, falling back to `extra`."""
        if name in RECORD_FIELDS:
            value = getattr(self, name)
            return default if value is None else value
        return self.extra.get(name, default)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeRecord":
        """Create a record from a stored dictionary, tolerating malformed fields."""
        record_id = data.get("id")
        return cls(
            id="" if record_id is None else str(record_id),
            date=parse_date(data.get("date")),
            tags=data.get("tags"),
            pnl=parse_pnl(data.get("pnl")),
            status=parse_status(data.get("status")),
            instrument=data.get("instrument"),
            strategy=data.get("strategy"),
            side=data.get("side"),
            extra={k: v for k, v in data.items() if k not in RECORD_FIELDS},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage and backups."""
        data = {
            "id": self.id,
            "date": self.date.isoformat() if self.date else None,
            "tags": list(self.tags) if isinstance(self.tags, (list, tuple)) else self.tags,
            "pnl": self.pnl,
            "status": self.status.value,
            "instrument": self.instrument,
            "strategy": self.strategy,
            "side": self.side,
        }
        data.update(self.extra)
        return data


@dataclass
class ValidationIssue:
    """A single validation error or warning."""
    code: str
    message: str
    severity: str = "error"  # "error" or "warning"


@dataclass
class ValidationResult:
    """Outcome of validating one tag or a tag collection."""
    is_valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def codes(self) -> List[str]:
        return [issue.code for issue in self.errors]


@dataclass(frozen=True)
class TagPerformance:
    """Performance snapshot over the closed records carrying a tag."""
    tag: str
    total_trades: int = 0
    win_rate: float = 0.0
    average_pnl: float = 0.0
    total_pnl: float = 0.0
    profit_factor: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DetailedTagPerformance:
    """Extended performance metrics for a single tag."""
    tag: str
    total_trades: int = 0
    win_rate: float = 0.0
    average_pnl: float = 0.0
    total_pnl: float = 0.0
    profit_factor: float = 0.0
    best_trade: float = 0.0
    worst_trade: float = 0.0
    win_streak: int = 0
    loss_streak: int = 0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    recovery_factor: float = 0.0
    consistency: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TagIndexEntry:
    """Aggregate metadata for one normalized tag. Owned by TagIndex."""
    tag: str
    count: int
    record_ids: frozenset
    last_used: Optional[date]
    performance: TagPerformance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag,
            "count": self.count,
            "record_ids": sorted(self.record_ids),
            "last_used": self.last_used.isoformat() if self.last_used else None,
            "performance": self.performance.to_dict(),
        }


@dataclass
class TagFilter:
    """Boolean tag filter applied to a record collection."""
    include_tags: List[str] = field(default_factory=list)
    exclude_tags: List[str] = field(default_factory=list)
    mode: FilterMode = FilterMode.AND
    search_query: Optional[str] = None
    query: Optional[str] = None  # boolean expression, see tradetags.core.tag_query


@dataclass(frozen=True)
class TagCorrelation:
    """Co-occurrence correlation between two tags."""
    tag1: str
    tag2: str
    correlation: float
    co_occurrences: int


@dataclass
class TagAnalytics:
    """Summary analytics over every tag in a record collection."""
    total_tags: int = 0
    average_tags_per_trade: float = 0.0
    most_used_tags: List[TagIndexEntry] = field(default_factory=list)
    least_used_tags: List[TagIndexEntry] = field(default_factory=list)
    recent_tags: List[TagIndexEntry] = field(default_factory=list)
    tag_performance: List[TagPerformance] = field(default_factory=list)
    top_performing_tags: List[TagPerformance] = field(default_factory=list)
    worst_performing_tags: List[TagPerformance] = field(default_factory=list)
    tag_correlations: List[TagCorrelation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "total_tags": self.total_tags,
            "average_tags_per_trade": self.average_tags_per_trade,
            "most_used_tags": [e.to_dict() for e in self.most_used_tags],
            "least_used_tags": [e.to_dict() for e in self.least_used_tags],
            "recent_tags": [e.to_dict() for e in self.recent_tags],
            "tag_performance": [p.to_dict() for p in self.tag_performance],
            "top_performing_tags": [p.to_dict() for p in self.top_performing_tags],
            "worst_performing_tags": [p.to_dict() for p in self.worst_performing_tags],
            "tag_correlations": [asdict(c) for c in self.tag_correlations],
        }


@dataclass(frozen=True)
class TagSuggestion:
    """A ranked tag suggestion."""
    tag: str
    score: float
    reason: str
    frequency: int = 0
    last_used: Optional[date] = None
    context: Optional[str] = None


# =============================================================================
# Migration Models
# =============================================================================

@dataclass
class MigrationConfig:
    """Options recognized by the migration pipeline."""
    batch_size: int = 100
    backup_before_migration: bool = True
    validate_after_migration: bool = True
    skip_validation_errors: bool = False
    batch_delay: float = 0.1  # seconds between batches
    dry_run: bool = False

    _ALIASES = {
        "batchSize": "batch_size",
        "backupBeforeMigration": "backup_before_migration",
        "validateAfterMigration": "validate_after_migration",
        "skipValidationErrors": "skip_validation_errors",
        "batchDelay": "batch_delay",
        "dryRun": "dry_run",
    }

    def __post_init__(self):
        if not isinstance(self.batch_size, int) or self.batch_size <= 0:
            raise ValueError(f"batch_size must be a positive integer, got {self.batch_size!r}")
        if self.batch_delay < 0:
            raise ValueError("batch_delay cannot be negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create config from a dictionary with snake_case or camelCase keys."""
        kwargs = {}
        for key, value in data.items():
            name = cls._ALIASES.get(key, key)
            if name not in cls.__dataclass_fields__:
                raise ValueError(f"Unknown migration option: {key}")
            kwargs[name] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class FieldChange:
    """A single field transformation applied (or proposed) for a record."""
    record_id: str
    field: str
    old_value: Any
    new_value: Any


@dataclass(frozen=True)
class MigrationError:
    """A per-record failure collected during a run."""
    record_id: str
    message: str
    severity: str = "error"  # "error", "warning" or "fatal"


@dataclass(frozen=True)
class RollbackSnapshot:
    """Pre-migration copy of every input record."""
    owner_id: str
    migration: str
    created_at: str
    records: Tuple[Dict[str, Any], ...] = ()
    version: str = "1.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "migration": self.migration,
            "created_at": self.created_at,
            "total_records": len(self.records),
            "records": [dict(r) for r in self.records],
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RollbackSnapshot":
        records = data.get("records")
        if not isinstance(records, list):
            raise ValueError("Invalid backup data format: 'records' must be a list")
        return cls(
            owner_id=str(data.get("owner_id", "")),
            migration=str(data.get("migration", "")),
            created_at=str(data.get("created_at", "")),
            records=tuple(dict(r) for r in records),
            version=str(data.get("version", "1.0")),
        )


@dataclass(frozen=True)
class MigrationResult:
    """Immutable outcome of one pipeline invocation (run or rollback)."""
    migration: str
    state: MigrationState
    total_records: int = 0
    migrated_count: int = 0
    failed_count: int = 0
    converted_count: int = 0
    errors: Tuple[MigrationError, ...] = ()
    warnings: Tuple[str, ...] = ()
    change_log: Tuple[FieldChange, ...] = ()
    rollback_snapshot: Optional[RollbackSnapshot] = None
    dry_run: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def completed(self) -> bool:
        """True when every record was attempted (no cancellation or abort)."""
        return self.state in (MigrationState.COMPLETED, MigrationState.COMPLETED_WITH_ERRORS)

    @property
    def success(self) -> bool:
        return self.state == MigrationState.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "migration": self.migration,
            "state": self.state.value,
            "completed": self.completed,
            "total_records": self.total_records,
            "migrated_count": self.migrated_count,
            "failed_count": self.failed_count,
            "converted_count": self.converted_count,
            "errors": [asdict(e) for e in self.errors],
            "warnings": list(self.warnings),
            "change_log": [asdict(c) for c in self.change_log],
            "has_rollback_snapshot": self.rollback_snapshot is not None,
            "dry_run": self.dry_run,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class RecordAnalysis:
    """Per-record outcome of a dry-run analysis."""
    record_id: str
    needs_migration: bool
    changes: List[FieldChange] = field(default_factory=list)
    issues: List[str] = field(default_factory=list)
    migratable: bool = True


@dataclass
class MigrationReport:
    """Read-only analysis of what a migration would change."""
    migration: str
    total_records: int = 0
    records_needing_migration: int = 0
    records_already_migrated: int = 0
    records_with_invalid_tags: int = 0
    unmigratable_records: int = 0
    records: List[RecordAnalysis] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    estimated_seconds: float = 0.0

    def get(self, record_id: str) -> Optional[RecordAnalysis]:
        for analysis in self.records:
            if analysis.record_id == record_id:
                return analysis
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "migration": self.migration,
            "total_records": self.total_records,
            "records_needing_migration": self.records_needing_migration,
            "records_already_migrated": self.records_already_migrated,
            "records_with_invalid_tags": self.records_with_invalid_tags,
            "unmigratable_records": self.unmigratable_records,
            "records": [
                {
                    "record_id": a.record_id,
                    "needs_migration": a.needs_migration,
                    "migratable": a.migratable,
                    "changes": [asdict(c) for c in a.changes],
                    "issues": list(a.issues),
                }
                for a in self.records
            ],
            "recommendations": list(self.recommendations),
            "estimated_seconds": self.estimated_seconds,
        }


# =============================================================================
# Bulk Operation Models
# =============================================================================

class BulkOperationType(str, Enum):
    """Tag operations applied across every record of an owner."""
    DELETE = "delete"
    MERGE = "merge"
    RENAME = "rename"
    REPLACE = "replace"


@dataclass
class BulkTagOperation:
    """
    A bulk tag operation.

    `tags` are the selected tags. DELETE removes them; MERGE removes them and
    appends `target`; RENAME and REPLACE put `target` where they stood.
    """
    kind: BulkOperationType
    tags: List[str] = field(default_factory=list)
    target: Optional[str] = None

    def __post_init__(self):
        self.kind = BulkOperationType(self.kind)
        self.tags = list(self.tags)

    def describe(self) -> str:
        sources = ", ".join(self.tags)
        if self.kind == BulkOperationType.DELETE:
            return f"delete {sources}"
        return f"{self.kind.value} {sources} -> {self.target}"
