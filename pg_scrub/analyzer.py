from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, List, Optional

from prettytable import PrettyTable, SINGLE_BORDER

from pg_scrub.common.config import AnalyzerConfig, PruningConfig, ScrubConfig
from pg_scrub.common.constants import DEFAULT_TIMESTAMP_COLUMN, LOG_TABLE_PATTERNS
from pg_scrub.common.enums import Confidence
from pg_scrub.common.utils import pretty_size, resolve_cutoff
from pg_scrub.conditions import Compare
from pg_scrub.logger import get_logger
from pg_scrub.schema import Database

logger = get_logger()


@dataclass
class TableSize:
    table: str
    size_bytes: int
    estimated_rows: int = 0

    @property
    def size(self) -> str:
        return pretty_size(self.size_bytes)


@dataclass
class RowCount:
    table: str
    count: int


@dataclass
class PruningCandidate:
    table: str
    size_bytes: int
    row_count: int
    oldest: Any
    newest: Any
    old_record_count: int
    is_log_table: bool
    has_dependencies: bool

    @property
    def size(self) -> str:
        return pretty_size(self.size_bytes)

    @property
    def old_record_ratio(self) -> float:
        if self.row_count <= 0:
            return 0.0
        return self.old_record_count / self.row_count

    @property
    def confidence(self) -> Confidence:
        if self.has_dependencies:
            return Confidence.LOW
        if self.is_log_table and self.old_record_ratio > 0.5:
            return Confidence.HIGH
        if self.is_log_table or self.old_record_ratio > 0.7:
            return Confidence.MEDIUM
        return Confidence.LOW

    @property
    def potential_savings(self) -> int:
        return int(self.size_bytes * self.old_record_ratio)


@dataclass
class PruningAnalysis:
    high: List[PruningCandidate] = field(default_factory=list)
    medium: List[PruningCandidate] = field(default_factory=list)
    low: List[PruningCandidate] = field(default_factory=list)

    @property
    def candidates(self) -> List[PruningCandidate]:
        return self.high + self.medium + self.low

    @property
    def total_savings(self) -> int:
        return sum(candidate.potential_savings for candidate in self.high)

    @property
    def recommended_tables(self) -> List[str]:
        return [candidate.table for candidate in self.high]


class Analyzer:
    """
    Largest tables of the database and row counts of the configured sensitive tables
    """

    def __init__(self, db: Database, config: Optional[ScrubConfig] = None, limit: int = 20):
        self.db = db
        self.config = config or ScrubConfig()
        self.limit = limit

    async def table_sizes(self) -> List[TableSize]:
        return [
            TableSize(row["table"], int(row["total_size"] or 0), int(row["estimated_rows"] or 0))
            for row in await self.db.table_sizes(self.limit)
        ]

    async def row_counts(self) -> List[RowCount]:
        catalog = await self.db.catalog()
        counts = []
        for table in self.config.sensitive_tables:
            if not catalog.has_table(table):
                logger.info(f"Skip row count of {table}: table not found")
                continue
            counts.append(RowCount(table, await self.db.count(table)))
        return counts


class PruningAnalyzer:
    """
    Suggests tables worth pruning: large tables with a timestamp column, ranked by
    how log-like they look, how much of their data is old and whether other tables
    reference them
    """

    def __init__(
        self,
        db: Database,
        config: Optional[AnalyzerConfig] = None,
        column: str = DEFAULT_TIMESTAMP_COLUMN,
        retention_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ):
        self.db = db
        self.config = config or AnalyzerConfig()
        self.column = column
        self.retention_days = retention_days if retention_days is not None else self.config.retention_days
        self.now = now

    @classmethod
    def from_pruning(cls, db: Database, pruning: PruningConfig, now: Optional[datetime] = None) -> "PruningAnalyzer":
        retention_days = None
        if isinstance(pruning.older_than, timedelta):
            retention_days = pruning.older_than.days
        return cls(db, pruning.analyzer, column=pruning.column, retention_days=retention_days, now=now)

    def is_log_table(self, table: str) -> bool:
        name = table.lower()
        return any(pattern in name for pattern in LOG_TABLE_PATTERNS + list(self.config.table_patterns))

    async def _candidate(self, table: str, size_bytes: int, has_dependencies: bool) -> Optional[PruningCandidate]:
        row_count = await self.db.count(table)
        if row_count <= self.config.min_row_count:
            return None

        cutoff = resolve_cutoff(timedelta(days=self.retention_days), now=self.now)
        old_record_count = await self.db.count(table, Compare(self.column, "<", cutoff, cast="timestamptz"))
        oldest, newest = await self.db.column_range(table, self.column)

        return PruningCandidate(
            table=table,
            size_bytes=size_bytes,
            row_count=row_count,
            oldest=oldest,
            newest=newest,
            old_record_count=old_record_count,
            is_log_table=self.is_log_table(table),
            has_dependencies=has_dependencies,
        )

    async def candidates(self) -> List[PruningCandidate]:
        catalog = await self.db.catalog()
        sizes = {row["table"]: int(row["total_size"] or 0) for row in await self.db.table_sizes(None)}

        candidates = []
        for table in catalog.tables():
            if not catalog.has_column(table, self.column):
                continue
            size_bytes = sizes.get(table, 0)
            if size_bytes < self.config.min_table_size:
                continue

            try:
                candidate = await self._candidate(table, size_bytes, bool(catalog.dependents(table)))
            except Exception as exc:
                logger.warning(f"Skipping {table}: {exc}")
                continue

            if candidate is not None:
                candidates.append(candidate)

        return sorted(candidates, key=lambda candidate: -candidate.size_bytes)

    async def analyze(self) -> PruningAnalysis:
        analysis = PruningAnalysis()
        for candidate in await self.candidates():
            if candidate.confidence == Confidence.HIGH:
                analysis.high.append(candidate)
            elif candidate.confidence == Confidence.MEDIUM:
                analysis.medium.append(candidate)
            else:
                analysis.low.append(candidate)
        return analysis


def render_table_sizes(sizes: List[TableSize]) -> str:
    table = PrettyTable(['table', 'size', 'estimated rows'], align='l')
    table.set_style(SINGLE_BORDER)
    for size in sizes:
        table.add_row([size.table, size.size, size.estimated_rows])
    total = pretty_size(sum(size.size_bytes for size in sizes))
    return f"{table.get_string()}\nTotal: {total}"


def render_row_counts(counts: List[RowCount]) -> str:
    table = PrettyTable(['table', 'rows'], align='l')
    table.set_style(SINGLE_BORDER)
    for count in counts:
        table.add_row([count.table, count.count])
    return table.get_string()


def render_pruning_analysis(analysis: PruningAnalysis) -> str:
    table = PrettyTable([
        'table',
        'confidence',
        'size',
        'rows',
        'old rows',
        'old ratio',
        'oldest',
        'log-like',
        'referenced',
    ], align='l')
    table.set_style(SINGLE_BORDER)

    for candidate in analysis.candidates:
        table.add_row([
            candidate.table,
            candidate.confidence.value,
            candidate.size,
            candidate.row_count,
            candidate.old_record_count,
            f"{candidate.old_record_ratio:.0%}",
            candidate.oldest,
            candidate.is_log_table,
            candidate.has_dependencies,
        ])

    lines = [table.get_string()]
    if analysis.high:
        lines.append(f"Recommended: {', '.join(analysis.recommended_tables)}")
        lines.append(f"Potential savings: {pretty_size(analysis.total_savings)}")
    else:
        lines.append("No high confidence pruning candidates")
    return "\n".join(lines)
