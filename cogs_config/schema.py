"""
Engine settings schema.

One frozen dataclass holds every knob the costing engine reads at runtime:
database connection, default costing method, conflict-retry policy, the
period types the summary aggregator maintains, and the log level.  The
loader builds it from YAML and environment overrides; nothing else
constructs it from raw files.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields

from cogs_kernel.domain.costing import DEFAULT_COSTING_METHOD, CostingMethod
from cogs_kernel.domain.records import PeriodType

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings for the COGS engine."""

    database_url: str = "sqlite:///cogs.db"
    echo_sql: bool = False
    default_costing_method: CostingMethod = DEFAULT_COSTING_METHOD
    max_conflict_retries: int = 3
    retry_backoff_seconds: float = 0.05
    retry_backoff_multiplier: float = 2.0
    summary_period_types: tuple[PeriodType, ...] = field(
        default_factory=lambda: (PeriodType.MONTHLY,)
    )
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ValueError("database_url must not be empty")
        if self.max_conflict_retries < 0:
            raise ValueError(
                f"max_conflict_retries must be >= 0, got {self.max_conflict_retries}"
            )
        if self.retry_backoff_seconds < 0:
            raise ValueError(
                f"retry_backoff_seconds must be >= 0, got {self.retry_backoff_seconds}"
            )
        if self.retry_backoff_multiplier < 1:
            raise ValueError(
                f"retry_backoff_multiplier must be >= 1, got {self.retry_backoff_multiplier}"
            )
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log_level {self.log_level!r}")
        if len(set(self.summary_period_types)) != len(self.summary_period_types):
            raise ValueError("summary_period_types contains duplicates")

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls))

    def backoff_for(self, attempt: int) -> float:
        """Sleep before retry number ``attempt`` (0-based)."""
        return self.retry_backoff_seconds * self.retry_backoff_multiplier ** attempt
