from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

"""Config dataclasses for the building registry import tool.

Two kinds of configuration exist:

- ImportConfig: static settings loaded from config/import.yml (database
  fallback, chunk/page sizes, defaults). See building_import.config.loader.
- ImportSettings: the operator-editable settings record persisted in the
  store (ignore patterns, default workflow mode). Loaded once per session and
  passed explicitly to the parser and the conflict workflow.
"""

__all__ = [
    "DatabaseConfig",
    "ImportConfig",
    "ImportSettings",
    "WorkflowMode",
]


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for an import session."""
    database: DatabaseConfig
    chunk_size: int = 500  # 1チャンクあたりのコミット行数
    page_size: int = 1000  # レジストリ読込のページサイズ
    unmatched_limit: int = 5000  # 未一致住所の保持上限
    default_city: str | None = None  # 空の場合に補完する市区名
    error_preview: int = 10  # サマリに表示するエラー件数
    logs_directory: str = "./logs"


class WorkflowMode(Enum):
    """How blocked rows are handled before committing.

    - MANUAL_REVIEW: operator is asked about every blocked row
    - AUTOMATIC: no review; blocked rows stay blocked and are skipped
    """
    MANUAL_REVIEW = "manual_review"
    AUTOMATIC = "automatic"


@dataclass(frozen=True)
class ImportSettings:
    """Operator-editable settings record (one per installation)."""
    ignore_patterns: tuple[str, ...] = field(default_factory=tuple)
    default_mode: WorkflowMode = WorkflowMode.MANUAL_REVIEW

    @property
    def normalized_patterns(self) -> tuple[str, ...]:
        """Lower-cased, non-empty ignore patterns. Empty tuple = nothing ignored."""
        return tuple(p.strip().lower() for p in self.ignore_patterns if p and p.strip())

    def with_pattern_added(self, pattern: str) -> ImportSettings:
        if pattern in self.ignore_patterns:
            return self
        return ImportSettings(self.ignore_patterns + (pattern,), self.default_mode)

    def with_pattern_removed(self, pattern: str) -> ImportSettings:
        remaining = tuple(p for p in self.ignore_patterns if p != pattern)
        return ImportSettings(remaining, self.default_mode)

    def with_mode(self, mode: WorkflowMode) -> ImportSettings:
        return ImportSettings(self.ignore_patterns, mode)
