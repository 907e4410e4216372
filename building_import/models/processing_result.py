from __future__ import annotations

import statistics
from dataclasses import dataclass
from datetime import datetime

from .import_batch import ImportBatch

"""Processing result models for the building registry import tool.

This module defines the models for aggregating the outcome of one import run
and the chunk timing statistics shown in the SUMMARY line.
"""


@dataclass(frozen=True)
class ChunkStats:
    """Chunk timing statistics of a commit run."""
    total_chunks: int = 0  # 総チャンク数
    avg_chunk_seconds: float = 0.0  # 平均チャンク時間
    p95_chunk_seconds: float = 0.0  # p95 チャンク時間


@dataclass(frozen=True)
class ImportResult:
    """Outcome of one import run (completed, cancelled or partially failed)."""
    batch: ImportBatch
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    encoding: str  # 検出した文字コード (診断用)
    delimiter: str
    chunk_stats: ChunkStats = ChunkStats()
    unmatched_export: str | None = None  # 書き出したファイルパス

    @property
    def exit_partial(self) -> bool:
        return self.batch.cancelled or bool(self.batch.errors)


class BatchStatsAccumulator:
    """Helper class to accumulate chunk timing statistics.

    Collects individual chunk timing data and calculates summary statistics.
    """

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        """Add a chunk timing measurement."""
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> ChunkStats:
        """Calculate chunk statistics."""
        if not self.batch_times:
            return ChunkStats()

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        # Calculate p95 (95th percentile)
        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]  # 95th percentile (19th out of 20 quantiles, 0-indexed)

        return ChunkStats(total_batches, avg_batch_seconds, p95_batch_seconds)
