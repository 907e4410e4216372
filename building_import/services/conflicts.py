from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from ..models.classification import ClassifiedRow, ImportPlan, RowKind
from ..models.config_models import WorkflowMode

"""Review of rows blocked by a manual override.

Nothing is resolved automatically. A blocked row only becomes an update when
the operator clears the override for its entity; the committed update then
also resets both override flags in the same statement, so the row's undo
record restores them on revert.
"""

__all__ = [
    "ConflictDecider",
    "ConflictReview",
    "review_plan",
]

logger = logging.getLogger(__name__)

# True = 保護解除して更新する, False = ブロックのまま
ConflictDecider = Callable[[ClassifiedRow], bool]


class ConflictReview:
    def __init__(self, blocked_rows: Iterable[ClassifiedRow]) -> None:
        self._rows: dict[str, ClassifiedRow] = {}
        for row in blocked_rows:
            if row.kind is not RowKind.BLOCKED or row.existing is None:
                raise ValueError("ConflictReview only accepts blocked rows")
            if row.existing.id in self._rows:
                raise ValueError(f"duplicate blocked row for entity {row.existing.id}")
            self._rows[row.existing.id] = row
        self._decided: set[str] = set()

    def _row(self, entity_id: str) -> ClassifiedRow:
        try:
            return self._rows[entity_id]
        except KeyError:
            raise KeyError(f"no blocked row for entity {entity_id}") from None

    def clear_override(self, entity_id: str) -> ClassifiedRow:
        row = self._row(entity_id)
        row.kind = RowKind.UPDATE
        row.override_cleared = True
        self._decided.add(entity_id)
        logger.info("override cleared for %s (%d fields)", entity_id, len(row.diff))
        return row

    def keep_blocked(self, entity_id: str) -> ClassifiedRow:
        row = self._row(entity_id)
        row.kind = RowKind.BLOCKED
        row.override_cleared = False
        self._decided.add(entity_id)
        return row

    def resolve_with(self, decider: ConflictDecider) -> None:
        """Ask ``decider`` about every still undecided row."""
        for entity_id in self.pending:
            if decider(self._rows[entity_id]):
                self.clear_override(entity_id)
            else:
                self.keep_blocked(entity_id)

    @property
    def rows(self) -> list[ClassifiedRow]:
        return list(self._rows.values())

    @property
    def pending(self) -> list[str]:
        return [i for i in self._rows if i not in self._decided]

    def accepted_updates(self) -> list[ClassifiedRow]:
        return [r for r in self._rows.values() if r.kind is RowKind.UPDATE]

    def still_blocked(self) -> list[ClassifiedRow]:
        return [r for r in self._rows.values() if r.kind is RowKind.BLOCKED]


def review_plan(
    plan: ImportPlan,
    mode: WorkflowMode,
    decider: ConflictDecider | None = None,
) -> ImportPlan:
    """Apply the workflow mode to the plan's blocked rows.

    AUTOMATIC, or no decider available: every blocked row stays blocked.
    MANUAL_REVIEW with a decider: rows the operator releases move to update.
    """
    if mode is WorkflowMode.AUTOMATIC or decider is None or not plan.blocked:
        return plan
    review = ConflictReview(plan.blocked)
    review.resolve_with(decider)
    return ImportPlan(
        new=plan.new,
        unchanged=plan.unchanged,
        update=plan.update + review.accepted_updates(),
        blocked=review.still_blocked(),
        duplicates=plan.duplicates,
    )
