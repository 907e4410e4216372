"""Domain models for the building registry import tool.

This package contains all domain model classes used throughout the application:
configuration, parsed rows and canonical records, diff/classification results,
and the import ledger.
"""

from .classification import ClassifiedRow, FieldChange, ImportPlan, RowKind
from .config_models import DatabaseConfig, ImportConfig, ImportSettings, WorkflowMode
from .import_batch import ImportBatch, ImportKind, UndoRecord, UndoType
from .records import BuildingRecord, ExistingBuilding, K7ServiceRecord, SourceRow

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ImportConfig",
    "ImportSettings",
    "WorkflowMode",
    # Row / record models
    "SourceRow",
    "BuildingRecord",
    "K7ServiceRecord",
    "ExistingBuilding",
    # Classification
    "RowKind",
    "FieldChange",
    "ClassifiedRow",
    "ImportPlan",
    # Ledger
    "ImportKind",
    "UndoType",
    "UndoRecord",
    "ImportBatch",
]
