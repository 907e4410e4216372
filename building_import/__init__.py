"""Bulk import and reconciliation engine for the building registry.

Ingests delimited-text extracts of buildings and per-building K7 service
records, matches them against the existing registry, commits changes in
chunks and keeps an undo ledger per import run.
"""

__version__ = "0.1.0"
