"""Client import pipeline."""

from __future__ import annotations

from .config import ConfigError, ImportConfig, ImportContext, validate_for_run
from .matching import ExistingClient, MatchResult, find_match
from .normalize import (
    Candidate,
    ImportRow,
    NormalizationWarning,
    RowSourceError,
    normalize_phone,
    normalize_row,
    parse_full_name,
)
from .orchestrator import ImportReport, RowOutcome, RowStage, run_client_import
from .resolution import AddToGroup, MergePlan, MoveToGroup, ResolutionPlan, resolve
from .store import SQLAlchemyClientStore, StoreError
from .validation import ImportAborted, RowError, ValidationError, ValidationResult, validate_candidate

__all__ = [
    "AddToGroup",
    "Candidate",
    "ConfigError",
    "ExistingClient",
    "ImportAborted",
    "ImportConfig",
    "ImportContext",
    "ImportReport",
    "ImportRow",
    "MatchResult",
    "MergePlan",
    "MoveToGroup",
    "NormalizationWarning",
    "ResolutionPlan",
    "RowError",
    "RowOutcome",
    "RowSourceError",
    "RowStage",
    "SQLAlchemyClientStore",
    "StoreError",
    "ValidationError",
    "ValidationResult",
    "find_match",
    "normalize_phone",
    "normalize_row",
    "parse_full_name",
    "resolve",
    "run_client_import",
    "validate_candidate",
    "validate_for_run",
]
