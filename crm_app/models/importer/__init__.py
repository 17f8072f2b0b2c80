"""
Importer-specific models.
"""

from .schema import ImportConfigRecord, ImportRun, ImportRunStatus

__all__ = ["ImportConfigRecord", "ImportRun", "ImportRunStatus"]
