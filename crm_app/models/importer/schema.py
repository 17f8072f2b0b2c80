"""
SQLAlchemy models for the client importer.

``ImportConfigRecord`` stores named, owner-scoped import policies as JSON;
the pipeline only ever reads them through
``crm_app.importer.config_service`` which validates and freezes the payload.
``ImportRun`` tracks one end-to-end execution and keeps the full report.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class ImportRunStatus(str, enum.Enum):
    """Lifecycle states for an import run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ImportConfigRecord(BaseModel):
    """Named import policy owned by a user."""

    __tablename__ = "import_configs"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    config_json: Mapped[dict] = mapped_column(db.JSON, nullable=False)

    owner = relationship("User", foreign_keys=[user_id])

    __table_args__ = (Index("idx_import_configs_user_default", "user_id", "is_default"),)

    def __repr__(self):
        return f"<ImportConfigRecord {self.name}>"


class ImportRun(BaseModel):
    """Metadata and final report for a single client import."""

    __tablename__ = "import_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    source: Mapped[str] = mapped_column(db.String(100), nullable=False, index=True)
    adapter: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    status: Mapped[ImportRunStatus] = mapped_column(
        Enum(ImportRunStatus, name="import_run_status_enum"),
        nullable=False,
        default=ImportRunStatus.PENDING,
        index=True,
    )
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    triggered_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    group_id: Mapped[int | None] = mapped_column(ForeignKey("client_groups.id"), nullable=True, index=True)
    config_id: Mapped[int | None] = mapped_column(ForeignKey("import_configs.id", ondelete="SET NULL"), nullable=True)
    config_snapshot_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Frozen import policy the run executed with.",
    )
    counts_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    errors_json: Mapped[list | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Every row error in file order; display truncation happens at read time.",
    )
    warnings_json: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    error_summary: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    ingest_params_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Stored parameters for the worker (file_path, keep_file, group_id, config_id)",
    )

    triggered_by_user = relationship("User", foreign_keys=[triggered_by_user_id])
    group = relationship("ClientGroup", foreign_keys=[group_id])
    config = relationship("ImportConfigRecord", foreign_keys=[config_id])

    __table_args__ = (Index("idx_import_runs_source_status", "source", "status"),)
