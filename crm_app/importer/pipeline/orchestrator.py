"""
Client import orchestrator.

Drives each row through ``Normalized -> Validated -> Matched -> Resolved ->
Applied`` in file order. A row may end early as ``Skipped`` or ``Errored``.
Per-row results are collected in a list and reduced to an ``ImportReport``
once processing stops, whether the run finished, was aborted (under
``errorHandling=stop`` or because the row source failed) or was cancelled
between rows.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Protocol

from flask import current_app, has_app_context

from crm_app.importer.metrics import record_regions_created, record_row_outcome
from crm_app.utils.names import name_key

from .config import ErrorHandling, ImportConfig, ImportContext, validate_for_run
from .matching import CandidateQuery, ExistingClient, MatchResult, find_match
from .normalize import DEFAULT_COUNTRY_CODE, Candidate, ImportRow, RowSourceError, normalize_row
from .resolution import MergePlan, NewClientPlan, PlanAction, ResolutionPlan, resolve
from .store import RegionRef, SQLAlchemyClientStore, StoreError
from .validation import ImportAborted, RowError, validate_candidate


class RowStage(str, enum.Enum):
    NORMALIZED = "normalized"
    VALIDATED = "validated"
    MATCHED = "matched"
    RESOLVED = "resolved"
    APPLIED = "applied"
    SKIPPED = "skipped"
    ERRORED = "errored"


class RowOutcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERRORED = "errored"


class ClientStore(Protocol):
    def find_candidates(self, query: CandidateQuery) -> Iterable[ExistingClient]:
        ...

    def ensure_region(self, owner_id: int, name: str) -> RegionRef:
        ...

    def create_client(self, owner_id: int, plan: NewClientPlan, *, region_id: int | None = None) -> int:
        ...

    def merge_client(self, client_id: int, plan: MergePlan, *, region_id: int | None = None) -> None:
        ...

    def row_transaction(self):
        ...


@dataclass
class RowResult:
    """Mutable record of one row's trip through the pipeline."""

    row_number: int
    stage: RowStage = RowStage.NORMALIZED
    candidate: Candidate | None = None
    match: MatchResult | None = None
    plan: ResolutionPlan | None = None
    client_id: int | None = None
    error: RowError | None = None
    warnings: list[str] = field(default_factory=list)
    fatal: bool = False

    @property
    def outcome(self) -> RowOutcome | None:
        if self.stage is RowStage.ERRORED:
            return RowOutcome.ERRORED
        if self.stage is RowStage.SKIPPED:
            return RowOutcome.SKIPPED
        if self.stage is RowStage.APPLIED and self.plan is not None:
            return RowOutcome.CREATED if self.plan.action is PlanAction.CREATE else RowOutcome.UPDATED
        return None

    def skip(self, error: RowError | None = None) -> "RowResult":
        self.stage = RowStage.SKIPPED
        self.error = error
        return self

    def fail(self, error: RowError, *, fatal: bool = False) -> "RowResult":
        self.stage = RowStage.ERRORED
        self.error = error
        self.fatal = fatal
        return self


@dataclass(frozen=True)
class ImportReport:
    total: int
    created: int
    updated: int
    skipped: int
    errors: int
    regions_created: int
    row_errors: tuple[RowError, ...] = ()
    warnings: tuple[str, ...] = ()
    aborted: bool = False
    cancelled: bool = False

    @property
    def completed(self) -> bool:
        return not (self.aborted or self.cancelled)

    @classmethod
    def from_results(
        cls,
        results: Iterable[RowResult],
        *,
        regions_created: int,
        aborted: bool = False,
        cancelled: bool = False,
        source_error: RowError | None = None,
    ) -> "ImportReport":
        results = list(results)
        outcomes = [result.outcome for result in results]
        row_errors = [result.error for result in results if result.error is not None]
        if source_error is not None:
            row_errors.append(source_error)
        return cls(
            total=len(results),
            created=outcomes.count(RowOutcome.CREATED),
            updated=outcomes.count(RowOutcome.UPDATED),
            skipped=outcomes.count(RowOutcome.SKIPPED),
            errors=outcomes.count(RowOutcome.ERRORED),
            regions_created=regions_created,
            row_errors=tuple(row_errors),
            warnings=tuple(warning for result in results for warning in result.warnings),
            aborted=aborted,
            cancelled=cancelled,
        )

    def counts(self) -> dict[str, int]:
        return {
            "total": self.total,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "regions_created": self.regions_created,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.counts(),
            "aborted": self.aborted,
            "cancelled": self.cancelled,
            "row_errors": [error.to_dict() for error in self.row_errors],
            "warnings": list(self.warnings),
        }


class _RowProcessor:
    """Runs single rows against one frozen config; owns the per-run region cache."""

    def __init__(self, config: ImportConfig, context: ImportContext, store: ClientStore, *, default_country_code: str):
        self.config = config
        self.context = context
        self.store = store
        self.default_country_code = default_country_code
        self.regions: dict[tuple[int, str], RegionRef] = {}
        self.regions_created = 0

    @property
    def stop_on_error(self) -> bool:
        return self.config.validation.error_handling is ErrorHandling.STOP

    def process(self, row: ImportRow) -> RowResult:
        result = RowResult(row_number=row.row_number)

        candidate = normalize_row(row, default_country_code=self.default_country_code)
        result.candidate = candidate
        result.warnings.extend(f"Row {warning.row_number}: {warning.message}" for warning in candidate.warnings)

        try:
            validation = validate_candidate(candidate, self.config.validation)
        except ImportAborted as exc:
            return result.fail(exc.row_error, fatal=True)
        result.warnings.extend(validation.warnings)
        if not validation.ok:
            return result.skip(validation.error.to_row_error())
        result.stage = RowStage.VALIDATED

        try:
            result.match = find_match(
                candidate,
                self.config.search_scope,
                self.context.owner_id,
                self.context.group_id,
                self.store,
            )
        except StoreError as exc:
            return self._store_failure(result, exc)
        result.stage = RowStage.MATCHED

        result.plan = resolve(candidate, result.match, self.config, self.context)
        result.stage = RowStage.RESOLVED
        if result.plan.action is PlanAction.SKIP:
            return result.skip()

        try:
            result.client_id = self._apply(result.plan, result.match)
        except StoreError as exc:
            return self._store_failure(result, exc)
        result.stage = RowStage.APPLIED
        return result

    def _apply(self, plan: ResolutionPlan, match: MatchResult) -> int:
        region_id = None
        if plan.region_name:
            if plan.action is PlanAction.UPDATE and match.client is not None:
                region_owner = match.client.owner_id
            else:
                region_owner = self.context.owner_id
            region_id = self._region_for(region_owner, plan.region_name).id

        with self.store.row_transaction():
            if plan.action is PlanAction.CREATE:
                return self.store.create_client(self.context.owner_id, plan.create, region_id=region_id)
            self.store.merge_client(plan.merge.client_id, plan.merge, region_id=region_id)
            return plan.merge.client_id

    def _region_for(self, owner_id: int, name: str) -> RegionRef:
        key = (owner_id, name_key(name))
        cached = self.regions.get(key)
        if cached is not None:
            return cached
        ref = self.store.ensure_region(owner_id, name)
        if ref.created:
            self.regions_created += 1
        self.regions[key] = ref
        return ref

    def _store_failure(self, result: RowResult, exc: StoreError) -> RowResult:
        error = RowError.for_candidate(result.candidate, f"Store error: {exc}", kind="store")
        return result.fail(error, fatal=self.stop_on_error)


def run_client_import(
    rows: Iterable[ImportRow],
    config: ImportConfig,
    context: ImportContext,
    *,
    store: ClientStore | None = None,
    should_cancel: Callable[[], bool] | None = None,
    default_country_code: str | None = None,
) -> ImportReport:
    """
    Import ``rows`` under ``config`` and return the aggregate report.

    ``ConfigError`` is raised before the first row when the policy cannot
    run for ``context``. Rows already committed stay committed when the run
    is aborted or cancelled. A ``RowSourceError`` from ``rows`` aborts the run
    with a ``source`` row error instead of propagating.
    """

    validate_for_run(config, context)
    if default_country_code is None:
        default_country_code = DEFAULT_COUNTRY_CODE
        if has_app_context():
            default_country_code = str(current_app.config.get("IMPORTER_DEFAULT_COUNTRY_CODE", DEFAULT_COUNTRY_CODE))

    processor = _RowProcessor(
        config,
        context,
        store or SQLAlchemyClientStore(),
        default_country_code=default_country_code,
    )
    results: list[RowResult] = []
    aborted = cancelled = False
    source_error: RowError | None = None

    iterator = iter(rows)
    while True:
        try:
            row = next(iterator)
        except StopIteration:
            break
        except RowSourceError as exc:
            aborted = True
            source_error = RowError(row_number=exc.row_number, message=str(exc), kind="source")
            if has_app_context():
                current_app.logger.warning(
                    "Client import source failed at row %s: %s",
                    exc.row_number,
                    exc,
                    extra={"importer_run_id": context.run_id, "importer_row": exc.row_number},
                )
            break

        if should_cancel is not None and should_cancel():
            cancelled = True
            break
        result = processor.process(row)
        results.append(result)
        if result.fatal:
            aborted = True
            if has_app_context():
                current_app.logger.warning(
                    "Client import aborted at row %s: %s",
                    result.row_number,
                    result.error.message,
                    extra={"importer_run_id": context.run_id, "importer_row": result.row_number},
                )
            break

    report = ImportReport.from_results(
        results,
        regions_created=processor.regions_created,
        aborted=aborted,
        cancelled=cancelled,
        source_error=source_error,
    )
    for outcome in RowOutcome:
        record_row_outcome(outcome.value, sum(1 for result in results if result.outcome is outcome))
    record_regions_created(report.regions_created)

    if has_app_context():
        current_app.logger.info(
            "Client import processed %s rows (created=%s, updated=%s, skipped=%s, errors=%s, regions_created=%s)",
            report.total,
            report.created,
            report.updated,
            report.skipped,
            report.errors,
            report.regions_created,
            extra={
                "importer_run_id": context.run_id,
                "importer_aborted": report.aborted,
                "importer_cancelled": report.cancelled,
            },
        )
    return report
