"""
Required-field validation for normalized candidates.

Checks always run in the order name, phone, region so error messages are
stable. What happens on a violation is decided by ``errorHandling``:

- ``stop``: ``ImportAborted`` is raised and the orchestrator ends the run
- ``skip``: the result carries a ``ValidationError`` and the row is skipped
- ``warn``: the result is ok and the violations become report warnings
"""

from __future__ import annotations

from dataclasses import dataclass

from .config import ErrorHandling, ValidationRules
from .normalize import Candidate


@dataclass(frozen=True)
class RowError:
    """Structured per-row error kept in the import report."""

    row_number: int
    message: str
    kind: str
    name: str | None = None
    phone: str | None = None
    region: str | None = None

    @classmethod
    def for_candidate(cls, candidate: Candidate, message: str, *, kind: str) -> "RowError":
        return cls(
            row_number=candidate.row_number,
            message=message,
            kind=kind,
            name=candidate.full_name,
            phone=candidate.visible_phone(),
            region=candidate.region,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "row": self.row_number,
            "message": self.message,
            "kind": self.kind,
            "data": {"name": self.name, "phone": self.phone, "region": self.region},
        }


@dataclass(frozen=True)
class Violation:
    field: str
    message: str


class ValidationError(Exception):
    """A candidate failed one or more required-field rules."""

    def __init__(self, candidate: Candidate, violations: tuple[Violation, ...]):
        self.candidate = candidate
        self.violations = violations
        super().__init__(self.message)

    @property
    def message(self) -> str:
        return "; ".join(violation.message for violation in self.violations)

    def to_row_error(self) -> RowError:
        return RowError.for_candidate(self.candidate, self.message, kind="validation")


class ImportAborted(Exception):
    """Fatal row error under ``errorHandling=stop``; the run ends after this row."""

    def __init__(self, row_error: RowError):
        self.row_error = row_error
        super().__init__(f"Import aborted at row {row_error.row_number}: {row_error.message}")


@dataclass(frozen=True)
class ValidationResult:
    candidate: Candidate
    error: ValidationError | None = None
    warnings: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None


def find_violations(candidate: Candidate, rules: ValidationRules) -> tuple[Violation, ...]:
    violations: list[Violation] = []
    if rules.require_name and not candidate.full_name:
        violations.append(Violation("name", "Name is required."))
    # Cells whose every token was dropped count as missing.
    if rules.require_phone and not candidate.phones:
        violations.append(Violation("phone", "At least one valid phone number is required."))
    if rules.require_region and not candidate.region:
        violations.append(Violation("region", "Region is required."))
    return tuple(violations)


def validate_candidate(candidate: Candidate, rules: ValidationRules) -> ValidationResult:
    violations = find_violations(candidate, rules)
    if not violations:
        return ValidationResult(candidate=candidate)

    error = ValidationError(candidate, violations)
    if rules.error_handling is ErrorHandling.STOP:
        raise ImportAborted(error.to_row_error())
    if rules.error_handling is ErrorHandling.WARN:
        warnings = tuple(f"Row {candidate.row_number}: {violation.message}" for violation in violations)
        return ValidationResult(candidate=candidate, warnings=warnings)
    return ValidationResult(candidate=candidate, error=error)
