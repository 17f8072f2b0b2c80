"""
Row normalization for the client importer.

Turns one raw ``ImportRow`` into a ``Candidate``: trimmed name split into
parts, the phone cell split into normalized ``+<digits>`` tokens, and the
region/status passed through as trimmed strings. Invalid phone tokens are
dropped and reported as ``NormalizationWarning`` entries; nothing here
raises for bad data and nothing touches the database.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from crm_app.utils.names import collapse_whitespace, name_key

DEFAULT_COUNTRY_CODE = "7"
MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15

# A typed-with-spaces number is flushed once this many digits are buffered.
_NATIONAL_NUMBER_DIGITS = 10

_HARD_SEPARATOR_RE = re.compile(r"[,;/]+")
_EXTENSION_RE = re.compile(r"\s*(?:ext\.?|extension|доб\.?|x|#)\s*\d+.*$", re.IGNORECASE)
_NON_DIGIT_RE = re.compile(r"\D")
_WHITESPACE_RE = re.compile(r"\s")

# Turkic patronymic particles written as a separate fourth word.
PATRONYMIC_PARTICLES = frozenset(
    {"оглы", "оглу", "оглыу", "кызы", "кызыу", "огли", "оглиу", "кызи", "кызиу"}
)


class RowSourceError(Exception):
    """A row source failed before it could produce the row at ``row_number``."""

    def __init__(self, row_number: int, message: str):
        self.row_number = row_number
        super().__init__(message)


@dataclass(frozen=True)
class ImportRow:
    """One raw spreadsheet record tagged with its 1-based source line."""

    row_number: int
    name: str | None = None
    phone: str | None = None
    region: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class NormalizationWarning:
    row_number: int
    value: str
    message: str

    def to_dict(self) -> dict[str, object]:
        return {"row": self.row_number, "value": self.value, "message": self.message}


@dataclass(frozen=True)
class ParsedName:
    last_name: str
    first_name: str | None = None
    middle_name: str | None = None

    def full_name(self) -> str:
        return " ".join(part for part in (self.last_name, self.first_name, self.middle_name) if part)


@dataclass(frozen=True)
class Candidate:
    """Normalized projection of an ``ImportRow``."""

    row_number: int
    full_name: str | None
    name: ParsedName | None
    phones: tuple[str, ...]
    region: str | None
    status: str | None
    raw_phone: str | None = None
    warnings: tuple[NormalizationWarning, ...] = ()

    @property
    def name_key(self) -> str | None:
        """Key of the parsed name, matching the key stored by ``Client.set_name``."""
        if self.name is None:
            return None
        return name_key(self.name.full_name())

    @property
    def has_phone(self) -> bool:
        return bool(self.phones)

    def visible_phone(self) -> str | None:
        """Phone text shown in error reports: normalized tokens, else the raw cell."""
        if self.phones:
            return ", ".join(self.phones)
        return collapse_whitespace(self.raw_phone)


def parse_full_name(value: object | None) -> ParsedName | None:
    """
    Split a full name into last / first / middle parts.

    One word is a last name; two are last and first; three or more are
    last, first and middle. A patronymic particle in fourth position
    (``Алиев Рашид Гусейн оглы``) is dropped; any other extra words are
    kept as part of the middle name.
    """

    collapsed = collapse_whitespace(value)
    if collapsed is None:
        return None
    words = collapsed.split(" ")
    if len(words) == 1:
        return ParsedName(last_name=words[0])
    if len(words) == 2:
        return ParsedName(last_name=words[0], first_name=words[1])
    rest = words[2:]
    if len(rest) == 2 and rest[1].casefold() in PATRONYMIC_PARTICLES:
        rest = rest[:1]
    return ParsedName(last_name=words[0], first_name=words[1], middle_name=" ".join(rest))


def strip_extension(value: str) -> str:
    return _EXTENSION_RE.sub("", value).strip()


def _digit_count(value: str) -> int:
    return len(_NON_DIGIT_RE.sub("", value))


def normalize_phone(value: object | None, *, default_country_code: str = DEFAULT_COUNTRY_CODE) -> str | None:
    """
    Normalize one phone token to ``+<digits>``.

    - Extensions (``ext 12``, ``x12``, ``доб. 12``) are stripped first
    - A leading ``00`` is treated as ``+``
    - National numbers: ``8XXXXXXXXXX`` becomes ``+7XXXXXXXXXX`` when the
      default country is 7, ``7XXXXXXXXXX`` gains a ``+``, and a bare
      10-digit number is prefixed with ``default_country_code``
    - Anything outside 7-15 digits is rejected (``None``)
    """

    if value is None:
        return None
    token = strip_extension(str(value).strip())
    if not token:
        return None

    international = token.startswith("+") or token.startswith("00")
    digits = _NON_DIGIT_RE.sub("", token)
    if token.startswith("00"):
        digits = digits[2:]

    if not international:
        if len(digits) == 11 and digits.startswith("8") and default_country_code == "7":
            digits = f"7{digits[1:]}"
        elif len(digits) == _NATIONAL_NUMBER_DIGITS:
            digits = f"{default_country_code}{digits}"

    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        return None
    return f"+{digits}"


def split_phone_cell(value: object | None) -> list[str]:
    """
    Split a phone cell into raw phone tokens.

    Commas, semicolons and slashes always separate numbers. Whitespace only
    separates numbers when the part is not a single plausible number on its
    own: ``+7 999 123 45 67`` stays one token, ``89991234567 89997654321``
    becomes two.
    """

    if value is None:
        return []
    tokens: list[str] = []
    for part in _HARD_SEPARATOR_RE.split(str(value)):
        part = part.strip()
        if not part:
            continue
        digits = _digit_count(strip_extension(part))
        if MIN_PHONE_DIGITS <= digits <= MAX_PHONE_DIGITS or not _WHITESPACE_RE.search(part):
            tokens.append(part)
            continue
        tokens.extend(_regroup_fragments(part.split()))
    return tokens


def _regroup_fragments(fragments: list[str]) -> list[str]:
    groups: list[str] = []
    buffer: list[str] = []
    buffered_digits = 0
    for fragment in fragments:
        if buffer and (fragment.startswith("+") or buffered_digits >= _NATIONAL_NUMBER_DIGITS):
            groups.append(" ".join(buffer))
            buffer = []
            buffered_digits = 0
        buffer.append(fragment)
        buffered_digits += _digit_count(fragment)
    if buffer:
        groups.append(" ".join(buffer))
    return groups


def normalize_phones(
    value: object | None,
    *,
    row_number: int = 0,
    default_country_code: str = DEFAULT_COUNTRY_CODE,
) -> tuple[tuple[str, ...], tuple[NormalizationWarning, ...]]:
    """Normalize every token in a phone cell, de-duplicated in cell order."""

    phones: list[str] = []
    warnings: list[NormalizationWarning] = []
    for token in split_phone_cell(value):
        normalized = normalize_phone(token, default_country_code=default_country_code)
        if normalized is None:
            warnings.append(
                NormalizationWarning(
                    row_number=row_number,
                    value=token,
                    message=f"Dropped invalid phone '{token}' (expected {MIN_PHONE_DIGITS}-{MAX_PHONE_DIGITS} digits).",
                )
            )
            continue
        if normalized not in phones:
            phones.append(normalized)
    return tuple(phones), tuple(warnings)


def normalize_row(row: ImportRow, *, default_country_code: str = DEFAULT_COUNTRY_CODE) -> Candidate:
    """Build a ``Candidate`` from ``row``. Pure; never raises for bad cell content."""

    full_name = collapse_whitespace(row.name)
    phones, warnings = normalize_phones(
        row.phone,
        row_number=row.row_number,
        default_country_code=default_country_code,
    )
    return Candidate(
        row_number=row.row_number,
        full_name=full_name,
        name=parse_full_name(full_name),
        phones=phones,
        region=collapse_whitespace(row.region),
        status=collapse_whitespace(row.status),
        raw_phone=None if row.phone is None else str(row.phone),
        warnings=warnings,
    )
