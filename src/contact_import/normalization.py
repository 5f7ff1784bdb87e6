from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .field_mapping import FieldKind, FieldMapping, TargetField
from .models import CandidateRecord, ContactRecord, FailedRow, FieldError

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
COUNT_SUFFIXES = {"k": 1_000, "m": 1_000_000}
MAX_COUNT_DIGITS = 15

DEFAULT_NOT_FOUND_SENTINELS = ("not found", "email not found", "notfound")
DEFAULT_HANDLE_DOMAINS = ("instagram.com",)

NAME_REQUIRED = "Name is required."
EMAIL_REQUIRED = "Email is required for this row."
EMAIL_INVALID = "Invalid email format."


@dataclass
class NormalizationSettings:
    not_found_sentinels: Set[str] = field(
        default_factory=lambda: set(DEFAULT_NOT_FOUND_SENTINELS)
    )
    handle_domains: Tuple[str, ...] = DEFAULT_HANDLE_DOMAINS

    @classmethod
    def from_args(
        cls,
        not_found_sentinels: Optional[Iterable[str]] = None,
        handle_domains: Optional[Iterable[str]] = None,
    ) -> "NormalizationSettings":
        sentinels = not_found_sentinels or DEFAULT_NOT_FOUND_SENTINELS
        domains = handle_domains or DEFAULT_HANDLE_DOMAINS
        return cls(
            not_found_sentinels={_collapse(s) for s in sentinels if _collapse(s)},
            handle_domains=tuple(d.strip().lower() for d in domains if d.strip()),
        )


def _collapse(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (text or "").strip()).lower()


def parse_count(raw: Optional[str]) -> Optional[int]:
    """
    Parse follower-style counts such as ``"12,400"``, ``"1.2k"`` or ``"3M"``.

    Unparseable or implausibly large input yields ``None`` rather than an error.
    """
    text = (raw or "").replace(",", "").strip()
    if not text:
        return None
    multiplier = COUNT_SUFFIXES.get(text[-1].lower(), 1)
    if multiplier != 1:
        text = text[:-1].strip()
    try:
        value = Decimal(text) * multiplier
    except ArithmeticError:
        return None
    if not value.is_finite() or value.adjusted() >= MAX_COUNT_DIGITS:
        return None
    return math.floor(value)


def is_not_found(raw: Optional[str], settings: NormalizationSettings) -> bool:
    return _collapse(raw) in settings.not_found_sentinels


def split_addresses(raw: Optional[str]) -> Tuple[str, List[str]]:
    """Return the primary address and any further address tokens found in one cell."""
    text = (raw or "").strip()
    tokens = [token for token in re.split(r"[\s,;|/]+", text) if "@" in token]
    if len(tokens) < 2:
        return text, []
    return tokens[0], tokens[1:]


def extract_handle(raw: Optional[str], domains: Sequence[str] = DEFAULT_HANDLE_DOMAINS) -> str:
    text = (raw or "").strip()
    lowered = text.lower()
    for domain in domains:
        if domain not in lowered:
            continue
        match = re.search(re.escape(domain) + r"/([A-Za-z0-9_.]+)", text, re.IGNORECASE)
        if match:
            return f"@{match.group(1)}"
    return text


def split_tags(raw: Optional[str]) -> List[str]:
    seen: Set[str] = set()
    tags: List[str] = []
    for token in (raw or "").split(","):
        tag = token.strip()
        if tag and tag not in seen:
            seen.add(tag)
            tags.append(tag)
    return tags


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_RE.match(value or ""))


def _append_line(existing: str, addition: str) -> str:
    return f"{existing}\n{addition}" if existing else addition


def _coerce_cells(
    headers: Sequence[str],
    cells: Sequence[str],
    mapping: FieldMapping,
    settings: NormalizationSettings,
) -> Tuple[Dict[str, Any], Set[str], bool]:
    values: Dict[str, Any] = {}
    populated: Set[str] = set()
    email_not_found = False

    for index, header, target in mapping:
        if target is TargetField.IGNORE or index >= len(cells):
            continue
        raw = cells[index]
        name = target.value
        populated.add(name)
        kind = target.kind

        if kind is FieldKind.COUNT:
            values[name] = parse_count(raw)
        elif kind is FieldKind.ADDRESS:
            email_not_found = is_not_found(raw, settings)
            if email_not_found:
                values[name] = ""
                continue
            primary, extras = split_addresses(raw)
            values[name] = primary
            if extras:
                populated.add("notes")
                values["notes"] = _append_line(
                    values.get("notes", ""),
                    f"Additional emails from import ({header}): {', '.join(extras)}",
                )
        elif kind is FieldKind.HANDLE:
            values[name] = extract_handle(raw, settings.handle_domains)
        elif kind is FieldKind.TAGS:
            values[name] = split_tags(raw)
        elif kind is FieldKind.FREE_TEXT:
            text = (raw or "").strip()
            if text:
                values[name] = _append_line(values.get(name, ""), text)
            else:
                values.setdefault(name, "")
        else:
            values[name] = (raw or "").strip()

    return values, populated, email_not_found


def validate_values(
    values: Dict[str, Any], mapping: FieldMapping, email_not_found: bool
) -> List[FieldError]:
    errors: List[FieldError] = []
    name_header = mapping.header_for(TargetField.NAME) or TargetField.NAME.value
    email_header = mapping.header_for(TargetField.EMAIL) or TargetField.EMAIL.value

    if not values.get("name"):
        errors.append(FieldError(name_header, NAME_REQUIRED))
    email = values.get("email") or ""
    if not email and not email_not_found:
        errors.append(FieldError(email_header, EMAIL_REQUIRED))
    if email and not is_valid_email(email):
        errors.append(FieldError(email_header, EMAIL_INVALID))
    return errors


def normalize_row(
    headers: Sequence[str],
    cells: Sequence[str],
    mapping: FieldMapping,
    settings: Optional[NormalizationSettings] = None,
    row_index: int = 0,
) -> Tuple[Optional[CandidateRecord], List[FieldError]]:
    settings = settings or NormalizationSettings()
    values, populated, email_not_found = _coerce_cells(headers, cells, mapping, settings)
    errors = validate_values(values, mapping, email_not_found)
    if errors:
        return None, errors
    record = ContactRecord.from_mapping(values).replace(source_row_id=str(row_index))
    return (
        CandidateRecord(
            row_index=row_index,
            record=record,
            populated_fields=frozenset(populated),
            raw_cells=tuple(cells),
        ),
        [],
    )


def normalize_rows(
    headers: Sequence[str],
    rows: Iterable[Sequence[str]],
    mapping: FieldMapping,
    settings: Optional[NormalizationSettings] = None,
) -> Tuple[List[CandidateRecord], List[FailedRow]]:
    """Validate every row before reporting, so all failures surface in one pass."""
    candidates: List[CandidateRecord] = []
    failed: List[FailedRow] = []
    for row_index, cells in enumerate(rows):
        candidate, errors = normalize_row(headers, cells, mapping, settings, row_index)
        if candidate is not None:
            candidates.append(candidate)
        else:
            failed.append(FailedRow(row_index=row_index, cells=tuple(cells), errors=tuple(errors)))
    if failed:
        logger.info("%d of %d row(s) failed validation", len(failed), len(candidates) + len(failed))
    return candidates, failed
