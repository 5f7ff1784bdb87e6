from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

from .models import (
    CandidateRecord,
    ContactRecord,
    DuplicateCandidate,
    Resolution,
    is_empty_value,
)

logger = logging.getLogger(__name__)

APPENDED_FIELDS = ("notes",)


@dataclass
class PendingInsert:
    record: ContactRecord
    row_number: int


@dataclass
class PendingUpdate:
    record: ContactRecord
    row_numbers: List[int] = field(default_factory=list)


@dataclass
class ResolutionPlan:
    to_insert: List[PendingInsert] = field(default_factory=list)
    to_update: "OrderedDict[str, PendingUpdate]" = field(default_factory=OrderedDict)
    skipped: List[CandidateRecord] = field(default_factory=list)

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "to_insert": len(self.to_insert),
            "to_update": len(self.to_update),
            "skipped": len(self.skipped),
        }


def merge_fields(
    existing: ContactRecord, incoming: ContactRecord, populated_fields: Iterable[str]
) -> ContactRecord:
    """
    Merge ``incoming`` into ``existing`` over the fields the import populated.

    A non-empty incoming value always wins. An empty incoming value only wins
    when the existing value is empty too, so a sparse re-import never blanks
    out enriched data. Notes are appended to, never replaced. The existing
    record keeps its identity.
    """
    changes = {}
    for name in sorted(populated_fields):
        incoming_value = getattr(incoming, name)
        current_value = getattr(existing, name)
        if name in APPENDED_FIELDS and current_value and incoming_value:
            if incoming_value not in current_value:
                changes[name] = f"{current_value}\n{incoming_value}"
            continue
        if not is_empty_value(incoming_value) or is_empty_value(current_value):
            changes[name] = list(incoming_value) if isinstance(incoming_value, list) else incoming_value
    return existing.replace(**changes)


def _as_new_record(candidate: CandidateRecord) -> PendingInsert:
    return PendingInsert(
        record=candidate.record.replace(contact_id=""),
        row_number=candidate.row_number,
    )


def resolve(
    candidates: Sequence[CandidateRecord], duplicates: Sequence[DuplicateCandidate]
) -> ResolutionPlan:
    """
    Apply each duplicate's resolution and partition the batch into inserts and updates.

    Candidates without a duplicate match are inserted. Several candidates that
    update the same existing record are merged one after another in row order.
    """
    plan = ResolutionPlan()
    by_row = {duplicate.candidate.row_index: duplicate for duplicate in duplicates}

    for candidate in sorted(candidates, key=lambda c: c.row_index):
        duplicate = by_row.get(candidate.row_index)
        if duplicate is None:
            plan.to_insert.append(_as_new_record(candidate))
            continue
        if duplicate.resolution is Resolution.SKIP:
            plan.skipped.append(candidate)
        elif duplicate.resolution is Resolution.INSERT_AS_NEW:
            plan.to_insert.append(_as_new_record(candidate))
        else:
            existing_id = duplicate.existing.contact_id
            pending = plan.to_update.get(existing_id)
            base = pending.record if pending is not None else duplicate.existing
            merged = merge_fields(base, candidate.record, candidate.populated_fields)
            merged = merged.replace(contact_id=existing_id)
            if pending is None:
                plan.to_update[existing_id] = PendingUpdate(merged, [candidate.row_number])
            else:
                logger.info(
                    "Row %d merges again into contact %s after row(s) %s",
                    candidate.row_number,
                    existing_id,
                    pending.row_numbers,
                )
                pending.record = merged
                pending.row_numbers.append(candidate.row_number)

    logger.info(
        "Resolution plan: %d insert(s), %d update(s), %d skipped",
        len(plan.to_insert),
        len(plan.to_update),
        len(plan.skipped),
    )
    return plan
