from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import CandidateRecord, ContactRecord, DuplicateCandidate

logger = logging.getLogger(__name__)


def identity_key(value: Optional[str]) -> str:
    return (value or "").strip().lower()


@dataclass
class ExistingRecordIndex:
    """Lookup of the store snapshot by lower-cased email and lower-cased handle."""

    by_email: Dict[str, ContactRecord] = field(default_factory=dict)
    by_handle: Dict[str, ContactRecord] = field(default_factory=dict)
    match_on_handle: bool = True

    @classmethod
    def build(
        cls, records: Iterable[ContactRecord], match_on_handle: bool = True
    ) -> "ExistingRecordIndex":
        index = cls(match_on_handle=match_on_handle)
        count = 0
        for record in records:
            count += 1
            index._register(index.by_email, identity_key(record.email), record)
            if match_on_handle:
                index._register(index.by_handle, identity_key(record.instagram_handle), record)
        logger.info(
            "Indexed %d existing contact(s): %d email key(s), %d handle key(s)",
            count,
            len(index.by_email),
            len(index.by_handle),
        )
        return index

    @staticmethod
    def _register(table: Dict[str, ContactRecord], key: str, record: ContactRecord) -> None:
        if not key:
            return
        holder = table.get(key)
        if holder is not None:
            if holder is not record:
                logger.debug(
                    "Key %s already owned by %s; ignoring %s",
                    key,
                    holder.contact_id,
                    record.contact_id,
                )
            return
        table[key] = record

    def lookup(self, record: ContactRecord) -> Optional[Tuple[ContactRecord, str]]:
        email_key = identity_key(record.email)
        if email_key and email_key in self.by_email:
            return self.by_email[email_key], "email"
        if self.match_on_handle:
            handle_key = identity_key(record.instagram_handle)
            if handle_key and handle_key in self.by_handle:
                return self.by_handle[handle_key], "instagram_handle"
        return None


def match_candidate(
    candidate: CandidateRecord, index: ExistingRecordIndex
) -> Optional[DuplicateCandidate]:
    hit = index.lookup(candidate.record)
    if hit is None:
        return None
    existing, match_key = hit
    return DuplicateCandidate(candidate=candidate, existing=existing, match_key=match_key)


def find_duplicates(
    candidates: Sequence[CandidateRecord], index: ExistingRecordIndex
) -> Tuple[List[DuplicateCandidate], List[CandidateRecord]]:
    """Split candidates into store duplicates and new records; candidates are never compared to each other."""
    duplicates: List[DuplicateCandidate] = []
    new_records: List[CandidateRecord] = []
    for candidate in candidates:
        duplicate = match_candidate(candidate, index)
        if duplicate is None:
            new_records.append(candidate)
        else:
            duplicates.append(duplicate)
    logger.info("%d duplicate(s), %d new record(s)", len(duplicates), len(new_records))
    return duplicates, new_records
