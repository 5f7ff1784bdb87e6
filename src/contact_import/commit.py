from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from .merge import PendingInsert, PendingUpdate, ResolutionPlan
from .models import ContactRecord, RepositoryUnavailable
from .repository import ContactRepository

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50

T = TypeVar("T")


@dataclass(frozen=True)
class CommitFailure:
    operation: str
    identifier: str
    error: str

    def to_dict(self) -> Dict[str, str]:
        return {"operation": self.operation, "identifier": self.identifier, "error": self.error}


@dataclass
class CommitReport:
    inserted: List[ContactRecord] = field(default_factory=list)
    updated: List[ContactRecord] = field(default_factory=list)
    failures: List[CommitFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def committed_count(self) -> int:
        return len(self.inserted) + len(self.updated)

    def summary(self) -> Dict[str, Any]:
        return {
            "inserted": len(self.inserted),
            "updated": len(self.updated),
            "failed": len(self.failures),
            "failures": [failure.to_dict() for failure in self.failures],
        }


def _insert_identifier(item: PendingInsert) -> str:
    return f"row {item.row_number} ({item.record.label})"


def _update_identifier(contact_id: str, item: PendingUpdate) -> str:
    rows = ", ".join(str(number) for number in item.row_numbers)
    return f"contact {contact_id} ({item.record.label}, row {rows})"


def _batches(items: Sequence[T], size: int) -> List[Sequence[T]]:
    size = max(1, int(size or 1))
    return [items[start : start + size] for start in range(0, len(items), size)]


class _CommitRun:
    def __init__(self, repository: ContactRepository, batch_size: int):
        self.repository = repository
        self.batch_size = batch_size
        self.report = CommitReport()
        self.unavailable: Optional[RepositoryUnavailable] = None

    def _call(
        self,
        operation: str,
        batch: Sequence[T],
        invoke: Callable[[Sequence[T]], List[ContactRecord]],
        key_of: Callable[[T], str],
        identify: Callable[[T], str],
        saved_key: Callable[[ContactRecord], str],
        sink: List[ContactRecord],
    ) -> None:
        if self.unavailable is not None:
            for item in batch:
                self._fail(operation, identify(item), str(self.unavailable))
            return
        try:
            saved = invoke(batch)
        except RepositoryUnavailable as exc:
            logger.error("Contact store unavailable during %s: %s", operation, exc)
            self.unavailable = exc
            for item in batch:
                self._fail(operation, identify(item), str(exc))
            return
        except Exception as exc:
            if len(batch) > 1:
                logger.info("%s batch of %d failed (%s); isolating per record", operation, len(batch), exc)
                for item in batch:
                    self._call(operation, [item], invoke, key_of, identify, saved_key, sink)
                return
            self._fail(operation, identify(batch[0]), str(exc) or exc.__class__.__name__)
            return

        acknowledged = {saved_key(record): record for record in saved or []}
        for item in batch:
            record = acknowledged.get(key_of(item))
            if record is None:
                self._fail(operation, identify(item), "not acknowledged by the contact store")
            else:
                sink.append(record)

    def _fail(self, operation: str, identifier: str, error: str) -> None:
        logger.warning("%s failed for %s: %s", operation, identifier, error)
        self.report.failures.append(CommitFailure(operation, identifier, error))

    def insert(self, items: Sequence[PendingInsert]) -> None:
        for batch in _batches(items, self.batch_size):
            self._call(
                "insert",
                batch,
                lambda chunk: self.repository.bulk_insert([item.record for item in chunk]),
                key_of=lambda item: item.record.source_row_id,
                identify=_insert_identifier,
                saved_key=lambda record: record.source_row_id,
                sink=self.report.inserted,
            )

    def update(self, items: Sequence[Tuple[str, PendingUpdate]]) -> None:
        for batch in _batches(items, self.batch_size):
            self._call(
                "update",
                batch,
                lambda chunk: self.repository.bulk_update(
                    [(contact_id, item.record) for contact_id, item in chunk]
                ),
                key_of=lambda pair: pair[0],
                identify=lambda pair: _update_identifier(pair[0], pair[1]),
                saved_key=lambda record: record.contact_id,
                sink=self.report.updated,
            )


def commit_plan(
    plan: ResolutionPlan,
    repository: ContactRepository,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> CommitReport:
    """
    Hand the plan's inserts and updates to the repository.

    A failing record never stops its siblings: a batch call that raises is
    re-issued one record at a time, and records the store does not return are
    reported as failures. Nothing is retried after that. When the store is
    unavailable before anything was committed, :class:`RepositoryUnavailable`
    propagates; once records have been committed the remainder are reported
    as failed instead, since committed records are not rolled back.
    """
    run = _CommitRun(repository, batch_size)
    run.insert(plan.to_insert)
    run.update(list(plan.to_update.items()))

    report = run.report
    if run.unavailable is not None and report.committed_count == 0:
        raise run.unavailable
    logger.info(
        "Commit finished: %d inserted, %d updated, %d failed",
        len(report.inserted),
        len(report.updated),
        len(report.failures),
    )
    return report
