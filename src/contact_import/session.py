from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from .commit import DEFAULT_BATCH_SIZE, CommitReport, commit_plan
from .field_mapping import FieldMapping, TargetField, guess_mapping
from .matching import ExistingRecordIndex, match_candidate
from .merge import ResolutionPlan, resolve
from .models import (
    CandidateRecord,
    ContactRecord,
    DuplicateCandidate,
    FailedRow,
    RawTable,
    RepositoryUnavailable,
    Resolution,
    SessionStateError,
    Stage,
)
from .normalization import NormalizationSettings, normalize_row, normalize_rows
from .parser import parse_delimited
from .repository import ContactRepository

logger = logging.getLogger(__name__)

_STAGE_ORDER = [
    Stage.UPLOADED,
    Stage.MAPPED,
    Stage.REVIEWED,
    Stage.CORRECTING,
    Stage.COMMITTING,
    Stage.DONE,
]


@dataclass
class ImportSession:
    """
    One in-flight import, from uploaded text to committed records.

    Stages only move forward, except for :meth:`back_to_mapping`, which drops
    every derived result but keeps the parsed table untouched.
    """

    table: RawTable
    mapping: FieldMapping
    index: ExistingRecordIndex
    settings: NormalizationSettings = field(default_factory=NormalizationSettings)
    default_resolution: Resolution = Resolution.UPDATE
    stage: Stage = Stage.UPLOADED
    candidates: List[CandidateRecord] = field(default_factory=list)
    failed_rows: List[FailedRow] = field(default_factory=list)
    duplicates: List[DuplicateCandidate] = field(default_factory=list)
    skipped_rows: List[int] = field(default_factory=list)
    report: Optional[CommitReport] = None

    @classmethod
    def start(
        cls,
        text: str,
        existing: Sequence[ContactRecord],
        settings: Optional[NormalizationSettings] = None,
        delimiter: str = ",",
        quote: str = '"',
        match_on_handle: bool = True,
        default_resolution: Resolution = Resolution.UPDATE,
    ) -> "ImportSession":
        table = parse_delimited(text, delimiter=delimiter, quote=quote)
        return cls(
            table=table,
            mapping=guess_mapping(table.headers),
            index=ExistingRecordIndex.build(existing, match_on_handle=match_on_handle),
            settings=settings or NormalizationSettings(),
            default_resolution=default_resolution,
        )

    def _require(self, *stages: Stage) -> None:
        if self.stage not in stages:
            allowed = ", ".join(stage.value for stage in stages)
            raise SessionStateError(
                f"Operation not allowed in stage '{self.stage.value}' (expected {allowed})"
            )

    def _move_to(self, stage: Stage) -> None:
        if _STAGE_ORDER.index(stage) < _STAGE_ORDER.index(self.stage):
            raise SessionStateError(f"Cannot move back from '{self.stage.value}' to '{stage.value}'")
        logger.debug("Import session stage %s -> %s", self.stage.value, stage.value)
        self.stage = stage

    # mapping

    def assign(self, header: Union[str, int], target: Union[str, TargetField]) -> None:
        self._require(Stage.UPLOADED)
        self.mapping.assign(header, target)

    def confirm_mapping(self) -> None:
        self._require(Stage.UPLOADED)
        self.candidates, self.failed_rows = normalize_rows(
            self.table.headers, self.table.rows, self.mapping, self.settings
        )
        self.duplicates = []
        for candidate in self.candidates:
            self._register_duplicate(candidate)
        self.skipped_rows = []
        self._move_to(Stage.MAPPED)
        logger.info(
            "Mapped %d row(s): %d clean, %d failed, %d duplicate(s)",
            self.table.row_count,
            len(self.candidates),
            len(self.failed_rows),
            len(self.duplicates),
        )

    def back_to_mapping(self) -> None:
        self._require(Stage.MAPPED, Stage.REVIEWED, Stage.CORRECTING)
        self.candidates = []
        self.failed_rows = []
        self.duplicates = []
        self.skipped_rows = []
        self.stage = Stage.UPLOADED

    def _register_duplicate(self, candidate: CandidateRecord) -> Optional[DuplicateCandidate]:
        duplicate = match_candidate(candidate, self.index)
        if duplicate is not None:
            duplicate.resolution = self.default_resolution
            self.duplicates.append(duplicate)
        return duplicate

    # duplicate review

    def set_resolution(self, index: int, resolution: Union[str, Resolution]) -> DuplicateCandidate:
        self._require(Stage.MAPPED, Stage.REVIEWED, Stage.CORRECTING)
        duplicate = self.duplicates[index]
        duplicate.resolution = Resolution(resolution)
        return duplicate

    def duplicate_for_row(self, row_index: int) -> Optional[DuplicateCandidate]:
        for duplicate in self.duplicates:
            if duplicate.candidate.row_index == row_index:
                return duplicate
        return None

    def confirm_review(self) -> None:
        self._require(Stage.MAPPED)
        self._move_to(Stage.REVIEWED)

    # error correction

    def start_correcting(self) -> None:
        self._require(Stage.REVIEWED)
        if not self.failed_rows:
            raise SessionStateError("There are no failed rows to correct")
        self._move_to(Stage.CORRECTING)

    def _failed_position(self, row_index: int) -> int:
        for position, failed in enumerate(self.failed_rows):
            if failed.row_index == row_index:
                return position
        raise KeyError(f"Row index {row_index} is not a failed row")

    def revise_row(
        self, row_index: int, column_index: int, value: str
    ) -> Union[FailedRow, CandidateRecord]:
        """
        Replace one cell of a failed row and validate the row again.

        Returns the updated :class:`FailedRow` while errors remain, or the
        promoted :class:`CandidateRecord` once the row is clean; a promoted
        record is matched against the existing contacts like any other.
        """
        return self._revise(row_index, {column_index: value})

    def revise_cells(
        self, row_index: int, changes: Dict[str, str]
    ) -> Union[FailedRow, CandidateRecord]:
        """Apply several header-keyed edits to one failed row, then validate once."""
        by_column: Dict[int, str] = {}
        for header, value in changes.items():
            if header not in self.table.headers:
                raise ValueError(f"Unknown header: {header!r}")
            by_column[self.table.headers.index(header)] = value
        return self._revise(row_index, by_column)

    def _revise(
        self, row_index: int, changes: Dict[int, str]
    ) -> Union[FailedRow, CandidateRecord]:
        self._require(Stage.CORRECTING)
        position = self._failed_position(row_index)
        current = self.failed_rows[position]
        edited = list(current.cells)
        for column_index, value in changes.items():
            if not 0 <= column_index < len(edited):
                raise IndexError(f"Column index {column_index} out of range")
            edited[column_index] = value
        cells = tuple(edited)

        candidate, errors = normalize_row(
            self.table.headers, cells, self.mapping, self.settings, row_index
        )
        if candidate is None:
            revised = FailedRow(row_index=row_index, cells=cells, errors=tuple(errors))
            self.failed_rows[position] = revised
            return revised

        del self.failed_rows[position]
        self.candidates.append(candidate)
        self.candidates.sort(key=lambda c: c.row_index)
        duplicate = self._register_duplicate(candidate)
        logger.info(
            "Row %d corrected%s",
            candidate.row_number,
            " and matched an existing contact" if duplicate is not None else "",
        )
        return candidate

    def skip_row(self, row_index: int) -> FailedRow:
        self._require(Stage.CORRECTING)
        position = self._failed_position(row_index)
        skipped = self.failed_rows.pop(position)
        self.skipped_rows.append(row_index)
        return skipped

    # commit

    def plan(self) -> ResolutionPlan:
        self._require(Stage.MAPPED, Stage.REVIEWED, Stage.CORRECTING, Stage.COMMITTING)
        return resolve(self.candidates, self.duplicates)

    def _check_can_commit(self, force: bool) -> None:
        if self.stage is Stage.MAPPED:
            if self.duplicates or self.failed_rows:
                raise SessionStateError(
                    "Review duplicates and failed rows before committing"
                )
        elif self.stage is Stage.REVIEWED:
            if self.failed_rows:
                raise SessionStateError("Correct or skip failed rows before committing")
        elif self.stage is Stage.CORRECTING:
            if self.failed_rows and not force:
                raise SessionStateError(
                    f"{len(self.failed_rows)} failed row(s) remain; correct, skip or force the commit"
                )
        else:
            self._require(Stage.MAPPED, Stage.REVIEWED, Stage.CORRECTING)

    def commit(
        self,
        repository: ContactRepository,
        force: bool = False,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> CommitReport:
        self._check_can_commit(force)
        plan = self.plan()
        previous = self.stage
        self._move_to(Stage.COMMITTING)
        try:
            report = commit_plan(plan, repository, batch_size=batch_size)
        except RepositoryUnavailable:
            # nothing was committed; the operator may retry from the same stage
            self.stage = previous
            raise
        if self.failed_rows:
            logger.warning("Committed with %d failed row(s) treated as skipped", len(self.failed_rows))
            self.skipped_rows.extend(failed.row_index for failed in self.failed_rows)
            self.failed_rows = []
        self.report = report
        self._move_to(Stage.DONE)
        return self.report

    def summary(self) -> Dict[str, Any]:
        counts: Dict[str, Any] = {
            "stage": self.stage.value,
            "rows_parsed": self.table.row_count,
            "rows_padded": len(self.table.padded_rows),
            "rows_truncated": len(self.table.truncated_rows),
            "clean": len(self.candidates),
            "failed": len(self.failed_rows),
            "duplicates": len(self.duplicates),
            "skipped_rows": len(self.skipped_rows),
        }
        if self.report is not None:
            counts.update(
                {
                    "inserted": len(self.report.inserted),
                    "updated": len(self.report.updated),
                    "commit_failures": len(self.report.failures),
                }
            )
        return counts
