from __future__ import annotations

import argparse
import csv
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
import yaml  # type: ignore[import-untyped]

from .common import (
    CsvContactRepository,
    FailedRow,
    ImportSession,
    MalformedInput,
    RepositoryUnavailable,
    Resolution,
    load_config,
    normalization_settings,
)
from .config_loader import PipelineConfig
from .logging_utils import configure_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_COMMIT_FAILURES = 1
EXIT_MALFORMED_INPUT = 2
EXIT_UNRESOLVED_ROWS = 3
EXIT_STORE_UNAVAILABLE = 4


@dataclass
class ReviewDecisions:
    """Operator decisions keyed by the row numbers shown in the reports."""

    resolutions: Dict[int, Resolution] = field(default_factory=dict)
    corrections: Dict[int, Dict[str, str]] = field(default_factory=dict)
    skip_rows: List[int] = field(default_factory=list)


def _load_review(path: Optional[str]) -> ReviewDecisions:
    if not path:
        return ReviewDecisions()
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return ReviewDecisions(
        resolutions={
            int(row): Resolution(value) for row, value in (data.get("resolutions") or {}).items()
        },
        corrections={
            int(row): {str(header): "" if value is None else str(value) for header, value in cells.items()}
            for row, cells in (data.get("corrections") or {}).items()
        },
        skip_rows=[int(row) for row in data.get("skip_rows") or []],
    )


def _parse_mapping_overrides(values: Optional[List[str]]) -> List[Tuple[str, str]]:
    overrides: List[Tuple[str, str]] = []
    for value in values or []:
        header, sep, target = value.rpartition("=")
        if not sep or not header:
            raise ValueError(f"Mapping override must look like 'Header=field': {value!r}")
        overrides.append((header, target))
    return overrides


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8-sig", errors="replace", newline="") as handle:
        return handle.read()


def _apply_corrections(session: ImportSession, review: ReviewDecisions) -> None:
    if not session.failed_rows:
        if review.corrections or review.skip_rows:
            logger.warning("Review file lists corrections but no row failed validation")
        return
    session.start_correcting()
    for row_number, cells in sorted(review.corrections.items()):
        try:
            result = session.revise_cells(row_number - 2, cells)
        except KeyError:
            logger.warning("Correction for row %d ignored; row is not failing", row_number)
            continue
        except ValueError as exc:
            logger.warning("Correction for row %d ignored: %s", row_number, exc)
            continue
        if isinstance(result, FailedRow):
            logger.warning("Row %d still fails: %s", row_number, result.error_summary())
    for row_number in review.skip_rows:
        try:
            session.skip_row(row_number - 2)
        except KeyError:
            logger.warning("Skip for row %d ignored; row is not failing", row_number)


def _apply_resolutions(session: ImportSession, review: ReviewDecisions) -> None:
    for position, duplicate in enumerate(session.duplicates):
        resolution = review.resolutions.get(duplicate.candidate.row_number)
        if resolution is not None:
            session.set_resolution(position, resolution)


def _write_reports(session: ImportSession, out_dir: str) -> Dict[str, str]:
    os.makedirs(out_dir, exist_ok=True)
    written: Dict[str, str] = {}

    failed_rows = []
    for failed in session.failed_rows:
        row = {"row_number": failed.row_number}
        row.update(dict(zip(session.table.headers, failed.cells)))
        row["_errors"] = failed.error_summary()
        failed_rows.append(row)
    if failed_rows:
        path = os.path.join(out_dir, "failed_rows.csv")
        pd.DataFrame(failed_rows).to_csv(path, index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)
        written["failed_rows"] = path

    if session.duplicates:
        path = os.path.join(out_dir, "duplicates.csv")
        pd.DataFrame([duplicate.comparison() for duplicate in session.duplicates]).to_csv(
            path, index=False, encoding="utf-8", quoting=csv.QUOTE_ALL
        )
        written["duplicates"] = path

    if session.report is not None and session.report.failures:
        path = os.path.join(out_dir, "commit_failures.csv")
        pd.DataFrame([failure.to_dict() for failure in session.report.failures]).to_csv(
            path, index=False, encoding="utf-8", quoting=csv.QUOTE_ALL
        )
        written["commit_failures"] = path
    return written


def build(
    args: argparse.Namespace, config: Optional[PipelineConfig] = None
) -> Tuple[Dict[str, Any], int]:
    config = config or load_config(args)
    import_csv = config.inputs.get("import_csv")
    store_csv = config.inputs.get("store_csv")
    if not import_csv or not store_csv:
        raise ValueError("Both an input file and a contact store path are required.")

    repository = CsvContactRepository(store_csv)
    try:
        existing = repository.list_existing()
    except RepositoryUnavailable as exc:
        logger.error("%s", exc)
        return {"error": str(exc)}, EXIT_STORE_UNAVAILABLE

    try:
        session = ImportSession.start(
            _read_text(import_csv),
            existing,
            settings=normalization_settings(config),
            delimiter=config.parsing.delimiter,
            quote=config.parsing.quote,
            match_on_handle=config.dedupe.match_on_handle,
            default_resolution=config.resolution.default,
        )
    except MalformedInput as exc:
        logger.error("%s: %s", import_csv, exc)
        return {"error": str(exc)}, EXIT_MALFORMED_INPUT

    for header, target in _parse_mapping_overrides(getattr(args, "map", None)):
        session.assign(header, target)
    logger.info("Field mapping: %s", session.mapping.as_dict())
    session.confirm_mapping()

    review = _load_review(config.inputs.get("review_yaml"))
    if session.duplicates or session.failed_rows:
        session.confirm_review()
        _apply_corrections(session, review)
    _apply_resolutions(session, review)

    out_dir = str(config.outputs.dir)
    force = bool(getattr(args, "force", False))
    if session.failed_rows and not force:
        reports = _write_reports(session, out_dir)
        summary = session.summary()
        summary["reports"] = reports
        logger.warning(
            "%d row(s) still fail validation; fix them in a review file or pass --force",
            len(session.failed_rows),
        )
        return summary, EXIT_UNRESOLVED_ROWS

    if getattr(args, "dry_run", False):
        summary = session.summary()
        summary.update(session.plan().counts)
        summary["reports"] = _write_reports(session, out_dir)
        return summary, EXIT_OK

    try:
        report = session.commit(repository, force=force, batch_size=config.commit.batch_size)
    except RepositoryUnavailable as exc:
        logger.error("%s", exc)
        summary = session.summary()
        summary["error"] = str(exc)
        return summary, EXIT_STORE_UNAVAILABLE

    summary = session.summary()
    summary["reports"] = _write_reports(session, out_dir)
    if not report.ok:
        return summary, EXIT_COMMIT_FAILURES
    return summary, EXIT_OK


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Import contacts from a delimited file into a contact store."
    )
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config.")
    parser.add_argument("--input", type=str, default=None, help="Delimited file to import.")
    parser.add_argument("--store", type=str, default=None, help="Contact store CSV.")
    parser.add_argument("--review", type=str, default=None, help="YAML with operator decisions.")
    parser.add_argument(
        "--map",
        action="append",
        default=None,
        metavar="HEADER=FIELD",
        help="Override the guessed target of a column (repeatable).",
    )
    parser.add_argument("--delimiter", type=str, default=None)
    parser.add_argument(
        "--default-resolution",
        choices=[resolution.value for resolution in Resolution],
        default=None,
    )
    parser.add_argument(
        "--match-on-handle",
        dest="match_on_handle",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Also match duplicates on Instagram handle (default: on).",
    )
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument(
        "--force", action="store_true", help="Commit even if rows still fail; they are skipped."
    )
    parser.add_argument("--dry-run", action="store_true", help="Stop before committing.")
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")
    args = parser.parse_args()

    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    summary, exit_code = build(args, config=config)
    print(summary)
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
