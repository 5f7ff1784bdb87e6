from __future__ import annotations

from typing import Any

from .commit import CommitFailure, CommitReport, commit_plan
from .config_loader import PipelineConfig, load_pipeline_config
from .field_mapping import FieldMapping, TargetField, guess_field, guess_mapping
from .matching import ExistingRecordIndex, find_duplicates
from .merge import ResolutionPlan, merge_fields, resolve
from .models import (
    CandidateRecord,
    ContactRecord,
    DuplicateCandidate,
    FailedRow,
    FieldError,
    ImportPipelineError,
    MalformedInput,
    RawTable,
    RepositoryError,
    RepositoryUnavailable,
    Resolution,
    SessionStateError,
    Stage,
)
from .normalization import NormalizationSettings, normalize_row, normalize_rows
from .parser import format_delimited, parse_delimited
from .repository import CsvContactRepository, InMemoryContactRepository
from .session import ImportSession

__all__ = [
    "CandidateRecord",
    "CommitFailure",
    "CommitReport",
    "ContactRecord",
    "CsvContactRepository",
    "DuplicateCandidate",
    "ExistingRecordIndex",
    "FailedRow",
    "FieldError",
    "FieldMapping",
    "ImportPipelineError",
    "ImportSession",
    "InMemoryContactRepository",
    "MalformedInput",
    "NormalizationSettings",
    "PipelineConfig",
    "RawTable",
    "RepositoryError",
    "RepositoryUnavailable",
    "Resolution",
    "ResolutionPlan",
    "SessionStateError",
    "Stage",
    "TargetField",
    "commit_plan",
    "find_duplicates",
    "format_delimited",
    "guess_field",
    "guess_mapping",
    "load_config",
    "merge_fields",
    "normalization_settings",
    "normalize_row",
    "normalize_rows",
    "parse_delimited",
    "resolve",
]


def load_config(args: Any) -> PipelineConfig:
    return load_pipeline_config(args)


def normalization_settings(config: PipelineConfig) -> NormalizationSettings:
    return NormalizationSettings.from_args(
        not_found_sentinels=config.normalization.not_found_sentinels,
        handle_domains=config.normalization.handle_domains,
    )

