from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml  # type: ignore[import-untyped]

from .models import Resolution
from .normalization import DEFAULT_HANDLE_DOMAINS, DEFAULT_NOT_FOUND_SENTINELS


@dataclass
class OutputsConfig:
    dir: Path


@dataclass
class ParsingConfig:
    delimiter: str = ","
    quote: str = '"'


@dataclass
class NormalizationConfig:
    not_found_sentinels: List[str] = field(default_factory=lambda: list(DEFAULT_NOT_FOUND_SENTINELS))
    handle_domains: List[str] = field(default_factory=lambda: list(DEFAULT_HANDLE_DOMAINS))


@dataclass
class DedupeConfig:
    match_on_handle: bool = True


@dataclass
class ResolutionConfig:
    default: Resolution = Resolution.UPDATE


@dataclass
class CommitConfig:
    batch_size: int = 50


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class PipelineConfig:
    inputs: Dict[str, Optional[str]]
    outputs: OutputsConfig
    parsing: ParsingConfig
    normalization: NormalizationConfig
    dedupe: DedupeConfig
    resolution: ResolutionConfig
    commit: CommitConfig
    logging: LoggingConfig


def _load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _first_set(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def load_pipeline_config(args: argparse.Namespace) -> PipelineConfig:
    config_data = _load_yaml(getattr(args, "config", None))
    inputs = config_data.get("inputs", {}) or {}
    outputs_cfg = config_data.get("outputs", {}) or {}
    parsing_cfg = config_data.get("parsing", {}) or {}
    normalization_cfg = config_data.get("normalization", {}) or {}
    dedupe_cfg = config_data.get("dedupe", {}) or {}
    resolution_cfg = config_data.get("resolution", {}) or {}
    commit_cfg = config_data.get("commit", {}) or {}
    logging_cfg = config_data.get("logging", {}) or {}

    outputs_dir = Path(getattr(args, "out_dir", None) or outputs_cfg.get("dir") or os.getcwd())

    parsing = ParsingConfig(
        delimiter=getattr(args, "delimiter", None) or parsing_cfg.get("delimiter", ","),
        quote=parsing_cfg.get("quote", '"'),
    )

    normalization = NormalizationConfig(
        not_found_sentinels=list(
            normalization_cfg.get("not_found_sentinels") or DEFAULT_NOT_FOUND_SENTINELS
        ),
        handle_domains=list(normalization_cfg.get("handle_domains") or DEFAULT_HANDLE_DOMAINS),
    )

    dedupe = DedupeConfig(
        match_on_handle=bool(
            _first_set(getattr(args, "match_on_handle", None), dedupe_cfg.get("match_on_handle"), True)
        ),
    )

    resolution = ResolutionConfig(
        default=Resolution(
            getattr(args, "default_resolution", None) or resolution_cfg.get("default", "update")
        ),
    )

    commit = CommitConfig(
        batch_size=int(getattr(args, "batch_size", None) or commit_cfg.get("batch_size", 50)),
    )

    arg_level = getattr(args, "log_level", None)
    effective_level = (arg_level or logging_cfg.get("level") or "WARNING").upper()
    logging_config = LoggingConfig(level=effective_level)

    resolved_inputs = {
        "import_csv": getattr(args, "input", None) or inputs.get("import_csv"),
        "store_csv": getattr(args, "store", None) or inputs.get("store_csv"),
        "review_yaml": getattr(args, "review", None) or inputs.get("review_yaml"),
    }

    return PipelineConfig(
        inputs=resolved_inputs,
        outputs=OutputsConfig(dir=outputs_dir),
        parsing=parsing,
        normalization=normalization,
        dedupe=dedupe,
        resolution=resolution,
        commit=commit,
        logging=logging_config,
    )
