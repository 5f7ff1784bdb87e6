from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


class ImportPipelineError(Exception):
    """Base class for errors that stop an import session."""


class MalformedInput(ImportPipelineError):
    """Raised when the source text has no usable header and data rows."""


class SessionStateError(ImportPipelineError):
    """Raised when an operation is not allowed in the session's current stage."""


class RepositoryError(ImportPipelineError):
    """Raised by repository collaborators for a failed store operation."""


class RepositoryUnavailable(RepositoryError):
    """Raised when the contact store cannot be reached at all."""


COUNT_FIELDS = ("followers", "following", "posts", "avg_likes", "avg_comments")


@dataclass
class ContactRecord:
    contact_id: str = ""
    name: str = ""
    email: str = ""
    phone: str = ""
    location: str = ""
    instagram_handle: str = ""
    website: str = ""
    followers: Optional[int] = None
    following: Optional[int] = None
    posts: Optional[int] = None
    avg_likes: Optional[int] = None
    avg_comments: Optional[int] = None
    biography: str = ""
    notes: str = ""
    tags: List[str] = field(default_factory=list)
    source_row_id: str = ""

    @staticmethod
    def _coerce_count(value: Any) -> Optional[int]:
        if value is None or value == "":
            return None
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _coerce_tags(value: Any) -> List[str]:
        if not value:
            return []
        if isinstance(value, str):
            return [tag for tag in value.split("|") if tag]
        return [str(tag) for tag in value]

    @classmethod
    def from_mapping(cls, payload: Dict[str, Any]) -> "ContactRecord":
        text = {
            name: str(payload.get(name, "") or "").strip()
            for name in (
                "contact_id",
                "name",
                "email",
                "phone",
                "location",
                "instagram_handle",
                "website",
                "source_row_id",
            )
        }
        counts = {name: cls._coerce_count(payload.get(name)) for name in COUNT_FIELDS}
        return cls(
            biography=str(payload.get("biography", "") or ""),
            notes=str(payload.get("notes", "") or ""),
            tags=cls._coerce_tags(payload.get("tags")),
            **text,
            **counts,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload = {f.name: getattr(self, f.name) for f in fields(self)}
        payload["tags"] = list(self.tags)
        return payload

    def replace(self, **changes: Any) -> "ContactRecord":
        return replace(self, **changes)

    @property
    def label(self) -> str:
        return self.name or self.email or self.contact_id or "unnamed contact"


def is_empty_value(value: Any) -> bool:
    return value is None or value == "" or value == []


@dataclass(frozen=True)
class RawTable:
    """Parsed grid of cells; every row holds exactly ``len(headers)`` cells."""

    headers: Tuple[str, ...]
    rows: Tuple[Tuple[str, ...], ...]
    padded_rows: Tuple[int, ...] = ()
    truncated_rows: Tuple[int, ...] = ()

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class FieldError:
    header: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"header": self.header, "message": self.message}


def display_row_number(row_index: int) -> int:
    # header occupies line 1
    return row_index + 2


@dataclass(frozen=True)
class CandidateRecord:
    row_index: int
    record: ContactRecord
    populated_fields: FrozenSet[str]
    raw_cells: Tuple[str, ...]

    @property
    def row_number(self) -> int:
        return display_row_number(self.row_index)


@dataclass(frozen=True)
class FailedRow:
    row_index: int
    cells: Tuple[str, ...]
    errors: Tuple[FieldError, ...]

    @property
    def row_number(self) -> int:
        return display_row_number(self.row_index)

    def error_summary(self) -> str:
        return "; ".join(f"{error.header}: {error.message}" for error in self.errors)


class Resolution(str, Enum):
    SKIP = "skip"
    UPDATE = "update"
    INSERT_AS_NEW = "insert_as_new"


@dataclass
class DuplicateCandidate:
    candidate: CandidateRecord
    existing: ContactRecord
    match_key: str
    resolution: Resolution = Resolution.UPDATE

    def comparison(self) -> Dict[str, Any]:
        incoming = self.candidate.record
        return {
            "row_number": self.candidate.row_number,
            "match_key": self.match_key,
            "resolution": self.resolution.value,
            "existing_id": self.existing.contact_id,
            "existing_name": self.existing.name,
            "existing_email": self.existing.email,
            "existing_instagram_handle": self.existing.instagram_handle,
            "incoming_name": incoming.name,
            "incoming_email": incoming.email,
            "incoming_instagram_handle": incoming.instagram_handle,
        }


class Stage(str, Enum):
    UPLOADED = "uploaded"
    MAPPED = "mapped"
    REVIEWED = "reviewed"
    CORRECTING = "correcting"
    COMMITTING = "committing"
    DONE = "done"
