from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union


class FieldKind(str, Enum):
    TEXT = "text"
    COUNT = "count"
    ADDRESS = "address"
    HANDLE = "handle"
    TAGS = "tags"
    FREE_TEXT = "free_text"
    NONE = "none"


class TargetField(str, Enum):
    NAME = "name"
    EMAIL = "email"
    PHONE = "phone"
    LOCATION = "location"
    INSTAGRAM_HANDLE = "instagram_handle"
    WEBSITE = "website"
    FOLLOWERS = "followers"
    FOLLOWING = "following"
    POSTS = "posts"
    AVG_LIKES = "avg_likes"
    AVG_COMMENTS = "avg_comments"
    BIOGRAPHY = "biography"
    TAGS = "tags"
    IGNORE = "ignore"

    @property
    def kind(self) -> FieldKind:
        return _FIELD_KINDS[self]

    @property
    def label(self) -> str:
        return _FIELD_LABELS[self]

    @classmethod
    def parse(cls, value: Union[str, "TargetField"]) -> "TargetField":
        if isinstance(value, TargetField):
            return value
        token = normalize_header(value)
        for member in cls:
            if token in (normalize_header(member.value), normalize_header(member.label)):
                return member
        raise ValueError(f"Unknown target field: {value!r}")


_FIELD_KINDS: Dict[TargetField, FieldKind] = {
    TargetField.NAME: FieldKind.TEXT,
    TargetField.EMAIL: FieldKind.ADDRESS,
    TargetField.PHONE: FieldKind.TEXT,
    TargetField.LOCATION: FieldKind.TEXT,
    TargetField.INSTAGRAM_HANDLE: FieldKind.HANDLE,
    TargetField.WEBSITE: FieldKind.TEXT,
    TargetField.FOLLOWERS: FieldKind.COUNT,
    TargetField.FOLLOWING: FieldKind.COUNT,
    TargetField.POSTS: FieldKind.COUNT,
    TargetField.AVG_LIKES: FieldKind.COUNT,
    TargetField.AVG_COMMENTS: FieldKind.COUNT,
    TargetField.BIOGRAPHY: FieldKind.FREE_TEXT,
    TargetField.TAGS: FieldKind.TAGS,
    TargetField.IGNORE: FieldKind.NONE,
}

_FIELD_LABELS: Dict[TargetField, str] = {
    TargetField.NAME: "Name",
    TargetField.EMAIL: "Email",
    TargetField.PHONE: "Phone",
    TargetField.LOCATION: "Location/State",
    TargetField.INSTAGRAM_HANDLE: "Instagram Handle",
    TargetField.WEBSITE: "Website",
    TargetField.FOLLOWERS: "Followers",
    TargetField.FOLLOWING: "Following",
    TargetField.POSTS: "Posts",
    TargetField.AVG_LIKES: "Average Likes",
    TargetField.AVG_COMMENTS: "Average Comments",
    TargetField.BIOGRAPHY: "Biography/Notes",
    TargetField.TAGS: "Tags (comma-separated)",
    TargetField.IGNORE: "-- Ignore this field --",
}


@dataclass(frozen=True)
class GuessRule:
    target: TargetField
    includes: Tuple[str, ...]
    excludes: Tuple[str, ...] = ()

    def matches(self, token: str) -> bool:
        if any(word in token for word in self.excludes):
            return False
        return any(word in token for word in self.includes)


# first match wins; "followers" sits before "following" on purpose
GUESS_RULES: Tuple[GuessRule, ...] = (
    GuessRule(TargetField.NAME, ("name",), excludes=("instagram",)),
    GuessRule(TargetField.EMAIL, ("email",)),
    GuessRule(TargetField.PHONE, ("phone", "number")),
    GuessRule(TargetField.LOCATION, ("state", "location")),
    GuessRule(TargetField.INSTAGRAM_HANDLE, ("instagram", "ig")),
    GuessRule(TargetField.WEBSITE, ("website", "url")),
    GuessRule(TargetField.FOLLOWERS, ("followers",)),
    GuessRule(TargetField.FOLLOWING, ("following",)),
    GuessRule(TargetField.POSTS, ("post",)),
    GuessRule(TargetField.AVG_LIKES, ("like",)),
    GuessRule(TargetField.AVG_COMMENTS, ("comment",)),
    GuessRule(TargetField.BIOGRAPHY, ("bio", "note")),
    GuessRule(TargetField.TAGS, ("tag",)),
)


def normalize_header(header: str) -> str:
    return re.sub(r"[^a-z0-9]", "", (header or "").lower())


def guess_field(header: str, rules: Sequence[GuessRule] = GUESS_RULES) -> TargetField:
    token = normalize_header(header)
    for rule in rules:
        if rule.matches(token):
            return rule.target
    return TargetField.IGNORE


@dataclass
class FieldMapping:
    """Header -> target assignment, one entry per source column in column order."""

    headers: Tuple[str, ...]
    targets: List[TargetField] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.targets:
            self.targets = [TargetField.IGNORE] * len(self.headers)
        if len(self.targets) != len(self.headers):
            raise ValueError("mapping must assign exactly one target per header")

    def __iter__(self) -> Iterator[Tuple[int, str, TargetField]]:
        for index, header in enumerate(self.headers):
            yield index, header, self.targets[index]

    def target_for(self, header: str) -> TargetField:
        return self.targets[self._index_of(header)]

    def assign(self, header: Union[str, int], target: Union[str, TargetField]) -> None:
        index = header if isinstance(header, int) else self._index_of(header)
        self.targets[index] = TargetField.parse(target)

    def headers_for(self, target: TargetField) -> List[str]:
        return [header for _, header, mapped in self if mapped is target]

    def header_for(self, target: TargetField) -> Optional[str]:
        headers = self.headers_for(target)
        return headers[-1] if headers else None

    def as_dict(self) -> Dict[str, str]:
        return {header: target.value for _, header, target in self}

    def copy(self) -> "FieldMapping":
        return FieldMapping(headers=self.headers, targets=list(self.targets))

    def _index_of(self, header: str) -> int:
        try:
            return self.headers.index(header)
        except ValueError as exc:
            raise KeyError(f"Unknown header: {header!r}") from exc


def guess_mapping(headers: Iterable[str]) -> FieldMapping:
    header_tuple = tuple(headers)
    return FieldMapping(headers=header_tuple, targets=[guess_field(header) for header in header_tuple])
