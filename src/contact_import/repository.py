from __future__ import annotations

import csv
import logging
import os
import uuid
from collections import OrderedDict
from dataclasses import fields
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import pandas as pd

from .models import ContactRecord, RepositoryError, RepositoryUnavailable

logger = logging.getLogger(__name__)

STORE_COLUMNS = [f.name for f in fields(ContactRecord)]


class ContactRepository(Protocol):
    def list_existing(self) -> List[ContactRecord]: ...

    def bulk_insert(self, records: Sequence[ContactRecord]) -> List[ContactRecord]: ...

    def bulk_update(
        self, pairs: Sequence[Tuple[str, ContactRecord]]
    ) -> List[ContactRecord]: ...


def new_contact_id() -> str:
    return str(uuid.uuid4())


class InMemoryContactRepository:
    def __init__(self, records: Optional[Sequence[ContactRecord]] = None):
        self._records: "OrderedDict[str, ContactRecord]" = OrderedDict()
        for record in records or []:
            contact_id = record.contact_id or new_contact_id()
            self._records[contact_id] = record.replace(contact_id=contact_id)

    def list_existing(self) -> List[ContactRecord]:
        return [record.replace(tags=list(record.tags)) for record in self._records.values()]

    def get(self, contact_id: str) -> Optional[ContactRecord]:
        return self._records.get(contact_id)

    def bulk_insert(self, records: Sequence[ContactRecord]) -> List[ContactRecord]:
        saved: List[ContactRecord] = []
        for record in records:
            stored = record.replace(contact_id=new_contact_id(), tags=list(record.tags))
            self._records[stored.contact_id] = stored
            saved.append(stored)
        return saved

    def bulk_update(self, pairs: Sequence[Tuple[str, ContactRecord]]) -> List[ContactRecord]:
        saved: List[ContactRecord] = []
        for contact_id, record in pairs:
            if contact_id not in self._records:
                logger.warning("Update skipped; contact %s does not exist", contact_id)
                continue
            stored = record.replace(contact_id=contact_id, tags=list(record.tags))
            self._records[contact_id] = stored
            saved.append(stored)
        return saved

    def __len__(self) -> int:
        return len(self._records)


def _to_row(record: ContactRecord) -> Dict[str, str]:
    row: Dict[str, str] = {}
    for name, value in record.to_dict().items():
        if name == "tags":
            row[name] = "|".join(value)
        elif value is None:
            row[name] = ""
        else:
            row[name] = str(value)
    return row


class CsvContactRepository:
    """Contact store kept in a single CSV file; each bulk call rewrites the file."""

    def __init__(self, path: str):
        self.path = path

    def _load(self) -> pd.DataFrame:
        if not os.path.exists(self.path):
            return pd.DataFrame(columns=STORE_COLUMNS)
        try:
            df = pd.read_csv(self.path, dtype=str, keep_default_na=False)
        except pd.errors.EmptyDataError:
            return pd.DataFrame(columns=STORE_COLUMNS)
        except (OSError, pd.errors.ParserError) as exc:
            raise RepositoryUnavailable(f"Unable to read contact store {self.path}: {exc}") from exc
        for column in STORE_COLUMNS:
            if column not in df.columns:
                df[column] = ""
        missing = df["contact_id"].str.strip() == ""
        if missing.any():
            df.loc[missing, "contact_id"] = [new_contact_id() for _ in range(int(missing.sum()))]
            logger.info("Assigned contact ids to %d row(s) in %s", int(missing.sum()), self.path)
            self._save(df)
        return df

    def _save(self, df: pd.DataFrame) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            df.to_csv(self.path, index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)
        except OSError as exc:
            raise RepositoryUnavailable(f"Unable to write contact store {self.path}: {exc}") from exc

    def list_existing(self) -> List[ContactRecord]:
        df = self._load()
        return [ContactRecord.from_mapping(row) for row in df.to_dict(orient="records")]

    def bulk_insert(self, records: Sequence[ContactRecord]) -> List[ContactRecord]:
        if not records:
            return []
        df = self._load()
        saved = [record.replace(contact_id=new_contact_id()) for record in records]
        additions = pd.DataFrame([_to_row(record) for record in saved], columns=STORE_COLUMNS)
        combined = additions if df.empty else pd.concat([df, additions], ignore_index=True)
        self._save(combined)
        return saved

    def bulk_update(self, pairs: Sequence[Tuple[str, ContactRecord]]) -> List[ContactRecord]:
        if not pairs:
            return []
        df = self._load()
        positions = {contact_id: pos for pos, contact_id in enumerate(df["contact_id"].tolist())}
        saved: List[ContactRecord] = []
        for contact_id, record in pairs:
            pos = positions.get(contact_id)
            if pos is None:
                logger.warning("Update skipped; contact %s is not in %s", contact_id, self.path)
                continue
            stored = record.replace(contact_id=contact_id)
            row = _to_row(stored)
            for column in STORE_COLUMNS:
                df.iat[pos, df.columns.get_loc(column)] = row[column]
            saved.append(stored)
        if saved:
            self._save(df)
        return saved


__all__ = [
    "ContactRepository",
    "CsvContactRepository",
    "InMemoryContactRepository",
    "RepositoryError",
    "RepositoryUnavailable",
    "STORE_COLUMNS",
]
