import pandas as pd
import pytest

from contact_import.models import ContactRecord, RepositoryUnavailable
from contact_import.repository import STORE_COLUMNS, CsvContactRepository, InMemoryContactRepository


def test_csv_store_insert_and_update(tmp_path):
    path = tmp_path / "store" / "contacts.csv"
    repository = CsvContactRepository(str(path))
    assert repository.list_existing() == []

    saved = repository.bulk_insert(
        [
            ContactRecord(name="Alice", email="alice@x.com", followers=1200, tags=["golf", "pga"]),
            ContactRecord(name="Bob", email="bob@x.com", biography="line one\nline two"),
        ]
    )
    assert all(record.contact_id for record in saved)

    loaded = repository.list_existing()
    assert [record.name for record in loaded] == ["Alice", "Bob"]
    assert loaded[0].followers == 1200
    assert loaded[0].tags == ["golf", "pga"]
    assert loaded[1].biography == "line one\nline two"
    assert loaded[1].followers is None

    alice_id = saved[0].contact_id
    updated = repository.bulk_update(
        [(alice_id, loaded[0].replace(phone="555")), ("missing", ContactRecord(name="Ghost"))]
    )
    assert [record.contact_id for record in updated] == [alice_id]

    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    assert list(df.columns) == STORE_COLUMNS
    assert df.loc[df["contact_id"] == alice_id, "phone"].tolist() == ["555"]
    assert len(df) == 2


def test_csv_store_fills_missing_columns(tmp_path):
    path = tmp_path / "contacts.csv"
    path.write_text("contact_id,name,email\nc1,Carol,carol@x.com\n", encoding="utf-8")

    records = CsvContactRepository(str(path)).list_existing()

    assert records == [ContactRecord(contact_id="c1", name="Carol", email="carol@x.com")]


def test_unreadable_store_is_unavailable(tmp_path):
    with pytest.raises(RepositoryUnavailable):
        CsvContactRepository(str(tmp_path)).list_existing()


def test_in_memory_repository_assigns_ids():
    repository = InMemoryContactRepository([ContactRecord(name="Carol")])
    existing = repository.list_existing()
    assert existing[0].contact_id

    saved = repository.bulk_insert([ContactRecord(name="Dan")])
    assert saved[0].contact_id != existing[0].contact_id
    assert len(repository) == 2


def test_store_rows_without_ids_get_distinct_persisted_ids(tmp_path):
    path = tmp_path / "contacts.csv"
    path.write_text("name,email,phone\nCarol,carol@x.com,111\nDan,dan@x.com,222\n", encoding="utf-8")
    repository = CsvContactRepository(str(path))

    first = repository.list_existing()
    second = repository.list_existing()

    ids = [record.contact_id for record in first]
    assert all(ids)
    assert len(set(ids)) == 2
    assert [record.contact_id for record in second] == ids
