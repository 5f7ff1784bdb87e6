import pytest

from contact_import.field_mapping import TargetField
from contact_import.models import (
    CandidateRecord,
    ContactRecord,
    FailedRow,
    RepositoryUnavailable,
    Resolution,
    SessionStateError,
    Stage,
)
from contact_import.repository import CsvContactRepository, InMemoryContactRepository
from contact_import.session import ImportSession

CLEAN = "name,email\nAlice,alice@x.com\nBob,bob@x.com\n"
MIXED = "name,email\nAlice,alice@x.com\nBob,not an email\n,carol@x.com\n"


def _existing():
    return [ContactRecord(contact_id="c1", name="Carol", email="carol@x.com", followers=500)]


def test_clean_file_commits_straight_from_mapping():
    repository = InMemoryContactRepository()
    session = ImportSession.start(CLEAN, repository.list_existing())
    session.confirm_mapping()

    report = session.commit(repository)

    assert session.stage is Stage.DONE
    assert [record.name for record in report.inserted] == ["Alice", "Bob"]
    assert len(repository) == 2
    assert session.summary()["inserted"] == 2


def test_mapping_stage_blocks_commit_when_review_is_needed():
    session = ImportSession.start(MIXED, [])
    session.confirm_mapping()
    with pytest.raises(SessionStateError):
        session.commit(InMemoryContactRepository())


def test_commit_requires_confirmed_mapping():
    session = ImportSession.start(CLEAN, [])
    with pytest.raises(SessionStateError):
        session.commit(InMemoryContactRepository())


def test_operator_mapping_overrides_guess():
    session = ImportSession.start("Full Name,Contact\nAlice,alice@x.com\n", [])
    assert session.mapping.target_for("Contact") is TargetField.IGNORE
    session.assign("Contact", TargetField.EMAIL)
    session.confirm_mapping()
    assert session.candidates[0].record.email == "alice@x.com"
    with pytest.raises(SessionStateError):
        session.assign("Contact", "name")


def test_duplicates_get_default_resolution_and_can_be_changed():
    session = ImportSession.start(
        "name,email,followers\nCarol B,CAROL@x.com,\n",
        _existing(),
        default_resolution=Resolution.SKIP,
    )
    session.confirm_mapping()
    assert session.duplicates[0].resolution is Resolution.SKIP

    session.set_resolution(0, "update")
    assert session.duplicate_for_row(0).resolution is Resolution.UPDATE
    session.confirm_review()

    repository = InMemoryContactRepository(_existing())
    report = session.commit(repository)

    assert report.inserted == []
    updated = repository.get("c1")
    assert updated.name == "Carol B"
    assert updated.followers == 500


def test_correction_promotes_row_and_registers_duplicate():
    session = ImportSession.start(MIXED, _existing())
    session.confirm_mapping()
    session.confirm_review()
    session.start_correcting()
    assert session.stage is Stage.CORRECTING

    still_failing = session.revise_row(2, 1, "also bad")
    assert isinstance(still_failing, FailedRow)
    assert [row.row_index for row in session.failed_rows] == [1, 2]

    promoted = session.revise_cells(2, {"name": "Cara", "email": "cara@x.com"})
    assert isinstance(promoted, CandidateRecord)
    assert promoted.row_number == 4
    assert session.duplicate_for_row(2) is None
    assert [row.row_index for row in session.failed_rows] == [1]

    promoted = session.revise_row(1, 1, "carol@x.com")
    assert isinstance(promoted, CandidateRecord)
    duplicate = session.duplicate_for_row(1)
    assert duplicate.existing.contact_id == "c1"
    assert [c.row_index for c in session.candidates] == [0, 1, 2]


def test_revise_cells_rejects_unknown_header():
    session = ImportSession.start(MIXED, [])
    session.confirm_mapping()
    session.confirm_review()
    session.start_correcting()
    with pytest.raises(ValueError):
        session.revise_cells(1, {"phone": "555"})
    with pytest.raises(KeyError):
        session.revise_row(0, 0, "Alice")


def test_correcting_needs_failed_rows():
    session = ImportSession.start(CLEAN, [])
    session.confirm_mapping()
    session.confirm_review()
    with pytest.raises(SessionStateError):
        session.start_correcting()


def test_skip_and_force_commit():
    repository = InMemoryContactRepository()
    session = ImportSession.start(MIXED, [])
    session.confirm_mapping()
    session.confirm_review()
    session.start_correcting()
    session.skip_row(1)

    with pytest.raises(SessionStateError):
        session.commit(repository)

    report = session.commit(repository, force=True)

    assert [record.name for record in report.inserted] == ["Alice"]
    assert sorted(session.skipped_rows) == [1, 2]
    assert session.summary()["skipped_rows"] == 2


def test_reviewed_stage_blocks_commit_with_failures():
    session = ImportSession.start(MIXED, [])
    session.confirm_mapping()
    session.confirm_review()
    with pytest.raises(SessionStateError):
        session.commit(InMemoryContactRepository(), force=True)


def test_back_to_mapping_keeps_table_and_clears_results():
    session = ImportSession.start(MIXED, _existing())
    session.confirm_mapping()
    session.confirm_review()
    table = session.table

    session.back_to_mapping()

    assert session.stage is Stage.UPLOADED
    assert session.table is table
    assert session.candidates == []
    assert session.failed_rows == []
    assert session.duplicates == []
    session.assign("name", TargetField.IGNORE)
    session.confirm_mapping()
    assert len(session.failed_rows) == 3


def test_session_cannot_move_after_done():
    repository = InMemoryContactRepository()
    session = ImportSession.start(CLEAN, [])
    session.confirm_mapping()
    session.commit(repository)
    with pytest.raises(SessionStateError):
        session.back_to_mapping()
    with pytest.raises(SessionStateError):
        session.commit(repository)


def test_updates_against_store_without_ids_stay_separate(tmp_path):
    path = tmp_path / "contacts.csv"
    path.write_text("name,email,phone\nCarol,carol@x.com,111\nDan,dan@x.com,222\n", encoding="utf-8")
    repository = CsvContactRepository(str(path))
    session = ImportSession.start(
        "name,email,location\nCarol B,carol@x.com,TX\nDan B,dan@x.com,CA\n",
        repository.list_existing(),
    )
    session.confirm_mapping()
    session.confirm_review()

    report = session.commit(repository)

    assert len(report.updated) == 2
    assert report.failures == []
    stored = {record.email: record for record in repository.list_existing()}
    assert (stored["carol@x.com"].name, stored["carol@x.com"].phone, stored["carol@x.com"].location) == (
        "Carol B",
        "111",
        "TX",
    )
    assert (stored["dan@x.com"].name, stored["dan@x.com"].phone, stored["dan@x.com"].location) == (
        "Dan B",
        "222",
        "CA",
    )


def test_unavailable_store_leaves_session_retryable():
    class OfflineRepository(InMemoryContactRepository):
        def bulk_insert(self, records):
            raise RepositoryUnavailable("store offline")

    session = ImportSession.start(MIXED, [])
    session.confirm_mapping()
    session.confirm_review()
    session.start_correcting()

    with pytest.raises(RepositoryUnavailable):
        session.commit(OfflineRepository(), force=True)

    assert session.stage is Stage.CORRECTING
    assert session.report is None
    assert [row.row_index for row in session.failed_rows] == [1, 2]
    assert session.skipped_rows == []

    report = session.commit(InMemoryContactRepository(), force=True)
    assert [record.name for record in report.inserted] == ["Alice"]
    assert session.stage is Stage.DONE
    assert sorted(session.skipped_rows) == [1, 2]
