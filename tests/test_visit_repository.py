"""Tests for the SQLite visit ledger."""

from dataclasses import replace

import pytest

from kiataker_portal.errors import WriteError
from kiataker_portal.patient_portal.database import ProfileRepository, VisitRepository
from kiataker_portal.patient_portal.database.visit_repository import VisitRecord


@pytest.fixture
def repo(temp_db, sample_profile):
    ProfileRepository().create_profile(sample_profile)
    return VisitRepository()


@pytest.fixture
def record():
    return VisitRecord(
        user_id="user-1",
        exposure_type="Chlamydia",
        diagnosis="Exposure to chlamydia",
        medication_name="Doxycycline 100mg",
        medication_directions="twice daily x 7 days",
        medication_qty="14 tablets, no refills",
        instructions="Limit sun exposure.",
        pharmacy_sent="123 Main St",
        patient_name="Jane Doe",
        patient_dob="1990-04-12",
        patient_email="jane.doe@email.com",
    )


class TestAppendVisitRecord:
    """Tests for append_visit_record."""

    def test_assigns_id_and_timestamp(self, repo, record):
        stored = repo.append_visit_record(record)
        assert stored.id
        assert stored.created_at
        assert record.id is None

    def test_stored_fields(self, repo, record):
        stored = repo.append_visit_record(record)
        [loaded] = repo.list_visit_records("user-1")
        assert loaded == stored

    def test_each_append_is_a_new_row(self, repo, record):
        first = repo.append_visit_record(record)
        second = repo.append_visit_record(record)
        assert first.id != second.id
        assert len(repo.list_visit_records("user-1")) == 2

    def test_unknown_user_is_write_error(self, repo, record):
        with pytest.raises(WriteError):
            repo.append_visit_record(replace(record, user_id="nobody"))


class TestListVisitRecords:
    """Tests for list_visit_records."""

    def test_newest_first(self, repo, record):
        older = repo.append_visit_record(replace(record, exposure_type="Syphilis"))
        newer = repo.append_visit_record(record)
        assert [r.id for r in repo.list_visit_records("user-1")] == [newer.id, older.id]

    def test_limit(self, repo, record):
        for _ in range(3):
            repo.append_visit_record(record)
        assert len(repo.list_visit_records("user-1", limit=2)) == 2

    def test_other_users_not_listed(self, repo, record):
        repo.append_visit_record(record)
        assert repo.list_visit_records("user-2") == []
