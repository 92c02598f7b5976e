"""Tests for the profile repository."""

import pytest

from kiataker_portal.errors import NotFoundError, WriteError
from kiataker_portal.patient_portal.database import ProfileRepository
from kiataker_portal.patient_portal.database.connection import get_connection
from kiataker_portal.patient_portal.database.profile_repository import Profile, parse_list


@pytest.fixture
def repo(temp_db):
    return ProfileRepository()


@pytest.fixture
def stored_profile(repo, sample_profile):
    sample_profile.current_medication = ["Lisinopril 10mg", "Metformin"]
    return repo.create_profile(sample_profile)


class TestParseList:
    """Tests for list field normalization."""

    def test_list(self):
        assert parse_list(["a", "b"]) == ["a", "b"]

    def test_json_text(self):
        assert parse_list('["Lisinopril 10mg", "Metformin"]') == ["Lisinopril 10mg", "Metformin"]

    def test_comma_separated(self):
        assert parse_list("Lisinopril 10mg,  Metformin ,") == ["Lisinopril 10mg", "Metformin"]

    @pytest.mark.parametrize("value", [None, "", []])
    def test_empty(self, value):
        assert parse_list(value) == []


class TestCreateAndGet:
    """Tests for creating and reading profiles."""

    def test_round_trip(self, repo, stored_profile):
        profile = repo.get_profile("user-1")
        assert profile.first_name == "Jane"
        assert profile.email == "jane.doe@email.com"
        assert profile.current_medication == ["Lisinopril 10mg", "Metformin"]
        assert profile.consentgiven is True
        assert profile.created_at is not None

    def test_medication_stored_as_json(self, stored_profile):
        conn = get_connection()
        row = conn.execute("SELECT current_medication FROM users WHERE id = ?", ("user-1",)).fetchone()
        conn.close()
        assert row["current_medication"] == '["Lisinopril 10mg", "Metformin"]'

    def test_generates_id_when_missing(self, repo):
        profile = repo.create_profile(Profile(id="", first_name="A", last_name="B", email="a@b.co"))
        assert profile.id
        assert repo.get_profile(profile.id).email == "a@b.co"

    def test_duplicate_email_is_write_error(self, repo, stored_profile):
        duplicate = Profile(id="user-2", first_name="J", last_name="D", email="jane.doe@email.com")
        with pytest.raises(WriteError):
            repo.create_profile(duplicate)

    def test_get_missing(self, repo):
        with pytest.raises(NotFoundError):
            repo.get_profile("nobody")

    def test_find_by_email_case_insensitive(self, repo, stored_profile):
        assert repo.find_by_email("JANE.DOE@email.com").id == "user-1"
        assert repo.find_by_email("other@email.com") is None

    def test_from_dict_ignores_unknown_keys(self):
        profile = Profile.from_dict(
            {"id": "x", "first_name": "A", "last_name": "B", "email": "a@b.co", "role": "admin", "consentgiven": 1}
        )
        assert profile.consentgiven is True
        assert not hasattr(profile, "role")


class TestUpdateProfile:
    """Tests for update_profile."""

    def test_updates_fields(self, repo, stored_profile):
        updated = repo.update_profile("user-1", {"pharmacy": "Rite Aid", "allergies": "Doxycycline"})
        assert updated.pharmacy == "Rite Aid"
        assert updated.allergies == "Doxycycline"
        assert updated.first_name == "Jane"

    def test_ignores_unknown_fields(self, repo, stored_profile):
        updated = repo.update_profile("user-1", {"id": "hijack", "password": "x"})
        assert updated.id == "user-1"

    def test_list_field(self, repo, stored_profile):
        updated = repo.update_profile("user-1", {"current_medication": "Aspirin, Zinc"})
        assert updated.current_medication == ["Aspirin", "Zinc"]

    def test_missing_profile(self, repo):
        with pytest.raises(NotFoundError):
            repo.update_profile("nobody", {"pharmacy": "CVS"})


class TestProfileChangeHistory:
    """Tests for the change audit trail."""

    def test_append_and_list(self, repo, stored_profile):
        repo.append_profile_change_audit("user-1", {"pharmacy": {"old": "CVS", "new": "Rite Aid"}})
        repo.append_profile_change_audit("user-1", {"phone": {"old": None, "new": "555-0101"}})

        history = repo.list_profile_changes("user-1")
        assert len(history) == 2
        assert history[0].changes == {"phone": {"old": None, "new": "555-0101"}}
        assert history[1].changes["pharmacy"]["new"] == "Rite Aid"

    def test_limit(self, repo, stored_profile):
        for i in range(3):
            repo.append_profile_change_audit("user-1", {"zip": {"old": str(i), "new": str(i + 1)}})
        assert len(repo.list_profile_changes("user-1", limit=2)) == 2

    def test_unknown_user_is_write_error(self, repo):
        with pytest.raises(WriteError):
            repo.append_profile_change_audit("nobody", {"zip": {"old": "1", "new": "2"}})

    def test_empty_history(self, repo, stored_profile):
        assert repo.list_profile_changes("user-1") == []
