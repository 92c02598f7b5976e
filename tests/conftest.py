"""Shared pytest fixtures."""

from datetime import date
from unittest.mock import MagicMock

import pytest

from kiataker_portal.patient_portal.database import connection, init_database
from kiataker_portal.patient_portal.database.profile_repository import Profile
from kiataker_portal.visit_engine import VisitFlowEngine


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the repositories at a fresh SQLite file."""
    db_path = tmp_path / "portal.db"
    monkeypatch.setattr(connection, "DB_PATH", db_path)
    init_database()
    yield db_path


@pytest.fixture
def sample_profile():
    """Profile with every field the visit summary needs."""
    return Profile(
        id="user-1",
        first_name="Jane",
        last_name="Doe",
        email="jane.doe@email.com",
        dob="1990-04-12",
        allergies="Penicillin",
        pharmacy="CVS Pharmacy, 1 Kaiser Plaza, Oakland, CA 94612",
        consentgiven=True,
    )


@pytest.fixture
def allergic_profile(sample_profile):
    sample_profile.allergies = "Sulfa, DOXYcycline (hives)"
    return sample_profile


@pytest.fixture
def collaborators(sample_profile):
    """Mock profile store, visit ledger and dispatcher."""
    profile_store = MagicMock()
    profile_store.get_profile.return_value = sample_profile
    visit_ledger = MagicMock()
    visit_ledger.append_visit_record.side_effect = lambda record: record
    visit_ledger.list_visit_records.return_value = []
    dispatcher = MagicMock()
    return profile_store, visit_ledger, dispatcher


@pytest.fixture
def engine(collaborators):
    """Engine with no treatment delay and a fixed date of service."""
    profile_store, visit_ledger, dispatcher = collaborators
    return VisitFlowEngine(
        profile_store,
        visit_ledger,
        dispatcher,
        treatment_delay=0,
        today=lambda: date(2026, 3, 9),
    )
