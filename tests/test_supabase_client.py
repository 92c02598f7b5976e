"""Tests for the hosted backend adapters with a mocked HTTP session."""

from unittest.mock import MagicMock

import pytest
import requests

from kiataker_portal.errors import AuthError, DispatchError, NotFoundError, PortalError, ReadError, WriteError
from kiataker_portal.patient_portal.database.credential_repository import AuthSession
from kiataker_portal.supabase_client import (
    BackendClient,
    SupabaseIdentityProvider,
    SupabaseNotificationDispatcher,
    SupabaseProfileStore,
    SupabaseVisitLedger,
)
from kiataker_portal.summary import build_visit_record
from kiataker_portal.visit_engine import VisitFlowEngine
from kiataker_portal.visit_flow import Stage, VisitSession


def _response(status_code=200, data=None):
    response = MagicMock()
    response.status_code = status_code
    response.content = b"" if data is None else b"{...}"
    response.json.return_value = data
    return response


@pytest.fixture
def http():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(http):
    return BackendClient(base_url="https://example.supabase.co/", api_key="anon-key", timeout=5, session=http)


class TestBackendClient:
    """Tests for request handling and error mapping."""

    def test_requires_url_and_key(self, monkeypatch):
        monkeypatch.setattr("kiataker_portal.config.SUPABASE_URL", None)
        monkeypatch.setattr("kiataker_portal.config.SUPABASE_ANON_KEY", None)
        with pytest.raises(PortalError):
            BackendClient(session=MagicMock())

    def test_sends_headers_and_timeout(self, client, http):
        http.request.return_value = _response(data=[{"id": "1"}])
        assert client.request("GET", "/rest/v1/users", NotFoundError) == [{"id": "1"}]

        args, kwargs = http.request.call_args
        assert args == ("GET", "https://example.supabase.co/rest/v1/users")
        assert kwargs["timeout"] == 5
        assert kwargs["headers"]["apikey"] == "anon-key"
        assert kwargs["headers"]["Authorization"] == "Bearer anon-key"

    def test_access_token_used(self, client, http):
        http.request.return_value = _response(data={})
        client.set_access_token("user-token")
        client.request("GET", "/rest/v1/users", NotFoundError)
        assert http.request.call_args[1]["headers"]["Authorization"] == "Bearer user-token"

    def test_timeout(self, client, http):
        http.request.side_effect = requests.exceptions.Timeout()
        with pytest.raises(WriteError, match="too long"):
            client.request("POST", "/rest/v1/std_visits", WriteError)

    def test_connection_error(self, client, http):
        http.request.side_effect = requests.exceptions.ConnectionError()
        with pytest.raises(DispatchError, match="Failed to connect"):
            client.request("POST", "/functions/v1/send-2fa", DispatchError)

    def test_error_status_uses_message(self, client, http):
        http.request.return_value = _response(400, {"error_description": "Invalid login credentials"})
        with pytest.raises(AuthError, match="Invalid login credentials"):
            client.request("POST", "/auth/v1/token", AuthError)

    def test_error_status_without_body(self, client, http):
        response = _response(500)
        response.json.side_effect = ValueError("no json")
        http.request.return_value = response
        with pytest.raises(WriteError, match="API error: 500"):
            client.request("POST", "/rest/v1/std_visits", WriteError)

    def test_empty_body(self, client, http):
        http.request.return_value = _response(204)
        assert client.request("PATCH", "/rest/v1/users", WriteError) is None

    def test_plain_text_body(self, client, http):
        response = _response(200)
        response.content = b"Email sent"
        response.text = "Email sent"
        response.json.side_effect = ValueError("Expecting value")
        http.request.return_value = response
        assert client.request("POST", "/functions/v1/send-visit-summary", DispatchError) == "Email sent"


class TestIdentityProvider:
    """Tests for email/password auth."""

    def test_authenticate_sets_token(self, client, http):
        http.request.return_value = _response(
            data={"access_token": "tok", "user": {"id": "user-1", "email": "jane.doe@email.com"}}
        )
        session = SupabaseIdentityProvider(client).authenticate("jane.doe@email.com", "secret1")
        assert session == AuthSession(user_id="user-1", email="jane.doe@email.com", access_token="tok")
        assert client.access_token == "tok"
        assert http.request.call_args[1]["params"] == {"grant_type": "password"}

    def test_authenticate_without_token(self, client, http):
        http.request.return_value = _response(data={"user": {"id": "user-1"}})
        with pytest.raises(AuthError):
            SupabaseIdentityProvider(client).authenticate("jane.doe@email.com", "secret1")

    def test_sign_up(self, client, http):
        http.request.return_value = _response(data={"user": {"id": "user-1", "email": "jane.doe@email.com"}})
        session = SupabaseIdentityProvider(client).sign_up("jane.doe@email.com", "secret1")
        assert session.user_id == "user-1"


class TestProfileStore:
    """Tests for the users table adapter."""

    def test_get_profile(self, client, http):
        http.request.return_value = _response(
            data=[{"id": "user-1", "first_name": "Jane", "last_name": "Doe", "email": "jane.doe@email.com",
                   "current_medication": ["Aspirin"], "consentgiven": True}]
        )
        profile = SupabaseProfileStore(client).get_profile("user-1")
        assert profile.first_name == "Jane"
        assert profile.current_medication == ["Aspirin"]
        assert http.request.call_args[1]["params"]["id"] == "eq.user-1"

    def test_get_profile_missing(self, client, http):
        http.request.return_value = _response(data=[])
        with pytest.raises(NotFoundError):
            SupabaseProfileStore(client).get_profile("user-1")

    def test_update_profile_missing(self, client, http):
        http.request.return_value = _response(data=[])
        with pytest.raises(NotFoundError):
            SupabaseProfileStore(client).update_profile("user-1", {"pharmacy": "CVS"})

    def test_update_failure_is_write_error(self, client, http):
        http.request.return_value = _response(409, {"message": "conflict"})
        with pytest.raises(WriteError, match="conflict"):
            SupabaseProfileStore(client).update_profile("user-1", {"pharmacy": "CVS"})

    def test_read_timeout_is_read_error(self, client, http):
        http.request.side_effect = requests.exceptions.Timeout()
        with pytest.raises(ReadError, match="too long"):
            SupabaseProfileStore(client).get_profile("user-1")

    def test_list_profile_changes(self, client, http):
        http.request.return_value = _response(
            data=[{"id": 7, "user_id": "user-1", "changes": {"zip": {"old": "1", "new": "2"}},
                   "changed_at": "2026-03-09T10:00:00"}]
        )
        [entry] = SupabaseProfileStore(client).list_profile_changes("user-1")
        assert entry.id == "7"
        assert entry.changes["zip"]["new"] == "2"


class TestVisitLedger:
    """Tests for the std_visits adapter."""

    def _record(self, sample_profile):
        session = VisitSession(
            patient_id="user-1", stage=Stage.SUMMARY, exposure_type="Chlamydia", pharmacy_address="CVS"
        )
        return build_visit_record(session, sample_profile)

    def test_append(self, client, http, sample_profile):
        record = self._record(sample_profile)
        http.request.return_value = _response(data=[{**record.to_payload(), "id": "v1", "created_at": "2026-03-09"}])

        stored = SupabaseVisitLedger(client).append_visit_record(record)

        assert stored.id == "v1"
        assert stored.created_at == "2026-03-09"
        assert http.request.call_args[1]["json"] == [record.to_payload()]

    def test_append_nothing_returned(self, client, http, sample_profile):
        http.request.return_value = _response(data=[])
        with pytest.raises(WriteError):
            SupabaseVisitLedger(client).append_visit_record(self._record(sample_profile))

    def test_append_failure(self, client, http, sample_profile):
        http.request.side_effect = requests.exceptions.Timeout()
        with pytest.raises(WriteError):
            SupabaseVisitLedger(client).append_visit_record(self._record(sample_profile))

    def test_list_newest_first(self, client, http, sample_profile):
        http.request.return_value = _response(data=[])
        SupabaseVisitLedger(client).list_visit_records("user-1", limit=5)
        params = http.request.call_args[1]["params"]
        assert params["order"] == "created_at.desc"
        assert params["limit"] == "5"


class TestNotificationDispatcher:
    """Tests for the email functions."""

    def test_visit_receipt(self, client, http):
        http.request.return_value = _response(data={"ok": True})
        SupabaseNotificationDispatcher(client).send_visit_receipt({"patient_email": "jane.doe@email.com"})
        assert http.request.call_args[0][1].endswith("/functions/v1/send-visit-summary")

    def test_one_time_code(self, client, http):
        http.request.return_value = _response(data={"ok": True})
        SupabaseNotificationDispatcher(client).send_one_time_code("jane.doe@email.com", "123456")
        assert http.request.call_args[0][1].endswith("/functions/v1/send-2fa")
        assert http.request.call_args[1]["json"] == {"email": "jane.doe@email.com", "code": "123456"}

    def test_failure_is_dispatch_error(self, client, http):
        http.request.return_value = _response(500, {"error": "smtp down"})
        with pytest.raises(DispatchError, match="smtp down"):
            SupabaseNotificationDispatcher(client).send_one_time_code("jane.doe@email.com", "123456")


class TestHostedFinalize:
    """Finalize through the hosted dispatcher."""

    def test_plain_text_receipt_counts_as_sent(self, client, http, collaborators):
        profile_store, visit_ledger, _ = collaborators
        response = _response(200)
        response.content = b"Email sent"
        response.text = "Email sent"
        response.json.side_effect = ValueError("Expecting value")
        http.request.return_value = response
        engine = VisitFlowEngine(
            profile_store, visit_ledger, SupabaseNotificationDispatcher(client), treatment_delay=0
        )

        session = engine.start_visit("user-1")
        session = engine.select_exposure(session, "Chlamydia")
        session = engine.acknowledge_partner(session)
        session = engine.confirm_symptom_status(session, False)
        session = engine.confirm_pharmacy(session, "123 Main St")
        result = engine.finalize_visit(session)

        visit_ledger.append_visit_record.assert_called_once()
        assert result.archived is True
        assert result.emailed is True
        assert result.has_warning is False

    def test_history_read_failure_is_read_error(self, client, http):
        http.request.return_value = _response(503, {"message": "upstream unavailable"})
        with pytest.raises(ReadError, match="upstream unavailable"):
            SupabaseVisitLedger(client).list_visit_records("user-1")
