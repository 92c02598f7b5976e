"""Hosted backend integration (auth, table rows and email functions over REST)."""

import logging
from datetime import datetime, timezone

import requests

from kiataker_portal import config
from kiataker_portal.errors import (
    AuthError,
    DispatchError,
    NotFoundError,
    PortalError,
    ReadError,
    WriteError,
)
from kiataker_portal.patient_portal.database.credential_repository import AuthSession
from kiataker_portal.patient_portal.database.profile_repository import Profile, ProfileChange
from kiataker_portal.patient_portal.database.visit_repository import VisitRecord

logger = logging.getLogger(__name__)

USERS_TABLE = "users"
PROFILE_HISTORY_TABLE = "profile_changes_history"
VISITS_TABLE = "std_visits"

SEND_2FA_FUNCTION = "send-2fa"
SEND_VISIT_SUMMARY_FUNCTION = "send-visit-summary"


class BackendClient:
    """Thin wrapper over requests with timeouts and error mapping."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        self.base_url = (base_url or config.SUPABASE_URL or "").rstrip("/")
        self.api_key = api_key or config.SUPABASE_ANON_KEY
        self.timeout = timeout if timeout is not None else config.REQUEST_TIMEOUT
        self.session = session or requests.Session()
        self.access_token: str | None = None

        if not self.base_url or not self.api_key:
            raise PortalError("SUPABASE_URL and SUPABASE_ANON_KEY must be set")

    def set_access_token(self, token: str | None) -> None:
        """Use a signed-in user's token for subsequent row and function calls."""
        self.access_token = token

    def request(
        self,
        method: str,
        path: str,
        error_cls: type[PortalError],
        json=None,
        params: dict | None = None,
        headers: dict | None = None,
    ):
        """Send a request; any failure is raised as *error_cls*."""
        all_headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Content-Type": "application/json",
        }
        if headers:
            all_headers.update(headers)

        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, json=json, params=params, headers=all_headers, timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            logger.warning("%s %s timed out after %ss", method, path, self.timeout)
            raise error_cls("The server took too long to respond")
        except requests.exceptions.ConnectionError:
            logger.warning("%s %s could not connect", method, path)
            raise error_cls("Failed to connect to the server")

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning("%s %s failed (%s): %s", method, path, response.status_code, message)
            raise error_cls(message)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            # Functions may acknowledge with plain text
            return response.text


def _error_message(response) -> str:
    """Pull a readable message out of an error response."""
    try:
        data = response.json()
    except ValueError:
        return f"API error: {response.status_code}"
    if isinstance(data, dict):
        for key in ("error_description", "msg", "message", "error"):
            if data.get(key):
                return str(data[key])
    return f"API error: {response.status_code}"


class SupabaseIdentityProvider:
    """Email/password authentication."""

    def __init__(self, client: BackendClient):
        self.client = client

    def sign_up(self, email: str, password: str) -> AuthSession:
        data = self.client.request(
            "POST", "/auth/v1/signup", AuthError, json={"email": email, "password": password}
        ) or {}
        user = data.get("user") or data
        if not user.get("id"):
            raise AuthError("Signup failed")
        return AuthSession(user_id=user["id"], email=user.get("email", email))

    def authenticate(self, email: str, password: str) -> AuthSession:
        data = self.client.request(
            "POST",
            "/auth/v1/token",
            AuthError,
            json={"email": email, "password": password},
            params={"grant_type": "password"},
        ) or {}
        user = data.get("user") or {}
        if not user.get("id") or not data.get("access_token"):
            raise AuthError("Login failed")

        self.client.set_access_token(data["access_token"])
        return AuthSession(
            user_id=user["id"],
            email=user.get("email", email),
            access_token=data["access_token"],
        )

    def update_password(self, session: AuthSession, password: str) -> None:
        self.client.request("PUT", "/auth/v1/user", AuthError, json={"password": password})


class SupabaseProfileStore:
    """Rows of the users table plus the profile change history."""

    def __init__(self, client: BackendClient):
        self.client = client

    def get_profile(self, user_id: str) -> Profile:
        rows = self.client.request(
            "GET",
            f"/rest/v1/{USERS_TABLE}",
            ReadError,
            params={"id": f"eq.{user_id}", "select": "*"},
        )
        if not rows:
            raise NotFoundError(f"No profile for user {user_id}")
        return Profile.from_dict(rows[0])

    def create_profile(self, profile: Profile) -> Profile:
        row = profile.to_dict()
        row.pop("created_at")
        row.pop("updated_at")
        rows = self.client.request(
            "POST",
            f"/rest/v1/{USERS_TABLE}",
            WriteError,
            json=[row],
            headers={"Prefer": "return=representation"},
        )
        return Profile.from_dict(rows[0]) if rows else profile

    def update_profile(self, user_id: str, updates: dict) -> Profile:
        rows = self.client.request(
            "PATCH",
            f"/rest/v1/{USERS_TABLE}",
            WriteError,
            json=updates,
            params={"id": f"eq.{user_id}"},
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise NotFoundError(f"No profile for user {user_id}")
        return Profile.from_dict(rows[0])

    def append_profile_change_audit(self, user_id: str, changes: dict) -> ProfileChange:
        changed_at = datetime.now(timezone.utc).isoformat()
        rows = self.client.request(
            "POST",
            f"/rest/v1/{PROFILE_HISTORY_TABLE}",
            WriteError,
            json=[{"user_id": user_id, "changes": changes, "changed_at": changed_at}],
            headers={"Prefer": "return=representation"},
        )
        row = rows[0] if rows else {}
        return ProfileChange(
            id=str(row.get("id", "")),
            user_id=user_id,
            changes=changes,
            changed_at=row.get("changed_at", changed_at),
        )

    def list_profile_changes(self, user_id: str, limit: int = 50) -> list[ProfileChange]:
        rows = self.client.request(
            "GET",
            f"/rest/v1/{PROFILE_HISTORY_TABLE}",
            ReadError,
            params={
                "user_id": f"eq.{user_id}",
                "select": "*",
                "order": "changed_at.desc",
                "limit": str(limit),
            },
        ) or []
        return [
            ProfileChange(
                id=str(row.get("id", "")),
                user_id=row.get("user_id", user_id),
                changes=row.get("changes") or {},
                changed_at=row.get("changed_at", ""),
            )
            for row in rows
        ]


class SupabaseVisitLedger:
    """Append-only visit summaries."""

    def __init__(self, client: BackendClient):
        self.client = client

    def append_visit_record(self, record: VisitRecord) -> VisitRecord:
        rows = self.client.request(
            "POST",
            f"/rest/v1/{VISITS_TABLE}",
            WriteError,
            json=[record.to_payload()],
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise WriteError("Visit summary was not saved")
        stored = rows[0]
        logger.info("Saved visit %s for user %s", stored.get("id"), record.user_id)
        return VisitRecord.from_dict({**record.to_payload(), **stored})

    def list_visit_records(self, user_id: str, limit: int | None = None) -> list[VisitRecord]:
        params = {
            "user_id": f"eq.{user_id}",
            "select": "*",
            "order": "created_at.desc",
        }
        if limit:
            params["limit"] = str(limit)
        rows = self.client.request(
            "GET", f"/rest/v1/{VISITS_TABLE}", ReadError, params=params
        ) or []
        return [VisitRecord.from_dict(row) for row in rows]


class SupabaseNotificationDispatcher:
    """Email delivery through serverless functions."""

    def __init__(self, client: BackendClient):
        self.client = client

    def send_visit_receipt(self, payload: dict):
        return self.client.request(
            "POST", f"/functions/v1/{SEND_VISIT_SUMMARY_FUNCTION}", DispatchError, json=payload
        )

    def send_one_time_code(self, email: str, code: str):
        return self.client.request(
            "POST",
            f"/functions/v1/{SEND_2FA_FUNCTION}",
            DispatchError,
            json={"email": email, "code": code},
        )
