"""Profile repository with CRUD operations and change history."""

import json
import logging
import sqlite3
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime

from kiataker_portal.errors import NotFoundError, WriteError

from .connection import get_connection

logger = logging.getLogger(__name__)


@dataclass
class Profile:
    id: str
    first_name: str
    last_name: str
    email: str
    middle_initial: str | None = None
    dob: str | None = None
    gender: str | None = None
    race: str | None = None
    phone: str | None = None
    profile_photo: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    primary_care: str | None = None
    current_medication: list[str] = field(default_factory=list)
    allergies: str | None = None
    pharmacy: str | None = None
    fax: str | None = None
    billto: str | None = None
    relationship: str | None = None
    responsible_address: str | None = None
    responsible_phone: str | None = None
    citystatezip: str | None = None
    consentgiven: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Profile":
        """Build a profile from a row/JSON dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["current_medication"] = parse_list(values.get("current_medication"))
        values["consentgiven"] = bool(values.get("consentgiven"))
        return cls(**values)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ProfileChange:
    id: str
    user_id: str
    changes: dict
    changed_at: str


def parse_list(value) -> list[str]:
    """Normalize a list field stored as a list, JSON text or comma-separated text."""
    if not value:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
            if isinstance(parsed, list):
                return [str(v) for v in parsed]
        except ValueError:
            pass
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(value)]


class ProfileRepository:
    """Repository for patient profiles with change history."""

    # Fields that can be updated
    PROFILE_FIELDS = [
        "first_name", "last_name", "middle_initial", "dob", "gender", "race",
        "email", "phone", "profile_photo", "address", "city", "state", "zip",
        "primary_care", "current_medication", "allergies", "pharmacy", "fax",
        "billto", "relationship", "responsible_address", "responsible_phone",
        "citystatezip", "consentgiven",
    ]

    def create_profile(self, profile: Profile) -> Profile:
        """Insert a new profile row under an existing identity."""
        profile.id = profile.id or str(uuid.uuid4())
        now = datetime.now().isoformat()
        columns = ["id"] + self.PROFILE_FIELDS + ["created_at", "updated_at"]
        values = [profile.id] + [
            self._to_column(name, getattr(profile, name)) for name in self.PROFILE_FIELDS
        ] + [now, now]

        conn = get_connection()
        try:
            conn.execute(
                f"INSERT INTO users ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                values,
            )
            conn.commit()
        except sqlite3.Error as e:
            raise WriteError(f"Could not create profile: {e}") from e
        finally:
            conn.close()

        logger.info("Created profile %s", profile.id)
        profile.created_at = now
        profile.updated_at = now
        return profile

    def get_profile(self, user_id: str) -> Profile:
        """Get a profile by user id."""
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = cursor.fetchone()
        conn.close()
        if not row:
            raise NotFoundError(f"No profile for user {user_id}")
        return Profile.from_dict(dict(row))

    def find_by_email(self, email: str) -> Profile | None:
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM users WHERE LOWER(email) = LOWER(?)", (email,))
        row = cursor.fetchone()
        conn.close()
        return Profile.from_dict(dict(row)) if row else None

    def update_profile(self, user_id: str, updates: dict) -> Profile:
        """Write the given fields; unknown fields are ignored."""
        valid_updates = {k: v for k, v in updates.items() if k in self.PROFILE_FIELDS}
        if not valid_updates:
            return self.get_profile(user_id)

        set_clause = ", ".join(f"{name} = ?" for name in valid_updates)
        set_clause += ", updated_at = ?"
        values = [self._to_column(k, v) for k, v in valid_updates.items()]
        values += [datetime.now().isoformat(), user_id]

        conn = get_connection()
        try:
            cursor = conn.execute(f"UPDATE users SET {set_clause} WHERE id = ?", values)
            if cursor.rowcount == 0:
                raise NotFoundError(f"No profile for user {user_id}")
            conn.commit()
        except sqlite3.Error as e:
            raise WriteError(f"Could not update profile: {e}") from e
        finally:
            conn.close()

        logger.info("Updated profile %s fields: %s", user_id, ", ".join(valid_updates))
        return self.get_profile(user_id)

    def append_profile_change_audit(self, user_id: str, changes: dict) -> ProfileChange:
        """Record one profile edit in the change history."""
        entry = ProfileChange(
            id=str(uuid.uuid4()),
            user_id=user_id,
            changes=changes,
            changed_at=datetime.now().isoformat(),
        )
        conn = get_connection()
        try:
            conn.execute(
                "INSERT INTO profile_changes_history (id, user_id, changes, changed_at) VALUES (?, ?, ?, ?)",
                (entry.id, entry.user_id, json.dumps(changes), entry.changed_at),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise WriteError(f"Could not record profile change: {e}") from e
        finally:
            conn.close()
        return entry

    def list_profile_changes(self, user_id: str, limit: int = 50) -> list[ProfileChange]:
        """Get the change history for a user, newest first."""
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            SELECT * FROM profile_changes_history
            WHERE user_id = ?
            ORDER BY changed_at DESC, rowid DESC
            LIMIT ?
        """, (user_id, limit))
        rows = cursor.fetchall()
        conn.close()
        return [
            ProfileChange(
                id=row["id"],
                user_id=row["user_id"],
                changes=json.loads(row["changes"]),
                changed_at=row["changed_at"],
            )
            for row in rows
        ]

    # Private helpers

    def _to_column(self, name: str, value):
        if name == "current_medication":
            return json.dumps(parse_list(value))
        if name == "consentgiven":
            return int(bool(value))
        return value
