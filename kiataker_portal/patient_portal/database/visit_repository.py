"""Visit ledger backed by SQLite: append-only visit summaries."""

import logging
import sqlite3
import uuid
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime

from kiataker_portal.errors import WriteError

from .connection import get_connection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VisitRecord:
    """Snapshot of a finalized visit. Never references live profile data."""
    user_id: str
    exposure_type: str
    diagnosis: str
    medication_name: str
    medication_directions: str
    medication_qty: str
    instructions: str
    pharmacy_sent: str
    patient_name: str
    patient_dob: str | None
    patient_email: str
    id: str | None = None
    created_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "VisitRecord":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_payload(self) -> dict:
        """Row/JSON payload without the ledger-assigned fields."""
        payload = asdict(self)
        payload.pop("id")
        payload.pop("created_at")
        return payload


class VisitRepository:
    """Append and list visit records."""

    COLUMNS = [
        "id", "user_id", "exposure_type", "diagnosis", "medication_name",
        "medication_directions", "medication_qty", "instructions", "pharmacy_sent",
        "patient_name", "patient_dob", "patient_email", "created_at",
    ]

    def append_visit_record(self, record: VisitRecord) -> VisitRecord:
        """Insert a record; returns it with id and creation time assigned."""
        stored = replace(
            record,
            id=str(uuid.uuid4()),
            created_at=datetime.now().isoformat(),
        )
        values = [getattr(stored, name) for name in self.COLUMNS]

        conn = get_connection()
        try:
            conn.execute(
                f"INSERT INTO std_visits ({', '.join(self.COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in self.COLUMNS)})",
                values,
            )
            conn.commit()
        except sqlite3.Error as e:
            raise WriteError(f"Could not save visit summary: {e}") from e
        finally:
            conn.close()

        logger.info("Saved visit %s for user %s", stored.id, stored.user_id)
        return stored

    def list_visit_records(self, user_id: str, limit: int | None = None) -> list[VisitRecord]:
        """Get visit history for a user, newest first."""
        conn = get_connection()
        cursor = conn.cursor()

        query = "SELECT * FROM std_visits WHERE user_id = ? ORDER BY created_at DESC, rowid DESC"
        params: list = [user_id]
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        cursor.execute(query, params)
        rows = cursor.fetchall()
        conn.close()

        return [VisitRecord.from_dict(dict(row)) for row in rows]
