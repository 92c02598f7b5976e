"""Local notification dispatcher: emails are queued in an outbox table."""

import json
import logging
import sqlite3
import uuid
from datetime import datetime

from kiataker_portal.errors import DispatchError

from .connection import get_connection

logger = logging.getLogger(__name__)


class OutboxRepository:
    """Queue visit receipts and one-time codes for delivery."""

    def send_visit_receipt(self, payload: dict) -> str:
        recipient = payload.get("patient_email")
        if not recipient:
            raise DispatchError("Visit receipt has no recipient email")
        return self._enqueue("visit_receipt", recipient, payload)

    def send_one_time_code(self, email: str, code: str) -> str:
        return self._enqueue("one_time_code", email, {"email": email, "code": code})

    def list_messages(self, recipient: str, kind: str | None = None) -> list[dict]:
        """Queued messages for a recipient, oldest first."""
        query = "SELECT * FROM notification_outbox WHERE recipient = ?"
        params = [recipient]
        if kind:
            query += " AND kind = ?"
            params.append(kind)
        query += " ORDER BY created_at, rowid"

        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute(query, params)
        rows = cursor.fetchall()
        conn.close()
        return [
            {
                "id": row["id"],
                "kind": row["kind"],
                "recipient": row["recipient"],
                "payload": json.loads(row["payload"]),
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    def _enqueue(self, kind: str, recipient: str, payload: dict) -> str:
        message_id = str(uuid.uuid4())
        conn = get_connection()
        try:
            conn.execute(
                "INSERT INTO notification_outbox (id, kind, recipient, payload, created_at) VALUES (?, ?, ?, ?, ?)",
                (message_id, kind, recipient, json.dumps(payload), datetime.now().isoformat()),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise DispatchError(f"Could not queue {kind}: {e}") from e
        finally:
            conn.close()

        logger.info("Queued %s for %s", kind, recipient)
        return message_id
