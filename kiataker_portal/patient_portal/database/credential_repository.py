"""Local identity provider: email/password credentials in SQLite."""

import hashlib
import hmac
import logging
import os
import sqlite3
import uuid
from dataclasses import dataclass

from kiataker_portal.errors import AuthError, WriteError

from .connection import get_connection

logger = logging.getLogger(__name__)

_HASH_ALG = "sha256"
_ITERATIONS = 260_000


@dataclass
class AuthSession:
    """An authenticated identity."""
    user_id: str
    email: str
    access_token: str | None = None


def _hash_password(password: str, salt: bytes | None = None) -> tuple[bytes, bytes]:
    if salt is None:
        salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac(_HASH_ALG, password.encode("utf-8"), salt, _ITERATIONS)
    return salt, dk


def _verify_password(password: str, blob: str) -> bool:
    """Check *password* against a stored "<hex_salt>:<hex_hash>" blob."""
    try:
        hex_salt, hex_hash = blob.split(":", 1)
    except ValueError:
        return False
    _, dk = _hash_password(password, bytes.fromhex(hex_salt))
    return hmac.compare_digest(dk.hex(), hex_hash)


class CredentialRepository:
    """Sign-up, password login and password change against the credentials table."""

    def sign_up(self, email: str, password: str) -> AuthSession:
        email = email.strip().lower()
        salt, dk = _hash_password(password)
        user_id = str(uuid.uuid4())

        conn = get_connection()
        try:
            conn.execute(
                "INSERT INTO credentials (user_id, email, password_blob) VALUES (?, ?, ?)",
                (user_id, email, f"{salt.hex()}:{dk.hex()}"),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise AuthError("An account with this email already exists") from e
        except sqlite3.Error as e:
            raise WriteError(f"Could not create account: {e}") from e
        finally:
            conn.close()

        logger.info("Registered credentials for user %s", user_id)
        return AuthSession(user_id=user_id, email=email)

    def authenticate(self, email: str, password: str) -> AuthSession:
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT user_id, email, password_blob FROM credentials WHERE email = ?",
            (email.strip().lower(),),
        )
        row = cursor.fetchone()
        conn.close()

        if not row or not _verify_password(password, row["password_blob"]):
            logger.warning("Rejected login for %s", email)
            raise AuthError("Invalid login credentials")
        return AuthSession(user_id=row["user_id"], email=row["email"])

    def update_password(self, session: AuthSession, password: str) -> None:
        salt, dk = _hash_password(password)
        conn = get_connection()
        try:
            cursor = conn.execute(
                "UPDATE credentials SET password_blob = ? WHERE user_id = ?",
                (f"{salt.hex()}:{dk.hex()}", session.user_id),
            )
            if cursor.rowcount == 0:
                raise AuthError("Session is no longer valid")
            conn.commit()
        except sqlite3.Error as e:
            raise WriteError(f"Could not update password: {e}") from e
        finally:
            conn.close()
