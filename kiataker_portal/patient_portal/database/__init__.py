from .connection import get_connection, init_database
from .profile_repository import ProfileRepository
from .visit_repository import VisitRepository
from .credential_repository import CredentialRepository
from .outbox_repository import OutboxRepository

__all__ = [
    "get_connection",
    "init_database",
    "ProfileRepository",
    "VisitRepository",
    "CredentialRepository",
    "OutboxRepository",
]
