"""Wire up the collaborators: hosted backend when configured, local SQLite otherwise."""

import logging
from dataclasses import dataclass

from kiataker_portal import config
from kiataker_portal.patient_portal.database import (
    CredentialRepository,
    OutboxRepository,
    ProfileRepository,
    VisitRepository,
    init_database,
)
from kiataker_portal.supabase_client import (
    BackendClient,
    SupabaseIdentityProvider,
    SupabaseNotificationDispatcher,
    SupabaseProfileStore,
    SupabaseVisitLedger,
)

logger = logging.getLogger(__name__)


@dataclass
class Backend:
    identity: object
    profiles: object
    visits: object
    dispatcher: object
    hosted: bool = False


def build_backend() -> Backend:
    if config.use_hosted_backend():
        client = BackendClient()
        logger.info("Using hosted backend at %s", client.base_url)
        return Backend(
            identity=SupabaseIdentityProvider(client),
            profiles=SupabaseProfileStore(client),
            visits=SupabaseVisitLedger(client),
            dispatcher=SupabaseNotificationDispatcher(client),
            hosted=True,
        )

    init_database()
    logger.info("Using local database")
    return Backend(
        identity=CredentialRepository(),
        profiles=ProfileRepository(),
        visits=VisitRepository(),
        dispatcher=OutboxRepository(),
    )
