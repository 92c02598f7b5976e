"""Visit flow engine: drives a VisitSession against the profile store,
visit ledger and notification dispatcher.

Nothing is written to the ledger or dispatched before finalize_visit().
"""

import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Callable

from kiataker_portal import config, visit_flow
from kiataker_portal.account import compute_profile_changes
from kiataker_portal.errors import DispatchError, TransitionError, ValidationError, WriteError
from kiataker_portal.patient_portal.database.profile_repository import Profile
from kiataker_portal.patient_portal.database.visit_repository import VisitRecord
from kiataker_portal.summary import VisitSummaryView, build_summary, build_visit_record
from kiataker_portal.visit_flow import Stage, VisitSession

logger = logging.getLogger(__name__)


@dataclass
class FinalizeResult:
    """Outcome of a finalize call.

    `session` is the fresh session to continue with (HISTORY view).
    `dispatch_error` is set when the email failed after the record was archived.
    """
    record: VisitRecord
    session: VisitSession
    archived: bool = False
    emailed: bool = False
    dispatch_error: str | None = None

    @property
    def has_warning(self) -> bool:
        return self.dispatch_error is not None


class VisitFlowEngine:
    """Runs the exposure visit for one signed-in patient at a time."""

    def __init__(
        self,
        profile_store,
        visit_ledger,
        dispatcher,
        treatment_delay: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        today: Callable[[], date] = date.today,
    ):
        self.profile_store = profile_store
        self.visit_ledger = visit_ledger
        self.dispatcher = dispatcher
        self.treatment_delay = (
            config.TREATMENT_DELAY_SECONDS if treatment_delay is None else treatment_delay
        )
        self._sleep = sleep
        self._today = today

    # Session lifecycle

    def start_visit(self, patient_id: str) -> VisitSession:
        """New session at EXPOSURE with the allergy flag read from the profile."""
        profile = self.profile_store.get_profile(patient_id)
        session = visit_flow.new_session(patient_id, profile.allergies)
        logger.info(
            "Started exposure visit for %s (doxycycline allergy: %s)",
            patient_id, session.has_doxycycline_allergy,
        )
        return session

    def abandon(self, session: VisitSession) -> VisitSession:
        """Drop the in-progress answers. Nothing is persisted."""
        logger.info("Abandoned exposure visit for %s at %s", session.patient_id, session.stage.value)
        return visit_flow.start_new_visit(session)

    # Stage transitions

    def select_exposure(self, session: VisitSession, exposure_type: str) -> VisitSession:
        return visit_flow.select_exposure(session, exposure_type)

    def acknowledge_partner(self, session: VisitSession) -> VisitSession:
        return visit_flow.acknowledge_partner(session)

    def confirm_symptom_status(self, session: VisitSession, has_symptoms: bool) -> VisitSession:
        """Record symptoms, pause while treatment is "prepared", land on PHARMACY."""
        loading = visit_flow.confirm_symptom_status(session, has_symptoms)
        if self.treatment_delay > 0:
            self._sleep(self.treatment_delay)
        return visit_flow.finish_treatment_loading(loading)

    def confirm_pharmacy(
        self,
        session: VisitSession,
        pharmacy_address: str,
        save_to_profile: bool = False,
    ) -> VisitSession:
        """Accept the pharmacy. A replacement can be saved to the profile first."""
        confirmed = visit_flow.confirm_pharmacy(session, pharmacy_address)
        if save_to_profile:
            self._save_pharmacy(session.patient_id, confirmed.pharmacy_address)
        return confirmed

    def _save_pharmacy(self, patient_id: str, pharmacy: str) -> None:
        """Write the pharmacy to the profile and record the edit in its history."""
        current = self.profile_store.get_profile(patient_id)
        changes = compute_profile_changes(current, {"pharmacy": pharmacy})
        if not changes:
            return
        self.profile_store.update_profile(patient_id, {"pharmacy": pharmacy})
        logger.info("Saved new pharmacy to profile for %s", patient_id)
        try:
            self.profile_store.append_profile_change_audit(patient_id, changes)
        except WriteError as e:
            logger.warning("Profile change history not recorded for %s: %s", patient_id, e)

    def set_delivery_options(self, session: VisitSession, **options) -> VisitSession:
        return visit_flow.set_delivery_options(session, **options)

    def go_back(self, session: VisitSession) -> VisitSession:
        return visit_flow.go_back(session)

    # Summary and finalize

    def build_summary(self, session: VisitSession, profile: Profile | None = None) -> VisitSummaryView:
        if session.stage != Stage.SUMMARY:
            raise TransitionError(f"No summary available at stage '{session.stage.value}'")
        profile = profile or self.profile_store.get_profile(session.patient_id)
        return build_summary(session, profile, self._today())

    def finalize_visit(self, session: VisitSession, profile: Profile | None = None) -> FinalizeResult:
        """Archive and/or email the visit according to the delivery toggles.

        Archive failure raises WriteError and nothing is emailed, so a retry
        never sends a duplicate. Email failure after a successful archive is
        reported on the result instead of raised. Email failure with archiving
        off raises DispatchError. On any raise the caller keeps its session.
        """
        if session.stage != Stage.SUMMARY:
            raise TransitionError(f"Cannot finalize at stage '{session.stage.value}'")

        profile = profile or self.profile_store.get_profile(session.patient_id)
        record = build_visit_record(session, profile)
        delivery = session.delivery
        archived = False
        emailed = False
        dispatch_error = None

        if delivery.archive:
            try:
                record = self.visit_ledger.append_visit_record(record)
            except WriteError:
                logger.error("Archiving visit failed for %s", session.patient_id)
                raise
            archived = True

        if delivery.email:
            try:
                self.dispatcher.send_visit_receipt(record.to_payload())
                emailed = True
            except DispatchError as e:
                if not archived:
                    logger.error("Emailing visit summary failed for %s", session.patient_id)
                    raise
                logger.warning(
                    "Visit %s archived but email to %s failed: %s",
                    record.id, record.patient_email, e,
                )
                dispatch_error = str(e)

        if delivery.notify_pcp:
            # TODO: route to the PCP notification endpoint once one exists
            logger.info("PCP notification requested for %s; no PCP channel configured", session.patient_id)

        if not archived and not emailed:
            logger.info("Visit for %s finalized without archive or email", session.patient_id)

        next_session = visit_flow.view_history(visit_flow.start_new_visit(session))
        return FinalizeResult(
            record=record,
            session=next_session,
            archived=archived,
            emailed=emailed,
            dispatch_error=dispatch_error,
        )

    # History

    def view_history(self, session: VisitSession) -> tuple[VisitSession, list[VisitRecord]]:
        """Switch to the history view and load the patient's records."""
        return visit_flow.view_history(session), self.list_history(session.patient_id)

    def leave_history(self, session: VisitSession) -> VisitSession:
        """History never resumes a visit; a fresh one starts at EXPOSURE."""
        if session.stage != Stage.HISTORY:
            raise TransitionError(f"Not in the history view (stage '{session.stage.value}')")
        return self.start_visit(session.patient_id)

    def list_history(
        self,
        patient_id: str,
        limit: int | None = None,
        exposure_type: str | None = None,
    ) -> list[VisitRecord]:
        """Completed visits, newest first."""
        if exposure_type is not None and exposure_type not in visit_flow.EXPOSURE_TYPES:
            raise ValidationError(f"Unknown exposure type {exposure_type!r}")
        records = self.visit_ledger.list_visit_records(patient_id)
        if exposure_type is not None:
            records = [r for r in records if r.exposure_type == exposure_type]
        if limit:
            records = records[:limit]
        return records
