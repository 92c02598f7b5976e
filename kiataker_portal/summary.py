"""Clinical visit summary and visit record assembly."""

from dataclasses import dataclass
from datetime import date

from kiataker_portal.errors import ValidationError
from kiataker_portal.patient_portal.database.profile_repository import Profile
from kiataker_portal.patient_portal.database.visit_repository import VisitRecord
from kiataker_portal.visit_flow import VisitSession, derive_plan

VISIT_TYPE = "STD Exposure (Telehealth)"
PROVIDER_LABEL = "Kiataker Telehealth Provider"
FOLLOW_UP = "Follow up with PCP within 3 days for STD screening."

ADHERENCE_NOTE = (
    "Take every dose exactly as directed, even if you feel well, "
    "and do not share your medication."
)
ABSTINENCE_NOTE = (
    "Avoid sexual contact until you and your partner(s) have completed "
    "treatment and for 7 days afterward."
)

# Profile fields the summary needs
REQUIRED_PROFILE_FIELDS = ["first_name", "last_name", "dob", "email"]


@dataclass(frozen=True)
class VisitSummaryView:
    """Structured clinical summary shown before finalizing."""
    patient_name: str
    date_of_service: str
    dob: str
    visit_type: str
    provider: str
    reason_for_visit: str
    diagnosis: str
    medication_line: str
    quantity_line: str
    pharmacy_line: str
    instructions: tuple[str, ...]
    follow_up: str

    def render(self) -> str:
        """Plain text rendering (markdown-friendly)."""
        lines = [
            "**CLINICAL VISIT SUMMARY**",
            "",
            f"- Patient: {self.patient_name}",
            f"- Date of Service: {self.date_of_service}",
            f"- DOB: {self.dob}",
            f"- Visit Type: {self.visit_type}",
            f"- Provider: {self.provider}",
            "",
            "**Reason for Visit**",
            self.reason_for_visit,
            "",
            "**Diagnosis**",
            self.diagnosis,
            "",
            "**Treatment Provided**",
            f"- {self.medication_line}",
            f"- {self.quantity_line}",
            f"- {self.pharmacy_line}",
            "",
            "**Instructions**",
        ]
        lines.extend(f"- {item}" for item in self.instructions)
        lines.extend(["", "**Follow-Up**", self.follow_up])
        return "\n".join(lines)


def diagnosis_for(exposure_type: str) -> str:
    return f"Exposure to {exposure_type.lower()}"


def _check_inputs(session: VisitSession, profile: Profile) -> None:
    missing = [name for name in REQUIRED_PROFILE_FIELDS if not getattr(profile, name, None)]
    if not session.exposure_type:
        missing.append("exposure_type")
    if not session.pharmacy_address:
        missing.append("pharmacy_address")
    if missing:
        raise ValidationError(f"Cannot build visit summary, missing: {', '.join(missing)}")


def build_summary(session: VisitSession, profile: Profile, service_date: date) -> VisitSummaryView:
    """Derive the clinical summary. Same inputs always give the same document."""
    _check_inputs(session, profile)
    plan = derive_plan(session.has_doxycycline_allergy)

    return VisitSummaryView(
        patient_name=f"{profile.first_name} {profile.last_name}",
        date_of_service=service_date.strftime("%m/%d/%Y"),
        dob=profile.dob,
        visit_type=VISIT_TYPE,
        provider=PROVIDER_LABEL,
        reason_for_visit=(
            f"Patient reports a recent exposure to {session.exposure_type} "
            f"through a sexual partner who tested positive."
        ),
        diagnosis=diagnosis_for(session.exposure_type),
        medication_line=f"Medication: {plan.medication_name}, {plan.directions}",
        quantity_line=f"Quantity: {plan.quantity}",
        pharmacy_line=f"Sent to: {session.pharmacy_address}",
        instructions=(ADHERENCE_NOTE, plan.instruction, ABSTINENCE_NOTE),
        follow_up=FOLLOW_UP,
    )


def build_visit_record(session: VisitSession, profile: Profile) -> VisitRecord:
    """Assemble the immutable record that is archived and emailed."""
    _check_inputs(session, profile)
    plan = derive_plan(session.has_doxycycline_allergy)

    return VisitRecord(
        user_id=session.patient_id,
        exposure_type=session.exposure_type,
        diagnosis=diagnosis_for(session.exposure_type),
        medication_name=plan.medication_name,
        medication_directions=plan.directions,
        medication_qty=plan.quantity,
        instructions=plan.instruction,
        pharmacy_sent=session.pharmacy_address,
        patient_name=f"{profile.first_name} {profile.last_name}",
        patient_dob=profile.dob,
        patient_email=profile.email,
    )
