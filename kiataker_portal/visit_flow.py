"""State machine for the STD exposure visit workflow.

Every transition takes a VisitSession and returns a new one; sessions are
never mutated in place.
"""

from dataclasses import dataclass, field, replace
from enum import Enum

from kiataker_portal.errors import TransitionError, ValidationError


class Stage(Enum):
    """Stages in the exposure visit workflow."""
    EXPOSURE = "exposure"
    PARTNER = "partner"
    SYMPTOMS = "symptoms"
    TREATMENT_LOADING = "treatment_loading"
    PHARMACY = "pharmacy"
    SUMMARY = "summary"
    HISTORY = "history"


# Linear order; HISTORY sits outside it
STAGE_ORDER = [
    Stage.EXPOSURE,
    Stage.PARTNER,
    Stage.SYMPTOMS,
    Stage.TREATMENT_LOADING,
    Stage.PHARMACY,
    Stage.SUMMARY,
]

EXPOSURE_TYPES = ("Chlamydia", "Gonorrhea", "Syphilis", "Trichomoniasis")

PARTNER_OPTIONS = ("My partner tested positive and told me",)

SYMPTOM_OPTIONS = {
    False: "I have no symptoms",
    True: "I have symptoms",
}

# Session fields collected at each stage, cleared when navigating back to it
STAGE_FIELDS = {
    Stage.EXPOSURE: ("exposure_type",),
    Stage.PARTNER: ("partner_acknowledged",),
    Stage.SYMPTOMS: ("has_symptoms",),
    Stage.PHARMACY: ("pharmacy_address",),
}

FIELD_DEFAULTS = {
    "exposure_type": None,
    "partner_acknowledged": False,
    "has_symptoms": None,
    "pharmacy_address": None,
}

# Allowed "Go Back" moves
BACK_TRANSITIONS = {
    Stage.PARTNER: Stage.EXPOSURE,
    Stage.SYMPTOMS: Stage.PARTNER,
    Stage.PHARMACY: Stage.SYMPTOMS,
}

ALLERGY_MARKER = "doxy"


@dataclass(frozen=True)
class DeliveryOptions:
    """How a finalized visit is delivered."""
    email: bool = True
    archive: bool = True
    notify_pcp: bool = False


@dataclass(frozen=True)
class TreatmentPlan:
    medication_name: str
    directions: str
    quantity: str
    instruction: str


AZITHROMYCIN_PLAN = TreatmentPlan(
    medication_name="Azithromycin 1g",
    directions="by mouth x 1 dose",
    quantity="1 dose",
    instruction=(
        "Complete the full course of treatment. This medication was selected "
        "due to reported allergies to standard treatments."
    ),
)

DOXYCYCLINE_PLAN = TreatmentPlan(
    medication_name="Doxycycline 100mg",
    directions="twice daily x 7 days",
    quantity="14 tablets, no refills",
    instruction=(
        "Limit sun exposure; use shade to reduce direct sun exposure while taking "
        "Doxycycline to prevent sun allergy/sensitivity."
    ),
)


@dataclass(frozen=True)
class VisitSession:
    """One patient's pass through the exposure visit."""
    patient_id: str
    has_doxycycline_allergy: bool = False
    stage: Stage = Stage.EXPOSURE

    # Collected answers
    exposure_type: str | None = None
    partner_acknowledged: bool = False
    has_symptoms: bool | None = None
    pharmacy_address: str | None = None

    delivery: DeliveryOptions = field(default_factory=DeliveryOptions)


def has_doxycycline_allergy(allergies: str | None) -> bool:
    """Case-insensitive check of free-text allergies for doxycycline."""
    if not allergies:
        return False
    return ALLERGY_MARKER in allergies.lower()


def derive_plan(allergy_flag: bool) -> TreatmentPlan:
    """Pick the medication plan for the allergy flag."""
    if allergy_flag:
        return AZITHROMYCIN_PLAN
    return DOXYCYCLINE_PLAN


def new_session(patient_id: str, allergies: str | None) -> VisitSession:
    """Start a session, snapshotting the allergy flag from the profile."""
    return VisitSession(
        patient_id=patient_id,
        has_doxycycline_allergy=has_doxycycline_allergy(allergies),
    )


def _require_stage(session: VisitSession, expected: Stage, action: str) -> None:
    if session.stage != expected:
        raise TransitionError(
            f"Cannot {action} at stage '{session.stage.value}' (expected '{expected.value}')"
        )


def select_exposure(session: VisitSession, exposure_type: str) -> VisitSession:
    _require_stage(session, Stage.EXPOSURE, "select an exposure")
    if not exposure_type or exposure_type not in EXPOSURE_TYPES:
        raise ValidationError(
            f"Unknown exposure type {exposure_type!r}; choose one of: {', '.join(EXPOSURE_TYPES)}"
        )
    return replace(session, exposure_type=exposure_type, stage=Stage.PARTNER)


def acknowledge_partner(session: VisitSession) -> VisitSession:
    _require_stage(session, Stage.PARTNER, "acknowledge partner context")
    return replace(session, partner_acknowledged=True, stage=Stage.SYMPTOMS)


def confirm_symptom_status(session: VisitSession, has_symptoms: bool) -> VisitSession:
    """Record the symptom answer. Both answers lead to treatment loading."""
    _require_stage(session, Stage.SYMPTOMS, "confirm symptoms")
    return replace(session, has_symptoms=bool(has_symptoms), stage=Stage.TREATMENT_LOADING)


def finish_treatment_loading(session: VisitSession) -> VisitSession:
    _require_stage(session, Stage.TREATMENT_LOADING, "finish treatment loading")
    return replace(session, stage=Stage.PHARMACY)


def confirm_pharmacy(session: VisitSession, pharmacy_address: str) -> VisitSession:
    _require_stage(session, Stage.PHARMACY, "confirm a pharmacy")
    address = (pharmacy_address or "").strip()
    if not address:
        raise ValidationError("A pharmacy is required to send the prescription")
    return replace(session, pharmacy_address=address, stage=Stage.SUMMARY)


def set_delivery_options(
    session: VisitSession,
    email: bool | None = None,
    archive: bool | None = None,
    notify_pcp: bool | None = None,
) -> VisitSession:
    """Toggle delivery options. Only allowed on the summary."""
    _require_stage(session, Stage.SUMMARY, "change delivery options")
    current = session.delivery
    delivery = DeliveryOptions(
        email=current.email if email is None else email,
        archive=current.archive if archive is None else archive,
        notify_pcp=current.notify_pcp if notify_pcp is None else notify_pcp,
    )
    return replace(session, delivery=delivery)


def go_back(session: VisitSession) -> VisitSession:
    """Step back one stage, clearing everything collected from that stage on."""
    target = BACK_TRANSITIONS.get(session.stage)
    if target is None:
        raise TransitionError(f"Cannot go back from stage '{session.stage.value}'")

    cleared = {}
    for stage in STAGE_ORDER[STAGE_ORDER.index(target):]:
        for name in STAGE_FIELDS.get(stage, ()):
            cleared[name] = FIELD_DEFAULTS[name]
    return replace(session, stage=target, **cleared)


def view_history(session: VisitSession) -> VisitSession:
    """Switch to the history view. Collected answers are left as they are."""
    return replace(session, stage=Stage.HISTORY)


def start_new_visit(session: VisitSession) -> VisitSession:
    """Fresh session at EXPOSURE for the same patient; nothing carries over."""
    return VisitSession(
        patient_id=session.patient_id,
        has_doxycycline_allergy=session.has_doxycycline_allergy,
    )
