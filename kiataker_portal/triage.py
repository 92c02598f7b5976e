"""Static triage screens shown from the home menu."""

from dataclasses import dataclass


@dataclass(frozen=True)
class TriageScreen:
    key: str
    title: str
    description: str
    checklist: tuple[str, ...]

    def render(self) -> str:
        lines = [f"**{self.title}**", "", self.description, ""]
        lines.extend(f"- {item}" for item in self.checklist)
        return "\n".join(lines)


SICK_VISIT = TriageScreen(
    key="sick_visit",
    title="Sick Visit",
    description="Book quick consultations with certified doctors for common illnesses.",
    checklist=(
        "Cold, flu or COVID-like symptoms",
        "Sore throat or ear pain",
        "Urinary tract symptoms",
        "Rash or minor skin infection",
        "Pink eye",
    ),
)

MEDICATION_REFILL = TriageScreen(
    key="medication_refill",
    title="Medication Refill",
    description="Request refills for your existing prescriptions in simple steps.",
    checklist=(
        "Have your current medication name and dose ready",
        "Confirm your pharmacy on file",
        "Controlled substances cannot be refilled here",
    ),
)

EMERGENCY = TriageScreen(
    key="emergency",
    title="Emergency",
    description="Get fast assistance during critical medical emergencies.",
    checklist=(
        "Call 911 for chest pain, trouble breathing or signs of stroke",
        "Call 988 for a mental health crisis",
        "Poison Control: 1-800-222-1222",
        "Go to the nearest emergency room for severe bleeding or injury",
    ),
)

SCREENS = {screen.key: screen for screen in (SICK_VISIT, MEDICATION_REFILL, EMERGENCY)}


def get_screen(key: str) -> TriageScreen:
    return SCREENS[key]
