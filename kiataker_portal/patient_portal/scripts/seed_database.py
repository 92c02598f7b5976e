"""Seed the local database with demo patient accounts."""

from kiataker_portal.errors import AuthError
from kiataker_portal.patient_portal.database import (
    CredentialRepository,
    ProfileRepository,
    init_database,
)
from kiataker_portal.patient_portal.database.profile_repository import Profile

DEMO_PASSWORD = "password123"

MOCK_PROFILES = [
    Profile(
        id="",
        first_name="Marcus",
        last_name="Reyes",
        middle_initial="A",
        email="marcus.reyes@example.com",
        dob="1987-09-30",
        gender="Male",
        race="White",
        phone="415-555-0147",
        address="2210 Mission St",
        city="San Francisco",
        state="CA",
        zip="94110",
        primary_care="Dr. Emily Carter",
        current_medication=["Lisinopril 10mg"],
        allergies="Penicillin",
        pharmacy="Walgreens, 135 Powell St, San Francisco, CA 94102",
        consentgiven=True,
    ),
    Profile(
        id="",
        first_name="Priya",
        last_name="Nair",
        middle_initial="R",
        email="priya.nair@example.com",
        dob="1994-01-18",
        gender="Female",
        race="Black or African American",
        phone="510-555-0193",
        address="318 Grand Ave",
        city="Oakland",
        state="CA",
        zip="94610",
        primary_care="Dr. Raj Patel",
        allergies="Doxycycline (rash)",
        pharmacy="CVS Pharmacy, 1 Kaiser Plaza, Oakland, CA 94612",
        consentgiven=True,
    ),
    Profile(
        id="",
        first_name="Dana",
        last_name="Okafor",
        middle_initial="K",
        email="dana.okafor@example.com",
        dob="1981-06-02",
        gender="Male",
        race="Asian",
        phone="510-555-0128",
        address="1544 Shattuck Ave",
        city="Berkeley",
        state="CA",
        zip="94709",
        consentgiven=True,
    ),
]


def seed() -> None:
    init_database()
    credentials = CredentialRepository()
    profiles = ProfileRepository()

    for profile in MOCK_PROFILES:
        if profiles.find_by_email(profile.email):
            print(f"Skipping {profile.email} (already seeded)")
            continue
        try:
            session = credentials.sign_up(profile.email, DEMO_PASSWORD)
        except AuthError:
            print(f"Skipping {profile.email} (credentials exist)")
            continue
        profile.id = session.user_id
        profiles.create_profile(profile)
        print(f"Created {profile.first_name} {profile.last_name} <{profile.email}>")

    print(f"\nDemo password for all accounts: {DEMO_PASSWORD}")


if __name__ == "__main__":
    seed()
