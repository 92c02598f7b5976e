"""Account creation, two-step login and profile management."""

import logging
import re
import secrets
import time
from dataclasses import dataclass, field
from typing import Callable

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from kiataker_portal import config
from kiataker_portal.errors import AuthError, DispatchError, ValidationError, WriteError
from kiataker_portal.patient_portal.database.credential_repository import AuthSession
from kiataker_portal.patient_portal.database.profile_repository import (
    Profile,
    ProfileChange,
    ProfileRepository,
    parse_list,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
CODE_LENGTH = 6

# Fields that hold lists and are compared element-wise
LIST_FIELDS = {"current_medication"}


def normalize_dob(v):
    """Convert MM/DD/YYYY or MM-DD-YYYY to YYYY-MM-DD."""
    if not v:
        return None
    v = str(v).strip()
    if re.match(r"^\d{4}-\d{2}-\d{2}$", v):
        return v
    match = re.match(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$", v)
    if match:
        m, d, y = match.groups()
        return f"{y}-{m.zfill(2)}-{d.zfill(2)}"
    raise ValueError("Date of birth must be YYYY-MM-DD or MM/DD/YYYY")


def _format_errors(error: PydanticValidationError) -> str:
    messages = []
    for item in error.errors():
        loc = ".".join(str(part) for part in item["loc"])
        msg = item["msg"].removeprefix("Value error, ")
        messages.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(messages)


class RegistrationForm(BaseModel):
    """Everything collected by the create-profile screens."""

    # Patient information
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    middle_initial: str = Field(min_length=1, max_length=1)
    dob: str
    gender: str = Field(min_length=1)
    race: str = Field(min_length=1)
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip: str = Field(min_length=1)
    email: str
    phone: str = Field(min_length=1)
    password: str = Field(min_length=6)
    confirm_password: str
    profile_photo: str | None = None

    # Medical
    primary_care: str | None = None
    current_medication: list[str] = Field(default_factory=list)
    allergies: str | None = None
    pharmacy: str | None = None
    fax: str | None = None

    # Party responsible
    billto: str | None = None
    relationship: str | None = None
    responsible_address: str | None = None
    responsible_phone: str | None = None
    citystatezip: str | None = None
    consentgiven: bool = False

    @field_validator(
        "first_name", "last_name", "middle_initial", "gender", "race",
        "address", "city", "state", "zip", "phone", mode="before",
    )
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="before")
    @classmethod
    def check_email(cls, v):
        v = (v or "").strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Please enter a valid email address")
        return v

    @field_validator("dob", mode="before")
    @classmethod
    def check_dob(cls, v):
        dob = normalize_dob(v)
        if not dob:
            raise ValueError("Date of birth is required")
        return dob

    @field_validator("current_medication", mode="before")
    @classmethod
    def split_medications(cls, v):
        return parse_list(v)

    @model_validator(mode="after")
    def check_passwords_and_consent(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        if not self.consentgiven:
            raise ValueError("Please provide consent to submit the form")
        return self

    def to_profile(self, user_id: str) -> Profile:
        data = self.model_dump(exclude={"password", "confirm_password"})
        return Profile(id=user_id, **data)


class ProfileUpdateForm(BaseModel):
    """Edit-profile screen. Unset fields are left untouched."""

    first_name: str | None = None
    last_name: str | None = None
    middle_initial: str | None = None
    dob: str | None = None
    gender: str | None = None
    race: str | None = None
    email: str | None = None
    phone: str | None = None
    profile_photo: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    primary_care: str | None = None
    current_medication: list[str] | None = None
    allergies: str | None = None
    pharmacy: str | None = None
    fax: str | None = None
    billto: str | None = None
    relationship: str | None = None
    responsible_address: str | None = None
    responsible_phone: str | None = None
    citystatezip: str | None = None
    consentgiven: bool | None = None
    password: str | None = None
    confirm_password: str | None = None

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def required_names(cls, v):
        if v is not None and not str(v).strip():
            raise ValueError("Name fields cannot be blank")
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="before")
    @classmethod
    def check_email(cls, v):
        if v is None:
            return v
        v = str(v).strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Please enter a valid email address")
        return v

    @field_validator("dob", mode="before")
    @classmethod
    def check_dob(cls, v):
        return normalize_dob(v)

    @field_validator("current_medication", mode="before")
    @classmethod
    def split_medications(cls, v):
        return None if v is None else parse_list(v)

    @model_validator(mode="after")
    def check_passwords(self):
        if self.password and self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self

    def profile_updates(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude={"password", "confirm_password"})


@dataclass
class PendingVerification:
    """Login that passed the password step and awaits the emailed code."""
    session: AuthSession
    profile: Profile
    code: str = field(repr=False)
    issued_at: float = 0.0


def compute_profile_changes(current: Profile, updates: dict) -> dict:
    """Field-by-field differences: {field: {"old": ..., "new": ...}}."""
    changes = {}
    for name, new_value in updates.items():
        old_value = getattr(current, name, None)
        if name in LIST_FIELDS:
            old_list = parse_list(old_value)
            new_list = parse_list(new_value)
            if old_list != new_list:
                changes[name] = {"old": ", ".join(old_list), "new": ", ".join(new_list)}
        elif old_value != new_value:
            changes[name] = {"old": old_value, "new": new_value}
    return changes


def generate_code() -> str:
    """Random six-digit code, never starting with zero."""
    return str(100000 + secrets.randbelow(900000))


class AccountService:
    """Registration, login with emailed code, and profile edits."""

    def __init__(
        self,
        identity,
        profile_store,
        dispatcher,
        code_generator: Callable[[], str] = generate_code,
        clock: Callable[[], float] = time.time,
        code_ttl: int | None = None,
    ):
        self.identity = identity
        self.profile_store = profile_store
        self.dispatcher = dispatcher
        self._code_generator = code_generator
        self._clock = clock
        self.code_ttl = config.ONE_TIME_CODE_TTL_SECONDS if code_ttl is None else code_ttl

    def register(self, form_data: dict) -> Profile:
        """Create the login, then the profile under the new identity."""
        try:
            form = RegistrationForm(**form_data)
        except PydanticValidationError as e:
            raise ValidationError(_format_errors(e)) from e

        session = self.identity.sign_up(form.email, form.password)
        profile = self.profile_store.create_profile(form.to_profile(session.user_id))
        logger.info("Registered user %s", session.user_id)
        return profile

    def login(self, email: str, password: str) -> PendingVerification:
        """Check the password and email a one-time code."""
        if not email or not password:
            raise ValidationError("Please enter email and password")

        session = self.identity.authenticate(email.strip(), password)
        profile = self.profile_store.get_profile(session.user_id)

        code = self._code_generator()
        try:
            self.dispatcher.send_one_time_code(profile.email, code)
        except DispatchError as e:
            logger.error("Could not send verification code to %s: %s", profile.email, e)
            raise DispatchError("We couldn't send your verification code. Please try again.") from e

        return PendingVerification(
            session=session, profile=profile, code=code, issued_at=self._clock()
        )

    def verify_code(self, pending: PendingVerification, code: str) -> AuthSession:
        code = (code or "").strip()
        if len(code) != CODE_LENGTH or not code.isdigit():
            raise ValidationError("Please enter the 6-digit code sent to your email.")
        if self._clock() - pending.issued_at > self.code_ttl:
            raise AuthError("The verification code has expired. Please log in again.")
        if not secrets.compare_digest(code, pending.code):
            raise AuthError("The verification code is incorrect.")
        logger.info("User %s verified", pending.session.user_id)
        return pending.session

    def update_profile(self, session: AuthSession, form_data: dict) -> tuple[Profile, dict]:
        """Apply profile edits; returns the new profile and the recorded changes."""
        try:
            form = ProfileUpdateForm(**form_data)
        except PydanticValidationError as e:
            raise ValidationError(_format_errors(e)) from e

        current = self.profile_store.get_profile(session.user_id)
        updates = {
            k: v for k, v in form.profile_updates().items()
            if k in ProfileRepository.PROFILE_FIELDS
        }
        changes = compute_profile_changes(current, updates)

        if form.password:
            self.identity.update_password(session, form.password)

        profile = self.profile_store.update_profile(session.user_id, updates) if changes else current

        if changes:
            try:
                self.profile_store.append_profile_change_audit(session.user_id, changes)
            except WriteError as e:
                logger.warning("Profile change history not recorded for %s: %s", session.user_id, e)

        return profile, changes

    def profile_history(self, session: AuthSession) -> list[ProfileChange]:
        return self.profile_store.list_profile_changes(session.user_id)
