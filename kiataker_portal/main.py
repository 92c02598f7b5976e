"""Kiataker patient portal: console front end."""

import logging
import sys

from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.prompt import Prompt
from rich.status import Status
from rich.table import Table

from kiataker_portal import config, triage
from kiataker_portal.account import AccountService, PendingVerification
from kiataker_portal.backend import build_backend
from kiataker_portal.errors import AuthError, PortalError, ValidationError
from kiataker_portal.visit_engine import VisitFlowEngine
from kiataker_portal.visit_flow import (
    EXPOSURE_TYPES,
    PARTNER_OPTIONS,
    SYMPTOM_OPTIONS,
    Stage,
    VisitSession,
)

console = Console()
logger = logging.getLogger(__name__)

BACK_WORDS = ("back", "go back")
HISTORY_WORDS = ("history",)
YES_WORDS = ("", "1", "y", "yes", "ok", "confirm")
MAX_CODE_ATTEMPTS = 3


def configure_logging() -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _numbered(options) -> str:
    return "\n".join(f"{i}. {option}" for i, option in enumerate(options, start=1))


def _pick(user_input: str, options) -> str | None:
    """Match a number or an option name (case-insensitive)."""
    text = user_input.strip().lower()
    if text.isdigit() and 1 <= int(text) <= len(options):
        return options[int(text) - 1]
    for option in options:
        if option.lower() == text:
            return option
    return None


def format_history(records) -> Table:
    table = Table(title="Visit History")
    table.add_column("Date")
    table.add_column("Diagnosis")
    table.add_column("Medication")
    table.add_column("Pharmacy")
    for record in records:
        table.add_row(
            (record.created_at or "")[:10],
            record.diagnosis,
            f"{record.medication_name} ({record.medication_qty})",
            record.pharmacy_sent,
        )
    return table


def stage_prompt(engine: VisitFlowEngine, session: VisitSession) -> str:
    """What to show the patient at the current stage."""
    stage = session.stage

    if stage == Stage.EXPOSURE:
        return "**What were you exposed to?**\n\n" + _numbered(EXPOSURE_TYPES)

    if stage == Stage.PARTNER:
        return (
            f"**Exposure: {session.exposure_type}**\n\n"
            "How did you find out?\n\n" + _numbered(PARTNER_OPTIONS) + "\n\nType 'back' to change your answer."
        )

    if stage == Stage.SYMPTOMS:
        return (
            "**Are you having any symptoms?**\n\n"
            + _numbered([SYMPTOM_OPTIONS[False], SYMPTOM_OPTIONS[True]])
        )

    if stage == Stage.PHARMACY:
        profile = engine.profile_store.get_profile(session.patient_id)
        if profile.pharmacy:
            return (
                f"**Your treatment is ready.**\n\nSend it to your pharmacy on file?\n\n"
                f"- {profile.pharmacy}\n\nPress Enter to confirm, or type a different pharmacy."
            )
        return "**Your treatment is ready.**\n\nWhich pharmacy should we send it to?"

    if stage == Stage.SUMMARY:
        summary = engine.build_summary(session)
        delivery = session.delivery
        toggles = (
            f"- [{'x' if delivery.email else ' '}] email: send me a copy\n"
            f"- [{'x' if delivery.archive else ' '}] archive: save to my visit history\n"
            f"- [{'x' if delivery.notify_pcp else ' '}] pcp: notify my primary care provider"
        )
        return (
            summary.render()
            + "\n\n**Delivery**\n\n" + toggles
            + "\n\nType a toggle name to switch it, or 'finalize' to finish."
        )

    if stage == Stage.HISTORY:
        return "Type 'new' to start a new visit or 'exit' to return home."

    return "Something went wrong. Type 'exit' to return home."


def handle_exposure(engine, session, user_input):
    choice = _pick(user_input, EXPOSURE_TYPES) or user_input.strip()
    return engine.select_exposure(session, choice)


def handle_partner(engine, session, user_input):
    if _pick(user_input, PARTNER_OPTIONS) or user_input.strip().lower() in YES_WORDS:
        return engine.acknowledge_partner(session)
    raise ValidationError("Please choose one of the listed options.")


def handle_symptoms(engine, session, user_input):
    choice = _pick(user_input, [SYMPTOM_OPTIONS[False], SYMPTOM_OPTIONS[True]])
    if choice is None:
        raise ValidationError("Please choose 1 or 2.")
    return engine.confirm_symptom_status(session, choice == SYMPTOM_OPTIONS[True])


def handle_pharmacy(engine, session, user_input):
    if user_input.strip().lower() in YES_WORDS:
        profile = engine.profile_store.get_profile(session.patient_id)
        return engine.confirm_pharmacy(session, profile.pharmacy or "")
    return engine.confirm_pharmacy(session, user_input, save_to_profile=True)


def handle_summary(engine, session, user_input):
    text = user_input.strip().lower()
    delivery = session.delivery
    if text == "email":
        return engine.set_delivery_options(session, email=not delivery.email)
    if text == "archive":
        return engine.set_delivery_options(session, archive=not delivery.archive)
    if text == "pcp":
        return engine.set_delivery_options(session, notify_pcp=not delivery.notify_pcp)
    if text == "finalize":
        result = engine.finalize_visit(session)
        if result.has_warning:
            console.print(f"[bold yellow]Saved, but the email could not be sent:[/bold yellow] {result.dispatch_error}")
        else:
            console.print("[bold green]Your visit is complete.[/bold green]")
        try:
            console.print(format_history(engine.list_history(session.patient_id)))
        except PortalError as e:
            logger.warning("Visit history unavailable after finalize: %s", e)
            console.print(f"[bold yellow]Your visit is saved, but history could not be loaded:[/bold yellow] {e}")
        return result.session
    raise ValidationError("Type email, archive, pcp or finalize.")


def handle_history(engine, session, user_input):
    if user_input.strip().lower() == "new":
        return engine.leave_history(session)
    raise ValidationError("Type 'new' to start a new visit.")


# Stage handlers mapping
STAGE_HANDLERS = {
    Stage.EXPOSURE: handle_exposure,
    Stage.PARTNER: handle_partner,
    Stage.SYMPTOMS: handle_symptoms,
    Stage.PHARMACY: handle_pharmacy,
    Stage.SUMMARY: handle_summary,
    Stage.HISTORY: handle_history,
}


def process_visit_input(
    engine: VisitFlowEngine, session: VisitSession, user_input: str
) -> tuple[VisitSession, str | None]:
    """Apply one line of input; returns the next session and an error message, if any."""
    text = user_input.strip().lower()
    try:
        if text in BACK_WORDS:
            return engine.go_back(session), None
        if text in HISTORY_WORDS:
            history_session, records = engine.view_history(session)
            console.print(format_history(records))
            return history_session, None

        handler = STAGE_HANDLERS.get(session.stage)
        if handler is None:
            return session, "Please wait..."
        return handler(engine, session, user_input), None
    except PortalError as e:
        logger.info("Visit input rejected at %s: %s", session.stage.value, e)
        return session, str(e)


def run_visit(engine: VisitFlowEngine, patient_id: str) -> None:
    """Exposure visit loop until the patient exits."""
    session = engine.start_visit(patient_id)
    while True:
        try:
            prompt = stage_prompt(engine, session)
        except PortalError as e:
            console.print(f"[bold red]Error:[/bold red] {e}\n")
            return
        console.print(Markdown(prompt), "\n")
        user_input = console.input("[bold green]You:[/bold green] ")
        if user_input.strip().lower() in ("exit", "quit"):
            if session.stage not in (Stage.EXPOSURE, Stage.HISTORY):
                engine.abandon(session)
            return

        if session.stage == Stage.SYMPTOMS:
            with Status("Preparing your treatment...", console=console, spinner="dots"):
                session, error = process_visit_input(engine, session, user_input)
        else:
            session, error = process_visit_input(engine, session, user_input)
        if error:
            console.print(f"[bold red]{error}[/bold red]\n")


def register_flow(accounts: AccountService) -> None:
    console.print("[bold]Create your profile[/bold]")
    fields = [
        "first_name", "last_name", "middle_initial", "dob", "gender", "race",
        "address", "city", "state", "zip", "email", "phone", "primary_care",
        "current_medication", "allergies", "pharmacy",
    ]
    data = {name: Prompt.ask(name.replace("_", " ").title(), default="", console=console) for name in fields}
    data["password"] = Prompt.ask("Password", password=True, console=console)
    data["confirm_password"] = Prompt.ask("Confirm password", password=True, console=console)
    data["consentgiven"] = Prompt.ask(
        "I consent to treatment and to the portal terms", choices=["yes", "no"], console=console
    ) == "yes"
    data = {k: v for k, v in data.items() if v != ""}

    profile = accounts.register(data)
    console.print(f"[bold green]Registration successful, {profile.first_name}! Please log in.[/bold green]\n")


def login_flow(accounts: AccountService):
    email = Prompt.ask("Email", console=console)
    password = Prompt.ask("Password", password=True, console=console)
    with Status("Signing in...", console=console, spinner="dots"):
        pending: PendingVerification = accounts.login(email, password)

    console.print(f"Enter the 6-digit code sent to {pending.profile.email}")
    for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
        code = Prompt.ask("Code", console=console)
        try:
            return accounts.verify_code(pending, code)
        except (ValidationError, AuthError) as e:
            if attempt == MAX_CODE_ATTEMPTS:
                raise
            console.print(f"[bold red]{e}[/bold red]")


def edit_profile_flow(accounts: AccountService, session) -> None:
    current = accounts.profile_store.get_profile(session.user_id)
    editable = ["first_name", "last_name", "email", "phone", "address", "city", "state", "zip",
                "primary_care", "current_medication", "allergies", "pharmacy"]
    updates = {}
    for name in editable:
        value = getattr(current, name)
        shown = ", ".join(value) if isinstance(value, list) else (value or "")
        answer = Prompt.ask(name.replace("_", " ").title(), default=shown, console=console)
        if answer != shown:
            updates[name] = answer
    new_password = Prompt.ask("New password (blank to keep)", default="", password=True, console=console)
    if new_password:
        updates["password"] = new_password
        updates["confirm_password"] = Prompt.ask("Confirm password", password=True, console=console)

    _, changes = accounts.update_profile(session, updates)
    if changes:
        console.print(f"[bold green]Profile updated ({', '.join(changes)}).[/bold green]\n")
    else:
        console.print("No changes.\n")


def show_profile_history(accounts: AccountService, session) -> None:
    history = accounts.profile_history(session)
    if not history:
        console.print("No profile changes found.\n")
        return
    table = Table(title="Profile Change History")
    table.add_column("Changed")
    table.add_column("Field")
    table.add_column("Old")
    table.add_column("New")
    for entry in history:
        for name, change in entry.changes.items():
            table.add_row(entry.changed_at[:19], name, str(change.get("old") or "-"), str(change.get("new") or "-"))
    console.print(table)


HOME_OPTIONS = [
    "Sick Visit",
    "Medication Refill",
    "STD Exposure",
    "Emergency",
    "Visit History",
    "Edit Profile",
    "Profile History",
    "Log out",
]

# Home menu entries that show a static triage screen
TRIAGE_KEYS = {
    "Sick Visit": "sick_visit",
    "Medication Refill": "medication_refill",
    "Emergency": "emergency",
}


def home_menu(accounts: AccountService, engine: VisitFlowEngine, session) -> None:
    profile = accounts.profile_store.get_profile(session.user_id)
    console.print(f"[bold blue]Welcome, {profile.first_name} {profile.last_name}![/bold blue]\n")
    while True:
        console.print(Markdown(_numbered(HOME_OPTIONS)))
        choice = _pick(console.input("[bold green]Choose:[/bold green] "), HOME_OPTIONS)
        try:
            if choice in TRIAGE_KEYS:
                console.print(Markdown(triage.get_screen(TRIAGE_KEYS[choice]).render()), "\n")
            elif choice == "STD Exposure":
                run_visit(engine, session.user_id)
            elif choice == "Visit History":
                console.print(format_history(engine.list_history(session.user_id)))
            elif choice == "Edit Profile":
                edit_profile_flow(accounts, session)
            elif choice == "Profile History":
                show_profile_history(accounts, session)
            elif choice == "Log out":
                return
        except PortalError as e:
            console.print(f"[bold red]Error:[/bold red] {e}\n")


def main():
    """Main portal loop."""
    configure_logging()
    backend = build_backend()
    accounts = AccountService(backend.identity, backend.profiles, backend.dispatcher)
    engine = VisitFlowEngine(backend.profiles, backend.visits, backend.dispatcher)

    console.print("[bold blue]Welcome to Kiataker Health![/bold blue]")
    if not sys.stdin.isatty():
        console.print("[dim]Reading from piped input[/dim]")

    while True:
        try:
            action = Prompt.ask("Login, register or quit", choices=["login", "register", "quit"], console=console)
            if action == "quit":
                break
            if action == "register":
                register_flow(accounts)
                continue
            session = login_flow(accounts)
            home_menu(accounts, engine, session)
        except (EOFError, KeyboardInterrupt):
            break
        except PortalError as e:
            console.print(f"[bold red]Error:[/bold red] {e}\n")

    console.print("[bold blue]Goodbye![/bold blue]")


if __name__ == "__main__":
    main()
