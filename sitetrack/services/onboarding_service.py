"""
Onboarding State Machine.

Collects the first project's details over several messages:

    none -> awaiting_project_type -> awaiting_location -> awaiting_start_date
         -> awaiting_budget -> confirmation -> completed

Every step takes the whole current ``OnboardingState`` and returns a whole
new one; nothing is held between calls. "skip" advances exactly one stage
and leaves the field out of ``collected``.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Optional

from sitetrack.config import settings
from sitetrack.exceptions import InvalidOnboardingTransition
from sitetrack.logging_config import get_logger
from sitetrack.schemas.mutations import CreateProject
from sitetrack.schemas.onboarding import OnboardingStage, OnboardingState
from sitetrack.services.formatting import format_amount
from sitetrack.services.lexical_extractor import find_amount, normalize_text

logger = get_logger(__name__)

GREETINGS = frozenset({"hi", "hello", "hey", "start", "hallo", "oli otya", "gyebale"})
SKIP_TOKENS = frozenset({"skip", "skip for now"})

CONFIRM_TOKENS = frozenset({"yes", "y", "confirm", "1", "ok", "create", "btn_confirm"})
EDIT_TOKENS = frozenset({"edit", "2", "change", "edit something", "btn_edit"})
DEFER_TOKENS = frozenset({"later", "3", "not now", "add more details later", "btn_later"})

PROJECT_TYPES: Dict[str, str] = {
    "1": "Residential home",
    "residential": "Residential home",
    "home": "Residential home",
    "residential home": "Residential home",
    "btn_residential": "Residential home",
    "2": "Commercial building",
    "commercial": "Commercial building",
    "commercial building": "Commercial building",
    "btn_commercial": "Commercial building",
    "3": "Other",
    "other": "Other",
    "btn_other": "Other",
}

DEFAULT_PROJECT_NAME = "Construction Project"

# Stage -> (collected key, next stage)
COLLECTING_STAGES: Dict[OnboardingStage, tuple] = {
    OnboardingStage.AWAITING_PROJECT_TYPE: ("project_type", OnboardingStage.AWAITING_LOCATION),
    OnboardingStage.AWAITING_LOCATION: ("location", OnboardingStage.AWAITING_START_DATE),
    OnboardingStage.AWAITING_START_DATE: ("start_date", OnboardingStage.AWAITING_BUDGET),
    OnboardingStage.AWAITING_BUDGET: ("budget", OnboardingStage.CONFIRMATION),
}

WELCOME_PROMPT = (
    "Hey! 👋 Welcome to SiteTrack 🚀\n\n"
    "Ready to create your first project?\n\n"
    "What kind of project is this?\n"
    "1. Residential home\n"
    "2. Commercial building\n"
    "3. Other / Skip for now"
)

LOCATION_PROMPT = (
    "Cool! Where's the site? (e.g. Kampala Road, Entebbe, or even a plot number)\n\n"
    "Just type it, or reply Skip"
)

START_DATE_PROMPT = "Nice! Rough start date?\n\n(Type like: Today, 15 Feb 2026, or skip for now)"

BUDGET_PROMPT = (
    "Almost done! Any rough total budget? ({currency}, e.g. 150,000,000 or skip)\n\n"
    "This helps us set up your budget tracker right away."
)

CONFIRMATION_OPTIONS = (
    "Looks good?\n"
    "1. Yes, create project! 🎉\n"
    "2. Edit something\n"
    "3. Add more details later"
)

RESTART_PREFIX = "No problem, let's start over.\n\n"
ASK_AGAIN_PREFIX = "Please reply 1, 2 or 3.\n\n"

POST_CREATION_REPLY = (
    "Project created! 🎉 Your dashboard is ready on the web: {dashboard_url}/dashboard\n\n"
    "Now the fun part: just chat updates here anytime (e.g. 'Used 50 bags cement' "
    "or 'spent 500 on sand', or send site photos). I'll organize everything automatically.\n\n"
    "Quick tips:\n"
    "• Text 'help' anytime\n"
    "• Invite your team: share this number"
)

DEFERRED_REPLY = (
    "No problem! You can add the project details later from your dashboard: "
    "{dashboard_url}/dashboard\n\n"
    "Meanwhile, just chat updates here anytime. Text 'help' to see what I understand."
)


@dataclass(frozen=True)
class OnboardingStep:
    """Outcome of feeding one message to the state machine."""

    state: OnboardingState
    reply: str
    mutation: Optional[CreateProject] = None


def is_greeting(text: Optional[str]) -> bool:
    """True for a bare greeting such as "Hi!" or "oli otya"."""
    return normalize_text(text).strip(" !.?,") in GREETINGS


def _token(text: Optional[str]) -> str:
    return normalize_text(text).strip(" !.?,")


def _parse_budget(value: Optional[str]) -> Optional[Decimal]:
    if not value:
        return None
    try:
        amount = Decimal(value)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() and amount > 0 else None


class OnboardingStateMachine:
    """Pure transition function over ``OnboardingState``."""

    def __init__(
        self,
        dashboard_url: Optional[str] = None,
        currency: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.dashboard_url = (dashboard_url or settings.dashboard_url).rstrip("/")
        self.currency = currency or settings.default_currency
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def start(self, state: OnboardingState) -> OnboardingStep:
        """Begin onboarding from ``none``."""
        if state.stage != OnboardingStage.NONE:
            raise InvalidOnboardingTransition(f"Cannot start onboarding from stage {state.stage.value}")
        new_state = OnboardingState(stage=OnboardingStage.AWAITING_PROJECT_TYPE)
        self._log_transition(state, new_state)
        return OnboardingStep(state=new_state, reply=WELCOME_PROMPT)

    def step(self, state: OnboardingState, text: Optional[str]) -> OnboardingStep:
        """Treat ``text`` as the answer to the current stage's prompt."""
        if state.stage == OnboardingStage.NONE:
            return self.start(state)
        if state.stage == OnboardingStage.COMPLETED:
            raise InvalidOnboardingTransition("Onboarding is already completed")
        if state.stage == OnboardingStage.CONFIRMATION:
            return self._confirm(state, text)
        return self._collect(state, text)

    def prompt_for(self, state: OnboardingState) -> str:
        """The prompt a user at ``state`` is currently answering."""
        if state.stage == OnboardingStage.AWAITING_PROJECT_TYPE:
            return WELCOME_PROMPT
        if state.stage == OnboardingStage.AWAITING_LOCATION:
            return LOCATION_PROMPT
        if state.stage == OnboardingStage.AWAITING_START_DATE:
            return START_DATE_PROMPT
        if state.stage == OnboardingStage.AWAITING_BUDGET:
            return BUDGET_PROMPT.format(currency=self.currency)
        if state.stage == OnboardingStage.CONFIRMATION:
            return self.summary(state.collected)
        raise InvalidOnboardingTransition(f"No prompt for stage {state.stage.value}")

    # ------------------------------------------------------------------
    # Collecting stages
    # ------------------------------------------------------------------

    def _collect(self, state: OnboardingState, text: Optional[str]) -> OnboardingStep:
        raw = (text or "").strip()
        if not raw:
            return OnboardingStep(state=state, reply=self.prompt_for(state))

        key, next_stage = COLLECTING_STAGES[state.stage]
        collected = dict(state.collected)
        collected.pop(key, None)

        if _token(raw) not in SKIP_TOKENS:
            collected[key] = self._normalize_answer(key, raw)

        new_state = OnboardingState(stage=next_stage, collected=collected)
        self._log_transition(state, new_state)
        return OnboardingStep(state=new_state, reply=self.prompt_for(new_state))

    def _normalize_answer(self, key: str, raw: str) -> str:
        if key == "project_type":
            return PROJECT_TYPES.get(_token(raw), raw)
        if key == "budget":
            amount, _ = find_amount(normalize_text(raw))
            return str(amount) if amount is not None else raw
        return raw

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def _confirm(self, state: OnboardingState, text: Optional[str]) -> OnboardingStep:
        answer = _token(text)

        if answer in CONFIRM_TOKENS or answer.startswith("yes"):
            new_state = OnboardingState(
                stage=OnboardingStage.COMPLETED,
                collected=dict(state.collected),
                completed_at=self._clock(),
            )
            self._log_transition(state, new_state, choice="confirm")
            return OnboardingStep(
                state=new_state,
                reply=POST_CREATION_REPLY.format(dashboard_url=self.dashboard_url),
                mutation=self.build_project(state.collected),
            )

        if answer in EDIT_TOKENS:
            # Full restart; earlier answers are discarded, not merged.
            new_state = OnboardingState(stage=OnboardingStage.AWAITING_PROJECT_TYPE)
            self._log_transition(state, new_state, choice="edit")
            return OnboardingStep(state=new_state, reply=RESTART_PREFIX + WELCOME_PROMPT)

        if answer in DEFER_TOKENS:
            new_state = OnboardingState(
                stage=OnboardingStage.COMPLETED,
                collected=dict(state.collected),
                completed_at=self._clock(),
            )
            self._log_transition(state, new_state, choice="defer")
            return OnboardingStep(
                state=new_state, reply=DEFERRED_REPLY.format(dashboard_url=self.dashboard_url)
            )

        return OnboardingStep(state=state, reply=ASK_AGAIN_PREFIX + self.summary(state.collected))

    def summary(self, collected: Dict[str, str]) -> str:
        budget_text = collected.get("budget")
        budget = _parse_budget(budget_text)
        if budget is not None:
            budget_display = format_amount(budget, self.currency)
        else:
            budget_display = budget_text or "TBD"

        return (
            "Perfect! Here's what we have:\n\n"
            f"• Project: {collected.get('project_type', 'TBD')} in {collected.get('location', 'TBD')}\n"
            f"• Started around: {collected.get('start_date', 'TBD')}\n"
            f"• Budget: {budget_display}\n\n"
            f"{CONFIRMATION_OPTIONS}"
        )

    def build_project(self, collected: Dict[str, str]) -> CreateProject:
        project_type = collected.get("project_type")
        location = collected.get("location")
        type_label = project_type if project_type and project_type != "Other" else DEFAULT_PROJECT_NAME
        name = f"{type_label} - {location}" if location else type_label

        budget_text = collected.get("budget")
        budget = _parse_budget(budget_text)
        return CreateProject(
            name=name[:255],
            project_type=project_type,
            location=location,
            start_date=collected.get("start_date"),
            budget=budget,
            budget_text=budget_text if budget is None else None,
        )

    def _log_transition(self, old: OnboardingState, new: OnboardingState, **extra) -> None:
        logger.info(
            "Onboarding transition",
            from_stage=old.stage.value,
            to_stage=new.stage.value,
            collected_fields=sorted(new.collected),
            **extra,
        )
