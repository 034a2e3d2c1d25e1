"""Conversation input/output schemas."""

from decimal import Decimal
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sitetrack.schemas.mutations import Mutation
from sitetrack.schemas.onboarding import OnboardingState

REGISTRATION_REQUIRED = "registration_required"
CLARIFICATION_REQUIRED = "clarification_required"


class InboundMessage(BaseModel):
    """One delivery from the messaging channel."""

    model_config = ConfigDict(frozen=True)

    external_user_id: str = Field(..., min_length=1)
    text: str = ""
    media_refs: Tuple[str, ...] = ()
    channel_message_id: str = ""


class UserRecord(BaseModel):
    """Result of resolving an external identity to a known user."""

    model_config = ConfigDict(frozen=True)

    internal_user_id: str
    onboarding_state: OnboardingState = Field(default_factory=OnboardingState)


class AccountContext(BaseModel):
    """Minimal account figures needed by the domain handlers."""

    model_config = ConfigDict(frozen=True)

    default_project_id: Optional[str] = None
    project_name: Optional[str] = None
    budget_amount: Optional[Decimal] = None
    total_spent: Decimal = Decimal("0")
    category_totals: Dict[str, Decimal] = Field(default_factory=dict)
    expense_count: int = 0
    pending_task_count: int = 0


class ConversationReply(BaseModel):
    """The single output of processing one inbound message.

    ``onboarding_state`` is set when the caller must persist a new state.
    """

    model_config = ConfigDict(frozen=True)

    text: str
    mutations: Tuple[Mutation, ...] = ()
    marker: Optional[str] = None
    onboarding_state: Optional[OnboardingState] = None

    @model_validator(mode="after")
    def validate_single_mutation(self) -> "ConversationReply":
        """One message never causes more than one domain side effect."""
        if len(self.mutations) > 1:
            raise ValueError("a reply may carry at most one mutation")
        return self
