"""Schemas package."""

from sitetrack.schemas.conversation import (
    CLARIFICATION_REQUIRED,
    REGISTRATION_REQUIRED,
    AccountContext,
    ConversationReply,
    InboundMessage,
    UserRecord,
)
from sitetrack.schemas.intent import IntentKind, ParsedIntent, Priority
from sitetrack.schemas.mutations import (
    CreateProject,
    CreateTask,
    Mutation,
    RecordExpense,
    StoreImage,
    UpdateBudget,
)
from sitetrack.schemas.onboarding import OnboardingStage, OnboardingState

__all__ = [
    "CLARIFICATION_REQUIRED",
    "REGISTRATION_REQUIRED",
    "AccountContext",
    "ConversationReply",
    "InboundMessage",
    "UserRecord",
    "IntentKind",
    "ParsedIntent",
    "Priority",
    "CreateProject",
    "CreateTask",
    "Mutation",
    "RecordExpense",
    "StoreImage",
    "UpdateBudget",
    "OnboardingStage",
    "OnboardingState",
]
