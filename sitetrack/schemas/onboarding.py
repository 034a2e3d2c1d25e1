"""Onboarding state schemas."""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class OnboardingStage(str, Enum):
    """Onboarding stages, in the only order they may be visited."""

    NONE = "none"
    AWAITING_PROJECT_TYPE = "awaiting_project_type"
    AWAITING_LOCATION = "awaiting_location"
    AWAITING_START_DATE = "awaiting_start_date"
    AWAITING_BUDGET = "awaiting_budget"
    CONFIRMATION = "confirmation"
    COMPLETED = "completed"


class OnboardingState(BaseModel):
    """Per-user onboarding record.

    Always replaced whole; callers load it before and persist it after
    each processed message.
    """

    model_config = ConfigDict(frozen=True)

    stage: OnboardingStage = OnboardingStage.NONE
    collected: Dict[str, str] = Field(default_factory=dict)
    completed_at: Optional[datetime] = None

    @property
    def in_progress(self) -> bool:
        return self.stage not in (OnboardingStage.NONE, OnboardingStage.COMPLETED)
