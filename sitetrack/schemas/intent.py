"""Parsed intent schemas shared by the classifier, AI extractor and handlers."""

from datetime import date as date_type
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class IntentKind(str, Enum):
    """Everything an inbound message can be classified as."""

    LOG_EXPENSE = "log_expense"
    CREATE_TASK = "create_task"
    SET_BUDGET = "set_budget"
    QUERY_EXPENSES = "query_expenses"
    LOG_IMAGE = "log_image"
    UNKNOWN = "unknown"


class Priority(str, Enum):
    """Task priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ParsedIntent(BaseModel):
    """Structured reading of one inbound message. Never persisted as-is."""

    model_config = ConfigDict(frozen=True)

    kind: IntentKind
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, max_length=255)
    priority: Optional[Priority] = None
    currency: Optional[str] = None
    expense_date: Optional[date_type] = None
    media_ref: Optional[str] = None
    rule: Optional[str] = None
    source: str = "rules"

    @classmethod
    def unknown(cls, source: str = "rules") -> "ParsedIntent":
        return cls(kind=IntentKind.UNKNOWN, confidence=0.0, source=source)
