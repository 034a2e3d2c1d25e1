"""Domain mutation instructions emitted by the engine and applied by callers."""

from datetime import date as date_type
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from sitetrack.schemas.intent import Priority


class _Mutation(BaseModel):
    model_config = ConfigDict(frozen=True)


class RecordExpense(_Mutation):
    """Record one expense against a project."""

    kind: Literal["record_expense"] = "record_expense"
    project_id: str
    amount: Decimal = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=255)
    category: str
    currency: str
    expense_date: date_type
    media_ref: Optional[str] = None


class CreateTask(_Mutation):
    """Create a pending task on a project."""

    kind: Literal["create_task"] = "create_task"
    project_id: str
    title: str = Field(..., min_length=1, max_length=255)
    priority: Priority = Priority.MEDIUM


class UpdateBudget(_Mutation):
    """Replace a project's budget outright."""

    kind: Literal["update_budget"] = "update_budget"
    project_id: str
    amount: Decimal = Field(..., gt=0)


class CreateProject(_Mutation):
    """Create the first project from onboarding answers."""

    kind: Literal["create_project"] = "create_project"
    name: str
    project_type: Optional[str] = None
    location: Optional[str] = None
    start_date: Optional[str] = None
    budget: Optional[Decimal] = None
    budget_text: Optional[str] = None


class StoreImage(_Mutation):
    """Attach a media reference to a project."""

    kind: Literal["store_image"] = "store_image"
    project_id: str
    media_ref: str
    caption: Optional[str] = None


Mutation = Annotated[
    Union[RecordExpense, CreateTask, UpdateBudget, CreateProject, StoreImage],
    Field(discriminator="kind"),
]
