"""
In-memory reference collaborator.

Implements the engine's collaborator ports (user lookup, account context,
mutation application, onboarding-state persistence) over plain dicts. Used
by the HTTP surface and the test suite; a real deployment supplies its own
persistence-backed implementation of the same methods.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import uuid4

from sitetrack.logging_config import get_logger
from sitetrack.schemas.conversation import AccountContext, UserRecord
from sitetrack.schemas.mutations import (
    CreateProject,
    CreateTask,
    Mutation,
    RecordExpense,
    StoreImage,
    UpdateBudget,
)
from sitetrack.schemas.onboarding import OnboardingState

logger = get_logger(__name__)


@dataclass
class ProjectRecord:
    id: str
    name: str
    budget: Optional[Decimal] = None
    expenses: List[RecordExpense] = field(default_factory=list)
    tasks: List[CreateTask] = field(default_factory=list)
    images: List[StoreImage] = field(default_factory=list)


@dataclass
class _UserRow:
    internal_user_id: str
    onboarding_state: OnboardingState = field(default_factory=OnboardingState)
    default_project_id: Optional[str] = None


class InMemoryStore:
    """Dict-backed users and projects keyed by id."""

    def __init__(self):
        self._users_by_external: Dict[str, _UserRow] = {}
        self._users_by_internal: Dict[str, _UserRow] = {}
        self.projects: Dict[str, ProjectRecord] = {}

    # ---- Setup helpers ----

    def register_user(
        self,
        external_user_id: str,
        internal_user_id: Optional[str] = None,
        onboarding_state: Optional[OnboardingState] = None,
    ) -> str:
        row = _UserRow(
            internal_user_id=internal_user_id or str(uuid4()),
            onboarding_state=onboarding_state or OnboardingState(),
        )
        self._users_by_external[external_user_id] = row
        self._users_by_internal[row.internal_user_id] = row
        return row.internal_user_id

    def add_project(
        self, internal_user_id: str, name: str, budget: Optional[Decimal] = None
    ) -> ProjectRecord:
        row = self._users_by_internal[internal_user_id]
        project = ProjectRecord(id=str(uuid4()), name=name, budget=budget)
        self.projects[project.id] = project
        if row.default_project_id is None:
            row.default_project_id = project.id
        return project

    # ---- Collaborator ports ----

    async def lookup_user(self, external_user_id: str) -> Optional[UserRecord]:
        row = self._users_by_external.get(external_user_id)
        if row is None:
            return None
        return UserRecord(internal_user_id=row.internal_user_id, onboarding_state=row.onboarding_state)

    async def load_account_context(self, internal_user_id: str) -> AccountContext:
        row = self._users_by_internal[internal_user_id]
        project = self.projects.get(row.default_project_id) if row.default_project_id else None
        if project is None:
            return AccountContext()

        category_totals: Dict[str, Decimal] = {}
        for expense in project.expenses:
            category_totals[expense.category] = (
                category_totals.get(expense.category, Decimal("0")) + expense.amount
            )

        return AccountContext(
            default_project_id=project.id,
            project_name=project.name,
            budget_amount=project.budget,
            total_spent=sum((e.amount for e in project.expenses), Decimal("0")),
            category_totals=category_totals,
            expense_count=len(project.expenses),
            pending_task_count=len(project.tasks),
        )

    async def apply_mutation(self, internal_user_id: str, mutation: Mutation) -> None:
        if isinstance(mutation, CreateProject):
            project = self.add_project(internal_user_id, mutation.name, mutation.budget)
            logger.info("Project created", project_id=project.id, name=project.name)
            return

        project = self.projects.get(mutation.project_id)
        if project is None:
            raise LookupError(f"Project {mutation.project_id} not found")

        if isinstance(mutation, RecordExpense):
            project.expenses.append(mutation)
        elif isinstance(mutation, CreateTask):
            project.tasks.append(mutation)
        elif isinstance(mutation, UpdateBudget):
            project.budget = mutation.amount
        elif isinstance(mutation, StoreImage):
            project.images.append(mutation)
        else:
            raise TypeError(f"Unsupported mutation {type(mutation).__name__}")

        logger.info("Mutation applied", kind=mutation.kind, project_id=project.id)

    async def persist_onboarding_state(self, internal_user_id: str, state: OnboardingState) -> None:
        self._users_by_internal[internal_user_id].onboarding_state = state
