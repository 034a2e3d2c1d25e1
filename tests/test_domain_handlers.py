"""Tests for the per-intent domain handlers."""

from datetime import date
from decimal import Decimal
from unittest.mock import Mock

import pytest

from sitetrack.schemas.conversation import AccountContext
from sitetrack.schemas.intent import IntentKind, ParsedIntent, Priority
from sitetrack.schemas.mutations import CreateTask, RecordExpense, StoreImage, UpdateBudget
from sitetrack.services.domain_handlers import DomainHandlers

from conftest import DASHBOARD_URL, TODAY


@pytest.fixture
def account():
    return AccountContext(
        default_project_id="p-1",
        project_name="Residential home - Entebbe",
        budget_amount=Decimal("1000000"),
        total_spent=Decimal("100000"),
        category_totals={"Materials": Decimal("100000")},
        expense_count=1,
        pending_task_count=2,
    )


def expense(amount="500", description="cement", **kwargs):
    return ParsedIntent(
        kind=IntentKind.LOG_EXPENSE,
        confidence=0.95,
        amount=Decimal(amount) if amount is not None else None,
        description=description,
        currency="UGX",
        **kwargs,
    )


class TestLogExpense:
    """Expense recording."""

    def test_records_expense(self, handlers, account):
        reply = handlers.handle(expense(), account)

        assert reply.mutations == (
            RecordExpense(
                project_id="p-1",
                amount=Decimal("500"),
                description="cement",
                category="Materials",
                currency="UGX",
                expense_date=TODAY,
            ),
        )
        assert "✅ *Expense Logged*" in reply.text
        assert "💰 *UGX 500*" in reply.text
        assert "🏷️ Category: Materials" in reply.text
        assert "Residential home - Entebbe" in reply.text
        assert "💵 *Remaining Budget:* UGX 899,500" in reply.text

    def test_stated_date_kept(self, handlers, account):
        reply = handlers.handle(expense(expense_date=date(2026, 2, 1)), account)
        assert reply.mutations[0].expense_date == date(2026, 2, 1)

    def test_without_amount_is_help_not_zero(self, handlers, account):
        reply = handlers.handle(expense(amount=None), account)
        assert reply.mutations == ()
        assert "I didn't quite understand that" in reply.text

    def test_missing_description_defaults(self, handlers, account):
        reply = handlers.handle(expense(description=None), account)
        assert reply.mutations[0].description == "Expense"
        assert reply.mutations[0].category == "Miscellaneous"

    def test_usage_warning(self, handlers, account):
        account = account.model_copy(update={"total_spent": Decimal("700000")})
        reply = handlers.handle(expense(amount="200000"), account)
        assert "You've used 90.0% of your budget." in reply.text

    def test_over_budget_warning(self, handlers, account):
        account = account.model_copy(update={"total_spent": Decimal("900000")})
        reply = handlers.handle(expense(amount="200000"), account)
        assert "You're over budget by UGX 100,000!" in reply.text

    def test_no_budget(self, handlers, account):
        account = account.model_copy(update={"budget_amount": None})
        reply = handlers.handle(expense(), account)
        assert "not set" in reply.text
        assert len(reply.mutations) == 1

    def test_media_ref_carried(self, handlers, account):
        reply = handlers.handle(expense(media_ref="media-1"), account)
        assert reply.mutations[0].media_ref == "media-1"
        assert "📸 Photo attached" in reply.text


class TestNoProject:
    """Every mutating handler refuses without a project."""

    @pytest.mark.parametrize(
        "intent",
        [
            ParsedIntent(kind=IntentKind.LOG_EXPENSE, confidence=0.95, amount=Decimal("500"), description="sand"),
            ParsedIntent(kind=IntentKind.CREATE_TASK, confidence=0.95, description="inspect"),
            ParsedIntent(kind=IntentKind.SET_BUDGET, confidence=0.95, amount=Decimal("5000000")),
            ParsedIntent(kind=IntentKind.QUERY_EXPENSES, confidence=0.9),
            ParsedIntent(kind=IntentKind.LOG_IMAGE, confidence=0.95, media_ref="media-1"),
        ],
    )
    def test_no_project_reply(self, handlers, intent):
        reply = handlers.handle(intent, AccountContext())
        assert reply.mutations == ()
        assert reply.text.startswith("❌ No active project found.")
        assert DASHBOARD_URL in reply.text


class TestCreateTask:
    """Task creation."""

    def test_creates_pending_task(self, handlers, account):
        intent = ParsedIntent(
            kind=IntentKind.CREATE_TASK, confidence=0.95, description="inspect foundation",
            priority=Priority.HIGH,
        )

        reply = handlers.handle(intent, account)

        assert reply.mutations == (
            CreateTask(project_id="p-1", title="inspect foundation", priority=Priority.HIGH),
        )
        assert "⚡ Priority: high" in reply.text
        assert "You have *3* pending tasks" in reply.text

    def test_default_priority(self, handlers, account):
        intent = ParsedIntent(kind=IntentKind.CREATE_TASK, confidence=0.95, description="order sand")
        reply = handlers.handle(intent, account)
        assert reply.mutations[0].priority == Priority.MEDIUM


class TestSetBudget:
    """Budget replacement."""

    def test_replaces_budget(self, handlers, account):
        account = account.model_copy(update={"total_spent": Decimal("700000")})
        intent = ParsedIntent(
            kind=IntentKind.SET_BUDGET, confidence=0.95, amount=Decimal("2000000"), currency="UGX"
        )

        reply = handlers.handle(intent, account)

        assert reply.mutations == (UpdateBudget(project_id="p-1", amount=Decimal("2000000")),)
        assert "💰 *New Budget:* UGX 2,000,000" in reply.text
        assert "💸 *Remaining:* UGX 1,300,000" in reply.text
        assert "📊 *Used:* 35.0%" in reply.text
        assert "Warning" not in reply.text

    def test_budget_below_spend_warns(self, handlers, account):
        account = account.model_copy(update={"total_spent": Decimal("700000")})
        intent = ParsedIntent(kind=IntentKind.SET_BUDGET, confidence=0.95, amount=Decimal("500000"))

        reply = handlers.handle(intent, account)

        assert "over budget by UGX 200,000" in reply.text


class TestQueryExpenses:
    """Expense report."""

    def test_report_with_top_categories(self, handlers, account):
        account = account.model_copy(update={
            "total_spent": Decimal("550"),
            "expense_count": 6,
            "category_totals": {
                "Transport": Decimal("100"),
                "Equipment": Decimal("50"),
                "Labor": Decimal("100"),
                "Materials": Decimal("300"),
                "Miscellaneous": Decimal("0"),
            },
        })
        intent = ParsedIntent(kind=IntentKind.QUERY_EXPENSES, confidence=0.9)

        reply = handlers.handle(intent, account)

        assert reply.mutations == ()
        assert reply.text.startswith("📊 *Residential home - Entebbe - Expense Report*")
        assert "📝 *Total Expenses:* 6" in reply.text
        assert "1. Materials: UGX 300\n2. Labor: UGX 100\n3. Transport: UGX 100" in reply.text
        assert "Equipment" not in reply.text

    def test_empty_project(self, handlers):
        account = AccountContext(default_project_id="p-1", project_name="Villa")
        reply = handlers.handle(ParsedIntent(kind=IntentKind.QUERY_EXPENSES, confidence=0.9), account)
        assert "📝 *Total Expenses:* 0" in reply.text
        assert "Top Categories" not in reply.text


class TestLogImage:
    """Images become StoreImage mutations."""

    def test_stores_image(self, handlers, account):
        intent = ParsedIntent(
            kind=IntentKind.LOG_IMAGE, confidence=0.9, media_ref="media-1", description="Foundation done"
        )

        reply = handlers.handle(intent, account)

        assert reply.mutations == (StoreImage(project_id="p-1", media_ref="media-1", caption="Foundation done"),)
        assert "📸 Foundation done" in reply.text


class TestFailures:
    """Unknown intents and handler errors."""

    def test_unknown_is_help(self, handlers, account):
        reply = handlers.handle(ParsedIntent.unknown(), account)
        assert reply.mutations == ()
        assert f"Need help? Visit {DASHBOARD_URL}" in reply.text

    def test_handler_error_is_generic_failure(self, account):
        resolver = Mock()
        resolver.resolve.side_effect = RuntimeError("keyword table broken")
        handlers = DomainHandlers(category_resolver=resolver, dashboard_url=DASHBOARD_URL, today=lambda: TODAY)

        reply = handlers.handle(expense(), account)

        assert reply.mutations == ()
        assert reply.text.startswith("❌ Something went wrong.")
