"""
Domain Handlers.

One handler per intent kind, each mapping (ParsedIntent, AccountContext)
to a ConversationReply with at most one mutation. Handlers perform no I/O;
the caller applies the mutation and sends the text.
"""

from datetime import date
from decimal import Decimal
from typing import Callable, Optional

from sitetrack.config import settings
from sitetrack.logging_config import get_logger
from sitetrack.schemas.conversation import AccountContext, ConversationReply
from sitetrack.schemas.intent import IntentKind, ParsedIntent, Priority
from sitetrack.schemas.mutations import CreateTask, RecordExpense, StoreImage, UpdateBudget
from sitetrack.services.category_resolver import (
    CategoryResolver,
    category_totals_sorted,
    get_category_resolver,
)
from sitetrack.services.formatting import format_amount, format_percent

logger = get_logger(__name__)

TOP_CATEGORY_LIMIT = 3

HELP_TEXT = (
    "🤖 *I didn't quite understand that.*\n\n"
    "Here's what I can help with:\n\n"
    "💰 *Log Expenses:*\n"
    "\"spent 500000 on cement\"\n"
    "\"paid 200000 for bricks\"\n"
    "\"nimaze 300 ku sand\" (Luganda)\n\n"
    "📋 *Create Tasks:*\n"
    "\"task: inspect foundation\"\n"
    "\"todo: buy materials\"\n\n"
    "💵 *Set Budget:*\n"
    "\"set budget 5000000\"\n\n"
    "📊 *Check Expenses:*\n"
    "\"how much did I spend?\"\n"
    "\"show expenses\"\n"
    "\"ssente zmeka\" (Luganda)\n\n"
    "Need help? Visit {dashboard_url}"
)

NO_PROJECT_REPLY = (
    "❌ No active project found.\n\n"
    "Text 'hi' to set one up, or create a project in the dashboard:\n{dashboard_url}"
)

FAILURE_REPLY = "❌ Something went wrong. Please try again or contact support at {dashboard_url}"


class DomainHandlers:
    """Dispatches a parsed intent to its handler. Total: never raises."""

    def __init__(
        self,
        category_resolver: Optional[CategoryResolver] = None,
        dashboard_url: Optional[str] = None,
        default_currency: Optional[str] = None,
        warning_ratio: Optional[float] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.categories = category_resolver or get_category_resolver()
        self.dashboard_url = (dashboard_url or settings.dashboard_url).rstrip("/")
        self.default_currency = default_currency or settings.default_currency
        self.warning_ratio = Decimal(str(
            warning_ratio if warning_ratio is not None else settings.budget_warning_ratio
        ))
        self._today = today or date.today

    def handle(self, intent: ParsedIntent, account: AccountContext) -> ConversationReply:
        try:
            handler = {
                IntentKind.LOG_EXPENSE: self._log_expense,
                IntentKind.CREATE_TASK: self._create_task,
                IntentKind.SET_BUDGET: self._set_budget,
                IntentKind.QUERY_EXPENSES: self._query_expenses,
                IntentKind.LOG_IMAGE: self._log_image,
            }.get(intent.kind)

            if handler:
                return handler(intent, account)

            return self.help_reply()

        except Exception as e:
            logger.error("Domain handler failed", kind=intent.kind.value, error=str(e), exc_info=True)
            return ConversationReply(text=FAILURE_REPLY.format(dashboard_url=self.dashboard_url))

    def help_reply(self) -> ConversationReply:
        return ConversationReply(text=HELP_TEXT.format(dashboard_url=self.dashboard_url))

    def _no_project(self) -> ConversationReply:
        return ConversationReply(text=NO_PROJECT_REPLY.format(dashboard_url=self.dashboard_url))

    # ---- Action handlers ----

    def _log_expense(self, intent: ParsedIntent, account: AccountContext) -> ConversationReply:
        """Record an expense. Never records without an amount."""
        if intent.amount is None:
            return self.help_reply()
        if not account.default_project_id:
            return self._no_project()

        description = intent.description or "Expense"
        currency = intent.currency or self.default_currency
        category = self.categories.resolve(description)

        mutation = RecordExpense(
            project_id=account.default_project_id,
            amount=intent.amount,
            description=description,
            category=category,
            currency=currency,
            expense_date=intent.expense_date or self._today(),
            media_ref=intent.media_ref,
        )

        total_spent = account.total_spent + intent.amount
        lines = [
            "✅ *Expense Logged*",
            "",
            f"📝 *{description}*",
            f"💰 *{format_amount(intent.amount, currency)}*",
            f"🏷️ Category: {category}",
        ]
        if account.project_name:
            lines.append(f"📊 Project: {account.project_name}")
        if intent.media_ref:
            lines.append("📸 Photo attached")
        lines.append("")
        lines.extend(self._budget_lines(account.budget_amount, total_spent))

        return ConversationReply(text="\n".join(lines), mutations=(mutation,))

    def _create_task(self, intent: ParsedIntent, account: AccountContext) -> ConversationReply:
        if not intent.description:
            return self.help_reply()
        if not account.default_project_id:
            return self._no_project()

        priority = intent.priority or Priority.MEDIUM
        mutation = CreateTask(
            project_id=account.default_project_id,
            title=intent.description,
            priority=priority,
        )

        lines = ["✅ *Task Added*", "", f"📋 *{intent.description}*"]
        if account.project_name:
            lines.append(f"📊 Project: {account.project_name}")
        lines.extend([
            f"⚡ Priority: {priority.value}",
            "📝 Status: Pending",
            "",
            f"📌 You have *{account.pending_task_count + 1}* pending tasks",
        ])
        return ConversationReply(text="\n".join(lines), mutations=(mutation,))

    def _set_budget(self, intent: ParsedIntent, account: AccountContext) -> ConversationReply:
        """Replace the budget outright; last write wins."""
        if intent.amount is None:
            return self.help_reply()
        if not account.default_project_id:
            return self._no_project()

        currency = intent.currency or self.default_currency
        mutation = UpdateBudget(project_id=account.default_project_id, amount=intent.amount)

        remaining = intent.amount - account.total_spent
        lines = ["✅ *Budget Updated*", ""]
        if account.project_name:
            lines.append(f"📊 Project: {account.project_name}")
        lines.extend([
            f"💰 *New Budget:* {format_amount(intent.amount, currency)}",
            f"💵 *Already Spent:* {format_amount(account.total_spent, currency)}",
            f"💸 *Remaining:* {format_amount(remaining, currency)}",
            f"📊 *Used:* {format_percent(account.total_spent / intent.amount)}",
        ])
        lines.extend(self._warning_lines(intent.amount, account.total_spent))
        return ConversationReply(text="\n".join(lines), mutations=(mutation,))

    def _query_expenses(self, intent: ParsedIntent, account: AccountContext) -> ConversationReply:
        if not account.default_project_id:
            return self._no_project()

        title = account.project_name or "Project"
        lines = [f"📊 *{title} - Expense Report*", ""]
        lines.extend(self._budget_lines(account.budget_amount, account.total_spent, query=True))
        lines.append(f"📝 *Total Expenses:* {account.expense_count}")

        top = category_totals_sorted(
            {k: v for k, v in account.category_totals.items() if v > 0}, self.categories
        )[:TOP_CATEGORY_LIMIT]
        if top:
            lines.extend(["", "🔝 *Top Categories:*"])
            for idx, (category, amount) in enumerate(top, start=1):
                lines.append(f"{idx}. {category}: {format_amount(amount, self.default_currency)}")

        return ConversationReply(text="\n".join(lines))

    def _log_image(self, intent: ParsedIntent, account: AccountContext) -> ConversationReply:
        if not intent.media_ref:
            return self.help_reply()
        if not account.default_project_id:
            return self._no_project()

        mutation = StoreImage(
            project_id=account.default_project_id,
            media_ref=intent.media_ref,
            caption=intent.description,
        )

        lines = ["✅ *Image Received*", "", f"📸 {intent.description or 'No caption provided'}"]
        if account.project_name:
            lines.append(f"📊 Project: {account.project_name}")
        lines.extend([
            "",
            "💡 *Tip:* Add an amount in the caption to log it as an expense.",
            "Example: \"spent 50000 on cement\"",
        ])
        return ConversationReply(text="\n".join(lines), mutations=(mutation,))

    # ---- Budget summary ----

    def _budget_lines(self, budget: Optional[Decimal], total_spent: Decimal, query: bool = False) -> list:
        currency = self.default_currency
        if not budget or budget <= 0:
            lines = [f"💵 *Spent:* {format_amount(total_spent, currency)}"] if query else []
            lines.append("💸 *Remaining Budget:* not set (text 'set budget 5000000')")
            return lines

        remaining = budget - total_spent
        used = total_spent / budget
        if query:
            lines = [
                f"💰 *Budget:* {format_amount(budget, currency)}",
                f"💵 *Spent:* {format_amount(total_spent, currency)} ({format_percent(used)})",
                f"💸 *Remaining:* {format_amount(remaining, currency)}",
            ]
        else:
            lines = [
                f"💵 *Remaining Budget:* {format_amount(remaining, currency)}",
                f"📊 *Budget Used:* {format_percent(used)}",
            ]
        return lines + self._warning_lines(budget, total_spent)

    def _warning_lines(self, budget: Decimal, total_spent: Decimal) -> list:
        remaining = budget - total_spent
        if remaining < 0:
            return ["", f"⚠️ *Warning:* You're over budget by {format_amount(-remaining, self.default_currency)}!"]
        used = total_spent / budget
        if used >= self.warning_ratio:
            return ["", f"⚠️ *Warning:* You've used {format_percent(used)} of your budget."]
        return []
