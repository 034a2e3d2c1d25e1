"""
AI Fallback Extractor.

Asks a remote text-completion service to read a message the rules could not
classify confidently, and maps its JSON answer onto ``ParsedIntent``.

The capability has exactly one failure type, ``AIExtractionError``; a
timeout, a transport error and unparseable output all surface as that and
never as a fabricated intent.
"""

import json
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Protocol

import httpx

from sitetrack.config import settings
from sitetrack.exceptions import AIExtractionError
from sitetrack.logging_config import get_logger
from sitetrack.metrics.conversation_metrics import ConversationMetrics, conversation_metrics
from sitetrack.schemas.intent import IntentKind, ParsedIntent, Priority
from sitetrack.services.formatting import format_amount
from sitetrack.services.lexical_extractor import clean_description

logger = get_logger(__name__)

CLARIFICATION_SUFFIX = '\n\nReply with "Yes" or "No"'

AI_TYPES: Dict[str, IntentKind] = {
    "expense": IntentKind.LOG_EXPENSE,
    "task": IntentKind.CREATE_TASK,
    "budget": IntentKind.SET_BUDGET,
    "query": IntentKind.QUERY_EXPENSES,
    "photo": IntentKind.LOG_IMAGE,
    "unknown": IntentKind.UNKNOWN,
    # Updates the engine has no handler for
    "progress": IntentKind.UNKNOWN,
    "issue": IntentKind.UNKNOWN,
}

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

EXTRACTION_PROMPT = """You are SiteTrack, an assistant for construction projects.

Project context: {context}

Parse the user's message into JSON in this format:
{{
  "type": "expense" | "task" | "budget" | "query" | "photo" | "unknown",
  "value": number (amount for expenses and budgets),
  "date": "YYYY-MM-DD",
  "notes": string (expense description or task title),
  "priority": "low" | "medium" | "high" (tasks only),
  "confidence": 0-100,
  "requiresClarification": boolean,
  "clarificationQuestion": string (a Yes/No question)
}}

Extract amounts in {currency}. If the message is off-topic, return type "unknown".
Respond ONLY with valid JSON, no other text.

Message: {message}"""


@dataclass(frozen=True)
class AIExtraction:
    """An AI reading of a message, with a question when it is unsure."""

    intent: ParsedIntent
    clarification: Optional[str] = None


class AIExtractor(Protocol):
    """Capability interface injected into the Dispatcher."""

    async def extract(self, text: str, context: Dict[str, Any]) -> AIExtraction:
        """Raises ``AIExtractionError`` on any failure."""
        ...


def _number(value: Any, field: str) -> Decimal:
    if isinstance(value, bool):
        raise AIExtractionError(f"Field {field!r} is not numeric", reason="malformed")
    try:
        number = Decimal(str(value))
    except InvalidOperation as e:
        raise AIExtractionError(f"Field {field!r} is not numeric", reason="malformed") from e
    if not number.is_finite():
        raise AIExtractionError(f"Field {field!r} is not finite", reason="malformed")
    return number


class HttpAIExtractor:
    """
    ``AIExtractor`` backed by an HTTP completion service.

    POSTs ``{query, mode: "parse", context}`` to ``{base_url}/query`` and
    reads the ``response`` text. One attempt per message, no retries.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        clarification_threshold: Optional[float] = None,
        currency: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[ConversationMetrics] = None,
    ):
        self.base_url = (base_url or settings.ai_extractor_url).rstrip("/")
        self.timeout = timeout or settings.ai_extractor_timeout
        self.clarification_threshold = (
            clarification_threshold
            if clarification_threshold is not None
            else settings.ai_clarification_threshold
        )
        self.currency = currency or settings.default_currency
        self._transport = transport
        self.metrics = metrics or conversation_metrics

    async def extract(self, text: str, context: Dict[str, Any]) -> AIExtraction:
        prompt = EXTRACTION_PROMPT.format(
            context=json.dumps(context, default=str) if context else "No active project",
            currency=self.currency,
            message=text,
        )

        with self.metrics.time_ai_request() as outcome:
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(
                        f"{self.base_url}/query",
                        json={"query": prompt, "mode": "parse", "context": context},
                    )
                    response.raise_for_status()
                    data = response.json()
            except httpx.TimeoutException as e:
                outcome["outcome"] = "timeout"
                raise AIExtractionError("AI extraction timed out", reason="timeout") from e
            except httpx.HTTPError as e:
                outcome["outcome"] = "error"
                raise AIExtractionError(f"AI extraction request failed: {e}", reason="error") from e
            except ValueError as e:
                outcome["outcome"] = "malformed"
                raise AIExtractionError("AI service returned invalid JSON", reason="malformed") from e

            try:
                if not isinstance(data, dict) or not isinstance(data.get("response"), str):
                    raise AIExtractionError("AI service response has no text", reason="malformed")
                extraction = self.parse_response(data["response"])
            except AIExtractionError:
                outcome["outcome"] = "malformed"
                raise

            outcome["outcome"] = "success"

        logger.info(
            "AI extraction completed",
            kind=extraction.intent.kind.value,
            confidence=extraction.intent.confidence,
            clarification=extraction.clarification is not None,
        )
        return extraction

    def parse_response(self, text: str) -> AIExtraction:
        """Map the model's JSON answer onto a ParsedIntent."""
        match = _JSON_OBJECT_RE.search(text)
        if not match:
            raise AIExtractionError("No JSON object in AI response", reason="malformed")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise AIExtractionError("AI response is not valid JSON", reason="malformed") from e
        if not isinstance(data, dict):
            raise AIExtractionError("AI response is not a JSON object", reason="malformed")

        kind = AI_TYPES.get(str(data.get("type", "")).strip().lower())
        if kind is None:
            raise AIExtractionError(f"Unknown AI intent type {data.get('type')!r}", reason="malformed")

        confidence = _number(data.get("confidence", 0), "confidence")
        if confidence > 1:
            confidence = confidence / 100
        confidence_value = float(min(max(confidence, Decimal(0)), Decimal(1)))

        amount = None
        if data.get("value") is not None:
            amount = _number(data["value"], "value")
            if amount <= 0:
                amount = None

        notes = data.get("notes")
        description = clean_description(notes) if isinstance(notes, str) else None

        priority = None
        if isinstance(data.get("priority"), str):
            try:
                priority = Priority(data["priority"].strip().lower())
            except ValueError:
                priority = None
        if kind == IntentKind.CREATE_TASK and priority is None:
            priority = Priority.MEDIUM

        expense_date = None
        if isinstance(data.get("date"), str):
            try:
                expense_date = date.fromisoformat(data["date"])
            except ValueError:
                expense_date = None

        intent = ParsedIntent(
            kind=kind,
            confidence=0.0 if kind == IntentKind.UNKNOWN else confidence_value,
            amount=amount,
            description=description,
            priority=priority,
            currency=self.currency,
            expense_date=expense_date,
            rule="ai_fallback",
            source="ai",
        )

        clarification = None
        flagged = data.get("requiresClarification") is True
        if kind != IntentKind.UNKNOWN and (flagged or confidence_value < self.clarification_threshold):
            question = data.get("clarificationQuestion")
            if not isinstance(question, str) or not question.strip():
                question = self._default_question(intent)
            clarification = question.strip() + CLARIFICATION_SUFFIX

        return AIExtraction(intent=intent, clarification=clarification)

    def _default_question(self, intent: ParsedIntent) -> str:
        if intent.kind == IntentKind.LOG_EXPENSE and intent.amount and intent.description:
            return (
                f"Did you mean you spent {format_amount(intent.amount, intent.currency)} "
                f"on {intent.description}?"
            )
        if intent.kind == IntentKind.CREATE_TASK and intent.description:
            return f"Should I add the task \"{intent.description}\"?"
        return "Did I understand your update correctly?"
