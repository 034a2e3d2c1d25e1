"""
Conversation Dispatcher: the engine's single entry point.

    inbound message
      -> unknown user?            registration reply, nothing else
      -> onboarding in progress?  onboarding state machine only
      -> bare greeting at none?   start onboarding
      -> intent classifier -> (low confidence) AI fallback -> domain handler

Produces exactly one ConversationReply per message and performs no I/O
beyond the injected collaborators' reads; mutations and the new onboarding
state are returned for the caller to apply.
"""

import asyncio
from typing import Any, Dict, Optional, Protocol

from sitetrack.config import settings
from sitetrack.exceptions import AIExtractionError
from sitetrack.logging_config import get_logger
from sitetrack.metrics.conversation_metrics import ConversationMetrics, conversation_metrics
from sitetrack.schemas.conversation import (
    CLARIFICATION_REQUIRED,
    REGISTRATION_REQUIRED,
    AccountContext,
    ConversationReply,
    InboundMessage,
    UserRecord,
)
from sitetrack.schemas.intent import IntentKind, ParsedIntent
from sitetrack.schemas.onboarding import OnboardingStage
from sitetrack.services.ai_extractor import AIExtraction, AIExtractor
from sitetrack.services.category_resolver import category_totals_sorted
from sitetrack.services.domain_handlers import DomainHandlers
from sitetrack.services.intent_classifier import IntentClassifier
from sitetrack.services.onboarding_service import OnboardingStateMachine, OnboardingStep, is_greeting

logger = get_logger(__name__)

REGISTRATION_REPLY = (
    "👋 Hi! This number isn't registered with SiteTrack yet.\n\n"
    "Sign up at {dashboard_url} and add this phone number to your profile, "
    "then message us again."
)


class UserDirectory(Protocol):
    """Read-side collaborator: identity lookup and account figures."""

    async def lookup_user(self, external_user_id: str) -> Optional[UserRecord]:
        ...

    async def load_account_context(self, internal_user_id: str) -> AccountContext:
        ...


def build_ai_context(account: AccountContext) -> Dict[str, Any]:
    """Short project context for the AI extractor: budget and recent categories."""
    context: Dict[str, Any] = {}
    if account.project_name:
        context["project_name"] = account.project_name
    if account.budget_amount is not None:
        context["budget"] = str(account.budget_amount)
    context["total_spent"] = str(account.total_spent)
    context["categories"] = [name for name, _ in category_totals_sorted(account.category_totals)[:3]]
    return context


class ConversationDispatcher:
    """
    Orchestrates one inbound message end to end.

    Usage:
        dispatcher = ConversationDispatcher(directory=store)
        reply = await dispatcher.process_message(InboundMessage(external_user_id="+256...", text="hi"))
    """

    def __init__(
        self,
        directory: UserDirectory,
        classifier: Optional[IntentClassifier] = None,
        onboarding: Optional[OnboardingStateMachine] = None,
        handlers: Optional[DomainHandlers] = None,
        ai_extractor: Optional[AIExtractor] = None,
        ai_enabled: Optional[bool] = None,
        ai_threshold: Optional[float] = None,
        ai_timeout: Optional[float] = None,
        dashboard_url: Optional[str] = None,
        metrics: Optional[ConversationMetrics] = None,
    ):
        self.directory = directory
        self.classifier = classifier or IntentClassifier()
        self.onboarding = onboarding or OnboardingStateMachine()
        self.handlers = handlers or DomainHandlers()
        self.ai_extractor = ai_extractor
        self.ai_enabled = settings.ai_fallback_enabled if ai_enabled is None else ai_enabled
        self.ai_threshold = settings.ai_fallback_threshold if ai_threshold is None else ai_threshold
        self.ai_timeout = ai_timeout or settings.ai_extractor_timeout
        self.dashboard_url = (dashboard_url or settings.dashboard_url).rstrip("/")
        self.metrics = metrics or conversation_metrics

    async def process_message(self, message: InboundMessage) -> ConversationReply:
        """Turn one inbound message into exactly one reply."""
        logger.info(
            "Processing message",
            external_user_id=message.external_user_id,
            channel_message_id=message.channel_message_id,
            media_count=len(message.media_refs),
            text=message.text[:100],
        )

        user = await self.directory.lookup_user(message.external_user_id)
        if user is None:
            logger.info("Message from unregistered user", external_user_id=message.external_user_id)
            self.metrics.record_message("registration")
            return ConversationReply(
                text=REGISTRATION_REPLY.format(dashboard_url=self.dashboard_url),
                marker=REGISTRATION_REQUIRED,
            )

        state = user.onboarding_state
        if state.in_progress:
            self.metrics.record_message("onboarding")
            return self._onboarding_reply(self.onboarding.step(state, message.text))

        if state.stage == OnboardingStage.NONE and is_greeting(message.text):
            self.metrics.record_message("onboarding")
            return self._onboarding_reply(self.onboarding.start(state))

        account = await self.directory.load_account_context(user.internal_user_id)
        return await self._handle_intent(message, account)

    def _onboarding_reply(self, step: OnboardingStep) -> ConversationReply:
        mutations = (step.mutation,) if step.mutation is not None else ()
        return ConversationReply(text=step.reply, mutations=mutations, onboarding_state=step.state)

    async def _handle_intent(self, message: InboundMessage, account: AccountContext) -> ConversationReply:
        intent = self.classifier.classify(message.text, message.media_refs)

        if intent.confidence < self.ai_threshold:
            if self.ai_enabled and self.ai_extractor is not None and message.text.strip():
                extraction = await self._ai_fallback(message.text, account)
                if extraction is not None:
                    if extraction.clarification:
                        self.metrics.record_message("intent", "clarification")
                        return ConversationReply(
                            text=extraction.clarification, marker=CLARIFICATION_REQUIRED
                        )
                    if extraction.intent.confidence >= self.ai_threshold:
                        intent = extraction.intent
                        if message.media_refs and intent.media_ref is None:
                            intent = intent.model_copy(update={"media_ref": message.media_refs[0]})

            if intent.confidence < self.ai_threshold and intent.kind != IntentKind.UNKNOWN:
                logger.info(
                    "Low confidence intent rejected",
                    kind=intent.kind.value,
                    confidence=intent.confidence,
                    rule=intent.rule,
                )
                intent = ParsedIntent.unknown(source=intent.source)

        self.metrics.record_message("intent", intent.kind.value)
        return self.handlers.handle(intent, account)

    async def _ai_fallback(self, text: str, account: AccountContext) -> Optional[AIExtraction]:
        """One bounded attempt; every failure degrades to None."""
        logger.info("AI fallback invoked", text=text[:100])
        try:
            return await asyncio.wait_for(
                self.ai_extractor.extract(text, build_ai_context(account)),
                timeout=self.ai_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("AI fallback degraded", reason="timeout", timeout=self.ai_timeout)
        except AIExtractionError as e:
            logger.warning("AI fallback degraded", reason=e.reason, error=str(e))
        except Exception as e:
            logger.error("AI fallback degraded", reason="unexpected", error=str(e), exc_info=True)
        return None
