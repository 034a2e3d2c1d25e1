"""Tests for the conversation dispatcher."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from sitetrack.exceptions import AIExtractionError
from sitetrack.schemas.conversation import (
    CLARIFICATION_REQUIRED,
    REGISTRATION_REQUIRED,
    AccountContext,
    InboundMessage,
)
from sitetrack.schemas.intent import IntentKind, ParsedIntent
from sitetrack.schemas.mutations import RecordExpense
from sitetrack.schemas.onboarding import OnboardingStage, OnboardingState
from sitetrack.services.ai_extractor import AIExtraction
from sitetrack.services.conversation_service import build_ai_context

from conftest import NEW_PHONE, REGISTERED_PHONE


def message(text="", phone=REGISTERED_PHONE, media_refs=()):
    return InboundMessage(external_user_id=phone, text=text, media_refs=media_refs)


def ai_extraction(confidence=0.85, clarification=None):
    return AIExtraction(
        intent=ParsedIntent(
            kind=IntentKind.LOG_EXPENSE,
            confidence=confidence,
            amount=Decimal("500"),
            description="cement",
            currency="UGX",
            source="ai",
            rule="ai_fallback",
        ),
        clarification=clarification,
    )


class TestRouting:
    """Registration and onboarding routing."""

    @pytest.mark.asyncio
    async def test_unknown_user_gets_registration_reply(self, store, make_dispatcher, metrics):
        dispatcher = make_dispatcher(store)
        dispatcher.classifier = Mock()

        reply = await dispatcher.process_message(message("spent 500 on cement", phone=NEW_PHONE))

        assert reply.marker == REGISTRATION_REQUIRED
        assert reply.mutations == ()
        assert reply.onboarding_state is None
        dispatcher.classifier.classify.assert_not_called()
        assert metrics.registry.get_sample_value(
            "sitetrack_messages_processed_total", {"flow": "registration", "intent": "none"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_onboarding_in_progress_bypasses_classifier(self, store, make_dispatcher):
        store.register_user(
            NEW_PHONE, onboarding_state=OnboardingState(stage=OnboardingStage.AWAITING_LOCATION)
        )
        dispatcher = make_dispatcher(store)
        dispatcher.classifier = Mock()

        reply = await dispatcher.process_message(message("spent 500 on cement", phone=NEW_PHONE))

        dispatcher.classifier.classify.assert_not_called()
        assert reply.mutations == ()
        assert reply.onboarding_state.stage == OnboardingStage.AWAITING_START_DATE
        assert reply.onboarding_state.collected == {"location": "spent 500 on cement"}

    @pytest.mark.asyncio
    async def test_greeting_at_none_starts_onboarding(self, store, make_dispatcher):
        store.register_user(NEW_PHONE)
        dispatcher = make_dispatcher(store)

        reply = await dispatcher.process_message(message("Hi!", phone=NEW_PHONE))

        assert reply.onboarding_state.stage == OnboardingStage.AWAITING_PROJECT_TYPE
        assert "What kind of project is this?" in reply.text

    @pytest.mark.asyncio
    async def test_greeting_after_onboarding_is_help(self, store, make_dispatcher):
        reply = await make_dispatcher(store).process_message(message("hi"))

        assert reply.onboarding_state is None
        assert "I didn't quite understand that" in reply.text

    @pytest.mark.asyncio
    async def test_confirmation_emits_create_project(self, store, make_dispatcher):
        store.register_user(
            NEW_PHONE,
            onboarding_state=OnboardingState(
                stage=OnboardingStage.CONFIRMATION, collected={"project_type": "Residential home"}
            ),
        )

        reply = await make_dispatcher(store).process_message(message("1", phone=NEW_PHONE))

        assert reply.onboarding_state.stage == OnboardingStage.COMPLETED
        assert reply.mutations[0].kind == "create_project"

    @pytest.mark.asyncio
    async def test_budget_answer_moves_to_confirmation(self, store, make_dispatcher):
        store.register_user(
            NEW_PHONE,
            onboarding_state=OnboardingState(
                stage=OnboardingStage.AWAITING_BUDGET,
                collected={"project_type": "Residential home", "location": "Entebbe"},
            ),
        )

        reply = await make_dispatcher(store).process_message(message("1000000", phone=NEW_PHONE))

        assert reply.mutations == ()
        assert reply.onboarding_state.stage == OnboardingStage.CONFIRMATION
        assert reply.onboarding_state.collected["budget"] == "1000000"
        assert "1,000,000" in reply.text
        assert "1. Yes, create project!" in reply.text
        assert "2. Edit something" in reply.text
        assert "3. Add more details later" in reply.text


class TestIntentFlow:
    """Rule-classified messages end to end."""

    @pytest.mark.asyncio
    async def test_expense(self, store, make_dispatcher):
        reply = await make_dispatcher(store).process_message(message("spent 500 on cement"))

        assert len(reply.mutations) == 1
        mutation = reply.mutations[0]
        assert isinstance(mutation, RecordExpense)
        assert mutation.amount == Decimal("500")
        assert mutation.category == "Materials"
        assert "UGX 500" in reply.text

    @pytest.mark.asyncio
    async def test_task(self, store, make_dispatcher):
        reply = await make_dispatcher(store).process_message(message("task: inspect foundation"))

        assert reply.mutations[0].kind == "create_task"
        assert reply.mutations[0].title == "inspect foundation"

    @pytest.mark.asyncio
    async def test_nonsense_is_help(self, store, make_dispatcher):
        reply = await make_dispatcher(store).process_message(message("xyz nonsense"))

        assert reply.mutations == ()
        assert "I didn't quite understand that" in reply.text

    @pytest.mark.asyncio
    async def test_low_confidence_rule_without_ai_is_help(self, store, make_dispatcher):
        reply = await make_dispatcher(store).process_message(message("cement, 500"))

        assert reply.mutations == ()
        assert "I didn't quite understand that" in reply.text

    @pytest.mark.asyncio
    async def test_photo_without_caption(self, store, make_dispatcher):
        reply = await make_dispatcher(store).process_message(message(media_refs=("media-1",)))

        assert reply.mutations[0].kind == "store_image"
        assert reply.mutations[0].media_ref == "media-1"


class TestAIFallback:
    """The AI extractor is consulted only below the threshold."""

    @pytest.mark.asyncio
    async def test_not_consulted_for_confident_rules(self, store, make_dispatcher):
        extractor = AsyncMock()
        dispatcher = make_dispatcher(store, ai_extractor=extractor, ai_enabled=True)

        await dispatcher.process_message(message("spent 500 on cement"))

        extractor.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_consulted_when_disabled(self, store, make_dispatcher):
        extractor = AsyncMock()
        dispatcher = make_dispatcher(store, ai_extractor=extractor, ai_enabled=False)

        await dispatcher.process_message(message("cement, 500"))

        extractor.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_confident_ai_intent_used(self, store, make_dispatcher):
        extractor = AsyncMock()
        extractor.extract.return_value = ai_extraction(confidence=0.85)
        dispatcher = make_dispatcher(store, ai_extractor=extractor, ai_enabled=True)

        reply = await dispatcher.process_message(message("cement, 500"))

        extractor.extract.assert_awaited_once()
        text, context = extractor.extract.await_args.args
        assert text == "cement, 500"
        assert context["project_name"] == "Residential home - Entebbe"
        assert reply.mutations[0].amount == Decimal("500")

    @pytest.mark.asyncio
    async def test_low_confidence_ai_intent_is_help(self, store, make_dispatcher):
        extractor = AsyncMock()
        extractor.extract.return_value = ai_extraction(confidence=0.6)
        dispatcher = make_dispatcher(store, ai_extractor=extractor, ai_enabled=True)

        reply = await dispatcher.process_message(message("cement, 500"))

        assert reply.mutations == ()
        assert "I didn't quite understand that" in reply.text

    @pytest.mark.asyncio
    async def test_clarification_question(self, store, make_dispatcher):
        extractor = AsyncMock()
        extractor.extract.return_value = ai_extraction(
            confidence=0.4, clarification='Did you spend 500 on cement?\n\nReply with "Yes" or "No"'
        )
        dispatcher = make_dispatcher(store, ai_extractor=extractor, ai_enabled=True)

        reply = await dispatcher.process_message(message("cement, 500"))

        assert reply.marker == CLARIFICATION_REQUIRED
        assert reply.mutations == ()
        assert reply.text.endswith('Reply with "Yes" or "No"')

    @pytest.mark.asyncio
    async def test_extraction_error_degrades_to_help(self, store, make_dispatcher):
        extractor = AsyncMock()
        extractor.extract.side_effect = AIExtractionError("boom", reason="error")
        dispatcher = make_dispatcher(store, ai_extractor=extractor, ai_enabled=True)

        reply = await dispatcher.process_message(message("cement, 500"))

        assert reply.mutations == ()
        assert "I didn't quite understand that" in reply.text

    @pytest.mark.asyncio
    async def test_unexpected_error_degrades_to_help(self, store, make_dispatcher):
        extractor = AsyncMock()
        extractor.extract.side_effect = RuntimeError("socket closed")
        dispatcher = make_dispatcher(store, ai_extractor=extractor, ai_enabled=True)

        reply = await dispatcher.process_message(message("cement, 500"))

        assert reply.mutations == ()

    @pytest.mark.asyncio
    async def test_slow_extractor_times_out(self, store, make_dispatcher):
        async def slow(text, context):
            await asyncio.sleep(5)
            return ai_extraction()

        extractor = Mock()
        extractor.extract = slow
        dispatcher = make_dispatcher(store, ai_extractor=extractor, ai_enabled=True, ai_timeout=0.05)

        reply = await dispatcher.process_message(message("cement, 500"))

        assert reply.mutations == ()
        assert "I didn't quite understand that" in reply.text


class TestBuildAIContext:
    """Project context handed to the extractor."""

    def test_context(self):
        context = build_ai_context(AccountContext(
            project_name="Villa",
            budget_amount=Decimal("1000"),
            total_spent=Decimal("300"),
            category_totals={"Labor": Decimal("100"), "Materials": Decimal("200")},
        ))

        assert context == {
            "project_name": "Villa",
            "budget": "1000",
            "total_spent": "300",
            "categories": ["Materials", "Labor"],
        }
