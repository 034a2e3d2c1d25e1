"""Pytest configuration and fixtures."""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from prometheus_client import CollectorRegistry

from sitetrack.dependencies import get_message_processor
from sitetrack.metrics.conversation_metrics import ConversationMetrics
from sitetrack.schemas.onboarding import OnboardingStage, OnboardingState
from sitetrack.services.category_resolver import CategoryResolver
from sitetrack.services.conversation_service import ConversationDispatcher
from sitetrack.services.domain_handlers import DomainHandlers
from sitetrack.services.intent_classifier import IntentClassifier
from sitetrack.services.message_processor import MessageProcessor
from sitetrack.services.onboarding_service import OnboardingStateMachine
from sitetrack.store import InMemoryStore

TODAY = date(2026, 2, 15)
NOW = datetime(2026, 2, 15, 9, 30, tzinfo=timezone.utc)
DASHBOARD_URL = "https://dashboard.test"

REGISTERED_PHONE = "+256700000001"
NEW_PHONE = "+256700000002"


@pytest.fixture
def metrics() -> ConversationMetrics:
    """Metrics on a private registry so tests never share counters."""
    return ConversationMetrics(registry=CollectorRegistry())


@pytest.fixture
def classifier() -> IntentClassifier:
    return IntentClassifier(default_currency="UGX", today=lambda: TODAY)


@pytest.fixture
def onboarding() -> OnboardingStateMachine:
    return OnboardingStateMachine(dashboard_url=DASHBOARD_URL, currency="UGX", clock=lambda: NOW)


@pytest.fixture
def handlers() -> DomainHandlers:
    return DomainHandlers(
        category_resolver=CategoryResolver(),
        dashboard_url=DASHBOARD_URL,
        default_currency="UGX",
        warning_ratio=0.8,
        today=lambda: TODAY,
    )


@pytest.fixture
def store() -> InMemoryStore:
    """A store with one registered, onboarded user owning a 1,000,000 budget project."""
    store = InMemoryStore()
    user_id = store.register_user(
        REGISTERED_PHONE,
        internal_user_id="user-1",
        onboarding_state=OnboardingState(stage=OnboardingStage.COMPLETED, completed_at=NOW),
    )
    store.add_project(user_id, "Residential home - Entebbe", budget=Decimal("1000000"))
    return store


@pytest.fixture
def make_dispatcher(classifier, onboarding, handlers, metrics):
    """Factory for dispatchers over a given directory, AI disabled unless asked."""

    def _make(directory, ai_extractor=None, ai_enabled=False, ai_threshold=0.7, ai_timeout=1.0):
        return ConversationDispatcher(
            directory=directory,
            classifier=classifier,
            onboarding=onboarding,
            handlers=handlers,
            ai_extractor=ai_extractor,
            ai_enabled=ai_enabled,
            ai_threshold=ai_threshold,
            ai_timeout=ai_timeout,
            dashboard_url=DASHBOARD_URL,
            metrics=metrics,
        )

    return _make


@pytest.fixture
async def async_client(store, make_dispatcher, metrics) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with the message processor overridden."""
    from sitetrack.main import app

    processor = MessageProcessor(make_dispatcher(store), store, metrics=metrics)
    app.dependency_overrides[get_message_processor] = lambda: processor

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()
