"""FastAPI dependencies wiring the engine to its collaborators."""

from functools import lru_cache

from sitetrack.config import settings
from sitetrack.services.ai_extractor import HttpAIExtractor
from sitetrack.services.conversation_service import ConversationDispatcher
from sitetrack.services.message_processor import MessageProcessor
from sitetrack.store import InMemoryStore


@lru_cache(maxsize=1)
def get_store() -> InMemoryStore:
    """Process-wide reference store."""
    return InMemoryStore()


@lru_cache(maxsize=1)
def get_message_processor() -> MessageProcessor:
    """Dispatcher plus processing boundary, with the AI fallback when enabled."""
    store = get_store()
    ai_extractor = HttpAIExtractor() if settings.ai_fallback_enabled else None
    dispatcher = ConversationDispatcher(directory=store, ai_extractor=ai_extractor)
    return MessageProcessor(dispatcher=dispatcher, store=store)
