"""
Processing boundary around the Dispatcher.

Owns the steps the pure engine leaves to its caller: per-user
serialization, applying the (single) mutation, persisting the new
onboarding state and delivering the reply. A failed mutation stops
everything after it. Per-user locks are dropped once no message for that
user is in flight.
"""

import asyncio
from typing import Dict, Optional, Protocol

from sitetrack.exceptions import MutationApplicationError
from sitetrack.logging_config import get_logger
from sitetrack.metrics.conversation_metrics import ConversationMetrics, conversation_metrics
from sitetrack.schemas.conversation import ConversationReply, InboundMessage
from sitetrack.schemas.mutations import Mutation
from sitetrack.schemas.onboarding import OnboardingStage, OnboardingState
from sitetrack.services.conversation_service import ConversationDispatcher, UserDirectory

logger = get_logger(__name__)


class ConversationStore(UserDirectory, Protocol):
    """Read and write collaborator ports."""

    async def apply_mutation(self, internal_user_id: str, mutation: Mutation) -> None:
        ...

    async def persist_onboarding_state(self, internal_user_id: str, state: OnboardingState) -> None:
        ...


class ReplySender(Protocol):
    """Delivery channel for reply text."""

    async def send_text(self, external_user_id: str, text: str) -> None:
        ...


class MessageProcessor:
    """Runs the Dispatcher and applies its output, one message per user at a time."""

    def __init__(
        self,
        dispatcher: ConversationDispatcher,
        store: ConversationStore,
        sender: Optional[ReplySender] = None,
        metrics: Optional[ConversationMetrics] = None,
    ):
        self.dispatcher = dispatcher
        self.store = store
        self.sender = sender
        self.metrics = metrics or conversation_metrics
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    async def process(self, message: InboundMessage) -> ConversationReply:
        """
        Process one message.

        A reply that completes onboarding persists its state before the
        project is created. Every other reply applies its mutation first.

        Raises:
            MutationApplicationError: the store rejected the mutation; no
                reply was sent, and the onboarding state was not persisted
                unless onboarding was being completed.
        """
        key = message.external_user_id
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                reply = await self._process_locked(message)
        finally:
            self._waiters[key] -= 1
            if not self._waiters[key]:
                del self._waiters[key]
                del self._locks[key]
        return reply

    async def _process_locked(self, message: InboundMessage) -> ConversationReply:
        reply = await self.dispatcher.process_message(message)

        if reply.mutations or reply.onboarding_state is not None:
            user = await self.store.lookup_user(message.external_user_id)
            if user is None:
                raise LookupError(f"User {message.external_user_id} disappeared mid-message")

            state = reply.onboarding_state
            persist_first = state is not None and state.stage == OnboardingStage.COMPLETED
            if persist_first:
                await self.store.persist_onboarding_state(user.internal_user_id, state)

            for mutation in reply.mutations:
                await self._apply(user.internal_user_id, mutation, reply)

            if state is not None and not persist_first:
                await self.store.persist_onboarding_state(user.internal_user_id, state)

        if self.sender is not None:
            await self.sender.send_text(message.external_user_id, reply.text)

        return reply

    async def _apply(self, internal_user_id: str, mutation: Mutation, reply: ConversationReply) -> None:
        try:
            await self.store.apply_mutation(internal_user_id, mutation)
        except Exception as e:
            self.metrics.record_mutation_failure(mutation.kind)
            logger.error(
                "Mutation application failed",
                kind=mutation.kind,
                internal_user_id=internal_user_id,
                error=str(e),
                exc_info=True,
            )
            raise MutationApplicationError(mutation, reply.text, cause=e) from e
