"""
Message API Routes.

Provides:
- POST /api/messages/process  - Run one inbound message through the engine

The body is a transport-neutral envelope; adapting a specific messaging
provider's webhook payload to it is the provider integration's job.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from sitetrack.dependencies import get_message_processor
from sitetrack.exceptions import MutationApplicationError
from sitetrack.logging_config import get_logger
from sitetrack.schemas.conversation import InboundMessage
from sitetrack.services.message_processor import MessageProcessor

logger = get_logger(__name__)
router = APIRouter()


# ---- Request/Response Models ----


class ProcessMessageRequest(BaseModel):
    """One inbound message."""

    external_user_id: str = Field(..., min_length=1, max_length=128, description="Channel identity, e.g. a phone number")
    text: str = Field("", max_length=4096)
    media_refs: List[str] = Field(default_factory=list, description="Opaque media identifiers, in order")
    channel_message_id: str = Field("", max_length=128)


class ProcessMessageResponse(BaseModel):
    """The engine's reply and the mutation that was applied, if any."""

    text: str
    marker: Optional[str] = None
    mutations: List[Dict[str, Any]] = Field(default_factory=list)


# ---- Endpoints ----


@router.post("/process", response_model=ProcessMessageResponse)
async def process_message(
    body: ProcessMessageRequest,
    processor: MessageProcessor = Depends(get_message_processor),
) -> ProcessMessageResponse:
    """
    Process one inbound message.

    Returns 502 when the mutation described by the reply could not be
    applied; the reply is not delivered in that case.
    """
    message = InboundMessage(
        external_user_id=body.external_user_id,
        text=body.text,
        media_refs=tuple(body.media_refs),
        channel_message_id=body.channel_message_id,
    )

    try:
        reply = await processor.process(message)
    except MutationApplicationError as e:
        logger.error("Message processing failed", error=str(e), mutation=e.mutation.kind)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "mutation_failed", "mutation": e.mutation.kind, "message": str(e)},
        )

    return ProcessMessageResponse(
        text=reply.text,
        marker=reply.marker,
        mutations=[m.model_dump(mode="json") for m in reply.mutations],
    )
