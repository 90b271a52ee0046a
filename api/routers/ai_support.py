"""
AI support chat endpoint.

The message is routed (knowledge answer vs. human), answered from the
knowledge base, and optionally turned into a ticket.
"""

from fastapi import APIRouter, Depends
from typing import Annotated
import time

from api.dependencies import (
    verify_api_key,
    require_permission,
    get_ai_support,
    get_router_agent,
    get_search_log_client,
    get_ticket_service,
)
from api.models.requests import ChatRequest
from api.models.responses import ChatResponse
from api.utils.errors import raise_http_error
from core.ai_support import AISupportService, RouterAgent, TICKET_AGENT
from core.permissions import Permission
from core.schemas import TicketSource, User
from core.storage_search_log import SearchLogClient
from core.ticket_service import TicketService
from utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(verify_api_key)])

TICKET_TITLE_LENGTH = 80


@router.post(
    "/chat",
    response_model=ChatResponse,
    summary="AI Support Chat",
    description="Answer a customer message from the knowledge base, optionally opening a ticket.",
)
async def chat(
    request: ChatRequest,
    user: Annotated[
        User, Depends(require_permission(Permission.VIEW_PUBLIC_ARTICLES, Permission.VIEW_KNOWLEDGE_BASE))
    ],
    ai_support: Annotated[AISupportService, Depends(get_ai_support)],
    router_agent: Annotated[RouterAgent, Depends(get_router_agent)],
    ticket_service: Annotated[TicketService, Depends(get_ticket_service)],
    search_log_client: Annotated[SearchLogClient, Depends(get_search_log_client)],
) -> ChatResponse:
    """
    Chat with the support assistant.

    **Flow:**
    1. The router agent picks `SUPPORT_AGENT` or `TICKET_AGENT`
    2. The assistant answers using the most similar articles as context
    3. The assistant decides whether a human is needed
    4. With `create_ticket_if_needed` set and a human needed, a ticket is
       opened for the acting user with source `chat`

    **Errors:**
    - `502`: chat model failure
    - `503`: AI support not configured
    """
    start_time = time.time()
    history = [m.model_dump() for m in request.history]

    try:
        routing = await router_agent.route(request.message)
        answer = await ai_support.generate_response(request.message, history)
        ticket_needed = routing["agent"] == TICKET_AGENT or await ai_support.should_create_ticket(
            request.message
        )
    except Exception as e:
        raise_http_error(e, "generate chat response")

    latency_ms = int((time.time() - start_time) * 1000)
    try:
        search_log_client.log_search(
            query=request.message,
            method="chat",
            result_count=len(answer["sources"]),
            latency_ms=latency_ms,
            user_id=user.id,
        )
    except Exception as e:
        logger.error(f"Search logging failed: {e}")

    ticket_id = None
    if request.create_ticket_if_needed and ticket_needed:
        title = request.message if len(request.message) <= TICKET_TITLE_LENGTH else (
            request.message[: TICKET_TITLE_LENGTH - 3].rstrip() + "..."
        )
        try:
            ticket = ticket_service.create_ticket(
                title=title,
                description=request.message,
                customer_id=user.id,
                source=TicketSource.CHAT,
                actor_id=user.id,
                metadata={"ai_response": answer["content"], "routing_reason": routing["reason"]},
            )
        except Exception as e:
            raise_http_error(e, "create ticket from chat")
        ticket_id = ticket.id
        logger.info(f"Chat created ticket {ticket_id} for user {user.id}")

    logger.info(
        f"Chat answered in {latency_ms}ms: agent={routing['agent']}, "
        f"sources={len(answer['sources'])}, ticket_needed={ticket_needed}"
    )

    return ChatResponse(
        content=answer["content"],
        sources=answer["sources"],
        agent=routing["agent"],
        routing_reason=routing["reason"],
        ticket_needed=ticket_needed,
        ticket_id=ticket_id,
    )
