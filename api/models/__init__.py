"""Pydantic models for FastAPI request and response validation."""

from api.models.requests import (
    ArticleCreateRequest,
    ArticleUpdateRequest,
    SemanticSearchRequest,
    TicketCreateRequest,
    TicketUpdateRequest,
    StatusChangeRequest,
    ChatRequest,
)
from api.models.responses import (
    PaginationInfo,
    KnowledgeSearchResponse,
    SemanticSearchResponse,
    TicketListResponse,
    ChatResponse,
    HealthResponse,
)

__all__ = [
    "ArticleCreateRequest",
    "ArticleUpdateRequest",
    "SemanticSearchRequest",
    "TicketCreateRequest",
    "TicketUpdateRequest",
    "StatusChangeRequest",
    "ChatRequest",
    "PaginationInfo",
    "KnowledgeSearchResponse",
    "SemanticSearchResponse",
    "TicketListResponse",
    "ChatResponse",
    "HealthResponse",
]
