"""
Pydantic response models for the helpdesk API.

Domain objects (Article, Ticket, User, ...) are returned as the core.schemas
models; the models here add pagination, search metadata and aggregates.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID
from datetime import datetime
import math

from core.schemas import Article, PopularSearch, SearchResult, SLAState, Ticket, TicketStatus
from core.sla import SLAConfig, SLAEvaluation


class PaginationInfo(BaseModel):
    page: int = Field(..., examples=[1])
    limit: int = Field(..., examples=[10])
    total: int = Field(..., examples=[42])
    total_pages: int = Field(..., examples=[5])

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationInfo":
        return cls(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit) if limit else 0)


class ArticleListResponse(BaseModel):
    articles: List[Article]
    pagination: PaginationInfo


class RankedArticle(Article):
    """Article with its full-text rank (0 when the search had no query)."""

    rank: float = 0.0


class KnowledgeSearchResponse(BaseModel):
    """
    Full-text knowledge base search response.

    Each article carries current_version, its latest version number.
    """

    query: Optional[str] = Field(default=None, examples=["password reset"])
    articles: List[RankedArticle]
    pagination: PaginationInfo
    latency_ms: int = Field(..., examples=[12])


class SemanticSearchResponse(BaseModel):
    query: str
    results: List[SearchResult] = Field(
        ..., description="Results ordered by descending similarity (empty list if none)"
    )
    total_results: int
    latency_ms: int


class ViewCountResponse(BaseModel):
    article_id: UUID
    view_count: int


class TicketListResponse(BaseModel):
    tickets: List[Ticket]
    pagination: PaginationInfo


class AvailableTransition(BaseModel):
    to_status: TicketStatus
    allowed_roles: Optional[List[str]] = None
    valid: bool
    message: str = ""


class TicketSLAResponse(BaseModel):
    ticket_id: UUID
    state: Optional[SLAState] = None
    config: Optional[SLAConfig] = None
    evaluation: Optional[SLAEvaluation] = Field(
        default=None, description="null while the clock is paused or stopped"
    )


class ResolutionHours(BaseModel):
    avg: float
    min: float
    max: float
    count: int


class VolumePoint(BaseModel):
    date: str
    created: int
    resolved: int


class AgentMetrics(BaseModel):
    agent_id: str
    name: str
    assigned: int
    resolved: int
    avg_resolution_hours: Optional[float] = None
    sla_breaches: int


class TicketStatsResponse(BaseModel):
    period: Dict[str, str]
    total: int
    by_status: Dict[str, int]
    by_priority: Dict[str, int]
    resolution_hours: Dict[str, ResolutionHours]
    sla_breaches: Dict[str, int]
    volume_trend: List[VolumePoint]
    agents: List[AgentMetrics]


class ChatSource(BaseModel):
    title: str
    url: str


class ChatResponse(BaseModel):
    content: str
    sources: List[ChatSource] = Field(default_factory=list)
    agent: Literal["SUPPORT_AGENT", "TICKET_AGENT"]
    routing_reason: str = ""
    ticket_needed: bool = False
    ticket_id: Optional[UUID] = Field(
        default=None, description="Set when a ticket was created for this message"
    )


class RoleResponse(BaseModel):
    role: str
    label: str
    permissions: List[str]
    is_default: bool = Field(
        ..., description="True when the role has no stored overrides and uses the built-in set"
    )


class EffectivePermissionsResponse(BaseModel):
    user_id: UUID
    role: str
    permissions: List[str]


class TeamMetricsResponse(BaseModel):
    team_id: UUID
    open_tickets: int
    resolved_tickets: int
    avg_resolution_hours: Optional[float] = None
    member_count: int


class SearchAnalyticsResponse(BaseModel):
    days: int
    total_searches: int
    by_method: Dict[str, int]
    avg_latency_ms: Optional[float] = None
    popular_queries: List[PopularSearch]
    zero_result_queries: List[PopularSearch]


class SLACheckResponse(BaseModel):
    checked: int
    breaches: int
    escalations: int
    automations: int
    errors: int


class HealthResponse(BaseModel):
    """
    Health check response with per-component status.
    """

    status: Literal["healthy", "degraded", "unhealthy"] = Field(
        ..., description="Overall health status", examples=["healthy"]
    )
    timestamp: datetime = Field(..., description="Health check timestamp (UTC)")
    checks: Dict[str, Any] = Field(
        ...,
        description="Individual component health checks",
        examples=[
            {
                "database": {"status": "healthy", "pool_size": 5, "pool_available": 4},
                "embeddings": {"status": "healthy", "num_embeddings": 120},
                "chat": {"status": "healthy", "model": "gpt-3.5-turbo"},
            }
        ],
    )
