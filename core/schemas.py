from enum import Enum
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID


class ArticleStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    WAITING = "waiting"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# Ordering used by priority conditions and escalations
PRIORITY_ORDER = [
    TicketPriority.LOW,
    TicketPriority.MEDIUM,
    TicketPriority.HIGH,
    TicketPriority.URGENT,
]


def priority_rank(priority: "TicketPriority | str") -> int:
    return PRIORITY_ORDER.index(TicketPriority(priority))


class TicketType(str, Enum):
    QUESTION = "question"
    PROBLEM = "problem"
    INCIDENT = "incident"
    TASK = "task"


class TicketSource(str, Enum):
    EMAIL = "email"
    WEB = "web"
    PHONE = "phone"
    CHAT = "chat"


# Embeddings
class EmbeddingDocument(BaseModel):
    """
    Document to be embedded and stored for semantic search.
    """
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    url: Optional[str] = None
    article_id: Optional[UUID] = Field(
        default=None, description="Knowledge base article the document was built from."
    )


class SearchResult(BaseModel):
    """
    Single row returned by the match_embeddings function.
    """
    id: int
    title: str
    content: str
    url: Optional[str] = None
    article_id: Optional[UUID] = None
    similarity: float


# Knowledge base
class Category(BaseModel):
    id: UUID
    name: str
    slug: str
    description: Optional[str] = None
    parent_id: Optional[UUID] = None
    sort_order: int = 0
    children: List["Category"] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Article(BaseModel):
    id: UUID
    title: str
    slug: str
    content: str
    excerpt: Optional[str] = None
    status: ArticleStatus
    category_id: Optional[UUID] = None
    tags: List[str] = Field(default_factory=list)
    author_id: Optional[UUID] = None
    current_version: int = 1
    view_count: int = 0
    helpful_count: int = 0
    not_helpful_count: int = 0
    created_at: datetime
    updated_at: datetime
    published_at: Optional[datetime] = None


class ArticleVersion(BaseModel):
    id: UUID
    article_id: UUID
    version: int
    title: str
    content: str
    changes: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime


class ArticleFeedback(BaseModel):
    id: UUID
    article_id: UUID
    user_id: Optional[UUID] = None
    is_helpful: bool
    comment: Optional[str] = None
    created_at: datetime


class ArticleSearchHit(BaseModel):
    """
    Full-text search hit with its rank (0 when no query was given).
    """
    article: Article
    rank: float = 0.0


# Tickets
class Ticket(BaseModel):
    id: UUID
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    type: TicketType
    source: TicketSource
    customer_id: UUID
    assignee_id: Optional[UUID] = None
    team_id: Optional[UUID] = None
    tags: List[str] = Field(default_factory=list)
    resolution: Optional[str] = None
    due_date: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    status_changed_at: datetime
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class TicketComment(BaseModel):
    id: UUID
    ticket_id: UUID
    author_id: UUID
    content: str
    is_internal: bool = False
    created_at: datetime


class StatusHistoryEntry(BaseModel):
    id: UUID
    ticket_id: UUID
    from_status: Optional[TicketStatus] = None
    to_status: TicketStatus
    changed_by: Optional[UUID] = None
    reason: Optional[str] = None
    automation_triggered: bool = False
    created_at: datetime


class AssignmentHistoryEntry(BaseModel):
    id: UUID
    ticket_id: UUID
    from_assignee_id: Optional[UUID] = None
    to_assignee_id: Optional[UUID] = None
    changed_by: Optional[UUID] = None
    created_at: datetime


class LinkedProblem(BaseModel):
    related_ticket_id: UUID
    relationship_type: str
    title: str
    status: TicketStatus
    priority: TicketPriority
    created_at: datetime
    updated_at: datetime


class SLAState(BaseModel):
    """
    Persisted SLA clock of a ticket.

    Elapsed time is measured from started_at minus total_paused_minutes; a
    non-null paused_at means the clock is currently stopped for waiting.
    """
    ticket_id: UUID
    config_id: str
    started_at: datetime
    paused_at: Optional[datetime] = None
    total_paused_minutes: int = 0
    responded_at: Optional[datetime] = None
    response_breached: bool = False
    resolution_breached: bool = False
    breached_at: Optional[datetime] = None
    last_escalation_threshold: int = 0
    last_escalation_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None


# Users, teams, audit
class User(BaseModel):
    id: UUID
    email: str
    name: str
    role: str
    custom_permissions: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Team(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    schedule: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TeamMember(BaseModel):
    team_id: UUID
    user_id: UUID
    role: str
    skills: List[str] = Field(default_factory=list)
    joined_at: Optional[datetime] = None
    name: Optional[str] = None
    email: Optional[str] = None


class AuditLog(BaseModel):
    id: int
    actor_id: Optional[UUID] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    changes: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class Notification(BaseModel):
    id: int
    recipient_id: UUID
    ticket_id: Optional[UUID] = None
    kind: str
    message: str
    read_at: Optional[datetime] = None
    created_at: datetime


class PopularSearch(BaseModel):
    query: str
    search_count: int
    avg_result_count: float
    last_searched_at: datetime
