"""
Pydantic request models for the helpdesk API.

Provides validation for:
- Knowledge base articles, categories, feedback and semantic search
- Tickets, comments, status changes, assignment, followers and links
- AI support chat
- Users, roles and teams
"""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from core.permissions import Role
from core.schemas import ArticleStatus, TicketPriority, TicketSource, TicketStatus, TicketType


def _strip_required(v: str, field: str) -> str:
    stripped = v.strip()
    if not stripped:
        raise ValueError(f"{field} cannot be empty or whitespace only")
    return stripped


class UpdateRequest(BaseModel):
    """Partial update: only fields the client actually sent are applied."""

    def to_updates(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# Knowledge base


class ArticleCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=500, examples=["How to reset your password"])
    content: str = Field(..., min_length=1, description="Article body (markdown)")
    excerpt: Optional[str] = Field(default=None, max_length=1000)
    category_id: Optional[UUID] = None
    tags: List[str] = Field(default_factory=list, examples=[["account", "password"]])
    slug: Optional[str] = Field(
        default=None,
        max_length=200,
        description="URL slug; generated from the title when omitted",
    )
    status: ArticleStatus = ArticleStatus.DRAFT

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _strip_required(v, "Title")


class ArticleUpdateRequest(UpdateRequest):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    content: Optional[str] = Field(default=None, min_length=1)
    excerpt: Optional[str] = Field(default=None, max_length=1000)
    category_id: Optional[UUID] = None
    tags: Optional[List[str]] = None
    slug: Optional[str] = Field(default=None, max_length=200)
    changes: Optional[str] = Field(
        default=None,
        max_length=500,
        description="Summary stored with the new version when title or content change",
    )

    def to_updates(self) -> Dict[str, Any]:
        updates = super().to_updates()
        updates.pop("changes", None)
        return updates


class ArticleFeedbackRequest(BaseModel):
    is_helpful: bool
    comment: Optional[str] = Field(default=None, max_length=2000)


class CategoryCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, examples=["Billing"])
    description: Optional[str] = None
    parent_id: Optional[UUID] = None
    sort_order: int = Field(default=0, ge=0)
    slug: Optional[str] = Field(default=None, max_length=200)


class CategoryUpdateRequest(UpdateRequest):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    parent_id: Optional[UUID] = None
    sort_order: Optional[int] = Field(default=None, ge=0)
    slug: Optional[str] = Field(default=None, max_length=200)


class SemanticSearchRequest(BaseModel):
    """
    Semantic search over indexed articles.

    threshold and limit fall back to HELPDESK_SEARCH_MATCH_THRESHOLD and
    HELPDESK_SEARCH_MATCH_COUNT when omitted.
    """

    query: str = Field(
        ...,
        min_length=1,
        max_length=1000,
        description="Natural language query",
        examples=["I can't log in after changing my email"],
    )
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0, examples=[0.5])
    limit: Optional[int] = Field(default=None, ge=1, le=100, examples=[5])

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        return _strip_required(v, "Query")


# Tickets


class TicketCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(..., min_length=1)
    priority: TicketPriority = TicketPriority.MEDIUM
    type: TicketType = TicketType.QUESTION
    source: TicketSource = TicketSource.WEB
    customer_id: Optional[UUID] = Field(
        default=None, description="Defaults to the acting user"
    )
    assignee_id: Optional[UUID] = None
    team_id: Optional[UUID] = None
    tags: List[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("title", "description")
    @classmethod
    def validate_text(cls, v: str) -> str:
        return _strip_required(v, "Field")


class TicketUpdateRequest(UpdateRequest):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = Field(default=None, min_length=1)
    priority: Optional[TicketPriority] = None
    type: Optional[TicketType] = None
    tags: Optional[List[str]] = None
    resolution: Optional[str] = None
    due_date: Optional[datetime] = None
    team_id: Optional[UUID] = None
    metadata: Optional[Dict[str, Any]] = None


class StatusChangeRequest(BaseModel):
    status: TicketStatus
    reason: Optional[str] = Field(default=None, max_length=1000)
    resolution: Optional[str] = Field(
        default=None, description="Required when moving a ticket to resolved"
    )


class CommentCreateRequest(BaseModel):
    content: str = Field(..., min_length=1)
    is_internal: bool = False

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        return _strip_required(v, "Comment")


class AssignRequest(BaseModel):
    assignee_id: Optional[UUID] = Field(default=None, description="null unassigns the ticket")


class FollowerRequest(BaseModel):
    user_id: Optional[UUID] = Field(default=None, description="Defaults to the acting user")


class LinkProblemRequest(BaseModel):
    related_ticket_id: UUID
    relationship_type: str = Field(default="related", max_length=50)


# AI support


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)
    history: List[ChatMessage] = Field(default_factory=list, max_length=50)
    create_ticket_if_needed: bool = False

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        return _strip_required(v, "Message")


# Users, roles, teams


class UserCreateRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, examples=["agent@example.com"])
    name: str = Field(..., min_length=1, max_length=200)
    role: Role = Role.CUSTOMER
    custom_permissions: List[str] = Field(default_factory=list)


class UserUpdateRequest(UpdateRequest):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[str] = Field(default=None, min_length=3, max_length=255)
    is_active: Optional[bool] = None


class RolePermissionsRequest(BaseModel):
    permissions: List[str] = Field(..., examples=[["VIEW_TICKETS", "EDIT_TICKETS"]])


class RoleAssignRequest(BaseModel):
    role: Role
    custom_permissions: Optional[List[str]] = Field(
        default=None, description="Replaces the user's extra permissions when given"
    )


class TeamCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    schedule: Dict[str, Any] = Field(default_factory=dict)


class TeamUpdateRequest(UpdateRequest):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None


class TeamMemberRequest(BaseModel):
    user_id: UUID
    role: str = Field(default="member", max_length=50)
    skills: List[str] = Field(default_factory=list)


class TeamMemberUpdateRequest(BaseModel):
    role: Optional[str] = Field(default=None, max_length=50)
    skills: Optional[List[str]] = None


class TeamScheduleRequest(BaseModel):
    schedule: Dict[str, Any]
