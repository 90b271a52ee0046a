"""
Builders for model instances and mocked database connections used across tests.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock
from uuid import uuid4

from core.schemas import (
    Article,
    ArticleStatus,
    Ticket,
    TicketPriority,
    TicketSource,
    TicketStatus,
    TicketType,
    User,
)

NOW = datetime(2024, 3, 4, 10, 0, tzinfo=timezone.utc)


def make_user(role: str = "customer", **overrides) -> User:
    data = {
        "id": uuid4(),
        "email": f"{role}@example.com",
        "name": role.capitalize(),
        "role": role,
        "custom_permissions": [],
        "is_active": True,
        "created_at": NOW,
        "updated_at": NOW,
    }
    data.update(overrides)
    return User(**data)


def make_ticket(**overrides) -> Ticket:
    data = {
        "id": uuid4(),
        "title": "Cannot log in",
        "description": "Password reset link is not arriving",
        "status": TicketStatus.OPEN,
        "priority": TicketPriority.MEDIUM,
        "type": TicketType.PROBLEM,
        "source": TicketSource.WEB,
        "customer_id": uuid4(),
        "assignee_id": None,
        "team_id": None,
        "tags": [],
        "resolution": None,
        "due_date": None,
        "metadata": {},
        "created_at": NOW,
        "updated_at": NOW,
        "status_changed_at": NOW,
        "first_response_at": None,
        "resolved_at": None,
    }
    data.update(overrides)
    return Ticket(**data)


def make_article(**overrides) -> Article:
    data = {
        "id": uuid4(),
        "title": "Resetting your password",
        "slug": "resetting-your-password",
        "content": "Open the login page and click 'Forgot password'.",
        "excerpt": "How to reset a forgotten password",
        "status": ArticleStatus.PUBLISHED,
        "category_id": None,
        "tags": ["account", "password"],
        "author_id": uuid4(),
        "current_version": 1,
        "view_count": 0,
        "helpful_count": 0,
        "not_helpful_count": 0,
        "created_at": NOW,
        "updated_at": NOW,
        "published_at": NOW,
    }
    data.update(overrides)
    return Article(**data)


def mock_connection(client, cursor: MagicMock) -> MagicMock:
    """Point client.get_connection at a mocked connection yielding `cursor`."""
    conn = MagicMock()
    conn.__enter__.return_value = conn
    conn.__exit__.return_value = None
    conn.cursor.return_value.__enter__.return_value = cursor
    client.get_connection = MagicMock(return_value=conn)
    return conn


def as_row(model, columns) -> tuple:
    """Render a model as the tuple a SELECT over `columns` would return."""
    data = model.model_dump()
    return tuple(data.get(column) for column in columns)
