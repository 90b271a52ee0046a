"""
Tests for roles, permission resolution and the permission cache.
"""

import pytest
from unittest.mock import MagicMock, Mock
from uuid import uuid4

from core.permissions import (
    DEFAULT_ROLE_PERMISSIONS,
    Permission,
    PermissionCache,
    PermissionChecker,
    Role,
    is_agent_role,
    parse_known,
    parse_permissions,
)
from core.storage_user import RolePermissionClient, UserClient
from tests.factories import make_user, mock_connection


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def role_client():
    client = Mock()
    client.get_role_permissions.return_value = []
    return client


@pytest.fixture
def user_client():
    return Mock()


@pytest.fixture
def checker(user_client, role_client):
    return PermissionChecker(user_client, role_client, PermissionCache(ttl_seconds=60))


class TestParsing:
    def test_parse_permissions_rejects_unknown(self):
        with pytest.raises(ValueError, match="FLY_PLANES"):
            parse_permissions(["VIEW_TICKETS", "FLY_PLANES"])

    def test_parse_known_skips_unknown(self):
        assert parse_known(["VIEW_TICKETS", "RETIRED_PERMISSION"]) == [Permission.VIEW_TICKETS]

    def test_agent_roles(self):
        assert is_agent_role("supervisor")
        assert not is_agent_role(Role.CUSTOMER)


class TestPermissionChecker:
    def test_admin_has_everything(self, checker, user_client):
        admin = make_user("admin")
        user_client.get_user.return_value = admin

        assert checker.get_user_permissions(admin.id) == frozenset(Permission)

    def test_supervisor_inherits_agent_defaults(self, checker, user_client):
        supervisor = make_user("supervisor")
        user_client.get_user.return_value = supervisor

        permissions = checker.get_user_permissions(supervisor.id)

        assert set(DEFAULT_ROLE_PERMISSIONS[Role.AGENT]) <= permissions
        assert Permission.ASSIGN_TICKETS in permissions
        assert Permission.MANAGE_ROLES not in permissions

    def test_stored_role_permissions_override_defaults(self, checker, user_client, role_client):
        agent = make_user("agent")
        user_client.get_user.return_value = agent
        role_client.get_role_permissions.side_effect = lambda role: (
            ["VIEW_TICKETS"] if role == "agent" else []
        )

        assert checker.get_user_permissions(agent.id) == frozenset({Permission.VIEW_TICKETS})

    def test_custom_permissions_added(self, checker, user_client):
        customer = make_user("customer", custom_permissions=["VIEW_ANALYTICS"])
        user_client.get_user.return_value = customer

        assert checker.has_permission(customer.id, Permission.VIEW_ANALYTICS)
        assert not checker.has_permission(customer.id, Permission.VIEW_TICKETS)

    def test_has_any_permission(self, checker, user_client):
        customer = make_user("customer")
        user_client.get_user.return_value = customer

        assert checker.has_any_permission(
            customer.id, [Permission.VIEW_TICKETS, Permission.VIEW_OWN_TICKETS]
        )
        assert not checker.has_any_permission(customer.id, [Permission.MANAGE_USERS])

    def test_inactive_user_rejected(self, checker, user_client):
        user = make_user("agent", is_active=False)
        user_client.get_user.return_value = user

        with pytest.raises(ValueError, match="not found"):
            checker.get_user_permissions(user.id)

    def test_unknown_user_rejected(self, checker, user_client):
        user_client.get_user.return_value = None

        with pytest.raises(ValueError, match="not found"):
            checker.get_user_permissions(uuid4())

    def test_results_are_cached(self, checker, user_client):
        agent = make_user("agent")
        user_client.get_user.return_value = agent

        checker.get_user_permissions(agent.id)
        checker.get_user_permissions(agent.id)

        assert user_client.get_user.call_count == 1


class TestPermissionCache:
    def test_expires_after_ttl(self):
        clock = FakeClock()
        cache = PermissionCache(ttl_seconds=300, clock=clock)
        user_id = uuid4()
        cache.set(user_id, frozenset({Permission.VIEW_TICKETS}))

        clock.now = 299
        assert cache.get(user_id) == frozenset({Permission.VIEW_TICKETS})
        clock.now = 300
        assert cache.get(user_id) is None

    def test_invalidate_one_user(self):
        cache = PermissionCache()
        first, second = uuid4(), uuid4()
        cache.set(first, frozenset())
        cache.set(second, frozenset())

        cache.invalidate(first)

        assert cache.get(first) is None
        assert cache.get(second) == frozenset()

    def test_invalidate_everything(self):
        cache = PermissionCache()
        user_id = uuid4()
        cache.set(user_id, frozenset())

        cache.invalidate()

        assert cache.get(user_id) is None


class TestStorage:
    def test_create_user_normalises_email(self, mock_cursor):
        client = UserClient(connection_pool=MagicMock())
        user = make_user("agent", email="jane@example.com")
        mock_cursor.fetchone.return_value = tuple(
            user.model_dump()[c]
            for c in ("id", "email", "name", "role", "custom_permissions", "is_active", "created_at", "updated_at")
        )
        mock_connection(client, mock_cursor)

        client.create_user(" Jane@Example.com ", "Jane", role="agent")

        params = mock_cursor.execute.call_args[0][1]
        assert params == ("jane@example.com", "Jane", "agent", [])

    def test_create_user_rejects_unknown_permission(self):
        client = UserClient(connection_pool=MagicMock())

        with pytest.raises(ValueError, match="Unknown permissions"):
            client.create_user("a@example.com", "A", custom_permissions=["NOPE"])

    def test_set_role_permissions_replaces_rows(self, mock_cursor):
        client = RolePermissionClient(connection_pool=MagicMock())
        mock_connection(client, mock_cursor)

        stored = client.set_role_permissions(
            Role.AGENT, ["VIEW_TICKETS", "EDIT_TICKETS", "VIEW_TICKETS"]
        )

        assert stored == ["EDIT_TICKETS", "VIEW_TICKETS"]
        statements = [c[0][0] for c in mock_cursor.execute.call_args_list]
        assert statements[0].startswith("DELETE FROM role_permissions")
        assert len(statements) == 3

    def test_list_all_groups_by_role(self, mock_cursor):
        client = RolePermissionClient(connection_pool=MagicMock())
        mock_cursor.fetchall.return_value = [
            ("agent", "EDIT_TICKETS"),
            ("agent", "VIEW_TICKETS"),
            ("customer", "VIEW_OWN_TICKETS"),
        ]
        mock_connection(client, mock_cursor)

        assert client.list_all() == {
            "agent": ["EDIT_TICKETS", "VIEW_TICKETS"],
            "customer": ["VIEW_OWN_TICKETS"],
        }
