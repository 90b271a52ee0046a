"""
API tests for administration: users, roles, teams, notifications and the
admin router (audit logs, search analytics, SLA check run).
"""

from types import SimpleNamespace
from unittest.mock import Mock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from api.dependencies import (
    get_audit_client,
    get_notification_client,
    get_role_permission_client,
    get_search_log_client,
    get_team_client,
    get_ticket_service,
    get_user_client,
    verify_api_key,
)
from api.main import create_app
from core.permissions import Role
from core.schemas import AuditLog, Notification, Team
from tests.factories import NOW, make_user


@pytest.fixture
def users(customer, agent, supervisor, admin):
    return {u.id: u for u in (customer, agent, supervisor, admin)}


@pytest.fixture
def mocks(users):
    user_client = Mock()
    user_client.get_user.side_effect = lambda user_id: users.get(user_id)
    role_client = Mock()
    role_client.get_role_permissions.return_value = []
    return SimpleNamespace(
        users=user_client,
        roles=role_client,
        teams=Mock(),
        audit=Mock(),
        notifications=Mock(),
        search_log=Mock(),
        service=Mock(),
    )


@pytest.fixture
def client(mocks):
    app = create_app(use_lifespan=False)
    app.dependency_overrides[verify_api_key] = lambda: "test-key"
    app.dependency_overrides[get_user_client] = lambda: mocks.users
    app.dependency_overrides[get_role_permission_client] = lambda: mocks.roles
    app.dependency_overrides[get_team_client] = lambda: mocks.teams
    app.dependency_overrides[get_audit_client] = lambda: mocks.audit
    app.dependency_overrides[get_notification_client] = lambda: mocks.notifications
    app.dependency_overrides[get_search_log_client] = lambda: mocks.search_log
    app.dependency_overrides[get_ticket_service] = lambda: mocks.service
    with TestClient(app) as test_client:
        yield test_client


def as_user(user):
    return {"X-API-Key": "test-key", "X-User-ID": str(user.id)}


def make_team(**overrides) -> Team:
    data = {"id": uuid4(), "name": "Tier 1", "description": "Front line", "schedule": {}}
    data.update(overrides)
    return Team(**data)


class TestUserEndpoints:
    """Test user administration and self-service reads"""

    def test_agent_cannot_list_users(self, client, agent):
        assert client.get("/api/v1/users", headers=as_user(agent)).status_code == 403

    def test_supervisor_lists_users_by_role(self, client, mocks, supervisor, agent):
        mocks.users.list_users.return_value = [agent]

        response = client.get("/api/v1/users?role=agent", headers=as_user(supervisor))

        assert response.status_code == 200
        assert [u["id"] for u in response.json()] == [str(agent.id)]
        assert mocks.users.list_users.call_args.kwargs["role"] == Role.AGENT

    def test_create_user_is_audited(self, client, mocks, admin):
        created = make_user("agent", email="new.agent@example.com")
        mocks.users.create_user.return_value = created

        response = client.post(
            "/api/v1/users",
            json={"email": "new.agent@example.com", "name": "New Agent", "role": "agent"},
            headers=as_user(admin),
        )

        assert response.status_code == 201
        assert mocks.audit.log.call_args.kwargs["action"] == "user.create"
        assert mocks.audit.log.call_args.kwargs["actor_id"] == admin.id

    def test_duplicate_email(self, client, mocks, admin):
        mocks.users.create_user.side_effect = ValueError("User with email a@example.com already exists")

        response = client.post(
            "/api/v1/users",
            json={"email": "a@example.com", "name": "A"},
            headers=as_user(admin),
        )

        assert response.status_code == 409
        mocks.audit.log.assert_not_called()

    def test_audit_failure_does_not_fail_request(self, client, mocks, admin):
        mocks.users.create_user.return_value = make_user("customer")
        mocks.audit.log.side_effect = ConnectionError("Database error")

        response = client.post(
            "/api/v1/users",
            json={"email": "c@example.com", "name": "C"},
            headers=as_user(admin),
        )

        assert response.status_code == 201

    def test_customer_reads_self(self, client, customer):
        response = client.get(f"/api/v1/users/{customer.id}", headers=as_user(customer))

        assert response.status_code == 200
        assert response.json()["email"] == customer.email

    def test_customer_cannot_read_others(self, client, customer, agent):
        assert client.get(f"/api/v1/users/{agent.id}", headers=as_user(customer)).status_code == 403

    def test_me(self, client, agent):
        assert client.get("/api/v1/users/me", headers=as_user(agent)).json()["id"] == str(agent.id)

    def test_empty_update(self, client, admin, agent):
        response = client.patch(f"/api/v1/users/{agent.id}", json={}, headers=as_user(admin))

        assert response.status_code == 400

    def test_effective_permissions_include_custom(self, client, users, customer):
        users[customer.id] = customer.model_copy(update={"custom_permissions": ["VIEW_TEAMS"]})

        response = client.get(f"/api/v1/users/{customer.id}/permissions", headers=as_user(customer))

        assert response.status_code == 200
        permissions = response.json()["permissions"]
        assert "VIEW_OWN_TICKETS" in permissions
        assert "VIEW_TEAMS" in permissions
        assert "VIEW_TICKETS" not in permissions


class TestRoleEndpoints:
    """Test role listing, permission replacement and role assignment"""

    def test_list_roles_marks_overrides(self, client, mocks, supervisor):
        mocks.roles.list_all.return_value = {"agent": ["VIEW_TICKETS"]}

        response = client.get("/api/v1/roles", headers=as_user(supervisor))

        assert response.status_code == 200
        roles = {r["role"]: r for r in response.json()}
        assert roles["agent"]["permissions"] == ["VIEW_TICKETS"]
        assert roles["agent"]["is_default"] is False
        assert roles["customer"]["is_default"] is True
        assert roles["admin"]["label"] == "Administrator"

    def test_supervisor_cannot_set_permissions(self, client, supervisor):
        response = client.put(
            "/api/v1/roles/agent/permissions",
            json={"permissions": ["VIEW_TICKETS"]},
            headers=as_user(supervisor),
        )

        assert response.status_code == 403

    def test_set_permissions(self, client, mocks, admin):
        mocks.roles.set_role_permissions.return_value = ["VIEW_TICKETS", "EDIT_TICKETS"]

        response = client.put(
            "/api/v1/roles/agent/permissions",
            json={"permissions": ["VIEW_TICKETS", "EDIT_TICKETS"]},
            headers=as_user(admin),
        )

        assert response.status_code == 200
        assert response.json()["is_default"] is False
        mocks.roles.set_role_permissions.assert_called_once_with(Role.AGENT, ["VIEW_TICKETS", "EDIT_TICKETS"])
        assert mocks.audit.log.call_args.kwargs["action"] == "role.update_permissions"

    def test_unknown_permission(self, client, mocks, admin):
        mocks.roles.set_role_permissions.side_effect = ValueError("Unknown permissions: FLY")

        response = client.put(
            "/api/v1/roles/agent/permissions",
            json={"permissions": ["FLY"]},
            headers=as_user(admin),
        )

        assert response.status_code == 400
        assert "FLY" in response.json()["detail"]

    def test_assign_unknown_user(self, client, admin):
        response = client.put(f"/api/v1/roles/users/{uuid4()}", json={"role": "agent"}, headers=as_user(admin))

        assert response.status_code == 404

    def test_assign_role_applies_on_next_request(self, client, mocks, users, admin, customer):
        promoted = customer.model_copy(update={"role": "agent"})

        def set_role(user_id, role, custom_permissions):
            users[user_id] = promoted
            return promoted

        mocks.users.set_role.side_effect = set_role
        mocks.teams.list_teams.return_value = []

        assert client.get("/api/v1/teams", headers=as_user(customer)).status_code == 403

        response = client.put(
            f"/api/v1/roles/users/{customer.id}", json={"role": "agent"}, headers=as_user(admin)
        )
        assert response.status_code == 200
        assert mocks.audit.log.call_args.kwargs["changes"]["from"] == "customer"
        assert mocks.audit.log.call_args.kwargs["changes"]["to"] == "agent"

        assert client.get("/api/v1/teams", headers=as_user(customer)).status_code == 200


class TestTeamEndpoints:
    """Test team CRUD, members, schedule and metrics"""

    def test_agent_cannot_create(self, client, agent):
        response = client.post("/api/v1/teams", json={"name": "Tier 2"}, headers=as_user(agent))

        assert response.status_code == 403

    def test_create(self, client, mocks, admin):
        team = make_team(name="Tier 2")
        mocks.teams.create_team.return_value = team

        response = client.post("/api/v1/teams", json={"name": "Tier 2"}, headers=as_user(admin))

        assert response.status_code == 201
        assert response.json()["id"] == str(team.id)
        mocks.teams.create_team.assert_called_once_with("Tier 2", None, {})

    def test_duplicate_name(self, client, mocks, admin):
        mocks.teams.create_team.side_effect = ValueError("Team 'Tier 1' already exists")

        response = client.post("/api/v1/teams", json={"name": "Tier 1"}, headers=as_user(admin))

        assert response.status_code == 409

    def test_missing_team(self, client, mocks, agent):
        mocks.teams.get_team.return_value = None

        assert client.get(f"/api/v1/teams/{uuid4()}", headers=as_user(agent)).status_code == 404

    def test_empty_update(self, client, admin):
        response = client.patch(f"/api/v1/teams/{uuid4()}", json={}, headers=as_user(admin))

        assert response.status_code == 400

    def test_delete_is_audited(self, client, mocks, admin):
        team_id = uuid4()

        response = client.delete(f"/api/v1/teams/{team_id}", headers=as_user(admin))

        assert response.status_code == 204
        mocks.teams.delete_team.assert_called_once_with(team_id)
        assert mocks.audit.log.call_args.kwargs["action"] == "team.delete"

    def test_add_member(self, client, mocks, admin, agent):
        team_id = uuid4()

        response = client.post(
            f"/api/v1/teams/{team_id}/members",
            json={"user_id": str(agent.id), "role": "lead", "skills": ["billing"]},
            headers=as_user(admin),
        )

        assert response.status_code == 204
        mocks.teams.add_member.assert_called_once_with(team_id, agent.id, role="lead", skills=["billing"])

    def test_supervisor_sets_schedule(self, client, mocks, supervisor):
        schedule = {"monday": {"start": "09:00", "end": "17:00"}}
        mocks.teams.set_schedule.return_value = schedule

        response = client.put(
            f"/api/v1/teams/{uuid4()}/schedule", json={"schedule": schedule}, headers=as_user(supervisor)
        )

        assert response.status_code == 200
        assert response.json() == schedule

    def test_metrics(self, client, mocks, agent):
        team_id = uuid4()
        mocks.teams.get_team_metrics.return_value = {
            "team_id": team_id,
            "open_tickets": 4,
            "resolved_tickets": 11,
            "avg_resolution_hours": 6.5,
            "member_count": 3,
        }

        response = client.get(f"/api/v1/teams/{team_id}/metrics", headers=as_user(agent))

        assert response.status_code == 200
        assert response.json()["resolved_tickets"] == 11


class TestNotificationEndpoints:
    """Test the acting user's notification inbox"""

    def test_list_unread(self, client, mocks, agent):
        mocks.notifications.list_notifications.return_value = [
            Notification(id=1, recipient_id=agent.id, kind="assignment", message="Ticket assigned", created_at=NOW)
        ]

        response = client.get("/api/v1/notifications?unread_only=true", headers=as_user(agent))

        assert response.status_code == 200
        assert response.json()[0]["kind"] == "assignment"
        mocks.notifications.list_notifications.assert_called_once_with(agent.id, unread_only=True, limit=50)

    def test_mark_someone_elses(self, client, mocks, agent):
        mocks.notifications.mark_read.side_effect = ValueError("Notification 9 not found")

        response = client.post("/api/v1/notifications/9/read", headers=as_user(agent))

        assert response.status_code == 404
        mocks.notifications.mark_read.assert_called_once_with(9, agent.id)


class TestAdminEndpoints:
    """Test audit log listing, search analytics and the SLA check run"""

    def test_agent_cannot_read_audit_logs(self, client, agent):
        assert client.get("/api/v1/admin/audit-logs", headers=as_user(agent)).status_code == 403

    def test_audit_logs_filters(self, client, mocks, admin):
        ticket_id = uuid4()
        mocks.audit.list_logs.return_value = [
            AuditLog(
                id=7,
                actor_id=admin.id,
                action="ticket.status_change",
                entity_type="ticket",
                entity_id=str(ticket_id),
                changes={"from": "open", "to": "in_progress"},
                created_at=NOW,
            )
        ]

        response = client.get(
            f"/api/v1/admin/audit-logs?entity_type=ticket&entity_id={ticket_id}&limit=10",
            headers=as_user(admin),
        )

        assert response.status_code == 200
        assert response.json()[0]["changes"]["to"] == "in_progress"
        kwargs = mocks.audit.list_logs.call_args.kwargs
        assert kwargs["entity_type"] == "ticket"
        assert kwargs["entity_id"] == str(ticket_id)
        assert kwargs["limit"] == 10

    def test_search_analytics(self, client, mocks, agent):
        mocks.search_log.get_search_analytics.return_value = {
            "days": 7,
            "total_searches": 42,
            "by_method": {"fulltext": 30, "semantic": 12},
            "avg_latency_ms": 85.5,
            "popular_queries": [
                {"query": "reset password", "search_count": 9, "avg_result_count": 3.0, "last_searched_at": NOW}
            ],
            "zero_result_queries": [],
        }

        response = client.get("/api/v1/admin/search-analytics?days=7", headers=as_user(agent))

        assert response.status_code == 200
        assert response.json()["popular_queries"][0]["query"] == "reset password"
        mocks.search_log.get_search_analytics.assert_called_once_with(days=7, limit=10)

    def test_sla_check(self, client, mocks, admin):
        mocks.service.run_sla_checks.return_value = {
            "checked": 12,
            "breaches": 2,
            "escalations": 3,
            "automations": 1,
            "errors": 0,
        }

        response = client.post("/api/v1/admin/sla-check", headers=as_user(admin))

        assert response.status_code == 200
        assert response.json()["escalations"] == 3

    def test_sla_check_database_down(self, client, mocks, admin):
        mocks.service.run_sla_checks.side_effect = ConnectionError("Unable to connect to database")

        response = client.post("/api/v1/admin/sla-check", headers=as_user(admin))

        assert response.status_code == 503

    def test_agent_cannot_run_sla_check(self, client, agent):
        assert client.post("/api/v1/admin/sla-check", headers=as_user(agent)).status_code == 403
