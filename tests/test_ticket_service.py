"""
Tests for TicketService orchestration and the periodic SLA run.
"""

from datetime import timedelta
from unittest.mock import Mock
from uuid import uuid4

import pytest
from psycopg_pool import PoolTimeout

from core.schemas import SLAState, Team, TicketPriority, TicketSource, TicketStatus
from core.sla import SLATracker
from core.status_workflow import StatusWorkflow
from core.ticket_service import TicketService
from tests.factories import NOW, make_ticket


@pytest.fixture
def ticket_client():
    client = Mock()
    client.update_ticket.side_effect = lambda ticket_id, updates: make_ticket(id=ticket_id, **updates)
    return client


@pytest.fixture
def state_client():
    client = Mock()
    client.save_state.side_effect = lambda state: state
    client.get_state.return_value = None
    return client


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def audit_client():
    return Mock()


@pytest.fixture
def team_client():
    return Mock()


@pytest.fixture
def service(ticket_client, state_client, notifier, audit_client, team_client):
    tracker = SLATracker(state_client)
    workflow = StatusWorkflow(ticket_client, tracker, notifier, audit_client)
    return TicketService(ticket_client, tracker, workflow, notifier, team_client, audit_client)


class TestCreateTicket:
    """Test ticket creation"""

    def test_starts_sla_and_audits(self, service, ticket_client, state_client, audit_client):
        customer = uuid4()
        ticket = make_ticket(customer_id=customer, priority=TicketPriority.HIGH)
        ticket_client.create_ticket.return_value = ticket

        result = service.create_ticket("Cannot log in", "Details", customer, priority=TicketPriority.HIGH)

        assert result is ticket
        state_client.start.assert_called_once()
        assert state_client.start.call_args[0][:2] == (ticket.id, "high_sla")
        kwargs = audit_client.log.call_args[1]
        assert kwargs["action"] == "ticket.create"
        assert kwargs["actor_id"] == customer

    def test_notifies_assignee(self, service, ticket_client, notifier):
        ticket = make_ticket(assignee_id=uuid4())
        ticket_client.create_ticket.return_value = ticket

        service.create_ticket("t", "d", ticket.customer_id)

        notifier.notify.assert_called_once()
        assert notifier.notify.call_args[0][1] == ["assignee"]

    def test_sla_failure_does_not_block_creation(self, service, ticket_client, state_client):
        ticket_client.create_ticket.return_value = make_ticket()
        state_client.start.side_effect = ConnectionError("db down")

        assert service.create_ticket("t", "d", uuid4(), source=TicketSource.EMAIL) is not None


class TestUpdateTicket:
    """Test ticket field updates"""

    def test_missing_ticket(self, service, ticket_client):
        ticket_client.get_ticket.return_value = None

        with pytest.raises(ValueError, match="not found"):
            service.update_ticket(uuid4(), {"title": "x"})

    def test_priority_change_restarts_sla(self, service, ticket_client, state_client):
        before = make_ticket(priority=TicketPriority.MEDIUM)
        ticket_client.get_ticket.return_value = before

        service.update_ticket(before.id, {"priority": TicketPriority.URGENT})

        assert state_client.start.call_args[0][1] == "urgent_sla"

    def test_other_changes_keep_sla(self, service, ticket_client, state_client):
        before = make_ticket()
        ticket_client.get_ticket.return_value = before

        service.update_ticket(before.id, {"title": "Renamed"})

        state_client.start.assert_not_called()


class TestComments:
    """Test comments and first response tracking"""

    def test_customer_cannot_post_internal(self, service):
        with pytest.raises(ValueError, match="internal"):
            service.add_comment(uuid4(), uuid4(), "customer", "note", is_internal=True)

    def test_agent_reply_records_first_response(self, service, ticket_client, state_client, notifier):
        ticket = make_ticket()
        ticket_client.get_ticket.return_value = ticket
        ticket_client.record_first_response.return_value = True
        state = SLAState(ticket_id=ticket.id, config_id="medium_sla", started_at=NOW)
        state_client.get_state.return_value = state

        service.add_comment(ticket.id, uuid4(), "agent", "Try clearing cookies")

        assert state.responded_at is not None
        assert notifier.notify.call_args[0][1] == ["customer"]

    def test_internal_note_is_not_a_response(self, service, ticket_client, notifier):
        ticket_client.get_ticket.return_value = make_ticket()

        service.add_comment(uuid4(), uuid4(), "agent", "Escalate to infra?", is_internal=True)

        ticket_client.record_first_response.assert_not_called()
        notifier.notify.assert_not_called()

    def test_customer_reply_notifies_assignee(self, service, ticket_client, notifier):
        ticket_client.get_ticket.return_value = make_ticket()

        service.add_comment(uuid4(), uuid4(), "customer", "Still broken")

        ticket_client.record_first_response.assert_not_called()
        assert notifier.notify.call_args[0][1] == ["assignee", "followers"]

    def test_customer_sees_public_comments_only(self, service, ticket_client):
        ticket_id = uuid4()
        service.list_comments(ticket_id, "customer")
        ticket_client.list_comments.assert_called_with(ticket_id, include_internal=False)

        service.list_comments(ticket_id, "agent")
        ticket_client.list_comments.assert_called_with(ticket_id, include_internal=True)


class TestAssignment:
    """Test assignment"""

    def test_assign_notifies_new_assignee(self, service, ticket_client, notifier, audit_client):
        agent = uuid4()
        ticket = make_ticket(assignee_id=agent)
        ticket_client.assign.return_value = (ticket, None)

        service.assign_ticket(ticket.id, agent, actor_id=uuid4())

        assert notifier.notify.call_args[1]["kind"] == "ticket_assigned"
        assert audit_client.log.call_args[1]["changes"] == {"from": None, "to": str(agent)}

    def test_reassign_to_same_agent_is_silent(self, service, ticket_client, notifier):
        agent = uuid4()
        ticket_client.assign.return_value = (make_ticket(assignee_id=agent), agent)

        service.assign_ticket(uuid4(), agent)

        notifier.notify.assert_not_called()


class TestChangeStatus:
    """Test status changes through the service"""

    def test_resolution_passed_as_field_update(self, service):
        service.workflow = Mock()
        ticket_id = uuid4()

        service.change_status(ticket_id, TicketStatus.RESOLVED, None, "agent", resolution="Fixed")

        kwargs = service.workflow.execute_transition.call_args[1]
        assert kwargs["field_updates"] == {"resolution": "Fixed"}


class TestCheckTicketSLA:
    """Test breach recording and escalations"""

    def test_no_state(self, service):
        assert service.check_ticket_sla(make_ticket(), NOW) == {"breaches": 0, "escalations": 0}

    def test_breach_notifies_and_escalates(self, service, ticket_client, state_client, notifier):
        ticket = make_ticket(priority=TicketPriority.MEDIUM)
        state = SLAState(
            ticket_id=ticket.id, config_id="medium_sla", started_at=NOW - timedelta(minutes=1300)
        )
        state_client.get_state.return_value = state

        result = service.check_ticket_sla(ticket, NOW)

        assert result == {"breaches": 1, "escalations": 2}
        assert state.response_breached
        assert state.last_escalation_threshold == 90
        kinds = [c[1]["kind"] for c in notifier.notify.call_args_list]
        assert "sla_breach" in kinds
        assert "sla_escalation" in kinds
        # The 90% escalation raises medium to high
        ticket_client.update_ticket.assert_called_once_with(ticket.id, {"priority": TicketPriority.HIGH})

    def test_reassign_to_escalation_team(self, service, ticket_client, state_client, team_client):
        ticket = make_ticket(priority=TicketPriority.URGENT)
        state = SLAState(
            ticket_id=ticket.id,
            config_id="urgent_sla",
            started_at=NOW - timedelta(minutes=220),
            last_escalation_threshold=75,
        )
        state_client.get_state.return_value = state
        team = Team(id=uuid4(), name="escalation_team", created_at=NOW, updated_at=NOW)
        team_client.get_team_by_name.return_value = team

        service.check_ticket_sla(ticket, NOW)

        team_client.get_team_by_name.assert_called_once_with("escalation_team")
        ticket_client.update_ticket.assert_called_once_with(ticket.id, {"team_id": team.id})

    def test_missing_escalation_team(self, service, ticket_client, state_client, team_client):
        ticket = make_ticket(priority=TicketPriority.URGENT)
        state_client.get_state.return_value = SLAState(
            ticket_id=ticket.id,
            config_id="urgent_sla",
            started_at=NOW - timedelta(minutes=220),
            last_escalation_threshold=75,
        )
        team_client.get_team_by_name.return_value = None

        result = service.check_ticket_sla(ticket, NOW)

        assert result["escalations"] == 1
        ticket_client.update_ticket.assert_not_called()


class TestRunSLAChecks:
    """Test the periodic SLA job"""

    def test_counts_and_automations(self, service, ticket_client, state_client):
        stale = make_ticket(status=TicketStatus.IN_PROGRESS, status_changed_at=NOW - timedelta(days=2))
        fresh = make_ticket(status=TicketStatus.OPEN)

        def by_status(statuses):
            statuses = set(statuses)
            return [t for t in (stale, fresh) if t.status in statuses]

        ticket_client.list_tickets_by_status.side_effect = by_status
        ticket_client.change_status.side_effect = lambda ticket_id, from_status, to_status, **kw: (
            stale.model_copy(update={"status": to_status})
        )

        stats = service.run_sla_checks(NOW)

        assert stats["checked"] == 2
        assert stats["automations"] == 1
        assert stats["errors"] == 0
        assert ticket_client.change_status.call_args[1]["automation_triggered"] is True

    def test_one_failure_does_not_stop_the_run(self, service, ticket_client, state_client):
        tickets = [make_ticket(), make_ticket()]
        ticket_client.list_tickets_by_status.side_effect = lambda statuses: [
            t for t in tickets if t.status in set(statuses)
        ]
        state_client.get_state.side_effect = [ConnectionError("lost"), None]

        stats = service.run_sla_checks(NOW)

        assert stats["checked"] == 2
        assert stats["errors"] == 1

    def test_unexpected_error_does_not_stop_the_run(self, service, ticket_client, state_client):
        tickets = [make_ticket(), make_ticket()]
        ticket_client.list_tickets_by_status.side_effect = lambda statuses: [
            t for t in tickets if t.status in set(statuses)
        ]
        state_client.get_state.side_effect = [PoolTimeout("pool exhausted"), None]

        stats = service.run_sla_checks(NOW)

        assert stats["checked"] == 2
        assert stats["errors"] == 1

    def test_failed_automation_is_counted(self, service, ticket_client):
        stale = make_ticket(status=TicketStatus.IN_PROGRESS, status_changed_at=NOW - timedelta(days=2))
        ticket_client.list_tickets_by_status.side_effect = lambda statuses: (
            [stale] if stale.status in set(statuses) else []
        )
        ticket_client.change_status.side_effect = RuntimeError("unexpected")

        stats = service.run_sla_checks(NOW)

        assert stats["automations"] == 0
        assert stats["errors"] == 1


class TestApplyAutomation:
    """Test automation actions"""

    @staticmethod
    def automation(service, automation_id):
        return next(a for a in service.policy.automations if a.id == automation_id)

    def test_auto_waiting_notifies_customer_once(self, service, ticket_client, notifier):
        ticket = make_ticket(status=TicketStatus.IN_PROGRESS, assignee_id=uuid4())
        ticket_client.change_status.side_effect = lambda ticket_id, from_status, to_status, **kw: (
            ticket.model_copy(update={"status": to_status})
        )

        service.apply_automation(ticket, self.automation(service, "auto_waiting"))

        customer_calls = [c for c in notifier.notify.call_args_list if "customer" in c[0][1]]
        assert len(customer_calls) == 1
        assert customer_calls[0][1]["kind"] == "status_changed"

    def test_auto_close_notifies_through_automation(self, service, ticket_client, notifier):
        ticket = make_ticket(status=TicketStatus.RESOLVED, assignee_id=uuid4(), resolution="Done")
        ticket_client.change_status.side_effect = lambda ticket_id, from_status, to_status, **kw: (
            ticket.model_copy(update={"status": to_status})
        )

        service.apply_automation(ticket, self.automation(service, "auto_close"))

        notifier.notify.assert_called_once()
        assert notifier.notify.call_args[0][1] == ["assignee", "customer"]
        assert notifier.notify.call_args[1]["kind"] == "automation"
