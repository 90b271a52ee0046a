"""
Tests for the ticket status workflow.
"""

from datetime import timedelta
from unittest.mock import Mock
from uuid import uuid4

import pytest

from core.schemas import TicketPriority, TicketStatus
from core.status_workflow import (
    StatusWorkflow,
    TransitionCondition,
    TransitionHook,
    TransitionRule,
    check_condition,
    field_value,
)
from tests.factories import NOW, make_ticket


@pytest.fixture
def ticket_client():
    return Mock()


@pytest.fixture
def sla_tracker():
    return Mock()


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def audit_client():
    return Mock()


@pytest.fixture
def workflow(ticket_client, sla_tracker, notifier, audit_client):
    return StatusWorkflow(ticket_client, sla_tracker, notifier, audit_client)


def stored(ticket_client, ticket):
    """Make the mocked client return `ticket` and echo status changes."""
    ticket_client.get_ticket.return_value = ticket

    def change_status(ticket_id, from_status, to_status, **kwargs):
        return ticket.model_copy(update={"status": to_status})

    ticket_client.change_status.side_effect = change_status


class TestConditions:
    """Test condition evaluation helpers"""

    def test_field_value_uses_aliases(self):
        assignee = uuid4()
        ticket = make_ticket(assignee_id=assignee)
        assert field_value(ticket, "assignee") == assignee

    def test_field_value_falls_back_to_metadata(self):
        ticket = make_ticket(metadata={"root_cause": "expired token"})
        assert field_value(ticket, "root_cause") == "expired token"
        assert field_value(ticket, "missing") is None

    def test_required_fields_treat_blank_strings_as_missing(self):
        condition = TransitionCondition(type="required_fields", field_ids=["resolution"])
        assert not check_condition(make_ticket(resolution="   "), condition, NOW)
        assert check_condition(make_ticket(resolution="Reset the token"), condition, NOW)

    def test_time_elapsed(self):
        condition = TransitionCondition(type="time_elapsed", min_minutes_in_status=60)
        ticket = make_ticket(status_changed_at=NOW)
        assert not check_condition(ticket, condition, NOW + timedelta(minutes=59))
        assert check_condition(ticket, condition, NOW + timedelta(minutes=60))

    def test_priority_check(self):
        condition = TransitionCondition(type="priority_check", min_priority=TicketPriority.HIGH)
        assert not check_condition(make_ticket(priority=TicketPriority.MEDIUM), condition, NOW)
        assert check_condition(make_ticket(priority=TicketPriority.URGENT), condition, NOW)


class TestValidateTransition:
    """Test transition validation against the default workflow"""

    def test_unknown_pair_is_rejected(self, workflow):
        valid, message = workflow.validate_transition(make_ticket(), TicketStatus.CLOSED, "agent", NOW)

        assert not valid
        assert message == "Invalid transition from open to closed"

    def test_start_work_requires_assignee(self, workflow):
        valid, message = workflow.validate_transition(
            make_ticket(), TicketStatus.IN_PROGRESS, "agent", NOW
        )

        assert not valid
        assert message == "Ticket must be assigned before work starts"

    def test_start_work_with_assignee(self, workflow):
        ticket = make_ticket(assignee_id=uuid4())
        assert workflow.validate_transition(ticket, TicketStatus.IN_PROGRESS, "agent", NOW) == (True, "")

    def test_resolve_requires_resolution(self, workflow):
        ticket = make_ticket(status=TicketStatus.IN_PROGRESS, assignee_id=uuid4())
        valid, message = workflow.validate_transition(ticket, TicketStatus.RESOLVED, "agent", NOW)

        assert not valid
        assert message == "A resolution is required to resolve a ticket"

    def test_close_waits_seven_days(self, workflow):
        ticket = make_ticket(status=TicketStatus.RESOLVED, status_changed_at=NOW)

        too_soon, message = workflow.validate_transition(
            ticket, TicketStatus.CLOSED, "agent", NOW + timedelta(days=6)
        )
        later, _ = workflow.validate_transition(ticket, TicketStatus.CLOSED, "agent", NOW + timedelta(days=7))

        assert not too_soon
        assert message == "Ticket must stay resolved for 7 days before closing"
        assert later

    def test_role_restriction(self, ticket_client):
        rules = [
            TransitionRule(
                from_status=TicketStatus.RESOLVED,
                to_status=TicketStatus.OPEN,
                allowed_roles=["supervisor", "admin"],
            )
        ]
        workflow = StatusWorkflow(ticket_client, rules=rules)
        ticket = make_ticket(status=TicketStatus.RESOLVED)

        valid, message = workflow.validate_transition(ticket, TicketStatus.OPEN, "agent", NOW)
        assert not valid
        assert message == "Role agent not allowed for this transition"
        assert workflow.validate_transition(ticket, TicketStatus.OPEN, "admin", NOW) == (True, "")

    def test_condition_without_message_uses_default(self, ticket_client):
        rules = [
            TransitionRule(
                from_status=TicketStatus.OPEN,
                to_status=TicketStatus.WAITING,
                conditions=[TransitionCondition(type="required_fields", field_ids=["team"])],
            )
        ]
        workflow = StatusWorkflow(ticket_client, rules=rules)

        valid, message = workflow.validate_transition(make_ticket(), TicketStatus.WAITING, None, NOW)
        assert not valid
        assert message == "Transition condition not met"


class TestAvailableTransitions:
    """Test listing transitions out of a status"""

    def test_default_in_progress_targets(self, workflow):
        targets = {r.to_status for r in workflow.get_available_transitions(TicketStatus.IN_PROGRESS)}
        assert targets == {TicketStatus.WAITING, TicketStatus.RESOLVED}

    def test_role_filter(self, ticket_client):
        rules = [
            TransitionRule(from_status=TicketStatus.OPEN, to_status=TicketStatus.WAITING),
            TransitionRule(
                from_status=TicketStatus.OPEN,
                to_status=TicketStatus.CLOSED,
                allowed_roles=["admin"],
            ),
        ]
        workflow = StatusWorkflow(ticket_client, rules=rules)

        agent_targets = [r.to_status for r in workflow.get_available_transitions("open", "agent")]
        admin_targets = [r.to_status for r in workflow.get_available_transitions("open", "admin")]

        assert agent_targets == [TicketStatus.WAITING]
        assert admin_targets == [TicketStatus.WAITING, TicketStatus.CLOSED]


class TestExecuteTransition:
    """Test executing transitions and their hooks"""

    def test_missing_ticket(self, workflow, ticket_client):
        ticket_client.get_ticket.return_value = None

        with pytest.raises(ValueError, match="not found"):
            workflow.execute_transition(uuid4(), TicketStatus.IN_PROGRESS)

    def test_rejected_transition_writes_nothing(self, workflow, ticket_client):
        stored(ticket_client, make_ticket())

        with pytest.raises(ValueError, match="must be assigned"):
            workflow.execute_transition(uuid4(), TicketStatus.IN_PROGRESS, role="agent")

        ticket_client.change_status.assert_not_called()
        ticket_client.update_ticket.assert_not_called()

    def test_start_work_notifies_and_audits(self, workflow, ticket_client, notifier, audit_client):
        actor = uuid4()
        ticket = make_ticket(assignee_id=actor)
        stored(ticket_client, ticket)

        result = workflow.execute_transition(
            ticket.id, TicketStatus.IN_PROGRESS, actor_id=actor, role="agent", reason="Picking up"
        )

        assert result.status == TicketStatus.IN_PROGRESS
        ticket_client.change_status.assert_called_once_with(
            ticket.id,
            TicketStatus.OPEN,
            TicketStatus.IN_PROGRESS,
            changed_by=actor,
            reason="Picking up",
            field_updates=None,
        )
        roles = notifier.notify.call_args[0][1]
        assert roles == ["assignee", "followers"]
        assert notifier.notify.call_args[1]["kind"] == "status_changed"
        assert audit_client.log.call_args[1]["action"] == "ticket.status_change"

    def test_resolution_field_update_satisfies_condition(self, workflow, ticket_client, sla_tracker):
        ticket = make_ticket(status=TicketStatus.IN_PROGRESS, assignee_id=uuid4())
        stored(ticket_client, ticket)

        workflow.execute_transition(
            ticket.id,
            TicketStatus.RESOLVED,
            role="agent",
            field_updates={"resolution": "Cleared the cached session"},
        )

        assert ticket_client.change_status.call_args[1]["field_updates"] == {
            "resolution": "Cleared the cached session"
        }
        ticket_client.update_ticket.assert_not_called()
        sla_tracker.stop.assert_called_once_with(ticket.id)

    def test_concurrent_change_leaves_resolution_unwritten(self, workflow, ticket_client, sla_tracker):
        ticket = make_ticket(status=TicketStatus.IN_PROGRESS, assignee_id=uuid4())
        ticket_client.get_ticket.return_value = ticket
        ticket_client.change_status.side_effect = ValueError(
            f"Ticket {ticket.id} is waiting, expected in_progress"
        )

        with pytest.raises(ValueError, match="expected in_progress"):
            workflow.execute_transition(
                ticket.id,
                TicketStatus.RESOLVED,
                role="agent",
                field_updates={"resolution": "Cleared the cached session"},
            )

        ticket_client.update_ticket.assert_not_called()
        sla_tracker.stop.assert_not_called()

    def test_waiting_pauses_and_resume_restarts_sla(self, workflow, ticket_client, sla_tracker):
        ticket = make_ticket(status=TicketStatus.IN_PROGRESS, assignee_id=uuid4())
        stored(ticket_client, ticket)
        workflow.execute_transition(ticket.id, TicketStatus.WAITING, role="agent")
        sla_tracker.pause.assert_called_once_with(ticket.id)

        waiting = make_ticket(id=ticket.id, status=TicketStatus.WAITING)
        stored(ticket_client, waiting)
        workflow.execute_transition(ticket.id, TicketStatus.IN_PROGRESS, role="agent")
        sla_tracker.resume.assert_called_once_with(ticket.id)

    def test_hook_failure_does_not_raise(self, workflow, ticket_client, notifier):
        ticket = make_ticket(assignee_id=uuid4())
        stored(ticket_client, ticket)
        notifier.notify.side_effect = RuntimeError("mail server down")

        result = workflow.execute_transition(ticket.id, TicketStatus.IN_PROGRESS, role="agent")

        assert result.status == TicketStatus.IN_PROGRESS

    def test_audit_failure_does_not_raise(self, workflow, ticket_client, audit_client):
        ticket = make_ticket(assignee_id=uuid4())
        stored(ticket_client, ticket)
        audit_client.log.side_effect = RuntimeError("audit table locked")

        result = workflow.execute_transition(ticket.id, TicketStatus.IN_PROGRESS, role="agent")

        assert result.status == TicketStatus.IN_PROGRESS

    def test_field_update_hook(self, ticket_client):
        rules = [
            TransitionRule(
                from_status=TicketStatus.OPEN,
                to_status=TicketStatus.WAITING,
                hooks=[TransitionHook(type="field_update", field_updates={"tags": ["on-hold"]})],
            )
        ]
        workflow = StatusWorkflow(ticket_client, rules=rules)
        ticket = make_ticket()
        stored(ticket_client, ticket)

        workflow.execute_transition(ticket.id, TicketStatus.WAITING)

        ticket_client.update_ticket.assert_called_once_with(ticket.id, {"tags": ["on-hold"]})


class TestAutomatedTransition:
    """Test transitions triggered by automations"""

    def test_skips_conditions_and_flags_history(self, workflow, ticket_client, audit_client):
        ticket = make_ticket(status=TicketStatus.RESOLVED, status_changed_at=NOW)
        stored(ticket_client, ticket)

        result = workflow.execute_automated_transition(
            ticket, TicketStatus.CLOSED, reason="Automation: Auto-close"
        )

        assert result.status == TicketStatus.CLOSED
        ticket_client.change_status.assert_called_once_with(
            ticket.id,
            TicketStatus.RESOLVED,
            TicketStatus.CLOSED,
            reason="Automation: Auto-close",
            automation_triggered=True,
        )
        audit_client.log.assert_called_once()

    def test_runs_hooks(self, workflow, ticket_client, sla_tracker):
        ticket = make_ticket(status=TicketStatus.IN_PROGRESS)
        stored(ticket_client, ticket)

        workflow.execute_automated_transition(ticket, TicketStatus.WAITING)

        sla_tracker.pause.assert_called_once_with(ticket.id)

    def test_unknown_pair(self, workflow):
        with pytest.raises(ValueError, match="Invalid transition"):
            workflow.execute_automated_transition(make_ticket(), TicketStatus.CLOSED)
