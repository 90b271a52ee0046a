"""
Ticket status workflow.

A ticket only changes status along a TransitionRule. A rule may restrict the
roles allowed to use it and may carry conditions (required fields, minimum
time in the current status, minimum priority). Once a transition is written,
the rule's hooks run: notifications, SLA clock updates and field updates.

Default workflow:
    open        -> in_progress   requires an assignee
    in_progress -> waiting       pauses the SLA
    waiting     -> in_progress   resumes the SLA
    in_progress -> resolved      requires a resolution, stops the SLA
    resolved    -> closed        after 7 days resolved
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, Field

from core.schemas import Ticket, TicketPriority, TicketStatus, priority_rank
from core.sla import minutes_between, utcnow
from utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONDITION_MESSAGE = "Transition condition not met"

# Workflow field names that differ from Ticket attributes
FIELD_ALIASES = {"assignee": "assignee_id", "team": "team_id", "customer": "customer_id"}


class TransitionCondition(BaseModel):
    type: Literal["required_fields", "time_elapsed", "priority_check"]
    field_ids: List[str] = Field(default_factory=list)
    min_minutes_in_status: Optional[int] = None
    min_priority: Optional[TicketPriority] = None
    message: Optional[str] = None


class TransitionHook(BaseModel):
    type: Literal["notification", "sla_update", "field_update"]
    notify_roles: List[str] = Field(default_factory=list)
    sla_action: Optional[Literal["start", "pause", "resume", "stop"]] = None
    field_updates: Dict[str, Any] = Field(default_factory=dict)


class TransitionRule(BaseModel):
    from_status: TicketStatus
    to_status: TicketStatus
    allowed_roles: Optional[List[str]] = None
    conditions: List[TransitionCondition] = Field(default_factory=list)
    hooks: List[TransitionHook] = Field(default_factory=list)


DEFAULT_STATUS_WORKFLOW = [
    TransitionRule(
        from_status=TicketStatus.OPEN,
        to_status=TicketStatus.IN_PROGRESS,
        conditions=[
            TransitionCondition(
                type="required_fields",
                field_ids=["assignee"],
                message="Ticket must be assigned before work starts",
            )
        ],
        hooks=[TransitionHook(type="notification", notify_roles=["assignee", "followers"])],
    ),
    TransitionRule(
        from_status=TicketStatus.IN_PROGRESS,
        to_status=TicketStatus.WAITING,
        hooks=[
            TransitionHook(type="notification", notify_roles=["customer"]),
            TransitionHook(type="sla_update", sla_action="pause"),
        ],
    ),
    TransitionRule(
        from_status=TicketStatus.WAITING,
        to_status=TicketStatus.IN_PROGRESS,
        hooks=[TransitionHook(type="sla_update", sla_action="resume")],
    ),
    TransitionRule(
        from_status=TicketStatus.IN_PROGRESS,
        to_status=TicketStatus.RESOLVED,
        conditions=[
            TransitionCondition(
                type="required_fields",
                field_ids=["resolution"],
                message="A resolution is required to resolve a ticket",
            )
        ],
        hooks=[
            TransitionHook(type="notification", notify_roles=["customer", "followers"]),
            TransitionHook(type="sla_update", sla_action="stop"),
        ],
    ),
    TransitionRule(
        from_status=TicketStatus.RESOLVED,
        to_status=TicketStatus.CLOSED,
        conditions=[
            TransitionCondition(
                type="time_elapsed",
                min_minutes_in_status=10080,
                message="Ticket must stay resolved for 7 days before closing",
            )
        ],
    ),
]


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) == 0
    return False


def field_value(ticket: Ticket, field_id: str) -> Any:
    """Look a workflow field up on the ticket, then in its metadata."""
    attribute = FIELD_ALIASES.get(field_id, field_id)
    if attribute in Ticket.model_fields:
        return getattr(ticket, attribute)
    return ticket.metadata.get(field_id)


def check_condition(ticket: Ticket, condition: TransitionCondition, now: datetime) -> bool:
    if condition.type == "required_fields":
        return all(not _is_empty(field_value(ticket, f)) for f in condition.field_ids)
    if condition.type == "time_elapsed":
        required = condition.min_minutes_in_status or 0
        return minutes_between(ticket.status_changed_at, now) >= required
    if condition.type == "priority_check":
        if condition.min_priority is None:
            return True
        return priority_rank(ticket.priority) >= priority_rank(condition.min_priority)
    return False


class StatusWorkflow:
    """
    Validate and execute ticket status transitions.

    Args:
        ticket_client: TicketClient
        sla_tracker: SLATracker for sla_update hooks
        notifier: Notifier for notification hooks
        audit_client: AuditLogClient, optional
        rules: Transition rules (DEFAULT_STATUS_WORKFLOW when None)
    """

    def __init__(
        self,
        ticket_client,
        sla_tracker=None,
        notifier=None,
        audit_client=None,
        rules: Optional[List[TransitionRule]] = None,
    ):
        self.ticket_client = ticket_client
        self.sla_tracker = sla_tracker
        self.notifier = notifier
        self.audit_client = audit_client
        self.rules = list(rules) if rules is not None else list(DEFAULT_STATUS_WORKFLOW)

    def find_rule(self, from_status: TicketStatus, to_status: TicketStatus) -> Optional[TransitionRule]:
        from_status, to_status = TicketStatus(from_status), TicketStatus(to_status)
        return next(
            (r for r in self.rules if r.from_status == from_status and r.to_status == to_status),
            None,
        )

    def get_available_transitions(
        self, from_status: TicketStatus, role: Optional[str] = None
    ) -> List[TransitionRule]:
        """Rules leaving from_status that the role may use."""
        from_status = TicketStatus(from_status)
        return [
            r
            for r in self.rules
            if r.from_status == from_status
            and (r.allowed_roles is None or role is None or role in r.allowed_roles)
        ]

    def validate_transition(
        self,
        ticket: Ticket,
        to_status: TicketStatus,
        role: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str]:
        """
        Check a transition without executing it.

        Returns:
            (True, "") when allowed, otherwise (False, reason)
        """
        to_status = TicketStatus(to_status)
        rule = self.find_rule(ticket.status, to_status)
        if rule is None:
            return False, f"Invalid transition from {ticket.status.value} to {to_status.value}"

        if rule.allowed_roles is not None and role not in rule.allowed_roles:
            return False, f"Role {role} not allowed for this transition"

        now = now or utcnow()
        for condition in rule.conditions:
            if not check_condition(ticket, condition, now):
                return False, condition.message or DEFAULT_CONDITION_MESSAGE

        return True, ""

    def execute_transition(
        self,
        ticket_id: UUID,
        to_status: TicketStatus,
        actor_id: Optional[UUID] = None,
        role: Optional[str] = None,
        reason: Optional[str] = None,
        field_updates: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Ticket:
        """
        Validate and apply a status change.

        field_updates (e.g. a resolution) count towards required-field
        conditions and are written together with the status change.

        Raises:
            ValueError: If the ticket is missing or the transition is not allowed
        """
        to_status = TicketStatus(to_status)
        ticket = self.ticket_client.get_ticket(ticket_id)
        if ticket is None:
            raise ValueError(f"Ticket {ticket_id} not found")

        candidate = ticket
        if field_updates:
            candidate = ticket.model_copy(update=dict(field_updates))

        valid, message = self.validate_transition(candidate, to_status, role, now)
        if not valid:
            logger.info(f"Transition rejected for ticket {ticket_id}: {message}")
            raise ValueError(message)

        rule = self.find_rule(ticket.status, to_status)
        updated = self.ticket_client.change_status(
            ticket_id,
            ticket.status,
            to_status,
            changed_by=actor_id,
            reason=reason,
            field_updates=field_updates,
        )
        self._run_hooks(rule, updated, from_status=ticket.status)
        self._audit(updated, ticket.status, actor_id, reason, automation=False)
        return updated

    def execute_automated_transition(
        self, ticket: Ticket, to_status: TicketStatus, reason: Optional[str] = None
    ) -> Ticket:
        """
        Apply a status change on behalf of an automation.

        Conditions and role restrictions are skipped; the rule's hooks still
        run and history is flagged as automation_triggered.

        Raises:
            ValueError: If the workflow has no rule for the pair
        """
        to_status = TicketStatus(to_status)
        rule = self.find_rule(ticket.status, to_status)
        if rule is None:
            raise ValueError(f"Invalid transition from {ticket.status.value} to {to_status.value}")

        updated = self.ticket_client.change_status(
            ticket.id, ticket.status, to_status, reason=reason, automation_triggered=True
        )
        self._run_hooks(rule, updated, from_status=ticket.status)
        self._audit(updated, ticket.status, None, reason, automation=True)
        return updated

    def get_status_history(self, ticket_id: UUID):
        return self.ticket_client.get_status_history(ticket_id)

    def _run_hooks(self, rule: TransitionRule, ticket: Ticket, from_status: TicketStatus) -> None:
        for hook in rule.hooks:
            try:
                if hook.type == "notification" and self.notifier:
                    self.notifier.notify(
                        ticket,
                        hook.notify_roles,
                        kind="status_changed",
                        message=(
                            f"Ticket '{ticket.title}' moved from "
                            f"{from_status.value} to {ticket.status.value}"
                        ),
                    )
                elif hook.type == "sla_update" and self.sla_tracker:
                    if hook.sla_action == "start":
                        self.sla_tracker.start(ticket)
                    elif hook.sla_action == "pause":
                        self.sla_tracker.pause(ticket.id)
                    elif hook.sla_action == "resume":
                        self.sla_tracker.resume(ticket.id)
                    elif hook.sla_action == "stop":
                        self.sla_tracker.stop(ticket.id)
                elif hook.type == "field_update" and hook.field_updates:
                    self.ticket_client.update_ticket(ticket.id, hook.field_updates)
            except Exception as e:
                # Status is already committed; hooks must not undo it
                logger.error(f"Hook {hook.type} failed for ticket {ticket.id}: {e}")

    def _audit(
        self,
        ticket: Ticket,
        from_status: TicketStatus,
        actor_id: Optional[UUID],
        reason: Optional[str],
        automation: bool,
    ) -> None:
        if not self.audit_client:
            return
        try:
            self.audit_client.log(
                action="ticket.status_change",
                entity_type="ticket",
                entity_id=ticket.id,
                actor_id=actor_id,
                changes={
                    "from": from_status.value,
                    "to": ticket.status.value,
                    "reason": reason,
                    "automation_triggered": automation,
                },
            )
        except Exception as e:
            logger.error(f"Audit log failed for ticket {ticket.id}: {e}")
