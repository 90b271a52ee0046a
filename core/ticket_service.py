"""
Ticket orchestration: creation, comments, assignment and the periodic SLA run.

Storage clients only read and write rows; TicketService combines them with
the SLA tracker, the status workflow, notifications and the audit log.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Set
from uuid import UUID

from core.permissions import Role
from core.schemas import (
    Ticket,
    TicketComment,
    TicketPriority,
    TicketSource,
    TicketStatus,
    TicketType,
    PRIORITY_ORDER,
    priority_rank,
)
from core.sla import SLAPolicy, SLATracker, StatusAutomation, Escalation, utcnow
from core.status_workflow import StatusWorkflow
from utils.logger import get_sla_logger, PerformanceLogger

logger = get_sla_logger()

ACTIVE_STATUSES = (TicketStatus.OPEN, TicketStatus.IN_PROGRESS, TicketStatus.WAITING)


class TicketService:
    """
    High-level ticket operations.

    Args:
        ticket_client: TicketClient
        sla_tracker: SLATracker
        workflow: StatusWorkflow
        notifier: Notifier
        team_client: TeamClient, used for escalation reassignment
        audit_client: AuditLogClient, optional
    """

    def __init__(
        self,
        ticket_client,
        sla_tracker: SLATracker,
        workflow: StatusWorkflow,
        notifier,
        team_client=None,
        audit_client=None,
    ):
        self.ticket_client = ticket_client
        self.sla_tracker = sla_tracker
        self.workflow = workflow
        self.notifier = notifier
        self.team_client = team_client
        self.audit_client = audit_client

    @property
    def policy(self) -> SLAPolicy:
        return self.sla_tracker.policy

    def _audit(self, action: str, ticket_id: Any, actor_id: Optional[UUID], changes: Dict[str, Any]) -> None:
        if not self.audit_client:
            return
        try:
            self.audit_client.log(
                action=action,
                entity_type="ticket",
                entity_id=ticket_id,
                actor_id=actor_id,
                changes=changes,
            )
        except Exception as e:
            logger.error(f"Audit log '{action}' failed for ticket {ticket_id}: {e}")

    def create_ticket(
        self,
        title: str,
        description: str,
        customer_id: UUID,
        priority: TicketPriority = TicketPriority.MEDIUM,
        type: TicketType = TicketType.QUESTION,
        source: TicketSource = TicketSource.WEB,
        actor_id: Optional[UUID] = None,
        **fields,
    ) -> Ticket:
        """
        Create a ticket, start its SLA clock and audit the creation.

        Extra keyword arguments (assignee_id, team_id, tags, due_date,
        metadata) are passed to TicketClient.create_ticket.
        """
        ticket = self.ticket_client.create_ticket(
            title=title,
            description=description,
            customer_id=customer_id,
            priority=priority,
            type=type,
            source=source,
            **fields,
        )
        try:
            self.sla_tracker.start(ticket)
        except Exception as e:
            logger.error(f"Failed to start SLA for ticket {ticket.id}: {e}")

        self._audit(
            "ticket.create",
            ticket.id,
            actor_id or customer_id,
            {"title": ticket.title, "priority": ticket.priority.value, "source": ticket.source.value},
        )
        if ticket.assignee_id:
            self.notifier.notify(
                ticket, ["assignee"], kind="ticket_assigned", message=f"New ticket assigned: '{ticket.title}'"
            )
        return ticket

    def update_ticket(self, ticket_id: UUID, updates: Dict[str, Any], actor_id: Optional[UUID] = None) -> Ticket:
        before = self.ticket_client.get_ticket(ticket_id)
        if before is None:
            raise ValueError(f"Ticket {ticket_id} not found")
        ticket = self.ticket_client.update_ticket(ticket_id, updates)

        if ticket.priority != before.priority and ticket.status in ACTIVE_STATUSES:
            # Priority determines the SLA config; restart the clock under the new one
            try:
                self.sla_tracker.start(ticket)
            except Exception as e:
                logger.error(f"Failed to restart SLA for ticket {ticket_id}: {e}")

        self._audit("ticket.update", ticket_id, actor_id, dict(updates))
        return ticket

    def add_comment(
        self,
        ticket_id: UUID,
        author_id: UUID,
        author_role: str,
        content: str,
        is_internal: bool = False,
    ) -> TicketComment:
        """
        Add a comment.

        The first public comment from a non-customer records the ticket's
        first response and marks the SLA as responded.

        Raises:
            ValueError: If the ticket is missing or a customer posts an
                internal comment
        """
        is_customer = Role(author_role) == Role.CUSTOMER
        if is_customer and is_internal:
            raise ValueError("Customers cannot post internal comments")

        ticket = self.ticket_client.get_ticket(ticket_id)
        if ticket is None:
            raise ValueError(f"Ticket {ticket_id} not found")

        comment = self.ticket_client.add_comment(ticket_id, author_id, content, is_internal)

        if not is_customer and not is_internal:
            if self.ticket_client.record_first_response(ticket_id):
                logger.info(f"First response recorded on ticket {ticket_id}")
                try:
                    self.sla_tracker.mark_responded(ticket_id)
                except Exception as e:
                    logger.error(f"Failed to mark SLA responded for ticket {ticket_id}: {e}")
            self.notifier.notify(
                ticket, ["customer"], kind="comment_added", message=f"New reply on '{ticket.title}'"
            )
        elif is_customer:
            self.notifier.notify(
                ticket,
                ["assignee", "followers"],
                kind="comment_added",
                message=f"Customer replied on '{ticket.title}'",
            )
        return comment

    def list_comments(self, ticket_id: UUID, viewer_role: str) -> List[TicketComment]:
        include_internal = Role(viewer_role) != Role.CUSTOMER
        return self.ticket_client.list_comments(ticket_id, include_internal=include_internal)

    def assign_ticket(
        self, ticket_id: UUID, assignee_id: Optional[UUID], actor_id: Optional[UUID] = None
    ) -> Ticket:
        ticket, previous = self.ticket_client.assign(ticket_id, assignee_id, changed_by=actor_id)
        if assignee_id and assignee_id != previous:
            self.notifier.notify(
                ticket, ["assignee"], kind="ticket_assigned", message=f"Ticket assigned to you: '{ticket.title}'"
            )
        self._audit(
            "ticket.assign",
            ticket_id,
            actor_id,
            {"from": str(previous) if previous else None, "to": str(assignee_id) if assignee_id else None},
        )
        return ticket

    def change_status(
        self,
        ticket_id: UUID,
        to_status: TicketStatus,
        actor_id: Optional[UUID],
        role: Optional[str],
        reason: Optional[str] = None,
        resolution: Optional[str] = None,
    ) -> Ticket:
        field_updates = {"resolution": resolution} if resolution else None
        return self.workflow.execute_transition(
            ticket_id,
            to_status,
            actor_id=actor_id,
            role=role,
            reason=reason,
            field_updates=field_updates,
        )

    # SLA

    def _run_escalation(self, ticket: Ticket, escalation: Escalation) -> Ticket:
        for action in escalation.actions:
            if action.type == "notify":
                self.notifier.notify(
                    ticket,
                    action.roles,
                    kind="sla_escalation",
                    message=f"SLA {escalation.threshold}% reached on '{ticket.title}'",
                )
            elif action.type == "escalate_priority":
                rank = priority_rank(ticket.priority)
                if rank < len(PRIORITY_ORDER) - 1:
                    new_priority = PRIORITY_ORDER[rank + 1]
                    ticket = self.ticket_client.update_ticket(ticket.id, {"priority": new_priority})
                    logger.info(f"Ticket {ticket.id} escalated to {new_priority.value}")
                    self._audit(
                        "ticket.escalate_priority", ticket.id, None, {"priority": new_priority.value}
                    )
            elif action.type == "reassign":
                team = self.team_client.get_team_by_name(action.team) if self.team_client else None
                if team is None:
                    logger.warning(f"Escalation team '{action.team}' not found; ticket {ticket.id} not reassigned")
                    continue
                ticket = self.ticket_client.update_ticket(ticket.id, {"team_id": team.id})
                logger.info(f"Ticket {ticket.id} reassigned to team {team.name}")
                self._audit("ticket.reassign", ticket.id, None, {"team": team.name})
        return ticket

    def check_ticket_sla(self, ticket: Ticket, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Evaluate one ticket's SLA: record breaches and run due escalations.

        Returns:
            Counts of new breaches and escalations
        """
        now = now or utcnow()
        result = {"breaches": 0, "escalations": 0}

        state = self.sla_tracker.state_client.get_state(ticket.id)
        if state is None:
            return result
        evaluation = self.policy.evaluate(state, now)
        if evaluation is None:
            return result

        new_breaches = self.sla_tracker.record_breaches(state, evaluation, now)
        if new_breaches:
            result["breaches"] = len(new_breaches)
            self.notifier.notify(
                ticket,
                ["assignee", "manager"],
                kind="sla_breach",
                message=f"SLA {' and '.join(new_breaches)} time breached on '{ticket.title}'",
            )

        for escalation in evaluation.pending_escalations:
            ticket = self._run_escalation(ticket, escalation)
            self.sla_tracker.record_escalation(state, escalation.threshold, now)
            result["escalations"] += 1
            logger.info(
                f"Ticket {ticket.id}: escalation at {escalation.threshold}% "
                f"(elapsed {evaluation.percent}%)"
            )
        return result

    def apply_automation(self, ticket: Ticket, automation: StatusAutomation) -> Ticket:
        reason = f"Automation: {automation.name}"
        # Roles the transition hooks already told about this run
        notified: Set[str] = set()
        for action in automation.actions:
            if action.type == "change_status" and action.status is not None:
                rule = self.workflow.find_rule(ticket.status, action.status)
                if rule is not None:
                    notified.update(r for h in rule.hooks if h.type == "notification" for r in h.notify_roles)
                ticket = self.workflow.execute_automated_transition(ticket, action.status, reason=reason)
            elif action.type == "add_tag":
                tags = list(dict.fromkeys(ticket.tags + action.tags))
                if tags != ticket.tags:
                    ticket = self.ticket_client.update_ticket(ticket.id, {"tags": tags})
            elif action.type == "notify":
                roles = [r for r in action.roles if r not in notified]
                if roles:
                    self.notifier.notify(
                        ticket, roles, kind="automation", message=f"{automation.name}: '{ticket.title}'"
                    )
        logger.info(f"Automation {automation.id} applied to ticket {ticket.id}")
        return ticket

    def run_sla_checks(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Periodic job: evaluate SLAs of active tickets, then run automations.

        A failure on one ticket is logged and counted; the run continues.

        Returns:
            Counts: checked, breaches, escalations, automations, errors
        """
        now = now or utcnow()
        stats = {"checked": 0, "breaches": 0, "escalations": 0, "automations": 0, "errors": 0}

        with PerformanceLogger(logger, "SLA check run"):
            for ticket in self.ticket_client.list_tickets_by_status(ACTIVE_STATUSES):
                stats["checked"] += 1
                try:
                    result = self.check_ticket_sla(ticket, now)
                    stats["breaches"] += result["breaches"]
                    stats["escalations"] += result["escalations"]
                except Exception as e:
                    logger.error(f"SLA check failed for ticket {ticket.id}: {e}")
                    stats["errors"] += 1

            automation_statuses = {
                c.status
                for a in self.policy.automations
                for c in a.conditions
                if c.type == "time_in_status" and c.status is not None
            } or set(ACTIVE_STATUSES)

            candidates = self.ticket_client.list_tickets_by_status(
                sorted(automation_statuses, key=lambda s: s.value)
            )
            for ticket in candidates:
                for automation in self.policy.matching_automations(ticket, now):
                    try:
                        ticket = self.apply_automation(ticket, automation)
                        stats["automations"] += 1
                    except Exception as e:
                        logger.error(f"Automation {automation.id} failed for ticket {ticket.id}: {e}")
                        stats["errors"] += 1
                        break

        logger.info(
            f"SLA run: {stats['checked']} checked, {stats['breaches']} breaches, "
            f"{stats['escalations']} escalations, {stats['automations']} automations, "
            f"{stats['errors']} errors"
        )
        return stats
