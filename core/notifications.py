"""
Recipient resolution and best-effort notification delivery for ticket events.
"""

from typing import Iterable, List
from uuid import UUID

from core.schemas import Ticket
from utils.logger import get_logger

logger = get_logger(__name__)

NOTIFY_ROLES = ("assignee", "customer", "followers", "team", "manager")


class Notifier:
    """
    Turn role names into user ids for a ticket and record notifications.

    Roles:
        assignee: the ticket's assignee
        customer: the ticket's customer
        followers: users following the ticket
        team: members of the ticket's team
        manager: supervisors of the ticket's team, or every supervisor when
            the ticket has no team
    """

    def __init__(self, notification_client, ticket_client, team_client, user_client):
        self.notification_client = notification_client
        self.ticket_client = ticket_client
        self.team_client = team_client
        self.user_client = user_client

    def resolve_recipients(self, ticket: Ticket, roles: Iterable[str]) -> List[UUID]:
        recipients: List[UUID] = []
        for role in roles:
            if role == "assignee":
                if ticket.assignee_id:
                    recipients.append(ticket.assignee_id)
            elif role == "customer":
                recipients.append(ticket.customer_id)
            elif role == "followers":
                recipients.extend(self.ticket_client.list_followers(ticket.id))
            elif role == "team":
                if ticket.team_id:
                    recipients.extend(self.team_client.get_member_ids(ticket.team_id))
            elif role == "manager":
                recipients.extend(self.user_client.list_supervisors(ticket.team_id))
            else:
                raise ValueError(f"Unknown notification role '{role}'")
        return list(dict.fromkeys(recipients))

    def notify(self, ticket: Ticket, roles: Iterable[str], kind: str, message: str) -> int:
        """
        Notify everyone in the given roles about a ticket.

        Failures are logged and reported as 0 notifications; they never
        propagate to the caller.
        """
        roles = list(roles)
        try:
            recipients = self.resolve_recipients(ticket, roles)
            created = self.notification_client.create_notifications(
                recipients, kind=kind, message=message, ticket_id=ticket.id
            )
            logger.info(f"Notified {created} users ({', '.join(roles)}) about ticket {ticket.id}: {kind}")
            return created
        except Exception as e:
            logger.error(f"Notification '{kind}' for ticket {ticket.id} failed: {e}")
            return 0
