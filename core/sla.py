"""
SLA configuration, clock arithmetic and status automations.

SLAPolicy is pure: it maps priorities to configs, measures elapsed time
(optionally only inside business hours) and decides which breaches and
escalations are due. SLATracker persists the clock of each ticket through
SLAStateClient.

Escalation percentages are measured against the resolution time:
    percent = floor(elapsed_minutes / resolution_minutes * 100)
"""

import math
from datetime import datetime, time as dt_time, timedelta, timezone
from typing import List, Literal, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator

from core.schemas import (
    SLAState,
    Ticket,
    TicketPriority,
    TicketStatus,
    priority_rank,
)
from utils.logger import get_logger

logger = get_logger(__name__)


class BusinessHours(BaseModel):
    start: str = Field(..., description="Opening time, HH:MM")
    end: str = Field(..., description="Closing time, HH:MM")
    timezone: str = "UTC"
    work_days: List[int] = Field(
        default_factory=lambda: [1, 2, 3, 4, 5], description="0 = Sunday ... 6 = Saturday"
    )

    @field_validator("start", "end")
    @classmethod
    def _check_time(cls, value: str) -> str:
        dt_time.fromisoformat(value)
        return value

    @field_validator("work_days")
    @classmethod
    def _check_days(cls, value: List[int]) -> List[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("work_days must be between 0 (Sunday) and 6 (Saturday)")
        return value


class EscalationAction(BaseModel):
    type: Literal["notify", "escalate_priority", "reassign"]
    roles: List[str] = Field(default_factory=list)
    team: Optional[str] = Field(default=None, description="Team name for reassign")


class Escalation(BaseModel):
    threshold: int = Field(..., ge=1, le=100)
    actions: List[EscalationAction]


class SLAConfig(BaseModel):
    id: str
    name: str
    priority: TicketPriority
    response_minutes: int = Field(..., gt=0)
    resolution_minutes: int = Field(..., gt=0)
    business_hours: Optional[BusinessHours] = None
    escalations: List[Escalation] = Field(default_factory=list)


DEFAULT_SLA_CONFIGS = [
    SLAConfig(
        id="urgent_sla",
        name="Urgent Tickets",
        priority=TicketPriority.URGENT,
        response_minutes=30,
        resolution_minutes=240,
        escalations=[
            Escalation(threshold=50, actions=[EscalationAction(type="notify", roles=["assignee", "team"])]),
            Escalation(
                threshold=75,
                actions=[
                    EscalationAction(type="notify", roles=["assignee", "manager"]),
                    EscalationAction(type="escalate_priority"),
                ],
            ),
            Escalation(
                threshold=90,
                actions=[
                    EscalationAction(type="notify", roles=["manager"]),
                    EscalationAction(type="reassign", team="escalation_team"),
                ],
            ),
        ],
    ),
    SLAConfig(
        id="high_sla",
        name="High Priority",
        priority=TicketPriority.HIGH,
        response_minutes=60,
        resolution_minutes=480,
        escalations=[
            Escalation(threshold=75, actions=[EscalationAction(type="notify", roles=["assignee", "team"])]),
            Escalation(
                threshold=90,
                actions=[
                    EscalationAction(type="notify", roles=["manager"]),
                    EscalationAction(type="escalate_priority"),
                ],
            ),
        ],
    ),
    SLAConfig(
        id="medium_sla",
        name="Medium Priority",
        priority=TicketPriority.MEDIUM,
        response_minutes=240,
        resolution_minutes=1440,
        escalations=[
            Escalation(threshold=75, actions=[EscalationAction(type="notify", roles=["assignee"])]),
            Escalation(
                threshold=90,
                actions=[
                    EscalationAction(type="notify", roles=["team"]),
                    EscalationAction(type="escalate_priority"),
                ],
            ),
        ],
    ),
    SLAConfig(
        id="low_sla",
        name="Low Priority",
        priority=TicketPriority.LOW,
        response_minutes=480,
        resolution_minutes=2880,
        escalations=[
            Escalation(threshold=90, actions=[EscalationAction(type="notify", roles=["assignee"])]),
        ],
    ),
]


# Status automations

class AutomationCondition(BaseModel):
    type: Literal["time_in_status", "priority", "tag"]
    status: Optional[TicketStatus] = None
    minutes: Optional[int] = None
    min_priority: Optional[TicketPriority] = None
    tags: List[str] = Field(default_factory=list)


class AutomationAction(BaseModel):
    type: Literal["change_status", "add_tag", "notify"]
    status: Optional[TicketStatus] = None
    tags: List[str] = Field(default_factory=list)
    roles: List[str] = Field(default_factory=list)


class StatusAutomation(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    conditions: List[AutomationCondition]
    actions: List[AutomationAction]
    is_active: bool = True


DEFAULT_STATUS_AUTOMATIONS = [
    StatusAutomation(
        id="auto_waiting",
        name="Auto-waiting on Customer Response",
        description="Set tickets to waiting after a day in progress",
        conditions=[
            AutomationCondition(type="time_in_status", status=TicketStatus.IN_PROGRESS, minutes=1440)
        ],
        actions=[
            AutomationAction(type="change_status", status=TicketStatus.WAITING),
            AutomationAction(type="notify", roles=["customer"]),
        ],
    ),
    StatusAutomation(
        id="auto_close",
        name="Auto-close Resolved Tickets",
        description="Close tickets that have been resolved for 7 days",
        conditions=[
            AutomationCondition(type="time_in_status", status=TicketStatus.RESOLVED, minutes=10080)
        ],
        actions=[
            AutomationAction(type="change_status", status=TicketStatus.CLOSED),
            AutomationAction(type="notify", roles=["assignee", "customer"]),
        ],
    ),
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def business_minutes_between(start: datetime, end: datetime, hours: BusinessHours) -> float:
    """
    Minutes between start and end that fall inside business hours.

    Each local calendar day in the range contributes the overlap of
    [start, end] with that day's opening window, if the day is a work day.
    """
    if end <= start:
        return 0.0

    tz = ZoneInfo(hours.timezone)
    opens = dt_time.fromisoformat(hours.start)
    closes = dt_time.fromisoformat(hours.end)
    local_start = start.astimezone(tz)
    local_end = end.astimezone(tz)

    total = 0.0
    day = local_start.date()
    while day <= local_end.date():
        # Python: Monday = 0; configuration: Sunday = 0
        if (day.weekday() + 1) % 7 in hours.work_days:
            window_open = datetime.combine(day, opens, tzinfo=tz)
            window_close = datetime.combine(day, closes, tzinfo=tz)
            overlap_start = max(window_open, local_start)
            overlap_end = min(window_close, local_end)
            if overlap_end > overlap_start:
                total += minutes_between(overlap_start, overlap_end)
        day += timedelta(days=1)
    return total


class SLAEvaluation(BaseModel):
    elapsed_minutes: float
    percent: int
    response_breached: bool
    resolution_breached: bool
    pending_escalations: List[Escalation] = Field(default_factory=list)


class SLAPolicy:
    """
    SLA configs, elapsed-time measurement and automation matching.
    """

    def __init__(
        self,
        configs: Optional[List[SLAConfig]] = None,
        automations: Optional[List[StatusAutomation]] = None,
    ):
        self.configs = list(configs) if configs is not None else list(DEFAULT_SLA_CONFIGS)
        self.automations = (
            list(automations) if automations is not None else list(DEFAULT_STATUS_AUTOMATIONS)
        )

    def config_for_priority(self, priority: TicketPriority) -> Optional[SLAConfig]:
        priority = TicketPriority(priority)
        return next((c for c in self.configs if c.priority == priority), None)

    def get_config(self, config_id: str) -> Optional[SLAConfig]:
        return next((c for c in self.configs if c.id == config_id), None)

    def elapsed_minutes(self, state: SLAState, config: SLAConfig, now: datetime) -> float:
        if config.business_hours:
            elapsed = business_minutes_between(state.started_at, now, config.business_hours)
        else:
            elapsed = minutes_between(state.started_at, now)
        return max(0.0, elapsed - state.total_paused_minutes)

    def evaluate(self, state: SLAState, now: Optional[datetime] = None) -> Optional[SLAEvaluation]:
        """
        Evaluate a running SLA clock.

        Returns None for paused or stopped clocks and for unknown configs.
        Breach flags report the condition, whether or not it was already
        recorded; pending escalations are those above the last threshold
        already handled, in ascending order.
        """
        if state.paused_at is not None or state.stopped_at is not None:
            return None
        config = self.get_config(state.config_id)
        if config is None:
            logger.warning(f"Unknown SLA config '{state.config_id}' for ticket {state.ticket_id}")
            return None

        now = now or utcnow()
        elapsed = self.elapsed_minutes(state, config, now)
        percent = math.floor(elapsed / config.resolution_minutes * 100)

        pending = sorted(
            (
                e
                for e in config.escalations
                if state.last_escalation_threshold < e.threshold <= percent
            ),
            key=lambda e: e.threshold,
        )

        return SLAEvaluation(
            elapsed_minutes=elapsed,
            percent=percent,
            response_breached=state.responded_at is None and elapsed > config.response_minutes,
            resolution_breached=elapsed > config.resolution_minutes,
            pending_escalations=pending,
        )

    @staticmethod
    def condition_met(ticket: Ticket, condition: AutomationCondition, now: datetime) -> bool:
        if condition.type == "time_in_status":
            if condition.status is not None and ticket.status != condition.status:
                return False
            return minutes_between(ticket.status_changed_at, now) >= (condition.minutes or 0)
        if condition.type == "priority":
            if condition.min_priority is None:
                return True
            return priority_rank(ticket.priority) >= priority_rank(condition.min_priority)
        if condition.type == "tag":
            return all(tag in ticket.tags for tag in condition.tags)
        return False

    def matching_automations(
        self, ticket: Ticket, now: Optional[datetime] = None
    ) -> List[StatusAutomation]:
        now = now or utcnow()
        return [
            a
            for a in self.automations
            if a.is_active and all(self.condition_met(ticket, c, now) for c in a.conditions)
        ]


class SLATracker:
    """
    Persist SLA clocks.

    Args:
        state_client: SLAStateClient
        policy: SLAPolicy used to pick a config by priority
    """

    def __init__(self, state_client, policy: Optional[SLAPolicy] = None):
        self.state_client = state_client
        self.policy = policy or SLAPolicy()

    def start(self, ticket: Ticket, now: Optional[datetime] = None) -> Optional[SLAState]:
        config = self.policy.config_for_priority(ticket.priority)
        if config is None:
            logger.warning(f"No SLA config for priority {ticket.priority}; ticket {ticket.id} untracked")
            return None
        return self.state_client.start(ticket.id, config.id, now or utcnow())

    def pause(self, ticket_id: UUID, now: Optional[datetime] = None) -> Optional[SLAState]:
        state = self.state_client.get_state(ticket_id)
        if state is None or state.paused_at is not None or state.stopped_at is not None:
            return state
        state.paused_at = now or utcnow()
        logger.info(f"SLA paused for ticket {ticket_id}")
        return self.state_client.save_state(state)

    def _fold_pause(self, state: SLAState, now: datetime) -> None:
        paused = math.floor(minutes_between(state.paused_at, now))
        state.total_paused_minutes += max(0, paused)
        state.paused_at = None

    def resume(self, ticket_id: UUID, now: Optional[datetime] = None) -> Optional[SLAState]:
        state = self.state_client.get_state(ticket_id)
        if state is None or state.paused_at is None:
            return state
        self._fold_pause(state, now or utcnow())
        logger.info(
            f"SLA resumed for ticket {ticket_id} ({state.total_paused_minutes} paused minutes in total)"
        )
        return self.state_client.save_state(state)

    def stop(self, ticket_id: UUID, now: Optional[datetime] = None) -> Optional[SLAState]:
        state = self.state_client.get_state(ticket_id)
        if state is None or state.stopped_at is not None:
            return state
        now = now or utcnow()
        if state.paused_at is not None:
            self._fold_pause(state, now)
        state.stopped_at = now
        logger.info(f"SLA stopped for ticket {ticket_id}")
        return self.state_client.save_state(state)

    def mark_responded(self, ticket_id: UUID, now: Optional[datetime] = None) -> Optional[SLAState]:
        state = self.state_client.get_state(ticket_id)
        if state is None or state.responded_at is not None:
            return state
        state.responded_at = now or utcnow()
        return self.state_client.save_state(state)

    def record_breaches(
        self, state: SLAState, evaluation: SLAEvaluation, now: Optional[datetime] = None
    ) -> List[str]:
        """
        Store newly detected breaches.

        Returns:
            The breach kinds ('response', 'resolution') recorded by this call
        """
        new: List[str] = []
        if evaluation.response_breached and not state.response_breached:
            state.response_breached = True
            new.append("response")
        if evaluation.resolution_breached and not state.resolution_breached:
            state.resolution_breached = True
            new.append("resolution")
        if new:
            if state.breached_at is None:
                state.breached_at = now or utcnow()
            self.state_client.save_state(state)
            logger.warning(f"SLA {' and '.join(new)} breach on ticket {state.ticket_id}")
        return new

    def record_escalation(
        self, state: SLAState, threshold: int, now: Optional[datetime] = None
    ) -> SLAState:
        state.last_escalation_threshold = threshold
        state.last_escalation_at = now or utcnow()
        return self.state_client.save_state(state)
