"""Session ledger (appointments, tickets, known patient) and its reducer."""

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from front_desk.actions import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_NOT_FOUND,
    Action,
    CancelAppointment,
    CreateAppointment,
    CreateTicket,
    Rejection,
    RescheduleAppointment,
)

logger = logging.getLogger(__name__)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AppointmentStatus(str, Enum):
    CONFIRMED = "confirmed"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"


class TicketPriority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"


def normalize_priority(value: str | None) -> TicketPriority:
    """Map a free-form priority onto the known set, defaulting to normal."""
    try:
        return TicketPriority((value or "").strip().lower())
    except ValueError:
        return TicketPriority.NORMAL


class Appointment(BaseModel):
    id: str
    patient_name: str = ""
    phone: str = ""
    reason: str = ""
    datetime: str
    site: str = ""
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    created_at: str = Field(default_factory=_utcnow_iso)


class Ticket(BaseModel):
    id: str
    topic: str
    priority: TicketPriority = TicketPriority.NORMAL
    patient_name: str = ""
    phone: str = ""
    created_at: str = Field(default_factory=_utcnow_iso)


class PatientIdentity(BaseModel):
    name: str = ""
    phone: str = ""


class Ledger(BaseModel):
    """Everything one conversation session has booked or escalated."""

    appointments: list[Appointment] = Field(default_factory=list)
    tickets: list[Ticket] = Field(default_factory=list)
    patient: PatientIdentity = Field(default_factory=PatientIdentity)

    def find_appointment(self, appointment_id: str) -> Appointment | None:
        return next((a for a in self.appointments if a.id == appointment_id), None)

    def known_ids(self) -> set[str]:
        return {a.id for a in self.appointments} | {t.id for t in self.tickets}

    def remember_patient(self, name: str, phone: str) -> None:
        """Overwrite the known identity with any non-empty value."""
        if name:
            self.patient.name = name
        if phone:
            self.patient.phone = phone


def new_id(prefix: str) -> str:
    return f"{prefix}{uuid.uuid4().hex[:8]}"


def _allocate_id(ledger: Ledger, prefix: str) -> str:
    taken = ledger.known_ids()
    while (candidate := new_id(prefix)) in taken:
        pass
    return candidate


class ApplyResult(BaseModel):
    ledger: Ledger
    applied: list[str] = Field(default_factory=list)
    rejections: list[Rejection] = Field(default_factory=list)


# ------------------------------------------------------------------ #
#  Reducer
# ------------------------------------------------------------------ #
def _create_appointment(ledger: Ledger, action: CreateAppointment) -> None:
    appointment = Appointment(
        id=_allocate_id(ledger, "R"),
        patient_name=action.patient_name or "",
        phone=action.phone or "",
        reason=action.reason or "",
        datetime=action.datetime,
        site=action.site or "",
    )
    ledger.appointments.append(appointment)
    ledger.remember_patient(appointment.patient_name, appointment.phone)
    logger.info("Created appointment %s at %s", appointment.id, appointment.datetime)


def _reschedule_appointment(ledger: Ledger, action: RescheduleAppointment) -> Rejection | None:
    appointment = ledger.find_appointment(action.appointment_id)
    if appointment is None:
        return Rejection(
            kind=action.type,
            reason=APPOINTMENT_NOT_FOUND,
            detail=f"no appointment with id {action.appointment_id!r}",
        )
    if appointment.status == AppointmentStatus.CANCELLED:
        return Rejection(
            kind=action.type,
            reason=APPOINTMENT_CANCELLED,
            detail=f"appointment {appointment.id} is cancelled",
        )
    appointment.datetime = action.new_datetime
    appointment.status = AppointmentStatus.RESCHEDULED
    logger.info("Rescheduled appointment %s to %s", appointment.id, appointment.datetime)
    return None


def _cancel_appointment(ledger: Ledger, action: CancelAppointment) -> Rejection | None:
    appointment = ledger.find_appointment(action.appointment_id)
    if appointment is None:
        return Rejection(
            kind=action.type,
            reason=APPOINTMENT_NOT_FOUND,
            detail=f"no appointment with id {action.appointment_id!r}",
        )
    appointment.status = AppointmentStatus.CANCELLED
    logger.info("Cancelled appointment %s", appointment.id)
    return None


def _create_ticket(ledger: Ledger, action: CreateTicket) -> None:
    ticket = Ticket(
        id=_allocate_id(ledger, "T"),
        topic=action.topic or "",
        priority=normalize_priority(action.priority),
        patient_name=action.patient_name or "",
        phone=action.phone or "",
    )
    ledger.tickets.append(ticket)
    logger.info("Created %s priority ticket %s", ticket.priority.value, ticket.id)


def apply_actions(ledger: Ledger, actions: Sequence[Action]) -> ApplyResult:
    """Apply validated actions to ``ledger`` in order, mutating it in place.

    Each action sees the effect of the ones before it. Reschedule and cancel
    are looked up again here, so an action that became invalid earlier in the
    same batch is skipped and reported instead of applied.
    """
    result = ApplyResult(ledger=ledger)
    for index, action in enumerate(actions):
        rejection: Rejection | None = None
        if isinstance(action, CreateAppointment):
            _create_appointment(ledger, action)
        elif isinstance(action, RescheduleAppointment):
            rejection = _reschedule_appointment(ledger, action)
        elif isinstance(action, CancelAppointment):
            rejection = _cancel_appointment(ledger, action)
        elif isinstance(action, CreateTicket):
            _create_ticket(ledger, action)
        else:
            raise TypeError(f"Unsupported action: {action!r}")

        if rejection is not None:
            rejection.index = index
            logger.warning("Skipped %s: %s", rejection.kind, rejection.detail)
            result.rejections.append(rejection)
        else:
            result.applied.append(action.type)
    return result
