"""Per-kind validation of raw actions against the current ledger.

A bad action is turned into a :class:`Rejection` and the rest of the batch
carries on; nothing in here raises for bad model output.
"""

import logging
from collections.abc import Callable, Sequence
from typing import Any

from pydantic import ValidationError

from front_desk.actions import (
    ACTION_MODELS,
    APPOINTMENT_CANCELLED,
    APPOINTMENT_NOT_FOUND,
    INVALID_FIELDS,
    MALFORMED_ACTION,
    UNKNOWN_ACTION_KIND,
    Action,
    CancelAppointment,
    CreateAppointment,
    CreateTicket,
    Rejection,
    RescheduleAppointment,
)
from front_desk.ledger import AppointmentStatus, Ledger, normalize_priority

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Consultation"
DEFAULT_TOPIC = "Demande"
UNKNOWN_PATIENT = "Inconnu"


def _fill_appointment(action: CreateAppointment, ledger: Ledger) -> CreateAppointment:
    return action.model_copy(
        update={
            "patient_name": action.patient_name or ledger.patient.name,
            "phone": action.phone or ledger.patient.phone,
            "reason": action.reason or DEFAULT_REASON,
            "site": action.site or "",
        }
    )


def _check_reschedule(action: RescheduleAppointment, ledger: Ledger) -> RescheduleAppointment | Rejection:
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
    return action


def _check_cancel(action: CancelAppointment, ledger: Ledger) -> CancelAppointment | Rejection:
    # cancelling twice is allowed; the reducer leaves the state unchanged
    if ledger.find_appointment(action.appointment_id) is None:
        return Rejection(
            kind=action.type,
            reason=APPOINTMENT_NOT_FOUND,
            detail=f"no appointment with id {action.appointment_id!r}",
        )
    return action


def _fill_ticket(action: CreateTicket, ledger: Ledger) -> CreateTicket:
    return action.model_copy(
        update={
            "topic": action.topic or DEFAULT_TOPIC,
            "priority": normalize_priority(action.priority).value,
            "patient_name": action.patient_name or ledger.patient.name or UNKNOWN_PATIENT,
            "phone": action.phone or ledger.patient.phone,
        }
    )


_CHECKS: dict[str, Callable[[Any, Ledger], Action | Rejection]] = {
    "create_appointment": _fill_appointment,
    "reschedule_appointment": _check_reschedule,
    "cancel_appointment": _check_cancel,
    "create_ticket": _fill_ticket,
}


def _describe_errors(exc: ValidationError) -> str:
    fields = sorted({".".join(str(part) for part in err["loc"]) for err in exc.errors()})
    return "invalid or missing field(s): " + ", ".join(fields)


def validate_action(raw: Any, ledger: Ledger, index: int | None = None) -> Action | Rejection:
    """Validate one raw action and fill its defaults from the ledger."""
    if not isinstance(raw, dict):
        return Rejection(
            index=index,
            reason=MALFORMED_ACTION,
            detail=f"expected an object, got {type(raw).__name__}",
        )

    kind = raw.get("type")
    if not isinstance(kind, str) or kind not in ACTION_MODELS:
        return Rejection(
            index=index,
            kind=kind if isinstance(kind, str) else None,
            reason=UNKNOWN_ACTION_KIND,
            detail=f"unknown action type {kind!r}",
        )

    try:
        action = ACTION_MODELS[kind].model_validate(raw)
    except ValidationError as exc:
        return Rejection(index=index, kind=kind, reason=INVALID_FIELDS, detail=_describe_errors(exc))

    outcome = _CHECKS[kind](action, ledger)
    if isinstance(outcome, Rejection):
        outcome.index = index
    return outcome


def validate_batch(raw_actions: Sequence[Any], ledger: Ledger) -> tuple[list[Action], list[Rejection]]:
    """Validate every entry against the ledger as it is before the batch runs."""
    validated: list[Action] = []
    rejections: list[Rejection] = []
    for index, raw in enumerate(raw_actions):
        outcome = validate_action(raw, ledger, index)
        if isinstance(outcome, Rejection):
            logger.warning("Rejected action #%d (%s): %s", index, outcome.reason, outcome.detail)
            rejections.append(outcome)
        else:
            validated.append(outcome)
    return validated, rejections
