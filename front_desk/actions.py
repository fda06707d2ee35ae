"""Action payload schema and extraction from raw model output.

The model answers in free text and, when something must change, appends a
fenced ```json block of the form ``{"actions": [{"type": ...}, ...]}``.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class _ActionPayload(BaseModel):
    model_config = ConfigDict(
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class CreateAppointment(_ActionPayload):
    type: Literal["create_appointment"] = "create_appointment"
    datetime: str = Field(min_length=1)
    patient_name: str | None = None
    phone: str | None = None
    reason: str | None = None
    site: str | None = None


class RescheduleAppointment(_ActionPayload):
    type: Literal["reschedule_appointment"] = "reschedule_appointment"
    appointment_id: str = Field(min_length=1)
    new_datetime: str = Field(min_length=1)


class CancelAppointment(_ActionPayload):
    type: Literal["cancel_appointment"] = "cancel_appointment"
    appointment_id: str = Field(min_length=1)


class CreateTicket(_ActionPayload):
    type: Literal["create_ticket"] = "create_ticket"
    topic: str | None = None
    priority: str | None = None
    patient_name: str | None = None
    phone: str | None = None

    @field_validator("priority", mode="before")
    @classmethod
    def _priority_as_text(cls, value: Any) -> str | None:
        # Anything but text falls back to the default priority later on.
        return value if isinstance(value, str) else None


Action = Annotated[
    Union[CreateAppointment, RescheduleAppointment, CancelAppointment, CreateTicket],
    Field(discriminator="type"),
]

ACTION_MODELS: dict[str, type[_ActionPayload]] = {
    "create_appointment": CreateAppointment,
    "reschedule_appointment": RescheduleAppointment,
    "cancel_appointment": CancelAppointment,
    "create_ticket": CreateTicket,
}

ACTION_KINDS: tuple[str, ...] = tuple(ACTION_MODELS)

MALFORMED_ACTION = "malformed_action"
UNKNOWN_ACTION_KIND = "unknown_action_kind"
INVALID_FIELDS = "invalid_fields"
APPOINTMENT_NOT_FOUND = "appointment_not_found"
APPOINTMENT_CANCELLED = "appointment_cancelled"


class Rejection(BaseModel):
    """An action that was skipped, with the reason it was skipped."""

    index: int | None = None
    kind: str | None = None
    reason: str
    detail: str = ""


# ------------------------------------------------------------------ #
#  Extraction
# ------------------------------------------------------------------ #
_JSON_BLOCK = re.compile(r"```json\s*([\s\S]*?)\s*```")
_ANY_JSON_BLOCK = re.compile(r"```json[\s\S]*?```")


@dataclass(frozen=True, slots=True)
class Extraction:
    visible_text: str
    actions: list[Any] = field(default_factory=list)

    @property
    def has_action(self) -> bool:
        return bool(self.actions)


def strip_action_blocks(raw_text: str | None) -> str:
    """Remove every fenced json block and trim what is left."""
    return _ANY_JSON_BLOCK.sub("", raw_text or "").strip()


def decode_last_block(raw_text: str | None) -> Any | None:
    """Decode the last fenced json block, or return None.

    Later blocks win because a model that corrects itself appends a new block
    rather than editing the old one. Undecodable content counts as no block.
    """
    blocks = _JSON_BLOCK.findall(raw_text or "")
    if not blocks:
        return None
    try:
        return json.loads(blocks[-1])
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring undecodable action block: %s", exc)
        return None


def extract_actions(raw_text: str | None) -> Extraction:
    """Split raw model output into the user-visible reply and its raw actions."""
    payload = decode_last_block(raw_text)
    actions: list[Any] = []
    if isinstance(payload, dict) and isinstance(payload.get("actions"), list):
        actions = payload["actions"]
    return Extraction(visible_text=strip_action_blocks(raw_text), actions=actions)
