from __future__ import annotations

import asyncio
import logging
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from langgraph.graph import StateGraph, END
from pydantic import BaseModel, Field

from front_desk.actions import Action, Rejection, extract_actions
from front_desk.config import get_settings
from front_desk.errors import ConfigurationError, ModelCallError
from front_desk.ledger import Appointment, Ledger, Ticket, apply_actions
from front_desk.prompts import build_system_prompt, build_turn_payload, render_turn_payload
from front_desk.slots import Slot, generate_slots
from front_desk.validation import validate_batch

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Je suis là. Pouvez-vous me dire votre nom et ce que je peux faire pour vous ?"


class SessionState(BaseModel):
    """What survives between turns of one conversation (serialisable)."""

    vertical: str
    ledger: Ledger = Field(default_factory=Ledger)
    slots: list[Slot] = Field(default_factory=list)


class TurnState(BaseModel):
    """State flowing through the graph for a single turn."""

    vertical: str
    channel: str = "chat"
    ledger: Ledger = Field(default_factory=Ledger)
    slots: list[Slot] = Field(default_factory=list)
    user_message: str = ""

    # ─ filled in by the graph ─
    raw_output: str | None = None
    reply: str = ""
    raw_actions: list[Any] = Field(default_factory=list)
    validated: list[Action] = Field(default_factory=list)
    rejections: list[Rejection] = Field(default_factory=list)
    applied: list[str] = Field(default_factory=list)

    model_config = {"arbitrary_types_allowed": True}


class TurnResult(BaseModel):
    """Everything a renderer needs after a turn."""

    reply: str
    actions_applied: list[str] = Field(default_factory=list)
    rejected_actions: list[Rejection] = Field(default_factory=list)
    confirmation: str | None = None
    appointments: list[Appointment] = Field(default_factory=list)
    tickets: list[Ticket] = Field(default_factory=list)
    slots: list[Slot] = Field(default_factory=list)


def format_confirmation(applied: list[str]) -> str | None:
    if not applied:
        return None
    return "Actions exécutées: " + ", ".join(applied)


class GraphManager:
    """Runs conversation turns through a LangGraph pipeline, one session at a time.

    ``llm`` is any chat model with an ``invoke(messages)`` method. When it is
    omitted a ``ChatOpenAI`` client is built from the settings on first use.
    """

    def __init__(self, llm: Any | None = None, default_vertical: str | None = None) -> None:
        self.llm = llm
        self.default_vertical = default_vertical or get_settings().default_vertical

        self.graph = self._build_graph()
        self.executor = self.graph.compile()

        # in-memory persistence; one lock for the map, one per session for turns
        self._sessions: dict[str, dict] = {}
        self._turn_locks: dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()

    def _build_graph(self) -> StateGraph:
        """Build the turn pipeline: slots, model, extract, validate, apply, respond."""
        g = StateGraph(TurnState)

        g.add_node("offer_slots", self._offer_slots)
        g.add_node("call_model", self._call_model)
        g.add_node("extract", self._extract)
        g.add_node("validate", self._validate)
        g.add_node("apply", self._apply)
        g.add_node("respond", self._respond)

        g.set_entry_point("offer_slots")

        g.add_edge("offer_slots", "call_model")
        g.add_edge("call_model", "extract")

        g.add_conditional_edges(
            "extract",
            self._route_after_extract,
            {"act": "validate", "reply": "respond"},
        )
        g.add_conditional_edges(
            "validate",
            self._route_after_validate,
            {"apply": "apply", "reply": "respond"},
        )

        g.add_edge("apply", "respond")
        g.add_edge("respond", END)
        return g

    # ------------------------------------------------------------------ #
    #  Nodes
    # ------------------------------------------------------------------ #
    def _offer_slots(self, state: TurnState) -> TurnState:
        state.slots = generate_slots(state.vertical)
        return state

    def _call_model(self, state: TurnState) -> TurnState:
        """Ask the language model for this turn's reply.

        Any failure ends the turn before the ledger is touched.
        """
        llm = self._get_llm()
        payload = build_turn_payload(state.vertical, state.ledger, state.slots, state.user_message)
        messages = [
            SystemMessage(content=build_system_prompt(state.vertical, state.channel)),
            HumanMessage(content=render_turn_payload(payload)),
        ]
        try:
            response = llm.invoke(messages)
        except Exception as exc:
            logger.error("Language model call failed: %s", exc)
            raise ModelCallError(str(exc)) from exc

        content = getattr(response, "content", response)
        state.raw_output = content if isinstance(content, str) else str(content)
        return state

    def _extract(self, state: TurnState) -> TurnState:
        extraction = extract_actions(state.raw_output)
        state.reply = extraction.visible_text
        state.raw_actions = extraction.actions
        return state

    def _route_after_extract(self, state: TurnState) -> str:
        return "act" if state.raw_actions else "reply"

    def _validate(self, state: TurnState) -> TurnState:
        state.validated, state.rejections = validate_batch(state.raw_actions, state.ledger)
        return state

    def _route_after_validate(self, state: TurnState) -> str:
        return "apply" if state.validated else "reply"

    def _apply(self, state: TurnState) -> TurnState:
        self._note_unoffered_datetimes(state)
        result = apply_actions(state.ledger, state.validated)
        state.ledger = result.ledger
        state.applied = result.applied
        state.rejections = [*state.rejections, *result.rejections]
        return state

    def _respond(self, state: TurnState) -> TurnState:
        if not state.reply and not state.applied:
            state.reply = FALLBACK_REPLY
        return state

    # ------------------------------------------------------------------ #
    #  Helper utilities
    # ------------------------------------------------------------------ #
    def _get_llm(self) -> Any:
        if self.llm is None:
            settings = get_settings()
            if not settings.openai_api_key:
                raise ConfigurationError("Missing OPENAI_API_KEY in the environment.")
            self.llm = ChatOpenAI(
                model=settings.openai_model,
                temperature=settings.openai_temperature,
                api_key=settings.openai_api_key,
            )
        return self.llm

    @staticmethod
    def _note_unoffered_datetimes(state: TurnState) -> None:
        # slots are advisory; a booking outside them is only logged
        offered = {slot.datetime for slot in state.slots}
        for action in state.validated:
            chosen = getattr(action, "datetime", None) or getattr(action, "new_datetime", None)
            if chosen and chosen not in offered:
                logger.info("%s uses %s, which was not an offered slot", action.type, chosen)

    @staticmethod
    def _as_turn_state(result: Any) -> TurnState:
        return result if isinstance(result, TurnState) else TurnState.model_validate(result)

    # ------------------------------------------------------------------ #
    #  Persistence helpers (thread-safe)
    # ------------------------------------------------------------------ #
    async def _turn_lock(self, thread_id: str) -> asyncio.Lock:
        async with self._lock:
            return self._turn_locks.setdefault(thread_id, asyncio.Lock())

    async def _load_session(self, thread_id: str) -> SessionState:
        """Load the session for a thread, or start a fresh one."""
        async with self._lock:
            raw = self._sessions.get(thread_id)
        if raw:
            return SessionState.model_validate(raw)
        return SessionState(vertical=self.default_vertical)

    async def _save_session(self, thread_id: str, session: SessionState) -> None:
        async with self._lock:
            self._sessions[thread_id] = session.model_dump()

    async def get_session(self, thread_id: str) -> SessionState:
        return await self._load_session(thread_id)

    async def reset_session(self, thread_id: str) -> None:
        async with self._lock:
            self._sessions.pop(thread_id, None)
            # A held lock belongs to a running turn, which still needs it.
            lock = self._turn_locks.get(thread_id)
            if lock is not None and not lock.locked():
                self._turn_locks.pop(thread_id)

    async def process_message(
        self,
        thread_id: str,
        message: str,
        vertical: str | None = None,
        channel: str = "chat",
    ) -> TurnResult:
        """Run one turn for ``thread_id``.

        Turns of the same thread are serialised. The session is only saved
        when the turn completes, so a failed model call leaves it untouched.
        """
        lock = await self._turn_lock(thread_id)
        async with lock:
            session = await self._load_session(thread_id)
            if vertical:
                session.vertical = vertical

            state = TurnState(
                vertical=session.vertical,
                channel=channel,
                ledger=session.ledger,
                user_message=(message or "").strip(),
            )
            state = self._as_turn_state(await asyncio.to_thread(self.executor.invoke, state))

            session.ledger = state.ledger
            session.slots = state.slots
            await self._save_session(thread_id, session)

        if state.applied:
            logger.info("Thread %s applied %s", thread_id, ", ".join(state.applied))
        return TurnResult(
            reply=state.reply,
            actions_applied=state.applied,
            rejected_actions=state.rejections,
            confirmation=format_confirmation(state.applied),
            appointments=state.ledger.appointments,
            tickets=state.ledger.tickets,
            slots=state.slots,
        )
