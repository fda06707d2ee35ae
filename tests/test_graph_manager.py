import asyncio
import json

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessage

from front_desk import graph_manager as graph_manager_module
from front_desk.actions import APPOINTMENT_NOT_FOUND, UNKNOWN_ACTION_KIND
from front_desk.config import Settings
from front_desk.errors import ConfigurationError, ModelCallError
from front_desk.graph_manager import FALLBACK_REPLY, GraphManager


def with_actions(text: str, *actions: dict) -> str:
    """Build a model reply carrying an action block."""
    return f"{text}\n```json\n{json.dumps({'actions': list(actions)})}\n```"


class RecordingModel:
    """Chat model double that remembers what it was asked."""

    def __init__(self, reply: str = "Bonjour !") -> None:
        self.reply = reply
        self.calls: list[list] = []

    def invoke(self, messages):
        self.calls.append(messages)
        return AIMessage(content=self.reply)


class BrokenModel:
    def invoke(self, messages):
        raise RuntimeError("upstream timeout")


def manager_with(*responses: str) -> GraphManager:
    return GraphManager(llm=FakeListChatModel(responses=list(responses)))


@pytest.mark.asyncio
async def test_booking_turn():
    """A reply with a create action books an appointment and confirms it."""
    manager = manager_with(
        with_actions("Voici vos options.", {"type": "create_appointment", "datetime": "2025-01-02T09:00"})
    )

    result = await manager.process_message("booking", "Je voudrais un rendez-vous demain matin")

    assert result.reply == "Voici vos options."
    assert result.actions_applied == ["create_appointment"]
    assert result.confirmation == "Actions exécutées: create_appointment"
    assert result.rejected_actions == []
    [appointment] = result.appointments
    assert appointment.status == "confirmed"
    assert appointment.datetime == "2025-01-02T09:00"
    assert [s.id for s in result.slots] == ["S1", "S2", "S3", "S4", "S5", "S6"]


@pytest.mark.asyncio
async def test_plain_reply_changes_nothing():
    """Without an action block the ledger is left alone."""
    manager = manager_with("Quel est votre nom ?")

    result = await manager.process_message("plain", "Bonjour")

    assert result.reply == "Quel est votre nom ?"
    assert result.actions_applied == []
    assert result.confirmation is None
    assert result.appointments == []
    assert result.tickets == []


@pytest.mark.asyncio
async def test_ledger_persists_across_turns(fixed_ids):
    """A later turn can cancel what an earlier turn booked."""
    manager = manager_with(
        with_actions(
            "C'est réservé.",
            {"type": "create_appointment", "datetime": "2025-01-02T09:00", "patient_name": "Alice", "phone": "+41790000000"},
        ),
        with_actions("C'est annulé.", {"type": "cancel_appointment", "appointment_id": "R0001"}),
    )

    first = await manager.process_message("persist", "Réservez S1 pour Alice")
    second = await manager.process_message("persist", "Annulez R0001")

    assert first.appointments[0].id == "R0001"
    assert second.actions_applied == ["cancel_appointment"]
    assert second.appointments[0].status == "cancelled"

    session = await manager.get_session("persist")
    assert session.ledger.appointments[0].status == "cancelled"
    assert session.ledger.patient.name == "Alice"
    assert len(session.slots) == 6


@pytest.mark.asyncio
async def test_bad_actions_are_reported_not_fatal():
    """Rejected actions are returned alongside the ones that were applied."""
    manager = manager_with(
        with_actions(
            "Je transmets à l'équipe.",
            {"type": "fax_doctor"},
            {"type": "create_ticket", "topic": "Réclamation", "priority": "HIGH"},
            {"type": "cancel_appointment", "appointment_id": "R-unknown"},
        )
    )

    result = await manager.process_message("bad", "Je veux parler à quelqu'un")

    assert result.actions_applied == ["create_ticket"]
    assert [r.reason for r in result.rejected_actions] == [UNKNOWN_ACTION_KIND, APPOINTMENT_NOT_FOUND]
    assert result.tickets[0].priority == "high"
    assert result.tickets[0].patient_name == "Inconnu"


@pytest.mark.asyncio
async def test_model_failure_leaves_session_untouched(fixed_ids):
    """A failing model call raises and does not save anything."""
    manager = manager_with(with_actions("Réservé.", {"type": "create_appointment", "datetime": "2025-01-02T09:00"}))
    await manager.process_message("failure", "Réservez S1")

    manager.llm = BrokenModel()
    with pytest.raises(ModelCallError, match="upstream timeout"):
        await manager.process_message("failure", "Annulez tout")

    session = await manager.get_session("failure")
    assert [a.id for a in session.ledger.appointments] == ["R0001"]
    assert session.ledger.appointments[0].status == "confirmed"


@pytest.mark.asyncio
async def test_missing_api_key(monkeypatch):
    """Without an injected model and without a key, the turn fails clearly."""
    monkeypatch.setattr(graph_manager_module, "get_settings", lambda: Settings(openai_api_key=None))
    manager = GraphManager()

    with pytest.raises(ConfigurationError):
        await manager.process_message("nokey", "Bonjour")


@pytest.mark.asyncio
async def test_model_sees_session_state(fixed_ids):
    """The request carries the vertical prompt, slots, ledger and user text."""
    model = RecordingModel(with_actions("Ok.", {"type": "create_appointment", "datetime": "2025-01-02T12:00"}))
    manager = GraphManager(llm=model)

    await manager.process_message("context", "Premier message", vertical="Esthétique")
    await manager.process_message("context", "Deuxième message")

    system, human = model.calls[-1]
    assert "une clinique esthétique" in system.content
    payload = json.loads(human.content)
    assert payload["vertical"] == "Esthétique"
    assert payload["user_message"] == "Deuxième message"
    assert len(payload["available_slots"]) == 6
    assert payload["available_slots"][0]["datetime"].endswith("T12:00")
    assert [a["id"] for a in payload["existing_appointments"]] == ["R0001"]


@pytest.mark.asyncio
async def test_empty_model_output_gets_fallback():
    manager = GraphManager(llm=RecordingModel(""))
    result = await manager.process_message("empty", "Allô ?")
    assert result.reply == FALLBACK_REPLY


@pytest.mark.asyncio
async def test_threads_do_not_share_ledgers():
    """Each thread has its own ledger."""
    manager = manager_with(with_actions("Réservé.", {"type": "create_appointment", "datetime": "2025-01-02T09:00"}))

    await manager.process_message("thread1", "Réservez")
    other = await manager.process_message("thread2", "Réservez")

    assert len(other.appointments) == 1
    assert len((await manager.get_session("thread1")).ledger.appointments) == 1


@pytest.mark.asyncio
async def test_concurrent_turns_on_one_thread_are_serialised():
    """Two turns for the same thread both land; neither overwrites the other."""
    manager = manager_with(with_actions("Réservé.", {"type": "create_appointment", "datetime": "2025-01-02T09:00"}))

    await asyncio.gather(
        manager.process_message("busy", "Réservez S1"),
        manager.process_message("busy", "Réservez S2"),
    )

    session = await manager.get_session("busy")
    assert len(session.ledger.appointments) == 2


@pytest.mark.asyncio
async def test_reset_session():
    manager = manager_with(with_actions("Réservé.", {"type": "create_appointment", "datetime": "2025-01-02T09:00"}))
    await manager.process_message("reset", "Réservez")

    await manager.reset_session("reset")

    session = await manager.get_session("reset")
    assert session.ledger.appointments == []
    assert session.vertical == manager.default_vertical


@pytest.mark.asyncio
async def test_reset_session_drops_the_turn_lock():
    """Resetting an idle thread forgets its turn lock too."""
    manager = manager_with("Bonjour !")
    await manager.process_message("reset-lock", "Bonjour")
    assert "reset-lock" in manager._turn_locks

    await manager.reset_session("reset-lock")

    assert "reset-lock" not in manager._turn_locks


@pytest.mark.asyncio
async def test_reset_session_keeps_a_held_turn_lock():
    """A turn in progress keeps its lock through a reset."""
    manager = manager_with("Bonjour !")
    lock = await manager._turn_lock("busy-reset")

    async with lock:
        await manager.reset_session("busy-reset")
        assert manager._turn_locks["busy-reset"] is lock
