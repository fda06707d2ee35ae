"""System prompt and per-turn request payload sent to the language model."""

import json
from collections.abc import Sequence
from dataclasses import asdict

from front_desk.actions import ACTION_KINDS
from front_desk.ledger import Ledger
from front_desk.slots import Slot

BRANDS: dict[str, str] = {
    "Dentaire": "un cabinet dentaire",
    "Esthétique": "une clinique esthétique",
}
DEFAULT_BRAND = "une clinique multi-spécialités"

CHANNEL_STYLES: dict[str, str] = {
    "chat": "Ton style: clair, court, premium.",
    "voice": (
        "Tu parles au téléphone: réponses très courtes (1 à 2 phrases), "
        "et termine toujours par une question simple."
    ),
    "whatsapp": "Tu écris sur WhatsApp: une question à la fois, messages brefs.",
}

REFERENCE_INSTRUCTIONS = (
    "Pour déplacer ou annuler un RDV, utilise l'ID exact d'un RDV existant "
    "(existing_appointments). Si l'utilisateur ne le connaît pas, demande-lui de "
    "le copier depuis la colonne 'ID' de l'agenda."
)

_JSON_EXAMPLE = "\n".join(
    [
        "```json",
        "{",
        '  "actions":[',
        '    {"type":"create_appointment","patient_name":"...","phone":"+41...",'
        '"reason":"...","datetime":"YYYY-MM-DDTHH:MM","site":"Site A|Site B|"}',
        "  ]",
        "}",
        "```",
    ]
)


def build_system_prompt(vertical: str, channel: str = "chat") -> str:
    brand = BRANDS.get(vertical, DEFAULT_BRAND)
    style = CHANNEL_STYLES.get(channel, CHANNEL_STYLES["chat"])
    return "\n".join(
        [
            f'Tu es "AI Front Desk", l\'accueil chaleureux et premium de {brand}.',
            "",
            "OBJECTIF: convertir la demande en RDV, replanifier ou annuler un RDV, "
            "ou escalader à un humain.",
            "",
            "RÈGLES:",
            "- AUCUN diagnostic, AUCUN conseil médical, aucun traitement.",
            "- Collecte minimale: nom, téléphone, motif général, site (si multi-sites), créneau.",
            "- Urgence vitale ou symptômes graves: recommander les urgences immédiatement "
            "et créer un ticket de priorité high.",
            "- Plainte, litige, avocat, incident grave: créer un ticket pour un humain.",
            "- Toujours proposer 2 à 3 créneaux parmi available_slots et demander un choix.",
            f"- {style}",
            "",
            "FORMAT DE SORTIE:",
            "1) D'abord la réponse au patient (en français par défaut).",
            "2) Ensuite, SI ET SEULEMENT SI une action doit être exécutée, "
            "ajoute EXACTEMENT un bloc JSON comme ci-dessous:",
            _JSON_EXAMPLE,
            "",
            "Actions possibles:",
            "- create_appointment (requiert datetime)",
            "- reschedule_appointment (requiert appointment_id + new_datetime)",
            "- cancel_appointment (requiert appointment_id)",
            "- create_ticket (topic, priority normal|high, patient_name, phone)",
            "",
            "Si aucune action n'est nécessaire, ne mets PAS de JSON.",
        ]
    )


def build_turn_payload(
    vertical: str,
    ledger: Ledger,
    slots: Sequence[Slot],
    user_message: str,
) -> dict:
    """Everything the model needs to know about the session for this turn."""
    return {
        "vertical": vertical,
        "patient_known": ledger.patient.model_dump(),
        "available_slots": [asdict(slot) for slot in slots],
        "existing_appointments": [a.model_dump(mode="json") for a in ledger.appointments],
        "existing_tickets": [t.model_dump(mode="json") for t in ledger.tickets],
        "user_message": user_message,
        "allowed_actions": list(ACTION_KINDS),
        "instructions": REFERENCE_INSTRUCTIONS,
    }


def render_turn_payload(payload: dict) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2)
