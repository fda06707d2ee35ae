"""TwiML documents for the phone and WhatsApp channels."""

from twilio.twiml.messaging_response import MessagingResponse
from twilio.twiml.voice_response import VoiceResponse

VOICE = "Polly.Lea"
LANGUAGE = "fr-FR"
VOICE_ACTION = "/api/voice"

GREETING = "Bonjour, ici l'accueil. Dites-moi en quelques mots ce que je peux faire pour vous."
LISTENING = "Je vous écoute."
NOT_HEARD = "Je n'ai pas bien entendu. Pouvez-vous répéter ?"
VOICE_FALLBACK = "Merci. Quel est votre nom, s'il vous plaît ?"
MESSAGE_FALLBACK = "Je suis là. Pouvez-vous me dire votre nom et si c'est pour une prise de RDV ?"


def _listen(resp: VoiceResponse, action: str) -> None:
    gather = resp.gather(
        input="speech",
        language=LANGUAGE,
        action=action,
        method="POST",
        timeout=5,
        speech_timeout="auto",
    )
    gather.say(LISTENING, voice=VOICE, language=LANGUAGE)


def greeting(action: str = VOICE_ACTION) -> str:
    """First answer of a call: greet, listen, and ask again if nothing was heard."""
    resp = VoiceResponse()
    resp.say(GREETING, voice=VOICE, language=LANGUAGE)
    _listen(resp, action)
    resp.say(NOT_HEARD, voice=VOICE, language=LANGUAGE)
    return str(resp)


def spoken_reply(reply: str, action: str = VOICE_ACTION) -> str:
    resp = VoiceResponse()
    resp.say(reply.strip() or VOICE_FALLBACK, voice=VOICE, language=LANGUAGE)
    _listen(resp, action)
    return str(resp)


def text_message(reply: str) -> str:
    resp = MessagingResponse()
    resp.message(reply.strip() or MESSAGE_FALLBACK)
    return str(resp)
