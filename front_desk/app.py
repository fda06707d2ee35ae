"""FastAPI server for the clinic front desk assistant."""

import json
import logging

from fastapi import FastAPI, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from front_desk import twiml
from front_desk.errors import ConfigurationError, FrontDeskError, ModelCallError
from front_desk.graph_manager import GraphManager, TurnResult

logger = logging.getLogger(__name__)

app = FastAPI(title="Clinic Front Desk Assistant")

graph_manager = GraphManager()

active_connections: dict[str, WebSocket] = {}


class ChatRequest(BaseModel):
    thread_id: str
    message: str = ""
    vertical: str | None = None


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(_: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": "missing_env", "message": str(exc)})


@app.exception_handler(ModelCallError)
async def model_error_handler(_: Request, exc: ModelCallError) -> JSONResponse:
    return JSONResponse(status_code=502, content={"error": "model_error", "message": str(exc)})


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Handle WebSocket connections and messages.

    Each frame is one turn; the reply frame carries the whole turn result.
    """
    await websocket.accept()

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message_data = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_text(json.dumps({"error": "Invalid JSON frame"}))
                continue
            if not isinstance(message_data, dict):
                await websocket.send_text(json.dumps({"error": "Frame must be a JSON object"}))
                continue

            thread_id: str | None = message_data.get("thread_id")
            message: str | None = message_data.get("message")
            vertical: str | None = message_data.get("vertical")

            if not thread_id or not message:
                await websocket.send_text(
                    json.dumps({"error": "Missing thread_id or message"})
                )
                continue

            active_connections[thread_id] = websocket

            try:
                result = await graph_manager.process_message(thread_id, message, vertical)
            except FrontDeskError as e:
                await websocket.send_text(json.dumps({"thread_id": thread_id, "error": str(e)}))
                continue

            payload = {"thread_id": thread_id, "message": result.reply, **result.model_dump(mode="json")}
            await websocket.send_text(json.dumps(payload, ensure_ascii=False))

    except WebSocketDisconnect:
        active_connections.pop(
            next((tid for tid, conn in active_connections.items() if conn == websocket), None),
            None,
        )
    except Exception as e:
        logger.exception("WebSocket handler failed")
        try:
            await websocket.send_text(json.dumps({"error": f"Internal error: {e}"}))
        except RuntimeError:
            logger.debug("WebSocket already closed; error frame dropped")


@app.post("/api/chat", response_model=TurnResult)
async def chat(req: ChatRequest) -> TurnResult:
    """Run one turn over plain HTTP."""
    return await graph_manager.process_message(req.thread_id, req.message, req.vertical)


@app.get("/api/sessions/{thread_id}")
async def get_session(thread_id: str):
    """Return the ledger and vertical of a session."""
    session = await graph_manager.get_session(thread_id)
    return session.model_dump(mode="json")


@app.delete("/api/sessions/{thread_id}", status_code=204)
async def reset_session(thread_id: str):
    """Forget everything about a session."""
    await graph_manager.reset_session(thread_id)
    return Response(status_code=204)


@app.post("/api/voice")
async def voice(request: Request):
    """Twilio voice webhook: greet on the first hit, then one turn per utterance."""
    form = await request.form()
    speech = str(form.get("SpeechResult", "")).strip()
    digits = str(form.get("Digits", "")).strip()
    user_text = speech or (f"Le client a tapé: {digits}" if digits else "")

    if not user_text:
        return Response(content=twiml.greeting(), media_type="text/xml")

    caller = form.get("CallSid") or form.get("From") or "anonymous"
    try:
        result = await graph_manager.process_message(f"voice:{caller}", user_text, channel="voice")
    except FrontDeskError as e:
        logger.error("Voice turn failed for %s: %s", caller, e)
        return PlainTextResponse(str(e), status_code=500)

    return Response(content=twiml.spoken_reply(result.reply), media_type="text/xml")


@app.api_route("/api/whatsapp", methods=["GET", "POST"])
async def whatsapp(request: Request):
    """Twilio WhatsApp webhook: one turn per incoming message."""
    form = await request.form() if request.method == "POST" else request.query_params
    incoming = str(form.get("Body") or form.get("body") or "").strip()
    sender = str(form.get("From", "")).strip().removeprefix("whatsapp:") or "anonymous"

    try:
        result = await graph_manager.process_message(f"whatsapp:{sender}", incoming, channel="whatsapp")
    except FrontDeskError as e:
        logger.error("WhatsApp turn failed for %s: %s", sender, e)
        return PlainTextResponse(str(e), status_code=500)

    return Response(content=twiml.text_message(result.reply), media_type="text/xml")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/")
async def root():
    """Root endpoint providing basic API information."""
    return {
        "message": "Clinic Front Desk Assistant: connect to /ws via WebSocket or POST /api/chat."
    }
