"""FastAPI application exposing one voice session over HTTP."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, status
from pydantic import BaseModel, Field

from .. import __version__
from ..config import load_config
from ..models import Outcome
from ..session import VoiceSession, build_session

app = FastAPI(
    title="mummyhelp API",
    description="Feed recognised speech into the wake phrase trigger and voice commands.",
    version=__version__,
)

_session: Optional[VoiceSession] = None


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    listening: bool


class TextRequest(BaseModel):
    text: str = Field(..., min_length=1, description="Recognised utterance.")


class OutcomePayload(BaseModel):
    type: str
    message: str
    input: Optional[str] = None
    action: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class OutcomeList(BaseModel):
    results: List[OutcomePayload]


class CommandPayload(BaseModel):
    phrase: str
    action: str
    description: str


def _to_payload(outcome: Outcome) -> OutcomePayload:
    data = outcome.as_dict()
    base = {key: data.pop(key) for key in ("type", "message", "input", "action")}
    return OutcomePayload(**base, data=data)


def set_session(session: Optional[VoiceSession]) -> None:
    """Install the session the endpoints operate on."""

    global _session
    _session = session


def get_session() -> VoiceSession:
    if _session is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Voice session not ready")
    return _session


@app.on_event("startup")
async def start_session() -> None:
    if _session is not None:
        return
    session = build_session(load_config())
    await session.initialize()
    await session.start_listening()
    set_session(session)
    logging.info("API voice session started")


@app.on_event("shutdown")
async def stop_session() -> None:
    if _session is not None:
        await _session.close()


@app.get("/health", response_model=HealthResponse)
async def healthcheck() -> HealthResponse:
    session = get_session()
    return HealthResponse(version=__version__, listening=session.is_listening)


@app.get("/status")
async def get_status() -> Dict[str, Any]:
    return get_session().get_status()


@app.post("/listening/start")
async def start_listening() -> Dict[str, bool]:
    session = get_session()
    changed = await session.start_listening()
    return {"changed": changed, "listening": session.is_listening}


@app.post("/listening/stop")
async def stop_listening() -> Dict[str, bool]:
    session = get_session()
    changed = await session.stop_listening()
    return {"changed": changed, "listening": session.is_listening}


@app.post("/text", response_model=OutcomeList)
async def detect_text(request: TextRequest) -> OutcomeList:
    session = get_session()
    if not session.is_listening:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Session is not listening")
    outcomes = await session.on_text_detected(request.text)
    return OutcomeList(results=[_to_payload(outcome) for outcome in outcomes])


@app.post("/commands/process", response_model=OutcomePayload)
async def process_command(request: TextRequest) -> OutcomePayload:
    result = await get_session().registry.process_voice_input(request.text)
    if result is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty input")
    return _to_payload(result)


@app.get("/commands", response_model=List[CommandPayload])
async def list_commands() -> List[CommandPayload]:
    return [CommandPayload(**entry) for entry in get_session().registry.get_commands()]


@app.get("/commands/help", response_model=List[str])
async def command_help() -> List[str]:
    return get_session().registry.get_command_help()


@app.post("/emergency/confirm", response_model=OutcomePayload)
async def confirm_emergency() -> OutcomePayload:
    result = await get_session().confirm_emergency()
    if result is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="An alert is already being sent")
    return _to_payload(result)


@app.post("/emergency/cancel", response_model=OutcomePayload)
async def cancel_emergency() -> OutcomePayload:
    return _to_payload(await get_session().cancel_emergency())


@app.post("/alert/cancel")
async def cancel_alert() -> Dict[str, bool]:
    return {"cancelled": await get_session().cancel_alert()}


@app.post("/hits/reset")
async def reset_hits() -> Dict[str, Any]:
    session = get_session()
    session.accumulator.reset_hits()
    return session.accumulator.get_hit_status().as_dict()


@app.post("/hits/simulate", response_model=OutcomeList)
async def simulate_hits() -> OutcomeList:
    outcomes = await get_session().simulate_escalation()
    return OutcomeList(results=[_to_payload(outcome) for outcome in outcomes])


@app.post("/reset")
async def reset_session() -> Dict[str, Any]:
    session = get_session()
    session.reset()
    return session.get_status()


@app.get("/settings")
async def read_settings() -> Dict[str, Any]:
    return get_session().settings.get_settings()


@app.patch("/settings")
async def update_settings(patch: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    settings = get_session().settings
    if not patch or not await settings.update_settings(patch):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Settings were not updated")
    return settings.get_settings()
