import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, WebSocket

from infra.ws import JsonWsServer
from ..domains.compose import OrchestratorClosed, StreamOrchestrator
from .schemas import (
    CompositionStatusResponse,
    HealthResponse,
    MembershipResponse,
    PublishRequest,
    UnpublishRequest,
)

router = APIRouter()
logger = logging.getLogger("hlsmix.api")

SIGNALING_EVENTS = ("publish_started", "publish_stopped", "participant_left")


def _orchestrator(app) -> StreamOrchestrator:
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="orchestrator not available")
    return orchestrator


def _membership(orchestrator: StreamOrchestrator, participant_id: str, changed: bool):
    return MembershipResponse(
        participant_id=participant_id,
        changed=bool(changed),
        generation=orchestrator.generation,
    )


async def _call(coro):
    try:
        return await coro
    except OrchestratorClosed as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/api/health", response_model=HealthResponse)
def health():
    return HealthResponse()


@router.get("/api/composition", response_model=CompositionStatusResponse)
def composition_status(request: Request):
    return _orchestrator(request.app).status().as_dict()


@router.post(
    "/api/participants/{participant_id}/publish", response_model=MembershipResponse
)
async def publish(participant_id: str, payload: PublishRequest, request: Request):
    orchestrator = _orchestrator(request.app)
    changed = await _call(
        orchestrator.publish_started(participant_id, payload.kind, payload.stream_id)
    )
    return _membership(orchestrator, participant_id, changed)


@router.post(
    "/api/participants/{participant_id}/unpublish", response_model=MembershipResponse
)
async def unpublish(participant_id: str, payload: UnpublishRequest, request: Request):
    orchestrator = _orchestrator(request.app)
    changed = await _call(orchestrator.publish_stopped(participant_id, payload.kind))
    return _membership(orchestrator, participant_id, changed)


@router.delete(
    "/api/participants/{participant_id}", response_model=MembershipResponse
)
async def remove_participant(participant_id: str, request: Request):
    orchestrator = _orchestrator(request.app)
    changed = await _call(orchestrator.participant_left(participant_id))
    return _membership(orchestrator, participant_id, changed)


async def handle_signaling_message(
    orchestrator: StreamOrchestrator, payload: dict
) -> Optional[dict]:
    message_type = payload.get("type")
    request_id = payload.get("request_id")
    if message_type == "ping":
        return {"type": "pong", "request_id": request_id}
    if message_type == "status":
        return {
            "type": "status",
            "request_id": request_id,
            "status": orchestrator.status().as_dict(),
        }
    if message_type not in SIGNALING_EVENTS:
        return {
            "type": "error",
            "request_id": request_id,
            "error": "unknown message type: {}".format(message_type),
        }
    participant_id = payload.get("participant_id")
    try:
        if message_type == "publish_started":
            changed = await orchestrator.publish_started(
                participant_id, payload.get("kind"), payload.get("stream_id")
            )
        elif message_type == "publish_stopped":
            changed = await orchestrator.publish_stopped(
                participant_id, payload.get("kind")
            )
        else:
            changed = await orchestrator.participant_left(participant_id)
    except ValueError as exc:
        logger.info("rejected %s message: %s", message_type, exc)
        return {"type": "error", "request_id": request_id, "error": str(exc)}
    return {
        "type": "ack",
        "request_id": request_id,
        "event": message_type,
        "participant_id": participant_id,
        "changed": bool(changed),
        "generation": orchestrator.generation,
    }


async def signaling_ws(websocket: WebSocket) -> None:
    ws_server: JsonWsServer = websocket.app.state.ws_server
    orchestrator = websocket.app.state.orchestrator

    async def on_message(payload: dict) -> Optional[dict]:
        return await handle_signaling_message(orchestrator, payload)

    async def on_disconnect() -> None:
        logger.debug("signaling client disconnected")

    await ws_server.handle(websocket, on_message, on_disconnect=on_disconnect)
