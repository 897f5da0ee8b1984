import json
import logging
from typing import Awaitable, Callable, Optional

from fastapi import WebSocket, WebSocketDisconnect


JsonHandler = Callable[[dict], Awaitable[Optional[dict]]]
AsyncCallback = Callable[[], Awaitable[None]]


class JsonWsServer:
    def __init__(
        self,
        token: Optional[str] = None,
        *,
        trace: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._token = token
        self._trace = trace
        self._logger = logger or logging.getLogger("hlsmix.ws.server")

    async def handle(
        self,
        websocket: WebSocket,
        on_message: JsonHandler,
        *,
        on_connect: Optional[AsyncCallback] = None,
        on_disconnect: Optional[AsyncCallback] = None,
    ) -> None:
        if self._token:
            token = websocket.query_params.get("token")
            if token != self._token:
                await websocket.close(code=1008)
                return
        await websocket.accept()
        if on_connect:
            await on_connect()
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    payload = json.loads(raw)
                except json.JSONDecodeError:
                    await self._send(
                        websocket, {"type": "error", "error": "invalid json"}
                    )
                    continue
                if not isinstance(payload, dict):
                    continue
                self._log("rx", payload)
                try:
                    reply = await on_message(payload)
                except Exception as exc:
                    self._logger.exception("ws handler error")
                    reply = {
                        "type": "error",
                        "request_id": payload.get("request_id"),
                        "error": str(exc),
                    }
                if reply:
                    await self._send(websocket, reply)
        except WebSocketDisconnect:
            pass
        finally:
            if on_disconnect:
                await on_disconnect()

    async def _send(self, websocket: WebSocket, payload: dict) -> None:
        self._log("tx", payload)
        await websocket.send_text(json.dumps(payload, ensure_ascii=True))

    def _log(self, direction: str, payload: dict) -> None:
        if not self._trace:
            return
        summary = _summarize(payload)
        self._logger.info("ws %s %s", direction, summary)


def _summarize(payload: dict) -> str:
    if not isinstance(payload, dict):
        return str(payload)
    keys = ("type", "request_id", "participant_id", "kind")
    summary = {key: payload.get(key) for key in keys if payload.get(key)}
    if not summary:
        summary = {"keys": list(payload.keys())[:6]}
    return json.dumps(summary, ensure_ascii=True)
