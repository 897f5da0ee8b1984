import contextlib
import importlib
import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from infra.ws import JsonWsServer
from .api.app import router, signaling_ws
from .domains.compose import StreamOrchestrator
from .domains.ports import BridgeTransport, MediaRouter
from .settings import ComposeSettings, ServerSettings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_HLS_CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
}


def configure_logging(level: str = "info") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level or "info").upper(), logging.INFO),
        format=LOG_FORMAT,
    )


class UnconfiguredRouter:
    async def create_bridge_transport(self, listen_ip: str) -> BridgeTransport:
        raise RuntimeError("no media router configured (set HLSMIX_MEDIA_ROUTER)")


def load_media_router(path: Optional[str]) -> MediaRouter:
    """Import a router from ``module:attr``; callables are treated as factories."""
    if not path:
        return UnconfiguredRouter()
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(
            "media router must look like module:attr, got {}".format(path)
        )
    target = getattr(importlib.import_module(module_name), attr)
    if isinstance(target, type) or (
        callable(target) and not hasattr(target, "create_bridge_transport")
    ):
        target = target()
    return target


class HlsStaticFiles(StaticFiles):
    def file_response(self, full_path, *args, **kwargs):
        response = super().file_response(full_path, *args, **kwargs)
        suffix = Path(str(full_path)).suffix.lower()
        content_type = _HLS_CONTENT_TYPES.get(suffix)
        if content_type:
            response.headers["content-type"] = content_type
        if suffix == ".m3u8":
            response.headers["cache-control"] = "no-cache, no-store, must-revalidate"
        response.headers["access-control-allow-origin"] = "*"
        return response


def create_app(
    media_router: Optional[MediaRouter] = None,
    *,
    settings: Optional[ServerSettings] = None,
    compose_settings: Optional[ComposeSettings] = None,
    orchestrator: Optional[StreamOrchestrator] = None,
) -> FastAPI:
    settings = settings or ServerSettings()
    compose_settings = compose_settings or ComposeSettings()
    if orchestrator is None:
        if media_router is None:
            media_router = load_media_router(settings.media_router)
        orchestrator = StreamOrchestrator(media_router, compose_settings)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        orchestrator.start()
        try:
            yield
        finally:
            await orchestrator.shutdown()

    app = FastAPI(title="hlsmix", lifespan=lifespan)
    app.state.settings = settings
    app.state.compose_settings = compose_settings
    app.state.orchestrator = orchestrator
    app.state.ws_server = JsonWsServer(
        token=settings.signaling_token,
        trace=settings.ws_trace,
    )
    if settings.cors_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins_list,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(router)
    app.add_api_websocket_route(settings.signaling_ws_path, signaling_ws)

    if settings.serve_hls:
        compose_settings.output_dir.mkdir(parents=True, exist_ok=True)
        app.mount(
            "/hls",
            HlsStaticFiles(directory=str(compose_settings.output_dir)),
            name="hls",
        )
    return app
