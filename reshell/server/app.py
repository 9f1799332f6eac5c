"""FastAPI server — the /ws session protocol plus file and recording endpoints."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from reshell import __version__
from reshell.config import RECORDINGS_DIR, ReshellConfig
from reshell.errors import NotFound, ProtocolViolation, ReshellError
from reshell.llm import CommandLLM
from reshell.replay.injector import truncate_context
from reshell.server.registry import PtyFactory, Registry, spawn_pty
from reshell.server.router import ProtocolRouter
from reshell.server.ws_manager import ConnectionManager
from reshell.terminal.recorder import RecordingStore
from reshell.transcript import build_clean_transcript, format_transcript_for_prompt

log = logging.getLogger(__name__)


class SummaryRequest(BaseModel):
    """Body of POST /api/recordings/{id}/summary. Empty means build it here."""

    transcript: str = ""


def create_app(
    config: Optional[ReshellConfig] = None,
    store: Optional[RecordingStore] = None,
    pty_factory: PtyFactory = spawn_pty,
    llm: Optional[CommandLLM] = None,
    background: bool = True,
) -> FastAPI:
    """Build the app and the registry it owns."""
    config = config or ReshellConfig()
    store = store or RecordingStore(RECORDINGS_DIR)
    llm = llm or CommandLLM.from_config(config.llm)
    manager = ConnectionManager()
    registry = Registry(config, store, pty_factory)
    router = ProtocolRouter(registry, store, llm)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run the reaper and recorder loops for the server's lifetime."""
        if background:
            registry.start_background_tasks()
        yield
        await router.close()
        await registry.shutdown()

    app = FastAPI(
        title="reshell",
        description="Persistent browser shells with recorded assistant sessions",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.registry = registry
    app.state.router = router
    app.state.manager = manager
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ReshellError)
    async def reshell_error_handler(request: Request, exc: ReshellError):
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    # ── REST Endpoints ──────────────────────────────────────

    @app.get("/api/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok",
            "version": __version__,
            "clients": manager.client_count,
            "sessions": registry.session_count,
        }

    @app.get("/api/file")
    async def get_file(path: str):
        """Stream a file for <img>/<iframe> viewers, under the same root as read-file."""
        files = registry.files
        resolved = files.resolve(path)
        if not os.path.isfile(resolved):
            raise NotFound("File not found")
        files.check_size(resolved, config.files.http_limit)
        return FileResponse(resolved)

    @app.get("/api/recordings")
    async def list_recordings():
        """Recordings with real input, newest first."""
        return [meta.to_wire() for meta in store.list()]

    @app.get("/api/recordings/{recording_id}")
    async def get_recording(recording_id: str):
        return store.load(recording_id).to_wire()

    @app.delete("/api/recordings/{recording_id}")
    async def delete_recording(recording_id: str):
        """Delete a recording together with its summary."""
        store.delete(recording_id)
        return {"status": "ok"}

    @app.get("/api/recordings/{recording_id}/transcript")
    async def get_transcript(recording_id: str):
        recording = store.load(recording_id)
        segments = build_clean_transcript(recording.events)
        return {"id": recording.id, "segments": [s.model_dump() for s in segments]}

    @app.get("/api/recordings/{recording_id}/summary")
    async def get_summary(recording_id: str):
        summary = store.load_summary(recording_id)
        if summary is None:
            raise NotFound("No summary found")
        return summary.to_wire()

    @app.post("/api/recordings/{recording_id}/summary")
    async def create_summary(recording_id: str, body: SummaryRequest):
        """Summarize a recording and cache the result beside it."""
        recording = store.load(recording_id)
        transcript = body.transcript
        if not transcript:
            transcript = truncate_context(
                format_transcript_for_prompt(build_clean_transcript(recording.events)),
                config.replay.context_limit,
            )
        summary = await llm.summarize(
            transcript, len(recording.events), config.llm.summary_timeout
        )
        store.save_summary(recording.id, summary)
        return summary.to_wire()

    # ── WebSocket Endpoint ──────────────────────────────────

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket, clientId: Optional[str] = None):
        """One browser tab's session stream."""
        if not clientId:
            await websocket.close(
                code=status.WS_1008_POLICY_VIOLATION,
                reason=ProtocolViolation.default_message,
            )
            return

        channel = await manager.connect(clientId, websocket)
        log.info("Client connected: %s", clientId)
        registry.connect(clientId, channel)
        try:
            while True:
                raw = await websocket.receive_text()
                await router.handle(clientId, raw)
        except WebSocketDisconnect:
            pass
        finally:
            registry.disconnect(clientId, channel)
            await manager.disconnect(clientId, channel)

    return app
