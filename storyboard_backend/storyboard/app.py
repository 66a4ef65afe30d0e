import os
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional, Set

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

# Ensure .env is loaded before importing modules that initialize API clients
from .settings import ALLOWED_ORIGINS
from .credentials import CredentialResolver, HostCredentialFacility
from .errors import CredentialInvalid, CredentialMissing, GatewayError, SceneNotFound
from .gemini_client import GeminiGateway, check_connection
from .history import HistoryLedger
from .kv_storage import KVStorage
from .models import StoryRequest
from .orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class ActivateCredentialRequest(BaseModel):
    credential: str


class RegenerateSceneRequest(BaseModel):
    prompt: str


class MotionPromptRequest(BaseModel):
    request: str
    reference_image: Optional[str] = None


class ExportRequest(BaseModel):
    dest_dir: Optional[str] = None


def build_orchestrator(kv: Optional[KVStorage] = None, host: Optional[HostCredentialFacility] = None) -> Orchestrator:
    kv = kv or KVStorage()
    credentials = CredentialResolver(kv, validator=check_connection, host=host)
    gateway = GeminiGateway(credentials.resolve)
    return Orchestrator(gateway, credentials, HistoryLedger(kv))


def _log_task_result(task: asyncio.Task):
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background job task failed: {exc!r}", exc_info=exc)


def create_app(orchestrator: Optional[Orchestrator] = None) -> FastAPI:
    orchestrator = orchestrator or build_orchestrator()
    background: Set[asyncio.Task] = set()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await orchestrator.credentials.refresh()
        await orchestrator.history.load()
        yield

    app = FastAPI(title="Storyboard Backend", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["POST", "GET", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(CredentialMissing)
    async def credential_missing(request: Request, exc: CredentialMissing):
        return JSONResponse(status_code=401, content={"error": "credential_required", "detail": str(exc)})

    @app.exception_handler(CredentialInvalid)
    async def credential_invalid(request: Request, exc: CredentialInvalid):
        return JSONResponse(status_code=400, content={"error": "credential_invalid", "detail": str(exc)})

    @app.exception_handler(SceneNotFound)
    async def scene_not_found(request: Request, exc: SceneNotFound):
        return JSONResponse(status_code=404, content={"error": "scene_not_found", "detail": str(exc)})

    @app.exception_handler(GatewayError)
    async def gateway_error(request: Request, exc: GatewayError):
        logger.error(f"{request.url.path} failed: {exc}")
        return JSONResponse(status_code=502, content={"error": type(exc).__name__, "detail": str(exc)})

    @app.get("/health")
    def health():
        active = orchestrator.credentials.is_active
        logger.info(f"Health check: credential active = {active}")
        return {"ok": True, "credential_active": active}

    @app.post("/v1/credentials:activate")
    async def activate_credential(req: ActivateCredentialRequest):
        result = await orchestrator.credentials.activate(req.credential)
        if not result.accepted:
            raise CredentialInvalid(result.message)
        return result.model_dump()

    @app.delete("/v1/credentials")
    async def clear_credential():
        active = await orchestrator.credentials.clear()
        return {"credential_active": active}

    @app.post("/v1/storyboard:start")
    async def start_storyboard(req: StoryRequest):
        job_id = await orchestrator.start(req)
        task = asyncio.create_task(orchestrator.execute(job_id, req))
        background.add(task)
        task.add_done_callback(background.discard)
        task.add_done_callback(_log_task_result)
        return {"job_id": job_id, "status": orchestrator.snapshot().status}

    @app.get("/v1/storyboard")
    def storyboard_snapshot():
        return orchestrator.snapshot().model_dump(mode="json")

    @app.post("/v1/storyboard/scenes/{index}:regenerate")
    async def regenerate_scene(index: int, req: RegenerateSceneRequest):
        scene = await orchestrator.regenerate_scene(index, req.prompt)
        return scene.model_dump(mode="json")

    @app.post("/v1/storyboard/scenes/{index}:set-reference")
    async def set_scene_as_reference(index: int):
        request = orchestrator.use_scene_as_reference(index)
        return {"reference_image": request.reference_image}

    @app.post("/v1/storyboard/titles:regenerate")
    async def regenerate_titles():
        titles = await orchestrator.regenerate_titles()
        return {"titles": [t.model_dump() for t in titles]}

    @app.post("/v1/storyboard/motion-prompt")
    async def motion_prompt(req: MotionPromptRequest):
        draft = await orchestrator.compose_motion_prompt(req.request, req.reference_image)
        return draft.model_dump()

    @app.post("/v1/storyboard:export")
    async def export_storyboard(req: ExportRequest):
        paths = await orchestrator.export_scenes(req.dest_dir)
        return {"paths": paths}

    @app.get("/v1/history")
    def list_history():
        return [e.model_dump(mode="json") for e in orchestrator.history.list()]

    @app.delete("/v1/history")
    async def clear_history():
        await orchestrator.history.clear()
        return {"ok": True}

    return app


def main():
    import uvicorn
    uvicorn.run(create_app(), host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
