import os, asyncio, logging
from typing import Callable, List, Optional

from langgraph.graph import StateGraph, END
from pydantic import BaseModel

from .credentials import CredentialResolver
from .errors import CredentialMissing, SceneNotFound, TitleDraftFailed
from .gemini_client import GeminiGateway
from .history import HistoryLedger
from .job_state import JobStore
from .media import save_data_uri_as_png
from .models import (
    HistoryEntry,
    HistoryKind,
    JobState,
    JobStatus,
    MotionPromptDraft,
    RenderState,
    Scene,
    StoryDraft,
    StoryRequest,
    TitleCandidate,
)
from .settings import EXPORT_DIR, EXPORT_STAGGER_MS

logger = logging.getLogger(__name__)

RENDER_FAILED_MESSAGE = "Fail"


class PipelineState(BaseModel):
    job_id: str
    request: StoryRequest
    draft: Optional[StoryDraft] = None
    error: Optional[str] = None
    rendered: int = 0


def build_graph(orchestrator: "Orchestrator"):
    async def node_draft_structure(state: PipelineState) -> dict:
        return await orchestrator.draft_structure(state)

    async def node_render_scenes(state: PipelineState) -> dict:
        return await orchestrator.render_scenes(state)

    def route_after_draft(state: PipelineState) -> str:
        return "end" if state.error or not state.draft or not state.draft.scenes else "render"

    g = StateGraph(PipelineState)
    g.add_node("draft_structure", node_draft_structure)
    g.add_node("render_scenes", node_render_scenes)
    g.set_entry_point("draft_structure")
    g.add_conditional_edges("draft_structure", route_after_draft, {"render": "render_scenes", "end": END})
    g.add_edge("render_scenes", END)
    return g.compile()


class Orchestrator:
    def __init__(
        self,
        gateway: GeminiGateway,
        credentials: CredentialResolver,
        history: HistoryLedger,
        store: Optional[JobStore] = None,
        export_delay_s: float = EXPORT_STAGGER_MS / 1000.0,
    ):
        self.gateway = gateway
        self.credentials = credentials
        self.history = history
        self.store = store or JobStore()
        self.export_delay_s = export_delay_s
        self.graph = build_graph(self)

    def snapshot(self) -> JobState:
        return self.store.snapshot()

    def subscribe(self, listener: Callable[[JobState], None]) -> Callable[[], None]:
        return self.store.subscribe(listener)

    async def _preflight(self):
        if not await self.credentials.ensure_active():
            logger.warning("No active credential; credential setup required")
            raise CredentialMissing()

    # --- Top-level job ---

    async def start(self, request: StoryRequest) -> str:
        """Check the credential and open a new job; returns its id."""
        await self._preflight()
        job_id = self.store.begin(request)
        logger.info(f"Started job {job_id} for topic: {request.topic[:80]}")
        return job_id

    async def execute(self, job_id: str, request: StoryRequest) -> JobState:
        try:
            await self.graph.ainvoke(PipelineState(job_id=job_id, request=request))
        except Exception as e:
            logger.exception(f"Pipeline for job {job_id} broke off")
            self.store.abort(job_id, str(e) or type(e).__name__)
        return self.store.snapshot()

    async def run(self, request: StoryRequest) -> JobState:
        job_id = await self.start(request)
        return await self.execute(job_id, request)

    async def draft_structure(self, state: PipelineState) -> dict:
        req = state.request
        try:
            draft = await self.gateway.draft_story(req.topic, req.reference_image, req.scene_count)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Structure draft failed for job {state.job_id}: {message}")
            self.store.update(state.job_id, status=JobStatus.Failed, error=message)
            return {"error": message}

        if not self.store.is_current(state.job_id):
            logger.info(f"Job {state.job_id} was superseded during drafting; dropping its draft")
            return {"error": "superseded"}

        scenes = [
            Scene(
                scene_number=s.sceneNumber,
                narrative=s.description,
                image_prompt=s.imagePrompt,
                motion_prompt=s.i2vPrompt,
            )
            for s in draft.scenes
        ]
        self.store.update(
            state.job_id,
            scenes=scenes,
            titles=draft.titles,
            music_prompt=draft.music_prompt,
            lyrics=draft.lyrics,
            lyrics_localized=draft.lyrics_localized,
            outstanding=len(scenes),
            status=JobStatus.RenderingScenes if scenes else JobStatus.Complete,
        )
        logger.info(f"Job {state.job_id}: {len(scenes)} scene placeholders published")
        return {"draft": draft}

    async def render_scenes(self, state: PipelineState) -> dict:
        prompts = [s.imagePrompt for s in state.draft.scenes] if state.draft else []
        logger.info(f"Job {state.job_id}: rendering {len(prompts)} scenes in parallel")
        results = await asyncio.gather(
            *(self._render_scene(state.job_id, i, prompt, state.request, initial=True) for i, prompt in enumerate(prompts)),
            return_exceptions=True,
        )
        for i, result in enumerate(results):
            if isinstance(result, Exception):
                logger.error(f"Scene {i + 1} of job {state.job_id} did not settle: {result!r}")
        # anything still unsettled after the fan-out is failed so the job can complete
        self.store.abort(state.job_id, RENDER_FAILED_MESSAGE)
        rendered = sum(1 for ok in results if ok is True)
        logger.info(f"Job {state.job_id} settled: {rendered}/{len(prompts)} scenes ready")
        return {"rendered": rendered}

    async def _render_scene(self, job_id: str, index: int, prompt: str, request: StoryRequest, initial: bool) -> bool:
        revision = self.store.revision_of(job_id, index)
        if revision is None:
            return False
        if initial:
            apply = self.store.settle_scene
        else:
            apply = self.store.update_scene
            revision += 1
        self.store.update_scene(job_id, index, revision=revision, render_state=RenderState.Rendering, render_error=None)
        try:
            image = await self.gateway.render_image(
                request.model, prompt, request.aspect_ratio, request.resolution, request.reference_image
            )
        except Exception as e:
            logger.error(f"Scene {index + 1} render failed for job {job_id}: {e}")
            apply(job_id, index, expect_revision=revision, render_state=RenderState.Failed, render_error=RENDER_FAILED_MESSAGE)
            return False

        changes = {"image": image, "render_state": RenderState.Ready, "render_error": None}
        if not initial:
            changes["image_prompt"] = prompt
        if not apply(job_id, index, expect_revision=revision, **changes):
            return False
        try:
            await self.history.append(HistoryEntry(kind=HistoryKind.image, artifact_ref=image, source_prompt=prompt))
        except Exception:
            logger.exception(f"Could not record scene {index + 1} of job {job_id} in history")
        return True

    # --- Single-unit operations on the current job ---

    async def regenerate_scene(self, index: int, prompt: str) -> Scene:
        state = self.store.snapshot()
        if state.request is None or not 0 <= index < len(state.scenes):
            raise SceneNotFound(f"No scene at index {index}")
        await self._preflight()
        logger.info(f"Regenerating scene {index + 1} of job {state.job_id}")
        await self._render_scene(state.job_id, index, prompt, state.request, initial=False)
        return self.store.scene(index) if self.store.is_current(state.job_id) else state.scenes[index]

    def use_scene_as_reference(self, index: int) -> StoryRequest:
        """Make a rendered scene the job's reference image for later renders."""
        state = self.store.snapshot()
        if state.request is None or not 0 <= index < len(state.scenes) or not state.scenes[index].image:
            raise SceneNotFound(f"No rendered scene at index {index}")
        request = state.request.model_copy(update={"reference_image": state.scenes[index].image})
        self.store.update(state.job_id, request=request)
        logger.info(f"Scene {index + 1} of job {state.job_id} is now the reference image")
        return request

    async def regenerate_titles(self, topic: Optional[str] = None) -> List[TitleCandidate]:
        state = self.store.snapshot()
        topic = topic or (state.request.topic if state.request else None)
        if not topic:
            raise TitleDraftFailed("No topic to draft titles for")
        await self._preflight()
        titles = await self.gateway.draft_titles(topic)
        self.store.update(state.job_id, titles=titles)
        return titles

    async def compose_motion_prompt(self, request_text: str, reference_image: Optional[str] = None) -> MotionPromptDraft:
        state = self.store.snapshot()
        await self._preflight()
        if reference_image is None and state.request is not None:
            reference_image = state.request.reference_image
        draft = await self.gateway.translate_motion_prompt(request_text, reference_image)
        self.store.update(state.job_id, motion_prompt=draft)
        return draft

    async def export_scenes(self, dest_dir: Optional[str] = None, delay_s: Optional[float] = None) -> List[str]:
        """Write every ready scene image to disk, pausing between files."""
        dest_dir = dest_dir or EXPORT_DIR
        delay_s = self.export_delay_s if delay_s is None else delay_s
        ready = [s for s in self.store.snapshot().scenes if s.render_state == RenderState.Ready and s.image]
        paths = []
        for i, scene in enumerate(ready):
            if i > 0:
                await asyncio.sleep(delay_s)
            path = os.path.join(dest_dir, f"Scene_{scene.scene_number}.png")
            paths.append(save_data_uri_as_png(scene.image, path))
        logger.info(f"Exported {len(paths)} scenes to {dest_dir}")
        return paths
