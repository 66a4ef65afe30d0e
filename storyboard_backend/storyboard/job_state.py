import logging
import uuid
from typing import Callable, List, Optional

from .models import JobState, JobStatus, RenderState, Scene, StoryRequest

logger = logging.getLogger(__name__)

Listener = Callable[[JobState], None]


class JobStore:
    """
    Owner of the current JobState snapshot.

    Snapshots are immutable; every change builds a new one from the latest
    snapshot and notifies subscribers. Writes tagged with a job_id other than
    the current one are dropped, so a superseded job cannot touch its
    successor's scenes.
    """

    def __init__(self):
        self._state = JobState()
        self._listeners: List[Listener] = []

    def snapshot(self) -> JobState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def is_current(self, job_id: str) -> bool:
        return self._state.job_id == job_id

    def _publish(self, state: JobState):
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Job state listener failed")

    def begin(self, request: StoryRequest) -> str:
        job_id = uuid.uuid4().hex
        if self._state.status == JobStatus.RenderingScenes:
            logger.warning(f"Superseding job {self._state.job_id} with {self._state.outstanding} renders in flight")
        self._publish(JobState(job_id=job_id, request=request, status=JobStatus.DraftingStructure))
        return job_id

    def update(self, job_id: str, **changes) -> bool:
        if not self.is_current(job_id):
            logger.info(f"Discarding update for superseded job {job_id}")
            return False
        self._publish(self._state.model_copy(update=changes))
        return True

    def _scenes_of(self, job_id: str, index: int) -> Optional[List[Scene]]:
        if not self.is_current(job_id):
            logger.info(f"Discarding scene {index} update for superseded job {job_id}")
            return None
        if not 0 <= index < len(self._state.scenes):
            return None
        return list(self._state.scenes)

    def revision_of(self, job_id: str, index: int) -> Optional[int]:
        scenes = self._scenes_of(job_id, index)
        return scenes[index].revision if scenes is not None else None

    def update_scene(self, job_id: str, index: int, expect_revision: Optional[int] = None, **changes) -> bool:
        """Replace one scene, leaving every other entry as the same object."""
        scenes = self._scenes_of(job_id, index)
        if scenes is None:
            return False
        if expect_revision is not None and scenes[index].revision != expect_revision:
            logger.info(f"Dropping stale result for scene {index} of job {job_id}")
            return False
        scenes[index] = scenes[index].model_copy(update=changes)
        self._publish(self._state.model_copy(update={"scenes": scenes}))
        return True

    def settle_scene(self, job_id: str, index: int, expect_revision: Optional[int] = None, **changes) -> bool:
        """
        Count a render against the outstanding renders and apply its terminal
        update, unless the scene was regenerated since the render started.
        """
        scenes = self._scenes_of(job_id, index)
        if scenes is None:
            return False
        applied = expect_revision is None or scenes[index].revision == expect_revision
        if applied:
            scenes[index] = scenes[index].model_copy(update=changes)
        else:
            logger.info(f"Scene {index} of job {job_id} was regenerated; dropping its first render")
        outstanding = max(self._state.outstanding - 1, 0)
        update = {"scenes": scenes, "outstanding": outstanding}
        if outstanding == 0 and self._state.status == JobStatus.RenderingScenes:
            update["status"] = JobStatus.Complete
        self._publish(self._state.model_copy(update=update))
        return applied

    def abort(self, job_id: str, error: str) -> bool:
        """Settle a job whose pipeline broke: unsettled scenes fail, the job reaches a terminal status."""
        if not self.is_current(job_id) or self._state.status in (JobStatus.Complete, JobStatus.Failed):
            return False
        scenes = [
            s.model_copy(update={"render_state": RenderState.Failed, "render_error": error})
            if s.render_state in (RenderState.Pending, RenderState.Rendering) else s
            for s in self._state.scenes
        ]
        status = JobStatus.Complete if self._state.status == JobStatus.RenderingScenes else JobStatus.Failed
        self._publish(self._state.model_copy(update={
            "scenes": scenes, "outstanding": 0, "status": status,
            "error": error if status == JobStatus.Failed else self._state.error,
        }))
        return True

    def scene(self, index: int) -> Scene:
        return self._state.scenes[index]
