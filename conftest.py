import asyncio
import base64
from typing import List, Optional

import pytest

from storyboard.credentials import CredentialResolver
from storyboard.errors import NoImageProduced
from storyboard.gemini_client import normalize_motion_prompt
from storyboard.history import HistoryLedger
from storyboard.kv_storage import KVStorage
from storyboard.models import ConnectionResult, MotionPromptDraft, SceneDraft, StoryDraft, TitleCandidate
from storyboard.orchestrator import Orchestrator


def make_draft(topic: str, scene_count: int) -> StoryDraft:
    return StoryDraft(
        scenes=[
            SceneDraft(
                sceneNumber=i,
                description=f"{topic} beat {i}",
                imagePrompt=f"{topic} shot {i}",
                i2vPrompt=normalize_motion_prompt(f"Camera pushes in on beat {i}."),
            )
            for i in range(1, scene_count + 1)
        ],
        titles=[TitleCandidate(primary=f"Title {i}", localized=f"제목 {i}") for i in range(10)],
        music_prompt="Genre: Folk",
        lyrics="[Verse 1] ...",
        lyrics_localized="[1절] ...",
    )


class FakeGateway:
    """Stands in for GeminiGateway; renders succeed unless the prompt is listed in fail_prompts."""

    def __init__(self, fail_prompts=(), draft_error: Optional[Exception] = None, blocked_prefix: Optional[str] = None):
        self.fail_prompts = set(fail_prompts)
        self.draft_error = draft_error
        self.blocked_prefix = blocked_prefix
        self.gate = asyncio.Event() if blocked_prefix else None
        self.draft_calls: List[tuple] = []
        self.render_calls: List[dict] = []
        self.title_calls: List[str] = []

    async def draft_story(self, topic, reference_image, scene_count):
        self.draft_calls.append((topic, reference_image, scene_count))
        await asyncio.sleep(0)
        if self.draft_error is not None:
            raise self.draft_error
        return make_draft(topic, scene_count)

    async def draft_titles(self, topic):
        self.title_calls.append(topic)
        return [TitleCandidate(primary=f"Fresh {topic}", localized="새 제목")]

    async def render_image(self, model, prompt, aspect_ratio, resolution="1K", reference_image=None):
        self.render_calls.append({
            "model": model, "prompt": prompt, "aspect_ratio": aspect_ratio,
            "resolution": resolution, "reference_image": reference_image,
        })
        if self.blocked_prefix and prompt.startswith(self.blocked_prefix):
            await self.gate.wait()
        await asyncio.sleep(0)
        if prompt in self.fail_prompts:
            raise NoImageProduced()
        return "data:image/png;base64," + base64.b64encode(prompt.encode()).decode()

    async def translate_motion_prompt(self, request_text, reference_image=None):
        return MotionPromptDraft(primary=normalize_motion_prompt(request_text), localized="번역")


class StaticCredentialProvider:
    name = "static"

    def __init__(self, value: Optional[str]):
        self.value = value

    async def fetch(self):
        return self.value


async def accept_good_key(candidate: str) -> ConnectionResult:
    if candidate == "good-key":
        return ConnectionResult(success=True, message="Connection successful. Gemini is ready.")
    return ConnectionResult(success=False, message="Invalid API key. Please check it and try again.")


@pytest.fixture
def kv(tmp_path, monkeypatch):
    monkeypatch.delenv("KV_REST_API_URL", raising=False)
    monkeypatch.delenv("KV_REST_API_TOKEN", raising=False)
    return KVStorage(path=str(tmp_path / "store.json"))


@pytest.fixture
def make_orchestrator(kv):
    def _make(gateway, credential: Optional[str] = "test-key", export_delay_s: float = 0.0):
        credentials = CredentialResolver(kv, validator=accept_good_key, providers=[StaticCredentialProvider(credential)])
        return Orchestrator(gateway, credentials, HistoryLedger(kv), export_delay_s=export_delay_s)
    return _make
