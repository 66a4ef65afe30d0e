import asyncio
import base64
import json
from types import SimpleNamespace

import pytest

from storyboard.errors import CredentialMissing, NoImageProduced, SceneRenderFailed, StructureDraftFailed
from storyboard.gemini_client import GeminiGateway, normalize_motion_prompt, normalize_image_prompt
from storyboard.models import ModelType
from storyboard.prompts import IMAGE_PROMPT_PREFIX, MOTION_SUFFIX


class FakeModels:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


class FakeClient:
    def __init__(self, models: FakeModels):
        self.aio = SimpleNamespace(models=models)


def gateway_with(response=None, error=None, credential="test-key"):
    models = FakeModels(response, error)

    async def credential_source():
        return credential
    return GeminiGateway(credential_source, client_factory=lambda api_key: FakeClient(models)), models


def story_json(scene_count: int, **overrides) -> str:
    payload = {
        "scenes": [
            {
                "sceneNumber": i,
                "description": f"scene {i}",
                "imagePrompt": f"a lighthouse at dusk {i}",
                "i2vPrompt": "Slow dolly forward." if i % 2 else f"Pan left. {MOTION_SUFFIX}",
            }
            for i in range(1, scene_count + 1)
        ],
        "titles": [{"english": f"Title {i}", "korean": f"제목 {i}"} for i in range(10)],
        "musicPrompt": "Genre: Ambient",
        "lyrics": "[Verse 1] light",
        "lyricsKorean": "[1절] 빛",
    }
    payload.update(overrides)
    return json.dumps(payload)


def image_response(*parts):
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))])


def test_motion_suffix_is_idempotent():
    once = normalize_motion_prompt("Camera tracks the keeper.")
    assert once == f"Camera tracks the keeper. {MOTION_SUFFIX}"
    assert normalize_motion_prompt(once) == once
    assert normalize_motion_prompt(f"Pan up. {MOTION_SUFFIX}").count(MOTION_SUFFIX) == 1
    mid = f"Pan up. {MOTION_SUFFIX} Then a hard cut."
    assert normalize_motion_prompt(mid) == mid


def test_image_prompt_prefix_is_idempotent():
    once = normalize_image_prompt("a stormy sea")
    assert once == f"{IMAGE_PROMPT_PREFIX}a stormy sea"
    assert normalize_image_prompt(once) == once


def test_draft_story_normalizes_scenes():
    gateway, models = gateway_with(SimpleNamespace(text=story_json(4)))

    draft = asyncio.run(gateway.draft_story("lighthouse", None, 4))

    assert [s.sceneNumber for s in draft.scenes] == [1, 2, 3, 4]
    assert all(s.i2vPrompt.endswith(MOTION_SUFFIX) for s in draft.scenes)
    assert all(s.i2vPrompt.count(MOTION_SUFFIX) == 1 for s in draft.scenes)
    assert all(s.imagePrompt.startswith(IMAGE_PROMPT_PREFIX) for s in draft.scenes)
    assert len(draft.titles) == 10
    assert draft.titles[0].primary == "Title 0" and draft.titles[0].localized == "제목 0"
    assert draft.lyrics_localized == "[1절] 빛"

    config = models.calls[0]["config"]
    assert config.response_mime_type == "application/json"
    assert "exactly 4 scenes" in config.system_instruction


def test_draft_story_sends_reference_image_first():
    gateway, models = gateway_with(SimpleNamespace(text=story_json(1)))
    reference = "data:image/png;base64," + base64.b64encode(b"fake-png").decode()

    asyncio.run(gateway.draft_story("lighthouse", reference, 1))

    parts = models.calls[0]["contents"]
    assert parts[0].inline_data.data == b"fake-png"
    assert parts[0].inline_data.mime_type == "image/png"
    assert "lighthouse" in parts[1].text


def test_draft_story_tolerates_scene_count_mismatch():
    gateway, _ = gateway_with(SimpleNamespace(text=story_json(2)))

    draft = asyncio.run(gateway.draft_story("lighthouse", None, 5))

    assert len(draft.scenes) == 2


@pytest.mark.parametrize("response", [
    SimpleNamespace(text=None),
    SimpleNamespace(text="not json"),
    SimpleNamespace(text=json.dumps({"scenes": [{"sceneNumber": 1}]})),
])
def test_draft_story_rejects_malformed_responses(response):
    gateway, _ = gateway_with(response)

    with pytest.raises(StructureDraftFailed):
        asyncio.run(gateway.draft_story("lighthouse", None, 3))


def test_provider_errors_become_typed_errors():
    gateway, _ = gateway_with(error=RuntimeError("503 UNAVAILABLE"))

    with pytest.raises(StructureDraftFailed, match="503"):
        asyncio.run(gateway.draft_story("lighthouse", None, 3))


def test_missing_credential_raises_before_calling_provider():
    gateway, models = gateway_with(SimpleNamespace(text=story_json(1)), credential=None)

    with pytest.raises(CredentialMissing):
        asyncio.run(gateway.draft_story("lighthouse", None, 1))
    assert models.calls == []


def test_render_image_returns_png_data_uri():
    response = image_response(
        SimpleNamespace(inline_data=None, text="here you go"),
        SimpleNamespace(inline_data=SimpleNamespace(data=b"\x89PNG")),
    )
    gateway, models = gateway_with(response)

    uri = asyncio.run(gateway.render_image(ModelType.NanoBanana, "a lighthouse", "16:9", "4K"))

    assert uri == "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()
    config = models.calls[0]["config"]
    assert models.calls[0]["model"] == "gemini-2.5-flash-image"
    assert config.image_config.aspect_ratio == "16:9"
    assert config.image_config.image_size is None


def test_render_image_pro_tier_sends_resolution():
    response = image_response(SimpleNamespace(inline_data=SimpleNamespace(data=b"img")))
    gateway, models = gateway_with(response)

    asyncio.run(gateway.render_image(ModelType.NanoBananaPro, "a lighthouse", "1:1", "2K"))

    assert models.calls[0]["model"] == "gemini-3-pro-image-preview"
    assert models.calls[0]["config"].image_config.image_size == "2K"


def test_render_image_without_image_part():
    gateway, _ = gateway_with(image_response(SimpleNamespace(inline_data=None, text="sorry")))

    with pytest.raises(NoImageProduced):
        asyncio.run(gateway.render_image(ModelType.NanoBanana, "a lighthouse", "16:9"))


def test_render_image_provider_error_is_scene_failure():
    gateway, _ = gateway_with(error=ConnectionError("reset by peer"))

    with pytest.raises(SceneRenderFailed):
        asyncio.run(gateway.render_image(ModelType.NanoBanana, "a lighthouse", "16:9"))


def test_draft_titles():
    titles = json.dumps({"titles": [{"english": "Last Light", "korean": "마지막 빛"}]})
    gateway, _ = gateway_with(SimpleNamespace(text=titles))

    result = asyncio.run(gateway.draft_titles("lighthouse"))

    assert [(t.primary, t.localized) for t in result] == [("Last Light", "마지막 빛")]


def test_translate_motion_prompt_appends_suffix():
    body = json.dumps({"english": "Orbit around the keeper.", "korean": "관리인 주위를 돈다."})
    gateway, _ = gateway_with(SimpleNamespace(text=body))

    draft = asyncio.run(gateway.translate_motion_prompt("keeper turns around"))

    assert draft.primary == f"Orbit around the keeper. {MOTION_SUFFIX}"
    assert draft.localized == "관리인 주위를 돈다."


def test_connection_check_reports_invalid_key():
    gateway, _ = gateway_with(error=ValueError("400 API key not valid. Please pass a valid API key."))

    result = asyncio.run(gateway.test_connection("bad-key"))

    assert not result.success
    assert result.message == "Invalid API key. Please check it and try again."


def test_connection_check_success():
    gateway, models = gateway_with(SimpleNamespace(text="OK"))

    result = asyncio.run(gateway.test_connection())

    assert result.success
    assert models.calls[0]["model"] == "gemini-3-flash-preview"
