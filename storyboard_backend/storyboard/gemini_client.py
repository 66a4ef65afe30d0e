import base64
import binascii
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from google import genai
from google.genai import types
from pydantic import BaseModel, ValidationError

from .errors import (
    CredentialMissing,
    GatewayError,
    MotionPromptFailed,
    NoImageProduced,
    SceneRenderFailed,
    StructureDraftFailed,
    TitleDraftFailed,
)
from .models import (
    ConnectionResult,
    ModelType,
    MotionPromptDraft,
    MotionPromptPayload,
    StoryDraft,
    StoryPayload,
    TitleCandidate,
    TitlesPayload,
)
from .prompts import (
    CONNECTION_TEST_PROMPT,
    IMAGE_PROMPT_PREFIX,
    MOTION_SUFFIX,
    MOTION_SYSTEM_PROMPT,
    MOTION_USER_PROMPT_TEMPLATE,
    STORY_SYSTEM_PROMPT,
    STORY_USER_PROMPT_TEMPLATE,
    TITLE_COUNT,
    TITLES_USER_PROMPT_TEMPLATE,
    motion_prompt_schema,
    story_schema,
    titles_schema,
)
from . import settings

logger = logging.getLogger(__name__)

CredentialSource = Callable[[], Awaitable[Optional[str]]]
ClientFactory = Callable[[str], genai.Client]


def _default_client_factory(api_key: str) -> genai.Client:
    return genai.Client(api_key=api_key)


def normalize_motion_prompt(prompt: str) -> str:
    """Append the fixed pacing suffix unless the prompt already contains it."""
    text = prompt.rstrip()
    if MOTION_SUFFIX in text:
        return text
    return f"{text} {MOTION_SUFFIX}" if text else MOTION_SUFFIX


def normalize_image_prompt(prompt: str) -> str:
    text = prompt.strip()
    if text.startswith(IMAGE_PROMPT_PREFIX.strip()):
        return text
    return f"{IMAGE_PROMPT_PREFIX}{text}"


def image_part(reference_image: str) -> types.Part:
    """Build an inline image part from a data URI or a bare base64 string."""
    mime_type = "image/jpeg"
    data = reference_image
    if reference_image.startswith("data:") and "," in reference_image:
        header, data = reference_image.split(",", 1)
        declared = header[len("data:"):].split(";", 1)[0]
        if declared:
            mime_type = declared
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise GatewayError(f"Unreadable reference image: {e}") from e
    return types.Part.from_bytes(data=raw, mime_type=mime_type)


def _friendly_key_error(message: str) -> str:
    if "entity was not found" in message or "API_KEY_INVALID" in message or "API key not valid" in message:
        return "Invalid API key. Please check it and try again."
    return message


def _parse(response, payload_model: type) -> BaseModel:
    text = getattr(response, "text", None)
    if not text:
        raise ValueError("Response was empty.")
    return payload_model.model_validate_json(text)


async def check_connection(credential: str, client_factory: ClientFactory = _default_client_factory) -> ConnectionResult:
    """Minimal round trip with an explicit credential; never raises."""
    if not credential:
        return ConnectionResult(success=False, message="No API key provided.")
    try:
        client = client_factory(credential)
        response = await client.aio.models.generate_content(
            model=settings.FAST_TEXT_MODEL,
            contents=[types.Part.from_text(text=CONNECTION_TEST_PROMPT)],
        )
        if response.text:
            return ConnectionResult(success=True, message="Connection successful. Gemini is ready.")
        return ConnectionResult(success=False, message="Received empty response from Gemini.")
    except Exception as e:
        logger.error(f"Connection validation failed: {e}")
        return ConnectionResult(success=False, message=_friendly_key_error(str(e) or "Unknown error occurred."))


class GeminiGateway:
    """All outbound Gemini calls, speaking only in domain types to callers."""

    def __init__(self, credential_source: CredentialSource, client_factory: ClientFactory = _default_client_factory):
        self.credential_source = credential_source
        self.client_factory = client_factory
        self._clients: Dict[str, genai.Client] = {}

    async def _client(self) -> genai.Client:
        api_key = await self.credential_source()
        if not api_key:
            raise CredentialMissing()
        if api_key not in self._clients:
            self._clients[api_key] = self.client_factory(api_key)
        return self._clients[api_key]

    async def test_connection(self, credential: Optional[str] = None) -> ConnectionResult:
        if credential is None:
            credential = await self.credential_source()
        return await check_connection(credential or "", self.client_factory)

    async def _generate(self, error_cls: type, what: str, **kwargs):
        client = await self._client()
        try:
            return await client.aio.models.generate_content(**kwargs)
        except Exception as e:
            logger.error(f"{what} request failed: {e}")
            raise error_cls(str(e) or f"{what} request failed") from e

    async def draft_story(self, topic: str, reference_image: Optional[str], scene_count: int) -> StoryDraft:
        logger.info(f"Drafting story structure ({scene_count} scenes) for topic: {topic[:80]}")
        parts: List[types.Part] = []
        if reference_image:
            parts.append(image_part(reference_image))
        parts.append(types.Part.from_text(text=STORY_USER_PROMPT_TEMPLATE.format(title_count=TITLE_COUNT, topic=topic)))

        response = await self._generate(
            StructureDraftFailed,
            "Story structure",
            model=settings.STORY_MODEL,
            contents=parts,
            config=types.GenerateContentConfig(
                system_instruction=STORY_SYSTEM_PROMPT.format(
                    scene_count=scene_count, suffix=MOTION_SUFFIX, title_count=TITLE_COUNT
                ),
                temperature=0.7,
                response_mime_type="application/json",
                response_schema=story_schema(scene_count),
            ),
        )
        try:
            payload = _parse(response, StoryPayload)
        except (ValueError, ValidationError) as e:
            logger.error(f"Story structure response did not match schema: {e}")
            raise StructureDraftFailed(f"Malformed story structure: {e}") from e

        if len(payload.scenes) != scene_count:
            logger.warning(f"Requested {scene_count} scenes, provider returned {len(payload.scenes)}")
        if len(payload.titles) != TITLE_COUNT:
            logger.warning(f"Expected {TITLE_COUNT} titles, provider returned {len(payload.titles)}")

        scenes = [
            s.model_copy(update={
                "imagePrompt": normalize_image_prompt(s.imagePrompt),
                "i2vPrompt": normalize_motion_prompt(s.i2vPrompt),
            })
            for s in payload.scenes
        ]
        logger.info(f"Story structure drafted with {len(scenes)} scenes")
        return StoryDraft(
            scenes=scenes,
            titles=[TitleCandidate(primary=t.english, localized=t.korean) for t in payload.titles],
            music_prompt=payload.musicPrompt,
            lyrics=payload.lyrics,
            lyrics_localized=payload.lyricsKorean,
        )

    async def draft_titles(self, topic: str) -> List[TitleCandidate]:
        logger.info(f"Drafting titles for topic: {topic[:80]}")
        response = await self._generate(
            TitleDraftFailed,
            "Titles",
            model=settings.FAST_TEXT_MODEL,
            contents=[types.Part.from_text(text=TITLES_USER_PROMPT_TEMPLATE.format(title_count=TITLE_COUNT, topic=topic))],
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=titles_schema(),
            ),
        )
        try:
            payload = _parse(response, TitlesPayload)
        except (ValueError, ValidationError) as e:
            raise TitleDraftFailed(f"Malformed titles response: {e}") from e
        return [TitleCandidate(primary=t.english, localized=t.korean) for t in payload.titles]

    async def render_image(
        self,
        model: ModelType,
        prompt: str,
        aspect_ratio: str,
        resolution: str = "1K",
        reference_image: Optional[str] = None,
    ) -> str:
        """Render one image and return it as a PNG data URI."""
        pro = model == ModelType.NanoBananaPro
        model_id = settings.IMAGE_MODEL_PRO if pro else settings.IMAGE_MODEL
        # image_size is only honoured by the Pro tier
        image_config = types.ImageConfig(aspect_ratio=aspect_ratio, image_size=resolution) if pro \
            else types.ImageConfig(aspect_ratio=aspect_ratio)

        parts: List[types.Part] = []
        if reference_image:
            parts.append(image_part(reference_image))
        parts.append(types.Part.from_text(text=prompt))

        response = await self._generate(
            SceneRenderFailed,
            "Image render",
            model=model_id,
            contents=parts,
            config=types.GenerateContentConfig(image_config=image_config),
        )

        candidates = getattr(response, "candidates", None) or []
        content = candidates[0].content if candidates else None
        for part in (content.parts or []) if content else []:
            if part.inline_data is not None and part.inline_data.data:
                data = part.inline_data.data
                if isinstance(data, bytes):
                    data = base64.b64encode(data).decode("ascii")
                return f"data:image/png;base64,{data}"
        logger.error(f"{model_id} returned no image parts")
        raise NoImageProduced()

    async def translate_motion_prompt(self, request_text: str, reference_image: Optional[str] = None) -> MotionPromptDraft:
        parts: List[types.Part] = []
        if reference_image:
            parts.append(image_part(reference_image))
        parts.append(types.Part.from_text(text=MOTION_USER_PROMPT_TEMPLATE.format(request=request_text)))

        response = await self._generate(
            MotionPromptFailed,
            "Motion prompt",
            model=settings.FAST_TEXT_MODEL,
            contents=parts,
            config=types.GenerateContentConfig(
                system_instruction=MOTION_SYSTEM_PROMPT.format(suffix=MOTION_SUFFIX),
                temperature=0.8,
                response_mime_type="application/json",
                response_schema=motion_prompt_schema(),
            ),
        )
        try:
            payload = _parse(response, MotionPromptPayload)
        except (ValueError, ValidationError) as e:
            raise MotionPromptFailed(f"Malformed motion prompt response: {e}") from e
        return MotionPromptDraft(primary=normalize_motion_prompt(payload.english), localized=payload.korean)
