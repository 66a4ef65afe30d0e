from google.genai import types

MOTION_SUFFIX = "There is no slow motion, and the scene unfolds quickly."
IMAGE_PROMPT_PREFIX = "Cinematic photo, high detail. "

CONNECTION_TEST_PROMPT = "Connection test. Reply with 'OK'."

TITLE_COUNT = 10

STORY_SYSTEM_PROMPT = """You are an expert Storyboard AI, a Digital Marketing Specialist, and a legendary Music Producer.
You analyse what makes a song chart on the Billboard Hot 100 and write music and lyric prompts that follow current trends.
Create a compelling story in exactly {scene_count} scenes.

Persona Guidelines:
1. 'description': Scene summary in Korean.
2. 'imagePrompt': Visual details in English. Preserve subjects from reference images exactly.
3. 'i2vPrompt': Technical motion in English. ALWAYS end with: "{suffix}"
4. 'titles': Generate {title_count} YouTube SEO optimized titles, each in English and Korean.
5. 'musicPrompt': Generate a detailed billboard-style music prompt in English using EXACTLY this structure:
   Genre:
   Mood:
   Tempo:
   Instrumentation:
   Vocal Style:
   Lyrics Theme:
   Song Structure: Intro - Verse - Pre-Chorus - Chorus - Chorus (repeat) - Verse - Pre-Chorus - Chorus - Chorus (repeat) - Bridge - Final Chorus - Final Chorus (repeat)
   Mix:
6. 'lyrics': Full song lyrics in English with structure [Verse 1], [Chorus], etc.
7. 'lyricsKorean': A poetic and accurate Korean translation of the lyrics, following the same structure as the English lyrics."""

STORY_USER_PROMPT_TEMPLATE = (
    "Analyze this topic and create a comprehensive story, {title_count} SEO titles, "
    "and a professional music production: {topic}"
)

TITLES_USER_PROMPT_TEMPLATE = (
    'Generate {title_count} highly SEO optimized YouTube titles for the topic: "{topic}". '
    "Focus on high search relevance, keywords, and click-through rate. Output as JSON."
)

MOTION_SYSTEM_PROMPT = """You are a world-class AI film director and prompt engineer.
Analyse the user's request and the uploaded image to write a cinematic image-to-video (I2V) prompt for Google Veo 3.

Core rules:
1. When an image is provided, analyse the subject's face, clothing, background and overall style and carry them into the prompt.
2. Unless told otherwise, keep the subject's appearance, clothing and background exactly as in the image.
3. The 'english' prompt must always end with: "{suffix}"
4. 'korean' is an accurate and evocative Korean translation of the English prompt.
5. 'english' is technically detailed: camera movement (zoom, pan, tilt), lighting, texture and motion."""

MOTION_USER_PROMPT_TEMPLATE = (
    'Analyze the provided image (if any) and the following request to create an optimized I2V video prompt: "{request}"'
)


def _title_schema() -> types.Schema:
    return types.Schema(
        type=types.Type.OBJECT,
        properties={
            "english": types.Schema(type=types.Type.STRING),
            "korean": types.Schema(type=types.Type.STRING),
        },
        required=["english", "korean"],
    )


def story_schema(scene_count: int) -> types.Schema:
    return types.Schema(
        type=types.Type.OBJECT,
        properties={
            "scenes": types.Schema(
                type=types.Type.ARRAY,
                description=f"Exactly {scene_count} narrative scenes.",
                items=types.Schema(
                    type=types.Type.OBJECT,
                    properties={
                        "sceneNumber": types.Schema(type=types.Type.INTEGER),
                        "description": types.Schema(type=types.Type.STRING),
                        "imagePrompt": types.Schema(type=types.Type.STRING),
                        "i2vPrompt": types.Schema(type=types.Type.STRING),
                    },
                    required=["sceneNumber", "description", "imagePrompt", "i2vPrompt"],
                ),
            ),
            "titles": types.Schema(
                type=types.Type.ARRAY,
                description=f"{TITLE_COUNT} SEO optimized YouTube titles.",
                items=_title_schema(),
            ),
            "musicPrompt": types.Schema(type=types.Type.STRING),
            "lyrics": types.Schema(type=types.Type.STRING),
            "lyricsKorean": types.Schema(type=types.Type.STRING),
        },
        required=["scenes", "titles", "musicPrompt", "lyrics", "lyricsKorean"],
    )


def titles_schema() -> types.Schema:
    return types.Schema(
        type=types.Type.OBJECT,
        properties={"titles": types.Schema(type=types.Type.ARRAY, items=_title_schema())},
        required=["titles"],
    )


def motion_prompt_schema() -> types.Schema:
    return types.Schema(
        type=types.Type.OBJECT,
        properties={
            "english": types.Schema(type=types.Type.STRING, description="Optimized English prompt for Google Veo 3"),
            "korean": types.Schema(type=types.Type.STRING, description="Korean translation of the English prompt"),
        },
        required=["english", "korean"],
    )
