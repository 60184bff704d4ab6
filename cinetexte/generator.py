"""
cinetexte/generator.py  ·  story structure + portraits + scene stills + multi-voice narration
"""
from __future__ import annotations
import asyncio, base64, json, os, re
from functools import lru_cache
from typing import Any

from google import genai
from google.genai import types
from jinja2 import Template
from openai import AsyncOpenAI
from pydantic import ValidationError

from .log import logger
from .models import FEMALE_VOICE, NARRATOR_ID, NARRATOR_VOICE, Character, Scene, Story, VoiceName
from .wav import wav_data_url

# ────────── Configuration ──────────
GEMINI_API_KEY         = os.getenv("GEMINI_API_KEY", "")
GEMINI_OPENAI_BASE_URL = os.getenv(
    "GEMINI_OPENAI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/openai/"
)
STORY_MODEL = os.getenv("STORY_MODEL", "gemini-3-pro-preview")
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "gemini-2.5-flash-image")
TTS_MODEL   = os.getenv("TTS_MODEL",   "gemini-2.5-flash-preview-tts")

SCENE_ASPECT_RATIO = "16:9"

SYSTEM_HINT = (
    "You are an expert in historical storytelling working under a strict Truth Lock: "
    "every scene must rest on facts taken from the source text. "
)

# ✅ narration language → extra instruction
LANG_HINT = {
    "fr": "Write all narrative content exclusively in FRENCH.",
    "en": "Write all narrative content exclusively in ENGLISH.",
}
def lang_hint(lang: str) -> str:
    return LANG_HINT.get(lang, LANG_HINT["fr"])

NARRATOR_NAME = {"fr": "Narrateur", "en": "Narrator"}
def narrator_name(lang: str) -> str:
    return NARRATOR_NAME.get(lang, NARRATOR_NAME["fr"])

TTS_INSTRUCTION = {
    "fr": "Génère l'audio TTS pour cette scène en FRANÇAIS :",
    "en": "Generate the TTS audio for this scene in ENGLISH:",
}

# ────────── Catalogues shown in the input form ──────────
STYLES = {
    "epic":  {"label": "Épique & Grandiose",  "icon": "⚔️"},
    "dark":  {"label": "Sombre & Mystérieux", "icon": "🌑"},
    "humor": {"label": "Spirituel & Humour",  "icon": "🎭"},
    "doc":   {"label": "Documentaire",        "icon": "📜"},
    "noir":  {"label": "Polar Noir",          "icon": "🕵️"},
}
FORMATS = {
    "movie":  {"label": "Film Cinématographique", "desc": "Narrateur + Dialogues Dramatiques"},
    "play":   {"label": "Pièce de Théâtre",       "desc": "Accent sur les interactions entre personnages"},
    "memoir": {"label": "Mémoires Personnelles",  "desc": "Perspective à la première personne"},
}


class GenerationError(RuntimeError):
    """The backend answered, but not with a usable story."""


# ────────── Clients (built on first use) ──────────
def _require_key() -> str:
    if not GEMINI_API_KEY:
        raise RuntimeError("GEMINI_API_KEY n'est pas défini.")
    return GEMINI_API_KEY

@lru_cache(maxsize=1)
def text_client() -> AsyncOpenAI:
    return AsyncOpenAI(api_key=_require_key(), base_url=GEMINI_OPENAI_BASE_URL)

@lru_cache(maxsize=1)
def media_client() -> genai.Client:
    return genai.Client(api_key=_require_key())


# ────────── Prompt templates ──────────
STORY_PROMPT = Template("""
YOUR MISSION: turn the raw text below into an immersive cinematic storyboard.
GOLDEN RULE: every scene must be anchored in real facts extracted from the text.
Do not invent major historical facts that are not present in it.

SOURCE TEXT: {{ text }}
VISUAL STYLE / TONE: {{ style }}
FORMAT: {{ format }}

Specific instructions:
1. Structure the story in 3 to 5 key scenes.
2. For every scene, list explicitly in "factsUsed" the facts of the source text that justify it.
3. Create 2 to 3 charismatic characters (real historical figures or representative witnesses).
4. Assign each character a TTS voice among {{ voices|join(", ") }}. {{ female }} is the only female voice.
5. Dialogue lines not spoken by a character use the characterId "{{ narrator_id }}".
6. "visualPrompt" and "avatarPrompt" must be in ENGLISH and very descriptive for an image model
   (e.g. "cinematic wide shot, 18th century Paris, moody lighting, 8k").
Return strict JSON matching the requested schema.
""".strip())

AVATAR_PROMPT = Template(
    "Cinematic professional character portrait of {{ name }}, {{ prompt }}. "
    "Dramatic rim lighting, shallow depth of field, high detail, masterpiece."
)

SCENE_PROMPT = Template(
    "Masterpiece cinematic wide shot: {{ prompt }}. "
    "Dynamic composition, atmosphere, 8k resolution, photorealistic."
)

AUDIO_PROMPT = Template("""
{{ instruction }}
{% for speaker, text in lines -%}
{{ speaker }}: {{ text }}
{% endfor %}
""".strip())

_VOICES = [v.value for v in VoiceName]
_STR = {"type": "string"}

STORY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "title": _STR,
        "narrativeStyle": _STR,
        "summary": _STR,
        "characters": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": _STR, "name": _STR, "role": _STR, "bio": _STR,
                    "voice": {"type": "string", "enum": _VOICES},
                    "gender": _STR, "avatarPrompt": _STR,
                },
                "required": ["id", "name", "role", "voice", "gender", "avatarPrompt"],
            },
        },
        "scenes": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "integer"},
                    "title": _STR, "location": _STR, "time": _STR,
                    "description": _STR, "visualPrompt": _STR,
                    "factsUsed": {"type": "array", "items": _STR},
                    "dialogues": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {"characterId": _STR, "text": _STR, "emotion": _STR},
                            "required": ["characterId", "text"],
                        },
                    },
                },
                "required": ["id", "title", "description", "visualPrompt", "dialogues", "factsUsed"],
            },
        },
    },
    "required": ["title", "summary", "characters", "scenes"],
}


# ────────── Tolerant parser ──────────
def _safe_json_parse(text: str) -> dict:
    """
    Most forgiving JSON extraction:
    1. drop ```json fences (keeping what is inside)
    2. drop full-line // or # comments
    3. turn raw newlines / tabs into spaces
    4. fall back to the first {...} block
    """
    cleaned = re.sub(r"```(?:json)?", "", text, flags=re.I).strip()
    cleaned = re.sub(r"^\s*(//|#).*$", "", cleaned, flags=re.M)
    cleaned = cleaned.replace("\n", " ").replace("\t", " ")

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        m = re.search(r"\{.*\}", cleaned)
        if m:
            return json.loads(m.group())
        raise


# ────────── Stage 1 · structure ──────────
async def generate_story_structure(text: str, style: str, format: str, lang: str = "fr") -> Story:
    prompt = STORY_PROMPT.render(
        text        = text,
        style       = STYLES.get(style, {}).get("label", style),
        format      = FORMATS.get(format, {}).get("label", format),
        voices      = _VOICES,
        female      = FEMALE_VOICE.value,
        narrator_id = NARRATOR_ID,
    )
    resp = await text_client().chat.completions.create(
        model    = STORY_MODEL,
        messages = [
            {"role": "system", "content": SYSTEM_HINT + lang_hint(lang)},
            {"role": "user",   "content": prompt},
        ],
        response_format = {
            "type": "json_schema",
            "json_schema": {"name": "story", "schema": STORY_SCHEMA},
        },
    )
    content = resp.choices[0].message.content if resp.choices else None
    if not content:
        raise GenerationError("Échec de la génération structurelle.")

    try:
        data = _safe_json_parse(content)
    except json.JSONDecodeError as exc:
        raise GenerationError("Réponse structurelle illisible.") from exc
    if not isinstance(data, dict):
        raise GenerationError("Réponse structurelle illisible.")

    try:
        story = Story.model_validate(data)
    except ValidationError as exc:
        raise GenerationError(f"Structure non conforme : {exc.error_count()} erreur(s).") from exc

    logger.info("structure ready: {!r}, {} characters, {} scenes",
                story.title, len(story.characters), len(story.scenes))
    return story


# ────────── Inline media helpers ──────────
def _first_inline(resp) -> Any:
    candidates = resp.candidates or []
    if not candidates or not candidates[0].content or not candidates[0].content.parts:
        return None
    for part in candidates[0].content.parts:
        inline = getattr(part, "inline_data", None)
        if inline and inline.data:
            return inline
    return None

def _image_url(inline) -> str:
    data = inline.data
    if isinstance(data, (bytes, bytearray)):
        data = base64.b64encode(data).decode("ascii")
    return f"data:{inline.mime_type or 'image/png'};base64,{data}"

async def _generate_image(prompt: str, aspect_ratio: str | None = None) -> str | None:
    cfg = types.GenerateContentConfig(
        response_modalities=["IMAGE", "TEXT"],
        image_config=types.ImageConfig(aspect_ratio=aspect_ratio) if aspect_ratio else None,
    )
    resp = await media_client().aio.models.generate_content(
        model=IMAGE_MODEL, contents=prompt, config=cfg,
    )
    inline = _first_inline(resp)
    return _image_url(inline) if inline else None


# ────────── Stage 2 · casting portraits ──────────
async def _with_avatar(char: Character) -> Character:
    try:
        url = await _generate_image(AVATAR_PROMPT.render(name=char.name, prompt=char.avatar_prompt))
    except Exception as exc:
        logger.warning("avatar for {} failed: {}", char.id, exc)
        return char
    if not url:
        logger.warning("avatar for {} came back without an image", char.id)
        return char
    return char.model_copy(update={"avatar_url": url})

async def generate_character_avatars(story: Story) -> Story:
    characters = await asyncio.gather(*(_with_avatar(c) for c in story.characters))
    logger.info("avatars: {}/{} generated",
                sum(c.avatar_url is not None for c in characters), len(characters))
    return story.model_copy(update={"characters": list(characters)})


# ────────── Stage 3 · scene stills ──────────
async def _with_image(scene: Scene) -> Scene:
    try:
        url = await _generate_image(SCENE_PROMPT.render(prompt=scene.visual_prompt), SCENE_ASPECT_RATIO)
    except Exception as exc:
        logger.warning("image for scene {} failed: {}", scene.id, exc)
        return scene
    if not url:
        logger.warning("image for scene {} came back empty", scene.id)
        return scene
    return scene.model_copy(update={"image_url": url})

async def generate_scene_images(story: Story) -> Story:
    scenes = await asyncio.gather(*(_with_image(s) for s in story.scenes))
    logger.info("scene images: {}/{} generated",
                sum(s.image_url is not None for s in scenes), len(scenes))
    return story.model_copy(update={"scenes": list(scenes)})


# ────────── Stage 4 · multi-speaker narration ──────────
def build_scene_script(story: Story, scene: Scene, lang: str = "fr") -> str:
    lines = []
    for d in scene.dialogues:
        char = story.character(d.character_id)
        lines.append((char.name if char else narrator_name(lang), d.text))
    return AUDIO_PROMPT.render(instruction=TTS_INSTRUCTION.get(lang, TTS_INSTRUCTION["fr"]), lines=lines)

def build_speaker_voices(story: Story, lang: str = "fr") -> list[tuple[str, VoiceName]]:
    voices = [(c.name, c.voice) for c in story.characters]
    narrator = narrator_name(lang)
    if not any(name == narrator for name, _ in voices):
        voices.append((narrator, NARRATOR_VOICE))
    return voices

def _speech_config(voices: list[tuple[str, VoiceName]]) -> types.SpeechConfig:
    return types.SpeechConfig(
        multi_speaker_voice_config=types.MultiSpeakerVoiceConfig(
            speaker_voice_configs=[
                types.SpeakerVoiceConfig(
                    speaker=name,
                    voice_config=types.VoiceConfig(
                        prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice.value),
                    ),
                )
                for name, voice in voices
            ]
        )
    )

async def _with_audio(story: Story, scene: Scene, lang: str) -> Scene:
    try:
        resp = await media_client().aio.models.generate_content(
            model    = TTS_MODEL,
            contents = build_scene_script(story, scene, lang),
            config   = types.GenerateContentConfig(
                response_modalities=["AUDIO"],
                speech_config=_speech_config(build_speaker_voices(story, lang)),
            ),
        )
        inline = _first_inline(resp)
        if not inline:
            logger.warning("audio for scene {} came back empty", scene.id)
            return scene
        return scene.model_copy(update={"audio_url": wav_data_url(inline.data)})
    except Exception as exc:
        logger.warning("audio for scene {} failed: {}", scene.id, exc)
        return scene

async def generate_scene_audio(story: Story, lang: str = "fr") -> Story:
    scenes = await asyncio.gather(*(_with_audio(story, s, lang) for s in story.scenes))
    logger.info("scene audio: {}/{} generated",
                sum(s.audio_url is not None for s in scenes), len(scenes))
    return story.model_copy(update={"scenes": list(scenes)})
