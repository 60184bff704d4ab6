"""
cinetexte/pipeline.py  ·  structure → casting → stills → narration, one stage at a time
"""
from __future__ import annotations

from . import generator
from .log import logger
from .models import AppState, Status, Story

DEFAULT_ERROR = "Une erreur est survenue lors de la conversion cinématographique."


class Pipeline:
    """
    Drives the four generation stages for one session.

    ``story`` always holds the result of the last completed stage, so a
    failure half-way leaves whatever was already produced visible.
    """

    def __init__(self) -> None:
        self.state = AppState()
        self.story: Story | None = None
        self.lang = "fr"

    @property
    def running(self) -> bool:
        return self.state.status not in (Status.IDLE, Status.READY)

    def _advance(self, status: Status, progress: int) -> None:
        progress = max(progress, self.state.progress)
        self.state = self.state.model_copy(update={"status": status, "progress": progress})
        logger.info("pipeline → {} ({}%)", status.value, progress)

    def start(self, text: str, style: str, format: str, lang: str = "fr") -> None:
        """Enter `analyzing` synchronously; the stages themselves run in `execute`."""
        self.story = None
        self.lang = lang
        self.state = AppState(status=Status.ANALYZING, progress=10)
        logger.info("pipeline → analyzing ({} chars, style={}, format={}, lang={})",
                    len(text), style, format, lang)

    async def run(self, text: str, style: str, format: str, lang: str = "fr") -> Story | None:
        self.start(text, style, format, lang)
        return await self.execute(text, style, format, lang)

    async def execute(self, text: str, style: str, format: str, lang: str = "fr") -> Story | None:
        try:
            self.story = await generator.generate_story_structure(text, style, format, lang)
            self._advance(Status.CASTING, 30)

            self.story = await generator.generate_character_avatars(self.story)
            self._advance(Status.GENERATING_MEDIA, 60)

            self.story = await generator.generate_scene_images(self.story)
            self._advance(Status.GENERATING_MEDIA, 85)

            self.story = await generator.generate_scene_audio(self.story, lang)
            self._advance(Status.READY, 100)
        except Exception as exc:
            logger.exception("pipeline failed during {}", self.state.status.value)
            self.state = self.state.model_copy(
                update={"status": Status.IDLE, "error": str(exc) or DEFAULT_ERROR}
            )
        return self.story

    def reset(self) -> None:
        self.story = None
        self.state = AppState()
