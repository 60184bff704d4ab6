from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


class VoiceName(str, Enum):
    PUCK = "Puck"
    CHARON = "Charon"
    KORE = "Kore"
    FENRIR = "Fenrir"
    ZEPHYR = "Zephyr"


FEMALE_VOICE = VoiceName.KORE       # the only female voice
NARRATOR_VOICE = VoiceName.CHARON
NARRATOR_ID = "narrator"


class Status(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    CASTING = "casting"
    GENERATING_MEDIA = "generating_media"
    READY = "ready"


class _Record(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Character(_Record):
    id: str
    name: str
    role: str
    bio: str = ""
    voice: VoiceName
    gender: str = ""
    avatar_prompt: str
    avatar_url: str | None = None


class DialogueLine(_Record):
    character_id: str
    text: str
    emotion: str = ""

    @property
    def is_narration(self) -> bool:
        return self.character_id == NARRATOR_ID


class Scene(_Record):
    id: int
    title: str
    location: str = ""
    time: str = ""
    description: str
    visual_prompt: str
    image_url: str | None = None
    dialogues: list[DialogueLine]
    audio_url: str | None = None
    facts_used: list[str]


class Story(_Record):
    title: str
    narrative_style: str = ""
    summary: str
    characters: list[Character]
    scenes: list[Scene]

    @model_validator(mode="after")
    def _check_cast(self) -> "Story":
        ids = [c.id for c in self.characters]
        if len(ids) != len(set(ids)):
            raise ValueError("character ids must be unique")
        known = set(ids) | {NARRATOR_ID}
        for scene in self.scenes:
            for line in scene.dialogues:
                if line.character_id not in known:
                    raise ValueError(
                        f"scene {scene.id}: unknown speaker {line.character_id!r}"
                    )
        return self

    def character(self, character_id: str) -> Character | None:
        return next((c for c in self.characters if c.id == character_id), None)


class AppState(BaseModel):
    status: Status = Status.IDLE
    progress: int = 0
    error: str | None = None
