import copy
import json
from types import SimpleNamespace

import pytest

from cinetexte import generator
from cinetexte.models import Story

STORY_PAYLOAD = {
    "title": "La prise de la Bastille",
    "narrativeStyle": "epic",
    "summary": "Paris, juillet 1789 : la foule marche sur la forteresse royale.",
    "characters": [
        {
            "id": "c1", "name": "Bernard-René de Launay", "role": "Gouverneur",
            "bio": "Dernier gouverneur de la Bastille.", "voice": "Charon",
            "gender": "male", "avatarPrompt": "stern 18th century officer, powdered wig",
        },
        {
            "id": "c2", "name": "Pauline Léon", "role": "Témoin",
            "bio": "Chocolatière et révolutionnaire.", "voice": "Kore",
            "gender": "female", "avatarPrompt": "young parisian woman, tricolor cockade",
        },
    ],
    "scenes": [
        {
            "id": 1, "title": "La rumeur", "location": "Faubourg Saint-Antoine",
            "time": "14 juillet 1789, matin", "description": "La foule cherche de la poudre.",
            "visualPrompt": "crowded parisian street at dawn, muskets, smoke",
            "factsUsed": ["La foule cherchait de la poudre"],
            "dialogues": [
                {"characterId": "narrator", "text": "Paris s'éveille dans la fièvre.", "emotion": "grave"},
                {"characterId": "c2", "text": "À la Bastille !", "emotion": "exaltée"},
            ],
        },
        {
            "id": 2, "title": "Les pourparlers", "location": "Cour de la Bastille",
            "time": "Midi", "description": "Des délégués négocient avec le gouverneur.",
            "visualPrompt": "fortress courtyard, delegates facing an officer",
            "factsUsed": ["Des délégués ont négocié avec de Launay"],
            "dialogues": [
                {"characterId": "c1", "text": "Je ne livrerai pas la place.", "emotion": "froid"},
            ],
        },
        {
            "id": 3, "title": "La chute", "location": "Pont-levis",
            "time": "Après-midi", "description": "La forteresse capitule.",
            "visualPrompt": "drawbridge falling, crowd storming, golden hour",
            "factsUsed": ["La garnison a capitulé"],
            "dialogues": [
                {"characterId": "narrator", "text": "La Bastille est tombée."},
            ],
        },
    ],
}

SOURCE_TEXT = (
    "Le 14 juillet 1789, la foule parisienne, à la recherche de poudre, "
    "marche sur la Bastille. Après des négociations avec le gouverneur de Launay, "
    "l'assaut est donné et la garnison capitule dans l'après-midi."
)

PCM = b"\x00\x01" * 8


def _inline_response(data, mime_type):
    inline = SimpleNamespace(data=data, mime_type=mime_type)
    part = SimpleNamespace(inline_data=inline)
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


class FakeCompletions:
    def __init__(self, content=None, exc=None):
        self.content = content
        self.exc = exc
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.exc:
            raise self.exc
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeModels:
    """Answers image prompts with PNG bytes and TTS prompts with raw PCM."""

    def __init__(self):
        self.calls = []
        self.fail_on = set()

    async def generate_content(self, model, contents, config=None):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if any(marker in contents for marker in self.fail_on):
            raise RuntimeError("backend unavailable")
        if model == generator.TTS_MODEL:
            return _inline_response(PCM, "audio/L16;codec=pcm;rate=24000")
        return _inline_response(b"\x89PNG fake", "image/png")


@pytest.fixture
def story_payload():
    return copy.deepcopy(STORY_PAYLOAD)


@pytest.fixture
def story(story_payload):
    return Story.model_validate(story_payload)


@pytest.fixture
def fake_text(monkeypatch):
    completions = FakeCompletions(content=json.dumps(STORY_PAYLOAD))
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    monkeypatch.setattr(generator, "text_client", lambda: client)
    return completions


@pytest.fixture
def fake_media(monkeypatch):
    models = FakeModels()
    client = SimpleNamespace(aio=SimpleNamespace(models=models))
    monkeypatch.setattr(generator, "media_client", lambda: client)
    return models
