import pytest
from fastapi.testclient import TestClient

from cinetexte import main
from cinetexte.main import app
from cinetexte.pipeline import Pipeline

from conftest import SOURCE_TEXT


@pytest.fixture
def client(fake_text, fake_media):
    main.SESSIONS.clear()
    with TestClient(app) as c:
        yield c
    main.SESSIONS.clear()


def _new(client, **overrides):
    body = {"text": SOURCE_TEXT, "style": "epic", "format": "movie", **overrides}
    return client.post("/new", json=body)


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_index_shows_form_and_sets_cookie(client):
    r = client.get("/")
    assert r.status_code == 200
    assert "Texte source" in r.text
    assert "Polar Noir" in r.text
    assert "sid" in r.cookies


def test_short_text_is_rejected(client):
    r = _new(client, text="Trop court.")
    assert r.status_code == 422


@pytest.mark.parametrize("field, value", [("style", "baroque"), ("format", "opera"), ("lang", "de")])
def test_unknown_choices_are_rejected(client, field, value):
    assert _new(client, **{field: value}).status_code == 422


def test_new_story_runs_to_ready(client):
    assert _new(client).status_code == 200

    state = client.get("/state").json()
    assert state["status"] == "ready"
    assert state["progress"] == 100
    assert state["error"] is None
    story = state["story"]
    assert story["title"] == "La prise de la Bastille"
    assert story["scenes"][0]["audioUrl"].startswith("data:audio/wav;base64,")
    assert story["characters"][0]["avatarUrl"].startswith("data:image/png;base64,")
    assert state["player"]["position"] == "1 / 3"


def test_ready_page_renders_player(client):
    _new(client)
    r = client.get("/")
    assert "La prise de la Bastille" in r.text
    assert "Pauline Léon" in r.text
    assert "Narrateur" in r.text
    assert "Scène 1 / 3" in r.text


def test_structure_failure_surfaces_error(client, fake_text):
    fake_text.content = "rien d'exploitable"
    _new(client)
    state = client.get("/state").json()
    assert state["status"] == "idle"
    assert state["error"]
    assert state["story"] is None
    assert state["player"] is None
    assert state["error"] in client.get("/").text


def test_player_actions(client):
    _new(client)
    assert client.post("/player/previous").json()["index"] == 0

    snap = client.post("/player/facts").json()
    assert snap["showFacts"] is True

    snap = client.post("/player/play").json()
    assert snap["isPlaying"] is True

    snap = client.post("/player/next").json()
    assert snap == {
        "index": 1, "position": "2 / 3", "isPlaying": False,
        "showFacts": False, "hasPrevious": True, "hasNext": True,
    }

    client.post("/player/playing")
    assert client.post("/player/ended").json()["isPlaying"] is False

    assert client.post("/player/scene/42").json()["index"] == 2
    assert client.post("/player/next").json()["index"] == 2


def test_unknown_player_action(client):
    _new(client)
    assert client.post("/player/rewind").status_code == 404


def test_player_needs_a_ready_story(client):
    client.get("/")
    assert client.post("/player/next").status_code == 400


def test_reset_returns_to_form(client):
    _new(client)
    state = client.post("/reset").json()
    assert state == {"status": "idle", "progress": 0, "error": None, "story": None, "player": None}
    assert "Texte source" in client.get("/").text


def test_new_starts_analyzing_and_refuses_a_second_run(client, monkeypatch):
    async def stalled(self, *args):
        return None
    monkeypatch.setattr(Pipeline, "execute", stalled)

    first = _new(client)
    assert first.status_code == 200
    assert (first.json()["status"], first.json()["progress"]) == ("analyzing", 10)

    assert _new(client).status_code == 409
    assert client.post("/reset").status_code == 409
    assert client.get("/state").json()["status"] == "analyzing"


def test_sessions_are_only_created_by_new(client):
    client.get("/")
    client.get("/state")
    client.post("/reset")
    client.cookies.clear()
    client.cookies.set("sid", "forged")
    assert client.get("/state").json()["status"] == "idle"
    assert main.SESSIONS == {}

    _new(client)
    assert list(main.SESSIONS) == ["forged"]


def test_page_render_resets_play_flag(client):
    _new(client)
    assert client.post("/player/play").json()["isPlaying"] is True
    client.get("/")
    assert client.get("/state").json()["player"]["isPlaying"] is False
