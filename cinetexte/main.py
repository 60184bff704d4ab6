import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from uuid import uuid4

from fastapi import BackgroundTasks, Body, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, field_validator

from .generator import FORMATS, LANG_HINT, STYLES, narrator_name
from .log import logger
from .models import Status
from .pipeline import Pipeline
from .player import Player

ALLOWED_ORIGINS = [o for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o]
COOKIE_SECURE   = os.getenv("COOKIE_SECURE", "0") == "1"
MIN_SOURCE_CHARS = 50

app = FastAPI(title="CinéTexte", docs_url=None, redoc_url=None, openapi_url=None)
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

if ALLOWED_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

@app.get("/health")
def health():
    return {"ok": True}

# ─────────────────────────────────────────────
# in-memory sessions
# ─────────────────────────────────────────────
@dataclass
class Session:
    pipeline: Pipeline = field(default_factory=Pipeline)
    player: Optional[Player] = None

    def current_player(self) -> Optional[Player]:
        story = self.pipeline.story
        if self.pipeline.state.status != Status.READY or story is None or not story.scenes:
            return None
        if self.player is None or self.player.story is not story:
            self.player = Player(story)
        return self.player

SESSIONS: dict[str, Session] = {}

# ─────────────────────────────────────────────
# cookie helpers
# ─────────────────────────────────────────────
def _set_sid_cookie(resp: Response, sid: str) -> None:
    resp.set_cookie(
        "sid", sid,
        max_age=60*60*24,
        path="/",
        samesite="lax", secure=COOKIE_SECURE, httponly=True,
    )

def get_sid(req: Request, resp: Response, *, create: bool = True) -> Optional[str]:
    sid = req.cookies.get("sid")
    if sid or not create:
        return sid
    sid = uuid4().hex
    _set_sid_cookie(resp, sid)
    return sid

def get_session(req: Request, resp: Response) -> Session:
    sid = get_sid(req, resp)
    return SESSIONS.setdefault(sid, Session())

def find_session(req: Request) -> Optional[Session]:
    return SESSIONS.get(req.cookies.get("sid") or "")

def ready_player(req: Request) -> Player:
    session = find_session(req)
    player = session.current_player() if session else None
    if player is None:
        raise HTTPException(400, "Aucune histoire prête à être jouée.")
    return player

def state_payload(session: Session) -> dict:
    pipeline = session.pipeline
    player = session.current_player()
    return {
        **pipeline.state.model_dump(mode="json"),
        "story": pipeline.story.model_dump(mode="json", by_alias=True) if pipeline.story else None,
        "player": player.snapshot() if player else None,
    }

# ─────────────────────────────────────────────
# Pydantic bodies
# ─────────────────────────────────────────────
class NewStoryIn(BaseModel):
    text: str
    style: str = "epic"
    format: str = "movie"
    lang: str = "fr"

    @field_validator("text")
    @classmethod
    def _long_enough(cls, v: str) -> str:
        if len(v.strip()) < MIN_SOURCE_CHARS:
            raise ValueError(
                f"Veuillez fournir au moins {MIN_SOURCE_CHARS} caractères de texte "
                "pour une histoire significative."
            )
        return v

    @field_validator("style")
    @classmethod
    def _known_style(cls, v: str) -> str:
        if v not in STYLES:
            raise ValueError(f"style inconnu : {v}")
        return v

    @field_validator("format")
    @classmethod
    def _known_format(cls, v: str) -> str:
        if v not in FORMATS:
            raise ValueError(f"format inconnu : {v}")
        return v

    @field_validator("lang")
    @classmethod
    def _known_lang(cls, v: str) -> str:
        if v not in LANG_HINT:
            raise ValueError(f"langue non prise en charge : {v}")
        return v

# ─────────────────────────────────────────────
# page
# ─────────────────────────────────────────────
@app.get("/")
def index(req: Request):
    session = find_session(req) or Session()
    pipeline = session.pipeline
    player = session.current_player()
    if player:
        # a freshly rendered <audio> element starts paused
        player.on_pause()
    page = templates.TemplateResponse(req, "index.html", {
        "state"  : pipeline.state,
        "story"  : pipeline.story,
        "player" : player,
        "styles" : STYLES,
        "formats": FORMATS,
        "running": pipeline.running,
        "narrator": narrator_name(pipeline.lang),
    })
    if not req.cookies.get("sid"):
        _set_sid_cookie(page, uuid4().hex)
    return page

# ─────────────────────────────────────────────
# /new · /state · /reset
# ─────────────────────────────────────────────
@app.post("/new")
async def new_story(
    req : Request,
    resp: Response,
    tasks: BackgroundTasks,
    body: NewStoryIn = Body(...),
):
    session = get_session(req, resp)
    if session.pipeline.running:
        raise HTTPException(409, "Une conversion est déjà en cours.")

    session.pipeline.start(body.text, body.style, body.format, body.lang)
    session.player = None
    tasks.add_task(session.pipeline.execute, body.text, body.style, body.format, body.lang)
    logger.info("new story queued ({} chars)", len(body.text))
    return state_payload(session)

@app.get("/state")
def state(req: Request):
    return state_payload(find_session(req) or Session())

@app.post("/reset")
def reset(req: Request):
    session = find_session(req)
    if session is None:
        return state_payload(Session())
    if session.pipeline.running:
        raise HTTPException(409, "Une conversion est déjà en cours.")
    session.pipeline.reset()
    session.player = None
    return state_payload(session)

# ─────────────────────────────────────────────
# /player
# ─────────────────────────────────────────────
PLAYER_ACTIONS = {
    "next"    : Player.next,
    "previous": Player.previous,
    "play"    : Player.toggle_play,
    "playing" : Player.on_play,
    "facts"   : Player.toggle_facts,
    "ended"   : Player.on_ended,
    "pause"   : Player.on_pause,
}

@app.post("/player/scene/{index}")
def player_jump(index: int, req: Request):
    player = ready_player(req)
    player.go_to(index)
    return player.snapshot()

@app.post("/player/{action}")
def player_action(action: str, req: Request):
    handler = PLAYER_ACTIONS.get(action)
    if handler is None:
        raise HTTPException(404, f"action inconnue : {action}")
    player = ready_player(req)
    handler(player)
    return player.snapshot()
