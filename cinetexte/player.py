from __future__ import annotations

from .models import Scene, Story


class Player:
    """Scene-by-scene navigator over a finished story."""

    def __init__(self, story: Story) -> None:
        if not story.scenes:
            raise ValueError("a story needs at least one scene to be played")
        self.story = story
        self.index = 0
        self.is_playing = False
        self.show_facts = False

    @property
    def scene(self) -> Scene:
        return self.story.scenes[self.index]

    @property
    def has_previous(self) -> bool:
        return self.index > 0

    @property
    def has_next(self) -> bool:
        return self.index < len(self.story.scenes) - 1

    @property
    def position(self) -> str:
        return f"{self.index + 1} / {len(self.story.scenes)}"

    def go_to(self, index: int) -> None:
        index = min(max(index, 0), len(self.story.scenes) - 1)
        if index == self.index:
            return
        self.index = index
        self.is_playing = False
        self.show_facts = False

    def next(self) -> None:
        if self.has_next:
            self.go_to(self.index + 1)

    def previous(self) -> None:
        if self.has_previous:
            self.go_to(self.index - 1)

    def toggle_play(self) -> None:
        # nothing to play until the scene has narration
        if not self.scene.audio_url:
            return
        self.is_playing = not self.is_playing

    def on_play(self) -> None:
        if self.scene.audio_url:
            self.is_playing = True

    def on_pause(self) -> None:
        self.is_playing = False

    on_ended = on_pause

    def toggle_facts(self) -> None:
        self.show_facts = not self.show_facts

    def hide_facts(self) -> None:
        self.show_facts = False

    def snapshot(self) -> dict:
        return {
            "index": self.index,
            "position": self.position,
            "isPlaying": self.is_playing,
            "showFacts": self.show_facts,
            "hasPrevious": self.has_previous,
            "hasNext": self.has_next,
        }
