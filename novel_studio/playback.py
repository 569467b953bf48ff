"""Playback engine: walks the narrative graph one dialog line at a time.

States:

    PRESENTING       showing dialog `dialog_index` of the current chapter
    AWAITING_CHOICE  past the last line of a branching chapter
    ENDED            past the last line of a terminal chapter

advance() moves to the next line, or resolves the chapter end: branching
chapters wait for choose_branch(), linear chapters enter their next chapter
at line 0, terminal chapters end. A chapter without dialogs resolves its end
as soon as it is entered.

Every chapter is validated before it is entered. A chapter that breaks a
graph invariant is refused with StructuralError and the player stays where
it was.
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel, Field

from novel_studio.errors import PlaybackError, StructuralError
from novel_studio.graph import is_terminal, validate_chapter
from novel_studio.models import Character, ChapterOutline, Choice, Dialog, ProjectOutline

logger = logging.getLogger(__name__)


class PlaybackState(str, Enum):
    PRESENTING = "presenting"
    AWAITING_CHOICE = "awaiting_choice"
    ENDED = "ended"


class HistoryEntry(BaseModel):
    chapter_id: str
    dialog_index: int


class PlaybackSnapshot(BaseModel):
    """Serialisable save slot."""

    chapter_id: str
    dialog_index: int
    state: PlaybackState
    history: list[HistoryEntry] = Field(default_factory=list)
    trail: list[HistoryEntry] = Field(default_factory=list)


class Player:
    """Single-reader state machine over a read-only ProjectOutline."""

    def __init__(self, project: ProjectOutline) -> None:
        self._project = project
        self.history: list[HistoryEntry] = []
        # positions back() can return to; history itself is never truncated
        self._trail: list[HistoryEntry] = []
        self._chapter_id, self._state = self._resolve_entry(project.start_chapter_id)
        self._dialog_index = 0

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def chapter_id(self) -> str:
        return self._chapter_id

    @property
    def dialog_index(self) -> int:
        return self._dialog_index

    @property
    def current_chapter(self) -> ChapterOutline:
        return self._project.chapters[self._chapter_id]

    @property
    def current_dialog(self) -> Dialog | None:
        dialogs = self.current_chapter.dialogs
        if 0 <= self._dialog_index < len(dialogs):
            return dialogs[self._dialog_index]
        return None

    @property
    def speaker(self) -> Character | None:
        """Character speaking the current line, or None for narration."""
        dialog = self.current_dialog
        if dialog is None or dialog.is_narration:
            return None
        return self._project.characters.get(dialog.role_id)

    @property
    def choices(self) -> list[Choice]:
        if self._state is not PlaybackState.AWAITING_CHOICE:
            return []
        return list(self.current_chapter.choices)

    @property
    def is_ended(self) -> bool:
        return self._state is PlaybackState.ENDED

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def advance(self) -> PlaybackState:
        """Show the next line, or resolve the end of the current chapter."""
        if self._state is not PlaybackState.PRESENTING:
            raise PlaybackError(f"cannot advance while {self._state.value}")

        chapter = self.current_chapter
        last_index = len(chapter.dialogs) - 1
        if self._dialog_index < last_index:
            self._record()
            self._dialog_index += 1
            return self._state

        if chapter.choices:
            self._record()
            self._state = PlaybackState.AWAITING_CHOICE
        elif chapter.next_chapter_id:
            self._move_to(chapter.next_chapter_id)
        else:
            self._record()
            self._state = PlaybackState.ENDED
            logger.debug("playback ended in chapter %s", chapter.id)
        return self._state

    def choose_branch(self, target_chapter_id: str) -> PlaybackState:
        if self._state is not PlaybackState.AWAITING_CHOICE:
            raise PlaybackError(f"no choice is pending while {self._state.value}")
        offered = [c.target_chapter_id for c in self.current_chapter.choices]
        if target_chapter_id not in offered:
            raise PlaybackError(
                f"chapter {self._chapter_id!r} does not offer {target_chapter_id!r}"
            )
        self._move_to(target_chapter_id)
        return self._state

    def back(self) -> bool:
        """Return to the previously presented line. False when at the start."""
        if not self._trail:
            return False
        previous = self._trail.pop()
        self.history.append(self._position())
        self._chapter_id = previous.chapter_id
        self._dialog_index = previous.dialog_index
        self._state = PlaybackState.PRESENTING
        return True

    def restart(self) -> None:
        chapter_id, state = self._resolve_entry(self._project.start_chapter_id)
        self.history.append(self._position())
        self._trail.clear()
        self._chapter_id, self._state = chapter_id, state
        self._dialog_index = 0

    # ------------------------------------------------------------------
    # Save slots
    # ------------------------------------------------------------------

    def snapshot(self) -> PlaybackSnapshot:
        return PlaybackSnapshot(
            chapter_id=self._chapter_id,
            dialog_index=self._dialog_index,
            state=self._state,
            history=list(self.history),
            trail=list(self._trail),
        )

    @classmethod
    def restore(cls, project: ProjectOutline, snapshot: PlaybackSnapshot) -> Player:
        chapter = project.chapters.get(snapshot.chapter_id)
        if chapter is None:
            raise StructuralError(f"saved chapter {snapshot.chapter_id!r} does not exist")
        validate_chapter(chapter, project.chapters.keys())
        if chapter.dialogs and not 0 <= snapshot.dialog_index < len(chapter.dialogs):
            raise PlaybackError(
                f"saved dialog index {snapshot.dialog_index} is out of range "
                f"for chapter {chapter.id!r}"
            )
        _check_saved_state(chapter, snapshot.state)
        player = cls.__new__(cls)
        player._project = project
        player.history = list(snapshot.history)
        player._trail = list(snapshot.trail)
        player._chapter_id = snapshot.chapter_id
        player._dialog_index = snapshot.dialog_index
        player._state = snapshot.state
        return player

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _position(self) -> HistoryEntry:
        return HistoryEntry(chapter_id=self._chapter_id, dialog_index=self._dialog_index)

    def _record(self) -> None:
        entry = self._position()
        self.history.append(entry)
        if self.current_dialog is not None:
            self._trail.append(entry)

    def _move_to(self, chapter_id: str) -> None:
        # Resolve first so a refused chapter leaves the player untouched.
        resolved, state = self._resolve_entry(chapter_id)
        self._record()
        self._chapter_id, self._state = resolved, state
        self._dialog_index = 0

    def _resolve_entry(self, chapter_id: str) -> tuple[str, PlaybackState]:
        """Find where entering `chapter_id` lands, following empty linear chapters."""
        chapters = self._project.chapters
        visited: set[str] = set()
        while True:
            if chapter_id in visited:
                raise StructuralError(
                    f"chapters without dialogs form a cycle through {chapter_id!r}"
                )
            visited.add(chapter_id)

            chapter = chapters.get(chapter_id)
            if chapter is None:
                raise StructuralError(f"chapter {chapter_id!r} does not exist")
            validate_chapter(chapter, chapters.keys())

            if chapter.dialogs:
                return chapter_id, PlaybackState.PRESENTING
            if chapter.choices:
                return chapter_id, PlaybackState.AWAITING_CHOICE
            if chapter.next_chapter_id:
                logger.debug("chapter %s has no dialogs, continuing", chapter_id)
                chapter_id = chapter.next_chapter_id
                continue
            return chapter_id, PlaybackState.ENDED


def _check_saved_state(chapter: ChapterOutline, state: PlaybackState) -> None:
    """A saved state must be one the chapter's shape can actually be in."""
    if state is PlaybackState.PRESENTING:
        ok = bool(chapter.dialogs)
    elif state is PlaybackState.AWAITING_CHOICE:
        ok = bool(chapter.choices)
    else:
        ok = is_terminal(chapter)
    if not ok:
        raise PlaybackError(
            f"saved state {state.value!r} does not fit chapter {chapter.id!r}"
        )
