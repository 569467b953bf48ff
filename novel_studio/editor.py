"""Editor store: in-memory project state behind the visual graph editor.

The store owns one ProjectOutline. Callers never write fields directly;
every change goes through a named operation, which:

  1. applies the change to a copy of the affected chapter(s),
  2. validates the result against the graph invariants,
  3. commits, or raises StructuralError and leaves the project unchanged,
  4. re-derives `nodes` and `edges` from the chapters.

Node positions are layout state owned by the editor. They never affect the
story.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from novel_studio.errors import StructuralError
from novel_studio.graph import (
    GraphEdge,
    GraphNode,
    Position,
    project_edges,
    project_nodes,
    validate_chapter,
    validate_project,
)
from novel_studio.models import ChapterOutline, Choice, Dialog, ProjectOutline

logger = logging.getLogger(__name__)

_READONLY_FIELDS = {"id"}


class EditorStore:
    def __init__(self, project: ProjectOutline | None = None) -> None:
        self._project: ProjectOutline | None = None
        self._positions: dict[str, Position] = {}
        self.nodes: list[GraphNode] = []
        self.edges: list[GraphEdge] = []
        self.selected_node: str | None = None
        if project is not None:
            self.load_project(project)

    # ------------------------------------------------------------------
    # Project
    # ------------------------------------------------------------------

    @property
    def project(self) -> ProjectOutline:
        if self._project is None:
            raise RuntimeError("No project loaded; call load_project() first")
        return self._project

    def load_project(self, project: ProjectOutline) -> None:
        validate_project(project)
        self._project = project.model_copy(deep=True)
        self._positions = {}
        self.selected_node = None
        self._refresh()

    def to_project(self) -> ProjectOutline:
        """Deep copy of the current project, safe to persist."""
        return self.project.model_copy(deep=True)

    def chapter(self, chapter_id: str) -> ChapterOutline:
        chapter = self.project.chapters.get(chapter_id)
        if chapter is None:
            raise KeyError(f"Chapter not found: {chapter_id}")
        return chapter

    # ------------------------------------------------------------------
    # Nodes (chapters)
    # ------------------------------------------------------------------

    def add_chapter(self, chapter: ChapterOutline) -> ChapterOutline:
        if chapter.id in self.project.chapters:
            raise StructuralError(f"chapter {chapter.id!r} already exists")
        ids = set(self.project.chapters) | {chapter.id}
        validate_chapter(chapter, ids)
        self.project.chapters[chapter.id] = chapter.model_copy(deep=True)
        logger.debug("editor added chapter %s", chapter.id)
        self._refresh()
        return self.project.chapters[chapter.id]

    def update_chapter(self, chapter_id: str, **fields: Any) -> ChapterOutline:
        """Replace top-level fields of a chapter. The id cannot change."""
        bad = _READONLY_FIELDS.intersection(fields)
        if bad:
            raise ValueError(f"Cannot update read-only fields: {sorted(bad)}")
        current = self.chapter(chapter_id)
        data = current.model_dump()
        data.update(fields)
        updated = ChapterOutline.model_validate(data)
        return self._commit(updated)

    def delete_chapter(self, chapter_id: str) -> None:
        """Remove a chapter and every choice or next link pointing at it."""
        project = self.project
        self.chapter(chapter_id)
        if chapter_id == project.start_chapter_id:
            raise StructuralError(f"cannot delete start chapter {chapter_id!r}")

        del project.chapters[chapter_id]
        for other in project.chapters.values():
            if other.next_chapter_id == chapter_id:
                other.next_chapter_id = None
            other.choices = [c for c in other.choices if c.target_chapter_id != chapter_id]
        self._positions.pop(chapter_id, None)
        if self.selected_node == chapter_id:
            self.selected_node = None
        logger.debug("editor deleted chapter %s", chapter_id)
        self._refresh()

    def set_start_chapter(self, chapter_id: str) -> None:
        self.chapter(chapter_id)
        self.project.start_chapter_id = chapter_id
        self._refresh()

    # ------------------------------------------------------------------
    # Edges (transitions)
    # ------------------------------------------------------------------

    def set_next_chapter(self, chapter_id: str, target_chapter_id: str | None) -> ChapterOutline:
        """Make a chapter linear (or terminal with None). Refused on branching chapters."""
        chapter = self.chapter(chapter_id)
        if target_chapter_id and chapter.choices:
            raise StructuralError(
                f"chapter {chapter_id!r} has choices; remove them before linking a next chapter"
            )
        return self._commit(chapter.model_copy(update={"next_chapter_id": target_chapter_id or None}))

    def add_choice(self, chapter_id: str, text: str, target_chapter_id: str) -> ChapterOutline:
        """Append a choice. Refused on linear chapters."""
        chapter = self.chapter(chapter_id)
        if chapter.next_chapter_id:
            raise StructuralError(
                f"chapter {chapter_id!r} links to {chapter.next_chapter_id!r}; "
                "clear nextChapterId before adding choices"
            )
        choices = [*chapter.choices, Choice(text=text, target_chapter_id=target_chapter_id)]
        return self._commit(chapter.model_copy(update={"choices": choices}))

    def remove_choice(self, chapter_id: str, index: int) -> ChapterOutline:
        chapter = self.chapter(chapter_id)
        if not 0 <= index < len(chapter.choices):
            raise IndexError(f"Choice {index} not found in chapter {chapter_id}")
        choices = [c for i, c in enumerate(chapter.choices) if i != index]
        return self._commit(chapter.model_copy(update={"choices": choices}))

    def delete_edge(self, edge_id: str) -> None:
        """Remove the choice or next link a projected edge stands for."""
        for edge in self.edges:
            if edge.id != edge_id:
                continue
            if edge.choice_index is not None:
                self.remove_choice(edge.source, edge.choice_index)
            else:
                self.set_next_chapter(edge.source, None)
            return
        raise KeyError(f"Edge not found: {edge_id}")

    # ------------------------------------------------------------------
    # Dialogs
    # ------------------------------------------------------------------

    def add_dialog(self, chapter_id: str, text: str, role_id: str = "") -> Dialog:
        chapter = self.chapter(chapter_id)
        dialog = Dialog(id=_unique_dialog_id(chapter), role_id=role_id, text=text)
        self._commit(chapter.model_copy(update={"dialogs": [*chapter.dialogs, dialog]}))
        return dialog

    def append_dialogs(self, chapter_id: str, dialogs: list[Dialog]) -> ChapterOutline:
        """Append generated dialogs in order; ids clashing with existing lines are renamed."""
        chapter = self.chapter(chapter_id)
        merged = list(chapter.dialogs)
        taken = {d.id for d in merged}
        for dialog in dialogs:
            new_id = dialog.id
            n = 2
            while new_id in taken:
                new_id = f"{dialog.id}-{n}"
                n += 1
            taken.add(new_id)
            merged.append(dialog.model_copy(update={"id": new_id}))
        return self._commit(chapter.model_copy(update={"dialogs": merged}))

    def update_dialog(self, chapter_id: str, dialog_id: str, **fields: Any) -> Dialog:
        bad = _READONLY_FIELDS.intersection(fields)
        if bad:
            raise ValueError(f"Cannot update read-only fields: {sorted(bad)}")
        chapter = self.chapter(chapter_id)
        dialogs = list(chapter.dialogs)
        for i, dialog in enumerate(dialogs):
            if dialog.id == dialog_id:
                dialogs[i] = Dialog.model_validate({**dialog.model_dump(), **fields})
                self._commit(chapter.model_copy(update={"dialogs": dialogs}))
                return dialogs[i]
        raise KeyError(f"Dialog not found: {dialog_id}")

    def delete_dialog(self, chapter_id: str, dialog_id: str) -> None:
        chapter = self.chapter(chapter_id)
        dialogs = [d for d in chapter.dialogs if d.id != dialog_id]
        if len(dialogs) == len(chapter.dialogs):
            raise KeyError(f"Dialog not found: {dialog_id}")
        self._commit(chapter.model_copy(update={"dialogs": dialogs}))

    # ------------------------------------------------------------------
    # Selection and layout
    # ------------------------------------------------------------------

    def select_node(self, chapter_id: str | None) -> None:
        if chapter_id is not None:
            self.chapter(chapter_id)
        self.selected_node = chapter_id

    @property
    def selected_chapter(self) -> ChapterOutline | None:
        if self.selected_node is None:
            return None
        return self.project.chapters.get(self.selected_node)

    def move_node(self, chapter_id: str, x: float, y: float) -> None:
        self.chapter(chapter_id)
        self._positions[chapter_id] = Position(x=x, y=y)
        self._refresh()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _commit(self, chapter: ChapterOutline) -> ChapterOutline:
        validate_chapter(chapter, self.project.chapters.keys())
        self.project.chapters[chapter.id] = chapter
        self._refresh()
        return chapter

    def _refresh(self) -> None:
        self.nodes = project_nodes(self.project, self._positions)
        self.edges = project_edges(self.project)


def _unique_dialog_id(chapter: ChapterOutline) -> str:
    taken = {d.id for d in chapter.dialogs}
    base = f"dialog-{int(time.time() * 1000)}"
    new_id, n = base, 2
    while new_id in taken:
        new_id = f"{base}-{n}"
        n += 1
    return new_id
