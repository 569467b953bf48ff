"""Narrative graph: structural rules and the node/edge projection.

Chapters are nodes. A chapter leaves by exactly one of:

    choices          one edge per choice, labelled with the choice text
    next_chapter_id  a single unlabelled edge
    (neither)        terminal chapter, the story ends here

Both shapes at once, or any reference to a chapter id missing from the
project, is a structural error. These rules are checked where data enters
(AI import, manual edits); the player re-checks a chapter before entering it.

Edges are always derived from the chapters, never stored separately.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Collection

from pydantic import BaseModel, Field

from novel_studio.errors import StructuralError
from novel_studio.models import ChapterOutline, ProjectOutline

NODE_SPACING = 150


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

def is_branching(chapter: ChapterOutline) -> bool:
    return bool(chapter.choices)


def is_linear(chapter: ChapterOutline) -> bool:
    return bool(chapter.next_chapter_id) and not chapter.choices


def is_terminal(chapter: ChapterOutline) -> bool:
    return not chapter.choices and not chapter.next_chapter_id


def successors(chapter: ChapterOutline) -> list[str]:
    """Chapter ids reachable in one step, in choice order."""
    if chapter.choices:
        return [c.target_chapter_id for c in chapter.choices]
    if chapter.next_chapter_id:
        return [chapter.next_chapter_id]
    return []


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def chapter_problems(chapter: ChapterOutline, chapter_ids: Collection[str]) -> list[str]:
    """Return human-readable invariant violations for a single chapter."""
    problems: list[str] = []
    cid = chapter.id

    if chapter.choices and chapter.next_chapter_id:
        problems.append(f"chapter {cid!r} has both choices and nextChapterId")

    if chapter.next_chapter_id and chapter.next_chapter_id not in chapter_ids:
        problems.append(
            f"chapter {cid!r} nextChapterId {chapter.next_chapter_id!r} does not exist"
        )

    for i, choice in enumerate(chapter.choices):
        if not choice.text.strip():
            problems.append(f"chapter {cid!r} choice {i} has no text")
        if choice.target_chapter_id not in chapter_ids:
            problems.append(
                f"chapter {cid!r} choice {i} targets missing chapter "
                f"{choice.target_chapter_id!r}"
            )

    seen: set[str] = set()
    for dialog in chapter.dialogs:
        if dialog.id in seen:
            problems.append(f"chapter {cid!r} has duplicate dialog id {dialog.id!r}")
        seen.add(dialog.id)

    return problems


def project_problems(project: ProjectOutline) -> list[str]:
    """Return every invariant violation in the project, chapters in map order."""
    problems: list[str] = []
    if not project.chapters:
        problems.append("project has no chapters")
    elif project.start_chapter_id not in project.chapters:
        problems.append(f"start chapter {project.start_chapter_id!r} does not exist")

    ids = project.chapters.keys()
    for key, chapter in project.chapters.items():
        if key != chapter.id:
            problems.append(f"chapter keyed {key!r} has id {chapter.id!r}")
        problems.extend(chapter_problems(chapter, ids))
    return problems


def validate_chapter(chapter: ChapterOutline, chapter_ids: Collection[str]) -> None:
    problems = chapter_problems(chapter, chapter_ids)
    if problems:
        raise StructuralError(problems)


def validate_project(project: ProjectOutline) -> None:
    """Raise StructuralError listing every violation, or return None."""
    problems = project_problems(project)
    if problems:
        raise StructuralError(problems)


def reachable_chapters(project: ProjectOutline) -> list[str]:
    """Breadth-first walk from the start chapter; dangling targets are skipped."""
    start = project.start_chapter_id
    if start not in project.chapters:
        return []
    order = [start]
    seen = {start}
    queue = deque([start])
    while queue:
        chapter = project.chapters[queue.popleft()]
        for target in successors(chapter):
            if target in project.chapters and target not in seen:
                seen.add(target)
                order.append(target)
                queue.append(target)
    return order


def unreachable_chapters(project: ProjectOutline) -> list[str]:
    reachable = set(reachable_chapters(project))
    return [cid for cid in project.chapters if cid not in reachable]


# ---------------------------------------------------------------------------
# Node / edge projection for the visual editor
# ---------------------------------------------------------------------------

class Position(BaseModel):
    x: float = 0
    y: float = 0


class GraphNode(BaseModel):
    id: str
    type: str = "storyNode"
    position: Position = Field(default_factory=Position)
    data: ChapterOutline


class GraphEdge(BaseModel):
    id: str
    source: str
    target: str
    label: str | None = None
    choice_index: int | None = None
    animated: bool = True


def project_nodes(
    project: ProjectOutline, positions: dict[str, Position] | None = None
) -> list[GraphNode]:
    """One node per chapter. Unplaced chapters stack vertically in map order."""
    positions = positions or {}
    nodes = []
    for index, chapter in enumerate(project.chapters.values()):
        pos = positions.get(chapter.id) or Position(x=0, y=index * NODE_SPACING)
        nodes.append(GraphNode(id=chapter.id, position=pos, data=chapter))
    return nodes


def chapter_edges(chapter: ChapterOutline) -> list[GraphEdge]:
    if chapter.choices:
        return [
            GraphEdge(
                id=f"{chapter.id}-{choice.target_chapter_id}-{i}",
                source=chapter.id,
                target=choice.target_chapter_id,
                label=choice.text,
                choice_index=i,
            )
            for i, choice in enumerate(chapter.choices)
        ]
    if chapter.next_chapter_id:
        return [
            GraphEdge(
                id=f"{chapter.id}-{chapter.next_chapter_id}",
                source=chapter.id,
                target=chapter.next_chapter_id,
            )
        ]
    return []


def project_edges(project: ProjectOutline) -> list[GraphEdge]:
    edges: list[GraphEdge] = []
    for chapter in project.chapters.values():
        edges.extend(chapter_edges(chapter))
    return edges
