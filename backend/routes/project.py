"""Current-project endpoints: persistence, AI generation and graph editing.

Every edit loads the stored project into an EditorStore, applies one named
operation and saves the result, so the graph invariants are checked on each
write. Error mapping:

    404  no project / unknown chapter, choice, dialog or edge
    400  incomplete form data
    409  generation superseded by a newer request for the same run
    422  graph invariant violation
    502  LLM transport failure or unparseable LLM output
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError as PydanticValidationError

from novel_studio.editor import EditorStore
from novel_studio.errors import ParseError, StructuralError, ValidationError
from novel_studio.graph import unreachable_chapters
from novel_studio.models import ChapterOutline, ProjectConfig, ProjectOutline
from novel_studio.prompts import (
    DIALOGS_SYSTEM_INSTRUCTION,
    OUTLINE_SYSTEM_INSTRUCTION,
    OutlineRequest,
    build_dialogs_prompt,
    build_dialogs_request,
    build_outline_prompt,
    format_character_cards,
)
from novel_studio.transform import to_dialogs, to_project_outline, validate_outline_request

from backend import llm, storage

from .models import (
    ChoiceBody,
    DialogBody,
    GenerateProjectBody,
    NextChapterBody,
    StartChapterBody,
    UpdateChapter,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _load() -> ProjectOutline:
    try:
        project = storage.get_project()
    except StructuralError as e:
        raise HTTPException(422, f"Stored project is invalid: {e}")
    if project is None:
        raise HTTPException(404, "Project not found")
    return project


@contextmanager
def _editing() -> Iterator[EditorStore]:
    """Yield a store over the saved project; persist it if the edit succeeds."""
    store = EditorStore(_load())
    try:
        yield store
    except StructuralError as e:
        raise HTTPException(422, str(e))
    except (KeyError, IndexError) as e:
        raise HTTPException(404, str(e.args[0]) if e.args else "Not found")
    except (ValueError, PydanticValidationError) as e:
        raise HTTPException(400, str(e))
    storage.save_project(store.to_project())


async def _generate(run: str, prompt: str, system_instruction: str):
    gw = llm.gateway(run)
    try:
        data = await gw.generate(prompt, system_instruction, expect="object", stage=run)
    except ParseError as e:
        raise HTTPException(502, str(e))
    finally:
        llm.release(run)
    if data is None:
        if gw.last_error is None:
            raise HTTPException(409, "Request superseded by a newer one")
        raise HTTPException(502, gw.last_error)
    return data


# ── Persistence ──────────────────────────────────────────


@router.get("/project")
async def get_project():
    """Get the current project."""
    return _load().dump()


@router.put("/project")
async def put_project(project: ProjectOutline):
    """Replace the current project wholesale."""
    try:
        storage.save_project(project)
    except StructuralError as e:
        raise HTTPException(422, str(e))
    return project.dump()


@router.delete("/project")
async def delete_project():
    """Delete the current project."""
    if not storage.delete_project():
        raise HTTPException(404, "Project not found")
    return {"ok": True}


@router.get("/project/graph")
async def get_graph():
    """Node/edge projection of the chapter graph for the visual editor."""
    store = EditorStore(_load())
    return {
        "nodes": [n.model_dump(by_alias=True, exclude_none=True) for n in store.nodes],
        "edges": [e.model_dump(exclude_none=True) for e in store.edges],
        "startChapterId": store.project.start_chapter_id,
        "unreachable": unreachable_chapters(store.project),
    }


# ── Generation ───────────────────────────────────────────


@router.post("/project/generate")
async def generate_project(body: GenerateProjectBody):
    """Generate an outline from the creation form and save it as the current project."""
    config = ProjectConfig(
        title=body.title,
        worldview=body.worldview,
        characters=format_character_cards(body.characters),
        plot=body.plot,
    )
    try:
        validate_outline_request(config, body.characters)
    except ValidationError as e:
        raise HTTPException(400, str(e))

    request = OutlineRequest(**config.model_dump())
    data = await _generate("outline", build_outline_prompt(request), OUTLINE_SYSTEM_INSTRUCTION)
    try:
        project = to_project_outline(data, config, body.characters)
    except StructuralError as e:
        logger.warning("Generated outline rejected: %s", e)
        raise HTTPException(422, str(e))
    storage.save_project(project)
    return project.dump()


@router.post("/project/chapters/{chapter_id}/dialogs")
async def generate_chapter_dialogs(chapter_id: str, replace: bool = False):
    """Generate dialog lines for a chapter and append them (or replace existing ones)."""
    project = _load()
    try:
        request = build_dialogs_request(project, chapter_id)
    except KeyError:
        raise HTTPException(404, "Chapter not found")
    except PydanticValidationError as e:
        raise HTTPException(400, str(e))

    data = await _generate(
        f"dialogs:{chapter_id}", build_dialogs_prompt(request), DIALOGS_SYSTEM_INSTRUCTION
    )
    try:
        dialogs = to_dialogs(data, set(project.characters))
    except StructuralError as e:
        raise HTTPException(502, str(e))

    # Re-read: the project may have been edited while the model was writing.
    with _editing() as store:
        if replace:
            store.update_chapter(chapter_id, dialogs=[])
        chapter = store.append_dialogs(chapter_id, dialogs)
    return chapter.dump()


# ── Chapters (nodes) ─────────────────────────────────────


@router.post("/project/chapters")
async def add_chapter(chapter: ChapterOutline):
    """Add a chapter node."""
    with _editing() as store:
        added = store.add_chapter(chapter)
    return added.dump()


@router.put("/project/chapters/{chapter_id}")
async def update_chapter(chapter_id: str, body: UpdateChapter):
    """Update chapter fields (transitions have their own endpoints)."""
    with _editing() as store:
        updated = store.update_chapter(chapter_id, **body.model_dump(exclude_unset=True))
    return updated.dump()


@router.delete("/project/chapters/{chapter_id}")
async def delete_chapter(chapter_id: str):
    """Delete a chapter and every link pointing at it."""
    with _editing() as store:
        store.delete_chapter(chapter_id)
    return {"ok": True}


@router.put("/project/start")
async def set_start_chapter(body: StartChapterBody):
    """Choose the chapter playback starts from."""
    with _editing() as store:
        store.set_start_chapter(body.chapter_id)
    return {"startChapterId": body.chapter_id}


# ── Transitions (edges) ──────────────────────────────────


@router.put("/project/chapters/{chapter_id}/next")
async def set_next_chapter(chapter_id: str, body: NextChapterBody):
    """Link a chapter linearly to another, or clear the link with null."""
    with _editing() as store:
        updated = store.set_next_chapter(chapter_id, body.target_chapter_id)
    return updated.dump()


@router.post("/project/chapters/{chapter_id}/choices")
async def add_choice(chapter_id: str, body: ChoiceBody):
    """Append a branch choice to a chapter."""
    with _editing() as store:
        updated = store.add_choice(chapter_id, body.text, body.target_chapter_id)
    return updated.dump()


@router.delete("/project/chapters/{chapter_id}/choices/{index}")
async def remove_choice(chapter_id: str, index: int):
    """Remove a branch choice by index."""
    with _editing() as store:
        updated = store.remove_choice(chapter_id, index)
    return updated.dump()


@router.delete("/project/edges/{edge_id}")
async def delete_edge(edge_id: str):
    """Delete the choice or next link behind a projected edge."""
    with _editing() as store:
        store.delete_edge(edge_id)
    return {"ok": True}


# ── Dialogs ──────────────────────────────────────────────


@router.post("/project/chapters/{chapter_id}/dialog")
async def add_dialog(chapter_id: str, body: DialogBody):
    """Append a single hand-written dialog line."""
    with _editing() as store:
        dialog = store.add_dialog(chapter_id, body.text, body.role_id)
    return dialog.dump()


@router.delete("/project/chapters/{chapter_id}/dialogs/{dialog_id}")
async def delete_dialog(chapter_id: str, dialog_id: str):
    """Delete a dialog line."""
    with _editing() as store:
        store.delete_dialog(chapter_id, dialog_id)
    return {"ok": True}
