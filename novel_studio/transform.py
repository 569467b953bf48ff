"""Map loosely-typed AI JSON into the strict project model.

AI output is untrusted: ids may be numbers, fields may be missing, entries
may not be objects at all. Everything is coerced or defaulted here so
nothing downstream sees raw AI data. Invariant violations that cannot be
coerced (dangling links, both transition shapes) are reported as
StructuralError, never repaired by guessing.
"""

from __future__ import annotations

import logging
from typing import Any

from novel_studio.errors import StructuralError, ValidationError
from novel_studio.graph import unreachable_chapters, validate_project
from novel_studio.models import (
    AI_CHARACTER_PREFIX,
    PLACEHOLDER_AVATAR,
    PLACEHOLDER_BACKGROUND,
    Background,
    ChapterOutline,
    Character,
    CharacterCard,
    Choice,
    Dialog,
    ProjectConfig,
    ProjectOutline,
    USER_CHARACTER_PREFIX,
)

logger = logging.getLogger(__name__)


def _str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _opt_str(value: Any) -> str | None:
    """Non-empty string or None; AI output uses null, "" and missing interchangeably."""
    if value is None or value == "":
        return None
    return str(value)


def _items(data: Any, key: str) -> list[dict[str, Any]]:
    """Dict entries of data[key]; anything else is dropped with a warning."""
    if not isinstance(data, dict):
        return []
    raw = data.get(key) or []
    if not isinstance(raw, list):
        logger.warning("AI %s is not a list, ignoring", key)
        return []
    items = []
    for entry in raw:
        if isinstance(entry, dict) and entry.get("id") not in (None, ""):
            items.append(entry)
        else:
            logger.warning("Skipping malformed AI %s entry: %r", key, entry)
    return items


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


# ── Outline ──────────────────────────────────────────────


def validate_outline_request(config: ProjectConfig, user_characters: list[CharacterCard]) -> None:
    """Reject incomplete form data before anything is sent upstream."""
    for field in ("title", "worldview", "plot"):
        if not getattr(config, field).strip():
            raise ValidationError(f"{field} must not be empty", field=field)
    if not user_characters:
        raise ValidationError("at least one character is required", field="characters")
    for card in user_characters:
        if not card.name.strip():
            raise ValidationError(f"character {card.id!r} has no name", field="characters")
        if not card.id.startswith(USER_CHARACTER_PREFIX):
            raise ValidationError(
                f"character id {card.id!r} must start with {USER_CHARACTER_PREFIX!r}",
                field="characters",
            )


def _character(entry: dict[str, Any]) -> Character:
    return Character(
        id=_str(entry["id"]),
        name=_str(entry.get("name")) or _str(entry["id"]),
        avatar=_str(entry.get("avatar")) or PLACEHOLDER_AVATAR,
        description=_str(entry.get("description")),
        personality=_opt_str(entry.get("personality")),
        background=_opt_str(entry.get("background")),
        is_user_created=False,
    )


def _chapter(entry: dict[str, Any]) -> ChapterOutline:
    cid = _str(entry["id"])
    choices = []
    raw_choices = entry.get("choices") or []
    for raw in raw_choices if isinstance(raw_choices, list) else []:
        if not isinstance(raw, dict):
            logger.warning("Skipping malformed choice in chapter %s: %r", cid, raw)
            continue
        choices.append(Choice(
            text=_str(raw.get("text")),
            target_chapter_id=_str(raw.get("targetChapterId")),
        ))
    return ChapterOutline(
        id=cid,
        title=_str(entry.get("title")) or f"Chapter {cid}",
        summary=_str(entry.get("summary")),
        key_events=_str_list(entry.get("keyEvents")),
        involved_characters=_str_list(entry.get("involvedCharacters")),
        background_id=_opt_str(entry.get("backgroundId")),
        next_chapter_id=_opt_str(entry.get("nextChapterId")),
        choices=choices,
    )


def to_project_outline(
    ai_json: Any,
    config: ProjectConfig,
    user_characters: list[CharacterCard],
) -> ProjectOutline:
    """Build a validated ProjectOutline from an outline-generation response."""
    characters: dict[str, Character] = {}
    for card in user_characters:
        characters[card.id] = Character(
            id=card.id,
            name=card.name,
            avatar=PLACEHOLDER_AVATAR,
            description=card.description,
            personality=card.personality,
            background=card.background,
            is_user_created=True,
        )

    for entry in _items(ai_json, "characters"):
        character = _character(entry)
        if character.id in characters:
            logger.debug("AI character %s collides with an existing one, keeping the original", character.id)
            continue
        if not character.id.startswith(AI_CHARACTER_PREFIX):
            logger.warning("AI character id %r is outside the %s namespace", character.id, AI_CHARACTER_PREFIX)
        characters[character.id] = character

    backgrounds: dict[str, Background] = {}
    for entry in _items(ai_json, "backgrounds"):
        bid = _str(entry["id"])
        backgrounds[bid] = Background(
            id=bid,
            url=_str(entry.get("url")) or PLACEHOLDER_BACKGROUND,
            description=_str(entry.get("description")),
        )

    chapters: dict[str, ChapterOutline] = {}
    for entry in _items(ai_json, "chapters"):
        chapter = _chapter(entry)
        if chapter.id in chapters:
            raise StructuralError(f"AI returned chapter {chapter.id!r} more than once")
        chapters[chapter.id] = chapter

    if not chapters:
        raise StructuralError("AI returned no chapters")

    project = ProjectOutline(
        config=config,
        characters=characters,
        backgrounds=backgrounds,
        chapters=chapters,
        start_chapter_id=next(iter(chapters)),
    )
    validate_project(project)

    orphans = unreachable_chapters(project)
    if orphans:
        logger.warning("Chapters unreachable from %s: %s", project.start_chapter_id, orphans)
    return project


# ── Dialogs ──────────────────────────────────────────────


def to_dialogs(ai_json: Any, known_role_ids: set[str] | None = None) -> list[Dialog]:
    """Normalise a dialog-generation response into ordered Dialog lines.

    Accepts {"dialogs": [...]} or a bare list. Missing ids are numbered,
    duplicate ids get a suffix, unknown speakers become narration.
    """
    raw = ai_json.get("dialogs") if isinstance(ai_json, dict) else ai_json
    if not isinstance(raw, list):
        raise StructuralError("AI dialog response has no dialogs list")

    dialogs: list[Dialog] = []
    taken: set[str] = set()
    for index, entry in enumerate(raw, start=1):
        if not isinstance(entry, dict):
            logger.warning("Skipping malformed AI dialog entry: %r", entry)
            continue
        text = _str(entry.get("text")).strip()
        if not text:
            continue

        role_id = _str(entry.get("roleId"))
        if role_id and known_role_ids is not None and role_id not in known_role_ids:
            logger.warning("Dialog speaker %r is not a known character, using narration", role_id)
            role_id = ""

        base = _str(entry.get("id")) or f"dialog-{index}"
        dialog_id, n = base, 2
        while dialog_id in taken:
            dialog_id = f"{base}-{n}"
            n += 1
        taken.add(dialog_id)
        dialogs.append(Dialog(id=dialog_id, role_id=role_id, text=text))
    return dialogs
