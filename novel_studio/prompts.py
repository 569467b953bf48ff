"""Prompt builder: Handlebars templates for outline and dialog generation.

Rendering is pure: the same request always yields the same prompt and no
input is mutated. Requests are pydantic models so the HTTP layer can
validate client bodies (camelCase) straight into them.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pybars
from pydantic import Field

from novel_studio.models import CamelModel, CharacterCard, ProjectOutline

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

PREVIOUS_DIALOG_LIMIT = 3
UNKNOWN_CHAPTER = "Unknown chapter"
UNKNOWN_CHARACTER = "Unknown"


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_take(this, options, items, count):
    """{{#take array N}}...{{/take}}: iterate over the first N items."""
    result = []
    for item in list(items or [])[:int(count)]:
        result.extend(options["fn"](item))
    return result


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}}: iterate over the last N items."""
    result = []
    for item in list(items or [])[-int(count):]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "take": _helper_take,
    "last": _helper_last,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Requests ─────────────────────────────────────────────


class OutlineRequest(CamelModel):
    title: str = Field(min_length=1)
    worldview: str = Field(min_length=1)
    characters: str = Field(min_length=1)
    plot: str = Field(min_length=1)


class CharacterBrief(CamelModel):
    id: str
    name: str
    description: str = ""
    personality: str | None = None
    background: str | None = None


class ChoiceBrief(CamelModel):
    text: str
    target_chapter_title: str


class PreviousDialog(CamelModel):
    role_id: str = ""
    character_name: str = ""
    text: str


class DialogsRequest(CamelModel):
    # project context
    project_title: str = Field(min_length=1)
    worldview: str = Field(min_length=1)
    overall_plot: str = Field(min_length=1)
    characters: list[CharacterBrief] = Field(default_factory=list)

    # target chapter
    chapter_id: str = Field(min_length=1)
    chapter_title: str = Field(min_length=1)
    chapter_summary: str = Field(min_length=1)
    key_events: list[str] | None = None
    involved_character_ids: list[str] | None = None
    background_description: str | None = None

    # chapter relations
    next_chapter_title: str | None = None
    choices: list[ChoiceBrief] | None = None

    # preceding context
    previous_chapter_summary: str | None = None
    previous_dialogs: list[PreviousDialog] | None = None


# ── Templates ────────────────────────────────────────────

OUTLINE_SYSTEM_INSTRUCTION = (
    "You are a director of interactive fiction who plans non-linear, branching "
    "stories. You always answer with a single JSON object and nothing else."
)

DIALOGS_SYSTEM_INSTRUCTION = (
    "You are a professional game scriptwriter. You always answer with a single "
    "JSON object and nothing else."
)

OUTLINE_TEMPLATE = """Plan the chapter outline of an interactive story with real branching paths.

## Project
- **Title**: {{{title}}}
- **Worldview**: {{{worldview}}}
- **Main characters**:
{{{characters}}}
- **Overall plot**: {{{plot}}}

## Character rules (very important)
1. Characters defined by the user above must not be changed: keep their id, name, personality and background exactly.
2. You may add 1-3 supporting characters (antagonists, bystanders, NPCs) when the plot needs them.
3. User character ids use the form char-xxx. Characters you add use the form ai-char-xxx.

## Structure rules (strict)
1. The story must branch: include at least 1-2 decision points. It must not be a straight line.
2. Chapter ids: linear chapters are chapter-1, chapter-2; branch chapters carry the branch in the id, e.g. chapter-2-fight, chapter-2-escape.
3. Mutual exclusion:
   - A chapter with **choices** has `nextChapterId` set to null.
   - A linear chapter has `choices` set to `[]` and `nextChapterId` pointing at the next chapter.
   - Never set both `choices` and `nextChapterId`.
   - The final chapter(s) have neither.
4. Every `nextChapterId` and `targetChapterId` must be the id of a chapter in your output.

## Output format (strict JSON, no markdown fences)
{
  "characters": [
    { "id": "char-1", "name": "User character", "description": "as given", "personality": "as given", "background": "as given" },
    { "id": "ai-char-1", "name": "Supporting character", "description": "...", "personality": "...", "background": "..." }
  ],
  "backgrounds": [
    { "id": "bg-1", "url": "", "description": "..." }
  ],
  "chapters": [
    {
      "id": "chapter-1",
      "title": "Prologue: The Fork",
      "summary": "The hero stands at a crossroads...",
      "keyEvents": ["Meets the enemy", "Must choose"],
      "involvedCharacters": ["char-1"],
      "backgroundId": "bg-1",
      "nextChapterId": null,
      "choices": [
        { "text": "Fight head-on", "targetChapterId": "chapter-2-fight" },
        { "text": "Sneak past", "targetChapterId": "chapter-2-stealth" }
      ]
    },
    { "id": "chapter-2-fight", "title": "Clash", "summary": "...", "nextChapterId": "chapter-3", "choices": [] },
    { "id": "chapter-2-stealth", "title": "In the Shadows", "summary": "...", "nextChapterId": "chapter-3", "choices": [] },
    { "id": "chapter-3", "title": "Same Destination", "summary": "...", "nextChapterId": null, "choices": [] }
  ]
}

Begin:"""

DIALOGS_TEMPLATE = """Write the dialog for one chapter of an interactive story.

# Project
## Title
{{{project_title}}}

## Worldview
{{{worldview}}}

## Overall plot
{{{overall_plot}}}

# Current chapter
- **Title**: {{{chapter_title}}}
- **Summary**: {{{chapter_summary}}}
{{#if background_description}}- **Scene**: {{{background_description}}}
{{/if}}{{#if key_events}}
## Key events
{{#each key_events}}{{{n}}}. {{{text}}}
{{/each}}{{/if}}{{#if choices}}
## Branch choices
{{#each choices}}- "{{{text}}}" -> {{{target_chapter_title}}}
{{/each}}{{/if}}{{#if next_chapter_title}}
## Next chapter
{{{next_chapter_title}}}
{{/if}}
# Characters
{{#each characters}}### {{{name}}} ({{{id}}})
{{#if description}}   Description: {{{description}}}
{{/if}}{{#if personality}}   Personality: {{{personality}}}
{{/if}}{{#if background}}   Background: {{{background}}}
{{/if}}
{{/each}}{{#if previous_chapter_summary}}
# Previously
{{{previous_chapter_summary}}}
{{/if}}{{#if previous_dialogs}}
## End of the previous chapter
{{#last previous_dialogs 3}}{{{line}}}
{{/last}}{{/if}}
# Requirements
1. Write 8-15 dialog lines.
2. Narration: open with the scene and mood, use it for actions and expressions, close with a transition.
3. Each character speaks in a voice matching their personality; interactions feel natural.
4. Cover the key events and lead naturally into the branch choices, if any.
5. Ground descriptions in the worldview.

# Output format
Return pure JSON:
{
  "dialogs": [
    { "id": "dialog-1", "text": "line text", "roleId": "char-1" }
  ]
}

Notes:
- An empty or missing roleId is narration.
- roleId must be one of the character ids above.
- Every dialog id must be unique.

Begin:"""


# ── Builders ─────────────────────────────────────────────


def format_character_cards(cards: list[CharacterCard]) -> str:
    """Render user character cards as the free-text `characters` field."""
    blocks = []
    for card in cards:
        blocks.append(
            f"[Character ID]: {card.id}\n"
            f"[Name]: {card.name}\n"
            f"[Description]: {card.description}\n"
            f"[Personality]: {card.personality}\n"
            f"[Background]: {card.background}"
        )
    return "\n\n".join(blocks)


def build_outline_prompt(request: OutlineRequest) -> str:
    return render_prompt(OUTLINE_TEMPLATE, request.model_dump())


def dialogs_context(request: DialogsRequest) -> dict[str, Any]:
    """Template variables for the dialog prompt.

    Only involved characters are listed (all when none are named); previous
    dialog lines are pre-formatted, narration marked as such.
    """
    if request.involved_character_ids:
        wanted = set(request.involved_character_ids)
        characters = [c for c in request.characters if c.id in wanted]
    else:
        characters = list(request.characters)

    previous = [
        {"line": f"{d.character_name}: {d.text}" if d.role_id else f"[Narration] {d.text}"}
        for d in request.previous_dialogs or []
    ]

    return {
        "project_title": request.project_title,
        "worldview": request.worldview,
        "overall_plot": request.overall_plot,
        "chapter_title": request.chapter_title,
        "chapter_summary": request.chapter_summary,
        "background_description": request.background_description or "",
        "key_events": [
            {"n": i + 1, "text": event} for i, event in enumerate(request.key_events or [])
        ],
        "choices": [c.model_dump() for c in request.choices or []],
        "next_chapter_title": request.next_chapter_title or "",
        "characters": [c.model_dump() for c in characters],
        "previous_chapter_summary": request.previous_chapter_summary or "",
        "previous_dialogs": previous,
    }


def build_dialogs_prompt(request: DialogsRequest) -> str:
    return render_prompt(DIALOGS_TEMPLATE, dialogs_context(request))


def build_dialogs_request(project: ProjectOutline, chapter_id: str) -> DialogsRequest:
    """Assemble the dialog request for a chapter from the project around it.

    The previous chapter is the one before `chapter_id` in map order.
    """
    chapters = project.chapters
    chapter = chapters.get(chapter_id)
    if chapter is None:
        raise KeyError(f"Chapter not found: {chapter_id}")

    ids = list(chapters)
    position = ids.index(chapter_id)
    previous = chapters[ids[position - 1]] if position > 0 else None
    following = chapters.get(chapter.next_chapter_id) if chapter.next_chapter_id else None
    background = project.backgrounds.get(chapter.background_id) if chapter.background_id else None

    previous_dialogs = None
    if previous is not None and previous.dialogs:
        previous_dialogs = []
        for d in previous.dialogs:
            if d.role_id:
                speaker = project.characters.get(d.role_id)
                name = speaker.name if speaker else UNKNOWN_CHARACTER
            else:
                name = ""
            previous_dialogs.append(
                PreviousDialog(role_id=d.role_id, character_name=name, text=d.text)
            )

    return DialogsRequest(
        project_title=project.config.title,
        worldview=project.config.worldview,
        overall_plot=project.config.plot,
        characters=[
            CharacterBrief(
                id=c.id, name=c.name, description=c.description,
                personality=c.personality, background=c.background,
            )
            for c in project.characters.values()
        ],
        chapter_id=chapter.id,
        chapter_title=chapter.title,
        chapter_summary=chapter.summary or chapter.title,
        key_events=list(chapter.key_events),
        involved_character_ids=list(chapter.involved_characters) or None,
        background_description=background.description if background else None,
        next_chapter_title=following.title if following else None,
        choices=[
            ChoiceBrief(
                text=c.text,
                target_chapter_title=(
                    chapters[c.target_chapter_id].title
                    if c.target_chapter_id in chapters else UNKNOWN_CHAPTER
                ),
            )
            for c in chapter.choices
        ] or None,
        previous_chapter_summary=previous.summary if previous else None,
        previous_dialogs=previous_dialogs,
    )
