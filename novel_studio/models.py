"""Core domain models.

Every component operates on these types. Pydantic validates loosely-typed
input at the boundaries (AI import, HTTP bodies, the persisted blob) and
serialises with camelCase aliases so the stored JSON keeps the field names
the web client reads (`roleId`, `nextChapterId`, `startChapterId`, ...).
Python code uses the snake_case names; both are accepted on input.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PLACEHOLDER_AVATAR = "/placeholder-avatar.png"
PLACEHOLDER_BACKGROUND = "/placeholder-bg.png"

USER_CHARACTER_PREFIX = "char-"
AI_CHARACTER_PREFIX = "ai-char-"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict:
        """Serialise with client-facing aliases, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Dialog(CamelModel):
    """One line of a chapter. An empty role_id is narration."""

    id: str
    role_id: str = ""
    text: str

    @property
    def is_narration(self) -> bool:
        return not self.role_id


class Choice(CamelModel):
    """A labelled edge to another chapter, offered at chapter end."""

    text: str
    target_chapter_id: str


class CharacterExpression(CamelModel):
    role_id: str
    expression: str


class ChapterOutline(CamelModel):
    """A node of the narrative graph.

    At most one transition shape is set: `choices` (branching) or
    `next_chapter_id` (linear). Neither means the story ends here.
    """

    id: str
    title: str
    summary: str = ""
    key_events: list[str] = Field(default_factory=list)
    involved_characters: list[str] = Field(default_factory=list)
    background_id: str | None = None
    next_chapter_id: str | None = None
    choices: list[Choice] = Field(default_factory=list)
    dialogs: list[Dialog] = Field(default_factory=list)
    character_state: list[CharacterExpression] = Field(default_factory=list)


# Play-time chapters are outlines whose dialogs have been generated.
Chapter = ChapterOutline


class Character(CamelModel):
    id: str
    name: str
    avatar: str = PLACEHOLDER_AVATAR
    description: str = ""
    personality: str | None = None
    background: str | None = None
    is_user_created: bool = False


class CharacterCard(CamelModel):
    """A character as authored in the creation form, before any AI pass."""

    id: str
    name: str
    description: str = ""
    personality: str = ""
    background: str = ""


class Background(CamelModel):
    id: str
    url: str = PLACEHOLDER_BACKGROUND
    description: str = ""


class ProjectConfig(CamelModel):
    """The four free-text fields the user fills in before generation."""

    title: str
    worldview: str
    characters: str
    plot: str


class ProjectOutline(CamelModel):
    """Root aggregate; the unit of persistence and of editor mutation."""

    config: ProjectConfig
    characters: dict[str, Character] = Field(default_factory=dict)
    backgrounds: dict[str, Background] = Field(default_factory=dict)
    chapters: dict[str, ChapterOutline] = Field(default_factory=dict)
    start_chapter_id: str
