"""Pydantic request models for the project endpoints.

The stateless /outline and /dialogs endpoints validate straight into
novel_studio.prompts.OutlineRequest / DialogsRequest instead.
"""

from pydantic import Field

from novel_studio.models import CamelModel, CharacterCard, CharacterExpression, Dialog


class GenerateProjectBody(CamelModel):
    title: str = ""
    worldview: str = ""
    plot: str = ""
    characters: list[CharacterCard] = Field(default_factory=list)


class UpdateChapter(CamelModel):
    title: str | None = None
    summary: str | None = None
    key_events: list[str] | None = None
    involved_characters: list[str] | None = None
    background_id: str | None = None
    dialogs: list[Dialog] | None = None
    character_state: list[CharacterExpression] | None = None


class ChoiceBody(CamelModel):
    text: str
    target_chapter_id: str


class NextChapterBody(CamelModel):
    target_chapter_id: str | None = None


class DialogBody(CamelModel):
    text: str
    role_id: str = ""


class StartChapterBody(CamelModel):
    chapter_id: str
