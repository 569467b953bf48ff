"""Tests for prompt rendering: helpers, outline and dialog prompts, request assembly."""

import pydantic
import pytest

from novel_studio.models import (
    Background,
    ChapterOutline,
    Character,
    CharacterCard,
    Choice,
    Dialog,
    ProjectConfig,
    ProjectOutline,
)
from novel_studio.prompts import (
    CharacterBrief,
    ChoiceBrief,
    DialogsRequest,
    OutlineRequest,
    PreviousDialog,
    PromptError,
    build_dialogs_prompt,
    build_dialogs_request,
    build_outline_prompt,
    dialogs_context,
    format_character_cards,
    render_prompt,
)


# ── render_prompt ────────────────────────────────────────────


def test_render_simple_variable():
    assert render_prompt("Hello {{name}}!", {"name": "World"}) == "Hello World!"


def test_render_triple_stash_does_not_escape():
    assert render_prompt("{{{text}}}", {"text": 'a "quoted" <b>'}) == 'a "quoted" <b>'


def test_render_invalid_template():
    with pytest.raises(PromptError):
        render_prompt("{{> missing_partial}}", {})


def test_take_helper():
    tpl = "{{#take items 2}}{{this}} {{/take}}"
    assert render_prompt(tpl, {"items": ["a", "b", "c"]}) == "a b "


def test_last_helper():
    tpl = "{{#last items 2}}{{this}} {{/last}}"
    assert render_prompt(tpl, {"items": ["a", "b", "c"]}) == "b c "


def test_last_helper_with_fewer_items():
    tpl = "{{#last items 3}}{{this}}{{/last}}"
    assert render_prompt(tpl, {"items": ["x"]}) == "x"


# ── Outline prompt ───────────────────────────────────────────


def _outline_request(**overrides):
    data = {
        "title": "The Ember Pass",
        "worldview": "A frozen kingdom where fire is currency.",
        "characters": "[Character ID]: char-1\n[Name]: Lin",
        "plot": "A courier must cross the pass before the thaw.",
    }
    data.update(overrides)
    return OutlineRequest(**data)


def test_outline_prompt_includes_every_field():
    prompt = build_outline_prompt(_outline_request())
    assert "The Ember Pass" in prompt
    assert "fire is currency" in prompt
    assert "[Name]: Lin" in prompt
    assert "before the thaw" in prompt


def test_outline_prompt_states_structure_rules():
    prompt = build_outline_prompt(_outline_request())
    assert "Never set both `choices` and `nextChapterId`" in prompt
    assert "ai-char-xxx" in prompt
    assert '"startChapterId"' not in prompt


def test_outline_prompt_is_deterministic():
    request = _outline_request()
    assert build_outline_prompt(request) == build_outline_prompt(request)


def test_outline_request_rejects_empty_field():
    with pytest.raises(pydantic.ValidationError):
        _outline_request(plot="")


def test_format_character_cards():
    cards = [
        CharacterCard(id="char-1", name="Lin", description="courier", personality="stubborn", background="orphan"),
        CharacterCard(id="char-2", name="Mara", description="guard"),
    ]
    text = format_character_cards(cards)
    blocks = text.split("\n\n")
    assert len(blocks) == 2
    assert blocks[0].startswith("[Character ID]: char-1\n[Name]: Lin\n")
    assert "[Personality]: stubborn" in blocks[0]
    assert "[Description]: guard" in blocks[1]


# ── Dialog prompt ────────────────────────────────────────────


def _dialogs_request(**overrides):
    data = {
        "project_title": "The Ember Pass",
        "worldview": "A frozen kingdom.",
        "overall_plot": "Cross the pass.",
        "characters": [
            CharacterBrief(id="char-1", name="Lin", description="courier", personality="stubborn"),
            CharacterBrief(id="char-2", name="Mara", description="guard"),
            CharacterBrief(id="ai-char-1", name="The Warden", background="exiled lord"),
        ],
        "chapter_id": "chapter-1",
        "chapter_title": "The Gate",
        "chapter_summary": "Lin reaches the gate at dusk.",
    }
    data.update(overrides)
    return DialogsRequest(**data)


def test_dialog_prompt_lists_only_involved_characters():
    prompt = build_dialogs_prompt(_dialogs_request(involved_character_ids=["char-1", "ai-char-1"]))
    assert "### Lin (char-1)" in prompt
    assert "### The Warden (ai-char-1)" in prompt
    assert "Mara" not in prompt


def test_dialog_prompt_lists_all_characters_when_none_involved():
    prompt = build_dialogs_prompt(_dialogs_request())
    for name in ("Lin", "Mara", "The Warden"):
        assert f"### {name}" in prompt


def test_dialog_prompt_character_details():
    prompt = build_dialogs_prompt(_dialogs_request())
    assert "Personality: stubborn" in prompt
    assert "Background: exiled lord" in prompt


def test_dialog_prompt_optional_sections():
    prompt = build_dialogs_prompt(_dialogs_request(
        background_description="A snowbound gatehouse",
        key_events=["Lin shows her papers", "The Warden refuses"],
        choices=[
            ChoiceBrief(text="Bribe the guard", target_chapter_title="Gold and Ice"),
            ChoiceBrief(text="Climb the wall", target_chapter_title="The Wall"),
        ],
    ))
    assert "- **Scene**: A snowbound gatehouse" in prompt
    assert "1. Lin shows her papers\n2. The Warden refuses" in prompt
    assert '- "Bribe the guard" -> Gold and Ice' in prompt
    assert "## Next chapter" not in prompt


def test_dialog_prompt_omits_empty_sections():
    prompt = build_dialogs_prompt(_dialogs_request())
    assert "**Scene**" not in prompt
    assert "## Key events" not in prompt
    assert "## Branch choices" not in prompt
    assert "# Previously" not in prompt
    assert "## End of the previous chapter" not in prompt


def test_dialog_prompt_next_chapter():
    prompt = build_dialogs_prompt(_dialogs_request(next_chapter_title="Over the Pass"))
    assert "## Next chapter\nOver the Pass" in prompt


def test_dialog_prompt_keeps_last_three_previous_lines():
    previous = [
        PreviousDialog(role_id="char-1", character_name="Lin", text=f"line {i}")
        for i in range(5)
    ]
    prompt = build_dialogs_prompt(_dialogs_request(
        previous_chapter_summary="Lin left the village.",
        previous_dialogs=previous,
    ))
    assert "# Previously\nLin left the village." in prompt
    assert "line 0" not in prompt
    assert "line 1" not in prompt
    assert "Lin: line 2\nLin: line 3\nLin: line 4" in prompt


def test_previous_narration_is_marked():
    ctx = dialogs_context(_dialogs_request(previous_dialogs=[
        PreviousDialog(text="Snow falls."),
        PreviousDialog(role_id="char-2", character_name="Mara", text="Halt."),
    ]))
    assert [p["line"] for p in ctx["previous_dialogs"]] == ["[Narration] Snow falls.", "Mara: Halt."]


def test_dialog_prompt_is_pure():
    request = _dialogs_request(involved_character_ids=["char-1"], key_events=["a"])
    before = request.model_dump()
    first = build_dialogs_prompt(request)
    assert build_dialogs_prompt(request) == first
    assert request.model_dump() == before


def test_dialogs_request_accepts_camel_case():
    request = DialogsRequest.model_validate({
        "projectTitle": "T", "worldview": "W", "overallPlot": "P",
        "chapterId": "c1", "chapterTitle": "One", "chapterSummary": "S",
        "involvedCharacterIds": ["char-1"],
        "previousDialogs": [{"roleId": "", "characterName": "", "text": "Dusk."}],
    })
    assert request.involved_character_ids == ["char-1"]
    assert request.previous_dialogs[0].text == "Dusk."


# ── build_dialogs_request ────────────────────────────────────


def _project():
    return ProjectOutline(
        config=ProjectConfig(title="The Ember Pass", worldview="Frozen.", characters="Lin", plot="Cross."),
        characters={
            "char-1": Character(id="char-1", name="Lin", personality="stubborn", is_user_created=True),
        },
        backgrounds={"bg-1": Background(id="bg-1", description="A snowbound gatehouse")},
        chapters={
            "chapter-1": ChapterOutline(
                id="chapter-1", title="The Road", summary="Lin sets out.",
                next_chapter_id="chapter-2",
                dialogs=[
                    Dialog(id="d1", text="Wind howls."),
                    Dialog(id="d2", role_id="char-1", text="Almost there."),
                    Dialog(id="d3", role_id="ghost", text="Who goes?"),
                ],
            ),
            "chapter-2": ChapterOutline(
                id="chapter-2", title="The Gate",
                key_events=["Papers checked"], involved_characters=["char-1"],
                background_id="bg-1",
                choices=[Choice(text="Bribe", target_chapter_id="chapter-3")],
            ),
            "chapter-3": ChapterOutline(id="chapter-3", title="Gold and Ice", summary="Coins change hands."),
        },
        start_chapter_id="chapter-1",
    )


def test_request_for_first_chapter_has_no_previous():
    request = build_dialogs_request(_project(), "chapter-1")
    assert request.previous_chapter_summary is None
    assert request.previous_dialogs is None
    assert request.next_chapter_title == "The Gate"
    assert request.choices is None


def test_request_uses_previous_chapter_in_map_order():
    request = build_dialogs_request(_project(), "chapter-2")
    assert request.previous_chapter_summary == "Lin sets out."
    assert [(d.character_name, d.text) for d in request.previous_dialogs] == [
        ("", "Wind howls."),
        ("Lin", "Almost there."),
        ("Unknown", "Who goes?"),
    ]


def test_request_resolves_chapter_context():
    request = build_dialogs_request(_project(), "chapter-2")
    assert request.project_title == "The Ember Pass"
    assert request.chapter_summary == "The Gate"
    assert request.key_events == ["Papers checked"]
    assert request.involved_character_ids == ["char-1"]
    assert request.background_description == "A snowbound gatehouse"
    assert request.choices == [ChoiceBrief(text="Bribe", target_chapter_title="Gold and Ice")]
    assert request.characters[0].name == "Lin"


def test_request_unknown_chapter():
    with pytest.raises(KeyError):
        build_dialogs_request(_project(), "chapter-9")


def test_request_renders():
    prompt = build_dialogs_prompt(build_dialogs_request(_project(), "chapter-2"))
    assert "### Lin (char-1)" in prompt
    assert "Lin: Almost there." in prompt
    assert "[Narration] Wind howls." in prompt
