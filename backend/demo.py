"""Create a demo branching project for development/testing."""

from novel_studio.models import ProjectOutline

from backend import storage

DEMO_PROJECT = {
    "config": {
        "title": "The Ember Pass",
        "worldview": "A mountain kingdom where old dragons sleep beneath the roads.",
        "characters": "[Character ID]: char-1\n[Name]: Lin\n[Description]: A young courier.",
        "plot": "A courier carrying a sealed letter is ambushed on the pass.",
    },
    "characters": {
        "char-1": {
            "id": "char-1", "name": "Lin", "description": "A young courier.",
            "personality": "Stubborn, quick-witted", "isUserCreated": True,
        },
        "ai-char-1": {
            "id": "ai-char-1", "name": "Captain Rourke",
            "description": "Leader of the bandits holding the pass.",
        },
    },
    "backgrounds": {
        "bg-1": {"id": "bg-1", "description": "A narrow, snow-choked mountain pass."},
    },
    "chapters": {
        "chapter-1": {
            "id": "chapter-1",
            "title": "Ambush",
            "summary": "Bandits block the road and demand the letter.",
            "backgroundId": "bg-1",
            "involvedCharacters": ["char-1", "ai-char-1"],
            "choices": [
                {"text": "Fight", "targetChapterId": "chapter-2-fight"},
                {"text": "Flee into the cave", "targetChapterId": "chapter-2-flee"},
            ],
            "dialogs": [
                {"id": "dialog-1", "text": "Snow hisses across the pass."},
                {"id": "dialog-2", "roleId": "ai-char-1", "text": "That letter. Hand it over."},
                {"id": "dialog-3", "roleId": "char-1", "text": "Come and take it."},
            ],
        },
        "chapter-2-fight": {
            "id": "chapter-2-fight",
            "title": "Steel on Stone",
            "summary": "Lin fights her way through, wounded.",
            "nextChapterId": "chapter-3",
            "dialogs": [
                {"id": "dialog-1", "text": "Blades ring against the cliffs."},
            ],
        },
        "chapter-2-flee": {
            "id": "chapter-2-flee",
            "title": "The Cave",
            "summary": "Lin slips into a cave that is warmer than it should be.",
            "nextChapterId": "chapter-3",
            "dialogs": [
                {"id": "dialog-1", "text": "The cave breathes. Something vast sleeps below."},
            ],
        },
        "chapter-3": {
            "id": "chapter-3",
            "title": "Beyond the Pass",
            "summary": "Either way, the letter reaches the valley.",
            "dialogs": [
                {"id": "dialog-1", "roleId": "char-1", "text": "Delivered. Barely."},
            ],
        },
    },
    "startChapterId": "chapter-1",
}


def create_demo_data() -> ProjectOutline:
    """Overwrite the current project with the demo project."""
    project = ProjectOutline.model_validate(DEMO_PROJECT)
    return storage.save_project(project)
