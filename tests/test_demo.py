"""The bundled demo project is valid and playable end to end."""

from backend import storage
from backend.demo import create_demo_data
from novel_studio.graph import unreachable_chapters
from novel_studio.playback import PlaybackState, Player


def test_demo_saves_and_reloads():
    create_demo_data()
    project = storage.get_project()
    assert project.start_chapter_id == "chapter-1"
    assert unreachable_chapters(project) == []


def test_demo_plays_through_either_branch():
    create_demo_data()
    project = storage.get_project()
    for branch in ("chapter-2-fight", "chapter-2-flee"):
        player = Player(project)
        while player.state is PlaybackState.PRESENTING:
            player.advance()
        assert player.state is PlaybackState.AWAITING_CHOICE
        player.choose_branch(branch)
        while player.state is PlaybackState.PRESENTING:
            player.advance()
        assert player.is_ended
        assert player.chapter_id == "chapter-3"
