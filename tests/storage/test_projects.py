"""Tests for the current-project blob."""

import json

import pytest

from backend import storage
from backend.demo import DEMO_PROJECT
from novel_studio.errors import StructuralError
from novel_studio.models import ProjectOutline


def _demo() -> ProjectOutline:
    return ProjectOutline.model_validate(DEMO_PROJECT)


def _path():
    return storage.data_dir() / f"{storage.PROJECT_KEY}.json"


def test_get_project_none_when_missing():
    assert storage.get_project() is None


def test_save_and_get_roundtrip():
    storage.save_project(_demo())
    assert storage.get_project() == _demo()


def test_saved_file_uses_camel_case_keys():
    storage.save_project(_demo())
    data = json.loads(_path().read_text(encoding="utf-8"))
    assert data["startChapterId"] == "chapter-1"
    assert data["chapters"]["chapter-2-fight"]["nextChapterId"] == "chapter-3"
    assert "next_chapter_id" not in _path().read_text(encoding="utf-8")


def test_save_keeps_non_ascii_text():
    project = _demo()
    project.config.title = "余烬山口"
    storage.save_project(project)
    assert "余烬山口" in _path().read_text(encoding="utf-8")
    assert storage.get_project().config.title == "余烬山口"


def test_save_overwrites():
    storage.save_project(_demo())
    project = _demo()
    project.config.title = "Second"
    storage.save_project(project)
    assert storage.get_project().config.title == "Second"


def test_save_rejects_invalid_project():
    project = _demo()
    project.chapters["chapter-3"].next_chapter_id = "ghost"
    with pytest.raises(StructuralError):
        storage.save_project(project)
    assert not _path().exists()


def test_get_rejects_hand_edited_blob():
    storage.save_project(_demo())
    data = json.loads(_path().read_text(encoding="utf-8"))
    data["startChapterId"] = "ghost"
    _path().write_text(json.dumps(data), encoding="utf-8")
    with pytest.raises(StructuralError, match="start chapter 'ghost'"):
        storage.get_project()


def test_delete_project():
    storage.save_project(_demo())
    assert storage.delete_project() is True
    assert storage.get_project() is None
    assert storage.delete_project() is False


def test_get_rejects_truncated_blob():
    _path().write_text('{"config": {"title": "x"}', encoding="utf-8")
    with pytest.raises(StructuralError, match="malformed"):
        storage.get_project()


def test_get_rejects_blob_missing_fields():
    _path().write_text(json.dumps({"chapters": {}}), encoding="utf-8")
    with pytest.raises(StructuralError, match="malformed"):
        storage.get_project()
