"""Current-project blob storage.

The whole ProjectOutline lives in one JSON file and is always read and
written wholesale. The blob is validated on read so a hand-edited or
truncated file surfaces as an error instead of reaching the player.
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from novel_studio.errors import StructuralError
from novel_studio.graph import validate_project
from novel_studio.models import ProjectOutline

from .core import data_dir

logger = logging.getLogger(__name__)

PROJECT_KEY = "currentProject"


def _project_path() -> Path:
    return data_dir() / f"{PROJECT_KEY}.json"


def get_project() -> ProjectOutline | None:
    """Load the current project. Returns None if none has been saved."""
    path = _project_path()
    if not path.is_file():
        return None
    try:
        project = ProjectOutline.model_validate_json(path.read_text(encoding="utf-8"))
    except PydanticValidationError as e:
        raise StructuralError(f"stored project is malformed: {e}") from e
    validate_project(project)
    return project


def save_project(project: ProjectOutline) -> ProjectOutline:
    """Validate and overwrite the current project."""
    validate_project(project)
    _project_path().write_text(
        json.dumps(project.model_dump(by_alias=True, exclude_none=True), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    logger.debug("saved project %r (%d chapters)", project.config.title, len(project.chapters))
    return project


def delete_project() -> bool:
    path = _project_path()
    if not path.is_file():
        return False
    path.unlink()
    return True
