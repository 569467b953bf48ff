"""File-based JSON storage for the current project.

Data layout:
  data/
    currentProject.json   The full ProjectOutline (config, characters,
                          backgrounds, chapters, startChapterId), camelCase keys

There is a single project slot. It is read and written as one blob, with no
partial updates and no schema versioning.
"""

# Re-export all public symbols so `from backend import storage` keeps working.

from .core import (  # noqa: F401
    data_dir,
    init_storage,
)

from .projects import (  # noqa: F401
    PROJECT_KEY,
    delete_project,
    get_project,
    save_project,
)
