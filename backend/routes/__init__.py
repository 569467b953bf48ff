"""FastAPI endpoints.

Endpoint groups: health, stateless generation (/outline, /dialogs) and the
current project (/project/...: persistence, generation, chapter/edge/dialog
editing).
"""

from fastapi import APIRouter

from .generate import router as generate_router
from .health import router as health_router
from .project import router as project_router

router = APIRouter()
router.include_router(health_router)
router.include_router(generate_router)
router.include_router(project_router)
