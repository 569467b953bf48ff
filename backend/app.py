import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from novel_studio.llm import LLM

from backend import llm, storage
from backend.routes import router
from backend.settings import load_settings

logger = logging.getLogger(__name__)


def create_app(data_dir: Path | None = None, llm_client: LLM | None = None) -> FastAPI:
    settings = load_settings()
    storage.init_storage(data_dir or settings.data_dir)
    if llm_client is not None:
        llm.set_llm(llm_client)

    app = FastAPI(title="Novel Studio")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.cors_origin],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.include_router(router)
    logger.debug("app created, cors origin %s", settings.cors_origin)
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
