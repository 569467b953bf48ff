"""Environment-driven settings for the generation service.

Values come from the process environment, with a repo-root `.env` loaded
first by python-dotenv. Nothing here is persisted.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from novel_studio.llm import DEFAULT_BASE_URLS

ROOT = Path(__file__).parent.parent
DEFAULT_DATA_DIR = ROOT / "data"

load_dotenv(ROOT / ".env")


@dataclass(frozen=True)
class Settings:
    data_dir: Path = DEFAULT_DATA_DIR
    host: str = "0.0.0.0"
    port: int = 3001
    cors_origin: str = "http://localhost:3000"
    llm_provider: str = "openai"  # "openai" (GLM/Zhipu, OpenAI-compatible) | "gemini"
    llm_base_url: str = ""
    llm_api_key: str = ""
    llm_model: str = ""
    llm_timeout: float = 60.0
    llm_temperature: float = 0.7
    llm_max_tokens: int = 8000


def load_settings() -> Settings:
    provider = os.getenv("LLM_PROVIDER", "openai").strip().lower()
    if provider not in DEFAULT_BASE_URLS:
        raise ValueError(
            f"LLM_PROVIDER must be one of {sorted(DEFAULT_BASE_URLS)}, got {provider!r}"
        )
    return Settings(
        data_dir=Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR))),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("BACKEND_PORT", "3001")),
        cors_origin=os.getenv("CORS_ORIGIN", "http://localhost:3000"),
        llm_provider=provider,
        llm_base_url=os.getenv("LLM_BASE_URL", ""),
        llm_api_key=os.getenv("LLM_API_KEY", ""),
        llm_model=os.getenv("LLM_MODEL", ""),
        llm_timeout=float(os.getenv("LLM_TIMEOUT", "60")),
        llm_temperature=float(os.getenv("LLM_TEMPERATURE", "0.7")),
        llm_max_tokens=int(os.getenv("LLM_MAX_TOKENS", "8000")),
    )
