"""Tests for environment settings and the service-wide LLM wiring."""

import asyncio
from pathlib import Path

import pytest

from backend import llm
from backend.settings import load_settings
from novel_studio.llm import HttpLLM


# ── load_settings ────────────────────────────────────────


def test_defaults(monkeypatch):
    for name in ("LLM_PROVIDER", "BACKEND_PORT", "CORS_ORIGIN", "LLM_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.llm_provider == "openai"
    assert settings.port == 3001
    assert settings.cors_origin == "http://localhost:3000"
    assert settings.llm_timeout == 60.0


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("DATA_DIR", "/tmp/novel")
    monkeypatch.setenv("LLM_PROVIDER", "Gemini")
    monkeypatch.setenv("LLM_MAX_TOKENS", "2048")
    settings = load_settings()
    assert settings.data_dir == Path("/tmp/novel")
    assert settings.llm_provider == "gemini"
    assert settings.llm_max_tokens == 2048


def test_unknown_provider_rejected(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "opneai")
    with pytest.raises(ValueError, match="LLM_PROVIDER"):
        load_settings()


def test_http_llm_rejects_unknown_format():
    with pytest.raises(ValueError, match="Unknown provider format"):
        HttpLLM(provider_format="kobold")


# ── gateway registry ─────────────────────────────────────


class BlockingLLM:
    def __init__(self) -> None:
        self.release = asyncio.Event()

    async def __call__(self, stage, prompt, system_instruction=None):
        await self.release.wait()
        return "{}"


def test_gateway_reused_per_run():
    llm.set_llm(BlockingLLM())
    assert llm.gateway("outline") is llm.gateway("outline")
    assert llm.gateway("outline") is not llm.gateway("dialogs:chapter-1")


async def test_release_keeps_busy_gateway():
    stub = BlockingLLM()
    llm.set_llm(stub)
    gw = llm.gateway("outline")
    pending = asyncio.ensure_future(gw.generate("prompt"))
    await asyncio.sleep(0)

    llm.release("outline")
    assert llm.gateway("outline") is gw

    stub.release.set()
    assert await pending == {}
    llm.release("outline")
    assert "outline" not in llm._gateways


def test_release_unknown_run_is_harmless():
    llm.release("dialogs:nope")
