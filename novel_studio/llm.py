"""LLM client and gateway: HTTP connection to a hosted chat model.

Callers depend on an LLM callable matching the protocol:

    async def __call__(self, stage: str, prompt: str,
                       system_instruction: str | None = None) -> str: ...

`stage` names the caller ("outline", "dialogs"); implementations use it for
logging only.

Two implementations are provided:

    HttpLLM   real HTTP client, supports OpenAI-compatible chat completions
                (GLM/Zhipu and friends) and Google Gemini generateContent.
    EchoLLM   returns the prompt back unchanged, no network.

Gateway wraps an LLM with the behaviour the rest of the system relies on:
at most one request in flight, supersede-by-cancel, JSON extraction from
free text, and transport failures reported as a None result.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Literal, Protocol

import httpx

from novel_studio.errors import ParseError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


# ---------------------------------------------------------------------------
# Protocol: every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(
        self, stage: str, prompt: str, system_instruction: str | None = None
    ) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM: connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["openai", "gemini"]

DEFAULT_BASE_URLS: dict[str, str] = {
    "openai": "https://open.bigmodel.cn/api/paas/v4",
    "gemini": "https://generativelanguage.googleapis.com",
}

DEFAULT_MODELS: dict[str, str] = {
    "openai": "glm-4.7",
    "gemini": "gemini-2.5-flash",
}


class HttpLLM:
    """Async HTTP client for hosted chat models.

    Supported formats:
      "openai"  POST {base}/chat/completions
                  {"model", "messages": [system?, user], "temperature", "max_tokens"}
                  Response: {"choices": [{"message": {"content": "..."}}]}
      "gemini"  POST {base}/v1beta/models/{model}:generateContent?key=...
                  {"contents": [{"role": "user", "parts": [...]}], "systemInstruction"?}
                  Response: {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}

    Args:
        provider_url:    Base URL; empty selects the format's public endpoint.
        api_key:         Bearer token (openai) or query key (gemini).
        provider_format: Wire format to use. Defaults to "openai".
        model:           Model identifier; empty selects the format default.
        timeout:         HTTP timeout in seconds. Defaults to 60.
    """

    def __init__(
        self,
        provider_url: str = "",
        api_key: str = "",
        provider_format: ProviderFormat = "openai",
        model: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        temperature: float = 0.7,
        max_tokens: int = 8000,
    ) -> None:
        if provider_format not in DEFAULT_BASE_URLS:
            raise ValueError(f"Unknown provider format: {provider_format!r}")
        self._format = provider_format
        self._base_url = (provider_url or DEFAULT_BASE_URLS[provider_format]).rstrip("/")
        self._api_key = api_key
        self._model = model or DEFAULT_MODELS[provider_format]
        self._timeout = timeout
        self._temperature = temperature
        self._max_tokens = max_tokens

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key and self._format == "openai":
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, prompt: str, system_instruction: str | None) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "gemini":
            url = f"{self._base_url}/v1beta/models/{self._model}:generateContent"
            if self._api_key:
                url = f"{url}?key={self._api_key}"
            body: dict = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
            if system_instruction:
                body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
            return url, body

        # openai-compatible chat completions (default)
        messages = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})
        body = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }
        return f"{self._base_url}/chat/completions", body

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        if self._format == "gemini":
            try:
                text = data["candidates"][0]["content"]["parts"][0]["text"]
            except (KeyError, IndexError, TypeError):
                raise TransportError("Unexpected response format from Gemini backend")
        else:
            try:
                text = data["choices"][0]["message"]["content"]
            except (KeyError, IndexError, TypeError):
                raise TransportError("Unexpected response format from chat completion backend")
        if not text:
            raise TransportError("LLM backend returned no content")
        return text

    async def __call__(
        self, stage: str, prompt: str, system_instruction: str | None = None
    ) -> str:
        url, body = self._build_request(prompt, system_instruction)
        logger.debug("llm call stage=%s base=%s prompt_len=%d", stage, self._base_url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise TransportError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise TransportError(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"LLM request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError("LLM backend returned a non-JSON body") from e
        text = self._parse_response(data)
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


# ---------------------------------------------------------------------------
# EchoLLM: returns the prompt unchanged; useful for wiring smoke tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the prompt text as-is. No network calls.

    The output is only valid JSON if the prompt was; use a stub in tests
    when you need controlled responses.
    """

    async def __call__(
        self, stage: str, prompt: str, system_instruction: str | None = None
    ) -> str:
        logger.debug("EchoLLM stage=%s prompt_len=%d", stage, len(prompt))
        return prompt


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------

Expect = Literal["auto", "array", "object"]

_PAIRS = {"[": "]", "{": "}"}


def _find_opener(text: str, expect: Expect) -> int:
    if expect == "array":
        return text.find("[")
    if expect == "object":
        return text.find("{")
    candidates = [i for i in (text.find("["), text.find("{")) if i != -1]
    return min(candidates) if candidates else -1


def _balanced_end(text: str, start: int) -> int:
    """Index of the bracket closing text[start], or -1. String contents are skipped."""
    stack = [_PAIRS[text[start]]]
    in_string = False
    escaped = False
    for i in range(start + 1, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _PAIRS:
            stack.append(_PAIRS[ch])
        elif ch in ("]", "}"):
            if ch != stack[-1]:
                return -1
            stack.pop()
            if not stack:
                return i
    return -1


def extract_json(text: str, expect: Expect = "auto") -> Any:
    """Parse the first balanced JSON array/object embedded in free text.

    Prose and markdown fences around the payload are ignored:

        >>> extract_json('Sure! ```json\\n[{"a":1}]\\n```')
        [{'a': 1}]
    """
    start = _find_opener(text, expect)
    if start == -1:
        raise ParseError("No JSON found in LLM response", raw=text)
    end = _balanced_end(text, start)
    if end == -1:
        raise ParseError("Unbalanced JSON in LLM response", raw=text)
    try:
        return json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON in LLM response: {e}", raw=text) from e


# ---------------------------------------------------------------------------
# Gateway: one in-flight request, cancellation, extraction
# ---------------------------------------------------------------------------

class CancelToken:
    """Cancellation handle for one gateway call."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class Gateway:
    """Sends prompts through an LLM and returns parsed JSON.

    generate() returns None when the request was superseded by a newer call
    or when the transport failed (the reason is kept in `last_error`).
    ParseError propagates: a reply without a usable payload is reported,
    never replaced by a default. There is no automatic retry.
    """

    def __init__(self, llm: LLM) -> None:
        self._llm = llm
        self._token: CancelToken | None = None
        self._task: asyncio.Task | None = None
        self.last_error: str | None = None

    def cancel(self) -> None:
        """Abort the in-flight request, if any. Its result is discarded."""
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    async def generate(
        self,
        prompt: str,
        system_instruction: str | None = None,
        *,
        expect: Expect = "auto",
        stage: str = "generate",
    ) -> Any | None:
        self.cancel()
        token = CancelToken()
        task = asyncio.ensure_future(self._llm(stage, prompt, system_instruction))
        self._token, self._task = token, task
        self.last_error = None

        try:
            text = await task
        except asyncio.CancelledError:
            if token.cancelled:
                logger.debug("llm request superseded stage=%s", stage)
                return None
            raise
        except TransportError as e:
            logger.warning("llm transport failure stage=%s: %s", stage, e)
            self.last_error = str(e)
            return None

        if token.cancelled:
            logger.debug("discarding superseded llm result stage=%s", stage)
            return None

        try:
            return extract_json(text, expect)
        except ParseError:
            logger.warning("unparseable llm response stage=%s raw=%r", stage, text)
            raise
