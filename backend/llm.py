"""Service-wide LLM wiring.

One HttpLLM is built lazily from settings; tests swap it with set_llm().
Gateways are keyed by run ("outline", "dialogs:<chapter>") so a new request
for the same run supersedes the one still in flight, while unrelated runs
proceed independently. A gateway is released once its run has nothing in
flight, so the map only holds runs that are still generating.
"""

from novel_studio.llm import LLM, Gateway, HttpLLM

from backend.settings import load_settings

_llm: LLM | None = None
_gateways: dict[str, Gateway] = {}


def set_llm(llm: LLM | None) -> None:
    """Replace the active LLM (None rebuilds from settings on next use)."""
    global _llm
    _llm = llm
    _gateways.clear()


def get_llm() -> LLM:
    global _llm
    if _llm is None:
        settings = load_settings()
        _llm = HttpLLM(
            provider_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
            provider_format=settings.llm_provider,
            model=settings.llm_model,
            timeout=settings.llm_timeout,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )
    return _llm


def gateway(run: str) -> Gateway:
    gw = _gateways.get(run)
    if gw is None:
        gw = Gateway(get_llm())
        _gateways[run] = gw
    return gw


def release(run: str) -> None:
    """Forget the gateway for `run` once nothing is in flight on it."""
    gw = _gateways.get(run)
    if gw is not None and not gw.busy:
        del _gateways[run]
