# llm/factory.py
from __future__ import annotations
from typing import List, Optional

from backend.src.core.constants import DEFAULT_MODEL, DEFAULT_PROVIDER, PROVIDER_MODELS
from backend.src.core.logging import get_logger
from backend.src.llm.base import normalize
from backend.src.llm.providers import build_anthropic, build_gemini, build_openai, build_openrouter

logger = get_logger("deepqeeb.llm.factory")

_BUILDERS = {
    "openai": build_openai,
    "openrouter": build_openrouter,
    "anthropic": build_anthropic,
    "gemini": build_gemini,
}


def is_not_found_error(e: Exception) -> bool:
    s = str(e).lower()
    return "not_found" in s or "not found" in s or "404" in s


def model_candidates(provider: str, selected_model: str) -> List[str]:
    out: List[str] = []
    for m in (selected_model, *PROVIDER_MODELS.get(provider, ())):
        if m and m not in out:
            out.append(m)
    return out


def get_llm(
    provider: Optional[str],
    model: Optional[str],
    streaming: bool = True,
    temperature: float = 0.2,
):
    p, m = normalize(provider, model)
    try:
        return _BUILDERS[p](m, streaming, temperature)
    except RuntimeError as e:
        # missing key for a non-default provider: use the default one instead
        if p == DEFAULT_PROVIDER:
            raise
        logger.warning("PROVIDER_FALLBACK provider=%s model=%s error=%s", p, m, e)
        return _BUILDERS[DEFAULT_PROVIDER](DEFAULT_MODEL, streaming, temperature)
