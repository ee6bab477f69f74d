# llm/base.py
from __future__ import annotations
import os
from typing import Any, Dict, Optional

from backend.src.core.constants import DEFAULT_MODEL, DEFAULT_PROVIDER, PROVIDER_MODELS, SUPPORTED_PROVIDERS


def require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing env var: {name}")
    return value


def normalize(provider: Optional[str], model: Optional[str]) -> tuple[str, str]:
    p = (provider or os.getenv("DEFAULT_PROVIDER") or DEFAULT_PROVIDER).lower()
    if p not in SUPPORTED_PROVIDERS:
        raise ValueError(f"Unsupported provider: {p}")
    m = (model or os.getenv("DEFAULT_MODEL") or "").strip()
    if not m:
        m = PROVIDER_MODELS[p][0] if p != DEFAULT_PROVIDER else DEFAULT_MODEL
    return p, m


def common_kwargs(streaming: bool, temperature: float) -> Dict[str, Any]:
    return {"streaming": streaming, "temperature": temperature}
