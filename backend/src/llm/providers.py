# llm/providers.py
"""LangChain chat-model builders, one per supported provider.

Provider SDKs are imported on first use so a deployment only needs the
packages for the providers it actually configures.
"""
from __future__ import annotations
import os

from backend.src.core.constants import OPENROUTER_BASE_URL
from backend.src.llm.base import common_kwargs, require_env


def build_openai(model: str, streaming: bool, temperature: float):
    from langchain_openai import ChatOpenAI

    require_env("OPENAI_API_KEY")
    return ChatOpenAI(model=model, **common_kwargs(streaming, temperature))


def build_openrouter(model: str, streaming: bool, temperature: float):
    from langchain_openai import ChatOpenAI

    # OpenRouter speaks the OpenAI chat-completions protocol
    key = require_env("OPENROUTER_API_KEY")
    base_url = os.getenv("OPENROUTER_BASE_URL") or OPENROUTER_BASE_URL
    return ChatOpenAI(model=model, api_key=key, base_url=base_url, **common_kwargs(streaming, temperature))


def build_anthropic(model: str, streaming: bool, temperature: float):
    from langchain_anthropic import ChatAnthropic

    require_env("ANTHROPIC_API_KEY")
    return ChatAnthropic(model=model, **common_kwargs(streaming, temperature))


def build_gemini(model: str, streaming: bool, temperature: float):
    from langchain_google_genai import ChatGoogleGenerativeAI

    # LangChain supports GOOGLE_API_KEY env (recommended)
    require_env("GOOGLE_API_KEY")
    return ChatGoogleGenerativeAI(model=model, **common_kwargs(streaming, temperature))
