# core/constants.py
from __future__ import annotations

SUPPORTED_PROVIDERS = ("openai", "openrouter", "anthropic", "gemini")

PROVIDER_MODELS = {
    "openai": ("gpt-4o-mini", "gpt-4.1-mini", "gpt-4o"),
    "openrouter": (
        "anthropic/claude-3.5-sonnet",
        "openai/gpt-4o-mini",
    ),
    "anthropic": (
        "claude-3-5-sonnet-20241022",
        "claude-3-5-haiku-20241022",
        "claude-3-7-sonnet-latest",
    ),
    "gemini": (
        "gemini-1.5-flash-002",
        "gemini-1.5-pro-002",
        "gemini-2.0-flash",
    ),
}

DEFAULT_PROVIDER = "openai"
DEFAULT_MODEL = "gpt-4o-mini"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

AGENT_MODES = ("script", "game")

MAX_USER_CHARS = 15_000
MAX_HISTORY_MESSAGES = 30

# buffer lifetime
BUFFER_TTL_SECS = 60.0
SWEEP_INTERVAL_SECS = 30.0

# stream delivery
REPLAY_BATCH_CHARS = 1000
STREAM_KEEPALIVE_SECS = 15.0

# persistence
DB_DIR = "./data"
DB_FILENAME = "deepqeeb.sqlite"
