# api/main.py
# Entry point for `uvicorn backend.src.api.main:app`.
from __future__ import annotations

from backend.src.api.app import create_app

app = create_app()
