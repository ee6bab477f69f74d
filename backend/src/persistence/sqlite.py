# persistence/sqlite.py
"""SQLite message store (stdlib sqlite3, WAL journal)."""
from __future__ import annotations
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from backend.src.core.logging import get_logger
from backend.src.schemas.messages import ConversationMeta, StoredMessage

logger = get_logger("deepqeeb.persistence.sqlite")


class SqliteMessageStore:
    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path).expanduser()
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self.migrate()

    def migrate(self) -> None:
        with self._lock:
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS conversations (
                    id TEXT PRIMARY KEY,
                    script_id TEXT,
                    last_agent_mode TEXT CHECK(last_agent_mode IN ('script', 'game')),
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    conversation_id TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    role TEXT NOT NULL CHECK(role IN ('user', 'assistant', 'system')),
                    content TEXT NOT NULL,
                    metadata TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_messages_conversation_id
                ON messages(conversation_id, seq);
                """
            )
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredMessage:
        msg = StoredMessage(
            id=str(uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            metadata=metadata,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            # seq keeps insertion order stable when timestamps collide
            row = self._conn.execute(
                "SELECT COALESCE(MAX(seq), 0) + 1 AS next_seq FROM messages WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
            self._conn.execute(
                """
                INSERT INTO messages (id, conversation_id, seq, role, content, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    msg.id,
                    conversation_id,
                    row["next_seq"],
                    role,
                    content,
                    json.dumps(metadata, ensure_ascii=False) if metadata else None,
                    msg.created_at.isoformat(),
                ),
            )
            self._upsert_conversation(conversation_id, {"updated_at": msg.created_at.isoformat()})
            self._conn.commit()
        return msg

    def list_messages(self, conversation_id: str) -> List[StoredMessage]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM messages WHERE conversation_id = ? ORDER BY seq ASC",
                (conversation_id,),
            ).fetchall()
        return [self._row_to_message(r) for r in rows]

    def get_conversation(self, conversation_id: str) -> Optional[ConversationMeta]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
        if row is None:
            return None
        return ConversationMeta(
            id=row["id"],
            script_id=row["script_id"],
            last_agent_mode=row["last_agent_mode"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def update_conversation(
        self,
        conversation_id: str,
        *,
        script_id: Optional[str] = None,
        last_agent_mode: Optional[str] = None,
    ) -> ConversationMeta:
        fields: Dict[str, Any] = {"updated_at": datetime.now(timezone.utc).isoformat()}
        if script_id is not None:
            fields["script_id"] = script_id
        if last_agent_mode is not None:
            fields["last_agent_mode"] = last_agent_mode
        with self._lock:
            self._upsert_conversation(conversation_id, fields)
            self._conn.commit()
        meta = self.get_conversation(conversation_id)
        if meta is None:
            raise RuntimeError(f"Failed to load conversation {conversation_id}")
        return meta

    def _upsert_conversation(self, conversation_id: str, fields: Dict[str, Any]) -> None:
        cols = ", ".join(fields)
        marks = ", ".join("?" for _ in fields)
        updates = ", ".join(f"{c} = excluded.{c}" for c in fields)
        self._conn.execute(
            f"INSERT INTO conversations (id, {cols}) VALUES (?, {marks}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}",
            (conversation_id, *fields.values()),
        )

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> StoredMessage:
        raw_meta = row["metadata"]
        metadata = None
        if raw_meta:
            try:
                parsed = json.loads(raw_meta)
                metadata = parsed if isinstance(parsed, dict) else None
            except json.JSONDecodeError:
                logger.warning("MESSAGE_METADATA_INVALID message_id=%s", row["id"])
        return StoredMessage(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=row["content"],
            metadata=metadata,
            created_at=datetime.fromisoformat(row["created_at"]),
        )
