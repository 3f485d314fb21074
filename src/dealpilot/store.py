"""Concrete implementations for conversation persistence.

Two layers live here. ``Store`` is the durable key-value pillar (one
``Conversation`` per identity). ``ConversationStore`` is the ordered message log
the engine writes to; it keeps the working copy in memory and mirrors every
append and finalization to its ``Store``.
"""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import closing
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import quote, unquote

from .models import (
    ASSISTANT_ROLE,
    STREAMING_ID,
    ChatMessage,
    Conversation,
    ToolInvocation,
    new_id,
)

logger = logging.getLogger(__name__)


class Store(ABC):
    """Interface for saving and loading conversation data."""

    @abstractmethod
    def load_conversation(self, convo_id: str) -> Optional[Conversation]:
        """Loads a single conversation, or ``None`` if nothing was persisted."""
        pass

    @abstractmethod
    def save_conversation(self, conversation: Conversation) -> None:
        """Saves a single conversation, replacing any previous version."""
        pass

    @abstractmethod
    def delete_conversation(self, convo_id: str) -> None:
        """Removes a conversation. Deleting a missing conversation is a no-op."""
        pass

    @abstractmethod
    def list_conversations(self) -> List[str]:
        """Lists all persisted conversation IDs."""
        pass


class InMemory(Store):
    """Saves and loads conversations from an in-memory dictionary."""

    def __init__(self):
        self._store: Dict[str, Conversation] = {}

    def load_conversation(self, convo_id: str) -> Optional[Conversation]:
        conversation = self._store.get(convo_id)
        return conversation.model_copy(deep=True) if conversation else None

    def save_conversation(self, conversation: Conversation) -> None:
        self._store[conversation.id] = conversation.model_copy(deep=True)

    def delete_conversation(self, convo_id: str) -> None:
        self._store.pop(convo_id, None)

    def list_conversations(self) -> List[str]:
        return list(self._store.keys())


class File(Store):
    """Saves conversations on the local file system as JSON.

    Each conversation lives in ``<base_dir>/<convo_id>/messages.json``; the
    directory name is the URL-quoted identity.
    """

    MESSAGES_FILE = "messages.json"

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _messages_path(self, convo_id: str) -> Path:
        return self.base_dir / quote(convo_id, safe="") / self.MESSAGES_FILE

    def load_conversation(self, convo_id: str) -> Optional[Conversation]:
        path = self._messages_path(convo_id)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            messages = json.load(f)
        return Conversation(id=convo_id, messages=messages)

    def save_conversation(self, conversation: Conversation) -> None:
        path = self._messages_path(conversation.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = [msg.model_dump(mode="json") for msg in conversation.messages]
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        tmp_path.replace(path)

    def delete_conversation(self, convo_id: str) -> None:
        path = self._messages_path(convo_id)
        path.unlink(missing_ok=True)
        try:
            path.parent.rmdir()
        except OSError:
            pass

    def list_conversations(self) -> List[str]:
        """Lists conversation IDs, most recently saved first."""
        convo_files = [
            d / self.MESSAGES_FILE
            for d in self.base_dir.iterdir()
            if (d / self.MESSAGES_FILE).exists()
        ]
        convo_files.sort(key=lambda p: p.stat().st_mtime_ns, reverse=True)
        return [unquote(p.parent.name) for p in convo_files]


class SQLite(Store):
    """Saves conversations in a SQLite database, one row per conversation."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        with closing(sqlite3.connect(self.db_path)) as conn, conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS conversations (
                    id TEXT PRIMARY KEY,
                    messages TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

    def load_conversation(self, convo_id: str) -> Optional[Conversation]:
        with closing(sqlite3.connect(self.db_path)) as conn, conn:
            row = conn.execute(
                "SELECT messages FROM conversations WHERE id = ?", (convo_id,)
            ).fetchone()
        if row is None:
            return None
        return Conversation(id=convo_id, messages=json.loads(row[0]))

    def save_conversation(self, conversation: Conversation) -> None:
        data = json.dumps(
            [msg.model_dump(mode="json") for msg in conversation.messages],
            ensure_ascii=False,
        )
        with closing(sqlite3.connect(self.db_path)) as conn, conn:
            conn.execute(
                """
                INSERT INTO conversations (id, messages, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(id) DO UPDATE SET
                    messages = excluded.messages,
                    updated_at = excluded.updated_at
                """,
                (conversation.id, data),
            )

    def delete_conversation(self, convo_id: str) -> None:
        with closing(sqlite3.connect(self.db_path)) as conn, conn:
            conn.execute("DELETE FROM conversations WHERE id = ?", (convo_id,))

    def list_conversations(self) -> List[str]:
        with closing(sqlite3.connect(self.db_path)) as conn, conn:
            rows = conn.execute(
                "SELECT id FROM conversations ORDER BY updated_at DESC, rowid DESC"
            ).fetchall()
        return [row[0] for row in rows]


class ConversationStore:
    """Ordered message log per conversation identity.

    At most one assistant message per conversation is "in progress"; it carries
    the ``STREAMING_ID`` placeholder, sits at the end of the log, and is never
    persisted until ``finalize`` gives it a permanent id.

    Persistence failures are logged and swallowed: the conversation carries on
    in memory.
    """

    def __init__(self, store: Optional[Store] = None):
        self.store = store if store is not None else InMemory()
        self._logs: Dict[str, List[ChatMessage]] = {}

    def load(self, convo_id: str) -> List[ChatMessage]:
        """Returns the ordered messages, loading persisted ones on first access."""
        return list(self._log(convo_id))

    def append(self, convo_id: str, message: ChatMessage) -> None:
        if message.is_streaming:
            raise ValueError("Use replace_streaming() for in-progress messages.")
        log = self._log(convo_id)
        if log and log[-1].is_streaming:
            log.insert(len(log) - 1, message)
        else:
            log.append(message)
        self._persist(convo_id)

    def replace_streaming(self, convo_id: str, content: str) -> ChatMessage:
        """Sets the in-progress assistant message's content, creating it if absent."""
        log = self._log(convo_id)
        if log and log[-1].is_streaming:
            message = log[-1].model_copy(update={"content": content})
            log[-1] = message
        else:
            message = ChatMessage(id=STREAMING_ID, role=ASSISTANT_ROLE, content=content)
            log.append(message)
        return message

    def finalize(
        self, convo_id: str, tool_calls: Optional[List[ToolInvocation]] = None
    ) -> ChatMessage:
        """Seals the in-progress message with a permanent id and persists the log.

        If nothing was streamed, an empty assistant message is finalized.
        """
        log = self._log(convo_id)
        if not (log and log[-1].is_streaming):
            self.replace_streaming(convo_id, "")
        update = {"id": new_id()}
        if tool_calls:
            update["tool_calls"] = list(tool_calls)
        message = log[-1].model_copy(update=update)
        log[-1] = message
        self._persist(convo_id)
        return message

    def discard_streaming(self, convo_id: str) -> Optional[ChatMessage]:
        """Drops the in-progress message, if any, and returns it."""
        log = self._log(convo_id)
        if log and log[-1].is_streaming:
            return log.pop()
        return None

    def streaming(self, convo_id: str) -> Optional[ChatMessage]:
        log = self._log(convo_id)
        return log[-1] if log and log[-1].is_streaming else None

    def clear(self, convo_id: str) -> None:
        """Empties the log and removes the persisted copy on a best-effort basis."""
        self._logs[convo_id] = []
        try:
            self.store.delete_conversation(convo_id)
        except Exception:
            logger.exception("Failed to delete persisted conversation %s", convo_id)

    def _log(self, convo_id: str) -> List[ChatMessage]:
        if convo_id not in self._logs:
            self._logs[convo_id] = self._load_persisted(convo_id)
        return self._logs[convo_id]

    def _load_persisted(self, convo_id: str) -> List[ChatMessage]:
        try:
            conversation = self.store.load_conversation(convo_id)
        except Exception:
            logger.exception("Failed to load conversation %s", convo_id)
            return []
        if conversation is None:
            return []
        return [msg for msg in conversation.messages if not msg.is_streaming]

    def _persist(self, convo_id: str) -> None:
        messages = [msg for msg in self._logs[convo_id] if not msg.is_streaming]
        try:
            self.store.save_conversation(Conversation(id=convo_id, messages=messages))
        except Exception:
            logger.exception("Failed to persist conversation %s", convo_id)
