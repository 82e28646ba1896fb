"""SQLite-backed repository for practices and their conversation attempts."""

from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

import aiosqlite

PracticeRecord = dict[str, Any]
ConversationRecord = dict[str, Any]


class NotFoundError(LookupError):
    """Raised when a requested record does not exist."""

    kind = "record"

    def __init__(self, record_id: str):
        super().__init__(f"{self.kind.capitalize()} not found: {record_id}")
        self.record_id = record_id


class PracticeNotFoundError(NotFoundError):
    kind = "practice"


class ConversationNotFoundError(NotFoundError):
    kind = "conversation"


@dataclass
class PriorContext:
    """What earlier attempts under a practice already covered."""

    titles: list[str] = field(default_factory=list)
    recent_dialogues: list[list[str]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.titles and not self.recent_dialogues


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _normalize_db_timestamp(value: str | None) -> str | None:
    """Convert stored timestamp strings to ISO8601 in UTC."""

    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.isoformat()


def _decode_sentences(value: str | None) -> list[dict[str, Any]]:
    if not value:
        return []
    try:
        decoded = json.loads(value)
    except json.JSONDecodeError:
        return []
    if not isinstance(decoded, list):
        return []
    return [item for item in decoded if isinstance(item, dict)]


class PracticeRepository:
    """Persist practices and the conversations generated under them."""

    def __init__(self, database_path: Path):
        self._path = database_path
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the SQLite connection and ensure tables exist."""

        if self._connection is not None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA foreign_keys=ON;")
        await self._create_schema()

    async def _create_schema(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS practices (
                id TEXT PRIMARY KEY,
                prompt TEXT NOT NULL,
                title TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                practice_id TEXT NOT NULL REFERENCES practices(id) ON DELETE CASCADE,
                title TEXT,
                sentences TEXT NOT NULL,
                difficulty TEXT NOT NULL,
                voice_mode TEXT NOT NULL,
                familiarity TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_conversations_practice_id
                ON conversations(practice_id);
            CREATE INDEX IF NOT EXISTS idx_practices_created_at
                ON practices(created_at);
            """
        )
        await self._connection.commit()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    # Practices -----------------------------------------------------------

    async def upsert_practice(
        self, practice_id: str | None, prompt: str
    ) -> PracticeRecord:
        """Create a practice, or re-set the prompt of an existing one."""

        assert self._connection is not None
        now = _utcnow_iso()
        if practice_id is None:
            practice_id = uuid.uuid4().hex
            await self._connection.execute(
                """
                INSERT INTO practices(id, prompt, title, created_at, updated_at)
                VALUES (?, ?, NULL, ?, ?)
                """,
                (practice_id, prompt, now, now),
            )
        else:
            cursor = await self._connection.execute(
                "UPDATE practices SET prompt = ?, updated_at = ? WHERE id = ?",
                (prompt, now, practice_id),
            )
            updated = cursor.rowcount
            await cursor.close()
            if not updated:
                raise PracticeNotFoundError(practice_id)
        await self._connection.commit()
        return await self._fetch_practice_row(practice_id)

    async def _fetch_practice_row(self, practice_id: str) -> PracticeRecord:
        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT id, prompt, title, created_at, updated_at
            FROM practices
            WHERE id = ?
            LIMIT 1
            """,
            (practice_id,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            raise PracticeNotFoundError(practice_id)
        return self._row_to_practice(row)

    async def practice_exists(self, practice_id: str) -> bool:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT 1 FROM practices WHERE id = ? LIMIT 1",
            (practice_id,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return row is not None

    def _row_to_practice(self, row: aiosqlite.Row) -> PracticeRecord:
        return {
            "id": row["id"],
            "prompt": row["prompt"],
            "title": row["title"],
            "created_at": _normalize_db_timestamp(row["created_at"]),
            "updated_at": _normalize_db_timestamp(row["updated_at"]),
        }

    async def list_practices(self) -> list[PracticeRecord]:
        """Return every practice, newest first, with lightweight conversation summaries."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT id, prompt, title, created_at, updated_at
            FROM practices
            ORDER BY created_at DESC, rowid DESC
            """
        )
        practice_rows = await cursor.fetchall()
        await cursor.close()

        cursor = await self._connection.execute(
            """
            SELECT id, practice_id, title, created_at
            FROM conversations
            ORDER BY created_at DESC, rowid DESC
            """
        )
        conversation_rows = await cursor.fetchall()
        await cursor.close()

        summaries: dict[str, list[dict[str, Any]]] = {}
        for row in conversation_rows:
            summaries.setdefault(row["practice_id"], []).append(
                {
                    "id": row["id"],
                    "title": row["title"],
                    "created_at": _normalize_db_timestamp(row["created_at"]),
                }
            )

        practices: list[PracticeRecord] = []
        for row in practice_rows:
            record = self._row_to_practice(row)
            record["conversations"] = summaries.get(row["id"], [])
            practices.append(record)
        return practices

    async def get_practice(self, practice_id: str) -> PracticeRecord:
        """Return a practice with its full conversations, newest first."""

        record = await self._fetch_practice_row(practice_id)
        record["conversations"] = await self._conversations_for(practice_id)
        return record

    async def rename_practice(self, practice_id: str, title: str) -> PracticeRecord:
        assert self._connection is not None
        cleaned = title.strip()
        if not cleaned:
            raise ValueError("Practice title must not be blank")
        cursor = await self._connection.execute(
            "UPDATE practices SET title = ?, updated_at = ? WHERE id = ?",
            (cleaned, _utcnow_iso(), practice_id),
        )
        updated = cursor.rowcount
        await cursor.close()
        await self._connection.commit()
        if not updated:
            raise PracticeNotFoundError(practice_id)
        return await self._fetch_practice_row(practice_id)

    async def delete_practice(self, practice_id: str) -> None:
        """Delete a practice; its conversations go with it."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            "DELETE FROM practices WHERE id = ?", (practice_id,)
        )
        deleted = cursor.rowcount
        await cursor.close()
        await self._connection.commit()
        if not deleted:
            raise PracticeNotFoundError(practice_id)

    async def count_practices(self) -> int:
        assert self._connection is not None
        cursor = await self._connection.execute("SELECT COUNT(*) FROM practices")
        row = await cursor.fetchone()
        await cursor.close()
        return int(row[0]) if row is not None else 0

    # Conversations -------------------------------------------------------

    async def create_conversation(
        self,
        practice_id: str,
        title: str | None,
        sentences: Sequence[dict[str, Any]],
        difficulty: str,
        voice_mode: str,
        familiarity: str,
    ) -> ConversationRecord:
        """Insert a new conversation attempt under `practice_id`."""

        assert self._connection is not None
        conversation_id = uuid.uuid4().hex
        try:
            await self._connection.execute(
                """
                INSERT INTO conversations(
                    id,
                    practice_id,
                    title,
                    sentences,
                    difficulty,
                    voice_mode,
                    familiarity,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    conversation_id,
                    practice_id,
                    title,
                    json.dumps(list(sentences), ensure_ascii=False),
                    difficulty,
                    voice_mode,
                    familiarity,
                    _utcnow_iso(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise PracticeNotFoundError(practice_id) from exc
        await self._connection.commit()
        return await self.get_conversation(conversation_id)

    def _row_to_conversation(self, row: aiosqlite.Row) -> ConversationRecord:
        return {
            "id": row["id"],
            "practice_id": row["practice_id"],
            "title": row["title"],
            "sentences": _decode_sentences(row["sentences"]),
            "difficulty": row["difficulty"],
            "voice_mode": row["voice_mode"],
            "familiarity": row["familiarity"],
            "created_at": _normalize_db_timestamp(row["created_at"]),
        }

    async def _conversations_for(self, practice_id: str) -> list[ConversationRecord]:
        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT
                id,
                practice_id,
                title,
                sentences,
                difficulty,
                voice_mode,
                familiarity,
                created_at
            FROM conversations
            WHERE practice_id = ?
            ORDER BY created_at DESC, rowid DESC
            """,
            (practice_id,),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [self._row_to_conversation(row) for row in rows]

    async def get_conversation(self, conversation_id: str) -> ConversationRecord:
        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT
                id,
                practice_id,
                title,
                sentences,
                difficulty,
                voice_mode,
                familiarity,
                created_at
            FROM conversations
            WHERE id = ?
            LIMIT 1
            """,
            (conversation_id,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            raise ConversationNotFoundError(conversation_id)
        return self._row_to_conversation(row)

    async def delete_conversation(self, conversation_id: str) -> None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "DELETE FROM conversations WHERE id = ?", (conversation_id,)
        )
        deleted = cursor.rowcount
        await cursor.close()
        await self._connection.commit()
        if not deleted:
            raise ConversationNotFoundError(conversation_id)

    async def count_conversations(self, practice_id: str | None = None) -> int:
        assert self._connection is not None
        if practice_id is None:
            cursor = await self._connection.execute(
                "SELECT COUNT(*) FROM conversations"
            )
        else:
            cursor = await self._connection.execute(
                "SELECT COUNT(*) FROM conversations WHERE practice_id = ?",
                (practice_id,),
            )
        row = await cursor.fetchone()
        await cursor.close()
        return int(row[0]) if row is not None else 0

    async def get_prior_context(self, practice_id: str, window: int) -> PriorContext:
        """Collect earlier titles and the lines of the `window` latest attempts."""

        conversations = await self._conversations_for(practice_id)
        titles = [
            conversation["title"]
            for conversation in reversed(conversations)
            if conversation.get("title")
        ]
        recent_dialogues: list[list[str]] = []
        for conversation in conversations[: max(0, window)]:
            lines = [
                sentence["text"]
                for sentence in conversation["sentences"]
                if isinstance(sentence.get("text"), str) and sentence["text"]
            ]
            if lines:
                recent_dialogues.append(lines)
        return PriorContext(titles=titles, recent_dialogues=recent_dialogues)


__all__ = [
    "ConversationNotFoundError",
    "ConversationRecord",
    "NotFoundError",
    "PracticeNotFoundError",
    "PracticeRecord",
    "PracticeRepository",
    "PriorContext",
]
