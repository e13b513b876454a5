"""
SQLite Repository Implementation
================================
NotebookRepository Protocol 구현 - SQLite 백엔드 (파일 또는 ":memory:")

동기 sqlite3 호출은 asyncio.to_thread로 감싸 이벤트 루프를 막지 않습니다.
엔티티는 Pydantic JSON 직렬화로 payload 컬럼에 저장합니다.

Usage:
    repo = SQLiteRepository("./data/notebook.db")
    await repo.initialize()
    await repo.save_session(Session(title="Research"))
"""

import asyncio
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path

from notebook_rag.domain.entities import ChatMessage, ChatSummary, Document, Memory, Session

logger = logging.getLogger(__name__)


class SQLiteRepository:
    """SQLite 기반 Repository"""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        payload TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS documents (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        payload TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS chat_messages (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT UNIQUE NOT NULL,
        session_id TEXT NOT NULL,
        is_compacted INTEGER DEFAULT 0,
        payload TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS chat_summaries (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT UNIQUE NOT NULL,
        session_id TEXT NOT NULL,
        payload TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS memories (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        importance REAL NOT NULL,
        created_at TEXT NOT NULL,
        payload TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_documents_session ON documents(session_id);
    CREATE INDEX IF NOT EXISTS idx_messages_session ON chat_messages(session_id);
    CREATE INDEX IF NOT EXISTS idx_summaries_session ON chat_summaries(session_id);
    CREATE INDEX IF NOT EXISTS idx_memories_session ON memories(session_id);
    """

    def __init__(self, db_path: str | Path = "./data/notebook.db"):
        self.db_path = str(db_path)
        self._shared_conn: sqlite3.Connection | None = None
        self._shared_lock = threading.Lock()
        if self.db_path == ":memory:":
            # 인메모리 DB는 연결을 닫으면 사라지므로 연결 하나를 계속 사용
            self._shared_conn = sqlite3.connect(":memory:", check_same_thread=False)
            self._shared_conn.row_factory = sqlite3.Row
        else:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False

    @contextmanager
    def _get_connection(self):
        """SQLite 연결 컨텍스트 매니저 (성공 시 commit, 예외 시 rollback)"""
        if self._shared_conn is not None:
            with self._shared_lock, self._shared_conn:
                yield self._shared_conn
            return

        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def close(self) -> None:
        """공유 연결 종료 (:memory:의 데이터도 함께 사라짐)"""
        if self._shared_conn is not None:
            self._shared_conn.close()

    async def _run(self, func, *args):
        if not self._initialized:
            await self.initialize()
        return await asyncio.to_thread(func, *args)

    async def initialize(self) -> None:
        if self._initialized:
            return

        def _create():
            with self._get_connection() as conn:
                conn.executescript(self.SCHEMA)

        await asyncio.to_thread(_create)
        self._initialized = True
        logger.info(f"SQLiteRepository initialized: {self.db_path}")

    def _execute(self, sql: str, params: tuple = ()) -> int:
        with self._get_connection() as conn:
            return conn.execute(sql, params).rowcount

    def _executemany(self, sql: str, rows: list[tuple]) -> None:
        with self._get_connection() as conn:
            conn.executemany(sql, rows)

    def _fetch(self, sql: str, params: tuple = ()) -> list[str]:
        with self._get_connection() as conn:
            return [row["payload"] for row in conn.execute(sql, params).fetchall()]

    # =========================================================================
    # Session
    # =========================================================================

    async def save_session(self, session: Session) -> Session:
        await self._run(
            self._execute,
            "INSERT OR REPLACE INTO sessions (id, payload) VALUES (?, ?)",
            (session.id, session.model_dump_json()),
        )
        return session

    async def get_session(self, session_id: str) -> Session | None:
        rows = await self._run(self._fetch, "SELECT payload FROM sessions WHERE id = ?", (session_id,))
        return Session.model_validate_json(rows[0]) if rows else None

    async def delete_session(self, session_id: str) -> bool:
        deleted = await self._run(self._execute, "DELETE FROM sessions WHERE id = ?", (session_id,))
        return deleted > 0

    async def delete_session_data(self, session_id: str) -> None:
        def _delete():
            with self._get_connection() as conn:
                for table in ("documents", "chat_messages", "chat_summaries", "memories"):
                    conn.execute(f"DELETE FROM {table} WHERE session_id = ?", (session_id,))

        await self._run(_delete)

    # =========================================================================
    # Document
    # =========================================================================

    async def save_document(self, document: Document) -> Document:
        await self._run(
            self._execute,
            "INSERT OR REPLACE INTO documents (id, session_id, payload) VALUES (?, ?, ?)",
            (document.id, document.session_id, document.model_dump_json()),
        )
        return document

    async def get_document(self, document_id: str) -> Document | None:
        rows = await self._run(
            self._fetch, "SELECT payload FROM documents WHERE id = ?", (document_id,)
        )
        return Document.model_validate_json(rows[0]) if rows else None

    async def list_documents(self, session_id: str) -> list[Document]:
        rows = await self._run(
            self._fetch,
            "SELECT payload FROM documents WHERE session_id = ? ORDER BY rowid",
            (session_id,),
        )
        return [Document.model_validate_json(r) for r in rows]

    async def delete_document(self, document_id: str) -> bool:
        deleted = await self._run(self._execute, "DELETE FROM documents WHERE id = ?", (document_id,))
        return deleted > 0

    # =========================================================================
    # Chat
    # =========================================================================

    async def save_messages(self, messages: list[ChatMessage]) -> None:
        if not messages:
            return
        # ON CONFLICT UPDATE로 seq(생성 순서)를 유지
        await self._run(
            self._executemany,
            """
            INSERT INTO chat_messages (id, session_id, is_compacted, payload) VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                is_compacted = excluded.is_compacted,
                payload = excluded.payload
            """,
            [(m.id, m.session_id, int(m.is_compacted), m.model_dump_json()) for m in messages],
        )

    async def list_messages(
        self, session_id: str, include_compacted: bool = True
    ) -> list[ChatMessage]:
        sql = "SELECT payload FROM chat_messages WHERE session_id = ?"
        if not include_compacted:
            sql += " AND is_compacted = 0"
        rows = await self._run(self._fetch, sql + " ORDER BY seq", (session_id,))
        return [ChatMessage.model_validate_json(r) for r in rows]

    async def save_summary(self, summary: ChatSummary) -> ChatSummary:
        await self._run(
            self._execute,
            "INSERT OR IGNORE INTO chat_summaries (id, session_id, payload) VALUES (?, ?, ?)",
            (summary.id, summary.session_id, summary.model_dump_json()),
        )
        return summary

    async def list_summaries(self, session_id: str) -> list[ChatSummary]:
        rows = await self._run(
            self._fetch,
            "SELECT payload FROM chat_summaries WHERE session_id = ? ORDER BY seq",
            (session_id,),
        )
        return [ChatSummary.model_validate_json(r) for r in rows]

    # =========================================================================
    # Memory
    # =========================================================================

    async def save_memory(self, memory: Memory) -> Memory:
        await self._run(
            self._execute,
            """
            INSERT OR REPLACE INTO memories (id, session_id, importance, created_at, payload)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                memory.id,
                memory.session_id,
                memory.importance,
                memory.created_at.isoformat(),
                memory.model_dump_json(),
            ),
        )
        return memory

    async def get_memory(self, memory_id: str) -> Memory | None:
        rows = await self._run(self._fetch, "SELECT payload FROM memories WHERE id = ?", (memory_id,))
        return Memory.model_validate_json(rows[0]) if rows else None

    async def list_memories(self, session_id: str) -> list[Memory]:
        rows = await self._run(
            self._fetch,
            "SELECT payload FROM memories WHERE session_id = ? "
            "ORDER BY importance DESC, created_at DESC",
            (session_id,),
        )
        return [Memory.model_validate_json(r) for r in rows]

    async def delete_memory(self, memory_id: str) -> bool:
        deleted = await self._run(self._execute, "DELETE FROM memories WHERE id = ?", (memory_id,))
        return deleted > 0
