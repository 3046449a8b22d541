"""
DB Service — Capa de acceso a datos para el agente.

Encapsula TODAS las operaciones SQLite (conversaciones, mensajes del thread,
secretos y plugins por tenant) en métodos tipados, evitando SQL inline
disperso en el orquestador/handlers.
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_DEFAULT_SCHEMA_PATH = (
    Path(__file__).resolve().parent.parent / "database" / "schema" / "schema.sql"
)


class DBService:
    """Servicio de acceso a datos SQLite para el agente de soporte."""

    def __init__(self, db_path: Path):
        self.db_path = db_path

    # helpers

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_schema(self, schema_path: Optional[Path] = None) -> None:
        """Crea las tablas si no existen (idempotente)."""
        schema_path = schema_path or _DEFAULT_SCHEMA_PATH
        with open(schema_path, "r", encoding="utf-8") as f:
            script = f.read()
        with self._conn() as conn:
            conn.executescript(script)
        logger.info(f"Schema aplicado sobre {self.db_path}")

    # Conversations

    def create_conversation(self, organization_id: str) -> Dict:
        """Crea una conversación 'unresolved' con un thread nuevo."""
        now = datetime.now().isoformat()
        conversation_id = uuid.uuid4().hex
        thread_id = f"thread_{uuid.uuid4().hex}"
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO conversations
                    (id, organization_id, thread_id, status, created_at, updated_at)
                VALUES (?, ?, ?, 'unresolved', ?, ?)
                """,
                (conversation_id, organization_id, thread_id, now, now),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            return dict(row)

    def get_conversation(self, conversation_id: str) -> Optional[Dict]:
        """Obtiene una conversación por ID."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            return dict(row) if row else None

    def get_conversation_by_thread(
        self, thread_id: str, organization_id: Optional[str] = None
    ) -> Optional[Dict]:
        """Busca la conversación dueña de un thread.

        Si se pasa ``organization_id`` la búsqueda queda filtrada por tenant.
        """
        query = "SELECT * FROM conversations WHERE thread_id = ?"
        params: tuple = (thread_id,)
        if organization_id is not None:
            query += " AND organization_id = ?"
            params = (thread_id, organization_id)
        with self._conn() as conn:
            row = conn.execute(query, params).fetchone()
            return dict(row) if row else None

    def update_conversation_status(
        self, conversation_id: str, status: str, expected: str
    ) -> bool:
        """Cambia el status solo si el actual es ``expected``.

        Returns:
            True si se modificó la fila, False si el status ya no era ``expected``.
        """
        now = datetime.now().isoformat()
        with self._conn() as conn:
            cursor = conn.execute(
                """
                UPDATE conversations
                SET status = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (status, now, conversation_id, expected),
            )
            conn.commit()
            return cursor.rowcount == 1

    def list_conversations(
        self, organization_id: str, status: Optional[str] = None
    ) -> List[Dict]:
        """Conversaciones de un tenant, más recientes primero."""
        query = "SELECT * FROM conversations WHERE organization_id = ?"
        params: list = [organization_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY updated_at DESC"
        with self._conn() as conn:
            rows = conn.execute(query, params).fetchall()
            return [dict(r) for r in rows]

    # Messages (thread)

    def append_message(
        self,
        thread_id: str,
        role: str,
        content: str,
        tool_name: Optional[str] = None,
    ) -> Dict:
        """Agrega un mensaje al final del thread y lo devuelve."""
        now = datetime.now().isoformat()
        with self._conn() as conn:
            cursor = conn.execute(
                """
                INSERT INTO messages (thread_id, role, content, tool_name, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (thread_id, role, content, tool_name, now),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM messages WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            return dict(row)

    def get_messages(self, thread_id: str, limit: Optional[int] = None) -> List[Dict]:
        """Mensajes del thread en orden cronológico.

        Con ``limit`` devuelve solo los últimos N (sigue en orden cronológico).
        """
        with self._conn() as conn:
            if limit is None:
                rows = conn.execute(
                    "SELECT * FROM messages WHERE thread_id = ? ORDER BY id",
                    (thread_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM messages
                    WHERE thread_id = ?
                    ORDER BY id DESC
                    LIMIT ?
                    """,
                    (thread_id, limit),
                ).fetchall()
                rows = list(reversed(rows))
            return [dict(r) for r in rows]

    def count_messages(self, thread_id: str) -> int:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM messages WHERE thread_id = ?", (thread_id,)
            ).fetchone()
            return row[0]

    # Secrets / plugins

    def upsert_secret(self, name: str, value: Any) -> None:
        """Crea o reemplaza un secreto (valor serializado como JSON)."""
        now = datetime.now().isoformat()
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO secrets (name, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (name, json.dumps(value, ensure_ascii=False), now),
            )
            conn.commit()

    def get_secret(self, name: str) -> Optional[Any]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT value FROM secrets WHERE name = ?", (name,)
            ).fetchone()
            return json.loads(row["value"]) if row else None

    def upsert_plugin(self, organization_id: str, service: str, secret_name: str) -> None:
        """Registra qué integración tiene configurada un tenant."""
        now = datetime.now().isoformat()
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO plugins (organization_id, service, secret_name, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(organization_id, service) DO UPDATE SET
                    secret_name = excluded.secret_name,
                    updated_at = excluded.updated_at
                """,
                (organization_id, service, secret_name, now),
            )
            conn.commit()

    def get_plugin(self, organization_id: str, service: str) -> Optional[Dict]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM plugins WHERE organization_id = ? AND service = ?",
                (organization_id, service),
            ).fetchone()
            return dict(row) if row else None
