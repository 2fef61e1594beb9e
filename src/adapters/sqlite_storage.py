"""SQLite storage adapter.

Implements the core StoragePort using a simple SQLite database.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from core.errors import StoreUnavailableError
from core.models import ThreadMapping, UserProfile

LOGGER = logging.getLogger(__name__)


def _ts(value: datetime) -> str:
    return value.isoformat()


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the StoragePort contract.

    Every operation opens its own connection and runs in a single
    transaction, so a concurrent reader never sees a half-written record.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _execute(self, operation: str, fn):
        try:
            conn = self._connect()
            try:
                with conn:
                    return fn(conn)
            finally:
                conn.close()
        except sqlite3.Error as exc:
            LOGGER.error("SQLite %s failed: %s", operation, exc)
            raise StoreUnavailableError(f"{operation} failed: {exc}") from exc

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - chat_mappings: source thread <-> destination topic, both unique
        - user_profiles: per-participant activity counters
        """

        def create(conn: sqlite3.Connection) -> None:
            # chat_mappings is bijective while both sides exist.
            # Fields:
            # - source_thread_id: opaque source thread id (PRIMARY KEY)
            # - dest_topic_id: destination forum topic id (UNIQUE)
            # - created_at / last_activity: ISO timestamps
            # - profile_pic_url: last avatar synced into the topic
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chat_mappings (
                    source_thread_id TEXT PRIMARY KEY,
                    dest_topic_id TEXT NOT NULL UNIQUE,
                    created_at TIMESTAMP NOT NULL,
                    last_activity TIMESTAMP NOT NULL,
                    profile_pic_url TEXT
                )
                """
            )
            # user_profiles is a historical record; rows are never deleted.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS user_profiles (
                    user_id TEXT PRIMARY KEY,
                    username TEXT,
                    full_name TEXT,
                    first_seen TIMESTAMP NOT NULL,
                    message_count INTEGER NOT NULL DEFAULT 0,
                    last_seen TIMESTAMP NOT NULL
                )
                """
            )

        self._execute("init_db", create)

    @staticmethod
    def _mapping_from_row(row: sqlite3.Row) -> ThreadMapping:
        return ThreadMapping(
            source_thread_id=row["source_thread_id"],
            dest_topic_id=row["dest_topic_id"],
            created_at=_parse_ts(row["created_at"]),
            last_activity=_parse_ts(row["last_activity"]),
            profile_pic_url=row["profile_pic_url"],
        )

    @staticmethod
    def _user_from_row(row: sqlite3.Row) -> UserProfile:
        return UserProfile(
            user_id=row["user_id"],
            username=row["username"],
            full_name=row["full_name"],
            first_seen=_parse_ts(row["first_seen"]),
            message_count=int(row["message_count"]),
            last_seen=_parse_ts(row["last_seen"]),
        )

    def get_mapping(self, source_thread_id: str) -> Optional[ThreadMapping]:
        row = self._execute(
            "get_mapping",
            lambda conn: conn.execute(
                "SELECT * FROM chat_mappings WHERE source_thread_id = ?",
                (source_thread_id,),
            ).fetchone(),
        )
        return self._mapping_from_row(row) if row else None

    def get_mapping_by_topic(self, dest_topic_id: str) -> Optional[ThreadMapping]:
        row = self._execute(
            "get_mapping_by_topic",
            lambda conn: conn.execute(
                "SELECT * FROM chat_mappings WHERE dest_topic_id = ?",
                (dest_topic_id,),
            ).fetchone(),
        )
        return self._mapping_from_row(row) if row else None

    def upsert_mapping(self, mapping: ThreadMapping) -> None:
        """Upsert keyed by source thread, keeping dest_topic_id unique."""

        def upsert(conn: sqlite3.Connection) -> None:
            # A topic id reused by the platform evicts the stale owner row in
            # the same transaction.
            conn.execute(
                "DELETE FROM chat_mappings WHERE dest_topic_id = ? AND source_thread_id != ?",
                (mapping.dest_topic_id, mapping.source_thread_id),
            )
            conn.execute(
                """
                INSERT INTO chat_mappings (
                    source_thread_id,
                    dest_topic_id,
                    created_at,
                    last_activity,
                    profile_pic_url
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(source_thread_id) DO UPDATE SET
                    dest_topic_id = excluded.dest_topic_id,
                    last_activity = excluded.last_activity,
                    profile_pic_url = excluded.profile_pic_url,
                    created_at = CASE
                        WHEN chat_mappings.dest_topic_id = excluded.dest_topic_id
                        THEN chat_mappings.created_at
                        ELSE excluded.created_at
                    END
                """,
                (
                    mapping.source_thread_id,
                    mapping.dest_topic_id,
                    _ts(mapping.created_at),
                    _ts(mapping.last_activity),
                    mapping.profile_pic_url,
                ),
            )

        self._execute("upsert_mapping", upsert)

    def delete_mapping(self, source_thread_id: str, dest_topic_id: Optional[str] = None) -> bool:
        """Delete a mapping; with ``dest_topic_id`` only if it still matches."""

        if dest_topic_id is None:
            query = "DELETE FROM chat_mappings WHERE source_thread_id = ?"
            params: tuple = (source_thread_id,)
        else:
            query = "DELETE FROM chat_mappings WHERE source_thread_id = ? AND dest_topic_id = ?"
            params = (source_thread_id, dest_topic_id)
        removed = self._execute("delete_mapping", lambda conn: conn.execute(query, params).rowcount)
        return removed > 0

    def list_mappings(self) -> list[ThreadMapping]:
        rows = self._execute(
            "list_mappings",
            lambda conn: conn.execute("SELECT * FROM chat_mappings ORDER BY created_at").fetchall(),
        )
        return [self._mapping_from_row(row) for row in rows]

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        row = self._execute(
            "get_user",
            lambda conn: conn.execute(
                "SELECT * FROM user_profiles WHERE user_id = ?",
                (user_id,),
            ).fetchone(),
        )
        return self._user_from_row(row) if row else None

    def upsert_user(self, profile: UserProfile) -> None:
        self._execute(
            "upsert_user",
            lambda conn: conn.execute(
                """
                INSERT INTO user_profiles (
                    user_id,
                    username,
                    full_name,
                    first_seen,
                    message_count,
                    last_seen
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    username = COALESCE(excluded.username, user_profiles.username),
                    full_name = COALESCE(excluded.full_name, user_profiles.full_name),
                    message_count = excluded.message_count,
                    last_seen = excluded.last_seen
                """,
                (
                    profile.user_id,
                    profile.username,
                    profile.full_name,
                    _ts(profile.first_seen),
                    profile.message_count,
                    _ts(profile.last_seen),
                ),
            ),
        )

    def list_users(self) -> list[UserProfile]:
        rows = self._execute(
            "list_users",
            lambda conn: conn.execute("SELECT * FROM user_profiles").fetchall(),
        )
        return [self._user_from_row(row) for row in rows]
