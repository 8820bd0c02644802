from __future__ import annotations
import logging

import psycopg2

from agent_versions.domain.errors import StorageError
from agent_versions.domain.interfaces import IBlobStorage

log = logging.getLogger(__name__)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS blobs (
    bucket      TEXT        NOT NULL,
    object_key  TEXT        NOT NULL,
    payload     BYTEA       NOT NULL,
    generation  BIGINT      NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (bucket, object_key)
)
"""


class PostgresBlobStorage(IBlobStorage):
    """
    Concrete implementation of IBlobStorage on a PostgreSQL table.

    Receives an already-connected psycopg2 connection (injected).
    Does not create or manage the connection itself — that's the
    responsibility of the caller (main.py / dependency wiring).

    Each row is one object; `generation` goes up by one on every write,
    which gives conditional writes something to compare against.
    """

    def __init__(self, conn, bucket: str, timeout: float | None = None) -> None:
        self._conn    = conn
        self._bucket  = bucket
        self._timeout_ms = int(timeout * 1000) if timeout else None

    def _execute(self, sql: str, params: tuple):
        """Run one statement in its own transaction; returns (rowcount, first row)."""
        try:
            with self._conn.cursor() as cur:
                if self._timeout_ms:
                    cur.execute("SET LOCAL statement_timeout = %s", (self._timeout_ms,))
                cur.execute(sql, params)
                row = cur.fetchone() if cur.description else None
                rowcount = cur.rowcount
            self._conn.commit()
        except psycopg2.Error as exc:
            self._conn.rollback()
            raise StorageError(f"PostgreSQL blob operation failed: {exc}") from exc
        return rowcount, row

    def create_table(self) -> None:
        self._execute(CREATE_TABLE_SQL, ())
        log.debug("Ensured blobs table exists")

    def write(self, key: str, payload: bytes, if_revision_match: int | None = None) -> int:
        """
        Unconditional writes upsert the row. Conditional writes either insert
        a row that must not exist yet (revision 0) or update one whose
        generation still equals the expected revision.
        """
        data = psycopg2.Binary(payload)

        if if_revision_match is None:
            _, row = self._execute(
                """
                INSERT INTO blobs (bucket, object_key, payload, generation, updated_at)
                VALUES (%s, %s, %s, 1, NOW())
                ON CONFLICT (bucket, object_key) DO UPDATE SET
                    payload    = EXCLUDED.payload,
                    generation = blobs.generation + 1,
                    updated_at = EXCLUDED.updated_at
                RETURNING generation
                """,
                (self._bucket, key, data),
            )
        elif if_revision_match == 0:
            _, row = self._execute(
                """
                INSERT INTO blobs (bucket, object_key, payload, generation, updated_at)
                VALUES (%s, %s, %s, 1, NOW())
                ON CONFLICT (bucket, object_key) DO NOTHING
                RETURNING generation
                """,
                (self._bucket, key, data),
            )
        else:
            _, row = self._execute(
                """
                UPDATE blobs
                SET payload    = %s,
                    generation = generation + 1,
                    updated_at = NOW()
                WHERE bucket = %s AND object_key = %s AND generation = %s
                RETURNING generation
                """,
                (data, self._bucket, key, if_revision_match),
            )

        if row is None:
            raise StorageError(
                f"Precondition failed for {self._bucket}/{key}: expected revision {if_revision_match}"
            )
        log.debug("Wrote %s/%s | %d bytes | generation=%d", self._bucket, key, len(payload), row[0])
        return row[0]

    def read_revision(self, key: str) -> int:
        _, row = self._execute(
            "SELECT generation FROM blobs WHERE bucket = %s AND object_key = %s",
            (self._bucket, key),
        )
        return row[0] if row else 0

    def copy(self, source_key: str, target_key: str) -> int:
        _, row = self._execute(
            """
            INSERT INTO blobs (bucket, object_key, payload, generation, updated_at)
            SELECT bucket, %s, payload, 1, NOW()
            FROM blobs
            WHERE bucket = %s AND object_key = %s
            ON CONFLICT (bucket, object_key) DO UPDATE SET
                payload    = EXCLUDED.payload,
                generation = blobs.generation + 1,
                updated_at = EXCLUDED.updated_at
            RETURNING generation
            """,
            (target_key, self._bucket, source_key),
        )
        if row is None:
            raise StorageError(f"Copy source {self._bucket}/{source_key} does not exist")
        log.debug("Copied %s → %s | generation=%d", source_key, target_key, row[0])
        return row[0]

    def delete(self, key: str) -> None:
        rowcount, _ = self._execute(
            "DELETE FROM blobs WHERE bucket = %s AND object_key = %s",
            (self._bucket, key),
        )
        log.debug("Deleted %s/%s (%d rows)", self._bucket, key, rowcount)
