"""SQLite database for idempotent message processing state."""

import json
import logging
import sqlite3
from collections.abc import Iterable
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Generator

logger = logging.getLogger(__name__)

# Upper bound when walking transfer lineage; guards against corrupt cycles.
MAX_LINEAGE_WALK = 16


def _safe_json_loads(data: str | None, default: Any = None) -> Any:
    """Safely parse JSON, returning default on error."""
    if not data:
        return default
    try:
        return json.loads(data)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning("Failed to parse JSON in database: %s", e)
        return default


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProcessedRecord:
    """A message that has been through the rule pipeline."""

    account: str
    identifier: str
    processed_at: datetime
    rules_applied: list[str]
    message_id_header: str | None = None
    subject: str | None = None


@dataclass(frozen=True)
class CrossAccountMoveRecord:
    """A message transferred from one account to another."""

    source_account: str
    source_identifier: str
    target_account: str
    target_identifier: str | None
    moved_at: datetime
    message_id_header: str | None = None


@dataclass(frozen=True)
class CleanupResult:
    processed_deleted: int
    moves_deleted: int


class IdempotencyStore:
    """SQLite store tracking processed messages and cross-account moves."""

    def __init__(self, db_path: Path) -> None:
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        self._ensure_schema()

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        """Create database tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connection() as conn:
            conn.executescript("""
                -- One row per (account, identifier) that finished the pipeline
                CREATE TABLE IF NOT EXISTS processed_messages (
                    account TEXT NOT NULL,
                    identifier TEXT NOT NULL,
                    processed_at TEXT NOT NULL,
                    rules_applied TEXT NOT NULL,
                    message_id_header TEXT,
                    subject TEXT,
                    PRIMARY KEY (account, identifier)
                );

                -- Messages transferred to another account
                CREATE TABLE IF NOT EXISTS cross_account_moves (
                    source_account TEXT NOT NULL,
                    source_identifier TEXT NOT NULL,
                    target_account TEXT NOT NULL,
                    target_identifier TEXT,
                    message_id_header TEXT,
                    moved_at TEXT NOT NULL,
                    PRIMARY KEY (source_account, source_identifier)
                );

                CREATE INDEX IF NOT EXISTS idx_processed_at
                    ON processed_messages(processed_at);
                CREATE INDEX IF NOT EXISTS idx_moves_target
                    ON cross_account_moves(target_account, target_identifier);
                CREATE INDEX IF NOT EXISTS idx_moves_moved_at
                    ON cross_account_moves(moved_at);
            """)

            # Migration: Message-ID fallback for transfers without a target UID
            cursor = conn.execute("PRAGMA table_info(cross_account_moves)")
            columns = {row["name"] for row in cursor.fetchall()}
            if "message_id_header" not in columns:
                conn.execute("ALTER TABLE cross_account_moves ADD COLUMN message_id_header TEXT")

    # ─── Processed Messages ───────────────────────────────────────────────

    def is_processed(self, account: str, identifier: str) -> bool:
        """Check if a message has already been processed."""
        with self._connection() as conn:
            cursor = conn.execute(
                "SELECT 1 FROM processed_messages WHERE account = ? AND identifier = ?",
                (account, identifier),
            )
            return cursor.fetchone() is not None

    def filter_unprocessed(self, account: str, identifiers: Iterable[str]) -> list[str]:
        """Return the identifiers with no processed record, preserving order."""
        candidates = list(identifiers)
        if not candidates:
            return []
        with self._connection() as conn:
            cursor = conn.execute(
                "SELECT identifier FROM processed_messages WHERE account = ?",
                (account,),
            )
            done = {row["identifier"] for row in cursor.fetchall()}
        return [i for i in candidates if i not in done]

    def mark_processed(
        self,
        account: str,
        identifier: str,
        rules_applied: list[str],
        message_id_header: str | None = None,
        subject: str | None = None,
    ) -> bool:
        """
        Record that a message finished processing.

        Existing records are left untouched, so concurrent writers cannot
        clobber each other.

        Returns:
            True if a new record was created.
        """
        with self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO processed_messages
                (account, identifier, processed_at, rules_applied, message_id_header, subject)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(account, identifier) DO NOTHING
                """,
                (
                    account,
                    identifier,
                    _utcnow().isoformat(),
                    json.dumps(rules_applied),
                    message_id_header,
                    subject[:200] if subject else subject,
                ),
            )
            return cursor.rowcount > 0

    def get_processed(self, account: str, identifier: str) -> ProcessedRecord | None:
        """Get the processed record for a message, if any."""
        with self._connection() as conn:
            cursor = conn.execute(
                """
                SELECT account, identifier, processed_at, rules_applied,
                       message_id_header, subject
                FROM processed_messages WHERE account = ? AND identifier = ?
                """,
                (account, identifier),
            )
            row = cursor.fetchone()
            if not row:
                return None
            return ProcessedRecord(
                account=row["account"],
                identifier=row["identifier"],
                processed_at=datetime.fromisoformat(row["processed_at"]),
                rules_applied=_safe_json_loads(row["rules_applied"], []),
                message_id_header=row["message_id_header"],
                subject=row["subject"],
            )

    # ─── Cross-Account Moves ──────────────────────────────────────────────

    def mark_cross_account_move(
        self,
        source_account: str,
        source_identifier: str,
        target_account: str,
        target_identifier: str | None,
        message_id_header: str | None = None,
    ) -> bool:
        """
        Record a transfer. Returns True if a new record was created.

        When the target server reports no identifier, the Message-ID header
        is what later recognises the transferred copy.
        """
        with self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO cross_account_moves
                (source_account, source_identifier, target_account, target_identifier,
                 message_id_header, moved_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(source_account, source_identifier) DO NOTHING
                """,
                (
                    source_account,
                    source_identifier,
                    target_account,
                    target_identifier,
                    message_id_header,
                    _utcnow().isoformat(),
                ),
            )
            return cursor.rowcount > 0

    def get_cross_account_move(
        self, source_account: str, source_identifier: str
    ) -> CrossAccountMoveRecord | None:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                SELECT source_account, source_identifier, target_account,
                       target_identifier, message_id_header, moved_at
                FROM cross_account_moves
                WHERE source_account = ? AND source_identifier = ?
                """,
                (source_account, source_identifier),
            )
            row = cursor.fetchone()
            if not row:
                return None
            return CrossAccountMoveRecord(
                source_account=row["source_account"],
                source_identifier=row["source_identifier"],
                target_account=row["target_account"],
                target_identifier=row["target_identifier"],
                moved_at=datetime.fromisoformat(row["moved_at"]),
                message_id_header=row["message_id_header"],
            )

    @staticmethod
    def _incoming_moves(
        conn: sqlite3.Connection,
        account: str,
        identifier: str,
        message_id_header: str | None,
        moved_before: str | None = None,
    ) -> list[sqlite3.Row]:
        # Moves without a target identifier match on Message-ID instead
        return conn.execute(
            """
            SELECT source_account, source_identifier, moved_at FROM cross_account_moves
            WHERE target_account = ?
              AND (target_identifier = ?
                   OR (target_identifier IS NULL AND message_id_header = ?))
              AND (? IS NULL OR moved_at <= ?)
            ORDER BY moved_at DESC
            """,
            (account, identifier, message_id_header, moved_before, moved_before),
        ).fetchall()

    def is_from_cross_account_move(
        self, account: str, identifier: str, message_id_header: str | None = None
    ) -> bool:
        """Check if a message arrived in this account through a prior transfer."""
        with self._connection() as conn:
            return bool(self._incoming_moves(conn, account, identifier, message_id_header))

    def get_chain_depth(
        self, account: str, identifier: str, message_id_header: str | None = None
    ) -> int:
        """
        Count the transfer hops that brought a message to (account, identifier).

        Each earlier hop must predate the one after it, which keeps Message-ID
        matches from walking forward into later transfers of the same message.

        Returns:
            0 for a message that never moved between accounts.
        """
        depth = 0
        current = (account, identifier)
        seen = {current}
        moved_before: str | None = None
        with self._connection() as conn:
            while depth < MAX_LINEAGE_WALK:
                rows = self._incoming_moves(conn, *current, message_id_header, moved_before)
                row = next(
                    (r for r in rows if (r["source_account"], r["source_identifier"]) not in seen),
                    None,
                )
                if row is None:
                    if rows:
                        logger.warning("Transfer cycle detected at %s/%s", *current)
                    break
                depth += 1
                current = (row["source_account"], row["source_identifier"])
                moved_before = row["moved_at"]
                seen.add(current)
        return depth

    # ─── Maintenance ──────────────────────────────────────────────────────

    def cleanup(self, retention_days: int) -> CleanupResult:
        """
        Remove records older than the retention period.

        A transfer older than the window is kept while a later hop of the
        same chain is still inside it, so lineage depth is never undercounted.
        Processed records still referenced by a kept transfer, as either
        source or target, are kept too.

        Args:
            retention_days: Delete records older than this many days.

        Returns:
            Counts of deleted processed and move records.
        """
        cutoff = (_utcnow() - timedelta(days=retention_days)).isoformat()
        with self._connection() as conn:
            moves = conn.execute(
                """
                WITH RECURSIVE open_chain(account, identifier, message_id_header) AS (
                    SELECT source_account, source_identifier, message_id_header
                    FROM cross_account_moves WHERE moved_at >= ?
                    UNION
                    SELECT m.source_account, m.source_identifier, m.message_id_header
                    FROM cross_account_moves m
                    JOIN open_chain c
                      ON m.target_account = c.account
                     AND (m.target_identifier = c.identifier
                          OR (m.target_identifier IS NULL
                              AND m.message_id_header = c.message_id_header))
                )
                DELETE FROM cross_account_moves
                WHERE moved_at < ?
                  AND NOT EXISTS (
                      SELECT 1 FROM open_chain c
                      WHERE c.account = cross_account_moves.source_account
                        AND c.identifier = cross_account_moves.source_identifier
                  )
                """,
                (cutoff, cutoff),
            ).rowcount
            processed = conn.execute(
                """
                DELETE FROM processed_messages
                WHERE processed_at < ?
                  AND NOT EXISTS (
                      SELECT 1 FROM cross_account_moves m
                      WHERE (m.source_account = processed_messages.account
                             AND m.source_identifier = processed_messages.identifier)
                         OR (m.target_account = processed_messages.account
                             AND m.target_identifier = processed_messages.identifier)
                  )
                """,
                (cutoff,),
            ).rowcount
        logger.info(
            "Cleanup removed %d processed and %d move records older than %d days",
            processed,
            moves,
            retention_days,
        )
        return CleanupResult(processed_deleted=processed, moves_deleted=moves)

    def get_stats(self) -> dict[str, Any]:
        """Get per-account counts of processed messages and transfers."""
        with self._connection() as conn:
            processed = {
                row["account"]: row["n"]
                for row in conn.execute(
                    "SELECT account, COUNT(*) AS n FROM processed_messages GROUP BY account"
                )
            }
            moves = conn.execute("SELECT COUNT(*) FROM cross_account_moves").fetchone()[0]
            last = conn.execute("SELECT MAX(processed_at) FROM processed_messages").fetchone()[0]
        return {
            "processed_by_account": processed,
            "processed_total": sum(processed.values()),
            "cross_account_moves": moves,
            "last_processed_at": last,
        }
