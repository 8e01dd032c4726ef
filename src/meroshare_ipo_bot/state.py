from __future__ import annotations

import logging
import shutil
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplicationRecord:
    issue_key: str
    issue_name: str
    quantity: int
    ok: bool
    message: Optional[str]
    applied_at: str


class StateStore:
    """
    Local run history and submitted applications.

    The application log keeps a re-run (manual or scheduled) from submitting the same issue twice.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._backup_path = self.db_path.with_name(self.db_path.name + ".bak")

        self._conn = self._open_or_restore()
        self._ensure_schema()
        self._maybe_backup(if_missing=True)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "StateStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _open_or_restore(self) -> sqlite3.Connection:
        """
        Open the DB. If it is corrupted, move it aside and restore the last-known-good backup,
        else start fresh.
        """
        if self.db_path.exists():
            try:
                conn = sqlite3.connect(self.db_path)
                if self._connection_is_healthy(conn):
                    return conn
                conn.close()
                raise sqlite3.DatabaseError("SQLite quick_check failed")
            except Exception as e:
                logger.warning("State DB appears corrupted/unreadable; attempting restore from backup. (%s)", e)
                self._quarantine_db_file()

                if self._backup_path.exists():
                    try:
                        shutil.copy2(self._backup_path, self.db_path)
                        conn = sqlite3.connect(self.db_path)
                        if self._connection_is_healthy(conn):
                            logger.warning("Restored state DB from backup: %s", self._backup_path)
                            return conn
                        conn.close()
                    except Exception:
                        logger.warning("Failed to restore state DB from backup; creating a fresh DB.", exc_info=True)
                else:
                    logger.warning("No state DB backup found; creating a fresh DB.")

        return sqlite3.connect(self.db_path)

    def _connection_is_healthy(self, conn: sqlite3.Connection) -> bool:
        try:
            _ = conn.execute("PRAGMA schema_version;").fetchone()
            row = conn.execute("PRAGMA quick_check;").fetchone()
            return bool(row and row[0] == "ok")
        except Exception:
            return False

    def _quarantine_db_file(self) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        try:
            self.db_path.replace(self.db_path.with_name(self.db_path.name + f".corrupt-{stamp}"))
        except Exception:
            logger.debug("Failed to quarantine path=%s", self.db_path, exc_info=True)

    def _maybe_backup(self, *, if_missing: bool) -> None:
        if if_missing and self._backup_path.exists():
            return
        try:
            self.backup()
        except Exception:
            logger.debug("Failed to write state DB backup.", exc_info=True)

    def backup(self) -> None:
        """
        Write/refresh `<db_path>.bak` with the SQLite online backup API.
        """
        tmp = self._backup_path.with_name(self._backup_path.name + ".tmp")
        tmp.unlink(missing_ok=True)
        dst = sqlite3.connect(tmp)
        try:
            self._conn.backup(dst)
            dst.commit()
        finally:
            dst.close()
        tmp.replace(self._backup_path)

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              started_at TEXT NOT NULL,
              finished_at TEXT,
              ok INTEGER,
              outcome TEXT,
              message TEXT
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS applications (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              issue_key TEXT NOT NULL,
              issue_name TEXT NOT NULL,
              quantity INTEGER NOT NULL,
              ok INTEGER NOT NULL,
              message TEXT,
              applied_at TEXT NOT NULL
            );
            """
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_applications_issue_key ON applications(issue_key);")
        self._conn.commit()

    def record_run_start(self) -> int:
        now = datetime.now(timezone.utc).isoformat()
        cur = self._conn.execute("INSERT INTO runs(started_at) VALUES (?);", (now,))
        self._conn.commit()
        return int(cur.lastrowid)

    def record_run_finish(
        self,
        run_id: int,
        *,
        ok: bool,
        outcome: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self._conn.execute(
            "UPDATE runs SET finished_at = ?, ok = ?, outcome = ?, message = ? WHERE id = ?;",
            (now, 1 if ok else 0, outcome, message, run_id),
        )
        self._conn.commit()

        # Only snapshot after a good run so the backup stays last-known-good.
        if ok:
            self._maybe_backup(if_missing=False)

    def record_application(
        self,
        *,
        issue_key: str,
        issue_name: str,
        quantity: int,
        ok: bool,
        message: Optional[str] = None,
    ) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self._conn.execute(
            """
            INSERT INTO applications(issue_key, issue_name, quantity, ok, message, applied_at)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (issue_key, issue_name, int(quantity), 1 if ok else 0, message, now),
        )
        self._conn.commit()

    def has_successful_application(self, issue_key: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM applications WHERE issue_key = ? AND ok = 1 LIMIT 1;",
            (issue_key,),
        ).fetchone()
        return row is not None

    def list_applications(self, *, limit: int = 20) -> list[ApplicationRecord]:
        rows = self._conn.execute(
            """
            SELECT issue_key, issue_name, quantity, ok, message, applied_at
            FROM applications ORDER BY id DESC LIMIT ?;
            """,
            (int(limit),),
        ).fetchall()
        return [
            ApplicationRecord(
                issue_key=r[0],
                issue_name=r[1],
                quantity=int(r[2]),
                ok=bool(r[3]),
                message=r[4],
                applied_at=r[5],
            )
            for r in rows
        ]
