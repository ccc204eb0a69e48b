#!/usr/bin/env python3
"""
SQLite persistence for the ingestion server.
Accounts, selectors, projects, documents, heartbeats and daily totals.
"""

import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

from .errors import TransientIOError, ValidationError
from .models import (
    Account,
    DailyTotal,
    Document,
    Heartbeat,
    HeartbeatPayload,
    Project,
    SelectorDescriptor,
)
from .utils import generate_api_key, normalize_email

SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    id          INTEGER PRIMARY KEY,
    email       TEXT NOT NULL UNIQUE,
    api_key     TEXT NOT NULL UNIQUE,
    created_at  REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS selectors (
    id              INTEGER PRIMARY KEY,
    account_id      INTEGER REFERENCES accounts(id) ON DELETE CASCADE,
    domain          TEXT NOT NULL,
    title_selector  TEXT NOT NULL DEFAULT '',
    doc_id_pattern  TEXT,
    doc_id_source   TEXT NOT NULL DEFAULT 'url',
    url_template    TEXT,
    created_at      REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id          INTEGER PRIMARY KEY,
    account_id  INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    name        TEXT NOT NULL,
    color       TEXT NOT NULL DEFAULT '#94a3b8',
    keywords    TEXT NOT NULL DEFAULT '[]',
    created_at  REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS documents (
    id              INTEGER PRIMARY KEY,
    doc_identifier  TEXT NOT NULL UNIQUE,
    domain          TEXT NOT NULL,
    title           TEXT,
    url             TEXT,
    account_id      INTEGER REFERENCES accounts(id) ON DELETE SET NULL,
    project_id      INTEGER REFERENCES projects(id) ON DELETE SET NULL,
    tag             TEXT,
    auto_tagged     INTEGER NOT NULL DEFAULT 0,
    created_at      REAL NOT NULL,
    updated_at      REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS heartbeats (
    id           INTEGER PRIMARY KEY,
    document_id  INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    domain       TEXT NOT NULL,
    account_id   INTEGER,
    recorded_at  REAL NOT NULL,
    rolled_up    INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS daily_totals (
    id             INTEGER PRIMARY KEY,
    date           TEXT NOT NULL,
    document_id    INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    account_id     INTEGER NOT NULL,
    domain         TEXT NOT NULL,
    project_id     INTEGER,
    total_minutes  INTEGER NOT NULL DEFAULT 0,
    UNIQUE (date, document_id, account_id)
);

CREATE INDEX IF NOT EXISTS idx_selectors_domain ON selectors(domain);
CREATE INDEX IF NOT EXISTS idx_heartbeats_doc_account
    ON heartbeats(document_id, account_id, recorded_at);
CREATE INDEX IF NOT EXISTS idx_heartbeats_recorded ON heartbeats(recorded_at);
CREATE INDEX IF NOT EXISTS idx_daily_totals_account_date ON daily_totals(account_id, date);
"""

UPSERT_DOCUMENT = """
INSERT INTO documents (
    doc_identifier, domain, title, url, account_id, project_id, auto_tagged,
    created_at, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(doc_identifier) DO UPDATE SET
    domain = excluded.domain,
    title = COALESCE(excluded.title, documents.title),
    url = COALESCE(excluded.url, documents.url),
    account_id = excluded.account_id,
    updated_at = excluded.updated_at
"""

UPSERT_DAILY_TOTAL = """
INSERT INTO daily_totals (date, document_id, account_id, domain, project_id, total_minutes)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(date, document_id, account_id) DO UPDATE SET
    total_minutes = daily_totals.total_minutes + excluded.total_minutes,
    domain = excluded.domain,
    project_id = excluded.project_id
"""


def _account(row: sqlite3.Row) -> Account:
    return Account(
        id=row["id"], email=row["email"], api_key=row["api_key"], created_at=row["created_at"]
    )


def _selector(row: sqlite3.Row) -> SelectorDescriptor:
    return SelectorDescriptor(
        id=row["id"],
        account_id=row["account_id"],
        domain=row["domain"],
        title_selector=row["title_selector"],
        doc_id_pattern=row["doc_id_pattern"],
        doc_id_source=row["doc_id_source"],
        url_template=row["url_template"],
    )


def _project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        account_id=row["account_id"],
        name=row["name"],
        color=row["color"],
        keywords=json.loads(row["keywords"] or "[]"),
    )


def _document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        doc_identifier=row["doc_identifier"],
        domain=row["domain"],
        title=row["title"],
        url=row["url"],
        account_id=row["account_id"],
        project_id=row["project_id"],
        tag=row["tag"],
        auto_tagged=bool(row["auto_tagged"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class HeartbeatStore:
    """Thread-safe SQLite store shared by the server and the rollup task.

    One connection is serialized behind a lock, and every multi-statement
    write runs in a ``BEGIN IMMEDIATE`` transaction so concurrent heartbeats
    for the same document cannot interleave their read-check-write steps.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self._conn = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON;")
        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.executescript(SCHEMA)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                yield self._conn
                self._conn.execute("COMMIT")
            except sqlite3.IntegrityError:
                self._conn.execute("ROLLBACK")
                raise
            except sqlite3.Error as e:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise TransientIOError(f"Storage failure: {e}") from e
            except BaseException:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise TransientIOError(f"Storage failure: {e}") from e

    def _query_one(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        rows = self._query(sql, params)
        return rows[0] if rows else None

    # Accounts

    def create_account(self, email: str, api_key: Optional[str] = None) -> Account:
        """Create an account with a freshly generated API key."""
        email = normalize_email(email)
        if not email or "@" not in email:
            raise ValidationError(f"Invalid email: {email!r}")

        api_key = api_key or generate_api_key()
        created_at = time.time()
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO accounts (email, api_key, created_at) VALUES (?, ?, ?)",
                    (email, api_key, created_at),
                )
                account_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Account already exists for {email}") from e

        return Account(id=account_id, email=email, api_key=api_key, created_at=created_at)

    def get_account_by_api_key(self, api_key: str) -> Optional[Account]:
        if not api_key:
            return None
        row = self._query_one("SELECT * FROM accounts WHERE api_key = ?", (api_key,))
        return _account(row) if row else None

    def get_account_by_email(self, email: str) -> Optional[Account]:
        row = self._query_one(
            "SELECT * FROM accounts WHERE email = ?", (normalize_email(email),)
        )
        return _account(row) if row else None

    # Selector registry

    def put_selector(self, descriptor: SelectorDescriptor) -> SelectorDescriptor:
        """Insert or replace the descriptor for (account, domain)."""
        domain = descriptor.domain.strip().lower()
        if not domain:
            raise ValidationError("domain required")
        if descriptor.doc_id_source not in ("url", "path"):
            raise ValidationError("doc_id_source must be 'url' or 'path'")

        values = (
            descriptor.title_selector,
            descriptor.doc_id_pattern,
            descriptor.doc_id_source,
            descriptor.url_template,
        )
        try:
            with self._transaction() as conn:
                existing = conn.execute(
                    "SELECT id FROM selectors WHERE domain = ? AND account_id IS ?",
                    (domain, descriptor.account_id),
                ).fetchone()
                if existing:
                    selector_id = existing["id"]
                    conn.execute(
                        "UPDATE selectors SET title_selector = ?, doc_id_pattern = ?, "
                        "doc_id_source = ?, url_template = ? WHERE id = ?",
                        values + (selector_id,),
                    )
                else:
                    cursor = conn.execute(
                        "INSERT INTO selectors (title_selector, doc_id_pattern, "
                        "doc_id_source, url_template, account_id, domain, created_at) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        values + (descriptor.account_id, domain, time.time()),
                    )
                    selector_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Unknown account {descriptor.account_id}") from e

        row = self._query_one("SELECT * FROM selectors WHERE id = ?", (selector_id,))
        return _selector(row)

    def find_selector(
        self, domain: str, account_id: Optional[int] = None
    ) -> Optional[SelectorDescriptor]:
        """Find the account's descriptor for a domain, else the first match.

        Shared descriptors (no owning account) are preferred over other
        accounts' descriptors in the fallback.
        """
        domain = domain.strip().lower()
        if account_id is not None:
            row = self._query_one(
                "SELECT * FROM selectors WHERE domain = ? AND account_id = ?",
                (domain, account_id),
            )
            if row:
                return _selector(row)

        row = self._query_one(
            "SELECT * FROM selectors WHERE domain = ? "
            "ORDER BY account_id IS NOT NULL, id LIMIT 1",
            (domain,),
        )
        return _selector(row) if row else None

    # Projects

    def create_project(
        self,
        account_id: int,
        name: str,
        color: str = "#94a3b8",
        keywords: Optional[List[str]] = None,
    ) -> Project:
        name = name.strip()
        if not name:
            raise ValidationError("project name required")

        cleaned: List[str] = []
        for keyword in keywords or []:
            keyword = keyword.strip()
            if keyword and keyword not in cleaned:
                cleaned.append(keyword)

        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO projects (account_id, name, color, keywords, created_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (account_id, name, color, json.dumps(cleaned), time.time()),
                )
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Unknown account {account_id}") from e
        return Project(
            id=cursor.lastrowid, account_id=account_id, name=name, color=color, keywords=cleaned
        )

    def list_projects(self, account_id: int) -> List[Project]:
        rows = self._query(
            "SELECT * FROM projects WHERE account_id = ? ORDER BY id", (account_id,)
        )
        return [_project(row) for row in rows]

    # Documents and heartbeats

    def record_heartbeat(
        self,
        account_id: int,
        payload: HeartbeatPayload,
        recorded_at: float,
        min_interval: float = 0,
        project_id: Optional[int] = None,
    ) -> Tuple[int, bool]:
        """Upsert the document, then append a heartbeat referencing it.

        ``project_id`` only applies when the document is created; existing
        project and tag assignments are never touched.

        Returns:
            (document_id, recorded) where recorded is False if the heartbeat
            was skipped because (document, account) already has one within
            ``min_interval`` seconds.
        """
        try:
            with self._transaction() as conn:
                return self._write_heartbeat(
                    conn, account_id, payload, recorded_at, min_interval, project_id
                )
        except sqlite3.IntegrityError as e:
            raise TransientIOError(
                f"Heartbeat write failed for {payload.doc_identifier}: {e}"
            ) from e

    @staticmethod
    def _write_heartbeat(
        conn: sqlite3.Connection,
        account_id: int,
        payload: HeartbeatPayload,
        recorded_at: float,
        min_interval: float,
        project_id: Optional[int],
    ) -> Tuple[int, bool]:
        conn.execute(
            UPSERT_DOCUMENT,
            (
                payload.doc_identifier,
                payload.domain,
                payload.title,
                payload.url,
                account_id,
                project_id,
                1 if project_id is not None else 0,
                recorded_at,
                recorded_at,
            ),
        )
        document_id = conn.execute(
            "SELECT id FROM documents WHERE doc_identifier = ?",
            (payload.doc_identifier,),
        ).fetchone()["id"]

        if min_interval > 0:
            last = conn.execute(
                "SELECT MAX(recorded_at) AS last FROM heartbeats "
                "WHERE document_id = ? AND account_id = ?",
                (document_id, account_id),
            ).fetchone()["last"]
            if last is not None and recorded_at - last < min_interval:
                return document_id, False

        conn.execute(
            "INSERT INTO heartbeats (document_id, domain, account_id, recorded_at) "
            "VALUES (?, ?, ?, ?)",
            (document_id, payload.domain, account_id, recorded_at),
        )
        return document_id, True

    def get_document(self, document_id: int) -> Optional[Document]:
        row = self._query_one("SELECT * FROM documents WHERE id = ?", (document_id,))
        return _document(row) if row else None

    def get_document_by_identifier(self, doc_identifier: str) -> Optional[Document]:
        row = self._query_one(
            "SELECT * FROM documents WHERE doc_identifier = ?", (doc_identifier,)
        )
        return _document(row) if row else None

    def list_documents(self, account_id: Optional[int] = None) -> List[Document]:
        if account_id is None:
            rows = self._query("SELECT * FROM documents ORDER BY id")
        else:
            rows = self._query(
                "SELECT * FROM documents WHERE account_id = ? ORDER BY id", (account_id,)
            )
        return [_document(row) for row in rows]

    def list_unallocated(self, account_id: int) -> List[Document]:
        """Documents of an account without a project, newest first."""
        rows = self._query(
            "SELECT * FROM documents WHERE account_id = ? AND project_id IS NULL "
            "ORDER BY created_at DESC, id DESC",
            (account_id,),
        )
        return [_document(row) for row in rows]

    def assign_project(self, document_id: int, project_id: Optional[int]) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE documents SET project_id = ?, auto_tagged = 0 WHERE id = ?",
                (project_id, document_id),
            )

    def set_tag(self, document_id: int, tag: Optional[str]) -> None:
        with self._transaction() as conn:
            conn.execute("UPDATE documents SET tag = ? WHERE id = ?", (tag, document_id))

    def delete_document(self, document_id: int) -> bool:
        """Delete a document; its heartbeats and daily totals cascade."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        return cursor.rowcount > 0

    def list_heartbeats(
        self,
        document_id: Optional[int] = None,
        account_id: Optional[int] = None,
        start_ts: Optional[float] = None,
        end_ts: Optional[float] = None,
    ) -> List[Heartbeat]:
        clauses = []
        params: list = []
        if document_id is not None:
            clauses.append("document_id = ?")
            params.append(document_id)
        if account_id is not None:
            clauses.append("account_id = ?")
            params.append(account_id)
        if start_ts is not None:
            clauses.append("recorded_at >= ?")
            params.append(start_ts)
        if end_ts is not None:
            clauses.append("recorded_at < ?")
            params.append(end_ts)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._query(
            f"SELECT * FROM heartbeats {where} ORDER BY recorded_at, id", tuple(params)
        )
        return [
            Heartbeat(
                id=row["id"],
                document_id=row["document_id"],
                domain=row["domain"],
                account_id=row["account_id"],
                recorded_at=row["recorded_at"],
            )
            for row in rows
        ]

    def count_heartbeats(self) -> int:
        return self._query_one("SELECT COUNT(*) AS n FROM heartbeats")["n"]

    # Rollup

    def rollup_before(self, cutoff_ts: float, delete_raw: bool = True) -> Tuple[int, int]:
        """Fold heartbeats older than ``cutoff_ts`` into daily totals.

        Only heartbeats not yet rolled up are counted, and they are flagged
        (or deleted) in the same transaction, so re-running never counts a
        heartbeat twice.

        Returns:
            (daily total rows touched, heartbeats rolled up)
        """
        with self._transaction() as conn:
            groups = conn.execute(
                "SELECT date(h.recorded_at, 'unixepoch') AS day, h.document_id, "
                "h.account_id, d.domain, d.project_id, COUNT(*) AS minutes "
                "FROM heartbeats h JOIN documents d ON d.id = h.document_id "
                "WHERE h.recorded_at < ? AND h.rolled_up = 0 AND h.account_id IS NOT NULL "
                "GROUP BY day, h.document_id, h.account_id",
                (cutoff_ts,),
            ).fetchall()

            for group in groups:
                conn.execute(
                    UPSERT_DAILY_TOTAL,
                    (
                        group["day"],
                        group["document_id"],
                        group["account_id"],
                        group["domain"],
                        group["project_id"],
                        group["minutes"],
                    ),
                )

            rolled = conn.execute(
                "UPDATE heartbeats SET rolled_up = 1 "
                "WHERE recorded_at < ? AND rolled_up = 0 AND account_id IS NOT NULL",
                (cutoff_ts,),
            ).rowcount
            if delete_raw:
                conn.execute(
                    "DELETE FROM heartbeats WHERE recorded_at < ? AND rolled_up = 1",
                    (cutoff_ts,),
                )

        return len(groups), rolled

    def list_daily_totals(
        self,
        account_id: Optional[int] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[DailyTotal]:
        """Daily totals, optionally filtered by account and inclusive date range."""
        clauses = []
        params: list = []
        if account_id is not None:
            clauses.append("account_id = ?")
            params.append(account_id)
        if start_date is not None:
            clauses.append("date >= ?")
            params.append(start_date)
        if end_date is not None:
            clauses.append("date <= ?")
            params.append(end_date)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._query(
            f"SELECT * FROM daily_totals {where} ORDER BY date, document_id", tuple(params)
        )
        return [
            DailyTotal(
                date=row["date"],
                document_id=row["document_id"],
                account_id=row["account_id"],
                domain=row["domain"],
                project_id=row["project_id"],
                total_minutes=row["total_minutes"],
            )
            for row in rows
        ]

    def raw_daily_counts(
        self, account_id: int, start_ts: float, end_ts: float
    ) -> List[DailyTotal]:
        """Daily totals computed on the fly from un-rolled raw heartbeats."""
        rows = self._query(
            "SELECT date(h.recorded_at, 'unixepoch') AS day, h.document_id, h.account_id, "
            "d.domain, d.project_id, COUNT(*) AS minutes "
            "FROM heartbeats h JOIN documents d ON d.id = h.document_id "
            "WHERE h.account_id = ? AND h.recorded_at >= ? AND h.recorded_at < ? "
            "AND h.rolled_up = 0 "
            "GROUP BY day, h.document_id, h.account_id ORDER BY day, h.document_id",
            (account_id, start_ts, end_ts),
        )
        return [
            DailyTotal(
                date=row["day"],
                document_id=row["document_id"],
                account_id=row["account_id"],
                domain=row["domain"],
                project_id=row["project_id"],
                total_minutes=row["minutes"],
            )
            for row in rows
        ]

    def count_projects(self, account_id: int) -> int:
        return self._query_one(
            "SELECT COUNT(*) AS n FROM projects WHERE account_id = ?", (account_id,)
        )["n"]

    def count_unallocated(self, account_id: int) -> int:
        return self._query_one(
            "SELECT COUNT(*) AS n FROM documents WHERE account_id = ? AND project_id IS NULL",
            (account_id,),
        )["n"]
