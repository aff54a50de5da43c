"""SQLite cache of message envelopes and per-mailbox sync state."""

from __future__ import annotations

import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator

from .imap import Envelope
from .mailconfig import PathLike, cache_file_path

DEFAULT_LIMIT = 50

_SCHEMA = """
CREATE TABLE IF NOT EXISTS mailboxes (
    name TEXT PRIMARY KEY,
    uidvalidity INTEGER NOT NULL,
    last_uid INTEGER NOT NULL DEFAULT 0,
    last_sync INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS envelopes (
    mailbox TEXT NOT NULL,
    uid INTEGER NOT NULL,
    message_id TEXT,
    date INTEGER,
    from_addr TEXT,
    from_name TEXT,
    subject TEXT,
    PRIMARY KEY (mailbox, uid)
);

CREATE INDEX IF NOT EXISTS idx_envelopes_date ON envelopes(mailbox, date DESC);
CREATE INDEX IF NOT EXISTS idx_envelopes_from ON envelopes(mailbox, from_addr);
CREATE INDEX IF NOT EXISTS idx_envelopes_subject ON envelopes(mailbox, subject);
"""

_ENVELOPE_COLUMNS = "uid, message_id, date, from_addr, from_name, subject"


class CacheError(Exception):
    """Raised when the cache database cannot be read or written."""


def _from_unix(seconds: int | None) -> datetime:
    return datetime.fromtimestamp(seconds or 0, timezone.utc).astimezone()


@dataclass
class MailboxState:
    """Sync state of one mailbox."""

    name: str
    uid_validity: int
    last_uid: int
    last_sync: datetime


@dataclass
class CachedEnvelope:
    """An envelope as stored in the cache."""

    uid: int
    message_id: str
    date: datetime
    from_addr: str
    from_name: str
    subject: str

    @classmethod
    def _from_row(cls, row: tuple) -> "CachedEnvelope":
        uid, message_id, date, from_addr, from_name, subject = row
        return cls(
            uid=uid,
            message_id=message_id or "",
            date=_from_unix(date),
            from_addr=from_addr or "",
            from_name=from_name or "",
            subject=subject or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "UID": self.uid,
            "MessageID": self.message_id,
            "Date": self.date.isoformat(),
            "FromAddr": self.from_addr,
            "FromName": self.from_name,
            "Subject": self.subject,
        }


@dataclass
class SearchOptions:
    """Filters for a cache search; a limit of 0 or less means the default of 50."""

    sender: str = ""
    subject: str = ""
    since: datetime | None = None
    before: datetime | None = None
    limit: int = 0


@dataclass
class SearchResult:
    """Matching envelopes together with cache metadata."""

    mailbox: str
    freshness: str
    total_cached: int = 0
    last_sync: datetime | None = None
    results: list[CachedEnvelope] = field(default_factory=list)
    count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "mailbox": self.mailbox,
            "last_sync": (
                self.last_sync.isoformat() if self.last_sync else "0001-01-01T00:00:00Z"
            ),
            "freshness": self.freshness,
            "total_cached": self.total_cached,
            "results": [env.to_dict() for env in self.results],
            "count": self.count,
        }


class MailCache:
    """An open cache database."""

    def __init__(self, path: PathLike):
        try:
            self._db = sqlite3.connect(str(path), isolation_level=None)
        except sqlite3.Error as exc:
            raise CacheError(f"opening cache database: {exc}") from exc
        try:
            self._db.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            self._db.close()
            raise CacheError(f"initializing cache schema: {exc}") from exc

    def __enter__(self) -> "MailCache":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the database."""
        self._db.close()

    @contextmanager
    def _errors(self, what: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            raise CacheError(f"{what}: {exc}") from exc

    @contextmanager
    def _transaction(self, what: str) -> Iterator[sqlite3.Connection]:
        with self._errors(what):
            self._db.execute("BEGIN")
            try:
                yield self._db
            except BaseException:
                self._db.execute("ROLLBACK")
                raise
            self._db.execute("COMMIT")

    def get_mailbox_state(self, mailbox: str) -> MailboxState | None:
        """Return the stored state of a mailbox, or None if it was never synced."""
        with self._errors("querying mailbox state"):
            row = self._db.execute(
                "SELECT name, uidvalidity, last_uid, last_sync FROM mailboxes WHERE name = ?",
                (mailbox,),
            ).fetchone()
        if row is None:
            return None
        name, uid_validity, last_uid, last_sync = row
        return MailboxState(name, uid_validity, last_uid, _from_unix(last_sync))

    def update_mailbox_state(self, mailbox: str, uid_validity: int, last_uid: int) -> None:
        """Record the sync state of a mailbox, stamped with the current time."""
        with self._errors("updating mailbox state"):
            self._db.execute(
                """INSERT INTO mailboxes (name, uidvalidity, last_uid, last_sync)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(name) DO UPDATE SET
                       uidvalidity = excluded.uidvalidity,
                       last_uid = excluded.last_uid,
                       last_sync = excluded.last_sync""",
                (mailbox, uid_validity, last_uid, int(time.time())),
            )

    def count_envelopes(self, mailbox: str) -> int:
        """Return the number of cached envelopes of a mailbox."""
        with self._errors("counting envelopes"):
            (count,) = self._db.execute(
                "SELECT COUNT(*) FROM envelopes WHERE mailbox = ?", (mailbox,)
            ).fetchone()
        return count

    def get_cached_uids(self, mailbox: str) -> set[int]:
        """Return the UIDs cached for a mailbox."""
        with self._errors("querying cached UIDs"):
            rows = self._db.execute("SELECT uid FROM envelopes WHERE mailbox = ?", (mailbox,))
            return {uid for (uid,) in rows}

    def clear_mailbox(self, mailbox: str) -> None:
        """Remove all cached data of a mailbox, e.g. after UIDVALIDITY changed."""
        with self._transaction("clearing mailbox") as db:
            db.execute("DELETE FROM envelopes WHERE mailbox = ?", (mailbox,))
            db.execute("DELETE FROM mailboxes WHERE name = ?", (mailbox,))

    def insert_envelopes(self, mailbox: str, envelopes: Iterable[Envelope]) -> None:
        """Add or replace envelopes in one transaction."""
        rows = [
            (mailbox, env.uid, env.message_id, env.date, env.from_addr, env.from_name, env.subject)
            for env in envelopes
        ]
        if not rows:
            return
        with self._transaction("inserting envelope") as db:
            db.executemany(
                """INSERT OR REPLACE INTO envelopes
                   (mailbox, uid, message_id, date, from_addr, from_name, subject)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                rows,
            )

    def search(self, mailbox: str, opts: SearchOptions | None = None) -> SearchResult:
        """Return cached envelopes matching *opts*, newest first.

        Naive *since*/*before* times are taken as local time.
        """
        state = self.get_mailbox_state(mailbox)
        result = SearchResult(mailbox=mailbox, freshness="never synced")
        if state is not None:
            result.last_sync = state.last_sync
            result.freshness = format_freshness(state.last_sync)
        result.total_cached = self.count_envelopes(mailbox)

        clauses = ["mailbox = ?"]
        args: list[Any] = [mailbox]
        if opts is not None:
            if opts.sender:
                clauses.append("from_addr LIKE ?")
                args.append(f"%{opts.sender}%")
            if opts.subject:
                clauses.append("subject LIKE ?")
                args.append(f"%{opts.subject}%")
            if opts.since is not None:
                clauses.append("date >= ?")
                args.append(int(opts.since.timestamp()))
            if opts.before is not None:
                clauses.append("date < ?")
                args.append(int(opts.before.timestamp()))
        limit = opts.limit if opts is not None and opts.limit > 0 else DEFAULT_LIMIT

        query = (
            f"SELECT {_ENVELOPE_COLUMNS} FROM envelopes WHERE {' AND '.join(clauses)} "
            f"ORDER BY date DESC LIMIT {int(limit)}"
        )
        with self._errors("searching cache"):
            result.results = [CachedEnvelope._from_row(row) for row in self._db.execute(query, args)]
        result.count = len(result.results)
        return result

    def get_envelope(self, mailbox: str, uid: int) -> CachedEnvelope | None:
        """Return one cached envelope, or None if it is not cached."""
        with self._errors("querying envelope"):
            row = self._db.execute(
                f"SELECT {_ENVELOPE_COLUMNS} FROM envelopes WHERE mailbox = ? AND uid = ?",
                (mailbox, uid),
            ).fetchone()
        return None if row is None else CachedEnvelope._from_row(row)


def open_cache(config_dir: PathLike) -> MailCache:
    """Open or create the cache database in *config_dir*."""
    return MailCache(cache_file_path(config_dir))


def format_freshness(t: datetime | None, now: datetime | None = None) -> str:
    """Describe how long ago *t* was, e.g. "5 minutes ago"."""
    if t is None:
        return "never synced"
    if now is None:
        now = datetime.now(t.tzinfo) if t.tzinfo else datetime.now()
    seconds = (now - t).total_seconds()

    if seconds < 60:
        return "just now"
    if seconds < 3600:
        minutes = int(seconds // 60)
        return "1 minute ago" if minutes == 1 else f"{minutes} minutes ago"
    if seconds < 86400:
        hours = int(seconds // 3600)
        return "1 hour ago" if hours == 1 else f"{hours} hours ago"
    days = int(seconds // 86400)
    return "1 day ago" if days == 1 else f"{days} days ago"