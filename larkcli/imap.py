"""A small IMAP client for listing mailboxes and fetching message envelopes."""

from __future__ import annotations

import base64
import imaplib
import re
import ssl
from dataclasses import dataclass
from email.header import decode_header
from email.utils import parsedate_to_datetime
from datetime import timezone
from typing import Any, Iterable

from .mailconfig import Credentials, PathLike, load_credentials

_ENVELOPE_ITEMS = "(UID ENVELOPE)"
_MESSAGE_ITEMS = "(UID ENVELOPE BODY[])"
_ATOM_STOP = b" ()\r\n"


class MailError(Exception):
    """Raised when talking to the IMAP server fails."""


@dataclass
class Envelope:
    """Metadata of one message; ``date`` is a Unix timestamp, 0 when unknown."""

    uid: int
    message_id: str = ""
    date: int = 0
    from_addr: str = ""
    from_name: str = ""
    subject: str = ""


@dataclass
class Mailbox:
    """A selected mailbox and its metadata."""

    name: str
    num_messages: int
    uid_validity: int


class _Reader:
    """Reads IMAP data items (atoms, strings, literals, lists) from raw bytes."""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def _skip_space(self) -> None:
        while self._pos < len(self._data) and self._data[self._pos] in b" \r\n":
            self._pos += 1

    def at_end(self) -> bool:
        self._skip_space()
        return self._pos >= len(self._data)

    def read(self) -> Any:
        self._skip_space()
        if self._pos >= len(self._data):
            raise MailError("malformed server response: unexpected end of data")
        char = self._data[self._pos]
        if char == ord("("):
            return self._read_list()
        if char == ord('"'):
            return self._read_quoted()
        if char == ord("{"):
            return self._read_literal()
        return self._read_atom()

    def _read_list(self) -> list:
        self._pos += 1
        items = []
        while True:
            self._skip_space()
            if self._pos >= len(self._data):
                raise MailError("malformed server response: unterminated list")
            if self._data[self._pos] == ord(")"):
                self._pos += 1
                return items
            items.append(self.read())

    def _read_quoted(self) -> bytes:
        self._pos += 1
        out = bytearray()
        while self._pos < len(self._data):
            char = self._data[self._pos]
            if char == ord("\\") and self._pos + 1 < len(self._data):
                out.append(self._data[self._pos + 1])
                self._pos += 2
            elif char == ord('"'):
                self._pos += 1
                return bytes(out)
            else:
                out.append(char)
                self._pos += 1
        raise MailError("malformed server response: unterminated string")

    def _read_literal(self) -> bytes:
        end = self._data.find(b"}", self._pos)
        if end < 0:
            raise MailError("malformed server response: bad literal")
        try:
            size = int(self._data[self._pos + 1 : end].rstrip(b"+"))
        except ValueError:
            raise MailError("malformed server response: bad literal size") from None
        self._pos = end + 1
        if self._data.startswith(b"\r\n", self._pos):
            self._pos += 2
        value = self._data[self._pos : self._pos + size]
        if len(value) < size:
            raise MailError("malformed server response: short literal")
        self._pos += size
        return value

    def _read_atom(self) -> str | None:
        start = self._pos
        while self._pos < len(self._data):
            char = self._data[self._pos]
            if char in _ATOM_STOP:
                break
            if char == ord("["):
                close = self._data.find(b"]", self._pos)
                if close < 0:
                    raise MailError("malformed server response: unterminated section")
                self._pos = close + 1
                continue
            self._pos += 1
        atom = self._data[start : self._pos].decode("utf-8", "replace")
        if not atom:
            raise MailError("malformed server response: unexpected character")
        return None if atom.upper() == "NIL" else atom


def _join(data: Iterable[Any]) -> bytes:
    """Rebuild the wire form of imaplib response data, literals included."""
    buf = bytearray()
    for item in data:
        if item is None:
            continue
        if isinstance(item, tuple):
            prefix, literal = item
            buf += prefix + b"\r\n" + literal
        else:
            buf += item + b" "
    return bytes(buf)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    return str(value)


def _decode_words(text: str) -> str:
    """Decode RFC 2047 encoded words."""
    try:
        parts = decode_header(text)
    except Exception:
        return text
    decoded = []
    for part, charset in parts:
        if isinstance(part, bytes):
            try:
                decoded.append(part.decode(charset or "ascii", "replace"))
            except LookupError:
                decoded.append(part.decode("utf-8", "replace"))
        else:
            decoded.append(part)
    return "".join(decoded)


def _unix_date(text: str) -> int:
    if not text:
        return 0
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return 0
    if parsed is None:
        return 0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def _envelope(uid: int, fields: Any) -> Envelope | None:
    if not isinstance(fields, list) or len(fields) < 10:
        return None
    date, subject, sender = fields[0], fields[1], fields[2]
    message_id = _text(fields[9]).strip()
    if message_id.startswith("<") and message_id.endswith(">"):
        message_id = message_id[1:-1]
    env = Envelope(
        uid=uid,
        message_id=message_id,
        date=_unix_date(_text(date)),
        subject=_decode_words(_text(subject)),
    )
    if isinstance(sender, list) and sender and isinstance(sender[0], list):
        address = sender[0] + [None] * (4 - len(sender[0]))
        mailbox, host = _text(address[2]), _text(address[3])
        env.from_name = _decode_words(_text(address[0]))
        if mailbox:
            env.from_addr = f"{mailbox}@{host}" if host else mailbox
    return env


def _parse_fetch(data: Iterable[Any]) -> list[dict[str, Any]]:
    reader = _Reader(_join(data))
    messages = []
    while not reader.at_end():
        reader.read()
        items = reader.read()
        if not isinstance(items, list):
            raise MailError("malformed server response: expected FETCH item list")
        messages.append(
            {_text(key).upper(): value for key, value in zip(items[::2], items[1::2])}
        )
    return messages


def _message_uid(message: dict[str, Any]) -> int:
    try:
        return int(_text(message.get("UID")) or 0)
    except ValueError:
        return 0


def _decode_mailbox(name: str) -> str:
    """Decode a modified UTF-7 mailbox name."""

    def replace(match: re.Match) -> str:
        encoded = match.group(1)
        if not encoded:
            return "&"
        b64 = encoded.replace(",", "/")
        b64 += "=" * (-len(b64) % 4)
        return base64.b64decode(b64).decode("utf-16-be")

    try:
        return re.sub(r"&([A-Za-z0-9+,]*)-", replace, name)
    except (ValueError, UnicodeDecodeError):
        return name


def _encode_mailbox(name: str) -> str:
    """Encode a mailbox name as modified UTF-7."""
    out: list[str] = []
    pending: list[str] = []

    def flush() -> None:
        if pending:
            raw = "".join(pending).encode("utf-16-be")
            encoded = base64.b64encode(raw).decode("ascii").rstrip("=").replace("/", ",")
            out.append(f"&{encoded}-")
            pending.clear()

    for char in name:
        if 0x20 <= ord(char) <= 0x7E:
            flush()
            out.append("&-" if char == "&" else char)
        else:
            pending.append(char)
    flush()
    return "".join(out)


def _quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _uid_set(uids: Iterable[int]) -> str:
    """Render UIDs as a compact IMAP sequence set."""
    ranges: list[list[int]] = []
    for uid in sorted(set(uids)):
        if ranges and uid == ranges[-1][1] + 1:
            ranges[-1][1] = uid
        else:
            ranges.append([uid, uid])
    return ",".join(str(lo) if lo == hi else f"{lo}:{hi}" for lo, hi in ranges)


class MailClient:
    """An authenticated IMAP connection."""

    def __init__(self, conn: Any, creds: Credentials | None = None):
        self._imap = conn
        self.creds = creds

    def __enter__(self) -> "MailClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _call(self, what: str, method: str, *args: Any) -> list:
        if self._imap is None:
            raise MailError(f"{what}: connection is closed")
        try:
            typ, data = getattr(self._imap, method)(*args)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise MailError(f"{what}: {exc}") from exc
        if typ != "OK":
            detail = " ".join(_text(item) for item in data if isinstance(item, (bytes, str)))
            raise MailError(f"{what}: {detail or typ}")
        return data

    def close(self) -> None:
        """Log out and close the connection."""
        if self._imap is None:
            return
        conn, self._imap = self._imap, None
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError) as exc:
            raise MailError(f"closing connection: {exc}") from exc

    def list_mailboxes(self) -> list[str]:
        """Return the names of all mailboxes."""
        data = self._call("listing mailboxes", "list", '""', "*")
        reader = _Reader(_join(data))
        names = []
        while not reader.at_end():
            reader.read()
            reader.read()
            names.append(_decode_mailbox(_text(reader.read())))
        return names

    def select_mailbox(self, name: str) -> Mailbox:
        """Select a mailbox and return its metadata."""
        what = f"selecting mailbox {name}"
        data = self._call(what, "select", _quote(_encode_mailbox(name)))
        try:
            num_messages = int(_text(data[0]) or 0)
            _, validity = self._imap.response("UIDVALIDITY")
            uid_validity = int(_text(validity[0]) or 0) if validity else 0
        except (ValueError, IndexError) as exc:
            raise MailError(f"{what}: {exc}") from exc
        return Mailbox(name=name, num_messages=num_messages, uid_validity=uid_validity)

    def _envelopes(self, data: list) -> list[Envelope]:
        envelopes = []
        for message in _parse_fetch(data):
            env = _envelope(_message_uid(message), message.get("ENVELOPE"))
            if env is not None:
                envelopes.append(env)
        return envelopes

    def fetch_envelopes(self, start: int, end: int) -> list[Envelope]:
        """Fetch envelopes for sequence numbers start..end; an end of 0 means the last."""
        seq = f"{start}:{end if end else '*'}"
        data = self._call("fetching envelopes", "fetch", seq, _ENVELOPE_ITEMS)
        return self._envelopes(data)

    def fetch_envelopes_by_uid(self, uids: Iterable[int]) -> list[Envelope]:
        """Fetch envelopes for the given UIDs."""
        uids = list(uids)
        if not uids:
            return []
        data = self._call(
            "fetching envelopes by UID", "uid", "FETCH", _uid_set(uids), _ENVELOPE_ITEMS
        )
        return self._envelopes(data)

    def _search_uids(self, what: str, uid_range: str) -> list[int]:
        data = self._call(what, "uid", "SEARCH", "UID", uid_range)
        return [int(number) for item in data if item for number in _text(item).split()]

    def get_all_uids(self) -> list[int]:
        """Return every message UID in the selected mailbox."""
        return self._search_uids("searching for all UIDs", "1:*")

    def fetch_new_envelopes(self, last_uid: int) -> list[Envelope]:
        """Fetch envelopes of messages with UIDs from last_uid + 1 upwards."""
        uids = self._search_uids("searching for new UIDs", f"{last_uid + 1}:*")
        if not uids:
            return []
        return self.fetch_envelopes_by_uid(uids)

    def fetch_message(self, uid: int) -> tuple[bytes, Envelope | None]:
        """Fetch the full RFC 822 message and its envelope."""
        data = self._call("fetching message", "uid", "FETCH", str(uid), _MESSAGE_ITEMS)
        messages = _parse_fetch(data)
        if not messages:
            raise MailError(f"message not found: UID {uid}")
        message = next((m for m in messages if _message_uid(m) == uid), messages[0])
        body = next(
            (value for key, value in message.items() if key.startswith("BODY[")), None
        )
        if isinstance(body, str):
            body = body.encode("utf-8")
        envelope = _envelope(_message_uid(message), message.get("ENVELOPE"))
        return body or b"", envelope


def connect_with_credentials(creds: Credentials) -> MailClient:
    """Open and authenticate an IMAP connection."""
    addr = f"{creds.host}:{creds.port}"
    try:
        if creds.use_ssl:
            conn = imaplib.IMAP4_SSL(
                creds.host, creds.port, ssl_context=ssl.create_default_context()
            )
        else:
            conn = imaplib.IMAP4(creds.host, creds.port)
    except (OSError, imaplib.IMAP4.error) as exc:
        raise MailError(f"connecting to {addr}: {exc}") from exc

    try:
        conn.login(creds.username, creds.password)
    except (imaplib.IMAP4.error, OSError) as exc:
        try:
            conn.shutdown()
        except OSError:
            pass
        raise MailError(f"login failed: {exc}") from exc
    return MailClient(conn, creds)


def connect(config_dir: PathLike) -> MailClient:
    """Connect using the credentials stored in *config_dir*."""
    return connect_with_credentials(load_credentials(config_dir))


def test_connection(creds: Credentials) -> None:
    """Connect and list mailboxes, raising MailError on failure."""
    with connect_with_credentials(creds) as client:
        client.list_mailboxes()