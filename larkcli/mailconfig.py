"""Storage of IMAP credentials and the location of the mail cache."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Union

PathLike = Union[str, "os.PathLike[str]"]

_CREDENTIALS_FILE = "mail.json"
_CACHE_FILE = "mail_cache.db"


class MailConfigError(Exception):
    """Raised when mail credentials cannot be read, parsed or written."""


@dataclass
class Credentials:
    """IMAP connection settings."""

    host: str = ""
    port: int = 0
    username: str = ""
    password: str = ""
    use_ssl: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: object) -> "Credentials":
        """Build credentials from decoded JSON; missing fields keep their defaults."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("credentials must be a JSON object")
        values = {}
        for field in fields(cls):
            value = data.get(field.name)
            if value is None:
                continue
            expected = field.type
            if expected == "int":
                ok = isinstance(value, int) and not isinstance(value, bool)
            elif expected == "bool":
                ok = isinstance(value, bool)
            else:
                ok = isinstance(value, str)
            if not ok:
                raise ValueError(f"field {field.name!r} has the wrong type")
            values[field.name] = value
        return cls(**values)


def credentials_file_path(config_dir: PathLike) -> Path:
    """Return the path of the credentials file."""
    return Path(config_dir) / _CREDENTIALS_FILE


def cache_file_path(config_dir: PathLike) -> Path:
    """Return the path of the mail cache database."""
    return Path(config_dir) / _CACHE_FILE


def load_credentials(config_dir: PathLike) -> Credentials:
    """Read the stored credentials."""
    path = credentials_file_path(config_dir)
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        raise MailConfigError("mail not configured; run 'lark mail setup' first") from None
    except OSError as exc:
        raise MailConfigError(f"failed to read mail credentials: {exc}") from exc

    try:
        return Credentials.from_dict(json.loads(raw))
    except ValueError as exc:
        raise MailConfigError(f"failed to parse mail credentials: {exc}") from exc


def save_credentials(creds: Credentials, config_dir: PathLike) -> None:
    """Write the credentials, readable by the owner only."""
    data = json.dumps(creds.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")
    path = credentials_file_path(config_dir)
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
    except OSError as exc:
        raise MailConfigError(f"failed to write credentials: {exc}") from exc


def clear_credentials(config_dir: PathLike) -> None:
    """Remove the stored credentials; a missing file is not an error."""
    try:
        credentials_file_path(config_dir).unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        raise MailConfigError(f"failed to remove credentials: {exc}") from exc


def has_credentials(config_dir: PathLike) -> bool:
    """Return whether a credentials file exists."""
    try:
        os.stat(credentials_file_path(config_dir))
    except OSError:
        return False
    return True