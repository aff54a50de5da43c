"""JSON output of results and errors."""

from __future__ import annotations

import dataclasses
import enum
import json
import sys
from datetime import date, datetime
from typing import Any, NoReturn, TextIO

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _default(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"cannot encode {type(obj).__name__} as JSON")


def emit_json(value: Any, stream: TextIO | None = None) -> None:
    """Write *value* as indented JSON followed by a newline."""
    out = sys.stdout if stream is None else stream
    text = json.dumps(value, indent=2, ensure_ascii=False, default=_default)
    for char, escaped in _HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    out.write(text + "\n")


def error(code: str, message: str, stream: TextIO | None = None) -> None:
    """Write an error object."""
    emit_json({"code": code, "error": True, "message": message}, stream)


def error_from_exc(code: str, exc: BaseException, stream: TextIO | None = None) -> None:
    """Write an error object describing an exception."""
    error(code, str(exc), stream)


def success(message: str, stream: TextIO | None = None) -> None:
    """Write a success object."""
    emit_json({"message": message, "success": True}, stream)


def fatal(code: str, exc: BaseException, stream: TextIO | None = None) -> NoReturn:
    """Write an error object and exit with status 1."""
    error(code, str(exc), stream)
    raise SystemExit(1)


def fatalf(code: str, fmt: str, *args: Any) -> NoReturn:
    """Write a %-formatted error message to stdout and exit with status 1."""
    error(code, fmt % args if args else fmt)
    raise SystemExit(1)