"""OAuth scope groups and checks of granted scopes against them."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ScopeGroup:
    """A named set of OAuth scopes required by some commands."""

    name: str
    description: str
    scopes: tuple[str, ...]
    commands: tuple[str, ...]


BASE_SCOPE = "offline_access"

GROUPS: dict[str, ScopeGroup] = {
    "calendar": ScopeGroup(
        name="calendar",
        description="Calendar events and scheduling",
        scopes=("calendar:calendar", "calendar:calendar:readonly"),
        commands=("cal",),
    ),
    "contacts": ScopeGroup(
        name="contacts",
        description="Company directory lookup",
        scopes=(
            "contact:contact.base:readonly",
            "contact:department.base:readonly",
            "contact:user:search",
        ),
        commands=("contact",),
    ),
    "documents": ScopeGroup(
        name="documents",
        description="Lark Docs and Drive access",
        scopes=(
            "docx:document:readonly",
            "docx:document",
            "docx:document:create",
            "docx:document.block:convert",
            "docs:document.content:read",
            "docs:document.comment:read",
            "wiki:wiki:readonly",
        ),
        commands=("doc",),
    ),
    "bitable": ScopeGroup(
        name="bitable",
        description="Lark Bitable (database) access",
        scopes=("bitable:app:readonly",),
        commands=("bitable",),
    ),
    "messages": ScopeGroup(
        name="messages",
        description="Chat and messaging",
        scopes=(
            "im:message:readonly",
            "im:message",
            "im:message:send_as_bot",
            "im:message.reactions:read",
            "im:message.reactions:write_only",
        ),
        commands=("msg", "chat"),
    ),
}


class ScopeValidationError(Exception):
    """Raised when granted scopes do not satisfy a group."""

    def __init__(self, group: str, missing: list[str]):
        super().__init__(f"missing required scopes for {group}")
        self.group = group
        self.missing = missing


def all_group_names() -> list[str]:
    """Return every scope group name in a stable order."""
    return ["calendar", "contacts", "documents", "bitable", "messages"]


def get_scopes_for_groups(group_names) -> list[str]:
    """Return the distinct scopes of the named groups plus the base scope.

    Unknown group names are ignored.
    """
    scopes = {BASE_SCOPE: None}
    for name in group_names:
        group = GROUPS.get(name)
        if group is not None:
            scopes.update(dict.fromkeys(group.scopes))
    return list(scopes)


def get_all_scopes() -> list[str]:
    """Return the scopes of every group."""
    return get_scopes_for_groups(all_group_names())


def get_scope_string(group_names) -> str:
    """Return the scopes of the named groups as a space-separated string."""
    return " ".join(get_scopes_for_groups(group_names))


def get_all_scope_string() -> str:
    """Return every scope as a space-separated string."""
    return get_scope_string(all_group_names())


def get_group_for_command(cmd: str) -> ScopeGroup | None:
    """Return the group a command needs, or None if it needs none."""
    return next((group for group in GROUPS.values() if cmd in group.commands), None)


def parse_groups(text: str) -> tuple[list[str], list[str]]:
    """Split a comma-separated list of group names into (valid, invalid)."""
    valid: list[str] = []
    invalid: list[str] = []
    for part in text.split(",") if text else ():
        name = part.strip()
        if not name:
            continue
        (valid if name in GROUPS else invalid).append(name)
    return valid, invalid


def check_scope(required: str, granted: str) -> bool:
    """Return whether *required* appears in the space-separated *granted* scopes."""
    return required in granted.split(" ")


def check_scope_group(group_name: str, granted: str) -> tuple[bool, list[str]]:
    """Return whether a group is fully granted, and the scopes it is missing."""
    group = GROUPS.get(group_name)
    if group is None:
        return False, []
    missing = [scope for scope in group.scopes if not check_scope(scope, granted)]
    return not missing, missing


def get_granted_groups(granted: str) -> dict[str, bool]:
    """Map each group name to whether it is fully granted."""
    return {name: check_scope_group(name, granted)[0] for name in GROUPS}


def get_granted_groups_list(granted: str) -> list[str]:
    """Return the names of fully granted groups in stable order."""
    return [name for name in all_group_names() if check_scope_group(name, granted)[0]]


def validate_for_group(group_name: str, granted: str) -> None:
    """Raise ScopeValidationError unless the group's scopes are all granted."""
    ok, missing = check_scope_group(group_name, granted)
    if not ok:
        raise ScopeValidationError(group_name, missing)