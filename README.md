# larkcli

Mail and account helpers for a workspace client, usable as a library:

- `larkcli.imap`: a small IMAP client (`MailClient`) that lists and selects
  mailboxes, searches UIDs and fetches message envelopes or whole messages.
- `larkcli.mailcache`: a SQLite cache of envelopes and per-mailbox sync state
  (`MailCache`, `open_cache`).
- `larkcli.sync`: brings the cache up to date with a mailbox (`sync`), with
  UIDVALIDITY tracking, batches of 500 UIDs and optional parallel connections.
- `larkcli.search`: offline search of cached envelopes by sender, subject and
  date range (`search`, `parse_search_options`).
- `larkcli.mailconfig`: stores IMAP credentials as a JSON file readable by the
  owner only (`Credentials`, `save_credentials`, `load_credentials`,
  `clear_credentials`, `has_credentials`).
- `larkcli.scopes`: OAuth scope groups and checks of granted scopes.
- `larkcli.timeparse`: parsing of ISO 8601 / RFC 3339 times and of durations
  such as `30m`, `2hr`, `1h30m`, plus day and week boundaries.
- `larkcli.output`: JSON output of results and errors.

Only the standard library is needed at runtime.

## Installation

```
pip install .
```

## Configuring mail

```python
from pathlib import Path
from larkcli.mailconfig import Credentials, save_credentials

config_dir = Path(".lark")
config_dir.mkdir(exist_ok=True)
password = "password"
creds = Credentials(
    host="imap.example.com",
    port=993,
    username="user@example.com",
    password=password,
    use_ssl=True,
)
save_credentials(creds, config_dir)
```

Credentials are written to `mail.json` in the configuration directory, and the
envelope cache lives in `mail_cache.db` next to it. `load_credentials` raises
`MailConfigError` when the file is missing or cannot be parsed.

## Syncing and searching

```python
from larkcli.sync import SyncOptions, sync
from larkcli.search import parse_search_options, search

result = sync("INBOX", SyncOptions(workers=4), config_dir)
print(result.message)  # e.g. "synced 120 new messages" or "already up to date"

opts = parse_search_options("example.com", "invoice", "2024-01-01", "", 20)
found = search("INBOX", opts, config_dir)
print(found.freshness, found.count, found.total_cached)
for env in found.results:
    print(env.date, env.from_addr, env.subject)
```

`SyncOptions` takes `workers` (parallel connections are used only when more
than one worker is asked for and more than 100 messages are missing),
`progress` (a text stream for progress lines) and `connector` (a callable
returning a `MailClient`; by default the stored credentials are used). If the
server's UIDVALIDITY has changed, the cached mailbox is cleared first.

Search matches the sender address and subject as substrings; `since` and
`before` are `YYYY-MM-DD` dates taken as midnight UTC. Results are ordered
newest first and the default limit is 50. `freshness` reports how long ago the
mailbox was last synced (for example `"5 minutes ago"` or `"never synced"`).

## Scopes

```python
from larkcli.scopes import get_scope_string, parse_groups, validate_for_group

valid, invalid = parse_groups("calendar, messages")
scope_string = get_scope_string(valid)
validate_for_group("calendar", scope_string)  # raises ScopeValidationError if incomplete
```

The groups are `calendar`, `contacts`, `documents`, `bitable` and `messages`;
`offline_access` is always included in the requested scopes.

## Times and durations

```python
from larkcli.timeparse import parse, parse_duration, format_time, start_of_week

t = parse("2024-03-05T09:30")   # no offset: placed in the local time zone
parse_duration("1h30m")         # timedelta(hours=1, minutes=30)
parse_duration("45minutes")     # timedelta(minutes=45)
format_time(start_of_week(t))   # Monday 00:00:00 as RFC 3339
```

## JSON output

`emit_json`, `error`, `error_from_exc` and `success` write indented JSON to a
stream (stdout by default); `fatal` and `fatalf` write an error object and
raise `SystemExit(1)`.

## What this package does not do

There is no command-line program: everything is called from Python. The
package does not perform the OAuth sign-in itself; it only describes scope
groups and checks scope strings. Nor does it provide an interactive setup for
mail credentials; write them with `save_credentials` as shown above.

## Running the tests

```
pip install .[test]
pytest
```