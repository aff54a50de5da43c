import io

import pytest

from larkcli.imap import Envelope, MailError, Mailbox
from larkcli.mailcache import open_cache
from larkcli.mailconfig import MailConfigError
from larkcli.sync import SyncOptions, SyncResult, sync


class FakeClient:
    def __init__(self, server):
        self.server = server
        self.closed = False

    def select_mailbox(self, name):
        return Mailbox(name, len(self.server.messages), self.server.uid_validity)

    def get_all_uids(self):
        if self.server.fail_search:
            raise MailError("search refused")
        return sorted(self.server.messages)

    def fetch_envelopes_by_uid(self, uids):
        if self.server.fail_fetch:
            raise MailError("fetch refused")
        return [self.server.messages[uid] for uid in uids if uid in self.server.messages]

    def close(self):
        self.closed = True


class FakeServer:
    def __init__(self, uids=(), uid_validity=7):
        self.uid_validity = uid_validity
        self.set_messages(uids)
        self.fail_fetch = False
        self.fail_search = False
        self.connections = []

    def set_messages(self, uids):
        self.messages = {
            uid: Envelope(
                uid=uid,
                message_id=f"m{uid}@example.com",
                date=1_700_000_000 + uid,
                from_addr="alice@example.com",
                from_name="Alice",
                subject=f"Subject {uid}",
            )
            for uid in uids
        }

    def connector(self):
        client = FakeClient(self)
        self.connections.append(client)
        return client


def _opts(server, **kwargs):
    return SyncOptions(connector=server.connector, **kwargs)


def test_empty_mailbox(tmp_path):
    server = FakeServer()
    result = sync("INBOX", _opts(server), tmp_path)
    assert result.message == "mailbox is empty"
    assert result.new_messages == 0
    with open_cache(tmp_path) as cache:
        state = cache.get_mailbox_state("INBOX")
    assert state.last_uid == 0
    assert state.uid_validity == server.uid_validity


def test_initial_sync_caches_all_messages(tmp_path):
    server = FakeServer(uids=[1, 2, 5])
    result = sync("INBOX", _opts(server), tmp_path)
    assert result.new_messages == 3
    assert result.total_cached == 3
    assert result.message == "synced 3 new messages"
    with open_cache(tmp_path) as cache:
        assert cache.get_cached_uids("INBOX") == {1, 2, 5}
        assert cache.get_mailbox_state("INBOX").last_uid == 5
        assert cache.get_envelope("INBOX", 2).subject == "Subject 2"
    assert all(client.closed for client in server.connections)


def test_second_sync_is_up_to_date(tmp_path):
    server = FakeServer(uids=[1, 2, 3])
    sync("INBOX", _opts(server), tmp_path)
    result = sync("INBOX", _opts(server), tmp_path)
    assert result.message == "already up to date"
    assert result.new_messages == 0
    assert result.total_cached == 3


def test_incremental_sync_fetches_only_new(tmp_path):
    server = FakeServer(uids=[1, 2])
    sync("INBOX", _opts(server), tmp_path)
    server.set_messages([1, 2, 3, 4])
    result = sync("INBOX", _opts(server), tmp_path)
    assert result.new_messages == 2
    assert result.total_cached == 4
    with open_cache(tmp_path) as cache:
        assert cache.get_cached_uids("INBOX") == {1, 2, 3, 4}


def test_uidvalidity_change_clears_cache(tmp_path):
    server = FakeServer(uids=[1, 2, 3])
    sync("INBOX", _opts(server), tmp_path)
    server.uid_validity = 8
    server.set_messages([10, 11])
    result = sync("INBOX", _opts(server), tmp_path)
    assert result.new_messages == 2
    assert result.total_cached == 2
    with open_cache(tmp_path) as cache:
        assert cache.get_cached_uids("INBOX") == {10, 11}
        assert cache.get_mailbox_state("INBOX").uid_validity == 8


def test_progress_messages_sequential(tmp_path):
    server = FakeServer(uids=list(range(1, 1201)))
    out = io.StringIO()
    result = sync("INBOX", _opts(server, progress=out), tmp_path)
    text = out.getvalue()
    assert text.startswith("Checking for new messages...\n")
    assert f"Found {len(server.messages)} messages to sync\n" in text
    assert text.endswith(" messages (100.0%)\n")
    assert result.new_messages == len(server.messages)
    assert len(server.connections) == 2


def test_parallel_sync(tmp_path):
    uids = list(range(1, 1201))
    server = FakeServer(uids=uids)
    out = io.StringIO()
    result = sync("INBOX", _opts(server, workers=4, progress=out), tmp_path)
    assert result.new_messages == len(uids)
    assert result.total_cached == len(uids)
    assert len(server.connections) > 2
    assert all(client.closed for client in server.connections)
    assert out.getvalue().endswith(f"\rSyncing: {len(uids)} / {len(uids)} messages (100.0%)\n")
    with open_cache(tmp_path) as cache:
        assert cache.get_cached_uids("INBOX") == set(uids)
        assert cache.get_mailbox_state("INBOX").last_uid == max(uids)


def test_few_missing_uses_single_fetch_connection(tmp_path):
    server = FakeServer(uids=list(range(1, 51)))
    sync("INBOX", _opts(server, workers=4), tmp_path)
    assert len(server.connections) == 2


def test_sequential_fetch_error_propagates(tmp_path):
    server = FakeServer(uids=[1, 2])
    server.fail_fetch = True
    with pytest.raises(MailError, match="fetch refused"):
        sync("INBOX", _opts(server), tmp_path)


def test_parallel_fetch_error_is_wrapped(tmp_path):
    server = FakeServer(uids=list(range(1, 1201)))
    server.fail_fetch = True
    with pytest.raises(MailError, match=r"^fetch: fetch refused"):
        sync("INBOX", _opts(server, workers=2), tmp_path)
    assert all(client.closed for client in server.connections)


def test_search_failure_is_wrapped(tmp_path):
    server = FakeServer(uids=[1])
    server.fail_search = True
    with pytest.raises(MailError, match=r"^getting server UIDs: search refused"):
        sync("INBOX", _opts(server), tmp_path)


def test_missing_credentials(tmp_path):
    with pytest.raises(MailConfigError, match="mail not configured"):
        sync("INBOX", None, tmp_path)


def test_sync_result_to_dict():
    result = SyncResult(mailbox="INBOX", new_messages=2, total_cached=5, message="done")
    assert result.to_dict() == {
        "mailbox": "INBOX",
        "new_messages": 2,
        "total_cached": 5,
        "message": "done",
    }