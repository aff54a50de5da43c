from datetime import datetime, timezone

import pytest

from larkcli.imap import Envelope
from larkcli.mailcache import SearchOptions, open_cache
from larkcli.search import parse_search_options, search


def _stamp(year, month, day):
    return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp())


@pytest.fixture
def populated(tmp_path):
    envelopes = [
        Envelope(uid=1, message_id="a@example.com", date=_stamp(2024, 1, 10),
                 from_addr="alice@example.com", from_name="Alice", subject="Quarterly report"),
        Envelope(uid=2, message_id="b@example.com", date=_stamp(2024, 2, 15),
                 from_addr="bob@example.com", from_name="Bob", subject="Lunch plans"),
        Envelope(uid=3, message_id="c@example.com", date=_stamp(2024, 3, 20),
                 from_addr="bob@example.com", from_name="Bob", subject="Report draft"),
    ]
    with open_cache(tmp_path) as cache:
        cache.insert_envelopes("INBOX", envelopes)
        cache.update_mailbox_state("INBOX", 1, 3)
    return tmp_path


def test_parse_search_options_dates_are_utc_midnight():
    opts = parse_search_options("bob", "report", "2024-03-01", "2024-04-01", 10)
    assert opts.sender == "bob"
    assert opts.subject == "report"
    assert opts.since == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert opts.before == datetime(2024, 4, 1, tzinfo=timezone.utc)
    assert opts.limit == 10


def test_parse_search_options_empty_dates_mean_no_bound():
    opts = parse_search_options("", "", "", "", 0)
    assert opts.since is None
    assert opts.before is None


@pytest.mark.parametrize("bad", ["2024-3-1", "03/01/2024", "2024-02-30", "yesterday"])
def test_parse_search_options_rejects_bad_dates(bad):
    with pytest.raises(ValueError):
        parse_search_options(since=bad)
    with pytest.raises(ValueError):
        parse_search_options(before=bad)


def test_search_orders_newest_first(populated):
    result = search("INBOX", None, populated)
    assert [env.uid for env in result.results] == [3, 2, 1]
    assert result.count == len(result.results)
    assert result.total_cached == 3
    assert result.freshness == "just now"


def test_search_filters_by_sender_and_subject(populated):
    opts = parse_search_options(sender="bob", subject="Report")
    result = search("INBOX", opts, populated)
    assert [env.uid for env in result.results] == [3]
    assert result.results[0].from_addr == "bob@example.com"


def test_search_date_range(populated):
    opts = parse_search_options(since="2024-02-01", before="2024-03-01")
    result = search("INBOX", opts, populated)
    assert [env.uid for env in result.results] == [2]


def test_search_limit(populated):
    result = search("INBOX", SearchOptions(limit=2), populated)
    assert [env.uid for env in result.results] == [3, 2]
    assert result.total_cached == 3


def test_search_unknown_mailbox(tmp_path):
    result = search("Archive", None, tmp_path)
    assert result.freshness == "never synced"
    assert result.results == []
    assert result.count == 0
    assert result.last_sync is None