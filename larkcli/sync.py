"""Synchronising the envelope cache with an IMAP mailbox."""

from __future__ import annotations

import queue
import threading
from contextlib import closing
from dataclasses import asdict, dataclass
from typing import Any, Callable, Iterator, TextIO

from .imap import Envelope, MailClient, MailError, connect
from .mailcache import CacheError, MailCache, open_cache
from .mailconfig import PathLike

BATCH_SIZE = 500
PARALLEL_THRESHOLD = 100
STATE_UPDATE_BATCHES = 10
PROGRESS_INTERVAL = 5.0


@dataclass
class SyncOptions:
    """How to sync: number of parallel connections, where to report progress,
    and an optional factory for connections (defaults to the stored credentials)."""

    workers: int = 1
    progress: TextIO | None = None
    connector: Callable[[], MailClient] | None = None


@dataclass
class SyncResult:
    """Outcome of a sync."""

    mailbox: str
    new_messages: int = 0
    total_cached: int = 0
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _Batch:
    envelopes: list[Envelope]
    error: Exception | None = None


_DONE = object()


def _batches(uids: list[int]) -> Iterator[list[int]]:
    for start in range(0, len(uids), BATCH_SIZE):
        yield uids[start : start + BATCH_SIZE]


def _report(progress: TextIO, fetched: int, total: int) -> None:
    progress.write(f"\rSyncing: {fetched} / {total} messages ({fetched / total * 100:.1f}%)")


def _split(uids: list[int], parts: int) -> list[list[int]]:
    """Split *uids* into *parts* contiguous chunks whose sizes differ by at most one."""
    per, extra = divmod(len(uids), parts)
    chunks = []
    start = 0
    for index in range(parts):
        count = per + (1 if index < extra else 0)
        if count:
            chunks.append(uids[start : start + count])
            start += count
    return chunks


def _fetch_sequential(
    cache: MailCache,
    mailbox: str,
    uid_validity: int,
    uids: list[int],
    connector: Callable[[], MailClient],
    workers: int,
    progress: TextIO | None,
) -> int:
    total = 0
    max_uid = 0
    with closing(connector()) as client:
        client.select_mailbox(mailbox)
        for batch in _batches(uids):
            envelopes = client.fetch_envelopes_by_uid(batch)
            if envelopes:
                cache.insert_envelopes(mailbox, envelopes)
                max_uid = max(max_uid, max(env.uid for env in envelopes))
                cache.update_mailbox_state(mailbox, uid_validity, max_uid)
            total += len(envelopes)
            if progress is not None:
                _report(progress, total, len(uids))
    if progress is not None:
        progress.write("\n")
    return total


def _fetch_parallel(
    cache: MailCache,
    mailbox: str,
    uid_validity: int,
    uids: list[int],
    connector: Callable[[], MailClient],
    workers: int,
    progress: TextIO | None,
) -> int:
    num_workers = max(1, min(workers, len(uids) // BATCH_SIZE + 1))
    results: queue.Queue = queue.Queue(maxsize=num_workers * 2)
    lock = threading.Lock()
    fetched = 0
    stop = threading.Event()

    def worker(my_uids: list[int]) -> None:
        nonlocal fetched
        try:
            try:
                client = connector()
            except Exception as exc:  # any connection failure is reported to the writer
                results.put(_Batch([], MailError(f"connect: {exc}")))
                return
            try:
                try:
                    client.select_mailbox(mailbox)
                except Exception as exc:
                    results.put(_Batch([], MailError(f"select: {exc}")))
                    return
                for batch in _batches(my_uids):
                    try:
                        envelopes = client.fetch_envelopes_by_uid(batch)
                    except Exception as exc:
                        results.put(_Batch([], MailError(f"fetch: {exc}")))
                        return
                    results.put(_Batch(envelopes))
                    with lock:
                        fetched += len(envelopes)
            finally:
                try:
                    client.close()
                except Exception:
                    pass
        finally:
            results.put(_DONE)

    def reporter() -> None:
        while not stop.wait(PROGRESS_INTERVAL):
            with lock:
                count = fetched
            _report(progress, count, len(uids))

    progress_thread = None
    if progress is not None:
        progress_thread = threading.Thread(target=reporter, daemon=True)
        progress_thread.start()

    threads = [
        threading.Thread(target=worker, args=(chunk,), daemon=True)
        for chunk in _split(uids, num_workers)
    ]
    for thread in threads:
        thread.start()

    total = 0
    max_uid = 0
    write_error: Exception | None = None
    since_state_update = 0
    remaining = len(threads)
    while remaining:
        item = results.get()
        if item is _DONE:
            remaining -= 1
            continue
        if item.error is not None:
            write_error = item.error
            continue
        if write_error is not None or not item.envelopes:
            continue
        try:
            cache.insert_envelopes(mailbox, item.envelopes)
        except CacheError as exc:
            write_error = exc
            continue
        max_uid = max(max_uid, max(env.uid for env in item.envelopes))
        total += len(item.envelopes)
        since_state_update += 1
        if since_state_update >= STATE_UPDATE_BATCHES and max_uid > 0:
            try:
                cache.update_mailbox_state(mailbox, uid_validity, max_uid)
            except CacheError:
                pass
            since_state_update = 0

    for thread in threads:
        thread.join()

    if progress_thread is not None:
        stop.set()
        progress_thread.join()
        progress.write(f"\rSyncing: {len(uids)} / {len(uids)} messages (100.0%)\n")

    if write_error is not None:
        raise write_error

    if max_uid > 0:
        cache.update_mailbox_state(mailbox, uid_validity, max_uid)
    return total


def sync(mailbox: str, opts: SyncOptions | None, config_dir: PathLike) -> SyncResult:
    """Fetch envelopes missing from the cache in *config_dir* and store them."""
    opts = opts or SyncOptions()
    workers = max(opts.workers, 1)
    connector = opts.connector or (lambda: connect(config_dir))
    progress = opts.progress

    with open_cache(config_dir) as cache, closing(connector()) as client:
        mbox = client.select_mailbox(mailbox)

        state = cache.get_mailbox_state(mailbox)
        if state is not None and state.uid_validity != mbox.uid_validity:
            try:
                cache.clear_mailbox(mailbox)
            except CacheError as exc:
                raise CacheError(f"clearing stale cache: {exc}") from exc

        result = SyncResult(mailbox=mailbox)

        if mbox.num_messages == 0:
            cache.update_mailbox_state(mailbox, mbox.uid_validity, 0)
            result.message = "mailbox is empty"
            return result

        cached_uids = cache.get_cached_uids(mailbox)

        if progress is not None:
            progress.write("Checking for new messages...\n")
        try:
            server_uids = client.get_all_uids()
        except MailError as exc:
            raise MailError(f"getting server UIDs: {exc}") from exc

        missing = [uid for uid in server_uids if uid not in cached_uids]

        if not missing:
            if server_uids:
                cache.update_mailbox_state(mailbox, mbox.uid_validity, server_uids[-1])
            result.total_cached = len(cached_uids)
            result.message = "already up to date"
            return result

        if progress is not None:
            progress.write(f"Found {len(missing)} messages to sync\n")

        if workers > 1 and len(missing) > PARALLEL_THRESHOLD:
            fetch = _fetch_parallel
        else:
            fetch = _fetch_sequential
        new_count = fetch(
            cache, mailbox, mbox.uid_validity, missing, connector, workers, progress
        )

        result.new_messages = new_count
        result.total_cached = len(cached_uids) + new_count
        if new_count == 0:
            result.message = "already up to date"
        else:
            result.message = f"synced {new_count} new messages"
        return result