# quotesync/sync_engine.py
"""Online/offline routing of quote writes and replay of the pending queue."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from .connectivity import ConnectivityMonitor, ConnectivityState
from .errors import (
    AbortedError,
    NetworkError,
    QuoteSyncError,
    RemoteError,
    StorageError,
    SyncError,
)
from .forms import validate_quote_form
from .models import QUOTE_CREATE, PendingWrite, Quote, QuoteFormData, parse_timestamp
from .offline_store import DurableQueueStore
from .remote import CancelToken, RemoteGateway

DROP = "drop"
RETAIN = "retain"
FAILURE_POLICIES = (DROP, RETAIN)

Listener = Callable[[str, Any], None]


@dataclass
class WriteResult:
    status: str  # 'created', 'queued' or 'aborted'
    quote: Quote | None = None
    entry_id: str | None = None

    @property
    def queued(self) -> bool:
        return self.status == "queued"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "quote": self.quote.to_dict() if self.quote else None,
            "entry_id": self.entry_id,
        }


@dataclass
class DrainReport:
    synced: list[tuple[str, Quote]] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    stopped: bool = False

    def to_dict(self) -> dict:
        return {
            "synced": [{"entry_id": eid, "quote_id": q.id} for eid, q in self.synced],
            "failed": list(self.failed),
            "dropped": list(self.dropped),
            "skipped": list(self.skipped),
            "stopped": self.stopped,
        }


class SyncEngine:
    """Routes writes by connectivity and drains the queue on reconnect.

    ``failure_policy`` decides what happens to entries whose replay failed:
    ``drop`` removes them once the pass ends (the behaviour clients have always
    had, and a known data-loss risk); ``retain`` keeps them with an attempt
    count, backs off exponentially between passes, and drops them only after
    ``max_attempts``.
    """

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        store: DurableQueueStore,
        gateway: RemoteGateway,
        failure_policy: str = DROP,
        max_attempts: int = 5,
        retry_backoff: float = 30.0,
        max_backoff: float = 3600.0,
        background: bool = True,
        sync_on_startup: bool = True,
    ) -> None:
        if failure_policy not in FAILURE_POLICIES:
            raise ValueError(f"unknown failure policy {failure_policy!r}")
        self.monitor = monitor
        self.store = store
        self.gateway = gateway
        self.failure_policy = failure_policy
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self.max_backoff = max_backoff
        self.background = background
        self.sync_on_startup = sync_on_startup

        self._drain_lock = threading.Lock()
        self._lock = threading.Lock()
        self._tokens: set[CancelToken] = set()
        self._workers: list[threading.Thread] = []
        self._listeners: list[Listener] = []
        self._online: bool | None = None
        self._unsubscribe = monitor.subscribe(self._on_connectivity)

    # events

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self, event: str, data: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception:
                logging.exception("sync listener failed on %s", event)

    def _on_connectivity(self, state: ConnectivityState) -> None:
        previous, self._online = self._online, state.online
        if not state.online:
            return
        if previous is None:
            # Initial state at subscription: replay what survived a restart.
            if self.sync_on_startup and self.store.count():
                self._schedule_drain()
        elif not previous:
            self._schedule_drain()

    def _schedule_drain(self) -> None:
        if not self.background:
            self._run_drain()
            return
        worker = threading.Thread(target=self._run_drain, daemon=True, name="quote-drain")
        with self._lock:
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(worker)
        worker.start()

    def _run_drain(self) -> None:
        try:
            self.on_reconnect()
        except QuoteSyncError as e:
            logging.error("pending quote sync failed: %s", e)
        except Exception:
            logging.exception("pending quote sync crashed")

    def wait_idle(self, timeout: float | None = None) -> None:
        """Join background drains started so far."""
        with self._lock:
            workers = list(self._workers)
        for w in workers:
            w.join(timeout)

    @contextmanager
    def _track(self):
        token = CancelToken()
        with self._lock:
            self._tokens.add(token)
        try:
            yield token
        finally:
            with self._lock:
                self._tokens.discard(token)

    def close(self) -> None:
        """Cancel in-flight calls and stop reacting to connectivity."""
        self._unsubscribe()
        with self._lock:
            tokens = list(self._tokens)
        for token in tokens:
            token.cancel()

    # writes

    def pending(self) -> list[PendingWrite]:
        return self.store.drain_all()

    def write(self, payload: QuoteFormData | dict) -> WriteResult:
        if isinstance(payload, QuoteFormData):
            payload = payload.to_dict()
        form = validate_quote_form(payload)

        state = self.monitor.current()
        if state.online:
            with self._track() as token:
                try:
                    quote = self.gateway.create_quote(form, token=token)
                except AbortedError:
                    logging.warning("quote creation aborted")
                    return WriteResult("aborted")
                except (NetworkError, RemoteError) as e:
                    logging.error("Error creating quote: %s", e)
                    raise SyncError(f"Failed to create quote: {e.message}", cause=e) from e
            logging.info("quote created id=%s", quote.id)
            return WriteResult("created", quote=quote)

        entry = PendingWrite(payload=form.to_dict())
        try:
            self.store.append(entry)
        except StorageError:
            logging.error("DATA LOSS: failed to save the quote offline (entry=%s)", entry.id)
            raise
        logging.info("quote queued offline entry=%s", entry.id)
        self._notify("queued", entry)
        return WriteResult("queued", entry_id=entry.id)

    # reconciliation

    def _due(self, entry: PendingWrite, now: datetime) -> bool:
        if self.failure_policy != RETAIN or not entry.attempts:
            return True
        last = parse_timestamp(entry.last_attempt_at)
        if last is None:
            return True
        delay = min(self.retry_backoff * 2 ** (entry.attempts - 1), self.max_backoff)
        return now >= last + timedelta(seconds=delay)

    def on_reconnect(self) -> DrainReport:
        """Replay pending writes in FIFO order; one pass at a time."""
        with self._drain_lock:
            return self._drain()

    def _drain(self) -> DrainReport:
        report = DrainReport()
        entries = self.store.drain_all()
        if not entries:
            return report
        logging.info("sync start pending=%s policy=%s", len(entries), self.failure_policy)
        now = datetime.now(timezone.utc)
        failed: list[PendingWrite] = []
        with self._track() as token:
            self._replay(entries, token, now, failed, report)
            # Writes queued after the first read would otherwise wait for the next reconnect.
            if not report.stopped and self.monitor.current().online:
                seen = {e.id for e in entries}
                late = [e for e in self.store.drain_all() if e.id not in seen]
                if late:
                    logging.info("sync picking up %s entries queued during the pass", len(late))
                    self._replay(late, token, now, failed, report)

        if failed:
            self._apply_failure_policy(failed, report)
        logging.info(
            "sync completed synced=%s failed=%s dropped=%s skipped=%s",
            len(report.synced),
            len(report.failed),
            len(report.dropped),
            len(report.skipped),
        )
        self._notify("drained", report)
        return report

    def _replay(
        self,
        entries: list[PendingWrite],
        token: CancelToken,
        now: datetime,
        failed: list[PendingWrite],
        report: DrainReport,
    ) -> None:
        for entry in entries:
            if not self._due(entry, now):
                report.skipped.append(entry.id)
                continue
            if not self.monitor.current().online:
                logging.warning("connectivity lost during sync; leaving remaining entries queued")
                report.stopped = True
                return
            if entry.kind != QUOTE_CREATE:
                logging.error("sync entry=%s has unknown kind %s", entry.id, entry.kind)
                failed.append(entry)
                report.failed.append(entry.id)
                continue
            try:
                quote = self.gateway.create_quote(entry.payload, token=token)
            except AbortedError:
                logging.warning("sync aborted; leaving remaining entries queued")
                report.stopped = True
                return
            except (NetworkError, RemoteError) as e:
                logging.error("sync entry=%s failed: %s", entry.id, e)
                failed.append(entry)
                report.failed.append(entry.id)
                continue
            # Persist per entry so a crash mid-pass never re-sends this one.
            self.store.remove([entry.id])
            report.synced.append((entry.id, quote))
            logging.info("sync entry=%s -> quote id=%s", entry.id, quote.id)

    def _apply_failure_policy(self, failed: list[PendingWrite], report: DrainReport) -> None:
        if self.failure_policy == DROP:
            ids = [e.id for e in failed]
            self.store.remove(ids)
            report.dropped.extend(ids)
            logging.error(
                "DATA LOSS: dropped %s pending quotes after failed sync: %s", len(ids), ids
            )
            return

        updated = {e.id: e.failed_attempt() for e in failed}
        exhausted = {eid for eid, e in updated.items() if e.attempts >= self.max_attempts}
        with self.store.lock:
            current = self.store.drain_all()
            kept = [updated.get(e.id, e) for e in current if e.id not in exhausted]
            self.store.replace_all(kept)
        if exhausted:
            report.dropped.extend(sorted(exhausted))
            logging.error(
                "DATA LOSS: gave up on %s pending quotes after %s attempts: %s",
                len(exhausted),
                self.max_attempts,
                sorted(exhausted),
            )
