# quotesync/page_cache.py
"""Client-side page cache for the quote list."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

from .connectivity import ConnectivityMonitor, ConnectivityState
from .errors import AbortedError, QuoteSyncError, ValidationError
from .models import Quote, parse_timestamp
from .offline_store import DurableQueueStore
from .remote import CancelToken, RemoteGateway


@dataclass(frozen=True)
class QuotePage:
    number: int
    quotes: list[Quote]
    total_pages: int
    total_items: int
    per_page: int
    fetched_at: float = field(default_factory=time.time)
    offline: bool = False

    def to_dict(self, quotes: Iterable[Quote] | None = None) -> dict:
        shown = self.quotes if quotes is None else list(quotes)
        return {
            "page": self.number,
            "items": [q.to_dict() for q in shown],
            "totalPages": self.total_pages,
            "totalItems": self.total_items,
            "perPage": self.per_page,
            "offline": self.offline,
        }


def _parse_date(value) -> date | None:
    if not value:
        return None
    if isinstance(value, date):
        return value
    ts = parse_timestamp(str(value))
    if ts is None:
        raise ValidationError("Invalid date", {"date": f"Cannot parse {value!r}"})
    return ts.date()


@dataclass(frozen=True)
class QuoteFilter:
    """Narrowing applied to the displayed page; every criterion is optional."""

    customer_name: str = ""
    statuses: frozenset = frozenset()
    start_date: date | None = None
    end_date: date | None = None

    @classmethod
    def from_args(cls, args) -> "QuoteFilter":
        """Build from a request's query args (``status`` may repeat)."""
        statuses = args.getlist("status") if hasattr(args, "getlist") else args.get("status") or []
        if isinstance(statuses, str):
            statuses = [statuses]
        return cls(
            customer_name=(args.get("customer_name") or "").strip(),
            statuses=frozenset(s.upper() for s in statuses if s),
            start_date=_parse_date(args.get("start_date")),
            end_date=_parse_date(args.get("end_date")),
        )

    def matches(self, quote: Quote) -> bool:
        if self.customer_name and self.customer_name.lower() not in quote.customer_info.name.lower():
            return False
        if self.statuses and quote.status.upper() not in self.statuses:
            return False
        if self.start_date or self.end_date:
            created = parse_timestamp(quote.created)
            if created is None:
                return False
            day = created.date()
            if self.start_date and day < self.start_date:
                return False
            if self.end_date and day > self.end_date:
                return False
        return True


class PaginatedQueryCache:
    """Pages of the quote list keyed by the page number the server reported.

    A stored page is served as-is until ``refresh`` is requested or the cache
    is invalidated (connectivity transitions and queue changes do that).
    Offline there is one synthetic page built from the pending queue.
    """

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        store: DurableQueueStore,
        gateway: RemoteGateway,
        per_page: int = 30,
    ) -> None:
        self.monitor = monitor
        self.store = store
        self.gateway = gateway
        self.per_page = per_page
        self.current_page = 1
        self.total_pages = 1
        self.total_items = 0
        self._pages: dict[int, QuotePage] = {}
        self._lock = threading.Lock()
        self._tokens: set[CancelToken] = set()
        self._online: bool | None = None
        self._unsubscribe = monitor.subscribe(self._on_connectivity)

    def _on_connectivity(self, state: ConnectivityState) -> None:
        previous, self._online = self._online, state.online
        if previous is not None and previous != state.online:
            self.invalidate()

    def invalidate(self) -> None:
        with self._lock:
            self._pages.clear()

    def cached_pages(self) -> list[int]:
        with self._lock:
            return sorted(self._pages)

    def get_page(self, n: int, refresh: bool = False) -> QuotePage | None:
        if n < 1:
            raise ValidationError("Page number must be greater than 0.")
        if not refresh:
            with self._lock:
                cached = self._pages.get(n)
                if cached is not None:
                    self.current_page = cached.number
                    return cached

        if self.monitor.current().online:
            page = self._fetch(n)
            if page is None:
                return None
        else:
            entries = self.store.drain_all()
            page = QuotePage(
                number=1,
                quotes=[e.as_quote() for e in entries],
                total_pages=1,
                total_items=len(entries),
                per_page=len(entries),
                offline=True,
            )

        with self._lock:
            self._pages[page.number] = page
            self.current_page = page.number
            self.total_pages = page.total_pages
            self.total_items = page.total_items
        return page

    def _fetch(self, n: int) -> QuotePage | None:
        token = CancelToken()
        with self._lock:
            self._tokens.add(token)
        try:
            resp = self.gateway.list_quotes(n, per_page=self.per_page, token=token)
        except AbortedError:
            logging.warning("Fetch aborted.")
            return None
        except QuoteSyncError as e:
            logging.error("Error fetching quotes: %s", e)
            raise
        finally:
            with self._lock:
                self._tokens.discard(token)
        return QuotePage(
            number=resp.page,
            quotes=resp.items,
            total_pages=resp.total_pages,
            total_items=resp.total_items,
            per_page=resp.per_page,
        )

    def refresh(self) -> QuotePage | None:
        return self.get_page(self.current_page, refresh=True)

    def displayed(self) -> QuotePage | None:
        with self._lock:
            return self._pages.get(self.current_page)

    def view(self, quote_filter: QuoteFilter | None = None) -> list[Quote]:
        """Quotes on the displayed page that pass ``quote_filter``; no I/O."""
        page = self.displayed()
        if page is None:
            return []
        if quote_filter is None:
            return list(page.quotes)
        return [q for q in page.quotes if quote_filter.matches(q)]

    def close(self) -> None:
        self._unsubscribe()
        with self._lock:
            tokens = list(self._tokens)
        for token in tokens:
            token.cancel()
