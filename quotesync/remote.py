# quotesync/remote.py
"""HTTP client for the backend's record collections."""

from __future__ import annotations

import json as jsonlib
import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests

from .errors import AbortedError, NetworkError, RemoteError
from .models import Product, Quote, QuoteFormData

QUOTES_PATH = "/collections/quotes/records"
PRODUCTS_PATH = "/collections/products/records"
QUOTE_LIST_SORT = "-updated"
QUOTE_LIST_FIELDS = "id,status,total,created,customer_info"
PRODUCT_SORT = "+title"
PRODUCT_FIELDS = "id,title,price"

CHUNK_SIZE = 8192


def _count(data: dict, key: str, default: int) -> int:
    value = data.get(key)
    return default if value is None else int(value)


class CancelToken:
    """Cooperative cancellation shared between a caller and a request."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            try:
                cb()
            except Exception:
                logging.debug("cancel callback failed", exc_info=True)

    def on_cancel(self, cb: Callable[[], None]) -> Callable[[], None]:
        """Run ``cb`` on cancellation (immediately if already cancelled)."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(cb)

                def remove() -> None:
                    with self._lock:
                        if cb in self._callbacks:
                            self._callbacks.remove(cb)

                return remove
        cb()
        return lambda: None

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AbortedError()

    def sleep(self, seconds: float) -> None:
        """Sleep unless cancelled first; raises ``AbortedError`` if so."""
        if self._event.wait(seconds):
            raise AbortedError()


@dataclass(frozen=True)
class QuoteListResponse:
    items: list[Quote]
    page: int
    total_pages: int
    total_items: int
    per_page: int


class RemoteGateway:
    def __init__(
        self,
        base_url: str,
        connect_timeout: float = 3.05,
        read_timeout: float = 10,
        max_retries: int = 2,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = (connect_timeout, read_timeout)
        self.max_retries = max_retries
        self.session = requests.Session()
        self.session.headers.update(
            {"Accept": "application/json", "Content-Type": "application/json"}
        )

    def close(self) -> None:
        self.session.close()

    def _send(
        self,
        method: str,
        url: str,
        token: CancelToken,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        """Issue one request, streaming the body so ``token`` can abort it."""
        token.raise_if_cancelled()
        start = time.monotonic()
        resp = None
        unregister = lambda: None  # noqa: E731
        try:
            try:
                resp = self.session.request(
                    method, url, params=params, json=json, timeout=self.timeout, stream=True
                )
            except requests.RequestException as e:
                if token.cancelled:
                    raise AbortedError() from e
                raise NetworkError(f"{method} {url} failed: {e}", url=url) from e
            unregister = token.on_cancel(resp.close)
            latency = (time.monotonic() - start) * 1000
            logging.info("API %s %s %s %s %.1fms", method, url, params, resp.status_code, latency)
            if resp.status_code < 200 or resp.status_code >= 300:
                raise RemoteError(resp.status_code, resp.reason or "", url=url)
            try:
                body = b"".join(resp.iter_content(CHUNK_SIZE))
            except (requests.RequestException, AttributeError, ValueError) as e:
                if token.cancelled:
                    raise AbortedError() from e
                raise NetworkError(f"{method} {url} failed reading body: {e}", url=url) from e
            token.raise_if_cancelled()
            try:
                return jsonlib.loads(body) if body else {}
            except ValueError as e:
                raise NetworkError(f"{method} {url} returned invalid JSON", url=url) from e
        finally:
            unregister()
            if resp is not None:
                resp.close()

    def _get(self, path: str, params: Dict[str, Any], token: CancelToken) -> Any:
        """GET with backoff on 429/5xx and transport errors."""
        url = f"{self.base_url}{path}"
        tries = 0
        while True:
            try:
                return self._send("GET", url, token, params=params)
            except RemoteError as e:
                if e.status_code != 429 and e.status_code < 500:
                    raise
                if tries >= self.max_retries:
                    raise
            except NetworkError:
                if tries >= self.max_retries:
                    raise
            tries += 1
            delay = min(2 ** tries, 30) * 0.25 + random.random() * 0.25
            logging.warning("retrying GET %s in %.2fs (attempt %s)", url, delay, tries + 1)
            token.sleep(delay)

    def create_quote(self, form: QuoteFormData | dict, token: CancelToken | None = None) -> Quote:
        payload = form.to_dict() if isinstance(form, QuoteFormData) else form
        data = self._send(
            "POST", f"{self.base_url}{QUOTES_PATH}", token or CancelToken(), json=payload
        )
        return Quote.from_dict(data)

    def list_quotes(
        self,
        page: int,
        per_page: int = 30,
        sort: str = QUOTE_LIST_SORT,
        fields: str = QUOTE_LIST_FIELDS,
        token: CancelToken | None = None,
    ) -> QuoteListResponse:
        params = {"sort": sort, "fields": fields, "perPage": per_page, "page": page}
        data = self._get(QUOTES_PATH, params, token or CancelToken())
        items = [Quote.from_dict(q) for q in data.get("items") or []]
        return QuoteListResponse(
            items=items,
            page=_count(data, "page", page),
            total_pages=_count(data, "totalPages", 1),
            total_items=_count(data, "totalItems", len(items)),
            per_page=_count(data, "perPage", per_page),
        )

    def list_products(
        self,
        sort: str = PRODUCT_SORT,
        fields: str = PRODUCT_FIELDS,
        token: CancelToken | None = None,
    ) -> list[Product]:
        data = self._get(PRODUCTS_PATH, {"sort": sort, "fields": fields}, token or CancelToken())
        return [Product.from_dict(p) for p in data.get("items") or []]
