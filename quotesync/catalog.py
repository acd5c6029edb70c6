# quotesync/catalog.py
"""Product reference list, cached for offline item selection."""

from __future__ import annotations

import logging

from .connectivity import ConnectivityMonitor
from .errors import AbortedError
from .models import Product
from .offline_store import PRODUCTS_KEY, DurableQueueStore
from .remote import CancelToken, RemoteGateway


class ProductCatalog:
    def __init__(
        self, monitor: ConnectivityMonitor, store: DurableQueueStore, gateway: RemoteGateway
    ) -> None:
        self.monitor = monitor
        self.store = store
        self.gateway = gateway

    def cached(self) -> list[Product]:
        rows = self.store.get_cached(PRODUCTS_KEY, [])
        if not isinstance(rows, list):
            logging.warning("cached products are not a list; ignoring")
            return []
        return [Product.from_dict(r) for r in rows if isinstance(r, dict)]

    def list_products(self, token: CancelToken | None = None) -> list[Product]:
        """Online: fetch and replace the cache wholesale.  Offline: cached copy."""
        if not self.monitor.current().online:
            return self.cached()
        try:
            products = self.gateway.list_products(token=token)
        except AbortedError:
            logging.warning("product fetch aborted; serving cached products")
            return self.cached()
        self.store.set_cached(PRODUCTS_KEY, [p.to_dict() for p in products])
        logging.info("products cached count=%s", len(products))
        return products
