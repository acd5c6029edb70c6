"""Shared test doubles for the gateway and its HTTP session."""

import json
import threading

import requests

from quotesync.errors import RemoteError
from quotesync.models import Quote
from quotesync.remote import QuoteListResponse


def quote_payload(name='Preet Vadaliya', status='DRAFT', items=None, **extra):
    payload = {
        'customer_info': {
            'name': name,
            'email': 'preet@example.com',
            'phone': '15566231051',
            'address': 'Pommernstr. 3A',
            'city': 'Erlangen',
            'country': 'Germany',
        },
        'status': status,
        'items': items if items is not None else [
            {'product_name': 'Widget', 'price': 100, 'quantity': 1},
        ],
    }
    payload.update(extra)
    return payload


class DummyResponse:
    """Streaming ``requests.Response`` stand-in."""

    def __init__(self, status_code=200, data=None, reason='OK', on_read=None):
        self.status_code = status_code
        self.reason = reason
        self._body = json.dumps(data if data is not None else {}).encode()
        self._on_read = on_read
        self.closed = False

    def iter_content(self, chunk_size=1):
        if self._on_read:
            self._on_read(self)
        if self.closed:
            raise requests.exceptions.ConnectionError('connection closed')
        yield self._body

    def close(self):
        self.closed = True


class FakeSession:
    """Replays queued responses (or exceptions) and records each request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.headers = {}

    def request(self, method, url, params=None, json=None, timeout=None, stream=False):
        self.calls.append({'method': method, 'url': url, 'params': params, 'json': json,
                           'timeout': timeout})
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        if callable(resp):
            return resp(method, url, params, json)
        return resp

    def close(self):
        pass


class FakeGateway:
    """In-memory backend; ``fail_on`` lists 1-based create calls that fail."""

    def __init__(self, fail_on=(), error=None, pages=None, before_create=None):
        self.fail_on = set(fail_on)
        self.error = error
        self.created = []
        self.create_calls = 0
        self.list_calls = []
        self.pages = pages or {}
        self.before_create = before_create
        self.lock = threading.Lock()

    def create_quote(self, form, token=None):
        payload = form.to_dict() if hasattr(form, 'to_dict') else dict(form)
        with self.lock:
            self.create_calls += 1
            n = self.create_calls
        if self.before_create:
            self.before_create(n, payload)
        if n in self.fail_on:
            raise self.error or RemoteError(500, 'Internal Server Error')
        quote = Quote.from_dict({**payload, 'id': f'q{n}'})
        self.created.append(quote)
        return quote

    def list_quotes(self, page, per_page=30, token=None, **kwargs):
        self.list_calls.append(page)
        total_pages = max(self.pages) if self.pages else 1
        served = min(page, total_pages)
        items = self.pages.get(served, [])
        return QuoteListResponse(
            items=[Quote.from_dict(q) for q in items],
            page=served,
            total_pages=total_pages,
            total_items=sum(len(v) for v in self.pages.values()),
            per_page=per_page,
        )
