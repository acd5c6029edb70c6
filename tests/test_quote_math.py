import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest

from quotesync.errors import ValidationError
from quotesync.forms import validate_quote_form
from quotesync.models import QuoteItem, compute_totals, round2, PendingWrite
from fakes import quote_payload


def test_totals_with_tax():
    items = [
        QuoteItem('A', price=10, quantity=2).with_subtotal(),
        QuoteItem('B', price=5, quantity=3).with_subtotal(),
    ]
    assert [i.subtotal for i in items] == [20.0, 15.0]
    t = compute_totals(items)
    assert t.subtotal == 35.0
    assert t.total_tax == 5.25
    assert t.total == 40.25


def test_round_half_away_from_zero():
    assert round2(0.125) == 0.13
    assert round2(2.675) == 2.68
    assert round2(-0.125) == -0.13
    assert round2(1.004) == 1.0


def test_tax_rounding_at_cent_boundary():
    # 0.1 * 0.15 = 0.015 -> 0.02; total 0.115 -> 0.12
    t = compute_totals([QuoteItem('x', price=0.1, quantity=1)])
    assert t.subtotal == 0.1
    assert t.total_tax == 0.02
    assert t.total == 0.12


def test_form_recomputes_totals():
    form = validate_quote_form(quote_payload(
        items=[
            {'product_name': 'A', 'price': 10, 'quantity': 2, 'subtotal': 999},
            {'product_name': 'B', 'price': 5, 'quantity': 3},
        ],
        total=1,
    ))
    assert form.subtotal == 35.0
    assert form.total_tax == 5.25
    assert form.total == 40.25
    assert form.items[0].subtotal == 20.0
    assert form.valid_until


def test_form_errors_are_collected():
    payload = quote_payload(status='', items=[{'product_name': '', 'price': 'x', 'quantity': 0}])
    payload['customer_info']['email'] = 'not-an-email'
    payload['customer_info']['city'] = ''
    with pytest.raises(ValidationError) as exc:
        validate_quote_form(payload)
    errors = exc.value.errors
    assert errors['customer_info.email'] == 'Invalid email'
    assert errors['customer_info.city'] == 'City is required'
    assert errors['status'] == 'Status is required'
    assert errors['items.0.product_name'] == 'Product name is required'
    assert errors['items.0.price'] == 'Price is required'
    assert errors['items.0.quantity'] == 'Must be at least 1'


def test_form_requires_an_item():
    with pytest.raises(ValidationError) as exc:
        validate_quote_form(quote_payload(items=[]))
    assert exc.value.errors == {'items': 'At least one item is required'}


def test_pending_write_displays_as_local_quote():
    entry = PendingWrite(payload=validate_quote_form(quote_payload()).to_dict())
    quote = entry.as_quote()
    assert quote.id is None
    assert quote.pending
    assert quote.label == 'Local Quote'
    assert quote.created == entry.queued_at
    assert quote.total == 115.0


@pytest.mark.parametrize('price', ['inf', '-Infinity', 'nan', float('inf'), float('nan')])
def test_form_rejects_non_finite_price(price):
    with pytest.raises(ValidationError) as exc:
        validate_quote_form(quote_payload(items=[{'product_name': 'W', 'price': price, 'quantity': 1}]))
    assert exc.value.errors['items.0.price'] == 'Price is required'
