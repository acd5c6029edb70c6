import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from quotesync import create_app
from quotesync.models import PendingWrite
from fakes import DummyResponse, FakeSession, quote_payload


def make_app(tmp_path, *responses):
    app = create_app('testing', instance_path=str(tmp_path))
    sync = app.extensions['quotesync']
    sync.gateway.session = FakeSession(*responses)
    return app, sync


def set_online(client, online=True):
    return client.put('/connectivity', json={'connected': online, 'reachable': online})


def test_offline_create_then_reconnect(tmp_path):
    created = DummyResponse(200, {'id': 'q1', 'status': 'DRAFT', 'total': 115.0})
    app, sync = make_app(tmp_path, created)
    client = app.test_client()

    res = client.post('/quotes', json=quote_payload())
    assert res.status_code == 202
    body = res.get_json()
    assert body['status'] == 'queued' and body['entry_id']

    res = client.get('/sync/pending')
    assert res.get_json()['count'] == 1

    res = client.get('/quotes?page=3')
    data = res.get_json()
    assert data['offline'] and data['page'] == 1
    assert data['items'][0]['label'] == 'Local Quote'

    res = set_online(client)
    assert res.get_json()['online'] is True
    assert sync.gateway.session.calls[0]['method'] == 'POST'
    assert client.get('/sync/pending').get_json()['count'] == 0
    sync.close()


def test_online_create(tmp_path):
    app, sync = make_app(tmp_path, DummyResponse(200, {'id': 'q7', 'status': 'SENT', 'total': 40.25}))
    client = app.test_client()
    set_online(client)
    payload = quote_payload(items=[
        {'product_name': 'A', 'price': 10, 'quantity': 2},
        {'product_name': 'B', 'price': 5, 'quantity': 3},
    ])
    res = client.post('/quotes', json=payload)
    assert res.status_code == 201
    assert res.get_json()['quote']['id'] == 'q7'
    sent = sync.gateway.session.calls[0]['json']
    assert (sent['subtotal'], sent['total_tax'], sent['total']) == (35.0, 5.25, 40.25)
    sync.close()


def test_online_failure_maps_to_502(tmp_path):
    app, sync = make_app(tmp_path, DummyResponse(500, reason='Internal Server Error'))
    client = app.test_client()
    set_online(client)
    res = client.post('/quotes', json=quote_payload())
    assert res.status_code == 502
    assert res.get_json()['status_code'] == 500
    assert client.get('/sync/pending').get_json()['count'] == 0
    sync.close()


def test_invalid_quote_is_400(tmp_path):
    app, sync = make_app(tmp_path)
    client = app.test_client()
    res = client.post('/quotes', json=quote_payload(items=[]))
    assert res.status_code == 400
    assert res.get_json()['errors']['items'] == 'At least one item is required'
    assert client.post('/quotes', data='nope').status_code == 400
    sync.close()


def test_list_quotes_online_with_filter(tmp_path):
    data = {'page': 1, 'perPage': 30, 'totalPages': 1, 'totalItems': 2, 'items': [
        {'id': 'a', 'status': 'SENT', 'total': 1, 'customer_info': {'name': 'Ann'}},
        {'id': 'b', 'status': 'DRAFT', 'total': 2, 'customer_info': {'name': 'Bob'}},
    ]}
    app, sync = make_app(tmp_path, DummyResponse(200, data))
    client = app.test_client()
    set_online(client)
    res = client.get('/quotes?page=1&status=draft')
    body = res.get_json()
    assert [i['id'] for i in body['items']] == ['b']
    assert body['totalItems'] == 2
    # cached: no second request
    res = client.get('/quotes?page=1&customer_name=ann')
    assert [i['id'] for i in res.get_json()['items']] == ['a']
    assert len(sync.gateway.session.calls) == 1
    sync.close()


def test_bad_page_is_400(tmp_path):
    app, sync = make_app(tmp_path)
    res = app.test_client().get('/quotes?page=0')
    assert res.status_code == 400
    sync.close()


def test_products_cached_for_offline(tmp_path):
    products = {'items': [{'id': 'p1', 'title': 'Bolt', 'price': 0.5}]}
    app, sync = make_app(tmp_path, DummyResponse(200, products))
    client = app.test_client()
    set_online(client)
    assert client.get('/products').get_json()['items'][0]['title'] == 'Bolt'
    set_online(client, False)
    res = client.get('/products')
    assert res.get_json()['items'] == [{'id': 'p1', 'title': 'Bolt', 'price': 0.5}]
    assert len(sync.gateway.session.calls) == 1
    sync.close()


def test_network_error_is_503(tmp_path):
    import requests

    app, sync = make_app(tmp_path, requests.exceptions.ConnectionError('refused'))
    client = app.test_client()
    set_online(client)
    assert client.get('/products').status_code == 503
    sync.close()


def test_connectivity_requires_flag(tmp_path):
    app, sync = make_app(tmp_path)
    client = app.test_client()
    assert client.put('/connectivity', json={}).status_code == 400
    assert client.get('/connectivity').get_json() == {
        'connected': False, 'reachable': False, 'online': False,
    }
    sync.close()


def test_cli_status_and_drain(tmp_path):
    app, sync = make_app(tmp_path, DummyResponse(200, {'id': 'q1'}))
    sync.store.append(PendingWrite(payload=quote_payload(name='Ann')))
    runner = app.test_cli_runner()

    result = runner.invoke(args=['sync', 'status'])
    assert 'online: no' in result.output
    assert 'pending: 1' in result.output

    result = runner.invoke(args=['sync', 'pending'])
    assert 'Ann' in result.output

    result = runner.invoke(args=['sync', 'drain', '--force'])
    assert result.exit_code == 0
    assert sync.store.count() == 0
    assert '"stopped": false' in result.output
    sync.close()
