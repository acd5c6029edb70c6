# quotesync/routes.py
"""JSON bridge between the client shell and the sync layer."""

from flask import Blueprint, jsonify, request

from quotesync import get_sync
from quotesync.errors import ValidationError
from quotesync.page_cache import QuoteFilter

bp = Blueprint('quotes', __name__)

TRUTHY = {'1', 'true', 'yes', 'on'}


def _flag(name):
    return (request.args.get(name) or '').lower() in TRUTHY


@bp.route('/quotes', methods=['POST'])
def create_quote():
    """
    Create a quote, or queue it when offline.
    Returns 201 with the server's quote, or 202 with the queue entry id.
    """
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError('Expected a JSON quote payload')
    result = get_sync().engine.write(data)
    status = {'created': 201, 'queued': 202}.get(result.status, 200)
    return jsonify(result.to_dict()), status


@bp.route('/quotes')
def list_quotes():
    """
    One page of quotes, narrowed by the optional filters
    customer_name, status (repeatable), start_date and end_date.
    """
    page_no = request.args.get('page', 1, type=int)
    quote_filter = QuoteFilter.from_args(request.args)
    page = get_sync().cache.get_page(page_no, refresh=_flag('refresh'))
    if page is None:
        return jsonify(aborted=True, items=[])
    return jsonify(page.to_dict(q for q in page.quotes if quote_filter.matches(q)))


@bp.route('/products')
def list_products():
    products = get_sync().catalog.list_products()
    return jsonify(items=[p.to_dict() for p in products])


@bp.route('/connectivity', methods=['GET', 'PUT'])
def connectivity():
    sync = get_sync()
    if request.method == 'PUT':
        data = request.get_json(silent=True) or {}
        if 'connected' not in data:
            raise ValidationError('connected is required', {'connected': 'required'})
        sync.monitor.publish(bool(data['connected']), data.get('reachable'))
        sync.monitor.flush(timeout=5)
    return jsonify(sync.monitor.current().to_dict())


@bp.route('/sync/pending')
def pending():
    entries = get_sync().engine.pending()
    return jsonify(count=len(entries), entries=[e.to_dict() for e in entries])


@bp.route('/sync/drain', methods=['POST'])
def drain():
    report = get_sync().engine.on_reconnect()
    return jsonify(report.to_dict())
