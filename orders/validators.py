import json
import math
from datetime import datetime, time, timezone

from bson import ObjectId
from django.conf import settings
from django.utils.dateparse import parse_date, parse_datetime

from .models import UPDATABLE_ORDER_FIELDS, OrderStatus, PaymentStatus


class ValidationError(Exception):
    """Input rejected before any query runs. Views answer 400."""
    pass


class BadJSON(ValidationError):
    pass


class InvalidParameter(ValidationError):
    pass


def parse_json_body(request):
    """
    Decodes the request body as a JSON object.
    Raises BadJSON when it is not one.
    """
    try:
        body = request.body.decode("utf-8") if request.body else "{}"
        data = json.loads(body or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise BadJSON(f"Invalid JSON: {e}")
    if not isinstance(data, dict):
        raise BadJSON("Request body must be a JSON object")
    return data


def parse_object_id(value, name="id"):
    if not value or not ObjectId.is_valid(str(value)):
        raise InvalidParameter(f"Invalid {name}: {value}")
    return ObjectId(str(value))


def _parse_int(value, name):
    """Accepts ints and integer strings. Booleans and fractional floats are rejected, not truncated."""
    if isinstance(value, bool):
        raise InvalidParameter(f"'{name}' must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidParameter(f"'{name}' must be an integer")
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidParameter(f"'{name}' must be an integer")


def parse_pagination(params, default_limit=None, max_limit=None):
    """Returns (page, limit). page >= 1 and 1 <= limit <= max_limit, otherwise rejected."""
    default_limit = default_limit or settings.DEFAULT_PAGE_SIZE
    max_limit = max_limit or settings.MAX_PAGE_SIZE

    page = _parse_int(params.get('page') or 1, 'page')
    limit = _parse_int(params.get('limit') or default_limit, 'limit')

    if page < 1:
        raise InvalidParameter("'page' must be at least 1")
    if limit < 1 or limit > max_limit:
        raise InvalidParameter(f"'limit' must be between 1 and {max_limit}")
    return page, limit


def _parse_bound(value, name, end_of_day=False):
    day = parse_date(value)
    if day is not None:
        parsed = datetime.combine(day, time.max if end_of_day else time.min)
    else:
        parsed = parse_datetime(value)
        if parsed is None:
            raise InvalidParameter(f"Invalid date for '{name}': {value}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_date_range(params):
    """
    Reads inclusive 'from'/'to' bounds as aware datetimes.
    A date-only 'to' covers that whole day.
    """
    raw_from = params.get('from')
    raw_to = params.get('to')
    try:
        created_from = _parse_bound(raw_from, 'from') if raw_from else None
        created_to = _parse_bound(raw_to, 'to', end_of_day=True) if raw_to else None
    except ValueError as e:
        # parse_datetime raises ValueError on well-formed but impossible values
        raise InvalidParameter(str(e))

    if created_from and created_to and created_from > created_to:
        raise InvalidParameter("'from' must not be later than 'to'")
    return created_from, created_to


def parse_status(value, choices=OrderStatus, name='status'):
    if not value:
        return None
    if value not in choices.values:
        raise InvalidParameter(f"Invalid {name}: {value}. Allowed: {', '.join(choices.values)}")
    return value


def parse_sort(value, allowed, default):
    sort = value or default
    if sort.lstrip('-') not in allowed:
        raise InvalidParameter(f"Invalid sort key: {sort}")
    return sort


def parse_search(value):
    """Trimmed search text, or None when nothing is left to match on."""
    return (value or '').strip() or None


def _money(value, name):
    if isinstance(value, bool):
        raise InvalidParameter(f"'{name}' must be a number")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise InvalidParameter(f"'{name}' must be a number")
    if not math.isfinite(amount):
        raise InvalidParameter(f"'{name}' must be a finite number")
    if amount < 0:
        raise InvalidParameter(f"'{name}' must not be negative")
    return amount


def validate_order_payload(data):
    """
    Checks a checkout payload and returns (items, shipping_address, shipping_fee).
    Items come back as dicts with product, quantity and price.
    """
    items = data.get('items')
    if not items or not isinstance(items, list):
        raise InvalidParameter("Order must have at least one item")
    if not data.get('shippingAddress'):
        raise InvalidParameter("Shipping address is required")

    cleaned = []
    for item in items:
        if not isinstance(item, dict):
            raise InvalidParameter("Each item must be an object with product, quantity and price")
        product = item.get('product')
        if not product:
            raise InvalidParameter("Each item must reference a product")
        quantity = _parse_int(item.get('quantity'), 'quantity')
        if quantity < 1:
            raise InvalidParameter("'quantity' must be at least 1")
        cleaned.append({
            'product': str(product),
            'quantity': quantity,
            'price': _money(item.get('price'), 'price'),
        })

    shipping_fee = _money(data.get('shippingFee', 0), 'shippingFee')
    return cleaned, data['shippingAddress'], shipping_fee


def clean_order_update(data):
    """
    Keeps only the fields an admin may change; user, subtotal and totalAmount
    are fixed at checkout and silently dropped.
    """
    changes = {key: value for key, value in data.items() if key in UPDATABLE_ORDER_FIELDS}
    if 'status' in changes and not parse_status(changes['status']):
        raise InvalidParameter("'status' must not be empty")
    if 'paymentStatus' in changes and not parse_status(changes['paymentStatus'], PaymentStatus, 'paymentStatus'):
        raise InvalidParameter("'paymentStatus' must not be empty")
    if not changes:
        raise InvalidParameter("No updatable fields provided")
    return changes
