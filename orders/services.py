import uuid
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import List

from pymongo.errors import DuplicateKeyError, PyMongoError

from wellness_backend.mongo_config import get_db

from . import aggregation
from .models import Order, OrderItem, OrderStatus, PaymentStatus
from .store import ROLLUP_ORDER_PROJECTION, OrderStore

logger = logging.getLogger(__name__)


class StatsComputationError(Exception):
    """A statistics query failed in the storage layer."""
    pass


class OrderNumberConflict(Exception):
    pass


@lru_cache(maxsize=1)
def get_order_store() -> OrderStore:
    store = OrderStore(get_db())
    store.ensure_indexes()
    return store


@contextmanager
def _storage_errors(action):
    try:
        yield
    except PyMongoError as e:
        logger.exception(f"Storage failure while {action}: {e}")
        raise StatsComputationError(f"Failed while {action}: {e}") from e


# --- Statistics ---

def get_total_spent(user_id, store=None) -> float:
    """
    Total of the user's paid orders that were not cancelled.
    The paid/cancelled filter is pushed to MongoDB and applied again in memory.
    """
    store = store or get_order_store()
    logger.info(f"Calculating total spent for user: {user_id}")

    with _storage_errors("calculating total spent"):
        orders = store.find_orders(
            user_id=user_id,
            payment_status=PaymentStatus.PAID,
            exclude_statuses=[OrderStatus.CANCELLED],
        )

    total = aggregation.total_spent(orders, user_id)
    logger.info(f"Total spent for user {user_id}: {total} over {len(orders)} orders")
    return total


def get_average_order_value(user_id, store=None) -> aggregation.OrderValueStats:
    store = store or get_order_store()
    logger.info(f"Calculating average order value for user: {user_id}")

    with _storage_errors("calculating average order value"):
        orders = store.find_orders(
            user_id=user_id,
            exclude_statuses=aggregation.AVG_EXCLUDED_STATUSES,
        )

    return aggregation.average_order_value(orders, user_id)


def get_users_with_orders(query: aggregation.RollupQuery, store=None) -> aggregation.RollupPage:
    """
    Admin rollup. Only the date range is pushed down: the status filter picks
    users, not orders, so every in-range order has to come back.
    """
    store = store or get_order_store()
    orders, users = _load_rollup_inputs(store, query.created_from, query.created_to)

    page = aggregation.rollup_users_with_orders(orders, users, query)
    logger.info(f"Rollup found {page.pagination.total} users with orders; returning {len(page.rows)}")
    return page


def get_all_users_with_orders(sort='-totalSpent', store=None) -> List[aggregation.UserOrderRollup]:
    """
    Every rollup row over the whole order history, from a single read of the
    orders collection. Used by exports, where paging would re-read the history
    once per page.
    """
    store = store or get_order_store()
    orders, users = _load_rollup_inputs(store)

    query = aggregation.RollupQuery(sort=sort, limit=max(len(users), 1))
    rows = aggregation.rollup_users_with_orders(orders, users, query).rows
    logger.info(f"Full rollup built for {len(rows)} users from {len(orders)} orders")
    return rows


def _load_rollup_inputs(store, created_from=None, created_to=None):
    with _storage_errors("building the users-with-orders rollup"):
        orders = store.find_orders(
            created_from=created_from,
            created_to=created_to,
            projection=ROLLUP_ORDER_PROJECTION,
        )
        users = store.find_users(order.user for order in orders)
    return orders, users


# --- Checkout ---

def generate_order_number(now=None):
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def create_order(user_id, items, shipping_address, shipping_fee=0.0, store=None) -> Order:
    """
    Records a new order for `user_id`. Financial fields are derived here from
    the line items and never change afterwards.
    """
    store = store or get_order_store()

    line_items = [OrderItem(product=item['product'], quantity=item['quantity'], price=item['price'])
                  for item in items]
    subtotal = round(sum(item.quantity * item.price for item in line_items), 2)
    now = datetime.now(timezone.utc)

    order = Order(
        id=None,
        user=user_id,
        order_number=generate_order_number(now),
        items=line_items,
        subtotal=subtotal,
        shipping_fee=shipping_fee,
        total_amount=round(subtotal + shipping_fee, 2),
        shipping_address=shipping_address,
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.UNPAID,
        created_at=now,
        updated_at=now,
    )

    try:
        store.insert_order(order)
    except DuplicateKeyError as e:
        logger.warning(f"Order number collision for {order.order_number}: {e}")
        raise OrderNumberConflict("Order number already exists") from e

    logger.info(f"Order {order.order_number} created with ID: {order.id} for user {user_id}")
    return order
