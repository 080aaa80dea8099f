from datetime import datetime, timezone

from bson import ObjectId
from pymongo.errors import PyMongoError

from orders.aggregation import created_within
from orders.models import UPDATABLE_ORDER_FIELDS, Order, UserProfile


def make_order(user, amount, status='Delivered', payment_status='Paid', created_at=None, deleted=False, **extra):
    return Order(
        id=ObjectId(),
        user=user,
        total_amount=amount,
        subtotal=amount,
        status=status,
        payment_status=payment_status,
        order_number=f"ORD-{ObjectId()}",
        created_at=created_at or datetime(2024, 1, 15, tzinfo=timezone.utc),
        is_deleted=deleted,
        **extra,
    )


def make_user(role='customer', **fields):
    return UserProfile(id=ObjectId(), role=role, **fields)


class InMemoryOrderStore:
    """Stands in for OrderStore in view tests; same method surface, plain lists."""

    def __init__(self, orders=(), users=()):
        self.orders = list(orders)
        self.users = {user.id: user for user in users}
        self.order_reads = 0

    def _live(self):
        return [order for order in self.orders if not order.is_deleted]

    def find_orders(self, user_id=None, status=None, exclude_statuses=(), payment_status=None,
                    created_from=None, created_to=None, projection=None):
        self.order_reads += 1
        excluded = {str(s) for s in exclude_statuses}
        return [
            order for order in self._live()
            if (user_id is None or order.user == user_id)
            and (not status or order.status == status)
            and order.status not in excluded
            and (not payment_status or order.payment_status == payment_status)
            and created_within(order, created_from, created_to)
        ]

    def find_users(self, user_ids):
        return {uid: self.users[uid] for uid in set(user_ids) if uid in self.users}

    def get_user(self, user_id):
        return self.users.get(user_id)

    def insert_order(self, order):
        order.id = ObjectId()
        self.orders.append(order)
        return order

    def get_order(self, order_id):
        return next((order for order in self._live() if order.id == order_id), None)

    def list_orders(self, user_id=None, status=None, payment_status=None, search=None,
                    created_from=None, created_to=None, sort='-createdAt', skip=0, limit=10):
        matched = [
            order for order in self.find_orders(user_id=user_id, status=status, payment_status=payment_status,
                                                created_from=created_from, created_to=created_to)
            if not search or search.lower() in (order.order_number or '').lower()
        ]
        matched.sort(key=lambda order: order.created_at, reverse=sort.startswith('-'))
        return matched[skip:skip + limit], len(matched)

    def count_orders(self, user_id=None):
        return len([order for order in self._live() if user_id is None or order.user == user_id])

    def update_order(self, order_id, changes):
        order = self.get_order(order_id)
        if order is None:
            return None
        attributes = {'status': 'status', 'paymentStatus': 'payment_status',
                      'trackingNumber': 'tracking_number', 'shippingAddress': 'shipping_address'}
        for key, value in changes.items():
            if key in UPDATABLE_ORDER_FIELDS:
                setattr(order, attributes[key], value)
        return order

    def soft_delete_order(self, order_id, deleted_by):
        order = self.get_order(order_id)
        if order is None:
            return False
        order.is_deleted = True
        order.deleted_by = deleted_by
        order.deleted_at = datetime.now(timezone.utc)
        return True


class BrokenOrderStore(InMemoryOrderStore):
    """Authenticates fine, then fails every order query."""

    def find_orders(self, *args, **kwargs):
        raise PyMongoError("connection reset")

    def list_orders(self, *args, **kwargs):
        raise PyMongoError("connection reset")
