"""
Order statistics computed over in-memory sequences of orders.

Every function here drops soft-deleted orders itself, so callers may feed it
whatever the store returned without repeating the `isDeleted` filter.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from bson import ObjectId

from .models import Order, OrderStatus, PaymentStatus, UserProfile, as_utc

# Statuses that do not represent a completed purchase for average order value.
AVG_EXCLUDED_STATUSES = frozenset(
    status.value for status in (OrderStatus.CANCELLED, OrderStatus.RETURNED, OrderStatus.FAILED)
)

# One counter per status in the per-user rollup. Failed has no counter.
ROLLUP_STATUS_COUNTERS = (
    (OrderStatus.PENDING.value, 'pendingOrders'),
    (OrderStatus.PROCESSING.value, 'processingOrders'),
    (OrderStatus.SHIPPED.value, 'shippedOrders'),
    (OrderStatus.DELIVERED.value, 'deliveredOrders'),
    (OrderStatus.CANCELLED.value, 'cancelledOrders'),
    (OrderStatus.RETURNED.value, 'returnedOrders'),
)

DEFAULT_ROLLUP_SORT = '-totalOrders'


def live_orders(orders: Iterable[Order]) -> Iterator[Order]:
    return (order for order in orders if not order.is_deleted)


def created_within(order: Order, created_from: Optional[datetime], created_to: Optional[datetime]) -> bool:
    """Inclusive on both bounds. Orders without a creation time only pass an open range."""
    if created_from is None and created_to is None:
        return True
    created_at = as_utc(order.created_at)
    if created_at is None:
        return False
    if created_from is not None and created_at < created_from:
        return False
    if created_to is not None and created_at > created_to:
        return False
    return True


# --- Total spent ---

def total_spent(orders: Iterable[Order], user_id: ObjectId) -> float:
    """Sum of `totalAmount` over the user's paid, non-cancelled orders. 0 when none qualify."""
    amount = sum(
        order.total_amount
        for order in live_orders(orders)
        if order.user == user_id
        and order.payment_status == PaymentStatus.PAID
        and order.status != OrderStatus.CANCELLED
    )
    return round(amount, 2)


# --- Average order value ---

@dataclass
class OrderValueStats:
    order_count: int = 0
    total_spent: float = 0
    avg_order_value: float = 0

    def to_dict(self) -> dict:
        return {
            'orderCount': self.order_count,
            'totalSpent': self.total_spent,
            'avgOrderValue': self.avg_order_value,
        }


def average_order_value(orders: Iterable[Order], user_id: ObjectId) -> OrderValueStats:
    order_count = 0
    spent = 0.0
    for order in live_orders(orders):
        if order.user != user_id or order.status in AVG_EXCLUDED_STATUSES:
            continue
        order_count += 1
        spent += order.total_amount

    if order_count == 0:
        return OrderValueStats(order_count=0, total_spent=0, avg_order_value=0)

    return OrderValueStats(
        order_count=order_count,
        total_spent=round(spent, 2),
        avg_order_value=round(spent / order_count, 2),
    )


# --- Per-user rollup ---

@dataclass
class RollupQuery:
    status: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    search: Optional[str] = None
    page: int = 1
    limit: int = 10
    sort: str = DEFAULT_ROLLUP_SORT

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class Pagination:
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit)

    def to_dict(self) -> dict:
        return {'page': self.page, 'limit': self.limit, 'total': self.total, 'pages': self.pages}


@dataclass
class UserOrderRollup:
    user: UserProfile
    total_orders: int = 0
    total_spent: float = 0.0
    first_order_date: Optional[datetime] = None
    last_order_date: Optional[datetime] = None
    status_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def average_order_value(self) -> float:
        return self.total_spent / self.total_orders if self.total_orders else 0

    def add(self, order: Order) -> None:
        self.total_orders += 1
        self.total_spent += order.total_amount
        status = str(order.status)
        self.status_counts[status] = self.status_counts.get(status, 0) + 1

        created_at = as_utc(order.created_at)
        if created_at is not None:
            if self.first_order_date is None or created_at < self.first_order_date:
                self.first_order_date = created_at
            if self.last_order_date is None or created_at > self.last_order_date:
                self.last_order_date = created_at

    def matches(self, search: Optional[str]) -> bool:
        if not search:
            return True
        needle = search.casefold()
        haystack = (
            self.user.first_name,
            self.user.last_name,
            self.user.full_name,
            self.user.email,
            self.user.phone,
        )
        return any(needle in (value or '').casefold() for value in haystack)

    def to_dict(self) -> dict:
        user_id = str(self.user.id)
        row = {
            '_id': user_id,
            'userId': user_id,
            'firstName': self.user.first_name,
            'lastName': self.user.last_name,
            'email': self.user.email,
            'phone': self.user.phone,
            'role': self.user.role,
            'imageUrl': self.user.image_url,
            'totalOrders': self.total_orders,
            'totalSpent': self.total_spent,
            'averageOrderValue': self.average_order_value,
            'lastOrderDate': self.last_order_date.isoformat() if self.last_order_date else None,
            'firstOrderDate': self.first_order_date.isoformat() if self.first_order_date else None,
        }
        for status, counter in ROLLUP_STATUS_COUNTERS:
            row[counter] = self.status_counts.get(status, 0)
        return row


ROLLUP_SORT_FIELDS = {
    'totalOrders': lambda row: row.total_orders,
    'totalSpent': lambda row: row.total_spent,
    'averageOrderValue': lambda row: row.average_order_value,
    'lastOrderDate': lambda row: row.last_order_date,
    'firstOrderDate': lambda row: row.first_order_date,
    'firstName': lambda row: row.user.first_name,
    'lastName': lambda row: row.user.last_name,
    'email': lambda row: row.user.email,
}
for _status, _counter in ROLLUP_STATUS_COUNTERS:
    ROLLUP_SORT_FIELDS[_counter] = lambda row, status=_status: row.status_counts.get(status, 0)


def split_sort(sort: str) -> Tuple[str, bool]:
    """'-totalOrders' -> ('totalOrders', True)."""
    if sort.startswith('-'):
        return sort[1:], True
    return sort, False


@dataclass
class RollupPage:
    rows: List[UserOrderRollup]
    pagination: Pagination

    def to_dict(self) -> dict:
        return {
            'data': [row.to_dict() for row in self.rows],
            'pagination': self.pagination.to_dict(),
        }


def rollup_users_with_orders(
    orders: Sequence[Order],
    users: Mapping[ObjectId, UserProfile],
    query: RollupQuery,
) -> RollupPage:
    """
    Per-user order summaries for the admin dashboard.

    The date range decides which orders are counted. The status filter only
    decides which users appear: a user with at least one in-range order of
    that status gets a row, and the row's figures cover all of their
    in-range orders whatever their status. Users missing from `users` are
    dropped. Ties on the sort key keep grouping order.
    """
    sort_field, descending = split_sort(query.sort)
    if sort_field not in ROLLUP_SORT_FIELDS:
        raise ValueError(f"Unknown sort key: {sort_field}")

    in_range = [
        order for order in live_orders(orders)
        if created_within(order, query.created_from, query.created_to)
    ]

    qualifying = None
    if query.status:
        qualifying = {order.user for order in in_range if order.status == query.status}

    grouped: Dict[ObjectId, UserOrderRollup] = {}
    for order in in_range:
        if qualifying is not None and order.user not in qualifying:
            continue
        row = grouped.get(order.user)
        if row is None:
            profile = users.get(order.user)
            if profile is None:
                continue
            row = grouped[order.user] = UserOrderRollup(user=profile)
        row.add(order)

    matched = [row for row in grouped.values() if row.matches(query.search)]
    total = len(matched)

    sort_value = ROLLUP_SORT_FIELDS[sort_field]

    def sort_key(row):
        value = sort_value(row)
        # missing values sort lowest, as MongoDB orders nulls
        return (value is not None, value)

    matched.sort(key=sort_key, reverse=descending)

    page_rows = matched[query.skip:query.skip + query.limit]
    return RollupPage(rows=page_rows, pagination=Pagination(page=query.page, limit=query.limit, total=total))
