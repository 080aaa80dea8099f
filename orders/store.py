import re
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from .models import UPDATABLE_ORDER_FIELDS, Order, UserProfile

logger = logging.getLogger(__name__)

NOT_DELETED = {'isDeleted': {'$ne': True}}

USER_PROFILE_PROJECTION = {
    'firstName': 1,
    'lastName': 1,
    'email': 1,
    'phone': 1,
    'role': 1,
    'imageUrl': 1,
}

# Order fields the per-user rollup reads.
ROLLUP_ORDER_PROJECTION = {
    'user': 1,
    'status': 1,
    'totalAmount': 1,
    'createdAt': 1,
    'isDeleted': 1,
}


def created_at_filter(created_from: Optional[datetime], created_to: Optional[datetime]) -> Optional[dict]:
    if created_from is None and created_to is None:
        return None
    condition = {}
    if created_from is not None:
        condition['$gte'] = created_from
    if created_to is not None:
        condition['$lte'] = created_to
    return condition


def sort_spec(sort: str) -> List[Tuple[str, int]]:
    if sort.startswith('-'):
        return [(sort[1:], DESCENDING)]
    return [(sort, ASCENDING)]


class OrderStore:
    """
    The 'orders' and 'users' collections behind the statistics engine.

    Every read excludes soft-deleted orders.
    """
    def __init__(self, db):
        self.orders = db['orders']
        self.users = db['users']

    def ensure_indexes(self):
        self.orders.create_index('orderNumber', unique=True, sparse=True)
        self.orders.create_index('user')
        self.orders.create_index('status')
        self.orders.create_index('paymentStatus')
        self.orders.create_index('createdAt')
        logger.info("Order indexes ensured.")

    # --- Statistics reads ---

    def find_orders(
        self,
        user_id: Optional[ObjectId] = None,
        status: Optional[str] = None,
        exclude_statuses: Iterable[str] = (),
        payment_status: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        projection: Optional[dict] = None,
    ) -> List[Order]:
        """Orders come back in `_id` order so repeated reads group the same way."""
        query = dict(NOT_DELETED)
        if user_id is not None:
            query['user'] = user_id
        exclude_statuses = [str(s) for s in exclude_statuses]
        if status:
            query['status'] = str(status)
        elif exclude_statuses:
            query['status'] = {'$nin': exclude_statuses}
        if payment_status:
            query['paymentStatus'] = str(payment_status)
        created = created_at_filter(created_from, created_to)
        if created:
            query['createdAt'] = created

        cursor = self.orders.find(query, projection).sort('_id', ASCENDING)
        return [Order.from_document(doc) for doc in cursor]

    def find_users(self, user_ids: Iterable[ObjectId]) -> Dict[ObjectId, UserProfile]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        cursor = self.users.find({'_id': {'$in': ids}}, USER_PROFILE_PROJECTION)
        return {doc['_id']: UserProfile.from_document(doc) for doc in cursor}

    def get_user(self, user_id: ObjectId) -> Optional[UserProfile]:
        doc = self.users.find_one({'_id': user_id}, USER_PROFILE_PROJECTION)
        return UserProfile.from_document(doc) if doc else None

    # --- Order lifecycle ---

    def insert_order(self, order: Order) -> Order:
        doc = order.to_document()
        doc.pop('_id', None)
        result = self.orders.insert_one(doc)
        order.id = result.inserted_id
        return order

    def get_order(self, order_id: ObjectId) -> Optional[Order]:
        doc = self.orders.find_one({'_id': order_id, **NOT_DELETED})
        return Order.from_document(doc) if doc else None

    def list_orders(
        self,
        user_id: Optional[ObjectId] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        search: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        sort: str = '-createdAt',
        skip: int = 0,
        limit: int = 10,
    ) -> Tuple[List[Order], int]:
        query = dict(NOT_DELETED)
        if user_id is not None:
            query['user'] = user_id
        if status:
            query['status'] = status
        if payment_status:
            query['paymentStatus'] = payment_status
        if search:
            pattern = {'$regex': re.escape(search), '$options': 'i'}
            query['$or'] = [{'orderNumber': pattern}, {'trackingNumber': pattern}]
        created = created_at_filter(created_from, created_to)
        if created:
            query['createdAt'] = created

        cursor = self.orders.find(query).sort(sort_spec(sort)).skip(skip).limit(limit)
        orders = [Order.from_document(doc) for doc in cursor]
        total = self.orders.count_documents(query)
        return orders, total

    def count_orders(self, user_id: Optional[ObjectId] = None) -> int:
        query = dict(NOT_DELETED)
        if user_id is not None:
            query['user'] = user_id
        return self.orders.count_documents(query)

    def update_order(self, order_id: ObjectId, changes: dict) -> Optional[Order]:
        fields = {key: value for key, value in changes.items() if key in UPDATABLE_ORDER_FIELDS}
        fields['updatedAt'] = datetime.now(timezone.utc)
        doc = self.orders.find_one_and_update(
            {'_id': order_id, **NOT_DELETED},
            {'$set': fields},
            return_document=ReturnDocument.AFTER,
        )
        return Order.from_document(doc) if doc else None

    def soft_delete_order(self, order_id: ObjectId, deleted_by: ObjectId) -> bool:
        now = datetime.now(timezone.utc)
        result = self.orders.update_one(
            {'_id': order_id, **NOT_DELETED},
            {'$set': {'isDeleted': True, 'deletedAt': now, 'deletedBy': deleted_by, 'updatedAt': now}},
        )
        return result.matched_count > 0
