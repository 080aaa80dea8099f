from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING

from orders.store import ROLLUP_ORDER_PROJECTION, OrderStore


@pytest.fixture
def collections():
    return {'orders': MagicMock(), 'users': MagicMock()}


@pytest.fixture
def store(collections):
    return OrderStore(collections)


def order_doc(**fields):
    doc = {
        '_id': ObjectId(),
        'user': ObjectId(),
        'orderNumber': 'ORD-1',
        'totalAmount': 42.0,
        'status': 'Pending',
        'paymentStatus': 'Unpaid',
        'createdAt': datetime(2024, 1, 1),
    }
    doc.update(fields)
    return doc


def test_find_orders_always_excludes_deleted(store, collections):
    collections['orders'].find.return_value.sort.return_value = [order_doc()]

    orders = store.find_orders()

    collections['orders'].find.assert_called_once_with({'isDeleted': {'$ne': True}}, None)
    collections['orders'].find.return_value.sort.assert_called_once_with('_id', ASCENDING)
    assert orders[0].total_amount == 42.0
    # naive datetimes from the driver are read as UTC
    assert orders[0].created_at.tzinfo == timezone.utc


def test_find_orders_pushes_filters(store, collections):
    collections['orders'].find.return_value.sort.return_value = []
    user_id = ObjectId()
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)

    store.find_orders(user_id=user_id, exclude_statuses=['Cancelled', 'Failed'],
                      payment_status='Paid', created_from=start)

    query = collections['orders'].find.call_args.args[0]
    assert query['isDeleted'] == {'$ne': True}
    assert query['user'] == user_id
    assert set(query['status']['$nin']) == {'Cancelled', 'Failed'}
    assert query['paymentStatus'] == 'Paid'
    assert query['createdAt'] == {'$gte': start}


def test_find_orders_with_rollup_projection(store, collections):
    doc = order_doc()
    del doc['orderNumber']
    collections['orders'].find.return_value.sort.return_value = [doc]

    orders = store.find_orders(projection=ROLLUP_ORDER_PROJECTION)

    _, projection = collections['orders'].find.call_args.args
    assert projection == {'user': 1, 'status': 1, 'totalAmount': 1, 'createdAt': 1, 'isDeleted': 1}
    assert orders[0].items == []
    assert orders[0].total_amount == 42.0


def test_find_users_projects_display_fields(store, collections):
    uid = ObjectId()
    collections['users'].find.return_value = [{'_id': uid, 'firstName': 'Ada', 'role': 'admin'}]

    users = store.find_users([uid, uid])

    query, projection = collections['users'].find.call_args.args
    assert query == {'_id': {'$in': [uid]}}
    assert 'password' not in projection
    assert users[uid].first_name == 'Ada'
    assert users[uid].role == 'admin'


def test_find_users_skips_query_for_no_ids(store, collections):
    assert store.find_users([]) == {}
    collections['users'].find.assert_not_called()


def test_list_orders_escapes_search_and_sorts(store, collections):
    cursor = collections['orders'].find.return_value
    cursor.sort.return_value.skip.return_value.limit.return_value = [order_doc()]
    collections['orders'].count_documents.return_value = 7

    orders, total = store.list_orders(search='ORD1.*', sort='-createdAt', skip=10, limit=5)

    query = collections['orders'].find.call_args.args[0]
    assert query['$or'][0] == {'orderNumber': {'$regex': r'ORD1\.\*', '$options': 'i'}}
    cursor.sort.assert_called_once_with([('createdAt', DESCENDING)])
    cursor.sort.return_value.skip.assert_called_once_with(10)
    cursor.sort.return_value.skip.return_value.limit.assert_called_once_with(5)
    collections['orders'].count_documents.assert_called_once_with(query)
    assert total == 7
    assert len(orders) == 1


def test_update_order_sets_only_whitelisted_fields(store, collections):
    oid = ObjectId()
    collections['orders'].find_one_and_update.return_value = order_doc(_id=oid, status='Shipped')

    updated = store.update_order(oid, {'status': 'Shipped', 'totalAmount': 1, 'user': ObjectId()})

    query, update = collections['orders'].find_one_and_update.call_args.args
    assert query == {'_id': oid, 'isDeleted': {'$ne': True}}
    assert set(update['$set']) == {'status', 'updatedAt'}
    assert updated.status == 'Shipped'


def test_soft_delete_marks_order(store, collections):
    oid, admin_id = ObjectId(), ObjectId()
    collections['orders'].update_one.return_value.matched_count = 1

    assert store.soft_delete_order(oid, deleted_by=admin_id) is True

    query, update = collections['orders'].update_one.call_args.args
    assert query == {'_id': oid, 'isDeleted': {'$ne': True}}
    assert update['$set']['isDeleted'] is True
    assert update['$set']['deletedBy'] == admin_id
    assert update['$set']['deletedAt'] is not None


def test_soft_delete_missing_order(store, collections):
    collections['orders'].update_one.return_value.matched_count = 0
    assert store.soft_delete_order(ObjectId(), deleted_by=ObjectId()) is False


def test_ensure_indexes(store, collections):
    store.ensure_indexes()
    collections['orders'].create_index.assert_any_call('orderNumber', unique=True, sparse=True)
    indexed = {call.args[0] for call in collections['orders'].create_index.call_args_list}
    assert indexed == {'orderNumber', 'user', 'status', 'paymentStatus', 'createdAt'}
