import json
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError

from export_order_rollup import export_order_rollup
from orders import services
from orders.aggregation import RollupQuery
from orders.store import ROLLUP_ORDER_PROJECTION
from tests.fakes import InMemoryOrderStore, make_order, make_user


def test_create_order_derives_totals_and_number():
    store = InMemoryOrderStore()
    user_id = ObjectId()

    order = services.create_order(
        user_id,
        [{'product': 'p1', 'quantity': 3, 'price': 2.5}, {'product': 'p2', 'quantity': 1, 'price': 0.1}],
        {'city': 'Pune'},
        shipping_fee=1.2,
        store=store,
    )

    assert order.id is not None
    assert order.subtotal == 7.6
    assert order.total_amount == 8.8
    assert order.order_number.startswith('ORD-')
    assert order.created_at == order.updated_at
    assert store.orders == [order]


def test_create_order_maps_duplicate_key():
    store = MagicMock()
    store.insert_order.side_effect = DuplicateKeyError("E11000 duplicate key error")

    with pytest.raises(services.OrderNumberConflict):
        services.create_order(ObjectId(), [{'product': 'p', 'quantity': 1, 'price': 1}], 'x', store=store)


def test_order_numbers_are_distinct():
    assert services.generate_order_number() != services.generate_order_number()


def test_storage_errors_become_computation_errors():
    store = MagicMock()
    store.find_orders.side_effect = PyMongoError("timed out")

    with pytest.raises(services.StatsComputationError, match="timed out"):
        services.get_average_order_value(ObjectId(), store=store)


def test_total_spent_reapplies_filters_in_memory():
    user = ObjectId()
    # a store that ignores the pushed-down filters must not change the result
    store = MagicMock()
    store.find_orders.return_value = [
        make_order(user, 100),
        make_order(user, 50, status='Cancelled'),
        make_order(user, 25, deleted=True),
    ]
    assert services.get_total_spent(user, store=store) == 100


def test_rollup_fetches_users_of_in_range_orders():
    ada = make_user(first_name='Ada')
    store = InMemoryOrderStore(orders=[make_order(ada.id, 10)], users=[ada])

    page = services.get_users_with_orders(RollupQuery(), store=store)

    assert [row.user.first_name for row in page.rows] == ['Ada']


def test_rollup_reads_only_the_fields_it_aggregates():
    store = MagicMock()
    store.find_orders.return_value = []
    store.find_users.return_value = {}

    services.get_users_with_orders(RollupQuery(), store=store)

    assert store.find_orders.call_args.kwargs['projection'] == ROLLUP_ORDER_PROJECTION


def _tied_spenders(count):
    users = [make_user(first_name=f'Tied{i}') for i in range(count)]
    orders = [make_order(user.id, 40) for user in users]
    return InMemoryOrderStore(orders=orders, users=users), users


def test_full_rollup_keeps_every_tied_user_once():
    store, users = _tied_spenders(7)

    rows = services.get_all_users_with_orders(sort='-totalSpent', store=store)

    assert sorted(row.user.id for row in rows) == sorted(user.id for user in users)
    assert store.order_reads == 1


def test_full_rollup_with_no_orders():
    assert services.get_all_users_with_orders(store=InMemoryOrderStore()) == []


def test_export_writes_all_rows_in_one_pass(tmp_path):
    # more tied users than a single page of the admin endpoint
    store, users = _tied_spenders(105)
    output = tmp_path / 'rollup.json'

    rows = export_order_rollup(output_path=str(output), store=store)

    written = json.loads(output.read_text(encoding='utf-8'))
    assert written == rows
    assert len({row['userId'] for row in written}) == 105
    assert {row['totalSpent'] for row in written} == {40}
    assert store.order_reads == 1
