from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods
import logging

from . import services
from .aggregation import DEFAULT_ROLLUP_SORT, ROLLUP_SORT_FIELDS, Pagination, RollupQuery
from .models import PaymentStatus
from .permissions import Capability, capability_required, login_required
from .validators import (
    ValidationError,
    clean_order_update,
    parse_date_range,
    parse_json_body,
    parse_object_id,
    parse_pagination,
    parse_search,
    parse_sort,
    parse_status,
    validate_order_payload,
)

logger = logging.getLogger(__name__)

ORDER_SORT_FIELDS = ('createdAt', 'updatedAt', 'totalAmount', 'subtotal', 'status', 'paymentStatus', 'orderNumber')


def _ok(payload=None, status=200):
    return JsonResponse({'success': True, **(payload or {})}, status=status)


def _error(message, status, error=None):
    body = {'success': False, 'message': message}
    if error is not None:
        body['error'] = error
    return JsonResponse(body, status=status)


def _paginated(orders, page, limit, total):
    return _ok({
        'data': [order.to_dict() for order in orders],
        'pagination': Pagination(page=page, limit=limit, total=total).to_dict(),
    })


# --- Statistics ---

@require_GET
@login_required
def avg_order_value(request):
    """
    Average order value for the logged-in user.
    Cancelled, returned and failed orders are not purchases and are left out.
    """
    try:
        stats = services.get_average_order_value(request.caller.id)
        return _ok(stats.to_dict())
    except Exception as e:
        logger.error(f"Error calculating Average Order Value: {e}")
        return _error("Failed to calculate average order value.", 500, error=str(e))


@require_GET
@login_required
def total_spent_amount(request):
    try:
        total = services.get_total_spent(request.caller.id)
        return _ok({'totalSpent': total})
    except Exception as e:
        logger.error(f"Error calculating total spent: {e}")
        return _error("Failed to calculate total spent amount", 500, error=str(e))


@require_GET
@login_required
@capability_required(Capability.VIEW_ORDER_REPORTS, "Only admins can view users with orders")
def users_with_orders(request):
    """
    Per-user order statistics for the admin dashboard.

    Query: status, from, to, q, page, limit, sort (default -totalOrders).
    """
    try:
        params = request.GET
        page, limit = parse_pagination(params)
        created_from, created_to = parse_date_range(params)
        query = RollupQuery(
            status=parse_status(params.get('status')),
            created_from=created_from,
            created_to=created_to,
            search=parse_search(params.get('q')),
            page=page,
            limit=limit,
            sort=parse_sort(params.get('sort'), ROLLUP_SORT_FIELDS, DEFAULT_ROLLUP_SORT),
        )
    except ValidationError as e:
        return _error(str(e), 400)

    logger.info(f"Admin {request.caller.id} fetching users with orders: {query}")
    try:
        result = services.get_users_with_orders(query)
        return _ok(result.to_dict())
    except Exception as e:
        logger.error(f"Error fetching users with orders: {e}")
        return _error("Failed to fetch users with orders", 500, error=str(e))


# --- Orders ---

@csrf_exempt
@require_http_methods(["GET", "POST"])
@login_required
def orders_collection(request):
    if request.method == 'POST':
        return _create_order(request)
    return _list_orders(request)


def _create_order(request):
    caller = request.caller
    if not caller.can(Capability.PLACE_ORDERS):
        return _error("You are not allowed to place orders", 403)

    try:
        data = parse_json_body(request)
        items, shipping_address, shipping_fee = validate_order_payload(data)
    except ValidationError as e:
        return _error(str(e), 400)

    logger.info(f"Received order creation request from user {caller.id} with {len(items)} items.")
    try:
        order = services.create_order(caller.id, items, shipping_address, shipping_fee)
    except services.OrderNumberConflict as e:
        return _error(str(e), 409)
    except Exception as e:
        logger.error(f"Error creating order: {e}")
        return _error("Failed to create order", 500, error=str(e))

    return _ok({'message': 'Order placed successfully', 'order': order.to_dict()}, status=201)


def _list_orders(request):
    """Admins see every order and may narrow by `user`; everyone else sees their own."""
    caller = request.caller
    params = request.GET
    try:
        page, limit = parse_pagination(params)
        created_from, created_to = parse_date_range(params)
        status = parse_status(params.get('status'))
        payment_status = parse_status(params.get('paymentStatus'), PaymentStatus, 'paymentStatus')
        sort = parse_sort(params.get('sort'), ORDER_SORT_FIELDS, '-createdAt')
        if caller.can(Capability.VIEW_ALL_ORDERS):
            user_id = parse_object_id(params['user'], 'user') if params.get('user') else None
        else:
            user_id = caller.id
    except ValidationError as e:
        return _error(str(e), 400)

    try:
        orders, total = services.get_order_store().list_orders(
            user_id=user_id,
            status=status,
            payment_status=payment_status,
            search=parse_search(params.get('q')),
            created_from=created_from,
            created_to=created_to,
            sort=sort,
            skip=(page - 1) * limit,
            limit=limit,
        )
    except Exception as e:
        logger.error(f"Error fetching orders: {e}")
        return _error("Failed to fetch orders", 500, error=str(e))

    logger.info(f"Found {len(orders)} of {total} orders for {'admin' if user_id is None else user_id}")
    return _paginated(orders, page, limit, total)


@require_GET
@login_required
def my_orders(request):
    params = request.GET
    try:
        page, limit = parse_pagination(params)
        status = parse_status(params.get('status'))
        payment_status = parse_status(params.get('paymentStatus'), PaymentStatus, 'paymentStatus')
        sort = parse_sort(params.get('sort'), ORDER_SORT_FIELDS, '-createdAt')
    except ValidationError as e:
        return _error(str(e), 400)

    try:
        orders, total = services.get_order_store().list_orders(
            user_id=request.caller.id,
            status=status,
            payment_status=payment_status,
            sort=sort,
            skip=(page - 1) * limit,
            limit=limit,
        )
    except Exception as e:
        logger.error(f"Error fetching user orders: {e}")
        return _error("Failed to fetch orders", 500, error=str(e))

    return _paginated(orders, page, limit, total)


@require_GET
@login_required
def my_orders_count(request):
    try:
        count = services.get_order_store().count_orders(user_id=request.caller.id)
        return _ok({'totalOrders': count})
    except Exception as e:
        logger.error(f"Error counting user orders: {e}")
        return _error("Failed to count orders", 500, error=str(e))


@require_GET
@login_required
@capability_required(Capability.VIEW_ALL_ORDERS, "Only admins can view order counts")
def count_orders(request):
    try:
        count = services.get_order_store().count_orders()
        logger.info(f"Total orders count retrieved: {count}")
        return _ok({'count': count})
    except Exception as e:
        logger.error(f"Error counting orders: {e}")
        return _error("Failed to count orders", 500, error=str(e))


@csrf_exempt
@require_http_methods(["GET", "PUT", "DELETE"])
@login_required
def order_detail(request, order_id):
    try:
        oid = parse_object_id(order_id, 'order ID')
    except ValidationError:
        return _error("Invalid order ID", 400)

    if request.method == 'GET':
        return _get_order(request, oid)
    if request.method == 'PUT':
        return _update_order(request, oid)
    return _delete_order(request, oid)


def _get_order(request, oid):
    caller = request.caller
    try:
        order = services.get_order_store().get_order(oid)
    except Exception as e:
        logger.error(f"Error fetching order {oid}: {e}")
        return _error("Failed to fetch order", 500, error=str(e))

    if order is None:
        return _error("Order not found", 404)

    if order.user != caller.id and not caller.can(Capability.VIEW_ALL_ORDERS):
        logger.warning(f"Unauthorized access attempt on order {oid} by user {caller.id}")
        return _error("You do not have permission to view this order", 403)

    return _ok({'data': order.to_dict()})


def _update_order(request, oid):
    """Admins may change status and tracking fields; user and financials stay as created."""
    caller = request.caller
    if not caller.can(Capability.MANAGE_ORDERS):
        return _error("Only admins can update orders", 403)

    try:
        changes = clean_order_update(parse_json_body(request))
    except ValidationError as e:
        return _error(str(e), 400)

    try:
        updated = services.get_order_store().update_order(oid, changes)
    except Exception as e:
        logger.error(f"Error updating order {oid}: {e}")
        return _error("Failed to update order", 500, error=str(e))

    if updated is None:
        return _error("Order not found", 404)

    logger.info(f"Order updated: {oid} by admin {caller.id} ({', '.join(changes)})")
    return _ok({'message': 'Order updated successfully', 'data': updated.to_dict()})


def _delete_order(request, oid):
    caller = request.caller
    if not caller.can(Capability.MANAGE_ORDERS):
        return _error("Only admins can delete orders", 403)

    try:
        deleted = services.get_order_store().soft_delete_order(oid, deleted_by=caller.id)
    except Exception as e:
        logger.error(f"Error deleting order {oid}: {e}")
        return _error("Failed to delete order", 500, error=str(e))

    if not deleted:
        return _error("Order not found", 404)

    logger.info(f"Order soft-deleted: {oid} by admin: {caller.id}")
    return _ok({'message': 'Order deleted successfully', 'id': str(oid)})
