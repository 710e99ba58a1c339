import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from shop_backend.auth import admin_required, firebase_auth_required
from shop_backend.exceptions import ServiceError, ValidationError, error_response, parse_json_body
from shop_backend.utils import parse_datetime_param

from .models import OrderStatus
from .services import DEFAULT_PAGE_SIZE, get_order_service
from .validation import validate_create_order, validate_shipping_update, validate_status_update

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _server_error(message):
    return JsonResponse({'success': False, 'error': message}, status=500)


@csrf_exempt
@require_http_methods(['POST'])
@firebase_auth_required
def create_order(request):
    """
    Creates an order for the authenticated user.

    The owner is always the token's uid, whatever the body says.
    """
    user = request.firebase_user
    try:
        data = parse_json_body(request)
        data['user_id'] = user.uid
        data['metadata'] = {
            'user_agent': request.headers.get('User-Agent'),
            'ip': request.META.get('REMOTE_ADDR'),
        }
        order_request = validate_create_order(data)

        logger.info(f"Creating order for user {user.uid} with {len(order_request['items'])} items.")
        order = get_order_service().create_order(order_request)
        return JsonResponse({'success': True, 'data': order, 'message': 'Order created successfully'}, status=201)
    except ServiceError as e:
        logger.warning(f"Create order rejected for user {user.uid}: {e}")
        return error_response(e)
    except Exception as e:
        logger.error(f"Create order error: {e}")
        logger.exception(e)
        return _server_error('Failed to create order')


@require_http_methods(['GET'])
@firebase_auth_required
def get_order(request, order_id):
    user = request.firebase_user
    try:
        order = get_order_service().get_order_for_user(order_id, user.uid, user.is_admin)
        return JsonResponse({'success': True, 'data': order})
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Get order error for {order_id}: {e}")
        return _server_error('Failed to fetch order')


@require_http_methods(['GET'])
@firebase_auth_required
def get_order_by_number(request, order_number):
    user = request.firebase_user
    service = get_order_service()
    try:
        order = service.get_order_by_number(order_number)
        if order is None:
            return JsonResponse({'success': False, 'error': 'Order not found'}, status=404)
        service.check_access(order, user.uid, user.is_admin)
        return JsonResponse({'success': True, 'data': order})
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Get order by number error for {order_number}: {e}")
        return _server_error('Failed to fetch order')


@require_http_methods(['GET'])
@firebase_auth_required
def get_user_orders(request):
    user = request.firebase_user
    try:
        limit = int(request.GET.get('limit', DEFAULT_PAGE_SIZE))
    except ValueError:
        return error_response(ValidationError('limit must be an integer'))
    limit = max(1, min(limit, MAX_PAGE_SIZE))

    try:
        result = get_order_service().get_user_orders(user.uid, limit, request.GET.get('cursor') or None)
        return JsonResponse({'success': True, **result})
    except Exception as e:
        logger.error(f"Get user orders error for {user.uid}: {e}")
        return _server_error('Failed to fetch orders')


@csrf_exempt
@require_http_methods(['PATCH', 'POST'])
@firebase_auth_required
def cancel_order(request, order_id):
    user = request.firebase_user
    service = get_order_service()
    try:
        data = parse_json_body(request)
        reason = data.get('reason') or 'Cancelled by customer'
        service.get_order_for_user(order_id, user.uid, user.is_admin)

        order = service.cancel_order(order_id, reason, user.uid)
        return JsonResponse({'success': True, 'data': order, 'message': 'Order cancelled successfully'})
    except ServiceError as e:
        logger.warning(f"Cancel order {order_id} rejected: {e}")
        return error_response(e)
    except Exception as e:
        logger.error(f"Cancel order error for {order_id}: {e}")
        return _server_error('Failed to cancel order')


# --- Admin ---

@csrf_exempt
@require_http_methods(['PATCH'])
@firebase_auth_required
@admin_required
def update_order_status(request, order_id):
    try:
        update = validate_status_update(parse_json_body(request))
        order = get_order_service().update_order_status(order_id, update['status'], update['reason'])
        return JsonResponse({
            'success': True,
            'data': order,
            'message': f"Order status updated to {update['status']}",
        })
    except ServiceError as e:
        logger.warning(f"Status update for order {order_id} rejected: {e}")
        return error_response(e)
    except Exception as e:
        logger.error(f"Update order status error for {order_id}: {e}")
        return _server_error('Failed to update order status')


@csrf_exempt
@require_http_methods(['PATCH'])
@firebase_auth_required
@admin_required
def update_shipping_status(request, order_id):
    try:
        update = validate_shipping_update(parse_json_body(request))
        order = get_order_service().update_shipping_status(
            order_id, update['shipping_status'], update['tracking_number'], update['carrier'],
        )
        return JsonResponse({'success': True, 'data': order})
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Update shipping status error for {order_id}: {e}")
        return _server_error('Failed to update shipping status')


@csrf_exempt
@require_http_methods(['DELETE'])
@firebase_auth_required
@admin_required
def delete_order(request, order_id):
    try:
        order = get_order_service().soft_delete_order(order_id)
        return JsonResponse({'success': True, 'data': order, 'message': 'Order deleted'})
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Delete order error for {order_id}: {e}")
        return _server_error('Failed to delete order')


def _date_range(request):
    try:
        return parse_datetime_param(request.GET.get('date_from')), parse_datetime_param(request.GET.get('date_to'))
    except ValueError:
        raise ValidationError('date_from and date_to must be ISO-8601 dates')


@require_http_methods(['GET'])
@firebase_auth_required
@admin_required
def list_orders(request):
    try:
        date_from, date_to = _date_range(request)
        filters = {
            'user_id': request.GET.get('user_id'),
            'status': request.GET.get('status'),
            'payment_status': request.GET.get('payment_status'),
            'date_from': date_from.isoformat() if date_from else None,
            'date_to': date_to.isoformat() if date_to else None,
        }
        orders = get_order_service().list_orders(filters)
        return JsonResponse({'success': True, 'data': orders, 'total': len(orders)})
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"List orders error: {e}")
        return _server_error('Failed to fetch orders')


@require_http_methods(['GET'])
@firebase_auth_required
@admin_required
def order_analytics(request):
    try:
        date_from, date_to = _date_range(request)
        analytics = get_order_service().get_order_analytics(request.GET.get('user_id'), date_from, date_to)
        return JsonResponse({'success': True, 'data': analytics})
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Order analytics error: {e}")
        return _server_error('Failed to fetch analytics')


# --- Webhooks ---

@csrf_exempt
@require_http_methods(['POST'])
def payment_webhook(request):
    """
    Listener for payment results pushed by the payment service.

    `payment.success` records the payment; `payment.failed` fails the order.
    """
    try:
        body = parse_json_body(request)
        event = body.get('event')
        data = body.get('data') or {}
        logger.info(f"Received payment webhook: {event} for order {data.get('order_id')}")

        service = get_order_service()
        if event == 'payment.success':
            service.process_payment(data['order_id'], {
                'transaction_id': data.get('transaction_id'),
                'amount': data.get('amount'),
                'method': data.get('method'),
                'receipt': data.get('receipt'),
            })
        elif event == 'payment.failed':
            service.update_order_status(data['order_id'], OrderStatus.FAILED, 'Payment failed')
        else:
            logger.warning(f"Ignoring unknown payment webhook event: {event}")

        return JsonResponse({'received': True})
    except Exception as e:
        logger.error(f"Payment webhook error: {e}")
        return JsonResponse({'success': False, 'error': 'Failed to process webhook'}, status=500)
