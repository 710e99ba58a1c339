import json
import logging

from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from orders.services import get_order_service
from shop_backend.auth import admin_required, firebase_auth_required
from shop_backend.exceptions import ServiceError, ValidationError, error_response, parse_json_body
from shop_backend.utils import now_iso

from .callbacks import CALLBACK_ACKNOWLEDGEMENT, describe_callback, get_callback_reconciler
from .repositories import TransactionRepository
from .services import get_mpesa_service

logger = logging.getLogger(__name__)


@require_http_methods(['GET'])
def mpesa_health(request):
    try:
        healthy = get_mpesa_service().health_check()
        return JsonResponse({'healthy': healthy, 'environment': settings.MPESA_ENVIRONMENT, 'timestamp': now_iso()})
    except Exception as e:
        logger.error(f"M-Pesa health endpoint error: {e}")
        return JsonResponse({'healthy': False, 'error': str(e), 'timestamp': now_iso()})


@csrf_exempt
@require_http_methods(['POST'])
@firebase_auth_required
def initiate_stk_push(request):
    """
    Starts an M-Pesa STK Push for an order; the payer confirms on their phone.
    """
    user = request.firebase_user
    body = {}
    try:
        body = parse_json_body(request)
        missing = [field for field in ('phone', 'amount', 'order_id') if not body.get(field)]
        if missing:
            return JsonResponse({
                'success': False,
                'error': f"Missing required fields: {', '.join(missing)}",
            }, status=400)

        result = get_mpesa_service().initiate_stk_push(
            phone=body['phone'],
            amount=body['amount'],
            order_id=body['order_id'],
            description=body.get('description'),
            account_reference=body.get('account_reference'),
        )

        logger.info(
            f"Payment initiated by user {user.uid} for order {body['order_id']}: "
            f"checkout {result['checkout_request_id']} ({settings.MPESA_ENVIRONMENT})"
        )
        return JsonResponse({
            'success': True,
            'data': result,
            'message': 'Payment initiated successfully. Check your phone for M-Pesa prompt.',
        })
    except ValidationError as e:
        logger.warning(f"Payment initiation rejected for user {user.uid}, order {body.get('order_id')}: {e}")
        return JsonResponse({'success': False, 'error': e.message, 'code': 'PAYMENT_INITIATION_FAILED'}, status=400)
    except ServiceError as e:
        logger.error(f"Payment initiation failed for user {user.uid}, order {body.get('order_id')}: {e}")
        return JsonResponse({'success': False, 'error': e.message, 'code': 'PAYMENT_INITIATION_FAILED'}, status=500)
    except Exception as e:
        logger.error(f"Payment initiation failed for user {user.uid}, order {body.get('order_id')}: {e}")
        logger.exception(e)
        return JsonResponse({
            'success': False,
            'error': 'Payment initiation failed',
            'code': 'PAYMENT_INITIATION_FAILED',
        }, status=500)


@require_http_methods(['GET'])
@firebase_auth_required
def order_transactions(request, order_id):
    user = request.firebase_user
    try:
        get_order_service().get_order_for_user(order_id, user.uid, user.is_admin)
        transactions = TransactionRepository().find_by_order_id(order_id)
        return JsonResponse({'success': True, 'data': transactions})
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Get transactions error for order {order_id}: {e}")
        return JsonResponse({'success': False, 'error': 'Failed to fetch transactions'}, status=500)


@csrf_exempt
@require_http_methods(['POST'])
@firebase_auth_required
def query_transaction(request):
    try:
        body = parse_json_body(request)
        checkout_request_id = body.get('checkout_request_id')
        if not checkout_request_id:
            return JsonResponse({'success': False, 'error': 'checkout_request_id is required'}, status=400)

        result = get_mpesa_service().query_transaction(checkout_request_id)
        return JsonResponse({'success': True, 'data': result})
    except ServiceError as e:
        if e.status_code < 500:
            return error_response(e)
        logger.error(f"Query transaction error: {e}")
        return JsonResponse({'success': False, 'error': 'Failed to query transaction status'}, status=500)
    except Exception as e:
        logger.error(f"Query transaction error: {e}")
        return JsonResponse({'success': False, 'error': 'Failed to query transaction status'}, status=500)


@csrf_exempt
@require_http_methods(['POST'])
def mpesa_callback(request):
    """
    Public endpoint M-Pesa posts STK results to. Always acknowledged.
    """
    try:
        payload = json.loads(request.body or b'{}')
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error(f"Unreadable M-Pesa callback body: {e}")
        return JsonResponse(dict(CALLBACK_ACKNOWLEDGEMENT))

    # The payload carries the payer's phone number; only identifiers are logged.
    checkout_request_id, result_code = describe_callback(payload)
    logger.info(f"M-Pesa callback received: checkout {checkout_request_id}, result {result_code}")
    try:
        return JsonResponse(get_callback_reconciler().handle(payload))
    except Exception as e:
        logger.error(f"M-Pesa callback for {checkout_request_id} could not be processed: {e}")
        logger.exception(e)
        return JsonResponse(dict(CALLBACK_ACKNOWLEDGEMENT))


@csrf_exempt
@require_http_methods(['POST'])
@firebase_auth_required
@admin_required
def b2b_payment(request):
    try:
        body = parse_json_body(request)
        missing = [f for f in ('receiver_short_code', 'amount', 'account_reference') if not body.get(f)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        result = get_mpesa_service().b2b_payment(
            receiver_short_code=body['receiver_short_code'],
            amount=body['amount'],
            account_reference=body['account_reference'],
            remarks=body.get('remarks') or 'B2B payment',
        )
        return JsonResponse({'success': True, 'data': result})
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"B2B payment error: {e}")
        return JsonResponse({'success': False, 'error': 'B2B payment failed'}, status=500)
