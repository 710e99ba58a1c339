import datetime
import functools
import logging
import math

from django.conf import settings

from shop_backend.exceptions import InvalidStateError, NotFoundError, PermissionDeniedError
from shop_backend.side_effects import BestEffort, dispatch
from shop_backend.utils import now_iso, utc_now

from .integrations import InventoryGateway, NotificationGateway, OrderEventPublisher, RefundGateway
from .models import CANCELLABLE_STATUSES, OrderStatus, PaymentStatus, is_transition_allowed
from .repositories import OrderRepository

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
ANALYTICS_DEFAULT_DAYS = 30


def calculate_line_total(item):
    return item['price'] * item['quantity'] - item.get('discount', 0) + item.get('tax', 0)


def calculate_totals(request):
    """
    Recomputes subtotal and total from the line items.

    subtotal = sum(price * quantity); total = subtotal + shipping - discount + tax.
    """
    subtotal = sum(item['price'] * item['quantity'] for item in request['items'])
    total = subtotal + request.get('shipping_cost', 0) - request.get('discount', 0) + request.get('tax', 0)
    return subtotal, total


class OrderService:
    """
    Order lifecycle: creation, status transitions, cancellation and payment.

    The order document is the durable source of truth. Inventory, notification
    and refund calls made after the order is written are best-effort: their
    failures are logged and the primary operation still completes.
    """

    def __init__(self, repository=None, inventory=None, notifications=None, refunds=None,
                 events=None, best_effort=None, dispatcher=dispatch):
        self.repository = repository or OrderRepository()
        self.inventory = inventory or InventoryGateway(settings.INVENTORY_SERVICE_URL)
        self.notifications = notifications or NotificationGateway(settings.NOTIFICATION_SERVICE_URL)
        self.refunds = refunds or RefundGateway(settings.PAYMENT_SERVICE_URL)
        self.events = events or OrderEventPublisher(dispatcher)
        self.best_effort = best_effort or BestEffort(logger)
        self.dispatcher = dispatcher

    # --- Create ---

    def create_order(self, request: dict) -> dict:
        # Nothing is written if the inventory service says no or cannot be reached.
        self.inventory.validate(request['items'])

        items = [{**item, 'total': calculate_line_total(item)} for item in request['items']]
        subtotal, total = calculate_totals(request)

        client_subtotal = request.get('subtotal')
        client_total = request.get('total')
        if client_total is not None and not math.isclose(float(client_total), total, rel_tol=1e-9, abs_tol=0.005):
            logger.warning(
                f"Client total {client_total} for user {request['user_id']} differs from recomputed total {total}."
            )

        order_data = {
            key: value for key, value in request.items()
            if key not in ('subtotal', 'total', 'items', 'metadata')
        }
        order_data.update({
            'items': items,
            'subtotal': subtotal,
            'total': total,
            'client_subtotal': client_subtotal,
            'client_total': client_total,
            'billing_address': request.get('billing_address') or request['shipping_address'],
            'metadata': {
                'user_agent': (request.get('metadata') or {}).get('user_agent'),
                'ip': (request.get('metadata') or {}).get('ip'),
                'source': 'web',
            },
        })

        order = self.repository.create(order_data)

        # A failed reservation does not roll back the order.
        reserved = self.best_effort.run(
            f"Inventory reservation for order {order['id']}",
            self.inventory.reserve, order['id'], items,
        )
        if not reserved:
            logger.warning(f"Order {order['id']} was created without a confirmed inventory reservation.")

        self.events.publish('order.created', {'order_id': order['id'], 'user_id': order['user_id'], 'total': total})
        self.dispatcher(self._send_order_confirmation, order, description=f"order confirmation {order['id']}")

        logger.info(f"Order {order['order_number']} created with total {total} {order['currency']}.")
        return order

    def _send_order_confirmation(self, order):
        self.notifications.send_email(order['user_id'], 'order-confirmation', {
            'order_number': order['order_number'],
            'items': order['items'],
            'total': order['total'],
            'shipping_address': order['shipping_address'],
        })

    # --- Read ---

    def get_order(self, order_id):
        return self.repository.find_by_id(order_id)

    def get_order_by_number(self, order_number):
        return self.repository.find_by_order_number(order_number)

    def _require_order(self, order_id):
        order = self.repository.find_by_id(order_id)
        if order is None:
            raise NotFoundError('Order not found')
        return order

    @staticmethod
    def check_access(order, uid, is_admin=False):
        if order['user_id'] != uid and not is_admin:
            raise PermissionDeniedError('Access denied')
        return order

    def get_order_for_user(self, order_id, uid, is_admin=False):
        return self.check_access(self._require_order(order_id), uid, is_admin)

    def get_user_orders(self, user_id, limit=DEFAULT_PAGE_SIZE, cursor=None):
        orders = self.repository.find_by_user(user_id, limit, cursor)
        return {
            'orders': orders,
            'next_cursor': orders[-1]['id'] if orders and len(orders) == limit else None,
            'total': len(orders),
        }

    def list_orders(self, filters=None):
        return self.repository.find_all(filters or {})

    # --- Status transitions ---

    def update_order_status(self, order_id, next_status, reason=None):
        order = self._require_order(order_id)
        current = order['status']

        if not is_transition_allowed(current, next_status):
            raise InvalidStateError(f"Cannot transition from {current} to {next_status}")

        self.repository.update_status(order_id, OrderStatus(next_status).value, reason)
        self.events.publish('order.status_changed', {
            'order_id': order_id, 'from': current, 'status': next_status, 'reason': reason,
        })
        logger.info(f"Order {order_id} moved from {current} to {next_status}.")
        return self.repository.find_by_id(order_id)

    def cancel_order(self, order_id, reason, cancelled_by):
        order = self._require_order(order_id)

        if order['status'] not in CANCELLABLE_STATUSES:
            raise InvalidStateError('Order cannot be cancelled at this stage')

        was_paid = order.get('payment_status') == PaymentStatus.PAID
        self.repository.update_status(order_id, OrderStatus.CANCELLED.value, reason, extra={
            'cancelled_at': now_iso(),
            'cancelled_by': cancelled_by,
            'cancellation_reason': reason,
        })

        self.best_effort.run(
            f"Inventory release for order {order_id}",
            self.inventory.release, order_id, order.get('items', []),
        )

        if was_paid:
            self.best_effort.run(
                f"Refund initiation for order {order_id}",
                self.refunds.request_refund, {**order, 'cancellation_reason': reason},
            )

        self.events.publish('order.cancelled', {'order_id': order_id, 'reason': reason, 'cancelled_by': cancelled_by})
        logger.info(f"Order {order_id} cancelled by {cancelled_by}: {reason}")
        return self.repository.find_by_id(order_id)

    # --- Payment ---

    def process_payment(self, order_id, payment_data: dict):
        """
        Records a successful payment: marks the order paid, confirms a pending
        order and confirms the inventory reservation.

        An order failed by an earlier attempt goes back through pending to
        confirmed, so each step lands in the status history.
        """
        order = self._require_order(order_id)

        self.repository.update_payment_status(order_id, PaymentStatus.PAID.value, {
            'payment_transaction_id': payment_data.get('transaction_id'),
            'payment_receipt': payment_data.get('receipt'),
            'payment_amount': payment_data.get('amount'),
            'payment_method_used': payment_data.get('method'),
            'paid_at': now_iso(),
        })

        status = order['status']
        if status == OrderStatus.FAILED:
            self.repository.update_status(order_id, OrderStatus.PENDING.value, 'Payment retried')
            status = OrderStatus.PENDING
        if status == OrderStatus.PENDING:
            self.repository.update_status(order_id, OrderStatus.CONFIRMED.value, 'Payment received')

        self.best_effort.run(
            f"Inventory confirmation for order {order_id}",
            self.inventory.confirm, order_id, order.get('items', []),
        )

        self.events.publish('order.paid', {
            'order_id': order_id,
            'transaction_id': payment_data.get('transaction_id'),
            'amount': payment_data.get('amount'),
        })
        logger.info(f"Payment recorded for order {order_id} (receipt {payment_data.get('receipt')}).")
        return self.repository.find_by_id(order_id)

    def mark_payment_failed(self, order_id, reason='Payment failed'):
        order = self._require_order(order_id)

        # A stale failure for an earlier attempt must not undo a later payment.
        if order.get('payment_status') == PaymentStatus.PAID:
            logger.warning(f"Ignoring payment failure for order {order_id}: order is already paid.")
            return order
        if not is_transition_allowed(order['status'], OrderStatus.FAILED):
            raise InvalidStateError(f"Cannot transition from {order['status']} to {OrderStatus.FAILED.value}")

        self.repository.update_payment_status(order_id, PaymentStatus.FAILED.value)
        return self.update_order_status(order_id, OrderStatus.FAILED, reason)

    # --- Shipping ---

    def update_shipping_status(self, order_id, shipping_status, tracking_number=None, carrier=None):
        self._require_order(order_id)
        tracking_info = {}
        if tracking_number:
            tracking_info['tracking_number'] = tracking_number
        if carrier:
            tracking_info['carrier'] = carrier

        self.repository.update_shipping_status(order_id, shipping_status, tracking_info)
        self.events.publish('order.shipping_changed', {'order_id': order_id, 'shipping_status': shipping_status})
        return self.repository.find_by_id(order_id)

    def soft_delete_order(self, order_id):
        self._require_order(order_id)
        self.repository.soft_delete(order_id)
        logger.info(f"Order {order_id} soft-deleted.")
        return self.repository.find_by_id(order_id)

    # --- Analytics ---

    def get_order_analytics(self, user_id=None, date_from=None, date_to=None):
        date_to = date_to or utc_now()
        date_from = date_from or date_to - datetime.timedelta(days=ANALYTICS_DEFAULT_DAYS)

        stats = self.repository.get_order_stats(user_id, date_from.isoformat(), date_to.isoformat())
        stats.update({'date_from': date_from.isoformat(), 'date_to': date_to.isoformat()})
        return stats


@functools.lru_cache(maxsize=None)
def get_order_service():
    return OrderService()
