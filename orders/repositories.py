import logging
import random
import time

from firebase_admin import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from shop_backend.exceptions import NotFoundError
from shop_backend.firebase_config import get_db
from shop_backend.utils import now_iso

from .models import DEFAULT_CURRENCY, OrderStatus, PaymentStatus, ShippingStatus

logger = logging.getLogger(__name__)

ORDERS_COLLECTION = 'orders'
USER_ORDERS_COLLECTION = 'user_orders'


def generate_order_number():
    """ORD- followed by the last 6 digits of the millisecond clock and 4 random digits."""
    timestamp = str(int(time.time() * 1000))[-6:]
    suffix = str(random.randint(0, 9999)).zfill(4)
    return f"ORD-{timestamp}{suffix}"


class OrderRepository:
    """
    Firestore persistence for orders and the per-user order index.

    The index lives in `user_orders/{user_id}_{order_id}` so "orders for user X"
    never scans the main collection.
    """

    def __init__(self, db=None):
        self.db = db or get_db()
        self.collection = self.db.collection(ORDERS_COLLECTION)
        self.user_orders = self.db.collection(USER_ORDERS_COLLECTION)

    def _index_ref(self, user_id, order_id):
        return self.user_orders.document(f"{user_id}_{order_id}")

    # --- Create ---

    def create(self, order_data: dict) -> dict:
        order_ref = self.collection.document()
        timestamp = now_iso()

        order = {
            'order_number': generate_order_number(),
            'status': OrderStatus.PENDING.value,
            'payment_status': PaymentStatus.PENDING.value,
            'shipping_status': ShippingStatus.PENDING.value,
            'currency': DEFAULT_CURRENCY,
            'metadata': {},
            'status_history': {},
            'is_deleted': False,
            **order_data,
            'id': order_ref.id,
            'created_at': timestamp,
            'updated_at': timestamp,
        }

        index_entry = {
            'user_id': order['user_id'],
            'order_id': order['id'],
            'order_number': order['order_number'],
            'status': order['status'],
            'payment_status': order['payment_status'],
            'total': order.get('total'),
            'currency': order['currency'],
            'item_count': len(order.get('items', [])),
            'created_at': timestamp,
            'updated_at': timestamp,
        }

        # Order and index entry land together or not at all.
        batch = self.db.batch()
        batch.set(order_ref, order)
        batch.set(self._index_ref(order['user_id'], order['id']), index_entry)
        batch.commit()

        logger.info(f"Created order {order['id']} ({order['order_number']}) for user {order['user_id']}.")
        return order

    # --- Read ---

    def find_by_id(self, order_id):
        doc = self.collection.document(order_id).get()
        return doc.to_dict() if doc.exists else None

    def find_by_order_number(self, order_number):
        query = self.collection.where(filter=FieldFilter('order_number', '==', order_number)).limit(1)
        for doc in query.stream():
            return doc.to_dict()
        return None

    def find_by_user(self, user_id, limit=20, start_after=None):
        """
        Returns order summaries from the per-user index, newest first.

        `start_after` is the id of the last order on the previous page.
        """
        query = (
            self.user_orders
            .where(filter=FieldFilter('user_id', '==', user_id))
            .order_by('created_at', direction=firestore.Query.DESCENDING)
        )

        if start_after:
            cursor_doc = self._index_ref(user_id, start_after).get()
            if cursor_doc.exists:
                query = query.start_after(cursor_doc)
            else:
                logger.warning(f"Pagination cursor {start_after} not found for user {user_id}; starting from the top.")

        summaries = []
        for doc in query.limit(limit).stream():
            entry = doc.to_dict()
            summaries.append({
                'id': entry.get('order_id'),
                'order_number': entry.get('order_number'),
                'status': entry.get('status'),
                'payment_status': entry.get('payment_status'),
                'total': entry.get('total'),
                'currency': entry.get('currency', DEFAULT_CURRENCY),
                'item_count': entry.get('item_count', 0),
                'created_at': entry.get('created_at'),
            })
        return summaries

    def find_all(self, filters=None, limit=100):
        filters = filters or {}
        query = self.collection

        for field in ('user_id', 'status', 'payment_status'):
            if filters.get(field):
                query = query.where(filter=FieldFilter(field, '==', filters[field]))
        if filters.get('date_from'):
            query = query.where(filter=FieldFilter('created_at', '>=', filters['date_from']))
        if filters.get('date_to'):
            query = query.where(filter=FieldFilter('created_at', '<=', filters['date_to']))

        query = query.order_by('created_at', direction=firestore.Query.DESCENDING).limit(limit)
        return [doc.to_dict() for doc in query.stream()]

    # --- Update ---

    def _require(self, order_id):
        order = self.find_by_id(order_id)
        if order is None:
            raise NotFoundError(f"Order not found: {order_id}")
        return order

    def update(self, order_id, data: dict):
        self._require(order_id)
        self.collection.document(order_id).update({**data, 'updated_at': now_iso()})

    def update_status(self, order_id, status, reason=None, extra=None):
        """
        Sets the order status, records a history entry keyed by status name and
        keeps the per-user index in step.
        """
        order = self._require(order_id)
        timestamp = now_iso()

        self.collection.document(order_id).update({
            **(extra or {}),
            'status': status,
            f"status_history.{status}": {'timestamp': timestamp, 'reason': reason},
            'updated_at': timestamp,
        })
        self._update_index(order, {'status': status})

    def update_payment_status(self, order_id, payment_status, payment_data=None):
        order = self._require(order_id)
        self.collection.document(order_id).update({
            **(payment_data or {}),
            'payment_status': payment_status,
            'updated_at': now_iso(),
        })
        self._update_index(order, {'payment_status': payment_status})

    def update_shipping_status(self, order_id, shipping_status, tracking_info=None):
        self._require(order_id)
        self.collection.document(order_id).update({
            **(tracking_info or {}),
            'shipping_status': shipping_status,
            'updated_at': now_iso(),
        })

    def _update_index(self, order, changes):
        index_ref = self._index_ref(order['user_id'], order['id'])
        if not index_ref.get().exists:
            logger.warning(f"User order index missing for order {order['id']}; skipping index update.")
            return
        index_ref.update({**changes, 'updated_at': now_iso()})

    # --- Soft delete ---

    def soft_delete(self, order_id):
        order = self._require(order_id)
        timestamp = now_iso()
        self.collection.document(order_id).update({
            'is_deleted': True,
            'deleted_at': timestamp,
            'status': OrderStatus.CANCELLED.value,
            'updated_at': timestamp,
        })
        self._update_index(order, {'status': OrderStatus.CANCELLED.value})

    # --- Analytics ---

    def get_order_stats(self, user_id=None, date_from=None, date_to=None):
        query = self.collection
        if user_id:
            query = query.where(filter=FieldFilter('user_id', '==', user_id))
        if date_from:
            query = query.where(filter=FieldFilter('created_at', '>=', date_from))
        if date_to:
            query = query.where(filter=FieldFilter('created_at', '<=', date_to))

        orders = [doc.to_dict() for doc in query.stream()]
        total_revenue = sum(order.get('total') or 0 for order in orders)

        status_breakdown = {}
        payment_status_breakdown = {}
        for order in orders:
            status_breakdown[order.get('status')] = status_breakdown.get(order.get('status'), 0) + 1
            payment_status_breakdown[order.get('payment_status')] = (
                payment_status_breakdown.get(order.get('payment_status'), 0) + 1
            )

        return {
            'total_orders': len(orders),
            'total_revenue': total_revenue,
            'average_order_value': total_revenue / len(orders) if orders else 0,
            'status_breakdown': status_breakdown,
            'payment_status_breakdown': payment_status_breakdown,
        }
