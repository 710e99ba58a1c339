"""
Reconciliation of asynchronous STK Push results sent by M-Pesa.

The network penalizes callbacks that are not acknowledged, so the handler
always answers with the fixed acknowledgement. Whether the payment succeeded
is only visible in the ledger afterwards.
"""
import functools
import logging

from shop_backend.side_effects import BestEffort

from .models import SUCCESS_RESULT_CODE, TransactionStatus
from .repositories import TransactionRepository

logger = logging.getLogger(__name__)

CALLBACK_ACKNOWLEDGEMENT = {"ResultCode": 0, "ResultDesc": "Success"}

CALLBACK_METADATA_FIELDS = {
    'Amount': 'amount',
    'MpesaReceiptNumber': 'mpesa_receipt_number',
    'TransactionDate': 'transaction_date',
    'PhoneNumber': 'phone',
}


def extract_callback_metadata(items):
    """Maps the Name/Value pairs of CallbackMetadata.Item onto ledger fields."""
    extracted = {}
    for item in items or []:
        field = CALLBACK_METADATA_FIELDS.get(item.get('Name'))
        if field and 'Value' in item:
            extracted[field] = item['Value']
    return extracted


def get_stk_callback(payload):
    if not isinstance(payload, dict):
        return None
    body = payload.get('Body')
    stk_callback = body.get('stkCallback') if isinstance(body, dict) else None
    return stk_callback if isinstance(stk_callback, dict) else None


def describe_callback(payload):
    """(checkout request id, result code) for logging; either may be None."""
    stk_callback = get_stk_callback(payload) or {}
    return stk_callback.get('CheckoutRequestID'), stk_callback.get('ResultCode')


class CallbackReconciler:

    def __init__(self, transaction_repo=None, order_service=None, best_effort=None):
        self.transaction_repo = transaction_repo or TransactionRepository()
        self._order_service = order_service
        self.best_effort = best_effort or BestEffort(logger)

    @property
    def order_service(self):
        if self._order_service is None:
            from orders.services import get_order_service
            self._order_service = get_order_service()
        return self._order_service

    def handle(self, payload):
        try:
            self.reconcile(payload)
        except Exception as e:
            logger.error(f"Callback processing error: {e}")
            logger.exception(e)
        return dict(CALLBACK_ACKNOWLEDGEMENT)

    def reconcile(self, payload):
        """
        Applies one STK callback to the ledger and the order.

        Returns the ledger status that was written, or None when nothing matched.
        """
        stk_callback = get_stk_callback(payload)
        if not stk_callback:
            logger.warning("Ignoring M-Pesa callback without stkCallback.")
            return None

        checkout_request_id = stk_callback.get('CheckoutRequestID')
        result_code = str(stk_callback.get('ResultCode'))

        transaction = self.transaction_repo.find_by_checkout_request_id(checkout_request_id)
        if transaction is None:
            logger.warning(f"No transaction found for callback {checkout_request_id}; nothing to reconcile.")
            return None

        succeeded = result_code == SUCCESS_RESULT_CODE
        status = TransactionStatus.COMPLETED if succeeded else TransactionStatus.FAILED
        updates = {
            'status': status.value,
            'result_code': result_code,
            'result_description': stk_callback.get('ResultDesc'),
            'callback_data': payload,
        }
        if succeeded:
            items = (stk_callback.get('CallbackMetadata') or {}).get('Item')
            updates.update(extract_callback_metadata(items))

        # Concurrent callbacks for one checkout id are last-write-wins.
        self.transaction_repo.update_transaction(checkout_request_id, updates)
        logger.info(f"Callback processed: {checkout_request_id} - Result: {result_code}")

        self._sync_order(transaction, updates, succeeded)
        return status.value

    def _sync_order(self, transaction, updates, succeeded):
        order_id = transaction.get('order_id')
        if not order_id:
            return

        if succeeded:
            self.best_effort.run(
                f"Marking order {order_id} as paid",
                self.order_service.process_payment, order_id, {
                    'transaction_id': transaction['id'],
                    'amount': updates.get('amount', transaction.get('amount')),
                    'method': 'mpesa',
                    'receipt': updates.get('mpesa_receipt_number'),
                },
            )
        else:
            self.best_effort.run(
                f"Marking payment failed for order {order_id}",
                self.order_service.mark_payment_failed, order_id, updates.get('result_description') or 'Payment failed',
            )


@functools.lru_cache(maxsize=None)
def get_callback_reconciler():
    return CallbackReconciler()
