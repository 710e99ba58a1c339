import logging

from firebase_admin import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from shop_backend.exceptions import NotFoundError
from shop_backend.firebase_config import get_db
from shop_backend.utils import now_iso

logger = logging.getLogger(__name__)

TRANSACTIONS_COLLECTION = 'mpesa_transactions'


class TransactionRepository:
    """
    Ledger of M-Pesa payment attempts.

    Rows are never deleted. Updates are keyed by the gateway's
    checkout-request id, not by the internal document id.
    """

    def __init__(self, db=None):
        self.db = db or get_db()
        self.collection = self.db.collection(TRANSACTIONS_COLLECTION)

    def create_transaction(self, data: dict) -> str:
        doc_ref = self.collection.document()
        timestamp = now_iso()
        doc_ref.set({
            **data,
            'id': doc_ref.id,
            'created_at': timestamp,
            'updated_at': timestamp,
        })
        logger.info(f"Recorded {data.get('status')} transaction {doc_ref.id} for order {data.get('order_id')}.")
        return doc_ref.id

    def _find_doc(self, checkout_request_id):
        if not checkout_request_id:
            return None
        query = self.collection.where(
            filter=FieldFilter('checkout_request_id', '==', checkout_request_id)
        ).limit(1)
        for doc in query.stream():
            return doc
        return None

    def find_by_checkout_request_id(self, checkout_request_id):
        doc = self._find_doc(checkout_request_id)
        if doc is None:
            return None
        return {**doc.to_dict(), 'id': doc.id}

    def update_transaction(self, checkout_request_id, updates: dict):
        doc = self._find_doc(checkout_request_id)
        if doc is None:
            raise NotFoundError(f"Transaction not found: {checkout_request_id}")

        doc.reference.update({**updates, 'updated_at': now_iso()})
        logger.info(f"Updated transaction {doc.id} ({checkout_request_id}): {sorted(updates)}")

    def find_by_order_id(self, order_id):
        query = (
            self.collection
            .where(filter=FieldFilter('order_id', '==', order_id))
            .order_by('created_at', direction=firestore.Query.DESCENDING)
        )
        return [{**doc.to_dict(), 'id': doc.id} for doc in query.stream()]
