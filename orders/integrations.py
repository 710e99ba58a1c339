import logging

import requests
from django.conf import settings

from shop_backend.exceptions import IntegrationError, ValidationError
from shop_backend.side_effects import dispatch

logger = logging.getLogger(__name__)


class _DownstreamService:
    """Shared POST helper for the internal services the order flow talks to."""
    service_name = 'downstream'

    def __init__(self, base_url, timeout=None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout or settings.DOWNSTREAM_HTTP_TIMEOUT

    def _post(self, path, payload):
        url = f"{self.base_url}{path}"
        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            logger.error(f"{self.service_name} error on {path}: {e.response.status_code} - {e.response.text}")
            raise IntegrationError(f"{self.service_name} returned {e.response.status_code} for {path}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"{self.service_name} unreachable on {path}: {e}")
            raise IntegrationError(f"{self.service_name} unreachable") from e
        return response


# --- Inventory Service ---

class InventoryGateway(_DownstreamService):
    service_name = 'Inventory service'

    def validate(self, items):
        """
        Asks the inventory service whether every line item can be fulfilled.

        Raises ValidationError when it says no and IntegrationError when it cannot be reached.
        """
        try:
            response = self._post('/api/inventory/validate', {'items': items})
            data = response.json()
        except ValueError as e:
            raise IntegrationError('Failed to validate inventory') from e
        except IntegrationError as e:
            raise IntegrationError('Failed to validate inventory') from e

        if not data.get('valid'):
            raise ValidationError(f"Inventory validation failed: {data.get('message')}")

    def reserve(self, order_id, items):
        self._post('/api/inventory/reserve', {'order_id': order_id, 'items': items})

    def confirm(self, order_id, items):
        self._post('/api/inventory/confirm', {'order_id': order_id, 'items': items})

    def release(self, order_id, items):
        self._post('/api/inventory/release', {'order_id': order_id, 'items': items})


# --- Notification Service ---

class NotificationGateway(_DownstreamService):
    service_name = 'Notification service'

    def send_email(self, to, template, data):
        self._post('/api/notifications/email', {'to': to, 'template': template, 'data': data})
        logger.info(f"Email '{template}' queued for {to}")


# --- Refund Service ---

class RefundGateway(_DownstreamService):
    service_name = 'Payment service'

    def request_refund(self, order):
        self._post('/api/payments/refund', {
            'order_id': order['id'],
            'transaction_id': order.get('payment_transaction_id'),
            'amount': order.get('total'),
            'reason': order.get('cancellation_reason'),
        })
        logger.info(f"Refund requested for order {order['id']}")


# --- Domain events ---

class OrderEventPublisher:
    """
    Emits order domain events without blocking the request.

    The message bus is an external collaborator; events are handed to the
    background dispatcher and recorded in the log stream.
    """

    def __init__(self, dispatcher=dispatch):
        self.dispatcher = dispatcher

    def publish(self, event_type, payload):
        self.dispatcher(self._emit, event_type, payload, description=f"publish {event_type}")

    def _emit(self, event_type, payload):
        logger.info(f"Order event {event_type}: {payload}")
