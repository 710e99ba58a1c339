import base64
import datetime
import functools
import logging
import math
import re

import requests
from django.conf import settings

from shop_backend.exceptions import AuthenticationError, IntegrationError, ServiceError, ValidationError

from .config import get_mpesa_config
from .models import PRODUCTION_MINIMUM_AMOUNT, SUCCESS_RESULT_CODE, TransactionStatus
from .repositories import TransactionRepository

logger = logging.getLogger(__name__)

COUNTRY_CODE = '254'


# --- Daraja helpers ---

def normalize_phone_number(phone) -> str:
    """
    Rewrites a Kenyan mobile number into the 12-digit 2547XXXXXXXX form.

    Accepts 07XXXXXXXX, 7XXXXXXXX or 2547XXXXXXXX (separators are ignored).
    """
    cleaned = re.sub(r'\D', '', str(phone or ''))

    if cleaned.startswith('0') and len(cleaned) == 10:
        return COUNTRY_CODE + cleaned[1:]
    if cleaned.startswith('7') and len(cleaned) == 9:
        return COUNTRY_CODE + cleaned
    if cleaned.startswith(COUNTRY_CODE) and len(cleaned) == 12:
        return cleaned

    raise ValidationError('Invalid phone number format. Use: 2547XXXXXXXX')


def mask_phone(phone) -> str:
    phone = str(phone or '')
    return phone[:6] + '****'


def generate_timestamp(now=None) -> str:
    """YYYYMMDDHHmmss in server local time."""
    now = now or datetime.datetime.now()
    return now.strftime('%Y%m%d%H%M%S')


def generate_password(short_code, pass_key, timestamp) -> str:
    return base64.b64encode(f"{short_code}{pass_key}{timestamp}".encode()).decode()


def _gateway_error_message(error):
    """Prefers Daraja's `errorMessage` body field over the transport error text."""
    response = getattr(error, 'response', None)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get('errorMessage'):
            return body['errorMessage']
    return str(error)


# --- M-Pesa Service ---

class MpesaService:
    """
    Client for the Safaricom Daraja API (STK Push, STK query, B2B).

    Every push attempt is written to the transaction ledger, including the
    ones that fail, so there is an audit trail for each prompt sent.
    """

    def __init__(self, config=None, transaction_repo=None, timeout=None):
        self.config = config or get_mpesa_config()
        self.base_url = self.config.api_base_url
        self.transaction_repo = transaction_repo or TransactionRepository()
        self.timeout = timeout or settings.MPESA_HTTP_TIMEOUT

        logger.info(f"M-Pesa service initialized in {self.config.environment} mode")

    def _bearer_headers(self, access_token):
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    # --- Authentication ---

    def get_access_token(self):
        """
        Get an OAuth access token from Daraja using the consumer key and secret.
        """
        auth = base64.b64encode(f"{self.config.consumer_key}:{self.config.consumer_secret}".encode()).decode()
        headers = {
            "Authorization": f"Basic {auth}",
            "Accept": "application/json",
            "Cache-Control": "no-cache",
        }
        try:
            response = requests.get(
                f"{self.base_url}/oauth/v1/generate",
                params={"grant_type": "client_credentials"},
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            access_token = response.json().get("access_token")
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"M-Pesa authentication error ({self.config.environment}): {_gateway_error_message(e)}")
            raise AuthenticationError(f"Failed to authenticate with M-Pesa: {e}") from e

        if not access_token:
            logger.error(f"M-Pesa authentication returned no access token ({self.config.environment}).")
            raise AuthenticationError("No access token received")

        return access_token

    # --- Validation ---

    def validate_amount(self, amount) -> int:
        if isinstance(amount, bool):
            raise ValidationError("Amount must be greater than 0")
        try:
            value = float(amount)
        except (TypeError, ValueError):
            raise ValidationError("Amount must be greater than 0")

        if not math.isfinite(value) or value <= 0:
            raise ValidationError("Amount must be greater than 0")
        if self.config.is_production and value < PRODUCTION_MINIMUM_AMOUNT:
            raise ValidationError(f"Minimum amount for production is KES {PRODUCTION_MINIMUM_AMOUNT}")

        whole = math.floor(value)
        if whole < 1:
            raise ValidationError("Amount must be greater than 0")
        return whole

    # --- STK Push ---

    def initiate_stk_push(self, phone, amount, order_id, description=None, account_reference=None):
        """
        Sends an STK Push prompt to the payer's phone.

        An invalid phone number is rejected before anything is recorded. Any
        later failure (amount, authentication, gateway) is recorded as a
        failed ledger row and then raised.
        """
        formatted_phone = normalize_phone_number(phone)

        try:
            valid_amount = self.validate_amount(amount)
            access_token = self.get_access_token()

            timestamp = generate_timestamp()
            payload = {
                "BusinessShortCode": self.config.short_code,
                "Password": generate_password(self.config.short_code, self.config.pass_key, timestamp),
                "Timestamp": timestamp,
                "TransactionType": "CustomerPayBillOnline",
                "Amount": valid_amount,
                "PartyA": formatted_phone,
                "PartyB": self.config.short_code,
                "PhoneNumber": formatted_phone,
                "CallBackURL": f"{self.config.callback_url}/api/payments/mpesa/callback/",
                "AccountReference": account_reference or str(order_id)[:12],
                "TransactionDesc": description or f"Payment for order {order_id}",
            }

            logger.info(
                f"Initiating STK Push for order {order_id}: amount={valid_amount}, "
                f"phone={mask_phone(formatted_phone)}, environment={self.config.environment}"
            )

            response = requests.post(
                f"{self.base_url}/mpesa/stkpush/v1/processrequest",
                headers=self._bearer_headers(access_token),
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (ServiceError, requests.exceptions.RequestException, ValueError) as e:
            error_message = e.message if isinstance(e, ServiceError) else _gateway_error_message(e)
            logger.error(f"STK Push failed for order {order_id}: {error_message}")

            self.transaction_repo.create_transaction({
                "order_id": order_id,
                "phone": formatted_phone,
                "amount": amount,
                "status": TransactionStatus.FAILED.value,
                "error_message": error_message,
                "environment": self.config.environment,
            })

            if isinstance(e, ServiceError):
                raise
            raise IntegrationError(f"STK Push failed: {error_message}") from e

        result = {
            "merchant_request_id": data.get("MerchantRequestID"),
            "checkout_request_id": data.get("CheckoutRequestID"),
            "response_code": data.get("ResponseCode"),
            "response_description": data.get("ResponseDescription"),
            "customer_message": data.get("CustomerMessage"),
        }

        self.transaction_repo.create_transaction({
            "order_id": order_id,
            "merchant_request_id": result["merchant_request_id"],
            "checkout_request_id": result["checkout_request_id"],
            "phone": formatted_phone,
            "amount": valid_amount,
            "status": TransactionStatus.INITIATED.value,
            "response_code": result["response_code"],
            "response_description": result["response_description"],
            "customer_message": result["customer_message"],
            "environment": self.config.environment,
        })

        logger.info(f"STK Push initiated: {result['checkout_request_id']}")
        return result

    # --- Transaction Query ---

    def query_transaction(self, checkout_request_id):
        """
        Asks Daraja for the outcome of a push request and records it in the ledger.
        """
        access_token = self.get_access_token()
        timestamp = generate_timestamp()

        try:
            response = requests.post(
                f"{self.base_url}/mpesa/stkpushquery/v1/query",
                headers=self._bearer_headers(access_token),
                json={
                    "BusinessShortCode": self.config.short_code,
                    "Password": generate_password(self.config.short_code, self.config.pass_key, timestamp),
                    "Timestamp": timestamp,
                    "CheckoutRequestID": checkout_request_id,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            error_message = _gateway_error_message(e)
            logger.error(f"Transaction query failed for {checkout_request_id}: {error_message}")
            raise IntegrationError(f"Transaction query failed: {error_message}") from e

        result_code = str(data.get("ResultCode"))
        result = {
            "result_code": result_code,
            "result_desc": data.get("ResultDesc"),
            "merchant_request_id": data.get("MerchantRequestID"),
            "checkout_request_id": data.get("CheckoutRequestID") or checkout_request_id,
        }

        status = TransactionStatus.COMPLETED if result_code == SUCCESS_RESULT_CODE else TransactionStatus.FAILED
        self.transaction_repo.update_transaction(checkout_request_id, {
            "status": status.value,
            "result_code": result_code,
            "result_description": result["result_desc"],
            "query_response": data,
        })

        logger.info(f"Transaction {checkout_request_id} queried: result {result_code} -> {status.value}")
        return result

    # --- Business to Business ---

    def generate_security_credential(self):
        if self.config.is_production:
            # TODO: encrypt the initiator password with Safaricom's public certificate before enabling B2B in production.
            logger.warning("Security credential encryption is not implemented for production.")
        return self.config.initiator_password

    def b2b_payment(self, receiver_short_code, amount, account_reference, remarks):
        access_token = self.get_access_token()
        payload = {
            "Initiator": self.config.initiator_name,
            "SecurityCredential": self.generate_security_credential(),
            "CommandID": "BusinessPayBill",
            "SenderIdentifierType": "4",
            "RecieverIdentifierType": "4",
            "Amount": self.validate_amount(amount),
            "PartyA": self.config.short_code,
            "PartyB": receiver_short_code,
            "AccountReference": account_reference,
            "Requester": self.config.initiator_name,
            "Remarks": remarks,
        }

        logger.info(f"Sending B2B payment of {payload['Amount']} to {receiver_short_code}")
        try:
            response = requests.post(
                f"{self.base_url}/mpesa/b2b/v1/paymentrequest",
                headers=self._bearer_headers(access_token),
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            error_message = _gateway_error_message(e)
            logger.error(f"B2B payment to {receiver_short_code} failed: {error_message}")
            raise IntegrationError(f"B2B payment failed: {error_message}") from e

    # --- Health Check ---

    def health_check(self) -> bool:
        try:
            return bool(self.get_access_token())
        except AuthenticationError as e:
            logger.error(f"M-Pesa health check failed: {e}")
            return False


@functools.lru_cache(maxsize=None)
def get_mpesa_service():
    return MpesaService()
