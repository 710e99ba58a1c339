import json
import logging

from django.http import JsonResponse

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """
    Base class for errors that map onto an HTTP outcome.

    `public_message` is what the caller sees; the exception's own message may
    carry more detail for the logs.
    """
    status_code = 500
    code = 'INTERNAL_ERROR'
    public_message = None

    def __init__(self, message=None, details=None):
        super().__init__(message or self.public_message or self.__class__.__name__)
        self.details = details

    @property
    def message(self):
        return self.public_message or str(self)


class ValidationError(ServiceError):
    status_code = 400
    code = 'VALIDATION_ERROR'


class NotFoundError(ServiceError):
    status_code = 404
    code = 'NOT_FOUND'


class PermissionDeniedError(ServiceError):
    status_code = 403
    code = 'FORBIDDEN'


class InvalidStateError(ServiceError):
    status_code = 400
    code = 'INVALID_STATE'


class AuthenticationError(ServiceError):
    # Never echo gateway or credential details back to callers.
    status_code = 500
    code = 'PAYMENT_PROVIDER_AUTH_FAILED'
    public_message = 'Failed to authenticate with payment provider'


class IntegrationError(ServiceError):
    status_code = 502
    code = 'INTEGRATION_ERROR'


def error_response(exc: ServiceError):
    body = {'success': False, 'error': exc.message, 'code': exc.code}
    if exc.details:
        body['details'] = exc.details
    return JsonResponse(body, status=exc.status_code)


def parse_json_body(request):
    """Decodes a JSON object body or raises ValidationError."""
    try:
        data = json.loads(request.body or b'{}')
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError('Invalid JSON')
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data
