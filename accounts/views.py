import datetime
import logging

from django.http import JsonResponse
from django.views.decorators.http import require_http_methods

from shop_backend.auth import firebase_auth_required

logger = logging.getLogger(__name__)


@require_http_methods(['GET'])
@firebase_auth_required
def me(request):
    """Profile of the caller, taken from their verified Firebase ID token."""
    user = request.firebase_user
    auth_time = user.get('auth_time')
    return JsonResponse({
        'uid': user.uid,
        'email': user.get('email') or 'no-email',
        'name': user.get('name') or 'anonymous',
        'is_admin': user.is_admin,
        'auth_time': (
            datetime.datetime.fromtimestamp(auth_time, tz=datetime.timezone.utc).isoformat()
            if auth_time else None
        ),
    })
