import functools
import logging

from django.http import JsonResponse
from firebase_admin import auth as firebase_auth

from .firebase_config import get_firebase_app

logger = logging.getLogger(__name__)


class FirebaseUser(dict):
    """Decoded Firebase ID token claims with convenience accessors."""

    @property
    def uid(self):
        return self.get('uid') or self.get('user_id')

    @property
    def is_admin(self):
        return bool(self.get('admin') or self.get('isAdmin'))


def verify_firebase_token(id_token):
    return firebase_auth.verify_id_token(id_token, app=get_firebase_app())


def firebase_auth_required(view_func):
    """
    Rejects requests without a valid `Authorization: Bearer <Firebase ID token>` header.

    The decoded claims are attached to the request as `request.firebase_user`.
    """
    @functools.wraps(view_func)
    def wrapper(request, *args, **kwargs):
        auth_header = request.headers.get('Authorization', '')
        if not auth_header.startswith('Bearer '):
            return JsonResponse({'error': 'No token provided'}, status=401)

        id_token = auth_header.split('Bearer ', 1)[1].strip()
        try:
            claims = verify_firebase_token(id_token)
        except firebase_auth.ExpiredIdTokenError as e:
            logger.warning(f"Token verification failed: {e}")
            return JsonResponse({'error': 'Token expired', 'code': 'auth/id-token-expired'}, status=401)
        except firebase_auth.RevokedIdTokenError as e:
            logger.warning(f"Token verification failed: {e}")
            return JsonResponse({'error': 'Token revoked', 'code': 'auth/id-token-revoked'}, status=401)
        except Exception as e:
            logger.warning(f"Token verification failed: {e}")
            return JsonResponse({'error': 'Invalid token', 'code': 'auth/invalid-id-token'}, status=401)

        request.firebase_user = FirebaseUser(claims)
        return view_func(request, *args, **kwargs)

    return wrapper


def admin_required(view_func):
    """Must be applied inside `firebase_auth_required`."""
    @functools.wraps(view_func)
    def wrapper(request, *args, **kwargs):
        user = getattr(request, 'firebase_user', None)
        if user is None or not user.is_admin:
            return JsonResponse({'success': False, 'error': 'Admin access required'}, status=403)
        return view_func(request, *args, **kwargs)

    return wrapper
