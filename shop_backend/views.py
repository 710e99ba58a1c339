from django.conf import settings
from django.http import JsonResponse

from .utils import now_iso


def health(request):
    return JsonResponse({
        'status': 'healthy',
        'service': 'shop-backend',
        'mpesa_environment': settings.MPESA_ENVIRONMENT,
        'timestamp': now_iso(),
    })
