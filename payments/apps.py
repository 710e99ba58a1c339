import logging

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class PaymentsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'payments'

    def ready(self):
        if not settings.VALIDATE_CONFIG_ON_STARTUP:
            return
        from .config import get_mpesa_config

        config = get_mpesa_config()
        logger.info(f"M-Pesa configuration loaded for {config.environment}.")
