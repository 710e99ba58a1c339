from dataclasses import dataclass

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .models import MpesaEnvironment

API_BASE_URLS = {
    MpesaEnvironment.SANDBOX: 'https://sandbox.safaricom.co.ke',
    MpesaEnvironment.PRODUCTION: 'https://api.safaricom.co.ke',
}

REQUIRED_FIELDS = (
    'consumer_key',
    'consumer_secret',
    'short_code',
    'pass_key',
    'initiator_name',
    'initiator_password',
    'callback_url',
)


@dataclass(frozen=True)
class MpesaConfig:
    environment: str
    consumer_key: str
    consumer_secret: str
    short_code: str
    pass_key: str
    initiator_name: str
    initiator_password: str
    callback_url: str

    @property
    def is_production(self):
        return self.environment == MpesaEnvironment.PRODUCTION

    @property
    def api_base_url(self):
        return get_mpesa_api_base_url(self.environment)


def _setting(name):
    return (getattr(settings, name, '') or '').strip()


def get_mpesa_config() -> MpesaConfig:
    """
    Builds the M-Pesa configuration from Django settings and validates it.

    Raises ImproperlyConfigured when the environment is not sandbox/production
    or any credential is missing.
    """
    environment = _setting('MPESA_ENVIRONMENT')
    if environment not in MpesaEnvironment.values:
        raise ImproperlyConfigured('MPESA_ENVIRONMENT must be either "sandbox" or "production"')

    config = MpesaConfig(
        environment=environment,
        consumer_key=_setting('MPESA_CONSUMER_KEY'),
        consumer_secret=_setting('MPESA_CONSUMER_SECRET'),
        short_code=_setting('MPESA_SHORTCODE'),
        pass_key=_setting('MPESA_PASSKEY'),
        initiator_name=_setting('MPESA_INITIATOR_NAME'),
        initiator_password=_setting('MPESA_INITIATOR_PASSWORD'),
        callback_url=_setting('PAYMENT_CALLBACK_URL').rstrip('/'),
    )
    validate_mpesa_config(config)
    return config


def validate_mpesa_config(config: MpesaConfig):
    missing = [field for field in REQUIRED_FIELDS if not getattr(config, field)]
    if missing:
        raise ImproperlyConfigured(f"Missing M-Pesa config: {', '.join(missing)}")


def get_mpesa_api_base_url(environment):
    return API_BASE_URLS[MpesaEnvironment(environment)]
