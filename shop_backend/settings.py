import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'insecure-dev-key-change-me')
DEBUG = env_bool('DJANGO_DEBUG', False)
ALLOWED_HOSTS = [h.strip() for h in os.getenv('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if h.strip()]

INSTALLED_APPS = [
    'accounts',
    'orders',
    'payments',
    'products',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'shop_backend.urls'
WSGI_APPLICATION = 'shop_backend.wsgi.application'

# All persistence goes through Firestore.
DATABASES = {}

DATA_UPLOAD_MAX_MEMORY_SIZE = 1048576

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_TZ = True

# --- Firebase ---
FIREBASE_CREDENTIALS_PATH = os.getenv('FIREBASE_CREDENTIALS_PATH') or os.getenv('GOOGLE_APPLICATION_CREDENTIALS')
FIREBASE_PROJECT_ID = os.getenv('FIREBASE_PROJECT_ID')

# --- M-Pesa (Daraja) ---
MPESA_ENVIRONMENT = os.getenv('MPESA_ENVIRONMENT', '')
MPESA_CONSUMER_KEY = os.getenv('MPESA_CONSUMER_KEY', '')
MPESA_CONSUMER_SECRET = os.getenv('MPESA_CONSUMER_SECRET', '')
MPESA_SHORTCODE = os.getenv('MPESA_SHORTCODE', '')
MPESA_PASSKEY = os.getenv('MPESA_PASSKEY', '')
MPESA_INITIATOR_NAME = os.getenv('MPESA_INITIATOR_NAME', '')
MPESA_INITIATOR_PASSWORD = os.getenv('MPESA_INITIATOR_PASSWORD', '')
PAYMENT_CALLBACK_URL = os.getenv('PAYMENT_CALLBACK_URL', '')
MPESA_HTTP_TIMEOUT = float(os.getenv('MPESA_HTTP_TIMEOUT', '30'))

# Fail fast on missing M-Pesa settings when the app registry loads.
VALIDATE_CONFIG_ON_STARTUP = env_bool('VALIDATE_CONFIG_ON_STARTUP', True)

# --- Downstream services ---
INVENTORY_SERVICE_URL = os.getenv('INVENTORY_SERVICE_URL', 'http://localhost:3004')
NOTIFICATION_SERVICE_URL = os.getenv('NOTIFICATION_SERVICE_URL', 'http://localhost:3005')
PAYMENT_SERVICE_URL = os.getenv('PAYMENT_SERVICE_URL', 'http://localhost:3003')
DOWNSTREAM_HTTP_TIMEOUT = float(os.getenv('DOWNSTREAM_HTTP_TIMEOUT', '10'))

# --- Background side effects ---
BACKGROUND_WORKERS = int(os.getenv('BACKGROUND_WORKERS', '4'))
BACKGROUND_TASKS_INLINE = env_bool('BACKGROUND_TASKS_INLINE', False)

# --- Logging ---
LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG' if DEBUG else 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'standard': {
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'standard',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'urllib3': {'level': 'WARNING'},
        'google': {'level': 'WARNING'},
    },
}
