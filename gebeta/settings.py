"""
Django settings for the gebeta delivery backend.

Every value is read from the environment with a default suitable for local
development. Money rates are parsed into Decimal so fee maths never touches
floats.
"""
import os
from decimal import Decimal
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_decimal(name, default):
    return Decimal(os.environ.get(name, default).strip() or default)


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-only-insecure-key')
DEBUG = _env_bool('DJANGO_DEBUG', True)
ALLOWED_HOSTS = [h.strip() for h in os.environ.get('DJANGO_ALLOWED_HOSTS', '*').split(',') if h.strip()]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'rest_framework.authtoken',
    'channels',
    'core.apps.CoreConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'gebeta.middleware.CsrfExemptApiMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
]

ROOT_URLCONF = 'gebeta.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

ASGI_APPLICATION = 'gebeta.asgi.application'

DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DB_NAME', str(BASE_DIR / 'db.sqlite3')),
        'USER': os.environ.get('DB_USER', ''),
        'PASSWORD': os.environ.get('DB_PASSWORD', ''),
        'HOST': os.environ.get('DB_HOST', ''),
        'PORT': os.environ.get('DB_PORT', ''),
    }
}

if DATABASES['default']['ENGINE'] == 'django.db.backends.sqlite3':
    # Writers take the database lock at BEGIN and wait up to `timeout` seconds for it.
    DATABASES['default']['OPTIONS'] = {
        'transaction_mode': 'IMMEDIATE',
        'timeout': float(os.environ.get('DB_LOCK_TIMEOUT', '20')),
    }
    # File-backed so test threads share the same locking as production.
    DATABASES['default']['TEST'] = {'NAME': str(BASE_DIR / 'test_db.sqlite3')}

AUTH_USER_MODEL = 'core.User'
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.environ.get('TIME_ZONE', 'Africa/Addis_Ababa')
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# The presence registry lives in process memory, so the channel layer does too.
CHANNEL_LAYERS = {
    'default': {
        'BACKEND': 'channels.layers.InMemoryChannelLayer',
    },
}

# --- Money ---

DEFAULT_CURRENCY = os.environ.get('DEFAULT_CURRENCY', 'ETB')
GOV_VAT = _env_decimal('GOV_VAT', '0')
DELIVERY_DEPOSIT_FEE = _env_decimal('DELIVERY_DEPOSIT_FEE', '0.1')
RESTAURANT_DEPOSIT_FEE = _env_decimal('RESTAURANT_DEPOSIT_FEE', '0.08')
DINEIN_SERVICE_FEE = _env_decimal('DINEIN_SERVICE_FEE', '0')
TAKEAWAY_SERVICE_FEE = _env_decimal('TAKEAWAY_SERVICE_FEE', '0')

DELIVERY_RATES = {
    'car': {
        'base': _env_decimal('CAR_BASE_FARE', '150'),
        'per_km': _env_decimal('CAR_PER_KM', '13'),
    },
    'motorcycle': {
        'base': _env_decimal('MOTOR_BASE_FARE', '100'),
        'per_km': _env_decimal('MOTOR_PER_KM', '10'),
    },
    'bicycle': {
        'base': _env_decimal('BICYCLE_BASE_FARE', '50'),
        'per_km': _env_decimal('BICYCLE_PER_KM', '10'),
    },
}

# --- External providers ---

SERVER_URL = os.environ.get('SERVER_URL', 'http://localhost:8000').rstrip('/')
PROVIDER_TIMEOUT_SECONDS = float(os.environ.get('PROVIDER_TIMEOUT_SECONDS', '10'))
PROVIDER_READ_RETRIES = int(os.environ.get('PROVIDER_READ_RETRIES', '2'))

CHAPA_BASE_URL = os.environ.get('CHAPA_BASE_URL', 'https://api.chapa.co/v1').rstrip('/')
CHAPA_SECRET_KEY = os.environ.get('CHAPA_SECRET_KEY', '')
CHAPA_WEBHOOK_SECRET = os.environ.get('CHAPA_WEBHOOK_SECRET', '')
CHAPA_CHECKOUT_TITLE = os.environ.get('CHAPA_CHECKOUT_TITLE', 'Gebeta Pay')

AFROMESSAGE_BASE_URL = os.environ.get('AFROMESSAGE_BASE_URL', 'https://api.afromessage.com/api').rstrip('/')
AFROMESSAGE_API_TOKEN = os.environ.get('AFROMESSAGE_API_TOKEN', '')
AFROMESSAGE_SENDER_NAME = os.environ.get('AFROMESSAGE_SENDER_NAME', '')
AFROMESSAGE_IDENTIFIER_ID = os.environ.get('AFROMESSAGE_IDENTIFIER_ID', '')

ROUTING_PROVIDER = os.environ.get('ROUTING_PROVIDER', 'osrm')
OSRM_BASE_URL = os.environ.get('OSRM_BASE_URL', 'https://router.project-osrm.org').rstrip('/')

# --- Logging ---

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': os.environ.get('DJANGO_LOG_LEVEL', 'WARNING').upper(),
            'propagate': False,
        },
    },
}
