"""
Django settings for the CopyDrive billing backend.

Values are read from the environment (optionally via a ``.env`` file next to
this package) so the same module serves local development, CI and production.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

env_path = BASE_DIR / ".env"
load_dotenv(env_path)


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-copydrive-local-development-key")

DEBUG = _env_bool("DJANGO_DEBUG", False)

ALLOWED_HOSTS = [host.strip() for host in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if host.strip()]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'rest_framework.authtoken',
    'django_filters',
    'accounts',
    'workspace',
    'billing',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'backend.urls'

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

ASGI_APPLICATION = 'backend.asgi.application'

# Database: PostgreSQL in deployed environments, SQLite for local runs and tests.
if os.getenv("POSTGRES_DB"):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.getenv("POSTGRES_DB"),
            'USER': os.getenv("POSTGRES_USER", "postgres"),
            'PASSWORD': os.getenv("POSTGRES_PASSWORD", ""),
            'HOST': os.getenv("POSTGRES_HOST", "localhost"),
            'PORT': os.getenv("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': os.getenv("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
        }
    }

AUTH_USER_MODEL = 'accounts.User'

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
]

LANGUAGE_CODE = 'pt-br'
TIME_ZONE = 'America/Sao_Paulo'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework.authentication.TokenAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_FILTER_BACKENDS': [
        'django_filters.rest_framework.DjangoFilterBackend',
        'rest_framework.filters.OrderingFilter',
    ],
}

# Celery
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = _env_bool("CELERY_TASK_ALWAYS_EAGER", False)
CELERY_TASK_EAGER_PROPAGATES = True

# Billing
BILLING_TOKENS_PER_CREDIT = int(os.getenv("BILLING_TOKENS_PER_CREDIT", "10000"))
BILLING_DEFAULT_MODEL = os.getenv("BILLING_DEFAULT_MODEL", "google/gemini-2.5-flash")
BILLING_DEFAULT_ESTIMATED_TOKENS = int(os.getenv("BILLING_DEFAULT_ESTIMATED_TOKENS", "5000"))
BILLING_DEFAULT_CURRENCY = os.getenv("BILLING_DEFAULT_CURRENCY", "BRL")
BILLING_TRIAL_DAYS = int(os.getenv("BILLING_TRIAL_DAYS", "7"))
BILLING_WEBHOOK_DEADLINE_SECONDS = float(os.getenv("BILLING_WEBHOOK_DEADLINE_SECONDS", "20"))
BILLING_WEBHOOK_LOG_RETENTION_DAYS = int(os.getenv("BILLING_WEBHOOK_LOG_RETENTION_DAYS", "90"))

# Default catalog seeded after migrate; prices in BRL.
PLAN_CONFIG = {
    'free': {
        'name': 'Free',
        'monthly_price': '0.00',
        'annual_price': '0.00',
        'max_projects': 1,
        'max_copies': 5,
        'copy_ai_enabled': False,
        'credits_per_month': '5',
    },
    'starter': {
        'name': 'Starter',
        'monthly_price': '47.00',
        'annual_price': '470.00',
        'max_projects': 3,
        'max_copies': 50,
        'copy_ai_enabled': True,
        'credits_per_month': '100',
    },
    'pro': {
        'name': 'Pro',
        'monthly_price': '97.00',
        'annual_price': '970.00',
        'max_projects': 10,
        'max_copies': None,
        'copy_ai_enabled': True,
        'credits_per_month': '300',
        'rollover_enabled': True,
        'rollover_percentage': 50,
        'rollover_days': 30,
    },
}

MODEL_MULTIPLIERS = {
    'google/gemini-2.5-flash': '1',
    'google/gemini-2.5-pro': '2',
    'openai/gpt-5-mini': '1',
    'openai/gpt-5': '3',
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
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
        'level': os.getenv("DJANGO_LOG_LEVEL", "INFO"),
    },
    'loggers': {
        'billing': {
            'handlers': ['console'],
            'level': os.getenv("BILLING_LOG_LEVEL", "INFO"),
            'propagate': False,
        },
    },
}
