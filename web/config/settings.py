"""Django settings for the storefront order gateway.

Every deploy-specific value is read from the environment so the same module
serves local development, docker-compose and the test suite.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only-secret-key-change-me")
DEBUG = _env_bool("DJANGO_DEBUG")
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "rest_framework",
    "apps.catalog",
    "apps.orders",
    "apps.monitoring",
]

MIDDLEWARE = [
    "gateway.middleware.RequestIdMiddleware",
    "gateway.middleware.ApiSizeLimitMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {"context_processors": []},
    }
]

# ---- Database ----
if os.getenv("DB_ENGINE", "sqlite") == "postgres":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "HOST": os.getenv("DB_HOST", "orders-db"),
            "PORT": os.getenv("DB_PORT", "5432"),
            "NAME": os.getenv("DB_NAME", "orders"),
            "USER": os.getenv("DB_USER", "orders_user"),
            "PASSWORD": os.getenv("DB_PASSWORD", "orders-pass"),
            "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "60")),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.getenv("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

USE_TZ = True
TIME_ZONE = os.getenv("TIME_ZONE", "Asia/Ho_Chi_Minh")
LANGUAGE_CODE = "en-us"

# ---- REST framework ----
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "DEFAULT_THROTTLE_RATES": {
        "orders_create": os.getenv("THROTTLE_ORDERS_CREATE", "60/min"),
        "orders_detail": os.getenv("THROTTLE_ORDERS_DETAIL", "120/min"),
        "orders_customer": os.getenv("THROTTLE_ORDERS_CUSTOMER", "30/min"),
        "payments": os.getenv("THROTTLE_PAYMENTS", "60/min"),
    },
}

# ---- Outbound HTTP (stock service) ----
USE_HTTP_ADAPTERS = _env_bool("USE_HTTP_ADAPTERS")
INVENTORY_BASE_URL = os.getenv("INVENTORY_BASE_URL", "http://inventory:9001")
HTTP_TIMEOUT_SECS = float(os.getenv("HTTP_TIMEOUT_SECS", "2.0"))
HTTP_RETRY_MAX = int(os.getenv("HTTP_RETRY_MAX", "3"))
HTTP_RETRY_BACKOFF_BASE = float(os.getenv("HTTP_RETRY_BACKOFF_BASE", "0.15"))
HTTP_RETRY_MAX_SLEEP = float(os.getenv("HTTP_RETRY_MAX_SLEEP", "0.5"))
HTTP_CIRCUIT_FAIL_THRESHOLD = int(os.getenv("HTTP_CIRCUIT_FAIL_THRESHOLD", "5"))
HTTP_CIRCUIT_RESET_TIMEOUT = float(os.getenv("HTTP_CIRCUIT_RESET_TIMEOUT", "30.0"))

# ---- Payment provider ----
PAYMENT_PROVIDER = os.getenv("PAYMENT_PROVIDER", "stripe")
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
CHECKOUT_SUCCESS_URL = os.getenv(
    "CHECKOUT_SUCCESS_URL", "http://localhost:3000/order-success/{order_code}?session_id={CHECKOUT_SESSION_ID}"
)
CHECKOUT_CANCEL_URL = os.getenv("CHECKOUT_CANCEL_URL", "http://localhost:3000/checkout?cancelled={order_code}")
CURRENCY = os.getenv("CURRENCY", "VND")

# ---- Order lifecycle ----
DEPOSIT_DEFAULT_DUE_HOURS = int(os.getenv("DEPOSIT_DEFAULT_DUE_HOURS", "24"))
DEPOSIT_EXPIRY_BATCH = int(os.getenv("DEPOSIT_EXPIRY_BATCH", "200"))
TRANSFER_MEMO_PREFIX = os.getenv("TRANSFER_MEMO_PREFIX", "RTB")
ORDER_TRACKING_TOKEN_PEPPER = os.getenv("ORDER_TRACKING_TOKEN_PEPPER", "")
ORDER_TRACKING_TOKEN_TTL_DAYS = int(os.getenv("ORDER_TRACKING_TOKEN_TTL_DAYS", "7"))
CRON_SECRET = os.getenv("CRON_SECRET", "")

# ---- Notifications ----
EMAIL_BACKEND = os.getenv("EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend")
EMAIL_HOST = os.getenv("EMAIL_HOST", "localhost")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "25"))
DEFAULT_FROM_EMAIL = os.getenv("DEFAULT_FROM_EMAIL", "orders@storefront.local")
NOTIFICATIONS_ASYNC = _env_bool("NOTIFICATIONS_ASYNC", "1")
NOTIFICATIONS_MAX_WORKERS = int(os.getenv("NOTIFICATIONS_MAX_WORKERS", "2"))

# ---- Logging ----
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "request_id": {"()": "gateway.logging_filters.RequestIdFilter"},
    },
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "filters": ["request_id"],
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "django.request": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        "apps": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}
