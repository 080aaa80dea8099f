import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(dotenv_path=BASE_DIR / '.env')

SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'insecure-development-key')
DEBUG = os.getenv('DJANGO_DEBUG', 'False').lower() in ('1', 'true', 'yes')
ALLOWED_HOSTS = [h.strip() for h in os.getenv('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if h.strip()]

INSTALLED_APPS = [
    'orders.apps.OrdersConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'wellness_backend.urls'
WSGI_APPLICATION = 'wellness_backend.wsgi.application'

# Orders and users live in MongoDB; the ORM is not used.
DATABASES = {}

USE_TZ = True
TIME_ZONE = 'UTC'

# --- Bearer token auth ---
JWT_SECRET = os.getenv('JWT_SECRET') or os.getenv('JWT_TOKEN', '')
JWT_ALGORITHMS = ['HS256']

# --- Pagination ---
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'default': {
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'default',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'pymongo': {
            'level': 'WARNING',
        },
    },
}
