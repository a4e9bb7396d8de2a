import os

from config.clickhouse_config import get_clickhouse_config, get_analysis_config

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'clickcheck-cli-only')
DEBUG = False

# Только management-команды, без базы данных и веб-части
INSTALLED_APPS = [
    'monitor',
]
DATABASES = {}

USE_TZ = True
TIME_ZONE = 'UTC'

CLICKHOUSE_CONFIG = get_clickhouse_config()
CLICKCHECK = get_analysis_config()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'console': {
            'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'console',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': os.getenv('CLICKCHECK_LOG_LEVEL', 'WARNING'),
    },
}
