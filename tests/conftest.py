from __future__ import annotations

import os
import sys

import django
import pytest

# Добавляем корневую директорию в Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)) + '/..')

# Настройка Django
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')
django.setup()


@pytest.fixture
def vault_key(monkeypatch):
    from cryptography.fernet import Fernet

    key = Fernet.generate_key().decode()
    monkeypatch.setenv('CLICKCHECK_VAULT_KEY', key)
    return key


@pytest.fixture
def config_path(tmp_path):
    return str(tmp_path / 'clickcheck' / 'config.json')


@pytest.fixture(autouse=True)
def _clean_connection_env(monkeypatch):
    for name in ('CLICKHOUSE_URLS', 'CLICKHOUSE_USER', 'CLICKHOUSE_PASSWORD',
                 'CLICKHOUSE_ACCEPT_INVALID_CERTIFICATE', 'CLICKHOUSE_SECURE', 'CLICKHOUSE_VERIFY_SSL'):
        monkeypatch.delenv(name, raising=False)
