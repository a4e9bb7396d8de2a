import os
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple
from urllib.parse import urlsplit

from django.conf import settings

from .exceptions import ClickHouseConfigError

logger = logging.getLogger(__name__)

SECURE_SCHEMES = {'clickhouses', 'tcps'}
HTTP_SCHEMES = {'http', 'https'}
PLAIN_SCHEMES = {'clickhouse', 'tcp'}

NATIVE_PORT = 9000
NATIVE_SECURE_PORT = 9440


@dataclass
class ConnectionProfile:
    """
    Профиль подключения к кластеру: список узлов, учётные данные
    и флаг «принимать любой TLS-сертификат».
    """
    urls: List[str] = field(default_factory=list)
    user: str = 'default'
    password: str = field(default='', repr=False)
    accept_invalid_certificate: bool = False

    def to_printable(self, show_secrets: bool = False) -> Dict[str, Any]:
        return {
            'user': self.user,
            'password': self.password if show_secrets else '[REDACTED]',
            'urls': list(self.urls),
            'accept_invalid_certificate': self.accept_invalid_certificate,
        }


def parse_endpoint(url: str) -> Tuple[str, int, bool]:
    """
    Разобрать адрес узла: host, host:port, clickhouse://host:port,
    clickhouses://host:port (TLS).

    Returns:
        (host, port, secure)
    """
    raw = (url or '').strip()
    if not raw:
        raise ClickHouseConfigError("Empty node address")

    if '://' not in raw:
        raw = f"clickhouse://{raw}"

    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError as e:
        raise ClickHouseConfigError(f"Invalid node address '{url}': {e}") from e

    scheme = parts.scheme.lower()
    if scheme in SECURE_SCHEMES:
        secure = True
    elif scheme in PLAIN_SCHEMES:
        secure = False
    elif scheme in HTTP_SCHEMES:
        # Клиент работает только по нативному протоколу
        raise ClickHouseConfigError(
            f"HTTP interface is not supported in node address '{url}': "
            f"use clickhouse://host:{NATIVE_PORT} or clickhouses://host:{NATIVE_SECURE_PORT} "
            f"(tcp:// and tcps:// are accepted too)"
        )
    else:
        raise ClickHouseConfigError(f"Unsupported scheme '{parts.scheme}' in node address '{url}'")

    if not parts.hostname:
        raise ClickHouseConfigError(f"Node address '{url}' has no host")

    if port is None:
        port = NATIVE_SECURE_PORT if secure else NATIVE_PORT

    return parts.hostname, port, secure


class ClickHouseConfig:
    """
    Конфигурация для подключения к узлам ClickHouse
    """

    # Дефолтные настройки для нативного TCP подключения
    DEFAULT_CONFIG = {
        'port': NATIVE_PORT,
        'user': 'default',
        'password': '',
        'database': 'system',  # ← читаем только системные таблицы
        'secure': False,
        'verify': True,
        'connect_timeout': 10,
        'send_receive_timeout': 300,
        'sync_request_timeout': 300,
        'compression': False,
        'client_name': 'clickcheck',
        'settings': {
            'use_numpy': False,
            'strings_encoding': 'utf8',
        }
    }

    @classmethod
    def get_connection_config(cls, url: str, profile: ConnectionProfile) -> Dict[str, Any]:
        """
        Получить конфигурацию для подключения к одному узлу профиля
        """
        django_config = cls._get_config_from_django()
        env_config = cls._get_config_from_env()
        host, port, secure = parse_endpoint(url)

        # Объединяем конфигурации (env имеет приоритет над settings, адрес узла и профиль — над всем)
        config = {**cls.DEFAULT_CONFIG, **django_config, **env_config}
        config.update({
            'host': host,
            'port': port,
            'secure': secure or config.get('secure', False),
            'user': profile.user,
            'password': profile.password,
        })
        if profile.accept_invalid_certificate:
            config['verify'] = False

        cls._validate_config(config)

        logger.debug(f"ClickHouse config for {url}: {cls._mask_password(config)}")
        return config

    @classmethod
    def _get_config_from_env(cls) -> Dict[str, Any]:
        """Получить транспортные настройки из environment variables"""
        config = {}

        if secure := os.getenv('CLICKHOUSE_SECURE'):
            config['secure'] = secure.lower() == 'true'
        if verify := os.getenv('CLICKHOUSE_VERIFY_SSL'):
            config['verify'] = verify.lower() == 'true'

        # Таймауты
        try:
            if timeout := os.getenv('CLICKHOUSE_CONNECT_TIMEOUT'):
                config['connect_timeout'] = int(timeout)
            if timeout := os.getenv('CLICKHOUSE_SEND_TIMEOUT'):
                config['send_receive_timeout'] = int(timeout)
        except ValueError as e:
            raise ClickHouseConfigError(f"Invalid timeout in environment: {e}") from e

        return config

    @classmethod
    def _get_config_from_django(cls) -> Dict[str, Any]:
        """Получить транспортные настройки из Django settings"""
        django_config = getattr(settings, 'CLICKHOUSE_CONFIG', {})
        config = dict(django_config.get('default', {}))
        # Учётные данные и адрес приходят только из профиля
        for key in ('host', 'user', 'password'):
            config.pop(key, None)
        return config

    @classmethod
    def _validate_config(cls, config: Dict[str, Any]):
        """Валидация конфигурации"""
        if not config.get('host'):
            raise ClickHouseConfigError("ClickHouse host is required")

        if config.get('port') and not (1 <= config['port'] <= 65535):
            raise ClickHouseConfigError(f"Invalid port: {config['port']}")

    @classmethod
    def _mask_password(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        """Скрыть пароль в логах"""
        masked = config.copy()
        if 'password' in masked and masked['password']:
            masked['password'] = '***'
        return masked


def node_label(url: str) -> str:
    """Короткое имя узла для логов и сообщений об ошибках"""
    try:
        host, port, _ = parse_endpoint(url)
    except ClickHouseConfigError:
        return url
    return f"{host}:{port}"


def resolve_profile_from_env() -> Optional[ConnectionProfile]:
    """Профиль из переменных окружения (если задан CLICKHOUSE_URLS)"""
    urls = [u.strip() for u in os.getenv('CLICKHOUSE_URLS', '').split(',') if u.strip()]
    if not urls:
        return None
    return ConnectionProfile(
        urls=urls,
        user=os.getenv('CLICKHOUSE_USER', 'default'),
        password=os.getenv('CLICKHOUSE_PASSWORD', ''),
        accept_invalid_certificate=os.getenv('CLICKHOUSE_ACCEPT_INVALID_CERTIFICATE', 'false').lower() == 'true',
    )
