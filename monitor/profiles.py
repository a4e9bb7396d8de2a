"""
Хранилище профилей подключения к ClickHouse.

Профили лежат в JSON-файле (по умолчанию ~/.config/clickcheck/config.json).
Пароли в файл пишутся только в зашифрованном виде (Fernet), ключ берётся
из переменной окружения CLICKCHECK_VAULT_KEY.
"""
import json
import logging
import os
import tempfile
from typing import Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken
from django.conf import settings

from clickhouse_client.config import ConnectionProfile

logger = logging.getLogger(__name__)

VAULT_KEY_ENV = 'CLICKCHECK_VAULT_KEY'


class ProfileError(Exception):
    """Ошибка чтения или записи профилей"""


class ProfileNotFoundError(ProfileError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"context profile '{name}' not found")


def _get_fernet() -> Fernet:
    key = os.environ.get(VAULT_KEY_ENV, '')
    if not key:
        raise ProfileError(
            f"{VAULT_KEY_ENV} not set. Generate one with: "
            "python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
        )
    try:
        return Fernet(key.encode())
    except ValueError as e:
        raise ProfileError(f"{VAULT_KEY_ENV} is not a valid Fernet key: {e}") from e


def encrypt_password(password: str) -> str:
    if not password:
        return ''
    return _get_fernet().encrypt(password.encode('utf-8')).decode('ascii')


def decrypt_password(token: str) -> str:
    """Never log the return value."""
    if not token:
        return ''
    try:
        return _get_fernet().decrypt(token.encode('ascii')).decode('utf-8')
    except InvalidToken as e:
        raise ProfileError("cannot decrypt stored password: wrong vault key or corrupt data") from e


def default_config_path() -> str:
    return getattr(settings, 'CLICKCHECK', {}).get('CONFIG_PATH') or os.path.join(
        os.path.expanduser('~'), '.config', 'clickcheck', 'config.json'
    )


class ProfileStore:
    """
    Управление именованными профилями подключения.

    ``override_name`` (опция --context) имеет приоритет над сохранённым
    профилем по умолчанию и должен существовать.
    """

    def __init__(self, config_path: Optional[str] = None, override_name: Optional[str] = None):
        self.path = os.path.abspath(os.path.expanduser(config_path or default_config_path()))
        self.config = self._read()

        if override_name is not None and override_name not in self.config['profiles']:
            raise ProfileNotFoundError(override_name)
        self.override_name = override_name

    def _read(self) -> Dict:
        if not os.path.exists(self.path):
            return {'current': None, 'profiles': {}}
        try:
            with open(self.path, encoding='utf-8') as f:
                data = json.load(f)
        except OSError as e:
            raise ProfileError(f"read config error: {e}") from e
        except json.JSONDecodeError as e:
            raise ProfileError(f"parse config error in {self.path}: {e}") from e

        data.setdefault('current', None)
        data.setdefault('profiles', {})
        return data

    def _write(self) -> None:
        directory = os.path.dirname(self.path)
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix='.tmp')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(self.config, f, indent=2, sort_keys=True)
                os.replace(tmp_path, self.path)
            except BaseException:
                os.unlink(tmp_path)
                raise
        except OSError as e:
            raise ProfileError(f"write config error: {e}") from e
        logger.debug(f"Profiles saved to {self.path}")

    def config_path(self) -> str:
        return self.path

    def list(self) -> List[str]:
        return sorted(self.config['profiles'])

    def active_profile_name(self) -> Optional[str]:
        return self.override_name or self.config.get('current')

    def profile(self) -> Optional[ConnectionProfile]:
        """Активный профиль, если он задан"""
        name = self.active_profile_name()
        if name is None:
            return None
        return self.get_profile(name)

    def get_profile(self, name: str) -> ConnectionProfile:
        stored = self.config['profiles'].get(name)
        if stored is None:
            raise ProfileNotFoundError(name)
        return ConnectionProfile(
            urls=list(stored.get('urls', [])),
            user=stored.get('user', 'default'),
            password=decrypt_password(stored.get('password', '')),
            accept_invalid_certificate=bool(stored.get('accept_invalid_certificate', False)),
        )

    def set_profile(self, name: str, profile: ConnectionProfile) -> None:
        """Создать или обновить профиль и сразу сохранить файл"""
        self.config['profiles'][name] = {
            'user': profile.user,
            'urls': list(profile.urls),
            'accept_invalid_certificate': profile.accept_invalid_certificate,
            'password': encrypt_password(profile.password),
        }
        self._write()

    def delete_profile(self, name: str) -> None:
        if name not in self.config['profiles']:
            raise ProfileNotFoundError(name)
        del self.config['profiles'][name]
        if self.config.get('current') == name:
            self.config['current'] = None
        self._write()

    def set_default(self, name: str) -> None:
        if name not in self.config['profiles']:
            raise ProfileNotFoundError(name)
        self.config['current'] = name
        self._write()
