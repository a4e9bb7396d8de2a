import asyncio
import getpass
import logging

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from clickhouse_client import (
    ClickHouseClientError,
    ClickHouseCluster,
    ConnectionProfile,
    ImpactWeights,
)
from clickhouse_client.config import resolve_profile_from_env
from monitor.profiles import ProfileError, ProfileStore

from . import arguments

logger = logging.getLogger(__name__)


def clickcheck_settings() -> dict:
    return getattr(settings, 'CLICKCHECK', {})


def prompt_password(user: str) -> str:
    try:
        return getpass.getpass(f"ClickHouse {user} password: ")
    except (EOFError, KeyboardInterrupt) as e:
        raise CommandError(f"read password from prompt: {e}") from e


def resolve_profile(options, store: ProfileStore) -> ConnectionProfile:
    """
    Профиль подключения: сохранённый (или --context) с переопределениями
    из командной строки, иначе только флаги, иначе переменные окружения.
    """
    profile = store.profile()
    if profile is not None:
        if options.get('urls'):
            profile.urls = list(options['urls'])
        if options.get('user'):
            profile.user = options['user']
        if options.get('password') is not None:
            profile.password = options['password']
        if options.get('interactive_password'):
            profile.password = prompt_password(profile.user)
        if options.get('accept_invalid_certificate'):
            profile.accept_invalid_certificate = True
        return profile

    if not options.get('urls'):
        env_profile = resolve_profile_from_env()
        if env_profile is not None:
            logger.debug("Using connection profile from environment")
            return env_profile
        raise CommandError("missing `--url`: supply at least one URL or set a context")

    user = options.get('user')
    if not user:
        raise CommandError("missing `--user`: supply it or set a context")

    password = options.get('password') or ''
    if options.get('interactive_password'):
        password = prompt_password(user)

    return ConnectionProfile(
        urls=list(options['urls']),
        user=user,
        password=password,
        accept_invalid_certificate=bool(options.get('accept_invalid_certificate')),
    )


class ClickHouseCommand(BaseCommand):
    """
    Базовая команда анализа: общие аргументы, выбор профиля,
    создание кластера и перевод ошибок клиента в CommandError.
    """
    requires_system_checks = []

    def add_arguments(self, parser):
        arguments.add_common_arguments(parser)
        arguments.add_connection_arguments(parser)

    def get_store(self, options) -> ProfileStore:
        try:
            return ProfileStore(options.get('config'), options.get('context'))
        except ProfileError as e:
            raise CommandError(f"context error: {e}") from e

    def get_cluster(self, options) -> ClickHouseCluster:
        store = self.get_store(options)
        try:
            profile = resolve_profile(options, store)
        except ProfileError as e:
            raise CommandError(f"context error: {e}") from e

        config = clickcheck_settings()
        try:
            return ClickHouseCluster.from_profile(
                profile,
                weights=ImpactWeights.from_mapping(config.get('IMPACT_WEIGHTS')),
                max_block_size=config.get('MAX_BLOCK_SIZE', 65536),
            )
        except ClickHouseClientError as e:
            raise CommandError(f"create clickhouse client error: {e}") from e

    @property
    def channel_capacity(self) -> int:
        return clickcheck_settings().get('CHANNEL_CAPACITY', 128)

    def run(self, options, coroutine_factory):
        """
        Выполнить корутину анализа на кластере из профиля.

        coroutine_factory получает кластер и ёмкость канала.
        """
        cluster = self.get_cluster(options)
        try:
            return asyncio.run(coroutine_factory(cluster, self.channel_capacity))
        except ClickHouseClientError as e:
            raise CommandError(f"Stream error: {e}") from e
        finally:
            cluster.close()
