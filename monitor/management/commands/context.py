import logging

from django.core.management.base import BaseCommand, CommandError

from clickhouse_client import ConnectionProfile
from monitor import output
from monitor.management import arguments
from monitor.management.base import prompt_password
from monitor.profiles import ProfileError, ProfileStore

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Управление профилями подключения к ClickHouse (contexts)'
    requires_system_checks = []

    def add_arguments(self, parser):
        actions = parser.add_subparsers(dest='action', required=True)

        def action(name, help_text):
            sub = actions.add_parser(name, help=help_text)
            arguments.add_common_arguments(sub)
            return sub

        action('config-path', 'Show the file which stores context profiles')
        action('list', 'List all context profiles')
        action('current', 'Show the active context (override or stored default)')

        show = action('show', 'Show a profile by name')
        show.add_argument('name')
        show.add_argument('--show-secrets', action='store_true', help='Show the password')

        delete = action('delete', 'Delete a profile')
        delete.add_argument('name')

        set_parser = actions.add_parser('set', help='Create or update profiles, set the current one')
        set_actions = set_parser.add_subparsers(dest='set_action', required=True)

        profile = set_actions.add_parser('profile', help='Create or update a context profile')
        arguments.add_common_arguments(profile)
        profile.add_argument('name')
        profile.add_argument('-U', '--url', dest='urls', action='append', required=True,
                             help='ClickHouse node address (repeatable)')
        profile.add_argument('-u', '--user', required=True, help='ClickHouse username')
        auth = profile.add_mutually_exclusive_group(required=True)
        auth.add_argument('-p', '--password', help='ClickHouse password (plaintext)')
        auth.add_argument('-i', '--interactive-password', action='store_true',
                          help='Read the password from an interactive prompt')
        profile.add_argument('--accept-invalid-certificate', action='store_true',
                             help='Accept invalid (e.g. self-signed) TLS certificates')

        current = set_actions.add_parser('current', help='Set the stored default context')
        arguments.add_common_arguments(current)
        current.add_argument('name')

    def handle(self, *args, **options):
        try:
            store = ProfileStore(options.get('config'), options.get('context'))
        except ProfileError as e:
            raise CommandError(f"context error: {e}") from e

        fmt = options.get('out', 'text')
        action = options['action']
        if action == 'set':
            action = f"set-{options['set_action']}"

        try:
            result = self.dispatch(store, action, options, fmt)
        except ProfileError as e:
            raise CommandError(f"{action} error: {e}") from e

        if result is not None:
            self.stdout.write(result)

    def dispatch(self, store: ProfileStore, action: str, options, fmt: str):
        if action == 'config-path':
            return output.context_config_path(store.config_path(), fmt)
        if action == 'list':
            return output.context_list(store.list(), fmt)
        if action == 'current':
            return output.context_current(store.active_profile_name(), fmt)
        if action == 'show':
            profile = store.get_profile(options['name'])
            return output.context_profile(profile.to_printable(options['show_secrets']), fmt)
        if action == 'delete':
            store.delete_profile(options['name'])
            logger.info(f"Context profile '{options['name']}' deleted")
            return None
        if action == 'set-current':
            store.set_default(options['name'])
            return None
        if action == 'set-profile':
            password = options.get('password')
            if options.get('interactive_password'):
                password = prompt_password(options['user'])
            store.set_profile(options['name'], ConnectionProfile(
                urls=list(options['urls']),
                user=options['user'],
                password=password or '',
                accept_invalid_certificate=options['accept_invalid_certificate'],
            ))
            logger.info(f"Context profile '{options['name']}' saved")
            return None
        raise CommandError(f"Unknown context action: {action}")
