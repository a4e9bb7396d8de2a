from monitor import output, pipeline
from monitor.management import arguments
from monitor.management.base import ClickHouseCommand


def fingerprint(value: str) -> int:
    """normalized_query_hash: десятичный или шестнадцатеричный (0x...)"""
    number = int(value, 0)
    if not 0 <= number <= 2 ** 64 - 1:
        raise ValueError(f"fingerprint out of UInt64 range: {value}")
    return number


class Command(ClickHouseCommand):
    help = 'Подробная статистика одного отпечатка запроса со всех узлов'

    def add_arguments(self, parser):
        super().add_arguments(parser)
        parser.add_argument(
            '--fingerprint',
            type=fingerprint,
            required=True,
            help='normalized_query_hash of the query, decimal or 0x-prefixed hex',
        )
        arguments.add_query_filter_arguments(parser)

    def handle(self, *args, **options):
        req = pipeline.InspectQueryRequest(
            fingerprint=options['fingerprint'],
            filter=arguments.build_query_filter(options),
        )
        query = self.run(
            options,
            lambda cluster, capacity: pipeline.inspect_query(cluster, req, capacity),
        )
        self.stdout.write(output.query_details(query, options['out']))
