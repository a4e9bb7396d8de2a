from monitor import output, pipeline
from monitor.analyzer import QueriesSortBy
from monitor.management import arguments
from monitor.management.base import ClickHouseCommand, clickcheck_settings


class Command(ClickHouseCommand):
    help = 'Топ запросов из system.query_log, сгруппированных по normalized_query_hash'

    def add_arguments(self, parser):
        super().add_arguments(parser)
        arguments.add_query_filter_arguments(parser)
        parser.add_argument(
            '--sort-by',
            type=arguments.sort_metric,
            default=QueriesSortBy.TOTAL_IMPACT,
            help='Metric to rank queries by, descending (default total-impact)',
        )
        arguments.add_limit_argument(parser, clickcheck_settings().get('DEFAULT_LIMIT', pipeline.DEFAULT_LIMIT))

    def handle(self, *args, **options):
        req = pipeline.TopQueriesRequest(
            filter=arguments.build_query_filter(options),
            limit=options['limit'],
            sort_by=options['sort_by'],
        )
        queries = self.run(
            options,
            lambda cluster, capacity: pipeline.top_queries(cluster, req, capacity),
        )
        self.stdout.write(output.top_queries(queries, options['out']))
