from monitor import output, pipeline
from monitor.management import arguments
from monitor.management.base import ClickHouseCommand


class Command(ClickHouseCommand):
    help = 'Суммарная нагрузка всех запросов за период'

    def add_arguments(self, parser):
        super().add_arguments(parser)
        arguments.add_query_filter_arguments(parser)

    def handle(self, *args, **options):
        req = pipeline.TotalQueriesRequest(filter=arguments.build_query_filter(options))
        total = self.run(
            options,
            lambda cluster, capacity: pipeline.total_queries(cluster, req, capacity),
        )
        self.stdout.write(output.total_queries(total, options['out']))
