from monitor import output, pipeline
from monitor.management import arguments
from monitor.management.base import ClickHouseCommand, clickcheck_settings


class Command(ClickHouseCommand):
    help = 'Самые частые ошибки из system.errors'

    def add_arguments(self, parser):
        super().add_arguments(parser)
        arguments.add_error_filter_arguments(parser)
        arguments.add_limit_argument(parser, clickcheck_settings().get('DEFAULT_LIMIT', pipeline.DEFAULT_LIMIT))

    def handle(self, *args, **options):
        req = pipeline.TopErrorsRequest(
            filter=arguments.build_error_filter(options),
            limit=options['limit'],
        )
        errors = self.run(
            options,
            lambda cluster, capacity: pipeline.top_errors(cluster, req, capacity),
        )
        self.stdout.write(output.top_errors(errors, options['out']))
