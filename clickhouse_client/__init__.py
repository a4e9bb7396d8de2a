from .channel import RowChannel
from .client import ClickHouseClient
from .cluster import ClickHouseCluster
from .config import ClickHouseConfig, ConnectionProfile
from .filters import ErrorFilter, QueryLogFilter, QueryParam
from .rows import ErrorStat, ImpactWeights, QueryLogStat, QueryLogTotal
from .system_queries import SystemQueries, system_queries
from .exceptions import (
    ClickHouseClientError,
    ClickHouseConnectionError,
    ClickHouseQueryError,
    ClickHouseConfigError,
    ChannelClosedError,
    FilterBuildError,
)
from .health_check import check_nodes, NodeHealth

__all__ = [
    'RowChannel',
    'ClickHouseClient',
    'ClickHouseCluster',
    'ClickHouseConfig',
    'ConnectionProfile',
    'ErrorFilter',
    'QueryLogFilter',
    'QueryParam',
    'ErrorStat',
    'ImpactWeights',
    'QueryLogStat',
    'QueryLogTotal',
    'SystemQueries',
    'system_queries',
    'ClickHouseClientError',
    'ClickHouseConnectionError',
    'ClickHouseQueryError',
    'ClickHouseConfigError',
    'ChannelClosedError',
    'FilterBuildError',
    'check_nodes',
    'NodeHealth',
]
