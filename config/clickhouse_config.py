# config/clickhouse_config.py
import os


def get_clickhouse_config():
    """Транспортные настройки, общие для всех узлов (адреса и пароли берутся из профиля)"""
    return {
        'default': {
            'database': 'system',
            'connect_timeout': int(os.getenv('CLICKHOUSE_CONNECT_TIMEOUT', 10)),
            'send_receive_timeout': int(os.getenv('CLICKHOUSE_SEND_TIMEOUT', 300)),
            'compression': os.getenv('CLICKHOUSE_COMPRESSION', 'False').lower() == 'true',
        }
    }


def get_analysis_config():
    return {
        'CHANNEL_CAPACITY': int(os.getenv('CLICKCHECK_CHANNEL_CAPACITY', 128)),
        'DEFAULT_LIMIT': int(os.getenv('CLICKCHECK_DEFAULT_LIMIT', 5)),
        'MAX_BLOCK_SIZE': int(os.getenv('CLICKCHECK_MAX_BLOCK_SIZE', 65536)),
        'CONFIG_PATH': os.getenv('CLICKCHECK_CONFIG_PATH') or os.path.join(
            os.path.expanduser('~'), '.config', 'clickcheck', 'config.json'
        ),
        # Веса оценок влияния, см. clickhouse_client.rows.ImpactWeights
        'IMPACT_WEIGHTS': {
            'read_rows': int(os.getenv('CLICKCHECK_WEIGHT_READ_ROWS', 100)),
            'read_bytes': int(os.getenv('CLICKCHECK_WEIGHT_READ_BYTES', 1)),
            'network_bytes': int(os.getenv('CLICKCHECK_WEIGHT_NETWORK_BYTES', 10)),
            'cpu_time_us': int(os.getenv('CLICKCHECK_WEIGHT_CPU_TIME_US', 10_000)),
            'memory_bytes': int(os.getenv('CLICKCHECK_WEIGHT_MEMORY_BYTES', 10)),
            'duration_ms': int(os.getenv('CLICKCHECK_WEIGHT_DURATION_MS', 1_000_000)),
        },
    }
