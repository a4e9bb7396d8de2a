import logging

logger = logging.getLogger(__name__)


def _and(fragment: str) -> str:
    """Фрагмент условия с ведущим AND; пустой фрагмент = всегда истина"""
    return f"AND {fragment}" if fragment else ""


class SystemQueries:
    """
    Шаблоны запросов к системным таблицам ClickHouse.

    Все значения фильтров передаются через позиционные плейсхолдеры ``?``,
    в текст подставляются только фрагменты, собранные фильтрами.
    Порядок колонок совпадает с ``from_row`` соответствующих типов строк.
    """

    # Только завершённые (или упавшие) SELECT-запросы
    QUERY_LOG_BASE_CONDITION = "type != 'QueryStart' AND query_kind = 'Select'"

    QUERY_LOG_SUMS = """
            sum(query_duration_ms) AS total_query_duration_ms,
            sum(read_rows) AS total_read_rows,
            sum(read_bytes) AS total_read_bytes,
            sum(memory_usage) AS total_memory_usage,
            sum(ProfileEvents['UserTimeMicroseconds']) AS total_user_time_us,
            sum(ProfileEvents['SystemTimeMicroseconds']) AS total_system_time_us,
            sum(ProfileEvents['NetworkReceiveBytes']) AS total_network_receive_bytes,
            sum(ProfileEvents['NetworkSendBytes']) AS total_network_send_bytes"""

    @classmethod
    def get_logs_by_fingerprint(cls, where_clause: str = '') -> str:
        """
        Запрос к query_log, сгруппированный по normalized_query_hash.
        Каждый узел отдаёт свои локальные суммы по отпечатку.

        Args:
            where_clause: дополнительные условия от QueryLogFilter.build_where()

        Returns:
            SQL запрос
        """
        return f"""
        SELECT
            normalized_query_hash,
            any(query) AS query,
            min(event_time) AS min_event_time,
            max(event_time) AS max_event_time,{cls.QUERY_LOG_SUMS},
            groupUniqArray(user) AS users,
            arrayDistinct(arrayFlatten(groupArray(databases))) AS databases,
            arrayDistinct(arrayFlatten(groupArray(tables))) AS tables
        FROM system.query_log
        WHERE {cls.QUERY_LOG_BASE_CONDITION}
          {_and(where_clause)}
        GROUP BY normalized_query_hash
        """

    @classmethod
    def get_log_by_fingerprint(cls, where_clause: str = '') -> str:
        """
        То же, что get_logs_by_fingerprint, но для одного отпечатка.
        Первый параметр запроса — сам normalized_query_hash.
        """
        fingerprint_clause = "normalized_query_hash = ?"
        if where_clause:
            fingerprint_clause = f"{fingerprint_clause} AND {where_clause}"
        return cls.get_logs_by_fingerprint(fingerprint_clause)

    @classmethod
    def get_logs_total(cls, where_clause: str = '') -> str:
        """
        Суммарная статистика по query_log без группировки.
        """
        return f"""
        SELECT
            count() AS queries_count,{cls.QUERY_LOG_SUMS}
        FROM system.query_log
        WHERE {cls.QUERY_LOG_BASE_CONDITION}
          {_and(where_clause)}
        """

    @staticmethod
    def get_errors_by_code(where_clause: str = '', having_clause: str = '') -> str:
        """
        Ошибки из system.errors, сгруппированные по коду.

        Args:
            where_clause: условия от ErrorFilter.build_where()
            having_clause: условия от ErrorFilter.build_having()
        """
        return f"""
        SELECT
            code,
            any(name) AS name,
            sum(value) AS count,
            max(last_error_time) AS last_error_time,
            any(last_error_message) AS error_message
        FROM system.errors
        WHERE 1 = 1
          {_and(where_clause)}
        GROUP BY code
        HAVING 1 = 1
          {_and(having_clause)}
        """

    @staticmethod
    def get_server_version() -> str:
        return "SELECT version()"


# Синглтон для удобного доступа
system_queries = SystemQueries()
