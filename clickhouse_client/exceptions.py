class ClickHouseClientError(Exception):
    """Базовое исключение для клиента ClickHouse"""
    pass


class ClickHouseConfigError(ClickHouseClientError):
    """Ошибка конфигурации (адрес узла, настройки драйвера)"""
    pass


class FilterBuildError(ClickHouseClientError):
    """Некорректная комбинация фильтров, обнаружена до обращения к сети"""
    pass


class ClickHouseQueryError(ClickHouseClientError):
    """Ошибка выполнения запроса на конкретном узле"""

    def __init__(self, node: str, cause):
        self.node = node
        self.cause = cause
        super().__init__(f"node '{node}': {cause}")


class ClickHouseConnectionError(ClickHouseQueryError):
    """Ошибка подключения к узлу ClickHouse"""
    pass


class ChannelClosedError(ClickHouseClientError):
    """Получатель потока строк завершился раньше отправителей"""
    pass
