import logging
from dataclasses import dataclass
from typing import List, Optional

from .client import ClickHouseClient
from .exceptions import ClickHouseClientError

logger = logging.getLogger(__name__)


@dataclass
class NodeHealth:
    node: str
    ok: bool
    version: Optional[str] = None
    error: Optional[str] = None


def check_node(client: ClickHouseClient) -> NodeHealth:
    """
    Проверить подключение к одному узлу и получить версию сервера
    """
    try:
        with client:
            version = client.get_server_version()
        logger.info(f"ClickHouse connection test successful for {client.node}")
        return NodeHealth(node=client.node, ok=True, version=version)
    except ClickHouseClientError as e:
        logger.error(f"ClickHouse connection test failed for {client.node}: {e}")
        return NodeHealth(node=client.node, ok=False, error=str(getattr(e, 'cause', e)))


def check_nodes(nodes: List[ClickHouseClient]) -> List[NodeHealth]:
    """Проверить все узлы по очереди"""
    return [check_node(node) for node in nodes]
