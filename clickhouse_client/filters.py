import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from .exceptions import FilterBuildError

UINT64_MAX = 2 ** 64 - 1
INT32_MIN = -2 ** 31
INT32_MAX = 2 ** 31 - 1

DATETIME_FORMAT = '%Y-%m-%d %H:%M:%S'


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ParamKind(enum.Enum):
    DATETIME = 'datetime'
    UINT64 = 'uint64'
    INT32 = 'int32'
    STRING = 'string'


@dataclass(frozen=True)
class QueryParam:
    """
    Типизированный параметр запроса.

    Значения фильтров никогда не попадают в текст запроса напрямую:
    в шаблоне стоит плейсхолдер ``?``, а значение передаётся отдельно
    и экранируется драйвером.
    """
    kind: ParamKind
    value: object

    @classmethod
    def datetime(cls, value: datetime) -> 'QueryParam':
        return cls(ParamKind.DATETIME, value)

    @classmethod
    def uint64(cls, value: int) -> 'QueryParam':
        value = int(value)
        if not 0 <= value <= UINT64_MAX:
            raise FilterBuildError(f"UInt64 parameter out of range: {value}")
        return cls(ParamKind.UINT64, value)

    @classmethod
    def int32(cls, value: int) -> 'QueryParam':
        value = int(value)
        if not INT32_MIN <= value <= INT32_MAX:
            raise FilterBuildError(f"Int32 parameter out of range: {value}")
        return cls(ParamKind.INT32, value)

    @classmethod
    def string(cls, value: str) -> 'QueryParam':
        return cls(ParamKind.STRING, str(value))

    def render(self) -> str:
        """Каноническое текстовое представление параметра"""
        if self.kind is ParamKind.DATETIME:
            value = self.value
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc).strftime(DATETIME_FORMAT)
        if self.kind in (ParamKind.UINT64, ParamKind.INT32):
            return str(self.value)
        return self.value

    def driver_value(self):
        """Значение для подстановки драйвером: числа как есть, остальное строкой"""
        if self.kind in (ParamKind.UINT64, ParamKind.INT32):
            return self.value
        return self.render()


class ClauseBuilder:
    """Собирает конъюнкцию условий и позиционные параметры к ним"""

    def __init__(self):
        self._clauses: List[str] = []
        self._params: List[QueryParam] = []

    def add_clause(self, text: str, *params: QueryParam) -> 'ClauseBuilder':
        if text.count('?') != len(params):
            raise FilterBuildError(
                f"Clause '{text}' expects {text.count('?')} parameters, got {len(params)}"
            )
        self._clauses.append(text)
        self._params.extend(params)
        return self

    def add_membership(self, template: str, values, make_param) -> 'ClauseBuilder':
        """Условие вхождения в список: по одному плейсхолдеру на элемент"""
        if values:
            placeholders = ', '.join('?' for _ in values)
            self.add_clause(
                template.format(placeholders=placeholders),
                *(make_param(v) for v in values)
            )
        return self

    @property
    def clauses(self) -> List[str]:
        return list(self._clauses)

    def build(self) -> Tuple[str, List[QueryParam]]:
        return ' AND '.join(self._clauses), list(self._params)


@dataclass(frozen=True)
class QueryLogFilter:
    """Фильтр по system.query_log"""
    from_time: Optional[datetime] = None
    to_time: Optional[datetime] = None
    last: Optional[timedelta] = None

    users: Tuple[str, ...] = ()
    databases: Tuple[str, ...] = ()
    tables: Tuple[str, ...] = ()

    min_query_duration: Optional[timedelta] = None
    min_read_rows: Optional[int] = None
    min_read_bytes: Optional[int] = None

    now: Callable[[], datetime] = field(default=utc_now, compare=False, repr=False)

    def validate(self) -> 'QueryLogFilter':
        """Ровно один из режимов выбора времени: --from или --last"""
        if self.from_time is not None and self.last is not None:
            raise FilterBuildError("'from' and 'last' are mutually exclusive")
        if self.from_time is None and self.last is None:
            raise FilterBuildError("one of 'from' or 'last' is required")
        return self

    def build_where(self) -> Tuple[str, List[QueryParam]]:
        """
        Собирает условие WHERE и параметры к нему.

        Returns:
            (фрагмент без ведущего AND, параметры в порядке плейсхолдеров)
        """
        builder = ClauseBuilder()

        if self.from_time is not None:
            builder.add_clause("event_time >= toDateTime(?, 'UTC')", QueryParam.datetime(self.from_time))
        if self.last is not None:
            threshold = self.now() - self.last
            builder.add_clause("event_time >= toDateTime(?, 'UTC')", QueryParam.datetime(threshold))
        if self.to_time is not None:
            builder.add_clause("event_time < toDateTime(?, 'UTC')", QueryParam.datetime(self.to_time))

        builder.add_membership("user IN ({placeholders})", self.users, QueryParam.string)

        if self.min_read_rows is not None:
            builder.add_clause("read_rows >= ?", QueryParam.uint64(self.min_read_rows))
        if self.min_read_bytes is not None:
            builder.add_clause("read_bytes >= ?", QueryParam.uint64(self.min_read_bytes))
        if self.min_query_duration is not None:
            millis = self.min_query_duration // timedelta(milliseconds=1)
            builder.add_clause("query_duration_ms >= ?", QueryParam.uint64(millis))

        builder.add_membership("hasAny(tables, [{placeholders}])", self.tables, QueryParam.string)
        builder.add_membership("hasAny(databases, [{placeholders}])", self.databases, QueryParam.string)

        return builder.build()


@dataclass(frozen=True)
class ErrorFilter:
    """Фильтр по system.errors"""
    last: Optional[timedelta] = None
    min_count: Optional[int] = None
    codes: Tuple[int, ...] = ()

    now: Callable[[], datetime] = field(default=utc_now, compare=False, repr=False)

    def build_where(self) -> Tuple[str, List[QueryParam]]:
        builder = ClauseBuilder()
        builder.add_membership("code IN ({placeholders})", self.codes, QueryParam.int32)
        return builder.build()

    def build_having(self) -> Tuple[str, List[QueryParam]]:
        builder = ClauseBuilder()
        if self.min_count is not None:
            builder.add_clause("count >= ?", QueryParam.uint64(self.min_count))
        if self.last is not None:
            threshold = self.now() - self.last
            builder.add_clause("last_error_time >= toDateTime(?, 'UTC')", QueryParam.datetime(threshold))
        return builder.build()
