"""
relmodel SQLite 存储适配器

使用标准库 sqlite3，每个模型一张表（首次使用时建表，之后追加的字段通过 ALTER TABLE 补列），
过滤表达式由 SqlCompiler 编译为 WHERE 子句。

关联查询的 IN 条件每个候选值占用一个 `?` 参数，受 SQLite 的参数数量上限约束
（SQLITE_MAX_VARIABLE_NUMBER，3.32 起为 32766，更早的版本为 999）。
超出上限时 sqlite3 报错，以 StorageError 抛出。
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Callable, Dict, Generator, List, Optional, Sequence, Set, TYPE_CHECKING

from ..common.exceptions import DuplicateKeyError, StorageError
from ..common.options import AddOptions, QueryOptions, SqliteStorageOptions
from ..core.data import Data
from ..query.compiler import SqlCompiler, column_ref, quote_identifier, to_sql_value
from .base import StorageAdapter

if TYPE_CHECKING:
    from ..core.context import Context
    from ..core.field import Field
    from ..core.model import Model
    from ..query.expressions import Expression

logger = logging.getLogger(__name__)

# 字段类型 -> SQLite 列类型
_COLUMN_TYPES: Dict[type, str] = {
    int: 'INTEGER',
    bool: 'INTEGER',
    float: 'REAL',
    str: 'TEXT',
    bytes: 'BLOB',
    date: 'TEXT',
    datetime: 'TEXT',
}

# 字段类型 -> 读取时的转换
_DECODERS: Dict[type, Callable[[Any], Any]] = {
    bool: bool,
    date: date.fromisoformat,
    datetime: datetime.fromisoformat,
}


class SqliteStorage(StorageAdapter):
    """SQLite 存储适配器"""

    ENGINE_NAME = 'sqlite'

    def __init__(self, options: Optional[SqliteStorageOptions] = None):
        super().__init__(options or SqliteStorageOptions())
        self.options: SqliteStorageOptions = self.options  # type: ignore[assignment]

        connect_kwargs: Dict[str, Any] = {
            'check_same_thread': self.options.check_same_thread,
            'isolation_level': self.options.isolation_level,
        }
        if self.options.timeout is not None:
            connect_kwargs['timeout'] = self.options.timeout

        try:
            self._conn = sqlite3.connect(self.options.path, **connect_kwargs)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open SQLite database '{self.options.path}': {e}") from e
        self._lock = threading.RLock()
        self._columns: Dict[str, Set[str]] = {}
        self._compiler = SqlCompiler()

    # ========== 表结构 ==========

    @staticmethod
    def _stored_fields(model: 'Model') -> List['Field']:
        result = []
        for name in model.get_fields_names():
            definition = model.get_field_definition(name)
            if definition is not None and not definition.derivable:
                result.append(definition)
        return result

    def _ensure_table(self, model: 'Model') -> None:
        """建表，或为注册后追加的字段补列"""
        fields = self._stored_fields(model)
        table = quote_identifier(model.name)
        known = self._columns.get(model.name)

        if known is None:
            pk_names = model.get_pk_fields_names()
            single_int_pk = len(pk_names) == 1 and model.get_field_definition(pk_names[0]).kind is int
            columns = []
            for f in fields:
                column = f"{quote_identifier(f.name)} {_COLUMN_TYPES.get(f.kind, 'TEXT')}"
                if single_int_pk and f.name == pk_names[0]:
                    column += ' PRIMARY KEY'
                columns.append(column)
            if pk_names and not single_int_pk:
                columns.append(f"PRIMARY KEY ({', '.join(quote_identifier(n) for n in pk_names)})")
            self._conn.execute(f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(columns)})")
            existing = {row[1] for row in self._conn.execute(f"PRAGMA table_info({table})")}
            self._columns[model.name] = known = existing
            logger.debug("Created table %s", table)

        for f in fields:
            if f.name not in known:
                self._conn.execute(
                    f"ALTER TABLE {table} ADD COLUMN {quote_identifier(f.name)} {_COLUMN_TYPES.get(f.kind, 'TEXT')}"
                )
                known.add(f.name)
                logger.debug("Added column %s.%s", table, f.name)

    def _ensure_tables(self) -> None:
        # 过滤器中的 ExistsAny 可能引用任意已注册模型
        for model in self.registry.models():
            self._ensure_table(model)

    @contextmanager
    def _transaction(self, model: 'Model') -> Generator[sqlite3.Cursor, None, None]:
        """写事务：异常时回滚，sqlite3 错误转换为 StorageError"""
        with self._lock:
            try:
                self._ensure_tables()
                if self._conn.isolation_level is None:
                    self._conn.execute('BEGIN')
                cursor = self._conn.cursor()
                try:
                    yield cursor
                except BaseException:
                    self._conn.rollback()
                    raise
                self._conn.commit()
            except sqlite3.Error as e:
                raise StorageError(str(e), model_id=model.name) from e

    def _where(self, filter: Optional['Expression']) -> tuple:
        if filter is None:
            return '', []
        compiled = self._compiler.compile(filter)
        return f" WHERE {compiled.sql}", compiled.params

    @staticmethod
    def _decoder(model: 'Model', name: str) -> Optional[Callable[[Any], Any]]:
        definition = model.get_field_definition(name)
        if definition is None:
            return None
        return _DECODERS.get(definition.kind)

    # ========== 数据操作 ==========

    def add(self, ctx: 'Context', model: 'Model', data: Data, options: AddOptions) -> Data:
        pk_names = model.get_pk_fields_names()
        fields = data.fields()
        verb = 'INSERT OR REPLACE' if options.replace else 'INSERT'
        sql = (
            f"{verb} INTO {quote_identifier(model.name)} "
            f"({', '.join(quote_identifier(n) for n in fields)}) "
            f"VALUES ({', '.join('?' for _ in fields)})"
        )
        if not fields:
            sql = f"{verb} INTO {quote_identifier(model.name)} DEFAULT VALUES"

        pks = Data(pk_names)
        with self._transaction(model) as cursor:
            for row in data.maps():
                try:
                    cursor.execute(sql, [to_sql_value(row[n]) for n in fields])
                except sqlite3.IntegrityError as e:
                    if 'UNIQUE' in str(e) or 'PRIMARY KEY' in str(e):
                        raise DuplicateKeyError(model.name, tuple(row.get(n) for n in pk_names)) from e
                    raise
                pk = [row.get(n) for n in pk_names]
                if len(pk_names) == 1 and pk[0] is None:
                    pk[0] = cursor.lastrowid
                pks.add(pk)

        logger.debug("%s: inserted %d rows", model.name, len(pks))
        return pks

    def query(
        self,
        ctx: 'Context',
        model: 'Model',
        field_names: Sequence[str],
        options: QueryOptions
    ) -> Data:
        columns = ', '.join(column_ref(model.name, n) for n in field_names) or '1'
        distinct = 'DISTINCT ' if options.distinct else ''
        where, params = self._where(options.filter)
        sql = f"SELECT {distinct}{columns} FROM {quote_identifier(model.name)}{where}"

        if options.order_by:
            sql += ' ORDER BY ' + ', '.join(
                f"{column_ref(model.name, o.field_name)} "
                f"{'DESC NULLS FIRST' if o.desc else 'ASC NULLS LAST'}"
                for o in options.order_by
            )
        if options.limit is not None or options.offset:
            sql += ' LIMIT ? OFFSET ?'
            params = params + [options.limit if options.limit is not None else -1, options.offset]

        decoders = [self._decoder(model, n) for n in field_names]
        with self._lock:
            try:
                self._ensure_tables()
                cursor = self._conn.execute(sql, params)
                raw_rows = cursor.fetchall()
            except sqlite3.Error as e:
                raise StorageError(str(e), model_id=model.name, details={'sql': sql}) from e

        result = Data(field_names)
        for raw in raw_rows:
            if not field_names:
                result.add(())
                continue
            result.add([
                decode(value) if decode is not None and value is not None else value
                for decode, value in zip(decoders, raw)
            ])
        return result

    def edit(
        self,
        ctx: 'Context',
        model: 'Model',
        filter: Optional['Expression'],
        new_values: Dict[str, Any]
    ) -> int:
        if not new_values:
            return 0
        assignments = ', '.join(f"{quote_identifier(n)} = ?" for n in new_values)
        where, params = self._where(filter)
        sql = f"UPDATE {quote_identifier(model.name)} SET {assignments}{where}"
        with self._transaction(model) as cursor:
            try:
                cursor.execute(sql, [to_sql_value(v) for v in new_values.values()] + params)
            except sqlite3.IntegrityError as e:
                raise DuplicateKeyError(model.name, None) from e
            return cursor.rowcount

    def delete(self, ctx: 'Context', model: 'Model', filter: Optional['Expression']) -> int:
        where, params = self._where(filter)
        with self._transaction(model) as cursor:
            cursor.execute(f"DELETE FROM {quote_identifier(model.name)}{where}", params)
            return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()
