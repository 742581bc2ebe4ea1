"""
relmodel 内存存储适配器

每个模型一张内存表（按序列化主键索引的记录字典，保持插入顺序），
过滤表达式由 InMemoryEvaluator 求值。
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

from ..common.exceptions import DuplicateKeyError, StorageError
from ..common.options import AddOptions, MemoryStorageOptions, QueryOptions
from ..core.data import Data
from ..core.keys import serialize_key
from ..core.relation import find_relation
from ..query.evaluator import InMemoryEvaluator
from .base import StorageAdapter

if TYPE_CHECKING:
    from ..core.context import Context
    from ..core.model import Model
    from ..query.expressions import Expression

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class MemoryTable:
    """单个模型的内存表"""

    def __init__(self, name: str):
        self.name = name
        self.records: Dict[str, Record] = {}  # {序列化主键: 记录}
        self.next_id = 1
        self.next_rowid = 1  # 无主键模型的行号

    def __repr__(self) -> str:
        return f"MemoryTable(name='{self.name}', records={len(self.records)})"


def _sort_records(records: List[Record], order_by: Sequence[Any]) -> List[Record]:
    """多字段稳定排序，None 升序时排在最后"""
    for order in reversed(list(order_by)):
        name = order.field_name

        def sort_key(record: Record, name: str = name) -> Any:
            value = record.get(name)
            if value is None:
                return (1, 0)
            return (0, value)

        try:
            records.sort(key=sort_key, reverse=order.desc)
        except TypeError:
            # 混合类型时按字符串排序
            records.sort(key=lambda r, name=name: str(r.get(name, '')), reverse=order.desc)
    return records


class MemoryStorage(StorageAdapter):
    """内存存储适配器"""

    ENGINE_NAME = 'memory'

    def __init__(self, options: Optional[MemoryStorageOptions] = None):
        super().__init__(options or MemoryStorageOptions())
        self.options: MemoryStorageOptions = self.options  # type: ignore[assignment]
        self._tables: Dict[str, MemoryTable] = {}
        self._lock = threading.RLock()

    def get_table(self, model: 'Model') -> MemoryTable:
        with self._lock:
            table = self._tables.get(model.name)
            if table is None:
                table = MemoryTable(model.name)
                self._tables[model.name] = table
            return table

    def _stored_fields(self, model: 'Model') -> List[str]:
        names = []
        for name in model.get_fields_names():
            definition = model.get_field_definition(name)
            if definition is not None and not definition.derivable:
                names.append(name)
        return names

    def _evaluator(self) -> InMemoryEvaluator:
        return InMemoryEvaluator(self._related_rows)

    # ========== 数据操作 ==========

    def add(self, ctx: 'Context', model: 'Model', data: Data, options: AddOptions) -> Data:
        pk_names = model.get_pk_fields_names()
        stored = self._stored_fields(model)
        autoincrement = (
            self.options.autoincrement
            and len(pk_names) == 1
            and getattr(model.get_field_definition(pk_names[0]), 'kind', None) is int
        )

        with self._lock:
            table = self.get_table(model)
            next_id = table.next_id
            next_rowid = table.next_rowid
            staged: Dict[str, Record] = {}

            # 1. 先整批校验，失败时表保持不变
            for row in data.maps():
                record: Record = {name: None for name in stored}
                record.update(row)

                if autoincrement and record[pk_names[0]] is None:
                    record[pk_names[0]] = next_id
                    next_id += 1
                elif autoincrement and isinstance(record[pk_names[0]], int) and record[pk_names[0]] >= next_id:
                    next_id = record[pk_names[0]] + 1

                if pk_names:
                    if any(record.get(name) is None for name in pk_names):
                        raise StorageError(
                            f"Primary key of model '{model.name}' must be provided",
                            model_id=model.name
                        )
                    key = serialize_key(pk_names, record)
                else:
                    key = f"#{next_rowid}"
                    next_rowid += 1

                if not options.replace and (key in table.records or key in staged):
                    raise DuplicateKeyError(model.name, tuple(record[name] for name in pk_names))
                staged[key] = record

            # 2. 写入
            table.records.update(staged)
            table.next_id = next_id
            table.next_rowid = next_rowid

        logger.debug("%s: stored %d records", model.name, len(staged))
        return Data(pk_names, [tuple(r[name] for name in pk_names) for r in staged.values()])

    def query(
        self,
        ctx: 'Context',
        model: 'Model',
        field_names: Sequence[str],
        options: QueryOptions
    ) -> Data:
        with self._lock:
            records = list(self.get_table(model).records.values())

        # 过滤
        records = self._evaluator().filter_rows(options.filter, records)

        # 排序
        if options.order_by:
            records = _sort_records(records, options.order_by)

        # 投影（每次新建元组，不暴露内部记录）
        rows = [tuple(record.get(name) for name in field_names) for record in records]

        # 去重
        if options.distinct:
            seen: Dict[str, None] = {}
            unique = []
            for row in rows:
                key = serialize_key(field_names, dict(zip(field_names, row)))
                if key not in seen:
                    seen[key] = None
                    unique.append(row)
            rows = unique

        # 分页
        if options.offset > 0:
            rows = rows[options.offset:]
        if options.limit is not None and options.limit >= 0:
            rows = rows[:options.limit]

        return Data(field_names, rows)

    def edit(
        self,
        ctx: 'Context',
        model: 'Model',
        filter: Optional['Expression'],
        new_values: Dict[str, Any]
    ) -> int:
        if not new_values:
            return 0
        pk_names = model.get_pk_fields_names()
        with self._lock:
            table = self.get_table(model)
            matched = {id(r) for r in self._evaluator().filter_rows(filter, list(table.records.values()))}

            updated: Dict[str, Record] = {}
            count = 0
            for key, record in table.records.items():
                if id(record) in matched:
                    record = {**record, **new_values}
                    count += 1
                    if pk_names:
                        key = serialize_key(pk_names, record)
                if key in updated:
                    raise DuplicateKeyError(model.name, tuple(record.get(name) for name in pk_names))
                updated[key] = record
            table.records = updated
        return count

    def delete(self, ctx: 'Context', model: 'Model', filter: Optional['Expression']) -> int:
        with self._lock:
            table = self.get_table(model)
            matched = {id(r) for r in self._evaluator().filter_rows(filter, list(table.records.values()))}
            table.records = {k: r for k, r in table.records.items() if id(r) not in matched}
        return len(matched)

    # ========== ExistsAny 支持 ==========

    def _related_rows(self, local_model: 'Model', ext_model: 'Model', row: Record) -> List[Record]:
        """查找与 row 关联的 ext_model 记录（直接关联或经由中间模型）"""
        relation = find_relation(local_model, ext_model)
        local_key = serialize_key(relation.local_fields, row)

        with self._lock:
            ext_records = list(self.get_table(ext_model).records.values())
            if relation.junction_model is None:
                return [r for r in ext_records if serialize_key(relation.fk_fields, r) == local_key]

            partner_keys = {
                serialize_key(relation.junction_fk_fields, j)
                for j in self.get_table(relation.junction_model).records.values()
                if serialize_key(relation.junction_local_fields, j) == local_key
            }
        return [r for r in ext_records if serialize_key(relation.fk_fields, r) in partner_keys]
