"""
relmodel 模型

模型 = 有序字段列表 + 主键 + 按别名索引的关系表 + 存储适配器。
创建时即注册到存储适配器；字段和关系可以在创建后追加（建立关系时会合成外键字段），但不能删除。

    user = Model('user', [
        IntField('id', 'ID'),
        StringField('name', 'Name', required=True),
        StringField('lastname', 'Lastname', required=True),
        DerivableField('fullname', 'Full name', depends_on=['name', 'lastname'],
                       get=lambda row: f"{row['name']} {row['lastname']}"),
    ], storage, ModelOptions(pk_fields=['id']))

    user.add_multi([{'id': 1, 'name': 'Ivan', 'lastname': 'Sidorov'}])
    data = user.get_all(['id', 'fullname', 'phone.formated_number'])
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Union, TYPE_CHECKING

from ..common.exceptions import (
    AuthorizationError,
    CyclicDependencyError,
    DuplicateFieldError,
    FieldValidationError,
    UnknownFieldError,
    UnknownRelationError,
    UnsupportedOperationError,
)
from ..common.options import AddOptions, GetAllOptions, ModelOptions
from ..query.expressions import Expression, ModelField, and_
from . import resolver
from .context import Context, ensure_context
from .data import Data
from .event import event
from .field import Field
from .keys import serialize_key
from .relation import Relation, RelationType
from .rwlock import RWLock

if TYPE_CHECKING:
    from ..backends.base import StorageAdapter
    from .binding import RecordMapping

logger = logging.getLogger(__name__)

RowsInput = Union[Data, Iterable[Dict[str, Any]]]


@dataclass
class ModelLink:
    """
    多对多关联：一个本端主键关联多个对端主键

    单字段主键可以直接传标量，例如 ModelLink(1, [100, 200])
    """
    pk: Any
    fks: List[Any] = field(default_factory=list)


def _as_tuple(value: Any) -> tuple:
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return (value,)


def _find_cycle(fields: Dict[str, Field], new_field: Field) -> Optional[List[str]]:
    """新字段加入后依赖图中是否出现经过它的环"""
    seen: Set[str] = set()

    def visit(name: str, path: List[str]) -> Optional[List[str]]:
        if name == new_field.name:
            return path + [name]
        if name in seen:
            return None
        seen.add(name)
        definition = fields.get(name)
        if definition is None or not definition.derivable:
            return None
        for dep in definition.depends_on:
            found = visit(dep, path + [name])
            if found:
                return found
        return None

    for dep in new_field.depends_on:
        found = visit(dep, [new_field.name])
        if found:
            return found
    return None


class Model:
    """
    模型

    Args:
        name: 模型标识（在存储适配器内唯一）
        fields: 字段定义列表
        storage: 存储适配器
        options: 模型选项（主键、权限、默认过滤器、可推导字段准备钩子）

    Raises:
        DuplicateFieldError: 字段标识重复
        UnknownFieldError: 主键字段未定义
        DuplicateModelError: 模型标识已注册
    """

    def __init__(
        self,
        name: str,
        fields: Sequence[Field],
        storage: 'StorageAdapter',
        options: Optional[ModelOptions] = None
    ):
        self.name = name
        self.options = options or ModelOptions()
        self._storage = storage
        self._lock = RWLock()
        self._fields_names: List[str] = []
        self._fields: Dict[str, Field] = {}
        self._relations: Dict[str, Relation] = {}
        self._replaced_aliases: List[str] = []

        for f in fields:
            self.add_field(f)

        for pk_name in self.options.pk_fields:
            if pk_name not in self._fields:
                raise UnknownFieldError(name, pk_name)
        self._pk_fields: List[str] = list(self.options.pk_fields)

        storage.register_model(self)

    @property
    def storage(self) -> 'StorageAdapter':
        return self._storage

    # ========== 字段 ==========

    def get_field_definition(self, name: str) -> Optional[Field]:
        with self._lock.read():
            return self._fields.get(name)

    def get_fields_names(self) -> List[str]:
        with self._lock.read():
            return list(self._fields_names)

    def get_pk_fields_names(self) -> List[str]:
        return list(self._pk_fields)

    def add_field(self, field: Field) -> None:
        """
        追加字段

        Raises:
            DuplicateFieldError: 标识已存在
            CyclicDependencyError: 新字段使可推导字段的依赖出现环
        """
        with self._lock.write():
            if field.name in self._fields:
                raise DuplicateFieldError(self.name, field.name)
            if field.derivable:
                cycle = _find_cycle(self._fields, field)
                if cycle:
                    raise CyclicDependencyError(self.name, cycle)
            self._fields[field.name] = field
            self._fields_names.append(field.name)

    def get_all_field_dependencies(self, name: str) -> List[str]:
        """
        获取字段依赖的传递闭包

        返回顺序保证每个字段都排在依赖它的字段之前。

        Raises:
            UnknownFieldError: 字段或其依赖未定义
            CyclicDependencyError: 依赖存在环
        """
        with self._lock.read():
            fields = dict(self._fields)

        if name not in fields:
            raise UnknownFieldError(self.name, name)

        result: List[str] = []
        done: Set[str] = set()
        visiting: List[str] = [name]

        def visit(current: str) -> None:
            definition = fields.get(current)
            if definition is None:
                raise UnknownFieldError(self.name, current)
            for dep in definition.depends_on:
                if dep in visiting:
                    raise CyclicDependencyError(self.name, visiting[visiting.index(dep):] + [dep])
                if dep in done:
                    continue
                visiting.append(dep)
                visit(dep)
                visiting.pop()
                done.add(dep)
                result.append(dep)

        visit(name)
        return result

    def field_expr(self, name: str) -> ModelField:
        """
        获取字段引用表达式

        Raises:
            UnknownFieldError: 字段未定义
        """
        if self.get_field_definition(name) is None:
            raise UnknownFieldError(self.name, name)
        return ModelField(self, name)

    def fields_to_string(self, fields_names: Sequence[str], row: Dict[str, Any]) -> str:
        """把一组字段的值序列化为连接键"""
        return serialize_key(fields_names, row)

    # ========== 关系 ==========

    def add_relation(
        self,
        relation: Relation,
        alias: Optional[str] = None,
        new_fields: Optional[Sequence[Field]] = None
    ) -> None:
        """
        注册关系

        Args:
            relation: 关系声明
            alias: 别名，默认为对端模型标识。重复的别名会覆盖之前的关系
            new_fields: 需要同时追加到本模型的字段（外键字段）
        """
        for f in new_fields or []:
            self.add_field(f)

        alias = alias or relation.ext_model.name
        with self._lock.write():
            if alias in self._relations:
                self._replaced_aliases.append(alias)
                logger.warning(
                    "Model '%s': relation alias '%s' is replaced (%s -> %s)",
                    self.name, alias, self._relations[alias].ext_model.name, relation.ext_model.name
                )
            self._relations[alias] = relation

    def get_relation(self, alias: str) -> Optional[Relation]:
        with self._lock.read():
            return self._relations.get(alias)

    def get_relations(self) -> List[str]:
        """关系别名（排序）"""
        with self._lock.read():
            return sorted(self._relations)

    def get_replaced_aliases(self) -> List[str]:
        with self._lock.read():
            return list(self._replaced_aliases)

    # ========== 读取 ==========

    def get_all(
        self,
        fields: Sequence[str],
        options: Optional[GetAllOptions] = None,
        ctx: Optional[Context] = None
    ) -> Data:
        """
        按字段路径读取数据（含跨关系的点路径，如 'address.city'）

        Args:
            fields: 字段路径列表
            options: 过滤、排序、分页选项
            ctx: 调用上下文

        Returns:
            Data，列为请求的顶层标识；关系列的值为对端行字典（to-one）或字典列表（to-many）
        """
        return resolver.get_all(self, fields, options, ctx)

    def get_all_records(
        self,
        mapping: 'RecordMapping',
        options: Optional[GetAllOptions] = None,
        ctx: Optional[Context] = None
    ) -> List[Any]:
        """按记录映射读取，返回记录对象列表"""
        data = self.get_all(mapping.field_paths(), options, ctx)
        return [mapping.build(row) for row in data.maps()]

    # ========== 写入 ==========

    def add_multi(
        self,
        rows: RowsInput,
        options: Optional[AddOptions] = None,
        ctx: Optional[Context] = None
    ) -> Data:
        """
        批量写入

        先做全部校验（权限 -> 字段 -> 必填 -> 逐行 clean/check），任何失败都不会产生部分写入。

        Args:
            rows: Data 或字典列表
            options: 写入选项
            ctx: 调用上下文

        Returns:
            写入记录的主键 Data

        Raises:
            AuthorizationError: 无写入权限
            UnknownFieldError: 包含未定义字段
            FieldValidationError: 校验失败
        """
        ctx = ensure_context(ctx)
        self._check_permission(ctx, self.options.add_permission, 'add')

        data = rows if isinstance(rows, Data) else Data.from_maps(rows)
        if len(data) == 0:
            return Data(self.get_pk_fields_names())

        cleaned = self._clean_data(data)

        event.dispatch_model(ctx, self, 'before_add', cleaned)
        ctx.check_cancelled()
        started = time.perf_counter()
        pks = self._storage.add(ctx, self, cleaned, options or AddOptions())
        logger.debug(
            "%s: added %d rows in %.2f ms", self.name, len(cleaned), (time.perf_counter() - started) * 1000
        )
        event.dispatch_model(ctx, self, 'after_add', pks)
        return pks

    def add_records(
        self,
        mapping: 'RecordMapping',
        records: Iterable[Any],
        options: Optional[AddOptions] = None,
        ctx: Optional[Context] = None
    ) -> Data:
        """按记录映射写入记录对象"""
        return self.add_multi(mapping.to_data(records), options, ctx)

    def edit(
        self,
        filter: Optional[Expression],
        new_values: Dict[str, Any],
        ctx: Optional[Context] = None
    ) -> int:
        """
        修改满足过滤条件的记录

        Returns:
            修改的记录数
        """
        ctx = ensure_context(ctx)
        self._check_permission(ctx, self.options.edit_permission, 'edit')

        cleaned: Dict[str, Any] = {}
        for name, value in new_values.items():
            definition = self._get_writable_field(name)
            cleaned[name] = self._clean_value(definition, value, None)

        flt = self._with_default_filter(ctx, filter)
        event.dispatch_model(ctx, self, 'before_edit', (flt, cleaned))
        ctx.check_cancelled()
        count = self._storage.edit(ctx, self, flt, cleaned)
        logger.debug("%s: edited %d rows", self.name, count)
        event.dispatch_model(ctx, self, 'after_edit', (flt, cleaned))
        return count

    def delete(self, filter: Optional[Expression], ctx: Optional[Context] = None) -> int:
        """
        删除满足过滤条件的记录

        Returns:
            删除的记录数
        """
        ctx = ensure_context(ctx)
        self._check_permission(ctx, self.options.delete_permission, 'delete')

        flt = self._with_default_filter(ctx, filter)
        event.dispatch_model(ctx, self, 'before_delete', flt)
        ctx.check_cancelled()
        count = self._storage.delete(ctx, self, flt)
        logger.debug("%s: deleted %d rows", self.name, count)
        event.dispatch_model(ctx, self, 'after_delete', flt)
        return count

    def link(self, alias: str, links: Sequence[ModelLink], ctx: Optional[Context] = None) -> Data:
        """
        通过中间模型写入多对多关联（已存在的关联被覆盖）

        Args:
            alias: 多对多关系的别名
            links: 关联列表

        Raises:
            UnknownRelationError: 别名不存在
            UnsupportedOperationError: 不是多对多关系
        """
        relation = self.get_relation(alias)
        if relation is None:
            raise UnknownRelationError(self.name, alias)
        if relation.relation_type != RelationType.MANY_TO_MANY or relation.junction_model is None:
            raise UnsupportedOperationError(
                f"Relation '{alias}' of model '{self.name}' is {relation.relation_type}, "
                f"only ManyToMany relations can be linked",
                model_id=self.name
            )

        data = Data(list(relation.junction_local_fields) + list(relation.junction_fk_fields))
        for link in links:
            pk = _as_tuple(link.pk)
            for fk in link.fks:
                data.add(pk + _as_tuple(fk))

        return relation.junction_model.add_multi(data, AddOptions(replace=True), ctx)

    # ========== 内部方法 ==========

    def _check_permission(self, ctx: Context, permission_id: Optional[str], operation: str) -> None:
        if permission_id and not ctx.has_permission(permission_id):
            raise AuthorizationError(self.name, permission_id, operation)

    def _with_default_filter(self, ctx: Context, filter: Optional[Expression]) -> Optional[Expression]:
        """调用方过滤器与默认作用域过滤器取 AND"""
        if self.options.default_filter is None:
            return filter
        default = self.options.default_filter(ctx, self)
        if default is None:
            return filter
        if filter is None:
            return default
        return and_(filter, default)

    def _get_writable_field(self, name: str) -> Field:
        definition = self.get_field_definition(name)
        if definition is None:
            raise UnknownFieldError(self.name, name)
        if definition.derivable:
            raise FieldValidationError(self.name, name, f"Cannot set value of derivable field '{name}'")
        return definition

    def _clean_value(self, definition: Field, value: Any, row_index: Optional[int]) -> Any:
        if value is None:
            if definition.required:
                raise FieldValidationError(
                    self.name, definition.name, f"Field '{definition.name}' is required", row_index
                )
            return None
        try:
            value = definition.clean(value)
            definition.check(value)
        except (TypeError, ValueError) as e:
            raise FieldValidationError(
                self.name, definition.name, f"Invalid value for field '{definition.name}': {e}", row_index
            ) from e
        return value

    def _clean_data(self, data: Data) -> Data:
        fields = data.fields()
        definitions = [self._get_writable_field(name) for name in fields]

        provided = set(fields)
        for name in self.get_fields_names():
            definition = self.get_field_definition(name)
            if definition is not None and definition.required and name not in provided:
                raise FieldValidationError(self.name, name, f"Required field '{name}' is missing")

        result = Data(fields)
        for i, row in enumerate(data.rows()):
            result.add([self._clean_value(d, value, i) for d, value in zip(definitions, row)])
        return result

    def __repr__(self) -> str:
        return f"Model(name='{self.name}', fields={self.get_fields_names()})"
