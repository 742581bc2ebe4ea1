"""
relmodel 关联查询解析（预加载）

把一组点路径字段（'id', 'phone.formated_number', 'address.city' ...）解析为
最少次数的存储调用，并把结果重新组装为嵌套行：

- 本模型：一次 query
- 每个被请求的关系别名：一次递归解析（IN 查询），与行数无关
- 多对多：先查中间模型，再查对端模型，共两次

执行分两个阶段：
1. 规划：递归校验整棵请求树（未知字段/别名、复合键）并算出每层需要的字段，
   此阶段不做任何存储调用
2. 执行：按规划逐层查询、按连接键关联、计算可推导字段、投影
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

from ..common.exceptions import CompositeKeyError, UnknownFieldError, UnknownRelationError
from ..common.options import GetAllOptions, Order
from ..query.expressions import In, ModelField, Value
from .context import Context, ensure_context
from .data import Data
from .keys import serialize_key
from .relation import Relation

if TYPE_CHECKING:
    from .model import Model

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
# 连接键 -> 对端行列表
RowsIndex = Dict[str, List[Row]]


@dataclass
class RelationPlan:
    """单个关系别名的执行计划"""
    alias: str
    relation: Relation
    requested: List[str]  # 调用方请求的对端顶层标识
    partner: 'QueryPlan'
    junction: Optional['QueryPlan'] = None


@dataclass
class QueryPlan:
    """单个模型的执行计划"""
    model: 'Model'
    result_fields: List[str]  # 结果列（请求的顶层标识，按首次出现顺序）
    query_fields: List[str]  # 需要从存储读取的字段
    derivable_fields: List[str]  # 需要计算的可推导字段（依赖在前）
    relations: List[RelationPlan] = field(default_factory=list)


def _unique(items: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(items))


def build_plan(model: 'Model', field_paths: Sequence[str]) -> QueryPlan:
    """
    构建执行计划（不做存储调用）

    Raises:
        UnknownFieldError: 字段未定义
        UnknownRelationError: 关系别名未定义
        CompositeKeyError: 关系键为多字段
        CyclicDependencyError: 可推导字段依赖存在环
    """
    # 1. 拆分本模型字段与关系字段
    result_fields: List[str] = []
    local_requested: List[str] = []
    relation_paths: Dict[str, List[str]] = {}
    for path in field_paths:
        head, _, rest = path.partition('.')
        result_fields.append(head)
        if rest:
            relation_paths.setdefault(head, []).append(rest)
        else:
            local_requested.append(head)
    result_fields = _unique(result_fields)

    # 2. 可推导字段连同其依赖展开
    needed_local: Dict[str, None] = {}
    needed_derivable: Dict[str, None] = {}
    for name in _unique(local_requested):
        definition = model.get_field_definition(name)
        if definition is None:
            raise UnknownFieldError(model.name, name)
        if not definition.derivable:
            needed_local[name] = None
            continue
        for dep in model.get_all_field_dependencies(name):
            dep_definition = model.get_field_definition(dep)
            if dep_definition is not None and dep_definition.derivable:
                needed_derivable[dep] = None
            else:
                needed_local[dep] = None
        needed_derivable[name] = None

    # 3. 关系：本端键进入 needed_local，对端键进入子路径
    relations: List[RelationPlan] = []
    for alias, sub_paths in relation_paths.items():
        relation = model.get_relation(alias)
        if relation is None:
            if model.get_field_definition(alias) is not None:
                raise UnknownFieldError(model.name, f"{alias}.{sub_paths[0]}")
            raise UnknownRelationError(model.name, alias)
        if len(relation.local_fields) != 1 or len(relation.fk_fields) != 1:
            raise CompositeKeyError(model.name, alias, relation.local_fields)

        for name in relation.local_fields:
            needed_local[name] = None

        requested = _unique([p.partition('.')[0] for p in sub_paths])
        partner = build_plan(relation.ext_model, _unique(list(sub_paths) + list(relation.fk_fields)))
        junction = None
        if relation.junction_model is not None:
            junction = build_plan(
                relation.junction_model,
                list(relation.junction_local_fields) + list(relation.junction_fk_fields)
            )
        relations.append(RelationPlan(alias, relation, requested, partner, junction))

    return QueryPlan(
        model=model,
        result_fields=result_fields,
        query_fields=list(needed_local),
        derivable_fields=_order_derivable(model, list(needed_derivable)),
        relations=relations,
    )


def _order_derivable(model: 'Model', names: List[str]) -> List[str]:
    """按依赖排序：每个字段排在依赖它的字段之后"""
    wanted = set(names)
    ordered: Dict[str, None] = {}
    for name in names:
        for dep in model.get_all_field_dependencies(name):
            if dep in wanted:
                ordered[dep] = None
        ordered[name] = None
    return list(ordered)


def get_all(
    model: 'Model',
    field_paths: Sequence[str],
    options: Optional[GetAllOptions] = None,
    ctx: Optional[Context] = None
) -> Data:
    """
    解析字段路径并返回嵌套结果

    Args:
        model: 根模型
        field_paths: 字段路径列表
        options: 根模型的过滤/排序/分页选项
        ctx: 调用上下文
    """
    ctx = ensure_context(ctx)
    options = options or GetAllOptions()
    plan = build_plan(model, field_paths)
    logger.debug(
        "%s: plan query=%s derivable=%s relations=%s",
        model.name, plan.query_fields, plan.derivable_fields, [r.alias for r in plan.relations]
    )
    return _execute(plan, ctx, options)


def _execute(plan: QueryPlan, ctx: Context, options: GetAllOptions) -> Data:
    model = plan.model

    # 4. 本模型一次查询
    ctx.check_cancelled()
    started = time.perf_counter()
    data = model.storage.query(ctx, model, plan.query_fields, options.to_query_options())
    logger.debug(
        "%s: fetched %d rows in %.2f ms", model.name, len(data), (time.perf_counter() - started) * 1000
    )

    # 5. 空结果不再查询关系
    if len(data) == 0:
        return Data(plan.result_fields)

    rows = data.maps()

    # 6. 关系
    if plan.relations:
        indexes = _resolve_relations(plan.relations, rows, ctx, options.max_workers)
        for rel_plan, index in zip(plan.relations, indexes):
            _attach(rel_plan, rows, index)

    # 7. 可推导字段
    if plan.derivable_fields:
        _calc_derivable(plan, rows, ctx)

    # 8. 投影
    return Data(plan.result_fields, [tuple(row.get(name) for name in plan.result_fields) for row in rows])


def _resolve_relations(
    relations: List[RelationPlan],
    rows: List[Row],
    ctx: Context,
    max_workers: Optional[int]
) -> List[RowsIndex]:
    if max_workers and max_workers > 1 and len(relations) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(_resolve_relation, r, rows, ctx, max_workers) for r in relations]
            return [f.result() for f in futures]
    return [_resolve_relation(r, rows, ctx, max_workers) for r in relations]


def _resolve_relation(rel_plan: RelationPlan, rows: List[Row], ctx: Context,
                      max_workers: Optional[int]) -> RowsIndex:
    if rel_plan.junction is not None:
        return _resolve_junction(rel_plan, rel_plan.junction, rows, ctx, max_workers)
    return _resolve_direct(rel_plan, rows, ctx, max_workers)


def _distinct_values(rows: List[Row], name: str) -> List[Any]:
    """去重、去 None，保持首次出现顺序"""
    seen: Dict[str, Any] = {}
    for row in rows:
        value = row.get(name)
        if value is not None:
            seen.setdefault(serialize_key([name], row), value)
    return list(seen.values())


def _in_filter(model: 'Model', name: str, values: List[Any]) -> In:
    return In(ModelField(model, name), tuple(Value(v) for v in values))


def _resolve_direct(rel_plan: RelationPlan, rows: List[Row], ctx: Context,
                    max_workers: Optional[int]) -> RowsIndex:
    """
    直接关联：收集本端键值，对端一次 IN 查询，按对端键分组
    """
    relation = rel_plan.relation

    # 1. 收集本端键值
    values = _distinct_values(rows, relation.local_fields[0])
    if not values:
        return {}

    # 2. 单次递归查询
    partner_data = _execute(
        rel_plan.partner,
        ctx,
        GetAllOptions(
            filter=_in_filter(relation.ext_model, relation.fk_fields[0], values),
            max_workers=max_workers,
        ),
    )

    # 3. 按对端键分组
    grouped: RowsIndex = {}
    for partner_row in partner_data.maps():
        grouped.setdefault(serialize_key(relation.fk_fields, partner_row), []).append(partner_row)
    return grouped


def _resolve_junction(rel_plan: RelationPlan, junction_plan: QueryPlan, rows: List[Row],
                      ctx: Context, max_workers: Optional[int]) -> RowsIndex:
    """
    经由中间模型关联：中间模型一次查询，对端一次查询（按对端键排序）
    """
    relation = rel_plan.relation
    junction_model = junction_plan.model

    # 1. 查询中间模型
    values = _distinct_values(rows, relation.local_fields[0])
    if not values:
        return {}
    junction_data = _execute(
        junction_plan,
        ctx,
        GetAllOptions(filter=_in_filter(junction_model, relation.junction_local_fields[0], values)),
    )
    if len(junction_data) == 0:
        return {}

    # 2. 对端键 -> [本端键]
    junction_rows = junction_data.maps()
    local_keys_by_partner: Dict[str, List[str]] = {}
    for junction_row in junction_rows:
        local_keys_by_partner.setdefault(
            serialize_key(relation.junction_fk_fields, junction_row), []
        ).append(serialize_key(relation.junction_local_fields, junction_row))

    # 3. 查询对端
    partner_values = _distinct_values(junction_rows, relation.junction_fk_fields[0])
    partner_data = _execute(
        rel_plan.partner,
        ctx,
        GetAllOptions(
            filter=_in_filter(relation.ext_model, relation.fk_fields[0], partner_values),
            order_by=[Order(name) for name in relation.fk_fields],
            max_workers=max_workers,
        ),
    )

    # 4. 组合为 本端键 -> [对端行]
    grouped: RowsIndex = {}
    for partner_row in partner_data.maps():
        for local_key in local_keys_by_partner.get(serialize_key(relation.fk_fields, partner_row), []):
            grouped.setdefault(local_key, []).append(partner_row)
    return grouped


def _attach(rel_plan: RelationPlan, rows: List[Row], index: RowsIndex) -> None:
    """把对端行（只保留请求的标识，每次新建字典）挂到本端行上"""
    relation = rel_plan.relation
    for row in rows:
        matches = index.get(serialize_key(relation.local_fields, row), [])
        projected = [{name: match.get(name) for name in rel_plan.requested} for match in matches]
        if relation.is_to_many:
            row[rel_plan.alias] = projected
        else:
            row[rel_plan.alias] = projected[0] if projected else None


def _calc_derivable(plan: QueryPlan, rows: List[Row], ctx: Context) -> None:
    model = plan.model
    prepare = model.options.prepare_derivable
    if prepare is not None:
        prepare(ctx, model, list(plan.derivable_fields), rows)

    definitions = [model.get_field_definition(name) for name in plan.derivable_fields]
    for row in rows:
        for definition in definitions:
            if definition is not None:
                row[definition.name] = definition.calc(row, ctx)
