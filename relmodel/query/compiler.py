"""
relmodel SQL 编译器

把表达式树翻译为带 `?` 占位符的 SQL WHERE 片段（SQLite 方言）：

    compiled = SqlCompiler().compile(expr.lt(user.field_expr('id'), 4))
    compiled.sql     # '"user"."id" < ?'
    compiled.params  # [4]

相等比较使用 IS / IS NOT，与内存求值器的 None 语义一致（None 只与 None 相等）。
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, List, Tuple, TYPE_CHECKING

from ..core.relation import find_relation
from .expressions import Expression, ExpressionProcessor, Value

if TYPE_CHECKING:
    from ..core.model import Model

# 处理方法返回 (SQL 片段, 参数列表)
Fragment = Tuple[str, List[Any]]

FALSE_SQL = '0 = 1'


@dataclass
class CompiledQuery:
    """编译结果"""
    sql: str
    params: List[Any] = field(default_factory=list)


def quote_identifier(name: str) -> str:
    """双引号标识符，内部的双引号加倍"""
    return '"' + name.replace('"', '""') + '"'


def column_ref(model_name: str, field_name: str) -> str:
    return f"{quote_identifier(model_name)}.{quote_identifier(field_name)}"


def to_sql_value(value: Any) -> Any:
    """Python 值转换为 sqlite3 参数（bool -> int，日期 -> ISO 文本）"""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class SqlCompiler(ExpressionProcessor):
    """SQL 编译处理器"""

    def compile(self, expression: Expression) -> CompiledQuery:
        sql, params = self.process(expression)
        return CompiledQuery(sql, params)

    def _binary(self, op1: Expression, op2: Expression, operator: str) -> Fragment:
        sql1, params1 = self.process(op1)
        sql2, params2 = self.process(op2)
        return f"{sql1} {operator} {sql2}", params1 + params2

    def eq(self, op1: Expression, op2: Expression) -> Fragment:
        return self._binary(op1, op2, 'IS')

    def ne(self, op1: Expression, op2: Expression) -> Fragment:
        return self._binary(op1, op2, 'IS NOT')

    def lt(self, op1: Expression, op2: Expression) -> Fragment:
        return self._binary(op1, op2, '<')

    def le(self, op1: Expression, op2: Expression) -> Fragment:
        return self._binary(op1, op2, '<=')

    def gt(self, op1: Expression, op2: Expression) -> Fragment:
        return self._binary(op1, op2, '>')

    def ge(self, op1: Expression, op2: Expression) -> Fragment:
        return self._binary(op1, op2, '>=')

    def in_(self, op: Expression, values: Tuple[Expression, ...]) -> Fragment:
        if not values:
            return FALSE_SQL, []

        sql, params = self.process(op)
        candidates: List[str] = []
        has_null = False
        for v in values:
            if isinstance(v, Value) and v.data is None:
                has_null = True
                continue
            candidate_sql, candidate_params = self.process(v)
            candidates.append(candidate_sql)
            params = params + candidate_params

        parts: List[str] = []
        if candidates:
            parts.append(f"{sql} IN ({', '.join(candidates)})")
        if has_null:
            parts.append(f"{sql} IS NULL")
            if candidates:
                # op 的参数在 IS NULL 分支中再出现一次
                params = params + self.process(op)[1]
        if len(parts) == 1:
            return parts[0], params
        return f"({' OR '.join(parts)})", params

    def _join(self, operands: Tuple[Expression, ...], operator: str) -> Fragment:
        parts: List[str] = []
        params: List[Any] = []
        for op in operands:
            sql, op_params = self.process(op)
            parts.append(sql)
            params.extend(op_params)
        return f"({f' {operator} '.join(parts)})", params

    def and_(self, operands: Tuple[Expression, ...]) -> Fragment:
        return self._join(operands, 'AND')

    def or_(self, operands: Tuple[Expression, ...]) -> Fragment:
        return self._join(operands, 'OR')

    def any_(self, local_model: 'Model', ext_model: 'Model', filter: Expression) -> Fragment:
        """
        相关子查询

        直接关联：
            EXISTS (SELECT 1 FROM ext WHERE ext.fk = local.pk AND (filter))
        经由中间模型：
            EXISTS (SELECT 1 FROM junction JOIN ext ON ext.fk = junction.fk2
                    WHERE junction.fk1 = local.pk AND (filter))
        """
        relation = find_relation(local_model, ext_model)
        filter_sql, params = self.process(filter)
        ext = quote_identifier(ext_model.name)

        if relation.junction_model is None:
            join_conditions = [
                f"{column_ref(ext_model.name, fk)} = {column_ref(local_model.name, local)}"
                for local, fk in zip(relation.local_fields, relation.fk_fields)
            ]
            where = ' AND '.join(join_conditions + [f"({filter_sql})"])
            return f"EXISTS (SELECT 1 FROM {ext} WHERE {where})", params

        junction_name = relation.junction_model.name
        on = ' AND '.join(
            f"{column_ref(ext_model.name, fk)} = {column_ref(junction_name, jfk)}"
            for fk, jfk in zip(relation.fk_fields, relation.junction_fk_fields)
        )
        join_conditions = [
            f"{column_ref(junction_name, jl)} = {column_ref(local_model.name, local)}"
            for local, jl in zip(relation.local_fields, relation.junction_local_fields)
        ]
        where = ' AND '.join(join_conditions + [f"({filter_sql})"])
        return (
            f"EXISTS (SELECT 1 FROM {quote_identifier(junction_name)} JOIN {ext} ON {on} WHERE {where})",
            params,
        )

    def model_field(self, model: 'Model', field_name: str) -> Fragment:
        return column_ref(model.name, field_name), []

    def value(self, data: Any) -> Fragment:
        if data is None:
            return 'NULL', []
        return '?', [to_sql_value(data)]
