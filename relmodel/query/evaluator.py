"""
relmodel 内存表达式求值器

把表达式树编译为 `row -> value` 的可调用对象，供内存存储适配器过滤记录。
"""

from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from ..common.exceptions import FilterTypeError, UnsupportedOperationError
from .expressions import Expression, ExpressionProcessor

if TYPE_CHECKING:
    from ..core.model import Model

Row = Dict[str, Any]
EvalFunc = Callable[[Row], Any]

# (local_model, ext_model, row) -> 与 row 关联的 ext_model 记录列表
RelatedRowsFunc = Callable[['Model', 'Model', Row], list]


def kind_family(value: Any) -> str:
    """
    获取值的类型族

    bool 必须先于 int 判断（bool 是 int 的子类）。

    Raises:
        FilterTypeError: 值的类型不参与比较
    """
    if isinstance(value, bool):
        return 'bool'
    if isinstance(value, (int, float)):
        return 'number'
    if isinstance(value, str):
        return 'text'
    if isinstance(value, bytes):
        return 'bytes'
    if isinstance(value, datetime):
        return 'datetime'
    if isinstance(value, date):
        return 'date'
    raise FilterTypeError(f"Values of type {type(value).__name__} cannot be compared")


def _check_comparable(v1: Any, v2: Any) -> None:
    k1 = kind_family(v1)
    k2 = kind_family(v2)
    if k1 != k2:
        raise FilterTypeError(
            f"{type(v1).__name__} and {type(v2).__name__} cannot be compared",
            details={'left': repr(v1), 'right': repr(v2)}
        )


def _equals(v1: Any, v2: Any) -> bool:
    """相等比较，None 只与 None 相等"""
    if v1 is None or v2 is None:
        return v1 is None and v2 is None
    _check_comparable(v1, v2)
    return bool(v1 == v2)


def _less(v1: Any, v2: Any) -> bool:
    if v1 is None or v2 is None:
        raise FilterTypeError("NULL cannot be ordered", details={'left': repr(v1), 'right': repr(v2)})
    _check_comparable(v1, v2)
    return bool(v1 < v2)


def _as_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise FilterTypeError(
            f"Invalid filter operand, must have bool type, not {type(value).__name__}"
        )
    return value


class InMemoryEvaluator(ExpressionProcessor):
    """
    内存求值处理器

    每个处理方法返回一个闭包 `row -> value`。比较要求两侧属于同一类型族
    （bool / number / text / bytes / date / datetime），否则抛出 FilterTypeError。

    Args:
        related_rows: 可选的关联记录查找函数，ExistsAny 节点需要它
    """

    def __init__(self, related_rows: Optional[RelatedRowsFunc] = None) -> None:
        self._related_rows = related_rows

    def compile(self, expression: Expression) -> EvalFunc:
        """编译表达式"""
        return self.process(expression)

    def matches(self, expression: Optional[Expression], row: Row) -> bool:
        """判断记录是否满足过滤条件（None 表示不过滤）"""
        if expression is None:
            return True
        return _as_bool(self.compile(expression)(row))

    def filter_rows(self, expression: Optional[Expression], rows: List[Row]) -> List[Row]:
        """过滤记录列表，表达式只编译一次"""
        if expression is None:
            return list(rows)
        fn = self.compile(expression)
        return [row for row in rows if _as_bool(fn(row))]

    def _binary(self, op1: Expression, op2: Expression,
                compare: Callable[[Any, Any], bool]) -> EvalFunc:
        f1 = self.process(op1)
        f2 = self.process(op2)
        return lambda row: compare(f1(row), f2(row))

    def eq(self, op1: Expression, op2: Expression) -> EvalFunc:
        return self._binary(op1, op2, _equals)

    def ne(self, op1: Expression, op2: Expression) -> EvalFunc:
        return self._binary(op1, op2, lambda a, b: not _equals(a, b))

    def lt(self, op1: Expression, op2: Expression) -> EvalFunc:
        return self._binary(op1, op2, _less)

    def le(self, op1: Expression, op2: Expression) -> EvalFunc:
        return self._binary(op1, op2, lambda a, b: not _less(b, a))

    def gt(self, op1: Expression, op2: Expression) -> EvalFunc:
        return self._binary(op1, op2, lambda a, b: _less(b, a))

    def ge(self, op1: Expression, op2: Expression) -> EvalFunc:
        return self._binary(op1, op2, lambda a, b: not _less(a, b))

    def in_(self, op: Expression, values: Tuple[Expression, ...]) -> EvalFunc:
        f = self.process(op)
        candidates = [self.process(v) for v in values]

        def evaluate(row: Row) -> bool:
            v1 = f(row)
            for candidate in candidates:
                if _equals(v1, candidate(row)):
                    return True
            return False

        return evaluate

    def and_(self, operands: Tuple[Expression, ...]) -> EvalFunc:
        funcs = [self.process(op) for op in operands]

        def evaluate(row: Row) -> bool:
            for fn in funcs:
                if not _as_bool(fn(row)):
                    return False
            return True

        return evaluate

    def or_(self, operands: Tuple[Expression, ...]) -> EvalFunc:
        funcs = [self.process(op) for op in operands]

        def evaluate(row: Row) -> bool:
            for fn in funcs:
                if _as_bool(fn(row)):
                    return True
            return False

        return evaluate

    def any_(self, local_model: 'Model', ext_model: 'Model', filter: Expression) -> EvalFunc:
        if self._related_rows is None:
            raise UnsupportedOperationError(
                "ExistsAny requires an evaluator bound to a storage adapter"
            )
        related_rows = self._related_rows
        inner = self.process(filter)

        def evaluate(row: Row) -> bool:
            for ext_row in related_rows(local_model, ext_model, row):
                if _as_bool(inner(ext_row)):
                    return True
            return False

        return evaluate

    def model_field(self, model: 'Model', field_name: str) -> EvalFunc:
        return lambda row: row.get(field_name)

    def value(self, data: Any) -> EvalFunc:
        return lambda row: data
