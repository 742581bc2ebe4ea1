"""
relmodel 过滤表达式树

表达式节点是不可变的值对象，本身不包含任何求值逻辑。
每种存储后端实现一个 ExpressionProcessor，把同一棵表达式树翻译成自己的形式
（内存求值函数、SQL 片段等），表达式的构造与后端无关。

    from relmodel.query import expressions as expr

    flt = expr.and_(
        expr.lt(user.field_expr('id'), expr.Value(4)),
        expr.in_(user.field_expr('name'), ['Ivan', 'Petr']),
    )
    evaluator = InMemoryEvaluator()
    fn = flt.accept(evaluator)
    fn(row)  # -> True / False
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Tuple, Type, Union, TYPE_CHECKING

from ..common.exceptions import UnsupportedOperationError

if TYPE_CHECKING:
    from ..core.model import Model


class _Node:
    """表达式节点基类"""

    def accept(self, processor: 'ExpressionProcessor') -> Any:
        """交给处理器翻译本节点"""
        return processor.process(self)  # type: ignore[arg-type]


@dataclass(frozen=True)
class _Binary(_Node):
    op1: 'Expression'
    op2: 'Expression'


@dataclass(frozen=True)
class Eq(_Binary):
    """op1 == op2"""


@dataclass(frozen=True)
class Ne(_Binary):
    """op1 != op2"""


@dataclass(frozen=True)
class Lt(_Binary):
    """op1 < op2"""


@dataclass(frozen=True)
class Le(_Binary):
    """op1 <= op2"""


@dataclass(frozen=True)
class Gt(_Binary):
    """op1 > op2"""


@dataclass(frozen=True)
class Ge(_Binary):
    """op1 >= op2"""


@dataclass(frozen=True)
class In(_Node):
    """op IN (values...)"""
    op: 'Expression'
    values: Tuple['Expression', ...]


@dataclass(frozen=True)
class And(_Node):
    """n 元 AND"""
    operands: Tuple['Expression', ...]


@dataclass(frozen=True)
class Or(_Node):
    """n 元 OR"""
    operands: Tuple['Expression', ...]


@dataclass(frozen=True)
class ExistsAny(_Node):
    """
    相关子查询：存在至少一条与当前 local_model 行关联、且满足 filter 的 ext_model 行
    """
    local_model: 'Model'
    ext_model: 'Model'
    filter: 'Expression'


@dataclass(frozen=True)
class ModelField(_Node):
    """字段引用"""
    model: 'Model'
    field_name: str

    def __repr__(self) -> str:
        return f"ModelField({self.model.name}.{self.field_name})"


@dataclass(frozen=True)
class Value(_Node):
    """字面量"""
    data: Any


Expression = Union[Eq, Ne, Lt, Le, Gt, Ge, In, And, Or, ExistsAny, ModelField, Value]


class ExpressionProcessor(ABC):
    """
    表达式处理器协议

    每种节点对应一个抽象方法，缺少任何一种节点的处理器都无法实例化。
    process() 按节点类型分发，返回值的含义由具体处理器决定。
    """

    _DISPATCH: Dict[Type[_Node], Callable[..., Any]] = {
        Eq: lambda p, e: p.eq(e.op1, e.op2),
        Ne: lambda p, e: p.ne(e.op1, e.op2),
        Lt: lambda p, e: p.lt(e.op1, e.op2),
        Le: lambda p, e: p.le(e.op1, e.op2),
        Gt: lambda p, e: p.gt(e.op1, e.op2),
        Ge: lambda p, e: p.ge(e.op1, e.op2),
        In: lambda p, e: p.in_(e.op, e.values),
        And: lambda p, e: p.and_(e.operands),
        Or: lambda p, e: p.or_(e.operands),
        ExistsAny: lambda p, e: p.any_(e.local_model, e.ext_model, e.filter),
        ModelField: lambda p, e: p.model_field(e.model, e.field_name),
        Value: lambda p, e: p.value(e.data),
    }

    def process(self, node: 'Expression') -> Any:
        """按节点类型分发到对应的处理方法"""
        handler = self._DISPATCH.get(type(node))
        if handler is None:
            raise UnsupportedOperationError(f"Unknown expression node: {type(node).__name__}")
        return handler(self, node)

    @abstractmethod
    def eq(self, op1: 'Expression', op2: 'Expression') -> Any: ...

    @abstractmethod
    def ne(self, op1: 'Expression', op2: 'Expression') -> Any: ...

    @abstractmethod
    def lt(self, op1: 'Expression', op2: 'Expression') -> Any: ...

    @abstractmethod
    def le(self, op1: 'Expression', op2: 'Expression') -> Any: ...

    @abstractmethod
    def gt(self, op1: 'Expression', op2: 'Expression') -> Any: ...

    @abstractmethod
    def ge(self, op1: 'Expression', op2: 'Expression') -> Any: ...

    @abstractmethod
    def in_(self, op: 'Expression', values: Tuple['Expression', ...]) -> Any: ...

    @abstractmethod
    def and_(self, operands: Tuple['Expression', ...]) -> Any: ...

    @abstractmethod
    def or_(self, operands: Tuple['Expression', ...]) -> Any: ...

    @abstractmethod
    def any_(self, local_model: 'Model', ext_model: 'Model', filter: 'Expression') -> Any: ...

    @abstractmethod
    def model_field(self, model: 'Model', field_name: str) -> Any: ...

    @abstractmethod
    def value(self, data: Any) -> Any: ...


# ========== 构造函数 ==========

def _wrap(value: Any) -> 'Expression':
    """非表达式值包装为 Value"""
    if isinstance(value, _Node):
        return value  # type: ignore[return-value]
    return Value(value)


def eq(op1: Any, op2: Any) -> Eq:
    return Eq(_wrap(op1), _wrap(op2))


def ne(op1: Any, op2: Any) -> Ne:
    return Ne(_wrap(op1), _wrap(op2))


def lt(op1: Any, op2: Any) -> Lt:
    return Lt(_wrap(op1), _wrap(op2))


def le(op1: Any, op2: Any) -> Le:
    return Le(_wrap(op1), _wrap(op2))


def gt(op1: Any, op2: Any) -> Gt:
    return Gt(_wrap(op1), _wrap(op2))


def ge(op1: Any, op2: Any) -> Ge:
    return Ge(_wrap(op1), _wrap(op2))


def in_(op: Any, values: Iterable[Any]) -> In:
    """
    创建 IN 表达式

    Args:
        op: 被比较的操作数（通常是 ModelField）
        values: 候选值，普通值会被包装为 Value
    """
    return In(_wrap(op), tuple(_wrap(v) for v in values))


def and_(op1: 'Expression', op2: 'Expression', *extra: 'Expression') -> And:
    """n 元 AND（至少 2 个操作数）"""
    return And((op1, op2) + tuple(extra))


def or_(op1: 'Expression', op2: 'Expression', *extra: 'Expression') -> Or:
    """n 元 OR（至少 2 个操作数）"""
    return Or((op1, op2) + tuple(extra))


def any_(local_model: 'Model', ext_model: 'Model', filter: 'Expression') -> ExistsAny:
    return ExistsAny(local_model, ext_model, filter)
