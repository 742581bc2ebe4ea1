"""
relmodel 查询子系统

包含过滤表达式树、内存求值器和 SQL 编译器
"""

from .expressions import (
    Expression,
    ExpressionProcessor,
    Eq, Ne, Lt, Le, Gt, Ge, In, And, Or, ExistsAny, ModelField, Value,
    eq, ne, lt, le, gt, ge, in_, and_, or_, any_,
)
from .evaluator import InMemoryEvaluator
from .compiler import SqlCompiler, CompiledQuery

__all__ = [
    # Expressions
    'Expression',
    'ExpressionProcessor',
    'Eq', 'Ne', 'Lt', 'Le', 'Gt', 'Ge', 'In', 'And', 'Or', 'ExistsAny', 'ModelField', 'Value',
    'eq', 'ne', 'lt', 'le', 'gt', 'ge', 'in_', 'and_', 'or_', 'any_',
    # Processors
    'InMemoryEvaluator',
    'SqlCompiler',
    'CompiledQuery',
]
