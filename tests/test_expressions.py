"""
表达式树与内存求值器测试

覆盖范围：
- 构造函数对普通值的包装
- 比较运算的类型族约束和 None 语义
- AND / OR / IN 的求值
- ExistsAny 经由存储适配器查找关联记录
- 处理器协议的完整性
"""

from datetime import date, datetime
from typing import Any, Dict

import pytest

from relmodel import FilterTypeError, GetAllOptions, UnsupportedOperationError, expr
from relmodel.query import (
    And,
    Eq,
    ExpressionProcessor,
    In,
    InMemoryEvaluator,
    ModelField,
    Value,
)
from relmodel.query.evaluator import kind_family

from scenario import Scenario


def _eval(expression: Any, row: Dict[str, Any]) -> Any:
    return InMemoryEvaluator().compile(expression)(row)


class TestBuilders:
    """构造函数"""

    def test_values_are_wrapped(self, scenario: Scenario) -> None:
        node = expr.eq(scenario.user.field_expr('id'), 1)
        assert isinstance(node, Eq)
        assert node.op2 == Value(1)
        assert isinstance(node.op1, ModelField)

    def test_expressions_not_rewrapped(self) -> None:
        assert expr.lt(Value(1), Value(2)).op1 == Value(1)

    def test_in_values(self, scenario: Scenario) -> None:
        node = expr.in_(scenario.user.field_expr('id'), [1, 2])
        assert isinstance(node, In)
        assert node.values == (Value(1), Value(2))

    def test_and_is_n_ary(self) -> None:
        node = expr.and_(Value(True), Value(True), Value(False))
        assert isinstance(node, And)
        assert len(node.operands) == 3

    def test_nodes_are_immutable(self) -> None:
        node = expr.eq(Value(1), Value(1))
        with pytest.raises(AttributeError):
            node.op1 = Value(2)  # type: ignore[misc]

    def test_model_field_repr(self, scenario: Scenario) -> None:
        assert repr(scenario.user.field_expr('name')) == 'ModelField(user.name)'


class TestComparisons:
    """比较运算"""

    @pytest.mark.parametrize('expression, expected', [
        (expr.eq(Value(1), Value(1)), True),
        (expr.eq(Value(1), Value(1.0)), True),
        (expr.ne(Value('a'), Value('b')), True),
        (expr.lt(Value(1), Value(2)), True),
        (expr.lt(Value(1), Value(2.5)), True),
        (expr.gt(Value(2.5), Value(3)), False),
        (expr.le(Value(2), Value(2)), True),
        (expr.gt(Value('b'), Value('a')), True),
        (expr.ge(Value(1), Value(2)), False),
        (expr.lt(Value(date(2020, 1, 1)), Value(date(2021, 1, 1))), True),
        (expr.eq(Value(datetime(2020, 1, 1, 10)), Value(datetime(2020, 1, 1, 10))), True),
    ])
    def test_same_family(self, expression: Any, expected: bool) -> None:
        assert _eval(expression, {}) is expected

    def test_field_reference(self) -> None:
        node = expr.gt(ModelField(None, 'age'), Value(18))  # type: ignore[arg-type]
        assert _eval(node, {'age': 20}) is True
        assert _eval(node, {'age': 10}) is False

    def test_none_equality(self) -> None:
        assert _eval(expr.eq(Value(None), Value(None)), {}) is True
        assert _eval(expr.eq(Value(None), Value(1)), {}) is False
        assert _eval(expr.ne(Value(None), Value(1)), {}) is True

    def test_none_ordering_fails(self) -> None:
        with pytest.raises(FilterTypeError):
            _eval(expr.lt(Value(None), Value(1)), {})

    @pytest.mark.parametrize('left, right', [
        (1, '1'),
        (True, 1),
        (date(2020, 1, 1), datetime(2020, 1, 1)),
        (b'a', 'a'),
    ])
    def test_mixed_families_fail(self, left: Any, right: Any) -> None:
        with pytest.raises(FilterTypeError):
            _eval(expr.eq(Value(left), Value(right)), {})

    def test_unsupported_type(self) -> None:
        with pytest.raises(FilterTypeError):
            kind_family(object())


class TestLogical:
    """AND / OR / IN"""

    def test_and(self) -> None:
        assert _eval(expr.and_(Value(True), Value(True)), {}) is True
        assert _eval(expr.and_(Value(True), Value(False), Value(True)), {}) is False

    def test_or(self) -> None:
        assert _eval(expr.or_(Value(False), Value(True)), {}) is True
        assert _eval(expr.or_(Value(False), Value(False)), {}) is False

    def test_non_bool_operand(self) -> None:
        with pytest.raises(FilterTypeError, match='must have bool type'):
            _eval(expr.and_(Value(1), Value(True)), {})

    def test_short_circuit(self) -> None:
        """AND 遇到 False 后不再求值后续操作数"""
        assert _eval(expr.and_(Value(False), Value('not bool')), {}) is False

    def test_in(self) -> None:
        node = expr.in_(ModelField(None, 'id'), [1, 2, 3])  # type: ignore[arg-type]
        assert _eval(node, {'id': 2}) is True
        assert _eval(node, {'id': 4}) is False

    def test_in_with_none(self) -> None:
        node = expr.in_(ModelField(None, 'id'), [1, None])  # type: ignore[arg-type]
        assert _eval(node, {'id': None}) is True
        assert _eval(node, {'id': 2}) is False

    def test_empty_in(self) -> None:
        assert _eval(expr.in_(Value(1), []), {}) is False

    def test_matches(self) -> None:
        evaluator = InMemoryEvaluator()
        assert evaluator.matches(None, {})
        assert evaluator.matches(expr.eq(Value(1), Value(1)), {})
        with pytest.raises(FilterTypeError):
            evaluator.matches(Value(1), {})

    def test_filter_rows(self) -> None:
        rows = [{'id': 1}, {'id': 2}, {'id': 3}]
        node = expr.ge(ModelField(None, 'id'), 2)  # type: ignore[arg-type]
        assert InMemoryEvaluator().filter_rows(node, rows) == [{'id': 2}, {'id': 3}]
        assert InMemoryEvaluator().filter_rows(None, rows) == rows


class TestExistsAny:
    """相关子查询"""

    def test_requires_storage(self, scenario: Scenario) -> None:
        node = expr.any_(scenario.user, scenario.message, Value(True))
        with pytest.raises(UnsupportedOperationError):
            InMemoryEvaluator().compile(node)

    def test_one_to_many(self, scenario: Scenario) -> None:
        s = scenario
        flt = expr.any_(s.user, s.message, expr.eq(s.message.field_expr('text'), 'Message 4'))
        assert s.user.get_all(['id'], GetAllOptions(filter=flt)).column('id') == [2]

    def test_many_to_one(self, scenario: Scenario) -> None:
        s = scenario
        flt = expr.any_(s.message, s.user, expr.eq(s.user.field_expr('name'), 'Ivan'))
        assert s.message.get_all(['id'], GetAllOptions(filter=flt)).column('id') == [10, 20, 30]

    def test_many_to_many(self, scenario: Scenario) -> None:
        s = scenario
        flt = expr.any_(s.user, s.address, expr.eq(s.address.field_expr('city'), 'Crowley'))
        assert s.user.get_all(['id'], GetAllOptions(filter=flt)).column('id') == [2, 3]

    def test_no_relation(self, scenario: Scenario) -> None:
        s = scenario
        flt = expr.any_(s.phone, s.message, Value(True))
        with pytest.raises(UnsupportedOperationError):
            s.phone.get_all(['id'], GetAllOptions(filter=flt))


class TestProcessorProtocol:
    """处理器协议"""

    def test_incomplete_processor_cannot_be_instantiated(self) -> None:
        class EqOnly(ExpressionProcessor):
            def eq(self, op1: Any, op2: Any) -> Any:
                return 'eq'

        with pytest.raises(TypeError):
            EqOnly()  # type: ignore[abstract]

    def test_unknown_node(self) -> None:
        with pytest.raises(UnsupportedOperationError):
            InMemoryEvaluator().process('not a node')  # type: ignore[arg-type]

    def test_accept(self) -> None:
        fn = expr.eq(Value(1), Value(1)).accept(InMemoryEvaluator())
        assert fn({}) is True
