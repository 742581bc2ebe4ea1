"""
关联查询解析（get_all）测试

覆盖：
- 参考场景的完整嵌套结果
- 每个关系只做一次存储调用（与行数无关）
- 可推导字段每行只计算一次、按依赖顺序计算
- 空结果不查询关系
- 规划期错误（未知字段/别名、复合键）不触发任何存储调用
- 多层嵌套、反向关系、中间模型预加载、并发分支、取消
- 存储错误中止整个调用
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from relmodel import (
    CompositeKeyError,
    Context,
    DerivableField,
    FilterTypeError,
    GetAllOptions,
    IntField,
    Model,
    ModelOptions,
    OperationCancelledError,
    Order,
    StorageError,
    StringField,
    UnknownFieldError,
    UnknownRelationError,
    add_many_to_one,
    expr,
)
from relmodel.common.options import QueryOptions
from relmodel.core.data import Data

from scenario import EXPECTED_USERS, USER_FIELDS, CountingStorage, Scenario, build_scenario


def _id_lt(s: Scenario, value: int) -> GetAllOptions:
    return GetAllOptions(filter=expr.lt(s.user.field_expr('id'), value))


class TestGetAllScenario:
    """参考场景"""

    def test_nested_result(self, scenario: Scenario) -> None:
        """一对一、一对多、多对多同时请求"""
        data = scenario.user.get_all(USER_FIELDS, _id_lt(scenario, 4))

        assert data.fields() == ['id', 'lastname', 'fullname', 'phone', 'message', 'address']
        assert data.maps() == EXPECTED_USERS

    def test_storage_round_trips(self, scenario: Scenario, storage: CountingStorage) -> None:
        """本模型一次，每个关系一次，多对多两次"""
        scenario.user.get_all(USER_FIELDS, _id_lt(scenario, 4))

        assert storage.queries == ['user', 'phone', 'message', '_junction__user__address', 'address']

    @pytest.mark.parametrize('limit', [1, 2, 3, 4, 5, 6])
    def test_no_n_plus_one(self, scenario: Scenario, storage: CountingStorage, limit: int) -> None:
        """关系查询次数与行数无关"""
        data = scenario.user.get_all(USER_FIELDS, _id_lt(scenario, limit + 1))

        assert len(data) == min(limit, 5)
        assert storage.count('user') == 1
        assert storage.count('phone') == 1
        assert storage.count('message') == 1
        assert storage.count('address') == 1

    def test_concurrent_branches(self, scenario: Scenario) -> None:
        """max_workers 并发执行关系分支，结果不变"""
        options = _id_lt(scenario, 4)
        options.max_workers = 4

        assert scenario.user.get_all(USER_FIELDS, options).maps() == EXPECTED_USERS

    def test_partner_rows_are_fresh_copies(self, scenario: Scenario) -> None:
        """同一对端行挂到不同本端行时是不同的字典"""
        rows = scenario.user.get_all(['id', 'address.city'], _id_lt(scenario, 3)).maps()

        shared_1 = rows[0]['address'][1]
        shared_2 = rows[1]['address'][0]
        assert shared_1 == shared_2 == {'city': 'Fort Worth'}
        assert shared_1 is not shared_2

    def test_partner_key_not_leaked(self, scenario: Scenario) -> None:
        """对端行只包含请求的标识（不含内部追加的连接键）"""
        rows = scenario.user.get_all(['id', 'message.text'], _id_lt(scenario, 2)).maps()

        assert rows[0]['message'][0] == {'text': 'Message 1'}

    def test_projection_order(self, scenario: Scenario) -> None:
        """结果列按请求的顶层标识首次出现的顺序"""
        data = scenario.user.get_all(['fullname', 'address.city', 'id', 'address.country'], _id_lt(scenario, 2))

        assert data.fields() == ['fullname', 'address', 'id']
        assert data.maps()[0]['address'][0] == {'city': 'Arlington', 'country': 'USA'}

    def test_order_and_limit_pass_through(self, scenario: Scenario) -> None:
        data = scenario.user.get_all(['id'], GetAllOptions(order_by=[Order('id', desc=True)], limit=2))

        assert data.column('id') == [5, 4]

    def test_offset(self, scenario: Scenario) -> None:
        data = scenario.user.get_all(['id'], GetAllOptions(order_by=[Order('id')], offset=3))

        assert data.column('id') == [4, 5]


class TestEmptyAndMissing:
    """空结果与缺失关联"""

    def test_empty_result_short_circuit(self, scenario: Scenario, storage: CountingStorage) -> None:
        data = scenario.user.get_all(
            ['id', 'phone.formated_number', 'address.city'],
            GetAllOptions(filter=expr.gt(scenario.user.field_expr('id'), 100))
        )

        assert len(data) == 0
        assert data.fields() == ['id', 'phone', 'address']
        assert storage.queries == ['user']

    def test_missing_to_one_is_none(self, scenario: Scenario) -> None:
        rows = scenario.user.get_all(['id', 'phone.number'], _id_lt(scenario, 3)).maps()

        assert rows[0]['phone'] == {'number': 1111111}
        assert rows[1]['phone'] is None

    def test_missing_to_many_is_empty_list(self, scenario: Scenario) -> None:
        rows = scenario.user.get_all(
            ['id', 'message.id'],
            GetAllOptions(filter=expr.eq(scenario.user.field_expr('id'), 5))
        ).maps()

        assert rows == [{'id': 5, 'message': []}]

    def test_null_fk_skips_partner_query(self, scenario: Scenario, storage: CountingStorage) -> None:
        """所有本端键为 None 时不查询对端"""
        scenario.message.add_multi([{'id': 50, 'text': 'Orphan'}])
        storage.queries.clear()

        rows = scenario.message.get_all(
            ['id', 'user.name'],
            GetAllOptions(filter=expr.eq(scenario.message.field_expr('id'), 50))
        ).maps()

        assert rows == [{'id': 50, 'user': None}]
        assert storage.queries == ['message']


class TestPlanningErrors:
    """规划期错误：在任何存储调用之前失败"""

    def test_unknown_alias(self, scenario: Scenario, storage: CountingStorage) -> None:
        with pytest.raises(UnknownRelationError) as exc_info:
            scenario.user.get_all(['id', 'nope.x'])

        assert exc_info.value.alias == 'nope'
        assert storage.queries == []

    def test_unknown_local_field(self, scenario: Scenario, storage: CountingStorage) -> None:
        with pytest.raises(UnknownFieldError):
            scenario.user.get_all(['id', 'nope'])
        assert storage.queries == []

    def test_unknown_nested_field(self, scenario: Scenario, storage: CountingStorage) -> None:
        """深层路径的错误同样在查询根模型之前发现"""
        with pytest.raises(UnknownFieldError) as exc_info:
            scenario.user.get_all(['id', 'message.user.nope'])

        assert exc_info.value.model_id == 'user'
        assert storage.queries == []

    def test_field_used_as_alias(self, scenario: Scenario, storage: CountingStorage) -> None:
        with pytest.raises(UnknownFieldError):
            scenario.user.get_all(['name.x'])
        assert storage.queries == []

    def test_composite_key(self, storage: CountingStorage) -> None:
        """关系本端键为多字段时快速失败"""
        area = Model('area', [
            IntField('country'),
            IntField('code'),
            StringField('title'),
        ], storage, ModelOptions(pk_fields=['country', 'code']))
        office = Model('office', [IntField('id'), StringField('name')], storage, ModelOptions(pk_fields=['id']))
        fk_names = add_many_to_one(office, area)

        assert fk_names == ['fk_area_country', 'fk_area_code']
        with pytest.raises(CompositeKeyError):
            office.get_all(['id', 'area.title'])
        with pytest.raises(CompositeKeyError):
            area.get_all(['title', 'office.name'])
        assert storage.queries == []

    def test_junction_model_can_be_eager_loaded(self, scenario: Scenario) -> None:
        """中间模型主键是复合的，但它的关系键是单字段"""
        rows = scenario.junction.get_all(
            ['fk_user_id', 'address.city'],
            GetAllOptions(filter=expr.eq(scenario.junction.field_expr('fk_user_id'), 1))
        ).maps()

        assert rows == [
            {'fk_user_id': 1, 'address': {'city': 'Arlington'}},
            {'fk_user_id': 1, 'address': {'city': 'Fort Worth'}},
        ]

    def test_filter_type_error_propagates(self, scenario: Scenario) -> None:
        with pytest.raises(FilterTypeError):
            scenario.user.get_all(['id'], GetAllOptions(filter=expr.lt(scenario.user.field_expr('name'), 4)))


class TestNestedRelations:
    """多层嵌套与反向关系"""

    def test_many_to_one_then_many_to_many(self, scenario: Scenario, storage: CountingStorage) -> None:
        rows = scenario.message.get_all(
            ['text', 'user.fullname', 'user.address.city'],
            GetAllOptions(filter=expr.eq(scenario.message.field_expr('id'), 40))
        ).maps()

        assert rows == [{
            'text': 'Message 4',
            'user': {
                'fullname': 'Petr Ivanov',
                'address': [{'city': 'Fort Worth'}, {'city': 'Crowley'}],
            },
        }]
        assert storage.queries == ['message', 'user', '_junction__user__address', 'address']

    def test_back_many_to_many(self, scenario: Scenario) -> None:
        """对端按主键排序"""
        rows = scenario.address.get_all(
            ['id', 'user.name'],
            GetAllOptions(filter=expr.in_(scenario.address.field_expr('id'), [200, 400]))
        ).maps()

        assert rows == [
            {'id': 200, 'user': [{'name': 'Ivan'}, {'name': 'Petr'}]},
            {'id': 400, 'user': [{'name': 'John'}]},
        ]

    def test_back_one_to_one(self, scenario: Scenario) -> None:
        rows = scenario.phone.get_all(['id', 'user.lastname']).maps()

        assert rows == [
            {'id': 1, 'user': {'lastname': 'Sidorov'}},
            {'id': 3, 'user': {'lastname': 'Bond'}},
        ]


class TestDerivableFields:
    """可推导字段"""

    def test_calc_once_per_row_in_dependency_order(self, storage: CountingStorage) -> None:
        calls: Dict[str, int] = {'b': 0, 'c': 0}

        def calc_b(row: Dict[str, Any]) -> int:
            calls['b'] += 1
            return row['a'] * 2

        def calc_c(row: Dict[str, Any]) -> int:
            calls['c'] += 1
            return row['b'] + 1

        counter = Model('counter', [
            IntField('id'),
            IntField('a'),
            DerivableField('c', depends_on=['b'], get=calc_c),
            DerivableField('b', depends_on=['a'], get=calc_b),
        ], storage, ModelOptions(pk_fields=['id']))
        counter.add_multi([{'id': i, 'a': i} for i in (1, 2, 3)])

        data = counter.get_all(['c'])

        assert data.fields() == ['c']
        assert data.column('c') == [3, 5, 7]
        assert calls == {'b': 3, 'c': 3}

    def test_prepare_derivable_context_data(self, scenario: Scenario) -> None:
        rows = scenario.address.get_all(
            ['id', 'stringid'],
            GetAllOptions(filter=expr.le(scenario.address.field_expr('id'), 200))
        ).maps()

        assert rows == [{'id': 100, 'stringid': '100'}, {'id': 200, 'stringid': '200'}]

    def test_prepare_derivable_called_once(self, storage: CountingStorage) -> None:
        prepared: List[List[str]] = []

        def prepare(ctx: Context, model: Model, names: List[str], rows: List[Dict[str, Any]]) -> None:
            prepared.append(list(names))

        item = Model('item', [
            IntField('id'),
            DerivableField('double', depends_on=['id'], get=lambda row: row['id'] * 2),
        ], storage, ModelOptions(pk_fields=['id'], prepare_derivable=prepare))
        item.add_multi([{'id': 1}, {'id': 2}])

        assert item.get_all(['double']).column('double') == [2, 4]
        assert prepared == [['double']]

    def test_prepare_derivable_not_called_without_derivable(self, storage: CountingStorage) -> None:
        prepared: List[Any] = []
        item = Model('item', [IntField('id')], storage,
                     ModelOptions(pk_fields=['id'], prepare_derivable=lambda *args: prepared.append(args)))
        item.add_multi([{'id': 1}])

        item.get_all(['id'])

        assert prepared == []


class TestCancellation:
    """取消信号"""

    def test_cancelled_before_first_query(self, scenario: Scenario, storage: CountingStorage) -> None:
        ctx = Context()
        ctx.cancel()

        with pytest.raises(OperationCancelledError):
            scenario.user.get_all(USER_FIELDS, ctx=ctx)
        assert storage.queries == []

    def test_cancelled_between_queries(self, scenario: Scenario, storage: CountingStorage) -> None:
        """在可推导字段准备钩子中取消，后续的关系查询不再执行"""
        ctx = Context()

        def cancel_on_phone(c: Context, model: Model, names: List[str], rows: List[Dict[str, Any]]) -> None:
            c.cancel()

        scenario.phone.options.prepare_derivable = cancel_on_phone

        with pytest.raises(OperationCancelledError):
            scenario.user.get_all(USER_FIELDS, _id_lt(scenario, 4), ctx)
        assert storage.queries == ['user', 'phone']


class FailingStorage(CountingStorage):
    """对指定模型的 query 抛出 StorageError"""

    def __init__(self) -> None:
        super().__init__()
        self.fail_on: Optional[str] = None
        self.error = StorageError('storage is unavailable')

    def query(self, ctx: Any, model: Model, field_names: Sequence[str], options: QueryOptions) -> Data:
        if model.name == self.fail_on:
            with self._count_lock:
                self.queries.append(model.name)
            raise self.error
        return super().query(ctx, model, field_names, options)


class TestStorageErrors:
    """存储错误中止整个调用并原样抛出"""

    def _scenario(self, fail_on: str) -> Tuple[Scenario, FailingStorage]:
        storage = FailingStorage()
        s = build_scenario(storage)
        storage.queries.clear()
        storage.fail_on = fail_on
        return s, storage

    def test_direct_relation_fails(self) -> None:
        s, storage = self._scenario('message')

        with pytest.raises(StorageError) as exc_info:
            s.user.get_all(['id', 'message.text', 'address.city'])

        assert exc_info.value is storage.error
        assert storage.queries == ['user', 'message']

    def test_junction_step_fails(self) -> None:
        s, storage = self._scenario('_junction__user__address')

        with pytest.raises(StorageError) as exc_info:
            s.user.get_all(['id', 'address.city', 'phone.number'])

        assert exc_info.value is storage.error
        assert storage.queries == ['user', '_junction__user__address']

    def test_local_query_fails(self) -> None:
        s, storage = self._scenario('user')

        with pytest.raises(StorageError) as exc_info:
            s.user.get_all(USER_FIELDS)

        assert exc_info.value is storage.error
        assert storage.queries == ['user']
