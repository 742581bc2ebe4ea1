"""
异常处理测试

测试方法：
- 等价类划分：各异常类型的触发条件
- 错误推断：异常继承关系和属性

覆盖范围：
- 异常继承层次结构
- 异常消息和属性
- to_dict 序列化
"""

import pytest

from relmodel import (
    RelmodelException,
    ConfigurationError,
    DuplicateModelError,
    DuplicateFieldError,
    UnknownFieldError,
    UnknownRelationError,
    CyclicDependencyError,
    RegistryFrozenError,
    ValidationError,
    FieldValidationError,
    AuthorizationError,
    StorageError,
    DuplicateKeyError,
    FilterTypeError,
    SerializationError,
    UnsupportedOperationError,
    CompositeKeyError,
    OperationCancelledError,
)


class TestExceptionHierarchy:
    """异常继承关系测试"""

    def test_all_exceptions_inherit_from_base(self) -> None:
        """所有异常都继承自 RelmodelException"""
        exception_classes = [
            ConfigurationError,
            DuplicateModelError,
            DuplicateFieldError,
            UnknownFieldError,
            UnknownRelationError,
            CyclicDependencyError,
            RegistryFrozenError,
            ValidationError,
            FieldValidationError,
            AuthorizationError,
            StorageError,
            DuplicateKeyError,
            FilterTypeError,
            SerializationError,
            UnsupportedOperationError,
            CompositeKeyError,
            OperationCancelledError,
        ]
        for exc_class in exception_classes:
            assert issubclass(exc_class, RelmodelException), \
                f"{exc_class.__name__} should inherit from RelmodelException"

    @pytest.mark.parametrize('exc_class', [
        DuplicateModelError,
        DuplicateFieldError,
        UnknownFieldError,
        UnknownRelationError,
        CyclicDependencyError,
        RegistryFrozenError,
    ])
    def test_configuration_errors(self, exc_class: type) -> None:
        assert issubclass(exc_class, ConfigurationError)

    def test_field_validation_is_validation(self) -> None:
        assert issubclass(FieldValidationError, ValidationError)

    def test_duplicate_key_is_storage(self) -> None:
        assert issubclass(DuplicateKeyError, StorageError)

    def test_composite_key_is_unsupported(self) -> None:
        assert issubclass(CompositeKeyError, UnsupportedOperationError)


class TestExceptionAttributes:
    """异常属性测试"""

    def test_unknown_field(self) -> None:
        e = UnknownFieldError('user', 'age')
        assert e.model_id == 'user'
        assert e.field_name == 'age'
        assert "Unknown field 'age' in model 'user'" == str(e)

    def test_unknown_relation(self) -> None:
        e = UnknownRelationError('user', 'orders')
        assert e.alias == 'orders'
        assert e.details == {'alias': 'orders'}

    def test_cyclic_dependency(self) -> None:
        e = CyclicDependencyError('m', ['a', 'b', 'a'])
        assert e.cycle == ['a', 'b', 'a']
        assert e.field_name == 'a'
        assert 'a -> b -> a' in e.message

    def test_field_validation_row_index(self) -> None:
        e = FieldValidationError('user', 'name', 'bad', row_index=3)
        assert e.row_index == 3
        assert e.details == {'row_index': 3}

        e = FieldValidationError('user', 'name', 'bad')
        assert e.row_index is None
        assert e.details == {}

    def test_authorization(self) -> None:
        e = AuthorizationError('doc', 'doc.add', 'add')
        assert e.permission_id == 'doc.add'
        assert e.operation == 'add'
        assert "permission 'doc.add'" in str(e)

    def test_duplicate_key(self) -> None:
        e = DuplicateKeyError('user', (1,))
        assert e.pk == (1,)
        assert e.model_id == 'user'

    def test_composite_key(self) -> None:
        e = CompositeKeyError('office', 'area', ['fk_area_country', 'fk_area_code'])
        assert e.details['key_fields'] == ['fk_area_country', 'fk_area_code']
        assert e.details['alias'] == 'area'

    def test_catch_as_base(self) -> None:
        with pytest.raises(RelmodelException):
            raise OperationCancelledError("Operation was cancelled")


class TestToDict:
    """to_dict 序列化测试"""

    def test_minimal(self) -> None:
        assert StorageError('boom').to_dict() == {'error': 'StorageError', 'message': 'boom'}

    def test_full(self) -> None:
        result = FieldValidationError('user', 'name', 'bad', row_index=0).to_dict()
        assert result == {
            'error': 'FieldValidationError',
            'message': 'bad',
            'model_id': 'user',
            'field_name': 'name',
            'details': {'row_index': 0},
        }
