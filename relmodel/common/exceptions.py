"""
relmodel 异常定义

异常层次：

    RelmodelException
    ├── ConfigurationError        配置错误（启动期/首次使用时抛出，不重试）
    │   ├── DuplicateModelError
    │   ├── DuplicateFieldError
    │   ├── UnknownFieldError
    │   ├── UnknownRelationError
    │   ├── CyclicDependencyError
    │   └── RegistryFrozenError
    ├── ValidationError           数据校验错误（整批中止，不做部分写入）
    │   └── FieldValidationError
    ├── AuthorizationError        无权限（在任何存储调用之前中止）
    ├── StorageError              存储适配器错误（原样透传）
    │   └── DuplicateKeyError
    ├── FilterTypeError           过滤表达式操作数类型不可比较
    ├── SerializationError        连接键序列化失败
    ├── UnsupportedOperationError
    │   └── CompositeKeyError
    └── OperationCancelledError
"""

from typing import Any, Dict, List, Optional


class RelmodelException(Exception):
    """relmodel 基础异常类"""

    def __init__(
        self,
        message: str,
        model_id: Optional[str] = None,
        field_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.model_id = model_id
        self.field_name = field_name
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典（便于序列化到 API 响应或日志）"""
        result: Dict[str, Any] = {
            'error': type(self).__name__,
            'message': self.message,
        }
        if self.model_id is not None:
            result['model_id'] = self.model_id
        if self.field_name is not None:
            result['field_name'] = self.field_name
        if self.details:
            result['details'] = self.details
        return result


# ========== 配置错误 ==========

class ConfigurationError(RelmodelException):
    """配置错误（程序员错误，不应重试）"""


class DuplicateModelError(ConfigurationError):
    """模型标识重复注册"""
    def __init__(self, model_id: str):
        super().__init__(f"Model '{model_id}' is already registered", model_id=model_id)


class DuplicateFieldError(ConfigurationError):
    """字段标识重复"""
    def __init__(self, model_id: str, field_name: str):
        super().__init__(
            f"The model '{model_id}' already has a field '{field_name}'",
            model_id=model_id,
            field_name=field_name
        )


class UnknownFieldError(ConfigurationError):
    """字段不存在"""
    def __init__(self, model_id: str, field_name: str):
        super().__init__(
            f"Unknown field '{field_name}' in model '{model_id}'",
            model_id=model_id,
            field_name=field_name
        )


class UnknownRelationError(ConfigurationError):
    """关系别名不存在"""
    def __init__(self, model_id: str, alias: str):
        self.alias = alias
        super().__init__(
            f"There is no relation between '{model_id}' and '{alias}'",
            model_id=model_id,
            details={'alias': alias}
        )


class CyclicDependencyError(ConfigurationError):
    """可推导字段的依赖存在环"""
    def __init__(self, model_id: str, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(
            f"Cyclic field dependency in model '{model_id}': {' -> '.join(cycle)}",
            model_id=model_id,
            field_name=cycle[0] if cycle else None,
            details={'cycle': list(cycle)}
        )


class RegistryFrozenError(ConfigurationError):
    """注册表已冻结，不再接受新模型"""


# ========== 校验错误 ==========

class ValidationError(RelmodelException):
    """数据校验错误"""


class FieldValidationError(ValidationError):
    """单个字段/行的校验错误"""
    def __init__(
        self,
        model_id: str,
        field_name: str,
        message: str,
        row_index: Optional[int] = None
    ):
        self.row_index = row_index
        details = {'row_index': row_index} if row_index is not None else None
        super().__init__(message, model_id=model_id, field_name=field_name, details=details)


# ========== 运行期错误 ==========

class AuthorizationError(RelmodelException):
    """权限不足"""
    def __init__(self, model_id: str, permission_id: str, operation: str):
        self.permission_id = permission_id
        self.operation = operation
        super().__init__(
            f"You don't have permission '{permission_id}' to {operation} '{model_id}'",
            model_id=model_id,
            details={'permission_id': permission_id, 'operation': operation}
        )


class StorageError(RelmodelException):
    """存储适配器错误"""


class DuplicateKeyError(StorageError):
    """主键重复"""
    def __init__(self, model_id: str, pk: Any):
        self.pk = pk
        super().__init__(
            f"Duplicate primary key '{pk}' in model '{model_id}'",
            model_id=model_id,
            details={'pk': repr(pk)}
        )


class FilterTypeError(RelmodelException):
    """过滤表达式中的操作数类型不兼容"""


class SerializationError(RelmodelException):
    """序列化异常"""


class UnsupportedOperationError(RelmodelException):
    """不支持的操作"""


class CompositeKeyError(UnsupportedOperationError):
    """关系的本地键为多字段（预加载不支持）"""
    def __init__(self, model_id: str, alias: str, key_fields: List[str]):
        super().__init__(
            f"Relation '{alias}' of model '{model_id}' uses a composite key "
            f"{list(key_fields)}, which is not supported by eager loading",
            model_id=model_id,
            details={'alias': alias, 'key_fields': list(key_fields)}
        )


class OperationCancelledError(RelmodelException):
    """操作已被取消"""
