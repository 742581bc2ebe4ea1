"""
relmodel - 关系数据建模层

模型 + 类型化字段 + 声明式关系 + 可推导字段 + 可插拔存储适配器。
按点路径请求跨关系的字段，每个关系只做一次存储往返：

    from relmodel import (
        Model, IntField, StringField, ModelOptions, get_storage, add_many_to_one,
    )

    storage = get_storage('memory')
    user = Model('user', [IntField('id'), StringField('name')], storage, ModelOptions(pk_fields=['id']))
    message = Model('message', [IntField('id'), StringField('text')], storage, ModelOptions(pk_fields=['id']))
    add_many_to_one(message, user)

    user.get_all(['id', 'name', 'message.text'])
"""

from .common.exceptions import (
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
from .common.options import (
    Order,
    QueryOptions,
    GetAllOptions,
    AddOptions,
    ModelOptions,
    RelationOptions,
    MemoryStorageOptions,
    SqliteStorageOptions,
)
from .core import (
    Field,
    IntField,
    FloatField,
    BoolField,
    StringField,
    DerivableField,
    Data,
    Context,
    Model,
    ModelLink,
    ModelRegistry,
    Relation,
    RelationType,
    add_one_to_one,
    add_many_to_one,
    add_many_to_many,
    add_many_to_many_using_table,
    RecordMapping,
    Nested,
    event,
)
from .backends import StorageAdapter, MemoryStorage, SqliteStorage, get_storage, get_available_engines
from .query import expressions as expr

__version__ = '0.1.0'

__all__ = [
    # Exceptions
    'RelmodelException',
    'ConfigurationError',
    'DuplicateModelError',
    'DuplicateFieldError',
    'UnknownFieldError',
    'UnknownRelationError',
    'CyclicDependencyError',
    'RegistryFrozenError',
    'ValidationError',
    'FieldValidationError',
    'AuthorizationError',
    'StorageError',
    'DuplicateKeyError',
    'FilterTypeError',
    'SerializationError',
    'UnsupportedOperationError',
    'CompositeKeyError',
    'OperationCancelledError',
    # Options
    'Order',
    'QueryOptions',
    'GetAllOptions',
    'AddOptions',
    'ModelOptions',
    'RelationOptions',
    'MemoryStorageOptions',
    'SqliteStorageOptions',
    # Core
    'Field',
    'IntField',
    'FloatField',
    'BoolField',
    'StringField',
    'DerivableField',
    'Data',
    'Context',
    'Model',
    'ModelLink',
    'ModelRegistry',
    'Relation',
    'RelationType',
    'add_one_to_one',
    'add_many_to_one',
    'add_many_to_many',
    'add_many_to_many_using_table',
    'RecordMapping',
    'Nested',
    'event',
    # Storage
    'StorageAdapter',
    'MemoryStorage',
    'SqliteStorage',
    'get_storage',
    'get_available_engines',
    # Expressions
    'expr',
]
