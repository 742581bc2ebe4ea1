"""
relmodel 核心模块

包含字段、模型、关系、关联查询解析、上下文和事件等核心功能
"""

from .field import Field, IntField, FloatField, BoolField, StringField, DerivableField
from .data import Data
from .context import Context
from .model import Model, ModelLink
from .relation import (
    Relation,
    RelationType,
    add_one_to_one,
    add_many_to_one,
    add_many_to_many,
    add_many_to_many_using_table,
)
from .registry import ModelRegistry
from .binding import RecordMapping, Nested
from .event import event, EventManager

__all__ = [
    # Fields
    'Field',
    'IntField',
    'FloatField',
    'BoolField',
    'StringField',
    'DerivableField',
    # Model
    'Data',
    'Context',
    'Model',
    'ModelLink',
    'ModelRegistry',
    # Relations
    'Relation',
    'RelationType',
    'add_one_to_one',
    'add_many_to_one',
    'add_many_to_many',
    'add_many_to_many_using_table',
    # Binding
    'RecordMapping',
    'Nested',
    # Events
    'event',
    'EventManager',
]
