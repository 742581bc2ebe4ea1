"""
relmodel 存储适配器模块

提供适配器基类、内存和 SQLite 适配器以及引擎注册
"""

from .base import StorageAdapter
from .memory import MemoryStorage
from .sqlite import SqliteStorage
from .registry import StorageRegistry, get_storage, get_available_engines

__all__ = [
    'StorageAdapter',
    'MemoryStorage',
    'SqliteStorage',
    'StorageRegistry',
    'get_storage',
    'get_available_engines',
]
