"""
relmodel 存储引擎注册表

按引擎名称创建存储适配器：

    storage = get_storage('memory')
    storage = get_storage('sqlite', SqliteStorageOptions(path='app.db'))
"""

from typing import Dict, List, Optional, Type

from ..common.exceptions import ConfigurationError
from ..common.options import StorageOptions, get_default_storage_options
from .base import StorageAdapter
from .memory import MemoryStorage
from .sqlite import SqliteStorage


class StorageRegistry:
    """存储引擎注册表"""

    _engines: Dict[str, Type[StorageAdapter]] = {}

    @classmethod
    def register(cls, adapter_class: Type[StorageAdapter]) -> Type[StorageAdapter]:
        """注册适配器类（可用作类装饰器）"""
        if not adapter_class.ENGINE_NAME:
            raise ConfigurationError(f"{adapter_class.__name__} must define ENGINE_NAME")
        cls._engines[adapter_class.ENGINE_NAME] = adapter_class
        return adapter_class

    @classmethod
    def get(cls, engine: str) -> Type[StorageAdapter]:
        adapter_class = cls._engines.get(engine)
        if adapter_class is None:
            raise ConfigurationError(
                f"Unknown storage engine '{engine}'. "
                f"Available engines: {', '.join(sorted(cls._engines))}"
            )
        return adapter_class

    @classmethod
    def available(cls) -> List[str]:
        return sorted(cls._engines)


StorageRegistry.register(MemoryStorage)
StorageRegistry.register(SqliteStorage)


def get_storage(engine: str = 'memory', options: Optional[StorageOptions] = None) -> StorageAdapter:
    """
    创建存储适配器

    Args:
        engine: 引擎名称（'memory', 'sqlite'）
        options: 引擎选项，None 使用默认选项

    Raises:
        ConfigurationError: 未知引擎
    """
    adapter_class = StorageRegistry.get(engine)
    if options is None:
        options = get_default_storage_options(engine)
    return adapter_class(options)  # type: ignore[call-arg]


def get_available_engines() -> List[str]:
    """可用的引擎名称"""
    return StorageRegistry.available()
