"""
relmodel 存储适配器基类

定义所有存储适配器必须实现的接口。模型通过适配器注册、读取和写入数据，
适配器只面对扁平的字段列表和过滤表达式，不感知关系和可推导字段。
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

from ..common.options import AddOptions, ModelOptions, QueryOptions, StorageOptions
from ..core.event import event
from ..core.registry import ModelRegistry

if TYPE_CHECKING:
    from ..core.context import Context
    from ..core.data import Data
    from ..core.field import Field
    from ..core.model import Model
    from ..query.expressions import Expression


class StorageAdapter(ABC):
    """
    存储适配器抽象基类

    所有适配器必须实现 add / query / edit / delete。
    每个适配器持有一个 ModelRegistry，模型在构造时注册到其中。
    """

    # 引擎标识符（子类必须覆盖）
    ENGINE_NAME: str = None  # type: ignore

    def __init__(self, options: Optional[StorageOptions] = None):
        self.options = options
        self.registry = ModelRegistry()

    # ========== 模型注册 ==========

    def register_model(self, model: 'Model') -> None:
        """
        注册模型

        Raises:
            DuplicateModelError: 模型标识已注册
            RegistryFrozenError: 注册表已冻结
        """
        self.registry.register(model)
        event.dispatch_storage(self, 'model_registered', model)

    def new_model(self, name: str, fields: Sequence['Field'], pk_fields: Sequence[str]) -> 'Model':
        """创建并注册模型（用于合成多对多中间模型）"""
        from ..core.model import Model
        return Model(name, fields, self, ModelOptions(pk_fields=list(pk_fields)))

    def get_models_names(self) -> List[str]:
        """已注册的模型标识（排序）"""
        return self.registry.names()

    def get_model(self, name: str) -> Optional['Model']:
        return self.registry.get(name)

    def freeze(self) -> None:
        """校验模型图并冻结注册表"""
        self.registry.freeze()

    # ========== 数据操作 ==========

    @abstractmethod
    def add(self, ctx: 'Context', model: 'Model', data: 'Data', options: AddOptions) -> 'Data':
        """
        写入记录

        Args:
            ctx: 调用上下文
            model: 模型
            data: 已清洗的数据（只含可存储字段）
            options: 写入选项

        Returns:
            写入记录的主键 Data

        Raises:
            DuplicateKeyError: 主键重复且未指定 replace
        """
        pass

    @abstractmethod
    def query(
        self,
        ctx: 'Context',
        model: 'Model',
        field_names: Sequence[str],
        options: QueryOptions
    ) -> 'Data':
        """
        查询记录

        Args:
            ctx: 调用上下文
            model: 模型
            field_names: 返回的字段（只含可存储字段）
            options: 过滤、排序、分页选项

        Returns:
            Data，列顺序与 field_names 一致
        """
        pass

    @abstractmethod
    def edit(
        self,
        ctx: 'Context',
        model: 'Model',
        filter: Optional['Expression'],
        new_values: Dict[str, Any]
    ) -> int:
        """修改满足条件的记录，返回修改数"""
        pass

    @abstractmethod
    def delete(self, ctx: 'Context', model: 'Model', filter: Optional['Expression']) -> int:
        """删除满足条件的记录，返回删除数"""
        pass

    def close(self) -> None:
        """释放资源（默认无操作）"""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(models={self.get_models_names()})"
