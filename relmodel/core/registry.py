"""
relmodel 模型注册表

生命周期：声明模型 -> 建立关系 -> freeze()。
freeze() 对整个模型图做一次完整校验，之后不再接受新模型。
"""

import logging
import threading
from typing import Dict, List, Optional, TYPE_CHECKING

from ..common.exceptions import (
    ConfigurationError,
    DuplicateModelError,
    RegistryFrozenError,
    UnknownFieldError,
)
from .relation import junction_pk_is_valid

if TYPE_CHECKING:
    from .model import Model

logger = logging.getLogger(__name__)


class ModelRegistry:
    """
    模型注册表

    每个存储适配器持有一个注册表，模型标识在注册表内唯一。
    """

    def __init__(self) -> None:
        self._models: Dict[str, 'Model'] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def register(self, model: 'Model') -> None:
        """
        注册模型

        Raises:
            RegistryFrozenError: 注册表已冻结
            DuplicateModelError: 模型标识已存在
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register model '{model.name}': registry is frozen",
                    model_id=model.name
                )
            if model.name in self._models:
                raise DuplicateModelError(model.name)
            self._models[model.name] = model
        logger.debug("Registered model '%s'", model.name)

    def get(self, name: str) -> Optional['Model']:
        with self._lock:
            return self._models.get(name)

    def names(self) -> List[str]:
        """已注册的模型标识（排序）"""
        with self._lock:
            return sorted(self._models)

    def models(self) -> List['Model']:
        with self._lock:
            return [self._models[name] for name in sorted(self._models)]

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """
        校验模型图并冻结注册表

        校验内容：
        - 主键字段都已定义
        - 可推导字段的依赖都能在本模型内解析且无环
        - 关系两端的键字段都已定义、宽度一致
        - 多对多中间模型的主键是两组外键字段的拼接
        - 没有发生过关系别名覆盖

        Raises:
            ConfigurationError: 任一校验失败（第一处失败）
        """
        for model in self.models():
            self._validate_model(model)
        with self._lock:
            self._frozen = True
        logger.debug("Registry frozen with %d models", len(self._models))

    def _validate_model(self, model: 'Model') -> None:
        names = set(model.get_fields_names())

        for pk_name in model.get_pk_fields_names():
            if pk_name not in names:
                raise UnknownFieldError(model.name, pk_name)

        for name in model.get_fields_names():
            definition = model.get_field_definition(name)
            if definition is not None and definition.derivable:
                # 未知依赖 -> UnknownFieldError，环 -> CyclicDependencyError
                model.get_all_field_dependencies(name)

        replaced = model.get_replaced_aliases()
        if replaced:
            raise ConfigurationError(
                f"Relation aliases of model '{model.name}' were registered more than once: "
                f"{', '.join(replaced)}",
                model_id=model.name,
                details={'aliases': replaced}
            )

        for alias in model.get_relations():
            relation = model.get_relation(alias)
            if relation is None:
                continue
            ext_names = set(relation.ext_model.get_fields_names())
            for name in relation.local_fields:
                if name not in names:
                    raise UnknownFieldError(model.name, name)
            for name in relation.fk_fields:
                if name not in ext_names:
                    raise UnknownFieldError(relation.ext_model.name, name)
            if len(relation.local_fields) != len(relation.fk_fields):
                raise ConfigurationError(
                    f"Relation '{alias}' of model '{model.name}' has key groups of different width",
                    model_id=model.name,
                    details={'alias': alias}
                )
            if not junction_pk_is_valid(relation):
                raise ConfigurationError(
                    f"Junction model '{relation.junction_model.name}' primary key must be "
                    f"the concatenation of its FK fields",
                    model_id=relation.junction_model.name,
                    details={'alias': alias}
                )
