"""
relmodel 关系拓扑构建

关系是两个模型之间的有向边。每个构建函数都成对注册正向关系和自动生成的反向关系：

    add_one_to_one(phone, user)              # phone.user / user.phone
    add_many_to_one(message, user)           # message.user / user.message，message 上新增 fk_user_id
    add_many_to_many(user, address, storage) # user.address / address.user，经由中间模型

多对多会通过 storage.new_model() 合成中间模型 `_junction__<m1>__<m2>`，
其字段为两侧主键的克隆（均必填），主键为两组外键字段的拼接。
已有的中间模型可以用 add_many_to_many_using_table() 接入，只注册中间模型一侧的两条多对一关系。
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, TYPE_CHECKING

from ..common.exceptions import UnsupportedOperationError
from ..common.options import RelationOptions

if TYPE_CHECKING:
    from ..backends.base import StorageAdapter
    from .field import Field
    from .model import Model

logger = logging.getLogger(__name__)

FK_CAPTION = 'FK field'


class RelationType(Enum):
    """关系类型"""
    ONE_TO_ONE = 'OneToOne'
    ONE_TO_MANY = 'OneToMany'
    MANY_TO_ONE = 'ManyToOne'
    MANY_TO_MANY = 'ManyToMany'

    def __str__(self) -> str:
        return self.value


@dataclass
class Relation:
    """
    关系声明

    Attributes:
        ext_model: 对端模型
        relation_type: 关系类型
        local_fields: 本端用于关联的字段
        fk_fields: 对端用于关联的字段
        junction_model: 中间模型（仅多对多）
        junction_local_fields: 中间模型中指向本端的外键字段
        junction_fk_fields: 中间模型中指向对端的外键字段
        required: 是否必填
        is_back: 是否为自动生成的反向关系
    """
    ext_model: 'Model'
    relation_type: RelationType
    local_fields: List[str]
    fk_fields: List[str]
    junction_model: Optional['Model'] = None
    junction_local_fields: List[str] = field(default_factory=list)
    junction_fk_fields: List[str] = field(default_factory=list)
    required: bool = False
    is_back: bool = False

    @property
    def is_to_many(self) -> bool:
        return self.relation_type in (RelationType.ONE_TO_MANY, RelationType.MANY_TO_MANY)

    def __repr__(self) -> str:
        return (
            f"Relation({self.relation_type}, ext_model='{self.ext_model.name}', "
            f"local={self.local_fields}, fk={self.fk_fields})"
        )


def _fk_name(prefix: str, pk_field: str) -> str:
    return f"fk_{prefix}_{pk_field}"


def _clone_pk_fields(model: 'Model', prefix: str, required: bool) -> 'tuple[List[str], List[Field]]':
    """克隆模型的主键字段定义为外键字段"""
    names: List[str] = []
    fields: List['Field'] = []
    for pk_name in model.get_pk_fields_names():
        fk_name = _fk_name(prefix, pk_name)
        definition = model.get_field_definition(pk_name)
        names.append(fk_name)
        fields.append(definition.clone_for_fk(fk_name, FK_CAPTION, required))
    return names, fields


def add_one_to_one(model1: 'Model', model2: 'Model', options: Optional[RelationOptions] = None) -> None:
    """
    一对一关系：双方都以各自主键关联，反向一侧总是必填

    Args:
        model1: 正向一侧
        model2: 反向一侧
        options: 关系选项
    """
    opts = options or RelationOptions()

    model1.add_relation(Relation(
        ext_model=model2,
        relation_type=RelationType.ONE_TO_ONE,
        local_fields=model1.get_pk_fields_names(),
        fk_fields=model2.get_pk_fields_names(),
        required=opts.required,
    ), opts.alias)

    model2.add_relation(Relation(
        ext_model=model1,
        relation_type=RelationType.ONE_TO_ONE,
        local_fields=model2.get_pk_fields_names(),
        fk_fields=model1.get_pk_fields_names(),
        required=True,
        is_back=True,
    ), opts.back_alias)

    logger.debug("Added one-to-one relation %s <-> %s", model1.name, model2.name)


def add_many_to_one(model1: 'Model', model2: 'Model', options: Optional[RelationOptions] = None) -> List[str]:
    """
    多对一关系：model1 的多条记录指向 model2 的一条记录

    model2 的主键字段被克隆为 model1 上的外键字段 `fk_<alias 或 model2 标识>_<主键字段>`，
    反向的一对多关系复用同一组外键字段。

    Returns:
        新增的外键字段名列表
    """
    opts = options or RelationOptions()
    fk_names, fk_fields = _clone_pk_fields(model2, opts.alias or model2.name, opts.required)

    model1.add_relation(Relation(
        ext_model=model2,
        relation_type=RelationType.MANY_TO_ONE,
        local_fields=fk_names,
        fk_fields=model2.get_pk_fields_names(),
        required=opts.required,
    ), opts.alias, fk_fields)

    model2.add_relation(Relation(
        ext_model=model1,
        relation_type=RelationType.ONE_TO_MANY,
        local_fields=model2.get_pk_fields_names(),
        fk_fields=fk_names,
        is_back=True,
    ), opts.back_alias)

    logger.debug("Added many-to-one relation %s -> %s via %s", model1.name, model2.name, fk_names)
    return fk_names


def add_many_to_many(
    model1: 'Model',
    model2: 'Model',
    storage: 'StorageAdapter',
    options: Optional[RelationOptions] = None
) -> 'Model':
    """
    多对多关系：合成中间模型

    在两个模型上注册指向中间模型的多对多关系，并在中间模型上注册两条指向两侧的多对一关系。

    Returns:
        中间模型
    """
    opts = options or RelationOptions()
    fk1_names, fk1_fields = _clone_pk_fields(model1, model1.name, True)
    fk2_names, fk2_fields = _clone_pk_fields(model2, model2.name, True)

    junction = storage.new_model(
        f"_junction__{model1.name}__{model2.name}",
        list(fk1_fields) + list(fk2_fields),
        fk1_names + fk2_names,
    )

    model1.add_relation(Relation(
        ext_model=model2,
        relation_type=RelationType.MANY_TO_MANY,
        local_fields=model1.get_pk_fields_names(),
        fk_fields=model2.get_pk_fields_names(),
        junction_model=junction,
        junction_local_fields=fk1_names,
        junction_fk_fields=fk2_names,
        required=True,
    ), opts.alias)

    model2.add_relation(Relation(
        ext_model=model1,
        relation_type=RelationType.MANY_TO_MANY,
        local_fields=model2.get_pk_fields_names(),
        fk_fields=model1.get_pk_fields_names(),
        junction_model=junction,
        junction_local_fields=fk2_names,
        junction_fk_fields=fk1_names,
        required=True,
        is_back=True,
    ), opts.back_alias)

    junction.add_relation(Relation(
        ext_model=model1,
        relation_type=RelationType.MANY_TO_ONE,
        local_fields=fk1_names,
        fk_fields=model1.get_pk_fields_names(),
        required=True,
    ))

    junction.add_relation(Relation(
        ext_model=model2,
        relation_type=RelationType.MANY_TO_ONE,
        local_fields=fk2_names,
        fk_fields=model2.get_pk_fields_names(),
        required=True,
    ))

    logger.debug("Added many-to-many relation %s <-> %s via %s", model1.name, model2.name, junction.name)
    return junction


def add_many_to_many_using_table(
    model1: 'Model',
    model2: 'Model',
    junction: 'Model',
    options: Optional[RelationOptions] = None
) -> List[str]:
    """
    使用调用方提供的中间模型连接两个模型

    两侧主键被克隆为中间模型上的必填外键字段 `fk_<模型标识>_<主键字段>`，
    中间模型上注册两条多对一关系。model1 / model2 上不注册多对多关系，
    中间模型自己的主键保持不变。

    Args:
        model1: 第一侧模型
        model2: 第二侧模型
        junction: 中间模型
        options: alias 为指向 model1 的关系别名，back_alias 为指向 model2 的关系别名

    Returns:
        新增的外键字段名列表（model1 一组在前）
    """
    opts = options or RelationOptions()
    fk1_names, fk1_fields = _clone_pk_fields(model1, model1.name, True)
    fk2_names, fk2_fields = _clone_pk_fields(model2, model2.name, True)

    junction.add_relation(Relation(
        ext_model=model1,
        relation_type=RelationType.MANY_TO_ONE,
        local_fields=fk1_names,
        fk_fields=model1.get_pk_fields_names(),
        required=True,
    ), opts.alias, list(fk1_fields) + list(fk2_fields))

    junction.add_relation(Relation(
        ext_model=model2,
        relation_type=RelationType.MANY_TO_ONE,
        local_fields=fk2_names,
        fk_fields=model2.get_pk_fields_names(),
        required=True,
    ), opts.back_alias)

    logger.debug("Linked %s and %s through %s", model1.name, model2.name, junction.name)
    return fk1_names + fk2_names


def junction_pk_is_valid(relation: Relation) -> bool:
    """中间模型的主键必须恰好是两组外键字段的拼接（任一方向）"""
    if relation.junction_model is None:
        return True
    pk: Sequence[str] = relation.junction_model.get_pk_fields_names()
    forward = list(relation.junction_local_fields) + list(relation.junction_fk_fields)
    backward = list(relation.junction_fk_fields) + list(relation.junction_local_fields)
    return list(pk) in (forward, backward)


def find_relation(local_model: 'Model', ext_model: 'Model') -> Relation:
    """
    查找 local_model 指向 ext_model 的关系（按别名排序取第一个）

    Raises:
        UnsupportedOperationError: 两个模型之间没有关系
    """
    for alias in local_model.get_relations():
        relation = local_model.get_relation(alias)
        if relation is not None and relation.ext_model is ext_model:
            return relation
    raise UnsupportedOperationError(
        f"There is no relation between '{local_model.name}' and '{ext_model.name}'",
        model_id=local_model.name
    )
