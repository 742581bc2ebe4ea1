"""
relmodel 字段定义

字段描述模型中的一列：标识、说明、存储类型、是否必填、是否可推导、依赖字段，
以及写入时的清洗（clean）和校验（check）钩子。

    IntField('id', 'ID')
    StringField('name', 'Name', required=True, trim=True)
    DerivableField('fullname', 'Full name', depends_on=['name', 'lastname'],
                   get=lambda row: row['name'] + ' ' + row['lastname'])
"""

import copy
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from ..common.exceptions import ConfigurationError
from .types import FieldKind, convert_value, get_kind_name

if TYPE_CHECKING:
    from .context import Context

CleanFunc = Callable[[Any], Any]
CheckFunc = Callable[[Any], None]
CalcFunc = Callable[[Dict[str, Any]], Any]
CtxCalcFunc = Callable[['Context', Dict[str, Any]], Any]


class Field:
    """
    普通（可存储）字段

    Args:
        name: 字段标识（模型内唯一）
        caption: 说明
        kind: 存储类型（int / str / float / bool ...）
        required: 是否必填
        strict: 严格模式，类型不匹配时不做自动转换
        clean_func: 自定义清洗函数，在类型转换之后执行，返回新值
        check_func: 自定义校验函数，不合法时抛出 ValueError
    """

    def __init__(
        self,
        name: str,
        caption: str = '',
        kind: FieldKind = str,
        required: bool = False,
        strict: bool = False,
        clean_func: Optional[CleanFunc] = None,
        check_func: Optional[CheckFunc] = None,
    ):
        self.name = name
        self.caption = caption or name
        self.kind = kind
        self.required = required
        self.strict = strict
        self.clean_func = clean_func
        self.check_func = check_func

    @property
    def derivable(self) -> bool:
        return False

    @property
    def depends_on(self) -> List[str]:
        return []

    def clean(self, value: Any) -> Any:
        """
        清洗值：类型转换 + 自定义清洗

        Raises:
            ValueError / TypeError: 值无法转换为字段类型
        """
        value = convert_value(value, self.kind, self.strict)
        if self.clean_func is not None:
            value = self.clean_func(value)
        return value

    def check(self, value: Any) -> None:
        """校验值（在 clean 之后调用）"""
        if self.check_func is not None:
            self.check_func(value)

    def calc(self, row: Dict[str, Any], ctx: Optional['Context'] = None) -> Any:
        raise ConfigurationError(f"Field '{self.name}' is not derivable", field_name=self.name)

    def clone_for_fk(self, name: str, caption: str, required: bool) -> 'Field':
        """
        克隆为外键字段（保留类型和校验规则）

        Args:
            name: 新字段标识
            caption: 新字段说明
            required: 是否必填
        """
        clone = copy.copy(self)
        clone.name = name
        clone.caption = caption
        clone.required = required
        return clone

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'caption': self.caption,
            'kind': get_kind_name(self.kind),
            'required': self.required,
            'derivable': self.derivable,
            'depends_on': list(self.depends_on),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name='{self.name}', kind={get_kind_name(self.kind)})"


class IntField(Field):
    """整型字段"""

    def __init__(self, name: str, caption: str = '', required: bool = False, **kwargs: Any):
        super().__init__(name, caption, int, required, **kwargs)


class FloatField(Field):
    """浮点型字段"""

    def __init__(self, name: str, caption: str = '', required: bool = False, **kwargs: Any):
        super().__init__(name, caption, float, required, **kwargs)


class BoolField(Field):
    """布尔型字段"""

    def __init__(self, name: str, caption: str = '', required: bool = False, **kwargs: Any):
        super().__init__(name, caption, bool, required, **kwargs)


class StringField(Field):
    """
    字符串字段

    Args:
        trim: 是否去除首尾空白
        max_length: 最大长度（None 不限制）
    """

    def __init__(
        self,
        name: str,
        caption: str = '',
        required: bool = False,
        trim: bool = False,
        max_length: Optional[int] = None,
        **kwargs: Any
    ):
        super().__init__(name, caption, str, required, **kwargs)
        self.trim = trim
        self.max_length = max_length

    def clean(self, value: Any) -> Any:
        value = convert_value(value, self.kind, self.strict)
        if self.trim and value is not None:
            value = value.strip()
        if self.clean_func is not None:
            value = self.clean_func(value)
        return value

    def check(self, value: Any) -> None:
        if self.max_length is not None and value is not None and len(value) > self.max_length:
            raise ValueError(f"value is longer than {self.max_length} characters")
        super().check(value)


class DerivableField(Field):
    """
    可推导字段：由同一模型的其他字段计算得出，不落库

    Args:
        name: 字段标识
        caption: 说明
        depends_on: 依赖的字段标识
        get: 计算函数 row -> value，接收已包含全部依赖值的行字典
        get_ctx: 需要调用上下文的计算函数 (ctx, row) -> value，
            用于读取 prepare_derivable 钩子准备的批量数据。与 get 二选一
        kind: 计算结果类型（仅作描述用）
    """

    def __init__(
        self,
        name: str,
        caption: str = '',
        depends_on: Optional[List[str]] = None,
        get: Optional[CalcFunc] = None,
        get_ctx: Optional[CtxCalcFunc] = None,
        kind: FieldKind = object,
    ):
        super().__init__(name, caption, kind)
        self._depends_on: List[str] = list(depends_on or [])
        if (get is None) == (get_ctx is None):
            raise ConfigurationError(
                f"Derivable field '{name}' requires exactly one of get / get_ctx",
                field_name=name
            )
        self._get = get
        self._get_ctx = get_ctx

    @property
    def derivable(self) -> bool:
        return True

    @property
    def depends_on(self) -> List[str]:
        return list(self._depends_on)

    def clean(self, value: Any) -> Any:
        return value

    def calc(self, row: Dict[str, Any], ctx: Optional['Context'] = None) -> Any:
        if self._get_ctx is not None:
            return self._get_ctx(ctx, row)
        return self._get(row)  # type: ignore[misc]

    def clone_for_fk(self, name: str, caption: str, required: bool) -> 'Field':
        raise ConfigurationError(f"Derivable field '{self.name}' cannot be FK", field_name=self.name)
