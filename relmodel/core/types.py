"""
relmodel 类型系统

字段存储类型（kind）的名称注册、宽松/严格类型转换和连接键文本格式化
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Type

from ..common.exceptions import SerializationError

# 支持的字段存储类型
FieldKind = Type[Any]


# ========== 宽松模式类型转换 ==========

def _convert_int(value: Any) -> int:
    """转换为 int（'25' -> 25, 25.9 -> 25）"""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, bool):
        raise ValueError("bool is not accepted as int")
    if isinstance(value, float):
        return int(value)
    return int(str(value).strip())


def _convert_float(value: Any) -> float:
    """转换为 float（'3.14' -> 3.14, 90 -> 90.0）"""
    if isinstance(value, float):
        return value
    if isinstance(value, bool):
        raise ValueError("bool is not accepted as float")
    return float(value)


def _convert_str(value: Any) -> str:
    """转换为 str（123 -> '123'）"""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode('utf-8')
    return str(value)


def _convert_bool(value: Any) -> bool:
    """转换为 bool（'true' / '1' / 'yes' -> True）"""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ('true', '1', 'yes'):
            return True
        if lowered in ('false', '0', 'no', ''):
            return False
        raise ValueError(f"cannot interpret '{value}' as bool")
    if isinstance(value, int):
        return bool(value)
    raise ValueError(f"cannot interpret {type(value).__name__} as bool")


def _convert_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _convert_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


_CONVERTERS: Dict[FieldKind, Callable[[Any], Any]] = {
    int: _convert_int,
    float: _convert_float,
    str: _convert_str,
    bool: _convert_bool,
    datetime: _convert_datetime,
    date: _convert_date,
}


def is_instance_of_kind(value: Any, kind: FieldKind) -> bool:
    """严格模式下判断值是否属于字段类型（bool 不算 int）"""
    if kind is int:
        return isinstance(value, int) and not isinstance(value, bool)
    if kind is date:
        return isinstance(value, date) and not isinstance(value, datetime)
    return isinstance(value, kind)


def convert_value(value: Any, kind: FieldKind, strict: bool = False) -> Any:
    """
    将值转换为字段类型

    Args:
        value: 原始值（None 原样返回）
        kind: 字段类型
        strict: 严格模式，类型不匹配时不做转换

    Returns:
        转换后的值

    Raises:
        TypeError: 严格模式下类型不匹配
        ValueError: 宽松模式下无法转换
    """
    if value is None:
        return None
    if is_instance_of_kind(value, kind):
        return value
    if strict:
        raise TypeError(f"expected {get_kind_name(kind)}, got {type(value).__name__}")
    converter = _CONVERTERS.get(kind)
    if converter is None:
        raise TypeError(f"expected {get_kind_name(kind)}, got {type(value).__name__}")
    return converter(value)


# ========== 类型名称 ==========

_KIND_NAMES: Dict[FieldKind, str] = {
    int: 'int',
    str: 'str',
    float: 'float',
    bool: 'bool',
    bytes: 'bytes',
    datetime: 'datetime',
    date: 'date',
}

_NAME_TO_KIND = {v: k for k, v in _KIND_NAMES.items()}


def get_kind_name(kind: FieldKind) -> str:
    """获取类型名称，未知类型返回类名"""
    return _KIND_NAMES.get(kind, getattr(kind, '__name__', str(kind)))


def get_kind_by_name(name: str) -> FieldKind:
    """根据名称获取类型，未知名称返回 str"""
    return _NAME_TO_KIND.get(name, str)


# ========== 连接键文本格式化 ==========

# 空值占位符。转义后的文本里反斜杠只会成对出现或位于 '|' 之前，不会产生该占位符
NULL_KEY_TOKEN = '\\N'
KEY_SEPARATOR = '|'


def _format_text(value: str) -> str:
    return value.replace('\\', '\\\\').replace(KEY_SEPARATOR, '\\' + KEY_SEPARATOR)


def _format_bool(value: bool) -> str:
    return 'TRUE' if value else 'FALSE'


_KEY_FORMATTERS: Dict[type, Callable[[Any], str]] = {
    bool: _format_bool,
    int: lambda v: str(int(v)),
    float: repr,
    Decimal: lambda v: str(v),
    str: _format_text,
    bytes: lambda v: v.hex(),
    datetime: lambda v: v.isoformat(),
    date: lambda v: v.isoformat(),
}


def format_key_component(value: Any) -> str:
    """
    将单个连接键分量格式化为规范文本

    按值的精确类型查找格式化函数，找不到时沿 MRO 查找（如 IntEnum）。

    Raises:
        SerializationError: 不支持的类型
    """
    if value is None:
        return NULL_KEY_TOKEN
    formatter = _KEY_FORMATTERS.get(type(value))
    if formatter is None:
        for base in type(value).__mro__[1:]:
            formatter = _KEY_FORMATTERS.get(base)
            if formatter is not None:
                break
    if formatter is None:
        raise SerializationError(
            f"Key serialization is not implemented for type {type(value).__name__}",
            details={'value': repr(value)}
        )
    return formatter(value)
