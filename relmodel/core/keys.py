"""
连接键序列化

把一组字段的值渲染为一个确定的字符串，用于在内存中按键关联行。
"""

from typing import Any, Dict, Sequence

from .types import KEY_SEPARATOR, format_key_component


def serialize_key(field_names: Sequence[str], row: Dict[str, Any]) -> str:
    """
    按字段顺序格式化各分量并以 '|' 连接

    缺失的字段与 None 一样渲染为空值占位符。
    """
    return KEY_SEPARATOR.join(format_key_component(row.get(name)) for name in field_names)
