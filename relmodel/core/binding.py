"""
relmodel 记录映射

显式声明“记录属性 <- 请求路径”的对应关系，把 get_all 返回的嵌套行转换为记录对象，
或把记录对象展开为 add_multi 可用的 Data。

    @dataclass
    class PhoneRecord:
        formated_number: str

    @dataclass
    class UserRecord:
        id: int
        fullname: str
        phone: Optional[PhoneRecord]

    mapping = RecordMapping(UserRecord, {
        'id': 'id',
        'fullname': 'fullname',
        'phone': Nested('phone', RecordMapping(PhoneRecord, {'formated_number': 'formated_number'})),
    })
    users = user.get_all_records(mapping)
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Union

from .data import Data


@dataclass
class Nested:
    """嵌套映射：属性值来自关系别名对应的对端行（to-one 为记录，to-many 为记录列表）"""
    alias: str
    mapping: 'RecordMapping'


FieldSource = Union[str, Nested]


def _get_path(row: Mapping[str, Any], path: str) -> Any:
    """按点路径取值，途经的 to-one 关系为 None 时返回 None"""
    value: Any = row
    for part in path.split('.'):
        if value is None:
            return None
        value = value.get(part)
    return value


class RecordMapping:
    """
    记录映射

    Args:
        record_type: 记录构造器，以属性名为关键字参数调用（dataclass、普通类或 dict）
        fields: {属性名: 请求路径 或 Nested}
    """

    def __init__(self, record_type: Callable[..., Any], fields: Dict[str, FieldSource]):
        self.record_type = record_type
        self.fields = dict(fields)

    def field_paths(self) -> List[str]:
        """get_all 需要请求的字段路径"""
        paths: List[str] = []
        for source in self.fields.values():
            if isinstance(source, Nested):
                paths.extend(f"{source.alias}.{p}" for p in source.mapping.field_paths())
            else:
                paths.append(source)
        return list(dict.fromkeys(paths))

    def build(self, row: Mapping[str, Any]) -> Any:
        """由一行结果构建记录"""
        kwargs: Dict[str, Any] = {}
        for attr, source in self.fields.items():
            if isinstance(source, Nested):
                value = row.get(source.alias)
                if value is None:
                    kwargs[attr] = None
                elif isinstance(value, list):
                    kwargs[attr] = [source.mapping.build(item) for item in value]
                else:
                    kwargs[attr] = source.mapping.build(value)
            else:
                kwargs[attr] = _get_path(row, source)
        return self.record_type(**kwargs)

    def to_data(self, records: Iterable[Any]) -> Data:
        """
        把记录展开为 Data

        只使用映射到本模型字段（不含点路径、非 Nested）的属性。
        """
        columns = [
            (attr, source) for attr, source in self.fields.items()
            if isinstance(source, str) and '.' not in source
        ]
        data = Data([source for _, source in columns])
        for record in records:
            if isinstance(record, Mapping):
                data.add([record.get(attr) for attr, _ in columns])
            else:
                data.add([getattr(record, attr, None) for attr, _ in columns])
        return data

    def __repr__(self) -> str:
        name = getattr(self.record_type, '__name__', repr(self.record_type))
        return f"RecordMapping({name}, fields={list(self.fields)})"
