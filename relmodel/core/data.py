"""
relmodel 数据容器

有序字段列表 + 按位置存放的值元组列表。每次请求新建，不在请求之间共享。
"""

from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from ..common.exceptions import ValidationError


class Data:
    """
    行数据容器

    Example:
        data = Data(['id', 'name'], [(1, 'Alice'), (2, 'Bob')])
        data.maps()  # [{'id': 1, 'name': 'Alice'}, {'id': 2, 'name': 'Bob'}]
    """

    def __init__(self, fields: Sequence[str], rows: Optional[Iterable[Sequence[Any]]] = None):
        self._fields: List[str] = list(fields)
        self._field_nums: Dict[str, int] = {name: i for i, name in enumerate(self._fields)}
        self._rows: List[Tuple[Any, ...]] = []
        for row in rows or []:
            self.add(row)

    @classmethod
    def from_maps(cls, rows: Iterable[Dict[str, Any]], fields: Optional[Sequence[str]] = None) -> 'Data':
        """
        从字典列表构建

        Args:
            rows: 行字典列表
            fields: 字段顺序；None 时按首次出现顺序收集，缺失的键填 None
        """
        rows = list(rows)
        if fields is None:
            collected: Dict[str, None] = {}
            for row in rows:
                for key in row:
                    collected.setdefault(key, None)
            fields = list(collected)
        data = cls(fields)
        for row in rows:
            data.add([row.get(name) for name in fields])
        return data

    def fields(self) -> List[str]:
        return list(self._fields)

    def field_num(self, name: str) -> int:
        """字段位置，不存在返回 -1"""
        return self._field_nums.get(name, -1)

    def add(self, row: Sequence[Any]) -> None:
        """
        追加一行

        Raises:
            ValidationError: 行宽度与字段数不一致
        """
        if len(row) != len(self._fields):
            raise ValidationError(
                f"Invalid row size {len(row)}, must be {len(self._fields)}",
                details={'fields': list(self._fields)}
            )
        self._rows.append(tuple(row))

    def rows(self) -> List[Tuple[Any, ...]]:
        return list(self._rows)

    def column(self, name: str) -> List[Any]:
        """获取单列的全部值"""
        n = self.field_num(name)
        if n == -1:
            return [None] * len(self._rows)
        return [row[n] for row in self._rows]

    def maps(self) -> List[Dict[str, Any]]:
        """转换为字典列表（每行包含全部字段）"""
        return [dict(zip(self._fields, row)) for row in self._rows]

    def get_fields_data(self, fields: Sequence[str]) -> 'Data':
        """列投影，未知字段的值为 None"""
        nums = [self.field_num(name) for name in fields]
        res = Data(fields)
        for row in self._rows:
            res._rows.append(tuple(row[n] if n != -1 else None for n in nums))
        return res

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self.maps())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Data):
            return NotImplemented
        return self._fields == other._fields and self._rows == other._rows

    def __repr__(self) -> str:
        return f"Data(fields={self._fields}, rows={len(self._rows)})"
