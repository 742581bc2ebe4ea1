"""
relmodel 调用上下文

贯穿一次调用（含递归的关联查询）的上下文对象：
- 取消信号：ctx.cancel() 后，下一次存储调用之前抛出 OperationCancelledError
- 权限检查：由外部注入的 permission_checker 决定 has_permission() 的结果
- 可推导字段的批量准备数据：prepare_derivable 钩子写入，calc 函数读取
"""

import threading
from typing import Any, Callable, Dict, Optional

from ..common.exceptions import OperationCancelledError

PermissionChecker = Callable[['Context', str], bool]


class Context:
    """
    调用上下文

    Args:
        permission_checker: 权限判定函数 (ctx, permission_id) -> bool；
            None 表示不做权限控制（全部放行）
        values: 调用方附带的任意键值（例如当前用户）
    """

    def __init__(
        self,
        permission_checker: Optional[PermissionChecker] = None,
        values: Optional[Dict[str, Any]] = None
    ):
        self._permission_checker = permission_checker
        self.values: Dict[str, Any] = dict(values or {})
        self._cancelled = threading.Event()
        self._derivable_data: Dict[str, Any] = {}
        self._lock = threading.Lock()

    # ========== 取消 ==========

    def cancel(self) -> None:
        """发出取消信号"""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check_cancelled(self) -> None:
        """
        检查取消信号

        Raises:
            OperationCancelledError: 已取消
        """
        if self._cancelled.is_set():
            raise OperationCancelledError("Operation was cancelled")

    # ========== 权限 ==========

    def has_permission(self, permission_id: str) -> bool:
        if self._permission_checker is None:
            return True
        return bool(self._permission_checker(self, permission_id))

    # ========== 可推导字段数据 ==========

    def set_derivable_data(self, key: str, data: Any) -> None:
        with self._lock:
            self._derivable_data[key] = data

    def get_derivable_data(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._derivable_data.get(key, default)

    def __repr__(self) -> str:
        return f"Context(cancelled={self.cancelled})"


def ensure_context(ctx: Optional[Context]) -> Context:
    """None 时返回一个新的默认上下文"""
    return ctx if ctx is not None else Context()
