"""
relmodel 事件钩子系统

提供轻量级事件回调机制，支持 Model 级和 Storage 级事件。

Model 级事件（回调参数：ctx, model, payload）：
- before_add / after_add          payload 为待写入的 Data / 主键 Data
- before_edit / after_edit        payload 为 (filter, new_values)
- before_delete / after_delete    payload 为 filter

Storage 级事件（回调参数：storage, model）：
- model_registered

使用方式：
    from relmodel import event

    # 装饰器注册
    @event.listens_for(user, 'before_add')
    def audit(ctx, model, data):
        ...

    # 函数式注册
    event.listen(user, 'after_delete', on_deleted)

    # Storage 级事件
    event.listen(storage, 'model_registered', lambda storage, model: print(model.name))

    # 移除监听器
    event.remove(user, 'before_add', audit)
"""

import threading
from typing import Any, Callable, Dict, List, Set, Tuple


# 有效的事件名称
MODEL_EVENTS: Set[str] = {
    'before_add', 'after_add',
    'before_edit', 'after_edit',
    'before_delete', 'after_delete',
}
STORAGE_EVENTS: Set[str] = {
    'model_registered',
}
ALL_EVENTS: Set[str] = MODEL_EVENTS | STORAGE_EVENTS


class EventManager:
    """
    事件管理器

    全局单例，管理所有 Model 级和 Storage 级事件监听器。
    监听器以目标对象的 id 为键保存，同时保存目标引用以防 id 被复用。
    """

    def __init__(self) -> None:
        # {(id(target), event_name): [callbacks]}
        self._listeners: Dict[Tuple[int, str], List[Callable[..., Any]]] = {}
        self._refs: Dict[int, Any] = {}
        self._lock = threading.Lock()

    def listen(self, target: Any, event_name: str, fn: Callable[..., Any]) -> None:
        """
        注册事件监听器

        Args:
            target: Model 实例（Model 级事件）或 Storage 实例（Storage 级事件）
            event_name: 事件名称
            fn: 回调函数
        """
        if event_name not in ALL_EVENTS:
            raise ValueError(
                f"Unknown event: '{event_name}'. "
                f"Valid events: {', '.join(sorted(ALL_EVENTS))}"
            )
        with self._lock:
            self._listeners.setdefault((id(target), event_name), []).append(fn)
            self._refs[id(target)] = target

    def listens_for(self, target: Any, event_name: str) -> Callable[..., Any]:
        """装饰器方式注册事件监听器"""
        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.listen(target, event_name, fn)
            return fn
        return decorator

    def remove(self, target: Any, event_name: str, fn: Callable[..., Any]) -> None:
        """移除事件监听器"""
        with self._lock:
            listeners = self._listeners.get((id(target), event_name), [])
            if fn in listeners:
                listeners.remove(fn)

    def dispatch_model(self, ctx: Any, model: Any, event_name: str, payload: Any) -> None:
        """分发 Model 级事件"""
        for fn in self._get(model, event_name):
            fn(ctx, model, payload)

    def dispatch_storage(self, storage: Any, event_name: str, model: Any) -> None:
        """分发 Storage 级事件"""
        for fn in self._get(storage, event_name):
            fn(storage, model)

    def _get(self, target: Any, event_name: str) -> List[Callable[..., Any]]:
        with self._lock:
            return list(self._listeners.get((id(target), event_name), []))

    def clear(self, target: Any = None) -> None:
        """
        清除监听器

        Args:
            target: 要清除的目标。None 清除所有
        """
        with self._lock:
            if target is None:
                self._listeners.clear()
                self._refs.clear()
                return
            tid = id(target)
            for key in [k for k in self._listeners if k[0] == tid]:
                del self._listeners[key]
            self._refs.pop(tid, None)


# 全局单例
event = EventManager()
