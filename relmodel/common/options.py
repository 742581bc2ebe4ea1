"""
relmodel 配置选项 dataclass 定义

该模块定义了查询、写入、模型、关系和存储引擎的配置选项，替代 **kwargs 参数。
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from ..core.context import Context
    from ..core.model import Model
    from ..query.expressions import Expression


@dataclass(slots=True, frozen=True)
class Order:
    """排序项"""
    field_name: str
    desc: bool = False  # 是否降序


@dataclass(slots=True)
class QueryOptions:
    """存储适配器 query() 的选项"""
    filter: Optional['Expression'] = None  # 过滤表达式
    order_by: List[Order] = field(default_factory=list)  # 排序
    limit: Optional[int] = None  # None 表示无限制
    offset: int = 0  # 跳过的记录数
    distinct: bool = False  # 是否去重
    for_update: bool = False  # 是否加行锁（memory / sqlite 没有行锁，忽略该项）


@dataclass(slots=True)
class GetAllOptions:
    """Model.get_all() 的选项"""
    filter: Optional['Expression'] = None
    order_by: List[Order] = field(default_factory=list)
    limit: Optional[int] = None
    offset: int = 0
    distinct: bool = False
    max_workers: Optional[int] = None  # 关系分支并发数；None 表示顺序执行

    def to_query_options(self) -> QueryOptions:
        """转换为存储适配器使用的 QueryOptions"""
        return QueryOptions(
            filter=self.filter,
            order_by=list(self.order_by),
            limit=self.limit,
            offset=self.offset,
            distinct=self.distinct,
        )


@dataclass(slots=True)
class AddOptions:
    """写入选项"""
    replace: bool = False  # 主键冲突时是否覆盖


# 默认过滤器钩子：(ctx, model) -> Expression 或 None
DefaultFilterFunc = Callable[['Context', 'Model'], Optional['Expression']]

# 可推导字段准备钩子：(ctx, model, 需要计算的字段名, 行列表) -> None
PrepareDerivableFunc = Callable[['Context', 'Model', List[str], List[Dict[str, Any]]], None]


@dataclass(slots=True)
class ModelOptions:
    """模型配置选项"""
    pk_fields: List[str] = field(default_factory=list)  # 主键字段名列表
    add_permission: Optional[str] = None  # 写入所需权限（None 不检查）
    edit_permission: Optional[str] = None  # 修改所需权限
    delete_permission: Optional[str] = None  # 删除所需权限
    default_filter: Optional[DefaultFilterFunc] = None  # 默认作用域过滤器
    prepare_derivable: Optional[PrepareDerivableFunc] = None  # 计算可推导字段前的批量准备


@dataclass(slots=True)
class RelationOptions:
    """关系构建选项"""
    required: bool = False  # 外键字段是否必填
    alias: Optional[str] = None  # 正向关系别名（默认为对端模型标识）
    back_alias: Optional[str] = None  # 反向关系别名（默认为本端模型标识）


@dataclass(slots=True)
class MemoryStorageOptions:
    """内存存储配置选项"""
    autoincrement: bool = True  # 单字段 int 主键缺失时自动分配


@dataclass(slots=True)
class SqliteStorageOptions:
    """SQLite 存储配置选项"""
    path: str = ':memory:'  # 数据库文件路径
    check_same_thread: bool = False  # 检查同一线程
    timeout: Optional[float] = None  # 连接超时时间
    isolation_level: Optional[str] = None  # 事务隔离级别（None 为自动提交）


# Storage 选项联合类型
StorageOptions = Union[MemoryStorageOptions, SqliteStorageOptions]


def get_default_storage_options(engine: str) -> StorageOptions:
    """根据引擎类型返回默认选项"""
    defaults: Dict[str, StorageOptions] = {
        'memory': MemoryStorageOptions(),
        'sqlite': SqliteStorageOptions(),
    }
    return defaults.get(engine, MemoryStorageOptions())
