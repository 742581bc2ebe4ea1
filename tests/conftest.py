"""
Pytest 配置和共享 fixtures

此文件提供 pytest 测试所需的共享配置和 fixtures。
"""
import sys
import tempfile
from pathlib import Path
from typing import Generator

import pytest

# 确保可以导入 relmodel 和测试场景
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from relmodel import event  # noqa: E402
from scenario import CountingStorage, Scenario, build_scenario  # noqa: E402


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    提供临时目录 fixture

    Yields:
        临时目录的 Path 对象
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def storage() -> CountingStorage:
    """记录 query 调用的内存存储"""
    return CountingStorage()


@pytest.fixture
def scenario(storage: CountingStorage) -> Scenario:
    """已写入测试数据的 user / phone / message / address 场景"""
    s = build_scenario(storage)
    storage.queries.clear()
    return s


@pytest.fixture(autouse=True)
def clear_events() -> Generator[None, None, None]:
    """每个测试前后清除所有事件监听器"""
    event.clear()
    yield
    event.clear()
