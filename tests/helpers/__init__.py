"""测试辅助工具模块

提供测试专用的辅助函数，避免在核心代码中添加测试专用方法。
"""

from .transaction_helpers import (
    reset_transaction_manager,
    is_transaction_manager_initialized,
)
from .closure_helpers import (
    edge_set,
    expected_edges,
    assert_closure_consistent,
    names,
    tree_names,
    flat_names,
)

__all__ = [
    # 事务管理器辅助
    'reset_transaction_manager',
    'is_transaction_manager_initialized',
    # 闭包表辅助
    'edge_set',
    'expected_edges',
    'assert_closure_consistent',
    'names',
    'tree_names',
    'flat_names',
]
