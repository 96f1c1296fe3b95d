"""事务管理模块

层级维护操作的事务边界：
- 同一 session 上的操作并入已有事务，最外层统一提交或回滚
- 提交抑制（事务中 save(commit=True) 只 flush）
- 可重试事务（隔离冲突、重建取消等可重试错误）

使用示例:
    from ytree.orm import transaction_manager as tm

    with tm.transaction(session=session):
        store.move_node(node, new_parent)
        store.delete_node(other)
"""

from .exceptions import (
    TransactionError,
    TransactionNotActiveError,
    TransactionAlreadyCommittedError,
)
from .context import (
    TransactionState,
    TransactionContext,
)
from .manager import (
    TransactionManager,
    transaction_manager,
    get_current_transaction,
)
from .retry import transaction_with_retry

__all__ = [
    "TransactionState",
    "TransactionError",
    "TransactionNotActiveError",
    "TransactionAlreadyCommittedError",
    "TransactionContext",
    "TransactionManager",
    "transaction_manager",
    "get_current_transaction",
    "transaction_with_retry",
]
