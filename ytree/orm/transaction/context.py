"""事务上下文

一次层级维护事务的状态：所属 session、加入层数、提交抑制，
以及事务中执行过的层级维护操作（提交时汇总记录日志）。
"""

from __future__ import annotations

from enum import Enum
from typing import List

from sqlalchemy.orm import Session

from ytree.log import get_logger

from .exceptions import TransactionAlreadyCommittedError, TransactionNotActiveError

logger = get_logger("ytree.orm.transaction")


class TransactionState(str, Enum):
    """事务状态

        INACTIVE → ACTIVE → COMMITTED
                      ↓
                  ROLLED_BACK
    """

    INACTIVE = "inactive"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        return self in (
            TransactionState.COMMITTED,
            TransactionState.ROLLED_BACK,
            TransactionState.FAILED,
        )


class TransactionContext:
    """事务上下文

    最外层进入时开始，最外层退出时提交或回滚；
    同一 session 上的内层 transaction() 只增加加入层数。

    使用示例:
        with transaction_manager.transaction(session=session) as tx:
            store.move_node(node, new_parent)
            store.delete_node(other)
        tx.operations   # ["move_node", "delete_node"]
    """

    def __init__(self, session: Session, suppress_commit: bool = True):
        self._session = session
        self._suppress_commit = suppress_commit
        self._state = TransactionState.INACTIVE
        self._depth = 0
        self.operations: List[str] = []

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == TransactionState.ACTIVE

    @property
    def depth(self) -> int:
        """加入层数，最外层为 1"""
        return self._depth

    @property
    def suppress_commit(self) -> bool:
        return self._suppress_commit

    def should_suppress_commit(self) -> bool:
        """CoreModel.save(commit=True) 是否应改为 flush"""
        return self.is_active and self._suppress_commit

    def record(self, operation: str) -> None:
        """记录一次层级维护操作"""
        self.operations.append(operation)

    # ==================== 生命周期 ====================

    def begin(self) -> "TransactionContext":
        if self._state.is_terminal():
            raise TransactionNotActiveError(f"无法开始：事务状态为 {self._state.value}")
        self._state = TransactionState.ACTIVE
        self._depth += 1
        return self

    def join(self) -> "TransactionContext":
        if not self.is_active:
            raise TransactionNotActiveError()
        self._depth += 1
        logger.debug(f"加入现有事务 (depth={self._depth})")
        return self

    def leave(self) -> None:
        if self._depth > 1:
            self._depth -= 1

    def commit(self) -> None:
        if self._state == TransactionState.COMMITTED:
            raise TransactionAlreadyCommittedError()
        if not self.is_active:
            raise TransactionNotActiveError(f"无法提交：事务状态为 {self._state.value}")
        try:
            self._session.commit()
        except Exception:
            self._state = TransactionState.FAILED
            raise
        self._state = TransactionState.COMMITTED
        self._depth = 0
        if self.operations:
            logger.debug(f"事务提交，层级维护操作 {len(self.operations)} 个")

    def rollback(self) -> None:
        """回滚（幂等）"""
        if self._state == TransactionState.COMMITTED:
            raise TransactionAlreadyCommittedError("无法回滚：事务已提交")
        if self._state not in (TransactionState.ACTIVE, TransactionState.FAILED):
            return
        try:
            self._session.rollback()
        except Exception as e:
            self._state = TransactionState.FAILED
            logger.error(f"事务回滚失败: {e}")
            raise
        self._state = TransactionState.ROLLED_BACK
        self._depth = 0
        if self.operations:
            logger.debug(f"事务回滚，撤销层级维护操作 {len(self.operations)} 个")

    def __enter__(self) -> "TransactionContext":
        return self.begin()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            self.rollback()
            return False
        try:
            self.commit()
        except Exception:
            self.rollback()
            raise
        return False

    def __repr__(self) -> str:
        return (
            f"TransactionContext(state={self._state.value}, depth={self._depth}, "
            f"operations={len(self.operations)})"
        )
