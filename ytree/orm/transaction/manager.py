"""事务管理器

层级维护操作的事务边界：节点写入与层级边写入一起提交或一起回滚。
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from functools import wraps
from typing import Callable, Generator, Optional, TypeVar

from sqlalchemy.orm import Session

from .context import TransactionContext

T = TypeVar('T')

# 当前事务上下文（线程/协程安全）
_current_transaction: ContextVar[Optional[TransactionContext]] = ContextVar(
    '_current_transaction', default=None
)


def get_current_transaction() -> Optional[TransactionContext]:
    """获取当前事务上下文，不在事务中返回 None"""
    return _current_transaction.get()


class TransactionManager:
    """事务管理器（单例）

    同一 session 上已有活跃事务时加入该事务，否则开始新事务。
    加入的操作失败时异常向外传播，由最外层整体回滚。

    使用示例:
        from ytree.orm import transaction_manager as tm

        with tm.transaction(session=session):
            store.insert_node(child, parent)
            store.move_node(other, child)

        tm.run_in_transaction(lambda: store.rebuild_all(), session=session)
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._default_suppress_commit = True
        self._initialized = True

    def get_session(self) -> Session:
        from ..db_session import db_manager
        return db_manager.get_session()

    @property
    def current_transaction(self) -> Optional[TransactionContext]:
        return _current_transaction.get()

    def configure(self, suppress_commit_in_transaction: bool = None) -> None:
        """配置事务管理器

        Args:
            suppress_commit_in_transaction: 事务中是否把 save(commit=True) 改为 flush
        """
        if suppress_commit_in_transaction is not None:
            self._default_suppress_commit = suppress_commit_in_transaction

    @contextmanager
    def transaction(
        self,
        session: Session = None,
        suppress_commit: bool = None,
    ) -> Generator[TransactionContext, None, None]:
        """事务上下文

        Args:
            session: 数据库会话，不传则使用全局 session
            suppress_commit: 是否抑制内部提交，None 使用默认配置
        """
        if session is None:
            session = self.get_session()

        current = self.current_transaction
        if current is not None and current.is_active and current.session is session:
            current.join()
            try:
                yield current
            finally:
                current.leave()
            return

        if suppress_commit is None:
            suppress_commit = self._default_suppress_commit

        ctx = TransactionContext(session, suppress_commit=suppress_commit)
        token = _current_transaction.set(ctx)
        try:
            with ctx:
                yield ctx
        finally:
            _current_transaction.reset(token)

    def transactional(self, session_getter: Callable[[], Session] = None):
        """事务装饰器

        使用示例:
            @transaction_manager.transactional(session_getter=SessionLocal)
            def import_departments(rows):
                ...
        """
        def decorator(func: Callable[..., T]) -> Callable[..., T]:
            @wraps(func)
            def wrapper(*args, **kwargs) -> T:
                session = session_getter() if session_getter else None
                with self.transaction(session=session):
                    return func(*args, **kwargs)
            return wrapper
        return decorator

    def run_in_transaction(self, fn: Callable[[], T], session: Session = None) -> T:
        """在事务中执行函数，返回其结果

        函数正常返回则提交（或并入外层事务），抛出异常则整体回滚。
        """
        with self.transaction(session=session):
            return fn()

    def is_in_transaction(self) -> bool:
        tx = self.current_transaction
        return tx is not None and tx.is_active

    def should_suppress_commit(self) -> bool:
        tx = self.current_transaction
        return tx is not None and tx.should_suppress_commit()


# 全局单例
transaction_manager = TransactionManager()
