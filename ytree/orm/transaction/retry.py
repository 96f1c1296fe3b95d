"""事务重试装饰器

用于处理隔离冲突、死锁、重建取消等可重试的层级维护失败
"""

import time
from functools import wraps
from typing import Callable, Optional, Tuple, Type, TypeVar

from sqlalchemy.exc import OperationalError

from ytree.exceptions import ClosureTreeError
from ytree.log import get_logger

logger = get_logger("ytree.orm.transaction")

T = TypeVar('T')


def is_retryable(exc: BaseException) -> bool:
    """闭包树异常按 retryable 判断，数据库操作错误（锁等待、死锁）总是可重试"""
    if isinstance(exc, ClosureTreeError):
        return exc.retryable
    return isinstance(exc, OperationalError)


def transaction_with_retry(
    max_retries: int = 3,
    retry_delay: float = 0.1,
    retry_on: Optional[Tuple[Type[Exception], ...]] = None,
    backoff_multiplier: float = 2.0,
    max_delay: float = 10.0,
    session_getter: Callable = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """带重试机制的事务装饰器

    每次尝试都在独立的事务中执行，失败时整体回滚后再重试，支持指数退避。

    Args:
        max_retries: 最大重试次数（不包括首次尝试）
        retry_delay: 初始重试间隔（秒）
        retry_on: 需要重试的异常类型元组，None 时按 is_retryable 判断
        backoff_multiplier: 退避乘数
        max_delay: 最大延迟时间（秒）
        session_getter: 获取 session 的函数，不传则使用全局 session

    使用示例:
        @transaction_with_retry(max_retries=5, session_getter=lambda: session)
        def move_department(dept, new_parent):
            Department.tree.store(session).move_node(dept, new_parent)
    """
    def should_retry(exc: Exception) -> bool:
        if retry_on is not None:
            return isinstance(exc, retry_on)
        return is_retryable(exc)

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            from .manager import transaction_manager

            current_delay = retry_delay

            for attempt in range(max_retries + 1):
                try:
                    session = session_getter() if session_getter else None
                    with transaction_manager.transaction(session=session):
                        return func(*args, **kwargs)
                except Exception as e:
                    if not should_retry(e):
                        raise
                    if attempt >= max_retries:
                        logger.error(
                            f"事务重试 {max_retries} 次后仍失败. "
                            f"异常: {type(e).__name__}: {e}"
                        )
                        raise

                    actual_delay = min(current_delay, max_delay)
                    logger.warning(
                        f"事务执行失败 (尝试 {attempt + 1}/{max_retries + 1}), "
                        f"{actual_delay:.2f}s 后重试. "
                        f"异常: {type(e).__name__}: {e}"
                    )
                    time.sleep(actual_delay)
                    current_delay *= backoff_multiplier

            raise RuntimeError("Unexpected state in transaction_with_retry")

        return wrapper

    return decorator
