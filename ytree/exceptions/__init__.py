"""异常处理模块

提供闭包树异常类。

使用示例:
    from ytree.exceptions import Err, CycleError

    try:
        node.move_to(new_parent)
    except CycleError as e:
        print(e.to_dict())
"""

from .exceptions import (
    Err,
    ErrorCode,
    ErrorCodeType,
    ClosureTreeError,
    CycleError,
    IntegrityViolationError,
    UnknownTypeError,
    TransactionAbortError,
    RebuildCancelledError,
)

__all__ = [
    "Err",
    "ErrorCode",
    "ErrorCodeType",
    "ClosureTreeError",
    "CycleError",
    "IntegrityViolationError",
    "UnknownTypeError",
    "TransactionAbortError",
    "RebuildCancelledError",
]
