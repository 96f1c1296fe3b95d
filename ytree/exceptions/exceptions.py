"""闭包树异常类定义

定义层级维护与查询过程中使用的异常类体系。
"""

import copy
from typing import Optional, List, Any, Dict, Union
from enum import Enum


class ErrorCode(str, Enum):
    """错误代码枚举

    继承自 str，可以直接作为字符串使用。

    使用示例:
        from ytree import ErrorCode

        try:
            store.move_node(node, new_parent)
        except ClosureTreeError as e:
            if e.code == ErrorCode.CYCLE_DETECTED:
                ...
    """

    # ==================== 通用错误 ====================
    TREE_ERROR = "TREE_ERROR"

    # ==================== 结构相关 ====================
    CYCLE_DETECTED = "CYCLE_DETECTED"

    # ==================== 数据完整性 ====================
    INTEGRITY_VIOLATION = "INTEGRITY_VIOLATION"

    # ==================== 类型解析 ====================
    UNKNOWN_NODE_TYPE = "UNKNOWN_NODE_TYPE"

    # ==================== 事务与重建 ====================
    TRANSACTION_ABORTED = "TRANSACTION_ABORTED"
    REBUILD_CANCELLED = "REBUILD_CANCELLED"


# 类型别名，支持枚举和字符串
ErrorCodeType = Union[str, ErrorCode]


class ClosureTreeError(Exception):
    """闭包树异常基类

    属性:
        message: 错误消息
        code: 错误代码（ErrorCode 枚举或字符串）
        retryable: 重新执行同一操作是否可能成功
        details: 详细错误信息列表
        extra: 额外的上下文信息（节点引用等）
    """

    default_message = "闭包树操作失败"
    default_code: ErrorCodeType = ErrorCode.TREE_ERROR
    retryable = False

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[ErrorCodeType] = None,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details or []
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            "message": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "details": copy.deepcopy(self.details),
            "extra": copy.deepcopy(self.extra)
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r})"
        )


class CycleError(ClosureTreeError):
    """循环引用异常

    插入或移动节点会使节点成为自己的祖先时抛出。
    在任何写入之前检测，调用方必须显式处理，不会被静默修正。

    使用示例:
        raise CycleError(node=("Category", 1), parent=("Category", 3))
    """

    default_message = "不能将节点移动到自身或其子孙节点下"
    default_code = ErrorCode.CYCLE_DETECTED

    def __init__(self, message: Optional[str] = None, node: Any = None, parent: Any = None, **kwargs):
        self.node = node
        self.parent = parent
        super().__init__(message, node=node, parent=parent, **kwargs)


class IntegrityViolationError(ClosureTreeError):
    """闭包表完整性异常

    闭包表处于违反不变量的状态（缺少自身边、多个根等），
    说明之前发生过未被察觉的数据损坏，只能通过 rebuild_all 修复。
    """

    default_message = "闭包表数据不一致，请执行 rebuild_all 修复"
    default_code = ErrorCode.INTEGRITY_VIOLATION


class UnknownTypeError(ClosureTreeError):
    """未知节点类型异常

    层级边中的类型标签没有注册对应的记录类型。
    只在解析时抛出，写入时允许存储尚未注册的类型标签。
    """

    default_message = "未知的节点类型"
    default_code = ErrorCode.UNKNOWN_NODE_TYPE

    def __init__(self, type_tag: str = None, message: Optional[str] = None, **kwargs):
        self.type_tag = type_tag
        if message is None and type_tag is not None:
            message = f"未注册的节点类型: {type_tag}"
        super().__init__(message, type_tag=type_tag, **kwargs)


class TransactionAbortError(ClosureTreeError):
    """事务中止异常

    底层事务失败（如隔离级别冲突、死锁），闭包表保证未被修改，
    调用方可以安全地重试。
    """

    default_message = "事务已中止，闭包表未被修改"
    default_code = ErrorCode.TRANSACTION_ABORTED
    retryable = True

    def __init__(self, message: Optional[str] = None, original_error: Exception = None, **kwargs):
        self.original_error = original_error
        super().__init__(message, **kwargs)


class RebuildCancelledError(ClosureTreeError):
    """重建取消异常

    rebuild_all 在两个层级之间检测到取消信号时抛出，
    所在事务回滚后闭包表保持重建前的状态。
    """

    default_message = "闭包表重建已取消"
    default_code = ErrorCode.REBUILD_CANCELLED
    retryable = True


class Err:
    """异常快捷创建类

    使用示例:
        from ytree import Err

        raise Err.cycle(node=ref, parent=parent_ref)
        raise Err.integrity("节点缺少自身边", node=ref)
        raise Err.unknown_type("Folder")
        raise Err.aborted(original_error=e)
    """

    @staticmethod
    def cycle(message: str = None, **kwargs) -> CycleError:
        """循环引用"""
        return CycleError(message, **kwargs)

    @staticmethod
    def integrity(message: str = None, **kwargs) -> IntegrityViolationError:
        """闭包表完整性被破坏"""
        return IntegrityViolationError(message, **kwargs)

    @staticmethod
    def unknown_type(type_tag: str, **kwargs) -> UnknownTypeError:
        """未注册的节点类型"""
        return UnknownTypeError(type_tag, **kwargs)

    @staticmethod
    def aborted(message: str = None, **kwargs) -> TransactionAbortError:
        """事务中止，可重试"""
        return TransactionAbortError(message, **kwargs)

    @staticmethod
    def cancelled(message: str = None, **kwargs) -> RebuildCancelledError:
        """重建已取消"""
        return RebuildCancelledError(message, **kwargs)
