"""
ytree - 基于闭包表的 SQLAlchemy 层级结构库

提供层级表维护、层级查询、多态节点类型、事务、配置、日志等功能
"""

from .version import __version__, __author__, __description__

# 导出ORM基类与闭包树
from .orm import (
    Base,
    CoreModel,
    init_database,
    get_engine,
    db_session_scope,
    transaction_manager,
    ClosureTree,
    ClosureTreeConfig,
    ClosureTreeMixin,
    ClosureTreeFieldsMixin,
    DeletePolicy,
    MaintenanceStrategy,
    NodeRef,
)

# 导出异常
from .exceptions import (
    Err,
    ErrorCode,
    ClosureTreeError,
    CycleError,
    IntegrityViolationError,
    UnknownTypeError,
    TransactionAbortError,
    RebuildCancelledError,
)

# 导出配置
from .config import (
    AppSettings,
    ClosureTreeSettings,
    load_yaml_config,
)

# 导出日志
from .log import (
    setup_root_logger,
    get_logger,
)

__all__ = [
    "__version__",
    "__author__",
    "__description__",

    # ORM
    "Base",
    "CoreModel",
    "init_database",
    "get_engine",
    "db_session_scope",
    "transaction_manager",

    # 闭包树
    "ClosureTree",
    "ClosureTreeConfig",
    "ClosureTreeMixin",
    "ClosureTreeFieldsMixin",
    "DeletePolicy",
    "MaintenanceStrategy",
    "NodeRef",

    # 异常
    "Err",
    "ErrorCode",
    "ClosureTreeError",
    "CycleError",
    "IntegrityViolationError",
    "UnknownTypeError",
    "TransactionAbortError",
    "RebuildCancelledError",

    # 配置
    "AppSettings",
    "ClosureTreeSettings",
    "load_yaml_config",

    # 日志
    "setup_root_logger",
    "get_logger",
]
