"""日志模块

使用示例:
    from ytree.log import setup_root_logger, get_logger

    setup_root_logger(level="DEBUG")
    logger = get_logger("ytree.orm.tree")
"""

from .logger import (
    setup_logger,
    setup_root_logger,
    create_formatter,
    MicrosecondFormatter,
    DEFAULT_LOG_FORMAT,
    tree_logger,
    orm_logger,
    transaction_logger,
    logger,
    get_logger,
)

__all__ = [
    "setup_logger",
    "setup_root_logger",
    "create_formatter",
    "MicrosecondFormatter",
    "DEFAULT_LOG_FORMAT",
    "tree_logger",
    "orm_logger",
    "transaction_logger",
    "logger",
    "get_logger",
]
