"""
数据库会话管理模块

公开 API:
- db_manager: 数据库管理器单例
- init_database(): 创建引擎与 scoped session，可同时为闭包树安装父指针跟踪
- get_engine(): 获取数据库引擎
- db_session_scope(): 脚本/任务场景的上下文管理器
- db_manager.cleanup(): 回滚并移除当前 session
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Callable, Generator, Iterable, Optional
from uuid import uuid4

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session, Session
from sqlalchemy.pool import QueuePool, StaticPool

from ytree.log import get_logger

_logger = get_logger("ytree.orm.session")

__all__ = [
    'db_manager',
    'init_database',
    'get_engine',
    'db_session_scope',
]


def _build_engine(database_url: str, echo: bool, logger: logging.Logger, **pool):
    """SQLite 内存库用单连接 StaticPool，文件库用 QueuePool"""
    if database_url.startswith("sqlite:///"):
        db_path = database_url[len("sqlite:///"):]
        if db_path in (":memory:", ""):
            logger.info("SQLite内存数据库引擎（StaticPool）")
            return create_engine(
                database_url,
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        logger.info(f"SQLite文件数据库引擎（QueuePool, pool_size={pool['pool_size']}）")
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": pool["pool_timeout"]},
            poolclass=QueuePool,
            **pool,
        )
    return create_engine(database_url, echo=echo, **pool)


class DatabaseManager:
    """数据库管理器（单例）

    使用示例:
        from ytree.orm import db_manager

        db_manager.init(database_url="sqlite:///./tree.db", trees=[category_tree])
        session = db_manager.get_session()
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

        self._engine = None
        self._session_scope = None
        self._scope_id_var: ContextVar[str] = ContextVar('scope_id', default='')
        self._initialized = True

    @property
    def engine(self):
        if self._engine is None:
            raise RuntimeError("数据库未初始化，请先调用 init_database()")
        return self._engine

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None and self._session_scope is not None

    def init(
        self,
        database_url: str = None,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        pool_recycle: int = 3600,
        pool_pre_ping: bool = True,
        logger: logging.Logger = None,
        scopefunc: Callable = None,
        config: Any = None,
        auto_setup_query: bool = True,
        trees: Iterable = (),
    ):
        """初始化数据库连接

        Args:
            database_url: 数据库连接URL（如果提供 config 则忽略）
            echo: 是否输出SQL语句
            logger: 日志记录器
            scopefunc: session作用域函数，默认按上下文作用域ID区分
            config: 数据库配置对象（DatabaseSettings）
            auto_setup_query: 是否设置 CoreModel.query 属性
            trees: 需要在新 session 上安装父指针跟踪的 ClosureTree

        Returns:
            tuple: (engine, session_scope)
        """
        if config is not None:
            database_url = getattr(config, "url", database_url)
            echo = getattr(config, "echo", echo)
            pool_size = getattr(config, "pool_size", pool_size)
            max_overflow = getattr(config, "max_overflow", max_overflow)
            pool_timeout = getattr(config, "pool_timeout", pool_timeout)
            pool_recycle = getattr(config, "pool_recycle", pool_recycle)
            pool_pre_ping = getattr(config, "pool_pre_ping", pool_pre_ping)

        if not database_url:
            raise ValueError("database_url 是必需的，请通过参数或 config 提供")

        logger = logger or _logger
        logger.info(f"数据库配置URL: {database_url}")

        try:
            self._engine = _build_engine(
                database_url,
                echo,
                logger,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
                pool_pre_ping=pool_pre_ping,
            )
        except Exception as e:
            logger.error(f"创建数据库引擎失败: {str(e)}")
            raise

        session_maker = sessionmaker(autoflush=True, bind=self._engine)
        self._session_scope = scoped_session(session_maker, scopefunc=scopefunc or self._get_scope_id)

        if auto_setup_query:
            from .core_model import CoreModel
            CoreModel.query = self._session_scope.query_property()

        for tree in trees:
            tree.install(self._session_scope)
            logger.info(f"闭包树父指针跟踪已安装: {tree.base_tag}")

        return self._engine, self._session_scope

    def get_session(self) -> Session:
        """当前作用域的 session，直接使用需要自行 cleanup()"""
        if self._session_scope is None:
            raise RuntimeError("数据库未初始化，请先调用 init_database()")
        return self._session_scope()

    def cleanup(self):
        """回滚未提交的节点与层级边并移除当前 session（幂等）"""
        scope_id = self._get_scope_id()

        if self._session_scope and self._session_scope.registry.has():
            session = self._session_scope()
            if session.in_transaction():
                session.rollback()
                _logger.debug(f"[scope={scope_id}] 未提交的事务已回滚")
            self._session_scope.remove()

        self._scope_id_var.set('')

    def _set_scope_id(self, scope_id: Optional[str] = None) -> str:
        if not scope_id:
            scope_id = uuid4().hex[:8]
        self._scope_id_var.set(scope_id)
        return scope_id

    def _get_scope_id(self) -> str:
        value = self._scope_id_var.get()
        if not value:
            value = self._set_scope_id()
        return value


db_manager = DatabaseManager()


def init_database(
    database_url: str = None,
    echo: bool = False,
    config: Any = None,
    logger: logging.Logger = None,
    scopefunc: Callable = None,
    auto_setup_query: bool = True,
    trees: Iterable = (),
    **pool_options,
):
    """db_manager.init() 的便捷包装

    使用示例:
        engine, session_scope = init_database("sqlite:///./tree.db", trees=[category_tree])
    """
    return db_manager.init(
        database_url=database_url,
        echo=echo,
        config=config,
        logger=logger,
        scopefunc=scopefunc,
        auto_setup_query=auto_setup_query,
        trees=trees,
        **pool_options,
    )


def get_engine():
    return db_manager.engine


@contextmanager
def db_session_scope(
    scope_id: str = None,
    auto_commit: bool = True
) -> Generator[Session, None, None]:
    """session 上下文管理器，退出时提交（或回滚）并清理

    使用示例:
        with db_session_scope() as session:
            root = Category(name="根")
            session.add(root)
        # 自动提交，闭包表随 flush 一起写入
    """
    db_manager._set_scope_id(scope_id)
    session = db_manager.get_session()
    try:
        yield session
        if auto_commit:
            session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        db_manager.cleanup()
